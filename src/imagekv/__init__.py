"""imagekv - prompt-to-image generation backed by a key-value store."""

__version__ = "0.1.0"

from imagekv.core.config import ImageKVConfig
from imagekv.core.pipeline import GenerationPipeline

__all__ = [
    "GenerationPipeline",
    "ImageKVConfig",
]
