"""Core functionality for imagekv.

The core package holds everything except HTTP plumbing:

1. **Configuration** (config.py): environment-based settings, ``IMAGEKV_`` prefix.
2. **Errors** (errors.py): exception taxonomy with HTTP status codes.
3. **Validation** (validation.py): request body and user id checks.
4. **Inference** (inference.py, prompt_builder.py): runners, prompt
   augmentation, and normalization of backend responses to bytes.
5. **Encoding** (encoding.py): base64 and data-URI helpers.
6. **Storage** (storage.py): key-value backends and the image repository.
7. **Pipeline** (pipeline.py): the generate/fetch/delete flows.
"""

from imagekv.core.config import ImageKVConfig
from imagekv.core.errors import (
    ImageKVError,
    MissingBindingError,
    NotFoundError,
    StorageError,
    UpstreamError,
    ValidationError,
)
from imagekv.core.inference import InferenceRunner
from imagekv.core.pipeline import GenerationPipeline, GenerationResult
from imagekv.core.storage import ImageRepository, KeyValueStore

__all__ = [
    "GenerationPipeline",
    "GenerationResult",
    "ImageKVConfig",
    "ImageKVError",
    "ImageRepository",
    "InferenceRunner",
    "KeyValueStore",
    "MissingBindingError",
    "NotFoundError",
    "StorageError",
    "UpstreamError",
    "ValidationError",
]
