"""Generation pipeline: validate, invoke, normalize, encode, store.

The pipeline owns the whole ``POST /generate`` flow.  Each stage either
hands its output to the next or raises an
:class:`~imagekv.core.errors.ImageKVError`, which short-circuits the flow::

    Received -> Validated -> Invoked -> Normalized -> Encoded -> Stored -> Responded

Nothing is retried.  The inference runner and key-value store are injected,
so tests substitute in-memory fakes for both.

Usage Example
-------------
::

    pipeline = GenerationPipeline(config, runner=PlaceholderRunner(), store=MemoryKeyValueStore())
    result = await pipeline.generate({"prompt": "a red cube", "userId": "u1"})
    result.image  # 'data:image/png;base64,...'
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from .config import ImageKVConfig
from .encoding import detect_media_type, encode_image, to_data_uri
from .errors import ImageKVError, MissingBindingError, UpstreamError
from .inference import INVALID_RESPONSE, InferenceRunner, normalize_result
from .prompt_builder import build_prompt
from .storage import ImageRepository, KeyValueStore
from .validation import GenerationRequest, validate_generation_request, validate_user_id

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GenerationResult:
    """Outcome of a successful generation.

    Attributes:
        user_id: Key the image was stored under.
        image: The stored data URI.
        media_type: MIME type in the data-URI prefix.
        size: Length of the raw image in bytes.
    """

    user_id: str
    image: str
    media_type: str
    size: int

    def preview(self, length: int = 30) -> str:
        """Return the first *length* characters of the image followed by ``...``."""
        return f"{self.image[:length]}..."


class GenerationPipeline:
    """Orchestrates one generation request end to end.

    Args:
        config: Service configuration (model id, tuning constants, prompt
            augmentation, expiration).
        runner: Inference backend, or ``None`` if none is configured.
        store: Key-value backend, or ``None`` if none is configured.
    """

    def __init__(
        self,
        config: ImageKVConfig,
        runner: InferenceRunner | None,
        store: KeyValueStore | None,
    ) -> None:
        self.config = config
        self.runner = runner
        self.repository = ImageRepository(store, expiration_seconds=config.ttl_seconds)

    # --- Stages ---------------------------------------------------------------

    def validate(self, body: Any) -> GenerationRequest:
        return validate_generation_request(body)

    def inference_params(self, prompt: str) -> dict[str, Any]:
        """Build the runner parameters: compiled prompt plus fixed tuning constants."""
        compiled = build_prompt(
            prompt,
            style_template=self.config.style_template,
            negative_prompt=self.config.negative_prompt,
        )
        return {
            "prompt": compiled,
            "num_steps": self.config.num_steps,
            "guidance": self.config.guidance,
        }

    async def invoke_inference(self, prompt: str) -> Any:
        """Call the runner and return its raw result."""
        if self.runner is None:
            raise MissingBindingError("Inference service is not configured")
        return await self.runner.run(self.config.model_id, self.inference_params(prompt))

    async def normalize_response(self, raw: Any) -> bytes:
        try:
            return await normalize_result(raw)
        except UpstreamError as e:
            logger.error(f"AI response invalid: {e.detail}")
            raise
        except ImageKVError:
            raise
        except Exception as e:
            logger.error(f"Failed to read AI response: {e}", exc_info=True)
            raise UpstreamError(INVALID_RESPONSE, detail=str(e)) from e

    def encode(self, data: bytes) -> tuple[str, str]:
        """Encode *data* as a data URI.  Returns ``(data_uri, media_type)``."""
        media_type = detect_media_type(data)
        return to_data_uri(encode_image(data), media_type), media_type

    # --- Flows ----------------------------------------------------------------

    async def generate(self, body: Any) -> GenerationResult:
        """Run the full generation flow for a decoded request body.

        Args:
            body: Decoded JSON body, expected to hold ``prompt`` and ``userId``.

        Returns:
            GenerationResult describing the stored image.

        Raises:
            ValidationError: Invalid request body.
            MissingBindingError: Runner or store not configured.
            UpstreamError: Inference failed or returned an unusable payload.
            StorageError: The image could not be stored.
        """
        request = self.validate(body)
        logger.info(f"Generating image for {request.user_id} with prompt: {request.prompt}")

        try:
            raw = await self.invoke_inference(request.prompt)
        except ImageKVError:
            raise
        except Exception as e:
            logger.error(f"Inference failed for {request.user_id}: {e}", exc_info=True)
            raise UpstreamError("Failed to generate image", detail=str(e)) from e

        data = await self.normalize_response(raw)
        image, media_type = self.encode(data)
        await self.repository.save(request.user_id, image)

        return GenerationResult(
            user_id=request.user_id,
            image=image,
            media_type=media_type,
            size=len(data),
        )

    async def fetch(self, user_id: Any) -> str:
        """Return the stored image for *user_id* as a data URI.

        Values stored as bare base64 are wrapped with the default media type.
        """
        key = validate_user_id(user_id)
        return to_data_uri(await self.repository.load(key))

    async def delete(self, user_id: Any) -> str:
        """Delete the stored image for *user_id*.  Returns the trimmed id."""
        key = validate_user_id(user_id)
        await self.repository.remove(key)
        return key
