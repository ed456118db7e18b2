"""Inference runners and normalization of their results.

An :class:`InferenceRunner` turns a model identifier and a parameter
dictionary into *some* payload that contains an image.  Backends disagree
about what that payload looks like, so the result is classified once into
one of three variants, each of which knows how to extract the image bytes:

- :class:`StreamResult` -- raw bytes, a file-like object, or a sync/async
  iterator of byte chunks.  The stream is drained in order into one buffer.
- :class:`ResponseLikeResult` -- an HTTP-response-like object (for example
  an ``httpx.Response``) exposing ``headers`` and a body accessor.  JSON
  bodies are handed on to the structured extractor.
- :class:`StructuredResult` -- a mapping holding the image as base64 text
  or bytes under ``image``, ``images[0]``, ``data[0].b64_json``,
  ``choices[0].message.content``, or inside a ``result`` envelope.

Anything else is reported as :class:`~imagekv.core.errors.UpstreamError`
with a best-effort serialization of the payload in ``detail``.

Runners
-------
``CloudflareAIRunner``
    Workers AI REST API via httpx.  Returns the ``httpx.Response``.
``PlaceholderRunner``
    Local development backend.  Renders a solid-colour PNG with Pillow and
    returns it as a file-like stream.
"""

from __future__ import annotations

import hashlib
import inspect
import io
import json
import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Literal

import httpx
from PIL import Image

from .encoding import decode_image
from .errors import UpstreamError

if TYPE_CHECKING:
    from .config import ImageKVConfig

logger = logging.getLogger(__name__)

INVALID_RESPONSE = "AI service returned invalid response"

_MAX_DETAIL_CHARS = 500
_BYTES_LIKE = (bytes, bytearray, memoryview)


# ---------------------------------------------------------------------------
# Diagnostics.
# ---------------------------------------------------------------------------


def describe_payload(payload: Any) -> str:
    """Serialize an unexpected payload for an error ``detail`` field.

    JSON is attempted first; objects that cannot be serialized fall back to
    ``repr``.  The result is truncated so large bodies never reach the client.
    """
    if isinstance(payload, _BYTES_LIKE):
        return f"<{len(payload)} bytes>"
    try:
        text = json.dumps(payload)
    except (TypeError, ValueError):
        text = repr(payload)
    return _truncate(text)


def _truncate(text: str) -> str:
    if len(text) > _MAX_DETAIL_CHARS:
        return text[:_MAX_DETAIL_CHARS] + "..."
    return text


def _as_bytes(chunk: Any) -> bytes:
    if not isinstance(chunk, _BYTES_LIKE):
        raise UpstreamError(
            INVALID_RESPONSE,
            detail=f"Stream yielded {type(chunk).__name__}, expected bytes",
        )
    return bytes(chunk)


# ---------------------------------------------------------------------------
# Result variants.
# ---------------------------------------------------------------------------


@dataclass
class StreamResult:
    """A byte stream: bytes, a readable object, or an iterator of chunks."""

    source: Any
    kind: Literal["stream"] = "stream"

    async def extract(self) -> bytes:
        """Drain the stream fully into a single buffer."""
        source = self.source
        if isinstance(source, _BYTES_LIKE):
            return bytes(source)

        if hasattr(source, "read"):
            data = source.read()
            if inspect.isawaitable(data):
                data = await data
            return _as_bytes(data)

        buffer = bytearray()
        if hasattr(source, "__aiter__"):
            async for chunk in source:
                buffer += _as_bytes(chunk)
        else:
            for chunk in source:
                buffer += _as_bytes(chunk)
        return bytes(buffer)


@dataclass
class ResponseLikeResult:
    """An HTTP-response-like object with ``headers`` and a body accessor."""

    response: Any
    kind: Literal["response"] = "response"

    async def _read_body(self) -> bytes:
        reader = getattr(self.response, "aread", None)
        if reader is not None:
            body = reader()
            if inspect.isawaitable(body):
                body = await body
        else:
            body = self.response.content
        return _as_bytes(body)

    async def extract(self) -> bytes:
        """Read the response body, following JSON bodies into the structured path."""
        body = await self._read_body()

        status = getattr(self.response, "status_code", 200)
        if status >= 400:
            text = body.decode("utf-8", errors="replace")
            raise UpstreamError(
                "AI service returned an error",
                detail=_truncate(f"HTTP {status}: {text}"),
            )

        content_type = self.response.headers.get("content-type", "")
        if "json" not in content_type:
            return body

        try:
            payload = json.loads(body)
        except ValueError as e:
            raise UpstreamError(INVALID_RESPONSE, detail=f"Malformed JSON body: {e}") from e
        if not isinstance(payload, Mapping):
            raise UpstreamError(INVALID_RESPONSE, detail=describe_payload(payload))
        return await StructuredResult(payload).extract()


@dataclass
class StructuredResult:
    """A mapping holding an encoded image in one of the known fields."""

    payload: Mapping
    kind: Literal["structured"] = "structured"

    @staticmethod
    def _find_image_field(payload: Mapping) -> Any:
        if "image" in payload:
            return payload["image"]

        images = payload.get("images")
        if isinstance(images, list) and images:
            return images[0]

        data = payload.get("data")
        if isinstance(data, list) and data and isinstance(data[0], Mapping):
            return data[0].get("b64_json", data[0].get("image"))

        choices = payload.get("choices")
        if isinstance(choices, list) and choices and isinstance(choices[0], Mapping):
            message = choices[0].get("message")
            if isinstance(message, Mapping):
                return message.get("content")

        result = payload.get("result")
        if isinstance(result, Mapping):
            return StructuredResult._find_image_field(result)

        return None

    async def extract(self) -> bytes:
        """Locate the image field and decode it to bytes."""
        value = self._find_image_field(self.payload)
        # images[0] may itself be an object such as {"b64_json": "..."}.
        if isinstance(value, Mapping):
            value = self._find_image_field(value) or value.get("b64_json")

        if isinstance(value, _BYTES_LIKE):
            return bytes(value)
        if isinstance(value, str):
            try:
                return decode_image(value.strip())
            except ValueError as e:
                raise UpstreamError(INVALID_RESPONSE, detail=str(e)) from e

        raise UpstreamError(INVALID_RESPONSE, detail=describe_payload(self.payload))


InferenceResult = StreamResult | ResponseLikeResult | StructuredResult


def _is_response_like(raw: Any) -> bool:
    return hasattr(raw, "headers") and (hasattr(raw, "aread") or hasattr(raw, "content"))


def classify_result(raw: Any) -> InferenceResult:
    """Classify a raw runner result into one of the result variants.

    Raises:
        UpstreamError: If *raw* matches none of the supported shapes.
    """
    if isinstance(raw, _BYTES_LIKE):
        return StreamResult(raw)
    if isinstance(raw, Mapping):
        return StructuredResult(raw)
    # Response objects also expose read(), so they are matched before streams.
    if _is_response_like(raw):
        return ResponseLikeResult(raw)
    if hasattr(raw, "read") or hasattr(raw, "__aiter__"):
        return StreamResult(raw)
    if hasattr(raw, "__iter__") and not isinstance(raw, str):
        return StreamResult(raw)

    raise UpstreamError(INVALID_RESPONSE, detail=describe_payload(raw))


async def normalize_result(raw: Any) -> bytes:
    """Normalize any supported runner result to a non-empty image buffer.

    Args:
        raw: Whatever the inference runner returned.

    Returns:
        The image bytes.

    Raises:
        UpstreamError: If the shape is unsupported, extraction fails, or the
            extracted buffer is empty.
    """
    result = classify_result(raw)
    logger.debug(f"Normalizing {result.kind} inference result")

    data = await result.extract()
    if not data:
        raise UpstreamError(INVALID_RESPONSE, detail=f"Empty image in {result.kind} result")
    return data


# ---------------------------------------------------------------------------
# Runners.
# ---------------------------------------------------------------------------


class InferenceRunner(ABC):
    """Abstract base class for inference backends.

    Subclasses implement :meth:`run`, which may return any of the result
    shapes described in this module.  :meth:`aclose` releases network
    resources and is called on application shutdown.
    """

    name: str = "Base Inference Runner"

    @abstractmethod
    async def run(self, model: str, params: dict[str, Any]) -> Any:
        """Run *model* with *params* and return the raw backend result."""

    async def aclose(self) -> None:
        """Release any resources held by the runner."""


class CloudflareAIRunner(InferenceRunner):
    """Workers AI REST backend.

    Calls ``POST {api_base}/accounts/{account_id}/ai/run/{model}`` with the
    parameters as the JSON body.  Text-to-image models answer with raw image
    bytes; some answer with a JSON ``result`` envelope.  Either way the
    ``httpx.Response`` itself is returned and normalized by the pipeline.
    """

    name = "Cloudflare Workers AI"

    def __init__(
        self,
        account_id: str,
        api_token: str,
        *,
        api_base: str = "https://api.cloudflare.com/client/v4",
        timeout: float = 120.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.account_id = account_id
        self.api_base = api_base.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._headers = {"Authorization": f"Bearer {api_token}"}

    def endpoint(self, model: str) -> str:
        return f"{self.api_base}/accounts/{self.account_id}/ai/run/{model}"

    async def run(self, model: str, params: dict[str, Any]) -> httpx.Response:
        try:
            return await self._client.post(self.endpoint(model), json=params, headers=self._headers)
        except httpx.HTTPError as e:
            logger.error(f"Workers AI request failed: {e}", exc_info=True)
            raise UpstreamError("AI service request failed", detail=str(e)) from e

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class PlaceholderRunner(InferenceRunner):
    """Offline backend that returns a solid-colour PNG.

    The colour is derived from the prompt, so the same prompt always yields
    the same image.  Useful for local development without credentials.
    """

    name = "Placeholder"

    def __init__(self, width: int = 256, height: int = 256) -> None:
        self.width = width
        self.height = height

    async def run(self, model: str, params: dict[str, Any]) -> io.BytesIO:
        digest = hashlib.sha256(str(params.get("prompt", "")).encode("utf-8")).digest()
        color = (digest[0], digest[1], digest[2])

        buffer = io.BytesIO()
        Image.new("RGB", (self.width, self.height), color=color).save(buffer, format="PNG")
        buffer.seek(0)
        return buffer


def build_runner(config: ImageKVConfig) -> InferenceRunner | None:
    """Build the runner named by ``config.inference_backend``.

    Returns ``None`` when the Cloudflare backend is selected without
    credentials; the pipeline then reports a missing binding per request.
    """
    if config.inference_backend == "placeholder":
        return PlaceholderRunner()

    if not (config.cloudflare_account_id and config.cloudflare_api_token):
        logger.warning("Cloudflare inference selected but credentials are not configured")
        return None

    return CloudflareAIRunner(
        config.cloudflare_account_id,
        config.cloudflare_api_token,
        api_base=config.cloudflare_api_base,
        timeout=config.request_timeout,
    )
