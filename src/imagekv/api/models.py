"""Pydantic response models for the imagekv API.

Request bodies are validated by :mod:`imagekv.core.validation` so that error
messages name the offending field exactly; these models describe what the
API sends back and feed the OpenAPI schema.

Models
------
HealthResponse
    ``GET /`` liveness payload.
ImageResponse
    ``GET /image/{userId}`` payload.
MessageResponse
    ``DELETE /image/{userId}`` payload.
GenerateResponse
    ``POST /generate`` payload, carrying either ``image`` or ``preview``.
ErrorResponse
    Body of every 4xx/5xx response.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class HealthResponse(BaseModel):
    """Liveness payload."""

    status: str = Field(default="ok")


class ImageResponse(BaseModel):
    """A stored image.

    Attributes:
        image: The image as a ``data:<media-type>;base64,...`` URI.
    """

    image: str = Field(..., description="Image as a base64 data URI.")


class MessageResponse(BaseModel):
    """Plain confirmation message."""

    message: str


class GenerateResponse(BaseModel):
    """Confirmation of a stored generation.

    Exactly one of ``image`` and ``preview`` is set, depending on the
    configured response mode.  Unset fields are omitted from the JSON.

    Attributes:
        user_id: The key the image was stored under (``userId`` on the wire).
        image: Full data URI (``full`` mode).
        preview: First characters of the data URI followed by ``...``
            (``preview`` mode).
    """

    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(..., alias="userId")
    image: str | None = None
    preview: str | None = None


class ErrorResponse(BaseModel):
    """Error body.

    Attributes:
        error: Human-readable summary.
        detail: Optional diagnostic text.
    """

    error: str
    detail: str | None = None
