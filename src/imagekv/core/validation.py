"""Request validation for the generation endpoint."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from .errors import ValidationError

logger = logging.getLogger(__name__)

PROMPT_REQUIRED = "Prompt is required and must be a non-empty string"
USER_ID_REQUIRED = "userId is required and must be a non-empty string"
BODY_REQUIRED = "Request body must be a JSON object"


@dataclass(frozen=True)
class GenerationRequest:
    """A validated generation request with surrounding whitespace removed."""

    prompt: str
    user_id: str


def _clean_text(value: Any) -> str | None:
    """Return *value* trimmed, or ``None`` if it is not usable text."""
    if not isinstance(value, str):
        return None
    stripped = value.strip()
    return stripped or None


def validate_user_id(value: Any) -> str:
    """Validate a user id from a request body or URL path.

    Args:
        value: Raw user id.

    Returns:
        The trimmed user id.

    Raises:
        ValidationError: If the id is missing, not a string, or blank.
    """
    user_id = _clean_text(value)
    if user_id is None:
        raise ValidationError(USER_ID_REQUIRED)
    return user_id


def validate_generation_request(body: Any) -> GenerationRequest:
    """Validate a decoded ``POST /generate`` body.

    The prompt is checked before the user id, so a body missing both reports
    the prompt.

    Args:
        body: The decoded JSON body.

    Returns:
        GenerationRequest with trimmed ``prompt`` and ``user_id``.

    Raises:
        ValidationError: If the body is not an object, or either field is
            missing, not a string, or blank after trimming.
    """
    if not isinstance(body, dict):
        raise ValidationError(BODY_REQUIRED)

    prompt = _clean_text(body.get("prompt"))
    if prompt is None:
        logger.warning("Rejected generation request without a usable prompt")
        raise ValidationError(PROMPT_REQUIRED)

    user_id = validate_user_id(body.get("userId"))
    return GenerationRequest(prompt=prompt, user_id=user_id)
