"""Binary-to-text encoding of generated images.

Images are persisted and returned as data URIs::

    data:image/png;base64,iVBORw0KGgo...

The base64 text uses the standard alphabet with ``=`` padding, so ``n``
input bytes always produce ``ceil(n / 3) * 4`` characters and decoding
reproduces the original buffer exactly.

The media type in the prefix is identified from the image's magic bytes with
Pillow.  Identification never modifies the bytes; buffers Pillow does not
recognize are labelled ``image/png``.
"""

from __future__ import annotations

import base64
import binascii
import io
import re

from PIL import Image, UnidentifiedImageError

DEFAULT_MEDIA_TYPE = "image/png"

_DATA_URI_RE = re.compile(r"^data:(?P<media_type>[\w.+-]+/[\w.+-]+);base64,(?P<payload>.*)$", re.S)


def encode_image(data: bytes) -> str:
    """Encode *data* as standard, padded base64 text."""
    return base64.b64encode(data).decode("ascii")


def decode_image(text: str) -> bytes:
    """Decode base64 text (with or without a data-URI prefix) to bytes.

    Raises:
        ValueError: If the text is not valid base64.
    """
    _, payload = split_data_uri(text)
    try:
        return base64.b64decode(payload, validate=True)
    except binascii.Error as e:
        raise ValueError(f"Invalid base64 payload: {e}") from e


def detect_media_type(data: bytes) -> str:
    """Identify the image media type of *data*.

    Args:
        data: Raw image bytes.

    Returns:
        A MIME type such as ``"image/jpeg"``, or :data:`DEFAULT_MEDIA_TYPE`
        when the bytes are not a recognizable image.
    """
    try:
        with Image.open(io.BytesIO(data)) as image:
            image_format = image.format
    except (UnidentifiedImageError, OSError, ValueError):
        return DEFAULT_MEDIA_TYPE
    return Image.MIME.get(image_format or "", DEFAULT_MEDIA_TYPE)


def is_data_uri(value: str) -> bool:
    """Return ``True`` if *value* already carries a base64 data-URI prefix."""
    return _DATA_URI_RE.match(value) is not None


def to_data_uri(encoded: str, media_type: str = DEFAULT_MEDIA_TYPE) -> str:
    """Wrap base64 text in a data URI.  Values already wrapped pass through."""
    if is_data_uri(encoded):
        return encoded
    return f"data:{media_type};base64,{encoded}"


def split_data_uri(value: str) -> tuple[str | None, str]:
    """Split a data URI into ``(media_type, base64_text)``.

    Plain base64 text is returned as ``(None, value)``.
    """
    match = _DATA_URI_RE.match(value)
    if match is None:
        return None, value
    return match.group("media_type"), match.group("payload")

