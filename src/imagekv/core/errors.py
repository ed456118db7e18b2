"""Error taxonomy for imagekv.

Every failure the service reports to a caller is an :class:`ImageKVError`
subclass.  Each class carries the HTTP status it maps to, and the API layer
converts any of them into a ``{"error": ..., "detail": ...}`` JSON body.

========================  ======  ==========================================
Class                     Status  Raised when
========================  ======  ==========================================
``ValidationError``       400     A request field is missing, blank, or not text
``NotFoundError``         404     No image is stored for a user id
``UpstreamError``         500     The inference backend returned an unusable payload
``StorageError``          500     A key-value operation failed
``MissingBindingError``   500     A required backend is not configured
========================  ======  ==========================================
"""

from __future__ import annotations


class ImageKVError(Exception):
    """Base class for errors that are reported to API callers.

    Attributes:
        message: Human-readable summary, returned as the ``error`` field.
        detail: Optional diagnostic text, returned as the ``detail`` field.
    """

    status_code: int = 500

    def __init__(self, message: str, detail: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail


class ValidationError(ImageKVError):
    """A request field failed validation.  The message names the field."""

    status_code = 400


class NotFoundError(ImageKVError):
    """No artifact is stored under the requested key."""

    status_code = 404


class UpstreamError(ImageKVError):
    """The inference backend returned an unrecognized or empty payload."""

    status_code = 500


class StorageError(ImageKVError):
    """A key-value store operation failed."""

    status_code = 500


class MissingBindingError(StorageError):
    """An external backend the request needs has not been configured."""
