"""
Failure kinds raised while serving a request.

Each exception carries a preset status code and a short public message so
call sites never choose them. The handler converts every one of these into a
terminal response; the public message is the only text a caller ever sees.
Diagnostic detail (the chained cause, store error codes, keys) stays in the
log.
"""

from __future__ import annotations

from typing import Optional


class MediaError(Exception):
    """Base class for request failures with a fixed HTTP status."""

    status_code = 500
    message = "Internal server error"

    def __init__(self, detail: str = "", *, stage: Optional[str] = None) -> None:
        super().__init__(detail or self.message)
        self.detail = detail or self.message
        self.stage = stage


class MethodNotAllowed(MediaError):
    status_code = 400
    message = "Only GET method is supported"


class ObjectNotFound(MediaError):
    status_code = 404
    message = "Not found"


class StorageError(MediaError):
    """Raised for any object store failure other than a missing key."""

    status_code = 500
    message = "Error reading from storage"


class TransformError(MediaError):
    """Raised when decoding, resizing or encoding an image fails."""

    status_code = 500
    message = "Error transforming image"


class SizeLimitExceeded(MediaError):
    status_code = 403
    message = "Requested transformed image is too big"


class CacheWriteFailure(MediaError):
    """Derivative upload failed. Logged by the handler, never returned."""

    message = "Could not upload transformed image"
