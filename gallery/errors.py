from __future__ import annotations
from typing import Any, Optional


class GalleryError(Exception):
    status_code: int = 500

    def __init__(self, message: str, *, data: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.data = data


class ProbeFailure(GalleryError):
    """ffprobe could not read the file; the caller gets an empty record."""


class GenerationFailure(GalleryError):
    """A thumbnail or preview job failed. Logged by the queue, never surfaced."""


class AccessDenied(GalleryError):
    status_code = 403


class NotFound(GalleryError):
    status_code = 404


class TranscodeFailure(GalleryError):
    """The on-the-fly transcoder failed for a reason other than client disconnect."""


class InvalidUpload(GalleryError):
    status_code = 400
