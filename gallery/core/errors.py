"""
Error taxonomy for the derivative cache and its collaborators.
"""
from __future__ import annotations


class GalleryError(Exception):
    """Base class for errors raised by the gallery service."""


class InvalidArgument(GalleryError, ValueError):
    """Bad caller input (empty path, non-positive width)."""


class DecodeError(GalleryError):
    """Source image is corrupt or in an unsupported format.

    Callers recover by serving the original file unresized.
    """


class WriteError(GalleryError, OSError):
    """A derivative could not be written (disk full, permissions)."""


class CacheBusy(GalleryError):
    """No resize slot was free; the work continues in the background."""

    def __init__(self, key: str, message: str = "too many concurrent resizes"):
        super().__init__(f"{message}: {key}")
        self.key = key
