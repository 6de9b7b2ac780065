"""
Deterministic naming of image derivatives.

A derivative is identified by ``{dirhash}_{stem}_{width}``; the file on disk
appends the original extension. Hashing the directory keeps names short
regardless of how deep the original lives.
"""

import hashlib
from pathlib import Path, PurePosixPath
from typing import Union

from .errors import InvalidArgument

DIR_HASH_LENGTH = 16  # hex digits, 64 bits
MAX_STEM_LENGTH = 100
_STEM_KEEP = 80


def _dir_hash(directory: str) -> str:
    return hashlib.sha1(directory.encode("utf-8")).hexdigest()[:DIR_HASH_LENGTH]


def _safe_stem(stem: str) -> str:
    if len(stem) <= MAX_STEM_LENGTH:
        return stem
    digest = hashlib.sha1(stem.encode("utf-8")).hexdigest()[:12]
    return f"{stem[:_STEM_KEEP]}-{digest}"


def derive_key(original_rel_path: Union[str, PurePosixPath], width: int) -> str:
    """Return the cache key for ``original_rel_path`` resized to ``width``."""
    raw = str(original_rel_path or "").strip()
    if not raw:
        raise InvalidArgument("original path must not be empty")
    if isinstance(width, bool) or not isinstance(width, int) or width <= 0:
        raise InvalidArgument(f"width must be a positive integer, got {width!r}")

    path = PurePosixPath(raw.replace("\\", "/"))
    stem = path.stem
    if not stem or raw.endswith("/"):
        raise InvalidArgument(f"path has no file name: {raw!r}")
    return f"{_dir_hash(str(path.parent))}_{_safe_stem(stem)}_{width}"


def derive_path(cache_dir: Union[str, Path], key: str, original_ext: str) -> Path:
    """Location of the derivative file for ``key`` inside ``cache_dir``."""
    if not key:
        raise InvalidArgument("cache key must not be empty")
    ext = (original_ext or "").lower()
    if ext and not ext.startswith("."):
        ext = f".{ext}"
    return Path(cache_dir) / f"{key}{ext}"
