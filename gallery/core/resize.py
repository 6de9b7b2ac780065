"""
Width-based image resizing for the derivative cache.
"""

import contextlib
import logging
import os
from pathlib import Path
from typing import Optional, Union

from PIL import Image, UnidentifiedImageError

from .errors import DecodeError, WriteError

logger = logging.getLogger(__name__)

JPEG_QUALITY = 90
WEBP_QUALITY = 85
_JPEG_EXTENSIONS = {".jpg", ".jpeg"}

PathLike = Union[str, Path]


def probe_width(source: PathLike) -> int:
    """Read the pixel width from the image header without decoding it."""
    try:
        with Image.open(source) as im:
            return im.width
    except (UnidentifiedImageError, OSError, ValueError) as exc:
        raise DecodeError(f"failed to open image {source}: {exc}") from exc


def _prepare_mode(im: Image.Image, dest_ext: str) -> Image.Image:
    # Palette and bilevel images would otherwise be resampled with NEAREST.
    if im.mode in ("P", "1"):
        im = im.convert("RGBA" if "transparency" in im.info else "RGB")
    if dest_ext in _JPEG_EXTENSIONS and im.mode not in ("RGB", "L"):
        im = im.convert("RGB")
    return im


def _save_options(dest_ext: str) -> dict:
    if dest_ext in _JPEG_EXTENSIONS:
        return {"quality": JPEG_QUALITY, "optimize": True}
    if dest_ext == ".webp":
        return {"quality": WEBP_QUALITY, "method": 4}
    return {}


def resize_image(source: PathLike, dest: PathLike, width: int) -> Optional[Path]:
    """
    Resize ``source`` to ``width`` pixels wide, keeping the aspect ratio, and
    store it at ``dest``. Returns the destination path, or None when the
    source is already no wider than ``width`` (originals are never upscaled).
    """
    dest = Path(dest)
    dest_ext = dest.suffix.lower()
    try:
        with Image.open(source) as im:
            src_width, src_height = im.size
            if width >= src_width:
                return None
            im.load()
            height = max(1, round(src_height * width / src_width))
            prepared = _prepare_mode(im, dest_ext)
            resized = prepared.resize((width, height), Image.Resampling.LANCZOS)
    except (UnidentifiedImageError, OSError, ValueError) as exc:
        raise DecodeError(f"failed to decode image {source}: {exc}") from exc

    partial = dest.with_name(f"{dest.stem}.partial{dest.suffix}")
    try:
        dest.parent.mkdir(parents=True, exist_ok=True)
        resized.save(partial, **_save_options(dest_ext))
        os.replace(partial, dest)
    except (OSError, ValueError) as exc:
        with contextlib.suppress(OSError):
            partial.unlink(missing_ok=True)
        raise WriteError(f"failed to save resized image {dest}: {exc}") from exc

    logger.debug("[resize] %s -> %s (%dx%d)", source, dest, width, height)
    return dest
