"""
Image endpoint: originals and on-demand resized derivatives.
"""

import asyncio
import logging
import mimetypes
from pathlib import Path
from typing import Optional
from urllib.parse import unquote

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import FileResponse

from ..core.config import settings
from ..core.errors import CacheBusy, DecodeError
from ..core.image_cache import DerivativeCache
from ..crud import PostStore
from ..dependencies import get_image_cache, get_post_store

router = APIRouter(prefix="/images", tags=["images"])
logger = logging.getLogger(__name__)


def _parse_width(raw: Optional[str]) -> int:
    if raw is None or raw == "":
        return 0
    try:
        width = int(raw)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid width parameter")
    if width < 0:
        raise HTTPException(status_code=400, detail="Invalid width parameter")
    return width


def _media_type(path: str) -> str:
    guessed, _ = mimetypes.guess_type(path)
    return guessed or "application/octet-stream"


def _resolve_file(folder: Path, filename: str) -> Optional[Path]:
    candidate = (folder / unquote(filename)).resolve()
    try:
        candidate.relative_to(folder.resolve())
    except ValueError:
        return None
    return candidate if candidate.is_file() else None


@router.get("/{folder_id}/{filename:path}")
async def serve_image(
    folder_id: str,
    filename: str,
    w: Optional[str] = Query(None, description="Target width in px; 0 or absent serves the original"),
    cache: DerivativeCache = Depends(get_image_cache),
    store: PostStore = Depends(get_post_store),
):
    width = _parse_width(w)
    folder = await asyncio.to_thread(store.resolve_folder, folder_id)
    if settings.VERBOSE:
        logger.debug("[images] looking for %s/%s with width %d", folder, filename, width)
    if folder is None:
        raise HTTPException(status_code=404, detail="Folder not found")
    image_path = _resolve_file(folder, filename)
    if image_path is None:
        raise HTTPException(status_code=404, detail="File not found")

    # Runs in a worker thread; a client disconnect does not cancel the resize.
    result = await asyncio.to_thread(cache.get_derivative, image_path, width)
    if result.ready:
        return FileResponse(result.path, media_type=_media_type(result.path))

    if isinstance(result.error, CacheBusy):
        raise HTTPException(
            status_code=429,
            detail="Image is being processed, please retry shortly",
            headers={"Retry-After": str(settings.RETRY_AFTER_SECONDS)},
        )
    if isinstance(result.error, DecodeError):
        logger.warning("[images] serving original for %s: %s", image_path, result.error)
        return FileResponse(str(image_path), media_type=_media_type(str(image_path)))

    logger.error("[images] error processing image %s: %s", image_path, result.error)
    raise HTTPException(status_code=500, detail="Failed to process image")
