"""
Maintenance control endpoints.
"""

import asyncio
from typing import Any, Dict

from fastapi import APIRouter, BackgroundTasks, Depends, Query

from ...core.config import settings
from ...core.image_cache import DerivativeCache
from ...core.maintenance import (
    maintenance_status,
    request_maintenance_stop,
    start_maintenance_background,
)
from ...core.rebuild import RebuildCoalescer
from ...dependencies import get_image_cache, get_library, get_rebuilder
from ...services.library import FolderLibrary

router = APIRouter(prefix="", tags=["maintenance"])


def _start(cache: DerivativeCache, library: FolderLibrary) -> None:
    start_maintenance_background(
        cache,
        library,
        sweep_interval_seconds=settings.IMAGE_CACHE_SWEEP_INTERVAL_MINUTES * 60,
        housekeeping_interval_seconds=settings.HOUSEKEEPING_INTERVAL_MINUTES * 60,
    )


@router.get("/status")
async def get_maintenance_status(
    start: bool = Query(False, description="Start maintenance if not running"),
    cache: DerivativeCache = Depends(get_image_cache),
    library: FolderLibrary = Depends(get_library),
) -> Dict[str, Any]:
    if start and settings.MAINTENANCE_ENABLED:
        _start(cache, library)
    return {
        "enabled": settings.MAINTENANCE_ENABLED,
        "running": maintenance_status(),
    }


@router.post("/start")
async def start_maintenance_process(
    cache: DerivativeCache = Depends(get_image_cache),
    library: FolderLibrary = Depends(get_library),
) -> Dict[str, Any]:
    """Start the maintenance background loops."""
    if not settings.MAINTENANCE_ENABLED:
        return {
            "enabled": False,
            "running": False,
            "message": "Maintenance disabled",
        }
    _start(cache, library)
    return {
        "enabled": True,
        "running": maintenance_status(),
    }


@router.post("/stop")
async def stop_maintenance_process() -> Dict[str, Any]:
    """Stop all maintenance loops."""
    request_maintenance_stop()
    return {"stopped": True}


@router.post("/sweep")
async def sweep_image_cache(cache: DerivativeCache = Depends(get_image_cache)) -> Dict[str, Any]:
    """Run the derivative expiry sweep now."""
    report = await asyncio.to_thread(cache.sweep)
    return {
        "expired_entries": report.expired_entries,
        "orphan_files": report.orphan_files,
        "pruned_jobs": report.pruned_jobs,
        "errors": report.errors,
    }


@router.post("/rebuild")
async def request_rebuild(
    background_tasks: BackgroundTasks,
    rebuilder: RebuildCoalescer = Depends(get_rebuilder),
) -> Dict[str, Any]:
    """Queue a coalesced site rebuild."""
    background_tasks.add_task(rebuilder.trigger)
    return {"queued": True, **rebuilder.status()}


@router.post("/housekeeping")
async def run_housekeeping(library: FolderLibrary = Depends(get_library)) -> Dict[str, Any]:
    """Drop records and post files for folders that no longer exist."""
    records, posts = await asyncio.to_thread(library.housekeeping)
    return {"removed_records": records, "removed_posts": posts}


@router.post("/scan")
async def run_scan(background_tasks: BackgroundTasks, library: FolderLibrary = Depends(get_library)) -> Dict[str, Any]:
    """Rescan the watched folder in the background."""
    background_tasks.add_task(library.init_scan)
    return {"queued": True}
