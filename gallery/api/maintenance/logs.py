"""
Maintenance logs endpoints.
"""

from typing import Any, Dict

from fastapi import APIRouter, Query

from ...core.log_buffer import clear_log_entries, get_log_entries

router = APIRouter(prefix="/logs", tags=["maintenance"])

_SCOPE_PREFIXES = {
    "cache": ("gallery.core.image_cache", "gallery.api.images"),
    "library": ("gallery.services.library", "gallery.services.watcher", "gallery.core.rebuild"),
    "maintenance": ("gallery.core.maintenance",),
}


@router.get("")
@router.get("/")
async def get_maintenance_logs(
    since_id: int | None = Query(None, ge=0),
    limit: int = Query(200, ge=1, le=2000),
    scope: str = Query("all", pattern="^(all|cache|library|maintenance|errors)$"),
) -> Dict[str, Any]:
    """Get buffered log lines, optionally restricted to one area."""
    if scope == "errors":
        items, last_id = get_log_entries(since_id, limit, min_level="WARNING")
    elif scope in _SCOPE_PREFIXES:
        items, last_id = get_log_entries(since_id, limit, logger_prefixes=_SCOPE_PREFIXES[scope])
    else:
        items, last_id = get_log_entries(since_id, limit)
    return {"items": items, "last_id": last_id}


@router.delete("")
@router.post("/clear")
async def clear_maintenance_logs() -> Dict[str, Any]:
    """Clear buffered logs."""
    clear_log_entries()
    return {"cleared": True}
