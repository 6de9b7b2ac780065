"""
Maintenance API: background loop control, cache/library actions and logs.
"""

import asyncio
from typing import Any, Dict

from fastapi import APIRouter, Depends

from ...core.image_cache import DerivativeCache
from ...crud import PostStore
from ...dependencies import get_image_cache, get_post_store
from .control import router as control_router
from .logs import router as logs_router

maintenance_router = APIRouter(prefix="/maintenance", tags=["maintenance"])
maintenance_router.include_router(control_router)
maintenance_router.include_router(logs_router)


@maintenance_router.get("/dashboard")
async def get_dashboard_stats(
    cache: DerivativeCache = Depends(get_image_cache),
    store: PostStore = Depends(get_post_store),
) -> Dict[str, Any]:
    """Post and image cache counters."""
    posts = await asyncio.to_thread(store.list_posts)
    return {
        "posts_total": len(posts),
        "media_files_total": sum(post.n_file for post in posts),
        "image_cache": cache.stats(),
    }


# Export for main.py
__all__ = ["maintenance_router"]
