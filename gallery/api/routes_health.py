from fastapi import APIRouter, Depends, status
import asyncio
from ..core.time_utils import utc_now

from ..core.db import get_session
from ..core.image_cache import DerivativeCache
from ..core.maintenance import maintenance_status
from ..core.rebuild import RebuildCoalescer
from ..crud import PostStore
from ..dependencies import get_image_cache, get_post_store, get_rebuilder
from sqlmodel import select
from ..models.base import Post

router = APIRouter()

# Last observed database state
api_status_cache = {
    'database': {
        'last_checked': None,
        'is_online': None,
        'last_error': None
    }
}


def check_database(store: PostStore) -> bool:
    """Check if database is available."""
    try:
        with get_session(store.engine) as session:
            # Simple query to test connectivity
            session.exec(select(Post).limit(1)).first()
            api_status_cache['database']['is_online'] = True
            api_status_cache['database']['last_error'] = None
            return True
    except Exception as e:
        api_status_cache['database']['is_online'] = False
        api_status_cache['database']['last_error'] = str(e)
        return False
    finally:
        api_status_cache['database']['last_checked'] = utc_now()


@router.get("/health", status_code=status.HTTP_200_OK)
async def health() -> dict:
    return {"status": "ok"}


@router.get("/health/detailed", status_code=status.HTTP_200_OK)
async def detailed_health(
    store: PostStore = Depends(get_post_store),
    cache: DerivativeCache = Depends(get_image_cache),
    rebuilder: RebuildCoalescer = Depends(get_rebuilder),
) -> dict:
    """Detailed health check with service status."""
    db_ok = await asyncio.to_thread(check_database, store)
    rebuild = rebuilder.status()

    system_status = "online"
    if not db_ok:
        system_status = "offline"
    elif rebuild.get("last_error"):
        system_status = "degraded"

    return {
        "status": system_status,
        "services": {
            "database": {
                "status": "online" if db_ok else "offline",
                "last_checked": api_status_cache['database']['last_checked'].isoformat() if api_status_cache['database']['last_checked'] else None,
                "last_error": api_status_cache['database']['last_error']
            },
            "image_cache": cache.stats(),
            "rebuild": rebuild,
            "maintenance": {"running": maintenance_status()},
        }
    }
