import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles

from .api.images import router as images_router
from .api.maintenance import maintenance_router
from .api.routes_health import router as health_router
from .core.config import settings
from .core.log_buffer import install_log_buffer
from .core.maintenance import (
    request_maintenance_stop,
    start_maintenance_background,
)
from .dependencies import (
    get_image_cache,
    get_library,
    get_post_store,
    get_watcher,
    shutdown_services,
)

logger = logging.getLogger(__name__)


async def _wait_init_scan(app: FastAPI) -> None:
    # The scan thread uses the cache and tagger; let it finish before they close.
    scan = getattr(app.state, "init_scan", None)
    if scan is None:
        return
    app.state.init_scan = None
    try:
        await scan
    except Exception as exc:
        logger.error("[server] initial scan failed: %s", exc)


@asynccontextmanager
async def lifespan(app: FastAPI):
    install_log_buffer(settings.VERBOSE)
    Path(settings.SITE_OUT_DIR).mkdir(parents=True, exist_ok=True)
    # Create tables if they don't exist
    get_post_store().create_tables()
    library = get_library()
    cache = get_image_cache()

    if settings.INIT_SCAN_ON_STARTUP:
        app.state.init_scan = asyncio.create_task(asyncio.to_thread(library.init_scan))
    if settings.WATCH_ENABLED:
        get_watcher().start()
    if settings.MAINTENANCE_ENABLED:
        start_maintenance_background(
            cache,
            library,
            sweep_interval_seconds=settings.IMAGE_CACHE_SWEEP_INTERVAL_MINUTES * 60,
            housekeeping_interval_seconds=settings.HOUSEKEEPING_INTERVAL_MINUTES * 60,
            delay_seconds=settings.IMAGE_CACHE_SWEEP_INTERVAL_MINUTES * 60,
        )
    logger.info("[server] serving %s on %s:%s", settings.SITE_OUT_DIR, settings.HTTP_HOST, settings.HTTP_PORT)
    try:
        yield
    finally:
        request_maintenance_stop()
        await _wait_init_scan(app)
        await asyncio.to_thread(shutdown_services)


app = FastAPI(title="Folder Gallery", description="Folder-to-post photo gallery server", lifespan=lifespan)

app.include_router(health_router)
app.include_router(images_router)
app.include_router(maintenance_router)

# Generated site; registered last so the API routes win.
app.mount("/", StaticFiles(directory=settings.SITE_OUT_DIR, html=True, check_dir=False), name="site")
