"""
Process-wide service objects and their FastAPI dependency getters.

Each service is built on first use from ``settings`` and torn down by
``shutdown_services()``. Tests swap them through ``app.dependency_overrides``.
"""
import logging
import threading
from pathlib import Path
from typing import Optional

from .core.config import settings
from .core.image_cache import DerivativeCache
from .core.posts import PostWriter
from .core.rebuild import RebuildCoalescer, SiteBuilder
from .core.tags import DEFAULT_EXTRA_WORDS, TagExtractor
from .crud import PostStore
from .services.library import FolderLibrary
from .services.watcher import FolderWatcher

logger = logging.getLogger(__name__)

_lock = threading.RLock()
_post_store: Optional[PostStore] = None
_image_cache: Optional[DerivativeCache] = None
_rebuilder: Optional[RebuildCoalescer] = None
_tagger: Optional[TagExtractor] = None
_library: Optional[FolderLibrary] = None
_watcher: Optional[FolderWatcher] = None


def media_root() -> Path:
    return settings.watch_path.resolve()


def get_post_store() -> PostStore:
    global _post_store
    with _lock:
        if _post_store is None:
            _post_store = PostStore(media_root())
        return _post_store


def get_image_cache() -> DerivativeCache:
    global _image_cache
    with _lock:
        if _image_cache is None:
            _image_cache = DerivativeCache(
                settings.IMAGE_CACHE_DIR,
                expiration_seconds=settings.image_cache_expiration_seconds,
                max_concurrent=settings.MAX_CONCURRENT_RESIZES,
                source_root=media_root(),
                job_grace_seconds=settings.RESIZE_JOB_GRACE_SECONDS,
                join_timeout_seconds=settings.RESIZE_JOIN_TIMEOUT_SECONDS,
                save_interval_seconds=settings.IMAGE_CACHE_SAVE_INTERVAL_MINUTES * 60,
            )
        return _image_cache


def get_rebuilder() -> RebuildCoalescer:
    global _rebuilder
    with _lock:
        if _rebuilder is None:
            builder = SiteBuilder(
                settings.BUILDER_PATH,
                settings.SITE_SOURCE_DIR,
                settings.SITE_OUT_DIR,
                timeout_seconds=settings.REBUILD_TIMEOUT_SECONDS,
            )
            _rebuilder = RebuildCoalescer(
                builder,
                settle_seconds=settings.REBUILD_SETTLE_SECONDS,
                max_wait_seconds=settings.REBUILD_MAX_WAIT_SECONDS,
            )
        return _rebuilder


def get_tag_extractor() -> TagExtractor:
    global _tagger
    with _lock:
        if _tagger is None:
            _tagger = TagExtractor([*DEFAULT_EXTRA_WORDS, *settings.tag_extra_words])
        return _tagger


def get_library() -> FolderLibrary:
    global _library
    with _lock:
        if _library is None:
            _library = FolderLibrary(
                media_root(),
                get_post_store(),
                PostWriter(settings.CONTENT_DIR, settings.POST_TEMPLATE),
                get_tag_extractor(),
                rebuilder=get_rebuilder(),
                photo_exts=settings.photo_extensions,
                video_exts=settings.video_extensions,
            )
        return _library


def get_watcher() -> FolderWatcher:
    global _watcher
    with _lock:
        if _watcher is None:
            _watcher = FolderWatcher(get_library(), idle_seconds=settings.FOLDER_IDLE_SECONDS)
        return _watcher


def shutdown_services() -> None:
    global _image_cache, _tagger, _watcher, _library
    with _lock:
        if _watcher is not None:
            _watcher.stop()
            _watcher = None
        if _image_cache is not None:
            _image_cache.close()
            _image_cache = None
        if _tagger is not None:
            _tagger.close()
            _tagger = None
        _library = None
    logger.info("[services] shut down")
