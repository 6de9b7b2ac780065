from pathlib import Path
from typing import List, Optional

from pydantic_settings import BaseSettings


def _split_list(value: str) -> List[str]:
    return [item.strip().lower() for item in (value or "").split(",") if item.strip()]


class Settings(BaseSettings):
    # Load env from .env file
    model_config = {"env_file": ".env", "extra": "ignore"}

    # Folders
    WATCH_DIR: str = "photos"
    CONTENT_DIR: str = "content"
    SITE_SOURCE_DIR: str = "."
    SITE_OUT_DIR: str = "public"
    POST_TEMPLATE: Optional[str] = None  # Jinja2 archetype, built-in default if unset

    # Media types (comma separated, with leading dot)
    PHOTO_EXTS: str = ".jpg,.jpeg,.png,.gif,.webp"
    VIDEO_EXTS: str = ".mp4,.mov,.webm,.m4v"

    # Server
    HTTP_HOST: str = "0.0.0.0"
    HTTP_PORT: int = 8080

    # Database
    DATABASE_URL: str = "sqlite:///gallery.db"

    # Site builder
    BUILDER_PATH: str = "hugo"
    REBUILD_SETTLE_SECONDS: float = 5.0
    REBUILD_MAX_WAIT_SECONDS: float = 120.0
    REBUILD_TIMEOUT_SECONDS: int = 600

    # Image derivative cache
    IMAGE_CACHE_DIR: str = "cache/images"
    IMAGE_CACHE_EXPIRATION_MINUTES: int = 7 * 24 * 60
    IMAGE_CACHE_SWEEP_INTERVAL_MINUTES: int = 10
    IMAGE_CACHE_SAVE_INTERVAL_MINUTES: int = 10
    MAX_CONCURRENT_RESIZES: int = 10
    RESIZE_JOB_GRACE_SECONDS: float = 2.0
    RESIZE_JOIN_TIMEOUT_SECONDS: float = 0.0
    RETRY_AFTER_SECONDS: int = 5

    # Watcher / library
    WATCH_ENABLED: bool = True
    INIT_SCAN_ON_STARTUP: bool = True
    FOLDER_IDLE_SECONDS: float = 60.0
    HOUSEKEEPING_INTERVAL_MINUTES: int = 60
    MAINTENANCE_ENABLED: bool = True
    TAG_EXTRA_WORDS: str = ""

    VERBOSE: bool = False

    @property
    def photo_extensions(self) -> List[str]:
        return _split_list(self.PHOTO_EXTS)

    @property
    def video_extensions(self) -> List[str]:
        return _split_list(self.VIDEO_EXTS)

    @property
    def tag_extra_words(self) -> List[str]:
        return [word.strip() for word in self.TAG_EXTRA_WORDS.split(",") if word.strip()]

    @property
    def watch_path(self) -> Path:
        return Path(self.WATCH_DIR)

    @property
    def image_cache_expiration_seconds(self) -> float:
        return self.IMAGE_CACHE_EXPIRATION_MINUTES * 60.0


# Instantiate settings
settings = Settings()
