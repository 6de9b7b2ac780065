"""
In-memory ring buffer of recent log records, served by /maintenance/logs.
"""
from __future__ import annotations

import logging
import re
import threading
import traceback
from collections import deque
from datetime import datetime, timezone
from typing import Deque, Dict, Iterable, List, Optional, Tuple

BUFFER_SIZE = 2000

GALLERY_LOGGERS = (
    "gallery.core.image_cache",
    "gallery.core.maintenance",
    "gallery.core.rebuild",
    "gallery.services.library",
    "gallery.services.watcher",
    "gallery.api.images",
)

_COMPONENT = re.compile(r"^\[([\w.-]+)\]\s*")

LogEntry = Dict[str, object]


class LogBuffer:
    """Bounded list of formatted records with increasing ids."""

    def __init__(self, size: int = BUFFER_SIZE):
        self._entries: Deque[LogEntry] = deque(maxlen=size)
        self._lock = threading.Lock()
        self._next_id = 1

    def append(self, record: logging.LogRecord) -> None:
        message = record.getMessage()
        if record.exc_info:
            message = f"{message}\n{''.join(traceback.format_exception(*record.exc_info))}".rstrip()
        match = _COMPONENT.match(message)
        ts = datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat()
        with self._lock:
            self._entries.append({
                "id": self._next_id,
                "ts": ts,
                "level": record.levelname,
                "levelno": record.levelno,
                "logger": record.name,
                "component": match.group(1) if match else None,
                "message": message,
                "line": f"{ts} {record.levelname} {record.name}: {message}",
            })
            self._next_id += 1

    def query(
        self,
        since_id: Optional[int] = None,
        limit: int = 0,
        min_level: Optional[str] = None,
        logger_prefixes: Iterable[str] = (),
    ) -> Tuple[List[LogEntry], Optional[int]]:
        with self._lock:
            items = list(self._entries)
            newest = int(items[-1]["id"]) if items else None
        if since_id is not None:
            items = [entry for entry in items if int(entry["id"]) > since_id]
        if min_level:
            threshold = logging.getLevelName(min_level.upper())
            if isinstance(threshold, int):
                items = [entry for entry in items if int(entry["levelno"]) >= threshold]
        prefixes = tuple(logger_prefixes)
        if prefixes:
            items = [entry for entry in items if str(entry["logger"]).startswith(prefixes)]
        if limit and len(items) > limit:
            items = items[-limit:]
        return items, (int(items[-1]["id"]) if items else newest)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._next_id = 1


class LogBufferHandler(logging.Handler):
    def __init__(self, buffer: LogBuffer, level: int = logging.INFO):
        super().__init__(level)
        self.buffer = buffer

    def emit(self, record: logging.LogRecord) -> None:
        if record.name == "uvicorn.access":
            return
        try:
            self.buffer.append(record)
        except Exception:
            self.handleError(record)


log_buffer = LogBuffer()
_handler: Optional[LogBufferHandler] = None


def install_log_buffer(verbose: bool = False) -> None:
    """Attach the buffer to the root and uvicorn loggers; idempotent."""
    global _handler
    if _handler is not None:
        return
    level = logging.DEBUG if verbose else logging.INFO
    _handler = LogBufferHandler(log_buffer, level)
    # uvicorn loggers do not propagate to root.
    for name in ("", "uvicorn", "uvicorn.error"):
        logging.getLogger(name).addHandler(_handler)
    for name in GALLERY_LOGGERS:
        gallery_logger = logging.getLogger(name)
        if verbose or gallery_logger.getEffectiveLevel() > level:
            gallery_logger.setLevel(level)


def get_log_entries(
    since_id: Optional[int],
    limit: int,
    min_level: Optional[str] = None,
    logger_prefixes: Iterable[str] = (),
) -> Tuple[List[LogEntry], Optional[int]]:
    return log_buffer.query(since_id, limit, min_level=min_level, logger_prefixes=logger_prefixes)


def clear_log_entries() -> None:
    log_buffer.clear()
