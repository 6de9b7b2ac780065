"""
Watches the media root and syncs folders once they have been idle.
"""
from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Dict, Optional, Union

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .library import FolderLibrary

logger = logging.getLogger(__name__)


class FolderEventHandler(FileSystemEventHandler):
    """Debounces filesystem events per folder; a folder is ready once quiet."""

    def __init__(self, library: FolderLibrary, idle_seconds: float = 60.0):
        self.library = library
        self.idle_seconds = idle_seconds
        self._timers: Dict[Path, threading.Timer] = {}
        self._lock = threading.Lock()

    def _folder_of(self, event_path: Union[str, bytes], is_directory: bool) -> Optional[Path]:
        path = Path(event_path.decode() if isinstance(event_path, bytes) else event_path)
        folder = path if is_directory else path.parent
        root = self.library.root
        if folder == root or root not in folder.parents:
            return None
        return folder

    def schedule(self, folder: Path) -> None:
        with self._lock:
            timer = self._timers.pop(folder, None)
            if timer:
                timer.cancel()
            timer = threading.Timer(self.idle_seconds, self._folder_ready, args=(folder,))
            timer.daemon = True
            self._timers[folder] = timer
            timer.start()

    def _folder_ready(self, folder: Path) -> None:
        with self._lock:
            current = self._timers.get(folder)
            if current is not None and current is threading.current_thread():
                del self._timers[folder]
        try:
            outcome = self.library.sync_folder(folder)
            logger.info("[watcher] %s: %s", folder, outcome)
        except Exception as exc:
            logger.error("[watcher] failed to sync %s: %s", folder, exc)

    def pending(self) -> int:
        with self._lock:
            return len(self._timers)

    def cancel_all(self) -> None:
        with self._lock:
            for timer in self._timers.values():
                timer.cancel()
            self._timers.clear()

    # watchdog callbacks

    def on_created(self, event: FileSystemEvent) -> None:
        folder = self._folder_of(event.src_path, event.is_directory)
        if folder is not None:
            if event.is_directory:
                logger.debug("[watcher] new directory detected: %s", folder)
            self.schedule(folder)

    def on_modified(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        folder = self._folder_of(event.src_path, False)
        if folder is not None:
            self.schedule(folder)

    def on_deleted(self, event: FileSystemEvent) -> None:
        folder = self._folder_of(event.src_path, event.is_directory)
        if folder is None:
            return
        if event.is_directory:
            logger.info("[watcher] deletion of directory detected: %s", folder)
            with self._lock:
                timer = self._timers.pop(folder, None)
                if timer:
                    timer.cancel()
            self.library.handle_deleted_folder(folder)
        else:
            self.schedule(folder)

    def on_moved(self, event: FileSystemEvent) -> None:
        src_folder = self._folder_of(event.src_path, event.is_directory)
        if src_folder is not None:
            if event.is_directory:
                logger.info("[watcher] rename detected: %s", src_folder)
                self.library.handle_deleted_folder(src_folder)
            else:
                self.schedule(src_folder)
        dest_folder = self._folder_of(getattr(event, "dest_path", "") or "", event.is_directory)
        if dest_folder is not None:
            self.schedule(dest_folder)


class FolderWatcher:
    def __init__(self, library: FolderLibrary, idle_seconds: float = 60.0):
        self.library = library
        self.handler = FolderEventHandler(library, idle_seconds=idle_seconds)
        self._observer: Optional[Observer] = None

    def start(self) -> None:
        if self._observer is not None:
            return
        self.library.root.mkdir(parents=True, exist_ok=True)
        observer = Observer()
        observer.schedule(self.handler, str(self.library.root), recursive=True)
        observer.daemon = True
        observer.start()
        self._observer = observer
        logger.info("[watcher] watching %s", self.library.root)

    def stop(self) -> None:
        self.handler.cancel_all()
        if self._observer is None:
            return
        self._observer.stop()
        self._observer.join(timeout=5)
        self._observer = None
        logger.info("[watcher] stopped")

    @property
    def running(self) -> bool:
        return self._observer is not None
