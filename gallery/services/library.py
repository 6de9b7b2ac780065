"""
Folder library: keeps posts and the metadata store in step with the
watched media folders.
"""
from __future__ import annotations

import hashlib
import logging
import os
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path, PurePath
from typing import Iterable, Iterator, List, Optional, Tuple, Union

from ..core.posts import PostContent, PostWriter
from ..core.rebuild import RebuildCoalescer
from ..core.tags import TagExtractor
from ..core.time_utils import file_mtime
from ..crud import PostStore

logger = logging.getLogger(__name__)


@dataclass
class ScanSummary:
    folders_seen: int = 0
    created: int = 0
    updated: int = 0
    removed: int = 0
    unchanged: int = 0
    elapsed_seconds: float = 0.0


def folder_fingerprint(rel_path: Union[str, PurePath]) -> str:
    """Stable folder id: SHA-1 of the path relative to the watched root."""
    normalized = PurePath(rel_path).as_posix()
    return hashlib.sha1(normalized.encode("utf-8")).hexdigest()


def categories_for(rel_path: Union[str, PurePath]) -> List[str]:
    parent = PurePath(rel_path).parent
    if str(parent) in (".", ""):
        return []
    return list(parent.parts)


class FolderLibrary:
    def __init__(
        self,
        root: Union[str, Path],
        store: PostStore,
        writer: PostWriter,
        tagger: TagExtractor,
        rebuilder: Optional[RebuildCoalescer] = None,
        photo_exts: Iterable[str] = (".jpg", ".jpeg", ".png"),
        video_exts: Iterable[str] = (".mp4",),
        workers: Optional[int] = None,
    ):
        self.root = Path(root)
        self.store = store
        self.writer = writer
        self.tagger = tagger
        self.rebuilder = rebuilder
        self.photo_exts = {ext.lower() for ext in photo_exts}
        self.video_exts = {ext.lower() for ext in video_exts}
        self.workers = workers or os.cpu_count() or 4

    # -------------------------------------------------------------- helpers

    def relative(self, path: Union[str, Path]) -> str:
        return Path(path).relative_to(self.root).as_posix()

    def folder_id(self, path: Union[str, Path]) -> str:
        return folder_fingerprint(self.relative(path))

    def scan_media(self, path: Union[str, Path]) -> Tuple[List[str], List[str]]:
        """Images and videos directly inside ``path``, sorted by name."""
        images: List[str] = []
        videos: List[str] = []
        with os.scandir(path) as entries:
            for entry in entries:
                if not entry.is_file():
                    continue
                ext = os.path.splitext(entry.name)[1].lower()
                if ext in self.photo_exts:
                    images.append(entry.name)
                elif ext in self.video_exts:
                    videos.append(entry.name)
        return sorted(images), sorted(videos)

    def iter_folders(self) -> Iterator[Path]:
        for dirpath, dirnames, _ in os.walk(self.root):
            dirnames.sort()
            for name in dirnames:
                yield Path(dirpath) / name

    def request_rebuild(self) -> None:
        if self.rebuilder is not None:
            self.rebuilder.trigger()

    def _content_for(self, path: Path, images: List[str], videos: List[str]) -> PostContent:
        rel_path = self.relative(path)
        categories = categories_for(rel_path)
        return PostContent(
            folder_id=folder_fingerprint(rel_path),
            title=path.name,
            date=file_mtime(path),
            images=images,
            videos=videos,
            categories=categories,
            tags=self.tagger.extract(categories, path.name),
        )

    # ----------------------------------------------------------- operations

    def handle_new_folder(
        self,
        path: Union[str, Path],
        rebuild: bool = True,
        media: Optional[Tuple[List[str], List[str]]] = None,
    ) -> bool:
        """Create the post and store record for a folder. Returns True if written."""
        path = Path(path)
        try:
            images, videos = media if media is not None else self.scan_media(path)
        except OSError as exc:
            logger.error("[library] error reading folder %s: %s", path, exc)
            return False
        if not images and not videos:
            logger.debug("[library] no media files found in %s, skipping", path)
            return False

        content = self._content_for(path, images, videos)
        logger.info("[library] generating post %s.md for %s", content.folder_id, path)
        post_path = self.writer.write(content)
        if post_path is None:
            return False
        self.store.record_folder(
            content.folder_id,
            self.relative(path),
            len(images) + len(videos),
            content.tags,
            post_filename=post_path.name,
            categories=content.categories,
            created_at=content.date,
        )
        if rebuild:
            self.request_rebuild()
        return True

    def update_folder(
        self,
        path: Union[str, Path],
        media: Optional[Tuple[List[str], List[str]]] = None,
        rebuild: bool = True,
    ) -> bool:
        """Rewrite an existing folder's post, dropping it when no media is left."""
        path = Path(path)
        try:
            images, videos = media if media is not None else self.scan_media(path)
        except OSError as exc:
            logger.error("[library] error reading folder %s: %s", path, exc)
            return False

        folder_id = self.folder_id(path)
        total = len(images) + len(videos)
        if total == 0:
            self.writer.remove(folder_id)
            self.store.remove_folder(folder_id)
            logger.info("[library] no media files left in %s, removed post and record", path)
        else:
            content = self._content_for(path, images, videos)
            if self.writer.write(content) is None:
                return False
            self.store.update_file_count(folder_id, total, modified_at=content.date)
        if rebuild:
            self.request_rebuild()
        return True

    def sync_folder(self, path: Union[str, Path], rebuild: bool = True) -> str:
        """Bring one folder up to date. Returns 'created', 'updated', 'removed' or 'unchanged'."""
        path = Path(path)
        if not path.is_dir():
            return "removed" if self.handle_deleted_folder(path, rebuild=rebuild) else "unchanged"
        try:
            media = self.scan_media(path)
        except OSError as exc:
            logger.error("[library] error reading folder %s: %s", path, exc)
            return "unchanged"

        folder_id = self.folder_id(path)
        total = len(media[0]) + len(media[1])
        post = self.store.get_post(folder_id)
        if post is None:
            return "created" if self.handle_new_folder(path, rebuild=rebuild, media=media) else "unchanged"
        if post.n_file == total and self.writer.post_path(folder_id).exists():
            return "unchanged"
        self.update_folder(path, media=media, rebuild=rebuild)
        return "removed" if total == 0 else "updated"

    def handle_deleted_folder(self, path: Union[str, Path], rebuild: bool = True) -> bool:
        try:
            folder_id = self.folder_id(path)
        except ValueError:
            return False
        removed_post = self.writer.remove(folder_id)
        removed_record = self.store.remove_folder(folder_id) is not None
        if not (removed_post or removed_record):
            return False
        logger.info("[library] removed post for deleted folder %s", path)
        if rebuild:
            self.request_rebuild()
        return True

    def init_scan(self, rebuild: bool = True) -> ScanSummary:
        """Walk the watched root and create or refresh posts for every folder."""
        start = time.monotonic()
        summary = ScanSummary()
        logger.info("[library] initializing posts by scanning %s", self.root)

        with ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="scan") as pool:
            for outcome in pool.map(lambda p: self.sync_folder(p, rebuild=False), self.iter_folders()):
                summary.folders_seen += 1
                if outcome == "created":
                    summary.created += 1
                elif outcome == "updated":
                    summary.updated += 1
                elif outcome == "removed":
                    summary.removed += 1
                else:
                    summary.unchanged += 1

        summary.elapsed_seconds = time.monotonic() - start
        logger.info(
            "[library] scan finished: %d folders, %d created, %d updated, %d removed in %.1fs",
            summary.folders_seen,
            summary.created,
            summary.updated,
            summary.removed,
            summary.elapsed_seconds,
        )
        if rebuild and (summary.created or summary.updated or summary.removed):
            self.request_rebuild()
        return summary

    def housekeeping(self, rebuild: bool = True) -> Tuple[int, int]:
        """Drop records of vanished folders and post files without a record."""
        removed_records = 0
        known = set()
        for post in self.store.list_posts():
            if (self.root / post.rel_path).is_dir():
                known.add(post.folder_sha)
                continue
            logger.info("[library] folder %s no longer exists, removing record", post.rel_path)
            self.store.remove_folder(post.folder_sha)
            self.writer.remove(post.folder_sha)
            removed_records += 1

        removed_posts = 0
        for folder_id in self.writer.existing_ids():
            if folder_id not in known:
                logger.info("[library] removing orphaned post file %s.md", folder_id)
                if self.writer.remove(folder_id):
                    removed_posts += 1

        if rebuild and (removed_records or removed_posts):
            self.request_rebuild()
        return removed_records, removed_posts
