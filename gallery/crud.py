"""
Folder -> post metadata store using SQLModel.
"""

import json
import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

from sqlalchemy.engine import Engine
from sqlmodel import select

from .core.db import create_db_and_tables, get_session
from .core.time_utils import utc_now
from .models.base import Post

logger = logging.getLogger(__name__)


def _tags_to_text(tags: Iterable[str]) -> str:
    return json.dumps(list(tags or []), ensure_ascii=False)


def tags_from_text(text: Optional[str]) -> List[str]:
    if not text:
        return []
    try:
        value = json.loads(text)
    except json.JSONDecodeError:
        logger.warning("[store] invalid tag payload %r", text)
        return []
    return [str(tag) for tag in value] if isinstance(value, list) else []


class PostStore:
    """Key/value table: folder fingerprint -> relative path, file count, tags."""

    def __init__(self, root: Union[str, Path], engine: Optional[Engine] = None):
        self.root = Path(root)
        self.engine = engine
        # SQLite allows one writer; serialize writes from watcher and scan threads.
        self._write_lock = threading.Lock()

    def create_tables(self) -> None:
        create_db_and_tables(self.engine)

    def get_post(self, folder_id: str) -> Optional[Post]:
        if not folder_id:
            return None
        with get_session(self.engine) as session:
            return session.get(Post, folder_id)

    def resolve_folder(self, folder_id: str) -> Optional[Path]:
        """Real path of the folder behind ``folder_id``, or None if unknown."""
        post = self.get_post(folder_id)
        if post is None:
            return None
        return self.root / post.rel_path

    def file_count(self, folder_id: str) -> int:
        post = self.get_post(folder_id)
        return post.n_file if post else 0

    def record_folder(
        self,
        folder_id: str,
        rel_path: str,
        file_count: int,
        tags: Iterable[str],
        post_filename: Optional[str] = None,
        categories: Iterable[str] = (),
        created_at: Optional[datetime] = None,
    ) -> Post:
        with self._write_lock, get_session(self.engine) as session:
            post = session.get(Post, folder_id)
            if post is None:
                post = Post(folder_sha=folder_id, post_filename=post_filename or f"{folder_id}.md", rel_path=rel_path)
            post.post_filename = post_filename or post.post_filename
            post.rel_path = rel_path
            post.n_file = file_count
            post.tags = _tags_to_text(tags)
            post.categories = "/".join(categories or [])
            post.created_at = created_at or post.created_at or utc_now()
            post.updated_at = utc_now()
            session.add(post)
            session.commit()
            session.refresh(post)
            return post

    def update_file_count(self, folder_id: str, file_count: int, modified_at: Optional[datetime] = None) -> bool:
        with self._write_lock, get_session(self.engine) as session:
            post = session.get(Post, folder_id)
            if post is None:
                return False
            post.n_file = file_count
            if modified_at is not None:
                post.created_at = modified_at
            post.updated_at = utc_now()
            session.add(post)
            session.commit()
            return True

    def remove_folder(self, folder_id: str) -> Optional[Post]:
        with self._write_lock, get_session(self.engine) as session:
            post = session.get(Post, folder_id)
            if post is None:
                return None
            session.delete(post)
            session.commit()
            return post

    def list_posts(self) -> List[Post]:
        with get_session(self.engine) as session:
            return list(session.exec(select(Post).order_by(Post.rel_path)).all())

    def folder_map(self) -> Dict[str, str]:
        """All folder ids mapped to their relative paths."""
        return {post.folder_sha: post.rel_path for post in self.list_posts()}
