"""
Shared fixtures: temporary media tree, image factory and an isolated store.
"""

from pathlib import Path

import pytest
from PIL import Image

from gallery.core.db import build_engine
from gallery.crud import PostStore


@pytest.fixture
def media_root(tmp_path):
    root = tmp_path / "photos"
    root.mkdir()
    return root


@pytest.fixture
def make_image():
    """Write a solid-colour image of the given size and return its path."""
    def _make(path: Path, width: int = 800, height: int = 600, color=(200, 40, 40), mode: str = "RGB") -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        Image.new(mode, (width, height), color).save(path)
        return path
    return _make


@pytest.fixture
def store(tmp_path, media_root):
    engine = build_engine(f"sqlite:///{tmp_path / 'gallery.db'}")
    post_store = PostStore(media_root, engine=engine)
    post_store.create_tables()
    yield post_store
    engine.dispose()
