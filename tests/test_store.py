"""
Tests for the folder -> post metadata store.
"""

from datetime import datetime

from gallery.crud import tags_from_text


class TestPostStore:
    def test_record_and_get(self, store):
        store.record_folder("abc", "2024/trip", 3, ["海边", "trip"], categories=["2024"])
        post = store.get_post("abc")
        assert post.rel_path == "2024/trip"
        assert post.n_file == 3
        assert post.post_filename == "abc.md"
        assert post.categories == "2024"
        assert tags_from_text(post.tags) == ["海边", "trip"]

    def test_record_is_upsert(self, store):
        store.record_folder("abc", "old", 1, [])
        store.record_folder("abc", "new", 5, ["x"], post_filename="abc.md")
        assert len(store.list_posts()) == 1
        assert store.get_post("abc").rel_path == "new"
        assert store.file_count("abc") == 5

    def test_resolve_folder(self, store, media_root):
        store.record_folder("abc", "a/b", 1, [])
        assert store.resolve_folder("abc") == media_root / "a" / "b"
        assert store.resolve_folder("missing") is None
        assert store.resolve_folder("") is None

    def test_update_file_count(self, store):
        store.record_folder("abc", "a", 1, [])
        stamp = datetime(2020, 1, 2, 3, 4, 5)
        assert store.update_file_count("abc", 7, modified_at=stamp) is True
        post = store.get_post("abc")
        assert post.n_file == 7
        assert post.created_at == stamp
        assert post.updated_at is not None
        assert store.update_file_count("missing", 1) is False

    def test_remove_folder(self, store):
        store.record_folder("abc", "a", 1, [])
        removed = store.remove_folder("abc")
        assert removed.folder_sha == "abc"
        assert store.get_post("abc") is None
        assert store.remove_folder("abc") is None
        assert store.file_count("abc") == 0

    def test_folder_map(self, store):
        store.record_folder("one", "b", 1, [])
        store.record_folder("two", "a", 1, [])
        assert store.folder_map() == {"one": "b", "two": "a"}
        assert [p.rel_path for p in store.list_posts()] == ["a", "b"]


class TestTagText:
    def test_invalid_payloads(self):
        assert tags_from_text(None) == []
        assert tags_from_text("") == []
        assert tags_from_text("{broken") == []
        assert tags_from_text('{"a": 1}') == []
