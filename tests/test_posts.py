"""
Tests for markdown post rendering.
"""

from datetime import datetime

from gallery.core.posts import PostContent, PostWriter


def _content(**overrides):
    values = dict(
        folder_id="abc",
        title="Summer trip",
        date=datetime(2024, 7, 1, 12, 30, 0),
        images=["a b.jpg", "c.png"],
        videos=["clip.mp4"],
        categories=["2024"],
        tags=["2024", "夏天"],
    )
    values.update(overrides)
    return PostContent(**values)


class TestPostWriter:
    def test_default_template(self, tmp_path):
        writer = PostWriter(tmp_path)
        path = writer.write(_content())
        assert path == tmp_path / "post" / "abc.md"

        text = path.read_text(encoding="utf-8")
        assert text.startswith("---\n")
        assert "date: 2024-07-01T12:30:00" in text
        assert "/images/abc/a%20b.jpg" in text
        assert '<video controls preload="metadata" src="/images/abc/clip.mp4">' in text
        assert not list((tmp_path / "post").glob("*.tmp"))

    def test_custom_template(self, tmp_path):
        template = tmp_path / "archetype.md"
        template.write_text("{{ title }}|{{ images | length }}|{{ tags | join(',') }}", encoding="utf-8")
        writer = PostWriter(tmp_path / "content", template_path=template)
        path = writer.write(_content())
        assert path.read_text(encoding="utf-8") == "Summer trip|2|2024,夏天"

    def test_render_error_returns_none(self, tmp_path):
        template = tmp_path / "bad.md"
        template.write_text("{{ missing_field }}", encoding="utf-8")
        writer = PostWriter(tmp_path / "content", template_path=template)
        assert writer.write(_content()) is None
        assert writer.existing_ids() == []

    def test_remove_and_existing_ids(self, tmp_path):
        writer = PostWriter(tmp_path)
        writer.write(_content(folder_id="one"))
        writer.write(_content(folder_id="two"))
        assert sorted(writer.existing_ids()) == ["one", "two"]
        assert writer.remove("one") is True
        assert writer.remove("one") is False
        assert writer.existing_ids() == ["two"]
