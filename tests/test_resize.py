"""
Tests for the Pillow resizer.
"""

import pytest
from PIL import Image

from gallery.core.errors import DecodeError, WriteError
from gallery.core.resize import probe_width, resize_image


class TestResizeImage:
    def test_keeps_aspect_ratio(self, tmp_path, make_image):
        src = make_image(tmp_path / "src.jpg", 800, 600)
        dest = tmp_path / "out" / "dest.jpg"

        assert resize_image(src, dest, 200) == dest
        with Image.open(dest) as im:
            assert im.size == (200, 150)
        assert not list(dest.parent.glob("*.partial*"))

    def test_height_never_zero(self, tmp_path, make_image):
        src = make_image(tmp_path / "strip.png", 1000, 2)
        dest = tmp_path / "strip_10.png"
        resize_image(src, dest, 10)
        with Image.open(dest) as im:
            assert im.size == (10, 1)

    def test_does_not_upscale(self, tmp_path, make_image):
        src = make_image(tmp_path / "small.jpg", 100, 80)
        dest = tmp_path / "small_200.jpg"
        assert resize_image(src, dest, 200) is None
        assert resize_image(src, dest, 100) is None
        assert not dest.exists()

    def test_rgba_to_jpeg(self, tmp_path, make_image):
        src = make_image(tmp_path / "alpha.png", 400, 400, color=(0, 0, 0, 0), mode="RGBA")
        dest = tmp_path / "alpha_100.jpg"
        resize_image(src, dest, 100)
        with Image.open(dest) as im:
            assert im.mode == "RGB"

    def test_palette_image(self, tmp_path):
        src = tmp_path / "pal.gif"
        Image.new("P", (300, 300), 3).save(src)
        dest = tmp_path / "pal_30.gif"
        resize_image(src, dest, 30)
        with Image.open(dest) as im:
            assert im.width == 30

    def test_corrupt_source(self, tmp_path):
        src = tmp_path / "broken.jpg"
        src.write_bytes(b"not really a jpeg")
        with pytest.raises(DecodeError):
            resize_image(src, tmp_path / "broken_10.jpg", 10)

    def test_unwritable_destination(self, tmp_path, make_image):
        src = make_image(tmp_path / "src.jpg", 400, 300)
        blocker = tmp_path / "blocker"
        blocker.write_text("file, not a directory")
        with pytest.raises(WriteError):
            resize_image(src, blocker / "dest.jpg", 100)


class TestProbeWidth:
    def test_reads_width(self, tmp_path, make_image):
        assert probe_width(make_image(tmp_path / "a.png", 321, 10)) == 321

    def test_missing_file(self, tmp_path):
        with pytest.raises(DecodeError):
            probe_width(tmp_path / "missing.jpg")
