from gallery.core.config import Settings


def test_defaults(monkeypatch):
    monkeypatch.delenv("WATCH_DIR", raising=False)
    s = Settings(_env_file=None)
    assert s.MAX_CONCURRENT_RESIZES == 10
    assert s.image_cache_expiration_seconds == 7 * 24 * 3600
    assert ".jpg" in s.photo_extensions


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("PHOTO_EXTS", ".JPG, .Png ,")
    monkeypatch.setenv("TAG_EXTRA_WORDS", "海边假日, 夏夏子")
    monkeypatch.setenv("MAX_CONCURRENT_RESIZES", "3")
    s = Settings(_env_file=None)
    assert s.photo_extensions == [".jpg", ".png"]
    assert s.tag_extra_words == ["海边假日", "夏夏子"]
    assert s.MAX_CONCURRENT_RESIZES == 3
