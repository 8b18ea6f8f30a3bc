"""
Tests for media discovery and naming helpers.
"""

from datetime import datetime, timezone

from framestore.models import MediaType
from framestore.storage import scanner


class TestMediaTypes:
    """Tests for extension classification."""

    def test_supported_extensions(self):
        assert scanner.is_supported_image("IMG_0001.JPG")
        assert scanner.is_supported_image("photo.heic")
        assert scanner.is_supported_video("clip.mov")
        assert scanner.is_supported_media("clip.webm")
        assert not scanner.is_supported_media("notes.txt")
        assert not scanner.is_supported_media("no_extension")

    def test_content_types(self):
        assert scanner.get_content_type("a.jpeg") == "image/jpeg"
        assert scanner.get_content_type("a.MOV") == "video/quicktime"
        assert scanner.get_content_type("a.xyz") == scanner.DEFAULT_CONTENT_TYPE

    def test_media_type(self):
        assert scanner.get_media_type("a.mp4") == MediaType.VIDEO
        assert scanner.get_media_type("a.png") == MediaType.PHOTO


class TestReservedDirectories:
    """Tests for reserved directory detection."""

    def test_file_inside_reserved_dir(self):
        assert scanner.is_in_reserved_dir(".thumbnails/a.jpg", [".thumbnails"])
        assert scanner.is_in_reserved_dir("2024/.cache/ab/cd/x.jpg", [".cache"])
        assert scanner.is_in_reserved_dir("2024\\.thumbnails\\a.jpg", [".thumbnails"])

    def test_file_named_like_reserved_dir(self):
        assert not scanner.is_in_reserved_dir("photos/.thumbnails", [".thumbnails"])
        assert not scanner.is_in_reserved_dir("a.jpg", [".thumbnails"])


class TestFilenames:
    """Tests for sanitizing and de-duplicating filenames."""

    def test_sanitize(self):
        assert scanner.sanitize_filename('bad:name?.jpg') == "bad_name_.jpg"
        assert scanner.sanitize_filename("../../etc/passwd.jpg") == "passwd.jpg"
        assert scanner.sanitize_filename(".jpg") == ".jpg"
        assert scanner.sanitize_filename("   .png") == "photo.png"

    def test_unique_name_when_free(self, tmp_path):
        assert scanner.generate_unique_filename(tmp_path, "a.jpg") == "a.jpg"

    def test_unique_name_on_collision(self, tmp_path):
        now = datetime(2024, 3, 2, 8, 5, 9, tzinfo=timezone.utc)
        (tmp_path / "a.jpg").write_bytes(b"")
        assert scanner.generate_unique_filename(tmp_path, "a.jpg", now) == "a_20240302_080509_001.jpg"

        (tmp_path / "a_20240302_080509_001.jpg").write_bytes(b"")
        assert scanner.generate_unique_filename(tmp_path, "a.jpg", now) == "a_20240302_080509_002.jpg"


class TestScanDirectory:
    """Tests for directory enumeration."""

    def _populate(self, root):
        (root / "b.jpg").write_bytes(b"bb")
        (root / "a.png").write_bytes(b"a")
        (root / "readme.md").write_text("skip")
        (root / "sub").mkdir()
        (root / "sub" / "c.mp4").write_bytes(b"ccc")
        (root / ".thumbnails").mkdir()
        (root / ".thumbnails" / "b.jpg").write_bytes(b"t")

    def test_recursive_scan(self, tmp_path):
        self._populate(tmp_path)

        files = scanner.scan_directory(tmp_path)

        assert [f.relative_path for f in files] == ["a.png", "b.jpg", "sub/c.mp4"]
        video = files[2]
        assert video.media_type == MediaType.VIDEO
        assert video.file_size == 3
        assert video.modified_time.tzinfo is not None

    def test_non_recursive_scan(self, tmp_path):
        self._populate(tmp_path)
        files = scanner.scan_directory(tmp_path, recursive=False)
        assert [f.file_name for f in files] == ["a.png", "b.jpg"]

    def test_custom_exclusions(self, tmp_path):
        self._populate(tmp_path)
        files = scanner.scan_directory(tmp_path, excluded_dirs=["sub", ".thumbnails"])
        assert [f.relative_path for f in files] == ["a.png", "b.jpg"]

    def test_missing_directory(self, tmp_path):
        assert scanner.scan_directory(tmp_path / "missing") == []
