"""Tests for logo upload handling."""

from billing_admin.assets import MAX_LOGO_BYTES, is_allowed_logo, store_logo

PNG = b"\x89PNG\r\n\x1a\nfake"


class TestIsAllowedLogo:
    """Content-type and extension checks."""

    def test_image_types(self):
        """Any image/* type is accepted, case-insensitively."""
        assert is_allowed_logo("a.png", "image/png")
        assert is_allowed_logo("a.bin", "IMAGE/WEBP")

    def test_svg_by_extension(self):
        """SVG is accepted by name even with a generic type."""
        assert is_allowed_logo("Logo.SVG", "application/octet-stream")

    def test_rejected(self):
        """Other files are refused."""
        assert not is_allowed_logo("notes.txt", "text/plain")
        assert not is_allowed_logo("archive.zip", None)


class TestStoreLogo:
    """Saving the uploaded logo."""

    def test_saves_as_logo_with_extension(self, tmp_path):
        """The file is stored as logo<ext> with a lower-cased extension."""
        img_dir = tmp_path / "public" / "img"
        result = store_logo(PNG, "Company Logo.PNG", "image/png", img_dir)
        assert result.success
        assert result.filename == "logo.png"
        assert result.message == "Logo uploaded and saved"
        assert (img_dir / "logo.png").read_bytes() == PNG

    def test_previous_logo_removed(self, tmp_path):
        """A previous logo with another name is deleted."""
        (tmp_path / "logo.jpg").write_bytes(b"old")
        result = store_logo(PNG, "new.png", "image/png", tmp_path, previous_filename="logo.jpg")
        assert result.success
        assert not (tmp_path / "logo.jpg").exists()

    def test_same_name_overwritten(self, tmp_path):
        """Uploading the same type replaces the file in place."""
        (tmp_path / "logo.png").write_bytes(b"old")
        store_logo(PNG, "x.png", "image/png", tmp_path, previous_filename="logo.png")
        assert (tmp_path / "logo.png").read_bytes() == PNG

    def test_previous_name_cannot_escape_directory(self, tmp_path):
        """Only the base name of the previous filename is used."""
        outside = tmp_path / "keep.png"
        outside.write_bytes(b"keep")
        img_dir = tmp_path / "img"
        store_logo(PNG, "x.png", "image/png", img_dir, previous_filename="../keep.png")
        assert outside.exists()

    def test_empty_upload(self, tmp_path):
        """No content is an error."""
        result = store_logo(b"", "x.png", "image/png", tmp_path)
        assert not result.success
        assert result.error == "No file was uploaded"

    def test_too_large(self, tmp_path):
        """Files over 2 MB are refused before anything is written."""
        result = store_logo(b"x" * (MAX_LOGO_BYTES + 1), "x.png", "image/png", tmp_path)
        assert not result.success
        assert result.error.startswith("File too large")
        assert list(tmp_path.iterdir()) == []

    def test_not_an_image(self, tmp_path):
        """Non-image uploads are refused."""
        result = store_logo(b"hello", "notes.txt", "text/plain", tmp_path)
        assert result.error == "Only image files are allowed"
