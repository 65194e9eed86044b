"""Logo upload handling.

The logo is always stored as ``logo<ext>`` in the image directory, so a
new upload overwrites a previous one with the same extension.  Recording
the new filename in the application settings is up to the caller.

Usage:
    from billing_admin.assets import store_logo

    result = store_logo(data, "Company Logo.PNG", "image/png", Path("public/img"),
                        previous_filename=settings.get("logo_filename"))
    if result.success:
        settings["logo_filename"] = result.filename
"""

import logging
from pathlib import Path

from pydantic import BaseModel

logger = logging.getLogger(__name__)

MAX_LOGO_BYTES = 2 * 1024 * 1024
LOGO_STEM = "logo"


class LogoUploadResult(BaseModel):
    """Result of ``store_logo()``."""

    success: bool
    filename: str | None = None
    message: str = ""
    error: str | None = None


def is_allowed_logo(original_filename: str, content_type: str | None) -> bool:
    """Image content types and ``.svg`` files are accepted."""
    if content_type and content_type.lower().startswith("image/"):
        return True
    return original_filename.lower().endswith(".svg")


def store_logo(
    content: bytes,
    original_filename: str,
    content_type: str | None,
    img_dir: Path,
    previous_filename: str | None = None,
) -> LogoUploadResult:
    """Validate and save an uploaded logo.

    Args:
        content: Uploaded file bytes.
        original_filename: Name the file was uploaded with; only its
            extension is kept.
        content_type: MIME type reported for the upload.
        img_dir: Directory logos are served from (created if missing).
        previous_filename: Currently configured logo.  Deleted when it
            differs from the new name; failing to delete is only logged.

    Returns:
        ``LogoUploadResult`` with the stored filename on success.
    """
    if not content:
        return LogoUploadResult(success=False, error="No file was uploaded")

    if len(content) > MAX_LOGO_BYTES:
        return LogoUploadResult(
            success=False,
            error=f"File too large: {len(content)} bytes (max {MAX_LOGO_BYTES})",
        )

    if not is_allowed_logo(original_filename, content_type):
        return LogoUploadResult(success=False, error="Only image files are allowed")

    filename = LOGO_STEM + Path(original_filename).suffix.lower()
    img_dir = Path(img_dir)
    target = img_dir / filename

    try:
        img_dir.mkdir(parents=True, exist_ok=True)
        target.write_bytes(content)
    except OSError as e:
        logger.error("Error saving logo: %s", e)
        return LogoUploadResult(success=False, error=f"Error saving logo: {e}")

    if previous_filename and previous_filename != filename:
        old_logo = img_dir / Path(previous_filename).name
        if old_logo.exists():
            try:
                old_logo.unlink()
                logger.info("Removed old logo %s", old_logo)
            except OSError as e:
                logger.warning("Could not remove old logo %s: %s", old_logo, e)

    logger.info("Logo saved as %s", filename)
    return LogoUploadResult(
        success=True,
        filename=filename,
        message="Logo uploaded and saved",
    )
