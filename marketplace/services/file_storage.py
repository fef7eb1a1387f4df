"""
File storage collaborator.

The engine never keeps binary content: callers hand bytes to ``store`` and
persist the returned opaque reference. ``resolve`` turns a reference back
into a URL the front end can fetch.

Default implementation writes to ``UPLOAD_FOLDER`` on local disk and serves
under ``FILE_BASE_URL``.
"""

import logging
import os
import uuid

from flask import current_app
from werkzeug.utils import secure_filename

from marketplace.core.exceptions import ValidationError

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = {"png", "jpg", "jpeg", "gif", "webp", "pdf", "zip", "txt", "doc", "docx"}


def allowed_file(filename):
    """Check if file extension is allowed."""
    return "." in filename and filename.rsplit(".", 1)[1].lower() in ALLOWED_EXTENSIONS


class LocalFileStorage:
    """Store files under a folder; references are ``<subdir>/<uuid>.<ext>``."""

    def __init__(self, root, base_url):
        self.root = root
        self.base_url = base_url.rstrip("/")

    def store(self, data: bytes, filename: str, subdir: str = "") -> str:
        safe_name = secure_filename(filename or "")
        if not safe_name or not allowed_file(safe_name):
            raise ValidationError(
                f"Invalid file type. Allowed types: {', '.join(sorted(ALLOWED_EXTENSIONS))}",
                details={"filename": filename},
            )
        if not data:
            raise ValidationError("File is empty", details={"filename": filename})

        extension = safe_name.rsplit(".", 1)[1].lower()
        unique_name = f"{uuid.uuid4().hex}.{extension}"
        folder = os.path.join(self.root, subdir) if subdir else self.root
        os.makedirs(folder, exist_ok=True)
        with open(os.path.join(folder, unique_name), "wb") as fh:
            fh.write(data)

        reference = f"{subdir}/{unique_name}" if subdir else unique_name
        logger.info("Stored file %s (%d bytes) as %s", safe_name, len(data), reference)
        return reference

    def delete(self, reference: str) -> None:
        """Remove a stored file. External URLs and missing files are ignored."""
        if reference.startswith(("http://", "https://")):
            return
        try:
            os.remove(os.path.join(self.root, reference))
        except FileNotFoundError:
            return
        logger.info("Removed stored file %s", reference)

    def resolve(self, reference: str) -> str:
        if reference.startswith(("http://", "https://")):
            return reference
        return f"{self.base_url}/{reference.lstrip('/')}"


def get_file_storage():
    """Storage bound to the current app's configuration."""
    return LocalFileStorage(
        current_app.config["UPLOAD_FOLDER"],
        current_app.config.get("FILE_BASE_URL", "/files"),
    )
