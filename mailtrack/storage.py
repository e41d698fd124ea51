"""
Opaque blob store for uploaded attachment files, keyed by path.
"""

import logging
import os
import uuid
from pathlib import Path
from typing import Iterable, List

from werkzeug.utils import secure_filename

from mailtrack.config import ALLOWED_FILE_TYPES, MAX_FILE_SIZE, UPLOAD_PATH
from mailtrack.errors import ValidationError
from mailtrack.models import AttachmentUpload

logger = logging.getLogger(__name__)


def check_extension(filename: str) -> str:
    ext = os.path.splitext(filename or "")[1].lower()
    if ext not in ALLOWED_FILE_TYPES:
        raise ValidationError("File type not allowed", [f"attachments: {filename!r} has type {ext or 'none'}"])
    return ext


class LocalBlobStore:
    """Stores blobs as files under *root* with collision-free names."""

    def __init__(self, root: str = UPLOAD_PATH, max_size: int = MAX_FILE_SIZE):
        self.root = Path(root)
        self.max_size = max_size

    def save(self, file_storage) -> AttachmentUpload:
        """Write one werkzeug ``FileStorage`` and describe it."""
        original = file_storage.filename or ""
        ext = check_extension(original)
        self.root.mkdir(parents=True, exist_ok=True)
        stem = secure_filename(os.path.splitext(original)[0]) or "attachment"
        path = self.root / f"{stem}-{uuid.uuid4().hex}{ext}"
        file_storage.save(str(path))

        size = path.stat().st_size
        if size > self.max_size:
            self.delete(str(path))
            raise ValidationError("File too large", [f"attachments: {original!r} exceeds {self.max_size} bytes"])

        return AttachmentUpload(
            storage_path=str(path),
            original_filename=original,
            file_size=size,
            mime_type=file_storage.mimetype or None,
        )

    def save_all(self, files: Iterable) -> List[AttachmentUpload]:
        """Save every file, or none of them."""
        saved: List[AttachmentUpload] = []
        try:
            for f in files:
                saved.append(self.save(f))
        except Exception:
            self.discard(saved)
            raise
        return saved

    def delete(self, path: str) -> None:
        try:
            os.remove(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("Could not delete blob %s: %s", path, e)

    def discard(self, uploads: Iterable[AttachmentUpload]) -> None:
        for upload in uploads:
            self.delete(upload.storage_path)
