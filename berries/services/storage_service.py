"""
Local disk storage for chat file uploads.
"""
from __future__ import annotations

import logging
import mimetypes
import os
import time
from dataclasses import dataclass

from berries.config import settings


logger = logging.getLogger(__name__)


@dataclass
class StoredFile:
    """Internal representation of a stored upload."""

    name: str
    path: str
    type: str
    size: int


class StorageService:
    """Writes uploads under the configured upload directory."""

    def __init__(self, root: str | None = None) -> None:
        self.root = root or settings.upload_dir
        os.makedirs(self.root, exist_ok=True)

    def _safe_name(self, filename: str) -> str:
        # Drop any directory components sent by the client
        name = os.path.basename(filename.replace("\\", "/")).strip()
        return name or "upload"

    def save(self, file_bytes: bytes, filename: str, content_type: str | None = None) -> StoredFile:
        """
        Store ``file_bytes`` as ``<epoch-ms>-<original name>``.
        """
        original = self._safe_name(filename)
        stored_name = f"{int(time.time() * 1000)}-{original}"
        path = os.path.join(self.root, stored_name)

        with open(path, "wb") as f:
            f.write(file_bytes)

        guessed, _ = mimetypes.guess_type(original)
        file_type = content_type or guessed or "application/octet-stream"
        logger.info(f"Stored upload {original} at {path} ({len(file_bytes)} bytes)")

        return StoredFile(
            name=original,
            path=path.replace(os.sep, "/"),
            type=file_type,
            size=len(file_bytes),
        )


storage_service = StorageService()
