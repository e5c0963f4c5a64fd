"""Local disk store for uploaded cover images.

Files land under ``<root>/users/<user id>/`` and are referred to by their
path relative to ``root``; that reference is what a Book record keeps.
"""

from __future__ import annotations

import logging
import os
import time
from pathlib import Path
from typing import Optional

from book_network.config import settings

logger = logging.getLogger(__name__)

EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
}


class FileStorage:
    def __init__(self, root: Optional[str] = None) -> None:
        self.root = Path(root or settings.file_upload_path).resolve()

    def save_file(self, content: bytes, media_type: str, user_id: int) -> str:
        """Write the payload and return its reference."""
        target_dir = self.root / "users" / str(user_id)
        target_dir.mkdir(parents=True, exist_ok=True)
        extension = EXTENSIONS.get(media_type.lower(), "bin")
        file_name = f"{time.time_ns()}.{extension}"
        target = target_dir / file_name

        # Write through a temp file so readers never see a partial image
        tmp_path = target.with_suffix(".tmp")
        with open(tmp_path, "wb") as f:
            f.write(content)
        os.replace(tmp_path, target)

        reference = target.relative_to(self.root).as_posix()
        logger.info(f"Stored {len(content)} bytes for user {user_id} at {reference}")
        return reference

    def read_file(self, reference: Optional[str]) -> Optional[bytes]:
        path = self._resolve(reference)
        if path is None:
            return None
        if not path.exists():
            logger.warning(f"Cover file missing: {reference}")
            return None
        return path.read_bytes()

    def delete_file(self, reference: Optional[str]) -> None:
        path = self._resolve(reference)
        if path is not None:
            path.unlink(missing_ok=True)
            logger.info(f"Removed stored file {reference}")

    def _resolve(self, reference: Optional[str]) -> Optional[Path]:
        if not reference:
            return None
        path = (self.root / reference).resolve()
        # References never point outside the upload root
        if self.root not in path.parents:
            logger.warning(f"Refusing to access a file outside the upload root: {reference}")
            return None
        return path
