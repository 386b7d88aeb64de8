"""
Filesystem object store.

Keys map to paths below ``base_path``. Used for local development and
tests; upload credentials point at the local file location.
"""

import logging
import os
import tempfile
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional

from mediaflow.storage.adapter import ObjectNotFound, ObjectStore, StorageError, UploadCredential

logger = logging.getLogger(__name__)


class FilesystemObjectStore(ObjectStore):
    """Object store backed by a local directory tree."""

    def __init__(self, base_path: str = "./storage", public_base_url: Optional[str] = None):
        """
        Initialize filesystem storage.

        Args:
            base_path: Root directory for all objects
            public_base_url: URL prefix for public links; defaults to fs://
        """
        self.base_path = Path(base_path).resolve()
        self.base_path.mkdir(parents=True, exist_ok=True)
        self.public_base_url = public_base_url.rstrip("/") if public_base_url else None

    def _key_to_path(self, key: str) -> Path:
        cleaned = key.lstrip("/")
        path = (self.base_path / cleaned).resolve()
        if path != self.base_path and self.base_path not in path.parents:
            raise StorageError(f"Key escapes storage root: {key}")
        return path

    def get_object(self, key: str) -> bytes:
        path = self._key_to_path(key)
        if not path.is_file():
            raise ObjectNotFound(f"Object not found: {key}")
        try:
            return path.read_bytes()
        except OSError as e:
            raise StorageError(f"Failed to read {key}: {e}") from e

    def put_object(self, key: str, data: bytes, content_type: str,
                   cache_control: Optional[str] = None) -> str:
        path = self._key_to_path(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            # Write to a sibling temp file first so readers never see a torn object
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".upload-")
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp_name, path)
        except OSError as e:
            raise StorageError(f"Failed to write {key}: {e}") from e
        logger.debug(f"Stored {key} ({len(data)} bytes, {content_type})")
        return self.public_url(key)

    def delete_object(self, key: str) -> None:
        path = self._key_to_path(key)
        try:
            path.unlink()
        except FileNotFoundError:
            return
        except OSError as e:
            raise StorageError(f"Failed to delete {key}: {e}") from e

    def exists(self, key: str) -> bool:
        return self._key_to_path(key).is_file()

    def public_url(self, key: str) -> str:
        key = key.lstrip("/")
        if self.public_base_url:
            return f"{self.public_base_url}/{key}"
        return f"fs://{key}"

    def generate_upload_credential(self, key: str, content_type: str,
                                   expires_in: int) -> UploadCredential:
        self._key_to_path(key).parent.mkdir(parents=True, exist_ok=True)
        return UploadCredential(
            url=self._key_to_path(key).as_uri(),
            method="PUT",
            expires_at=datetime.utcnow() + timedelta(seconds=expires_in),
            headers={"Content-Type": content_type},
        )
