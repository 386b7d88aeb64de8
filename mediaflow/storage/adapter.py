"""
Abstract base class for object store backends.

Objects are addressed by a bucket-relative key such as
``image/6f1c...e2.jpg``. Backends translate keys to their own locations.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Optional

from mediaflow.common.errors import RetryableError


class StorageError(RetryableError):
    """Exception raised for storage-related errors."""
    pass


class ObjectNotFound(StorageError, LookupError):
    """The requested key does not exist (yet)."""
    pass


@dataclass
class UploadCredential:
    """Time-limited permission to write one object directly to the store."""
    url: str
    method: str
    expires_at: datetime
    headers: Dict[str, str] = field(default_factory=dict)


class ObjectStore(ABC):
    """
    Object Store Adapter.

    All implementations (filesystem, S3) must implement these methods to
    provide a consistent interface to the orchestrator and media service.
    """

    @abstractmethod
    def get_object(self, key: str) -> bytes:
        """
        Read an object.

        Raises:
            ObjectNotFound: If the key does not exist
            StorageError: If the read fails
        """
        pass

    @abstractmethod
    def put_object(
        self,
        key: str,
        data: bytes,
        content_type: str,
        cache_control: Optional[str] = None,
    ) -> str:
        """
        Write an object, replacing any existing one under the same key.

        Returns:
            Public URL of the stored object

        Raises:
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    def delete_object(self, key: str) -> None:
        """Delete an object. Deleting a missing key is not an error."""
        pass

    @abstractmethod
    def exists(self, key: str) -> bool:
        pass

    @abstractmethod
    def public_url(self, key: str) -> str:
        """URL under which clients read the object."""
        pass

    @abstractmethod
    def generate_upload_credential(
        self, key: str, content_type: str, expires_in: int
    ) -> UploadCredential:
        """
        Create a credential that allows exactly one PUT of ``key``.

        Args:
            key: Object key the client must upload to
            content_type: Content type the upload must declare
            expires_in: Credential lifetime in seconds
        """
        pass
