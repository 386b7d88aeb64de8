"""
Storage factory for creating object store instances.

Provides singleton access to the backend selected by configuration.
"""

from typing import Optional

from mediaflow.common.errors import ConfigurationError
from mediaflow.config.settings import Settings, get_settings
from mediaflow.storage.adapter import ObjectStore


_storage_instance: Optional[ObjectStore] = None


def create_object_store(settings: Settings) -> ObjectStore:
    backend = settings.storage_backend.lower()
    if backend.startswith("s3"):
        from mediaflow.storage.s3 import S3ObjectStore
        return S3ObjectStore(
            bucket=settings.s3_bucket,
            region=settings.aws_region,
            access_key_id=settings.aws_access_key_id,
            secret_access_key=settings.aws_secret_access_key,
            public_base_url=settings.public_base_url,
            connect_timeout=settings.adapter_connect_timeout_seconds,
            read_timeout=settings.adapter_timeout_seconds,
        )
    if backend.startswith("fs"):
        from mediaflow.storage.filesystem import FilesystemObjectStore
        return FilesystemObjectStore(
            base_path=settings.storage_path,
            public_base_url=settings.public_base_url,
        )
    raise ConfigurationError(f"Unknown storage backend: {settings.storage_backend}")


def get_object_store() -> ObjectStore:
    """Get or create the process-wide object store."""
    global _storage_instance
    if _storage_instance is None:
        _storage_instance = create_object_store(get_settings())
    return _storage_instance

