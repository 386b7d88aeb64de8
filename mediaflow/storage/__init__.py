"""Object Store Adapter."""

from mediaflow.storage.adapter import ObjectNotFound, ObjectStore, StorageError, UploadCredential

__all__ = ["ObjectNotFound", "ObjectStore", "StorageError", "UploadCredential"]
