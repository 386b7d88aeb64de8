"""
Unit tests for the filesystem object store.
"""

import pytest

from mediaflow.storage.adapter import ObjectNotFound, StorageError
from mediaflow.storage.filesystem import FilesystemObjectStore


@pytest.fixture
def store(tmp_path):
    return FilesystemObjectStore(base_path=str(tmp_path))


class TestFilesystemObjectStore:

    def test_put_and_get(self, store):
        url = store.put_object("images/a.jpg", b"data", "image/jpeg")

        assert url == "fs://images/a.jpg"
        assert store.get_object("images/a.jpg") == b"data"
        assert store.exists("images/a.jpg")

    def test_put_overwrites(self, store):
        store.put_object("a.bin", b"one", "application/octet-stream")
        store.put_object("a.bin", b"two", "application/octet-stream")

        assert store.get_object("a.bin") == b"two"
        assert [p.name for p in store.base_path.iterdir()] == ["a.bin"]

    def test_missing_object(self, store):
        with pytest.raises(ObjectNotFound):
            store.get_object("nope.jpg")

    def test_missing_object_is_a_lookup_error(self, store):
        with pytest.raises(LookupError):
            store.get_object("nope.jpg")

    def test_delete_is_idempotent(self, store):
        store.put_object("a.jpg", b"x", "image/jpeg")
        store.delete_object("a.jpg")
        store.delete_object("a.jpg")

        assert not store.exists("a.jpg")

    def test_keys_cannot_escape_root(self, store):
        with pytest.raises(StorageError):
            store.put_object("../outside.txt", b"x", "text/plain")

    def test_public_url_with_base(self, tmp_path):
        store = FilesystemObjectStore(str(tmp_path), public_base_url="https://cdn.test/")

        assert store.public_url("/images/a.jpg") == "https://cdn.test/images/a.jpg"

    def test_upload_credential(self, store):
        credential = store.generate_upload_credential("images/new.png", "image/png", 300)

        assert credential.method == "PUT"
        assert credential.url.startswith("file://")
        assert credential.headers == {"Content-Type": "image/png"}
