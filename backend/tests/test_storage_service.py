from __future__ import annotations

import pytest

from expense_api.services.storage_service import (
    FilesystemBlobStore,
    SupabaseBlobStore,
    build_receipt_path,
    extension_for,
)
from expense_api.services.stores import BlobExistsError, BlobNotFoundError

from fakes import FILE_PATH, USER_ID


def test_extension_for_known_and_unknown_types():
    assert extension_for("image/jpeg") == ".jpg"
    assert extension_for("image/png") == ".png"
    assert extension_for("image/heic") == ".heic"
    assert extension_for("image/webp") == ".jpg"
    assert extension_for(None) == ".jpg"


def test_build_receipt_path_uses_user_prefix():
    assert build_receipt_path(USER_ID, "image/png", "abc") == f"receipts/{USER_ID}/abc.png"


@pytest.mark.asyncio
async def test_filesystem_store_roundtrip_and_no_overwrite(tmp_path):
    store = FilesystemBlobStore(tmp_path)
    assert await store.put(FILE_PATH, b"one", "image/jpeg") == FILE_PATH
    assert await store.download(FILE_PATH) == b"one"
    with pytest.raises(BlobExistsError):
        await store.put(FILE_PATH, b"two", "image/jpeg")
    assert await store.download(FILE_PATH) == b"one"
    await store.remove(FILE_PATH)
    with pytest.raises(BlobNotFoundError):
        await store.download(FILE_PATH)


@pytest.mark.asyncio
async def test_filesystem_store_rejects_path_traversal(tmp_path):
    store = FilesystemBlobStore(tmp_path / "root")
    with pytest.raises(ValueError):
        await store.put("../escape.jpg", b"x", "image/jpeg")


class StorageApiError(Exception):
    def __init__(self, message, status):
        super().__init__(message)
        self.status = status


class FakeBucket:
    def __init__(self):
        self.objects = {}
        self.uploads = []

    def upload(self, path, file, file_options=None):
        self.uploads.append((path, file_options))
        if path in self.objects:
            raise StorageApiError("The resource already exists", "409")
        self.objects[path] = file
        return {"path": path}

    def download(self, path):
        if path not in self.objects:
            raise StorageApiError("Object not found", "404")
        return self.objects[path]

    def remove(self, paths):
        for p in paths:
            self.objects.pop(p, None)


class FakeStorage:
    def __init__(self):
        self.bucket = FakeBucket()
        self.requested = []

    def from_(self, name):
        self.requested.append(name)
        return self.bucket


class FakeSupabase:
    def __init__(self):
        self.storage = FakeStorage()


@pytest.mark.asyncio
async def test_supabase_store_uploads_without_upsert():
    client = FakeSupabase()
    store = SupabaseBlobStore(client, bucket="receipts")
    await store.put(FILE_PATH, b"img", "image/jpeg")
    assert client.storage.requested == ["receipts"]
    path, options = client.storage.bucket.uploads[0]
    assert path == FILE_PATH
    assert options == {"content-type": "image/jpeg", "upsert": "false"}
    assert await store.download(FILE_PATH) == b"img"


@pytest.mark.asyncio
async def test_supabase_store_maps_duplicate_and_missing():
    store = SupabaseBlobStore(FakeSupabase(), bucket="receipts")
    await store.put(FILE_PATH, b"img", "image/jpeg")
    with pytest.raises(BlobExistsError):
        await store.put(FILE_PATH, b"img", "image/jpeg")
    await store.remove(FILE_PATH)
    with pytest.raises(BlobNotFoundError):
        await store.download(FILE_PATH)
