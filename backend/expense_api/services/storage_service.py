"""Blob storage for uploaded receipt images.

Supports two backends selected via ``settings.STORAGE_BACKEND``:

1. **supabase** (default): objects live in the ``settings.RECEIPTS_BUCKET``
   bucket of Supabase Storage.
2. **filesystem**: objects are stored under ``settings.STORAGE_DIRECTORY``
   on disk. Useful for local development and tests.

Every receipt is stored under ``receipts/{user_id}/{uuid}{ext}``. The
user id segment is what the ownership check of the processing pipeline
relies on. Neither backend overwrites an existing object.
"""

from __future__ import annotations

import logging
import uuid
from pathlib import Path
from typing import Any, Optional

from starlette.concurrency import run_in_threadpool

from expense_api.core.config import settings
from expense_api.services.stores import BlobExistsError, BlobNotFoundError, BlobStore

logger = logging.getLogger(__name__)

_MIME_TO_EXT = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/heic": ".heic",
}


def extension_for(content_type: Optional[str]) -> str:
    """Map a MIME type to a file extension; unknown types default to ``.jpg``."""
    return _MIME_TO_EXT.get((content_type or "").lower(), ".jpg")


def build_receipt_path(user_id: str, content_type: Optional[str], file_id: Optional[str] = None) -> str:
    """Return ``receipts/{user_id}/{file_id}{ext}`` for a new upload."""
    file_id = file_id or str(uuid.uuid4())
    return f"receipts/{user_id}/{file_id}{extension_for(content_type)}"


class FilesystemBlobStore:
    """Blob store rooted at a local directory."""

    def __init__(self, base_dir: str | Path | None = None) -> None:
        base_path = Path(base_dir or settings.STORAGE_DIRECTORY)
        if not base_path.is_absolute():
            repo_root = Path(__file__).resolve().parents[3]
            base_path = (repo_root / base_path).resolve()
        self.base_dir = base_path.resolve()
        self.base_dir.mkdir(parents=True, exist_ok=True)
        logger.info("[storage] filesystem base_dir=%s", self.base_dir)

    def _resolve(self, path: str) -> Path:
        full = (self.base_dir / path).resolve()
        if self.base_dir not in full.parents:
            raise ValueError(f"Path escapes storage root: {path}")
        return full

    async def put(self, path: str, data: bytes, content_type: str) -> str:
        if not data:
            raise ValueError("Empty upload payload")
        full = self._resolve(path)
        full.parent.mkdir(parents=True, exist_ok=True)
        try:
            with open(full, "xb") as fh:
                fh.write(data)
        except FileExistsError as exc:
            raise BlobExistsError(path) from exc
        logger.info("[storage] FS saved %s bytes=%d type=%s", path, len(data), content_type)
        return path

    async def download(self, path: str) -> bytes:
        full = self._resolve(path)
        try:
            return full.read_bytes()
        except FileNotFoundError as exc:
            raise BlobNotFoundError(path) from exc

    async def remove(self, path: str) -> None:
        self._resolve(path).unlink(missing_ok=True)


def _is_not_found(exc: Exception) -> bool:
    status = str(getattr(exc, "status", "") or getattr(exc, "statusCode", "") or "")
    return status in ("400", "404") or "not found" in str(exc).lower()


def _is_duplicate(exc: Exception) -> bool:
    status = str(getattr(exc, "status", "") or getattr(exc, "statusCode", "") or "")
    return status == "409" or "duplicate" in str(exc).lower() or "already exists" in str(exc).lower()


class SupabaseBlobStore:
    """Blob store backed by a Supabase Storage bucket.

    The Supabase client is synchronous, so calls run in the threadpool.
    """

    def __init__(self, client: Any, bucket: Optional[str] = None) -> None:
        self._client = client
        self.bucket = bucket or settings.RECEIPTS_BUCKET

    def _bucket(self) -> Any:
        return self._client.storage.from_(self.bucket)

    async def put(self, path: str, data: bytes, content_type: str) -> str:
        if not data:
            raise ValueError("Empty upload payload")
        try:
            await run_in_threadpool(
                self._bucket().upload,
                path=path,
                file=data,
                file_options={"content-type": content_type, "upsert": "false"},
            )
        except Exception as exc:
            if _is_duplicate(exc):
                raise BlobExistsError(path) from exc
            raise
        logger.info("[storage] bucket=%s put %s bytes=%d", self.bucket, path, len(data))
        return path

    async def download(self, path: str) -> bytes:
        try:
            return await run_in_threadpool(self._bucket().download, path)
        except Exception as exc:
            if _is_not_found(exc):
                raise BlobNotFoundError(path) from exc
            raise

    async def remove(self, path: str) -> None:
        await run_in_threadpool(self._bucket().remove, [path])


def get_blob_store() -> BlobStore:
    """Return the blob store selected by ``settings.STORAGE_BACKEND``."""
    backend = (settings.STORAGE_BACKEND or "supabase").lower()
    if backend == "filesystem":
        return FilesystemBlobStore()
    from expense_api.services.supabase_stores import get_supabase_client

    return SupabaseBlobStore(get_supabase_client())
