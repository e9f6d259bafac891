"""Capability interfaces for the collaborators of the receipt pipeline.

The pipeline and the routes only depend on these narrow protocols, never
on a concrete managed-backend client. Concrete implementations live in
``expense_api.services.storage_service`` (blob storage) and
``expense_api.services.supabase_stores`` (profiles, categories and
expenses); tests substitute in-memory fakes.
"""

from __future__ import annotations

from typing import List, Protocol, Sequence

from expense_api.models.schemas import BatchExpenseItem, Category, ExpenseRead, ReceiptExtraction


class BlobNotFoundError(LookupError):
    """Raised by a blob store when no object exists at a path."""


class BlobExistsError(FileExistsError):
    """Raised by a blob store when writing to a path that is already taken."""


class ProfileStore(Protocol):
    async def get_consent(self, user_id: str) -> bool: ...

    async def set_consent(self, user_id: str, given: bool) -> bool: ...


class CategoryStore(Protocol):
    async def list(self) -> List[Category]: ...


class BlobStore(Protocol):
    async def put(self, path: str, data: bytes, content_type: str) -> str: ...

    async def download(self, path: str) -> bytes: ...

    async def remove(self, path: str) -> None: ...


class ExpenseStore(Protocol):
    async def create_batch(self, user_id: str, items: Sequence[BatchExpenseItem]) -> List[ExpenseRead]: ...


class ReceiptExtractor(Protocol):
    """Runs the remote model over a stored receipt image."""

    async def extract(self, file_path: str) -> ReceiptExtraction | None: ...
