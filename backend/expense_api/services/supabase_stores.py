"""Supabase-backed profile, category and expense stores.

The Supabase Python client is synchronous; every query is pushed to the
threadpool so the event loop is never blocked. The client uses the
service role key, so row ownership is enforced by filtering on the
authenticated user id here rather than by row level security.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any, Dict, List, Sequence

from starlette.concurrency import run_in_threadpool
from supabase import Client, create_client

from expense_api.core.config import settings
from expense_api.models.schemas import BatchExpenseItem, Category, ExpenseRead

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_supabase_client() -> Client:
    if not settings.SUPABASE_URL or not settings.SUPABASE_SERVICE_ROLE_KEY:
        raise RuntimeError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set")
    return create_client(settings.SUPABASE_URL, settings.SUPABASE_SERVICE_ROLE_KEY)


class SupabaseProfileStore:
    table = "profiles"

    def __init__(self, client: Any) -> None:
        self._client = client

    async def get_consent(self, user_id: str) -> bool:
        def _query() -> Any:
            return self._client.table(self.table).select("ai_consent_given").eq("id", user_id).limit(1).execute()

        res = await run_in_threadpool(_query)
        rows = res.data or []
        if not rows:
            raise LookupError(f"Profile not found: {user_id}")
        return bool(rows[0].get("ai_consent_given"))

    async def set_consent(self, user_id: str, given: bool) -> bool:
        def _query() -> Any:
            return self._client.table(self.table).update({"ai_consent_given": given}).eq("id", user_id).execute()

        res = await run_in_threadpool(_query)
        if not res.data:
            raise LookupError(f"Profile not found: {user_id}")
        logger.info("[profiles] consent user=%s given=%s", user_id, given)
        return bool(res.data[0].get("ai_consent_given"))


class SupabaseCategoryStore:
    table = "categories"

    def __init__(self, client: Any) -> None:
        self._client = client

    async def list(self) -> List[Category]:
        def _query() -> Any:
            return self._client.table(self.table).select("id, name").order("name").execute()

        res = await run_in_threadpool(_query)
        return [Category(id=str(row["id"]), name=row["name"]) for row in (res.data or [])]


def _expense_from_row(row: Dict[str, Any]) -> ExpenseRead:
    return ExpenseRead(
        id=str(row["id"]),
        user_id=str(row["user_id"]),
        category_id=str(row["category_id"]),
        amount=f"{float(row['amount']):.2f}",
        expense_date=str(row["expense_date"]),
        currency=row.get("currency") or settings.DEFAULT_CURRENCY,
        created_by_ai=bool(row.get("created_by_ai")),
        was_ai_suggestion_edited=bool(row.get("was_ai_suggestion_edited")),
    )


class SupabaseExpenseStore:
    table = "expenses"

    def __init__(self, client: Any) -> None:
        self._client = client

    async def create_batch(self, user_id: str, items: Sequence[BatchExpenseItem]) -> List[ExpenseRead]:
        rows = [{"user_id": user_id, **item.model_dump()} for item in items]

        def _query() -> Any:
            return self._client.table(self.table).insert(rows).execute()

        res = await run_in_threadpool(_query)
        created = [_expense_from_row(row) for row in (res.data or [])]
        logger.info("[expenses] created %d for user=%s", len(created), user_id)
        return created
