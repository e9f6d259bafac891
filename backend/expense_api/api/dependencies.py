"""Common dependencies for FastAPI routes.

This module wires the concrete stores, the model client and the receipt
service together, and provides the Redis backed rate limiter used by the
processing endpoint. Routes only ask for the narrow capability they
need so tests can swap any of them through ``app.dependency_overrides``.
"""

from __future__ import annotations

import logging
import time
from functools import lru_cache
from typing import Optional

from fastapi import Depends
from redis import asyncio as aioredis

from expense_api.core.config import settings
from expense_api.core.security import get_current_user_id
from expense_api.models.enums import ErrorCode
from expense_api.services.errors import PipelineError
from expense_api.services.openrouter_client import OpenRouterClient
from expense_api.services.receipt_extractor import OpenRouterReceiptExtractor
from expense_api.services.receipt_pipeline import PipelineDeps, ReceiptPipeline, ReceiptService
from expense_api.services.storage_service import get_blob_store
from expense_api.services.stores import BlobStore, CategoryStore, ExpenseStore, ProfileStore, ReceiptExtractor
from expense_api.services.supabase_stores import (
    SupabaseCategoryStore,
    SupabaseExpenseStore,
    SupabaseProfileStore,
    get_supabase_client,
)

logger = logging.getLogger(__name__)

# -----------------------------------------------------------------------------
# Shared resources

_redis_client: Optional[aioredis.Redis] = None
_model_client: Optional[OpenRouterClient] = None


def get_redis_client() -> aioredis.Redis:
    """Return a singleton async Redis client using ``REDIS_URL``."""
    global _redis_client
    if _redis_client is None:
        _redis_client = aioredis.from_url(settings.REDIS_URL, decode_responses=True)
    return _redis_client


def get_model_client() -> OpenRouterClient:
    global _model_client
    if _model_client is None:
        _model_client = OpenRouterClient.from_settings()
    return _model_client


async def close_shared_clients() -> None:
    """Release the shared clients on application shutdown."""
    global _redis_client, _model_client
    if _model_client is not None:
        await _model_client.close()
        _model_client = None
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None


@lru_cache(maxsize=1)
def provide_blob_store() -> BlobStore:
    return get_blob_store()


def get_profile_store() -> ProfileStore:
    return SupabaseProfileStore(get_supabase_client())


def get_category_store() -> CategoryStore:
    return SupabaseCategoryStore(get_supabase_client())


def get_expense_store() -> ExpenseStore:
    return SupabaseExpenseStore(get_supabase_client())


def get_receipt_extractor(blob_store: BlobStore = Depends(provide_blob_store)) -> ReceiptExtractor:
    return OpenRouterReceiptExtractor(blob_store, get_model_client())


def get_upload_service(blob_store: BlobStore = Depends(provide_blob_store)) -> ReceiptService:
    return ReceiptService(blob_store)


def get_receipt_service(
    blob_store: BlobStore = Depends(provide_blob_store),
    profiles: ProfileStore = Depends(get_profile_store),
    categories: CategoryStore = Depends(get_category_store),
    extractor: ReceiptExtractor = Depends(get_receipt_extractor),
) -> ReceiptService:
    deps = PipelineDeps(profiles=profiles, categories=categories, extractor=extractor)
    return ReceiptService(blob_store, ReceiptPipeline(deps))


# -----------------------------------------------------------------------------
# Feature flag and rate limiting


def require_ai_processing_enabled() -> None:
    if not settings.AI_RECEIPT_PROCESSING_ENABLED:
        raise PipelineError(ErrorCode.FEATURE_DISABLED, "AI receipt processing is currently disabled")


async def enforce_rate_limit(user_id: str, action: str, limit: int, window_seconds: int = 60, cost: int = 1) -> None:
    """Fixed-window rate limit per user/action using Redis.

    Fails open: when Redis cannot be reached the request is allowed and a
    warning is logged.
    """
    client = get_redis_client()
    window_id = int(time.time()) // window_seconds
    key = f"rl:{action}:{user_id}:{window_id}"
    pipe = client.pipeline()
    pipe.set(key, 0, ex=window_seconds, nx=True)
    pipe.incrby(key, cost)
    try:
        _, count = await pipe.execute()
    except Exception as exc:
        logger.warning("[ratelimit] redis unavailable, allowing request: %s", exc)
        return
    if int(count) > limit:
        raise PipelineError(
            ErrorCode.RATE_LIMIT_EXCEEDED,
            "Too many requests. Please try again later.",
            {"limit": limit, "window_seconds": window_seconds},
        )


async def process_rate_limit(user_id: str = Depends(get_current_user_id)) -> None:
    if not settings.RATE_LIMIT_ENABLED:
        return
    await enforce_rate_limit(user_id, "process", limit=settings.PROCESS_RATE_LIMIT_PER_MIN)
