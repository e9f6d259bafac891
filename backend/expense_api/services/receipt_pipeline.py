"""Receipt processing pipeline.

Processing a stored receipt runs five steps strictly in order:

1. ``check_consent``: the user must have granted AI processing consent.
2. ``check_ownership``: the second path segment of the storage path must
   be the authenticated user's id. Purely structural, no store access.
3. ``fetch_categories``: load the canonical category list.
4. ``invoke_model``: run the receipt extractor (remote model).
5. ``map_categories``: resolve model labels to canonical categories and
   build the ``ProcessReceiptResponse``.

Each step is a plain async function ``step(context, deps)`` that returns
either ``Success(context)`` with an extended context or
``Failure(error)`` carrying a ``PipelineError``. The orchestrator stops at
the first failure and returns it unchanged. Nothing is retried here;
retries live inside the model client.

``ReceiptService`` is the facade used by the HTTP routes. It unwraps a
failure into a raised ``PipelineError`` and also owns receipt uploads.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional, Sequence, Union

from expense_api.core.config import settings
from expense_api.core.observability import sentry_breadcrumb
from expense_api.models.enums import ErrorCode
from expense_api.models.schemas import ProcessingContext, ProcessReceiptResponse, UploadReceiptResponse
from expense_api.services.category_matcher import map_expenses_with_categories
from expense_api.services.errors import PipelineError, PipelineInvariantError, RateLimitError, RequestTimeoutError
from expense_api.services.storage_service import build_receipt_path
from expense_api.services.stores import BlobExistsError, BlobNotFoundError, BlobStore, CategoryStore, ProfileStore, ReceiptExtractor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Success:
    context: ProcessingContext


@dataclass(frozen=True)
class Failure:
    error: PipelineError


StepResult = Union[Success, Failure]


@dataclass
class PipelineDeps:
    """Collaborators the steps may use. ``clock`` returns seconds."""

    profiles: ProfileStore
    categories: CategoryStore
    extractor: ReceiptExtractor
    currency: str = field(default_factory=lambda: settings.DEFAULT_CURRENCY)
    clock: Callable[[], float] = time.monotonic


Step = Callable[[ProcessingContext, PipelineDeps], Awaitable[StepResult]]


def _fail(code: ErrorCode, message: str, **details: object) -> Failure:
    return Failure(PipelineError(code, message, details or None))


async def check_consent(context: ProcessingContext, deps: PipelineDeps) -> StepResult:
    try:
        consent = await deps.profiles.get_consent(context.user_id)
    except Exception as exc:
        logger.warning("[pipeline] consent lookup failed user=%s: %s", context.user_id, exc)
        return _fail(ErrorCode.AI_CONSENT_REQUIRED, "Unable to verify AI consent")
    if not consent:
        return _fail(ErrorCode.AI_CONSENT_REQUIRED, "AI consent required")
    return Success(context.extend(ai_consent_given=True))


async def check_ownership(context: ProcessingContext, deps: PipelineDeps) -> StepResult:
    segments = context.file_path.split("/")
    owner = segments[1] if len(segments) > 1 else None
    if owner != context.user_id:
        return _fail(ErrorCode.FORBIDDEN, "You do not have access to this file")
    return Success(context)


async def fetch_categories(context: ProcessingContext, deps: PipelineDeps) -> StepResult:
    try:
        categories = await deps.categories.list()
    except Exception as exc:
        logger.error("[pipeline] category fetch failed: %s", exc)
        return _fail(ErrorCode.INTERNAL_ERROR, "Failed to fetch categories")
    if not categories:
        return _fail(ErrorCode.INTERNAL_ERROR, "No categories configured")
    return Success(context.extend(categories=list(categories)))


def classify_model_error(exc: Exception) -> PipelineError:
    """Translate an extractor failure into a public pipeline error."""
    message = str(exc)
    lowered = message.lower()
    if isinstance(exc, BlobNotFoundError):
        return PipelineError(ErrorCode.FILE_NOT_FOUND, "Receipt file not found")
    if isinstance(exc, RateLimitError) or "rate limit" in lowered:
        return PipelineError(ErrorCode.RATE_LIMIT_EXCEEDED, "AI service rate limit exceeded")
    if isinstance(exc, RequestTimeoutError) or "timeout" in lowered:
        return PipelineError(ErrorCode.PROCESSING_TIMEOUT, "Receipt processing timed out")
    return PipelineError(ErrorCode.AI_SERVICE_ERROR, "AI service failed to process the receipt", {"reason": message})


async def invoke_model(context: ProcessingContext, deps: PipelineDeps) -> StepResult:
    try:
        payload = await deps.extractor.extract(context.file_path)
    except PipelineInvariantError:
        raise
    except Exception as exc:
        error = classify_model_error(exc)
        logger.warning("[pipeline] model step failed code=%s: %s", error.code.value, exc)
        return Failure(error)
    if payload is None:
        return _fail(ErrorCode.EXTRACTION_FAILED, "Could not extract data from the receipt")
    return Success(context.extend(model_result=payload))


async def map_categories(context: ProcessingContext, deps: PipelineDeps) -> StepResult:
    if context.categories is None or context.model_result is None:
        raise PipelineInvariantError("map_categories requires categories and a model result")
    extraction = context.model_result
    expenses = map_expenses_with_categories(extraction.items, context.categories)
    elapsed_ms = int((deps.clock() - context.start_time) * 1000)
    result = ProcessReceiptResponse(
        expenses=expenses,
        total_amount=f"{extraction.total:.2f}",
        currency=deps.currency,
        receipt_date=extraction.date,
        processing_time_ms=elapsed_ms,
    )
    return Success(context.extend(result=result))


DEFAULT_STEPS: Sequence[Step] = (check_consent, check_ownership, fetch_categories, invoke_model, map_categories)


class ReceiptPipeline:
    """Runs the processing steps in order, stopping at the first failure."""

    def __init__(self, deps: PipelineDeps, steps: Sequence[Step] = DEFAULT_STEPS) -> None:
        self.deps = deps
        self.steps = tuple(steps)

    async def run(self, file_path: str, user_id: str) -> StepResult:
        context = ProcessingContext(file_path=file_path, user_id=user_id, start_time=self.deps.clock())
        for step in self.steps:
            name = step.__name__
            sentry_breadcrumb(category="pipeline", message=name, data={"file_path": file_path})
            outcome = await step(context, self.deps)
            if isinstance(outcome, Failure):
                logger.info("[pipeline] %s failed code=%s", name, outcome.error.code.value)
                return outcome
            context = outcome.context
        if context.result is None:
            raise PipelineInvariantError("Pipeline finished without a result")
        logger.info(
            "[pipeline] done groups=%d in %dms",
            len(context.result.expenses),
            context.result.processing_time_ms,
        )
        return Success(context)


class ReceiptService:
    """Facade over uploads and the processing pipeline for the HTTP layer."""

    def __init__(self, blob_store: BlobStore, pipeline: Optional[ReceiptPipeline] = None) -> None:
        self.blob_store = blob_store
        self.pipeline = pipeline

    @staticmethod
    def validate_upload(data: bytes, content_type: Optional[str]) -> None:
        if not data:
            raise PipelineError(ErrorCode.VALIDATION_ERROR, "No file provided")
        if (content_type or "").lower() not in settings.ALLOWED_CONTENT_TYPES:
            raise PipelineError(ErrorCode.VALIDATION_ERROR, "File must be JPEG, PNG, or HEIC format")
        if len(data) > settings.MAX_UPLOAD_SIZE:
            raise PipelineError(
                ErrorCode.PAYLOAD_TOO_LARGE,
                "File size must not exceed 10MB",
                {"max_size": settings.MAX_UPLOAD_SIZE, "size": len(data)},
            )

    async def upload_receipt(self, user_id: str, data: bytes, content_type: Optional[str]) -> UploadReceiptResponse:
        self.validate_upload(data, content_type)
        file_id = str(uuid.uuid4())
        path = build_receipt_path(user_id, content_type, file_id)
        try:
            stored = await self.blob_store.put(path, data, (content_type or "image/jpeg").lower())
        except BlobExistsError as exc:
            raise PipelineError(ErrorCode.INTERNAL_ERROR, "Failed to upload file") from exc
        logger.info("[receipts] uploaded user=%s path=%s bytes=%d", user_id, stored, len(data))
        return UploadReceiptResponse(file_id=file_id, file_path=stored, uploaded_at=datetime.now(timezone.utc))

    async def process_receipt(self, file_path: str, user_id: str) -> ProcessReceiptResponse:
        if self.pipeline is None:
            raise PipelineInvariantError("ReceiptService has no pipeline configured")
        outcome = await self.pipeline.run(file_path, user_id)
        if isinstance(outcome, Failure):
            raise outcome.error
        if outcome.context.result is None:
            raise PipelineInvariantError("Pipeline finished without a result")
        return outcome.context.result
