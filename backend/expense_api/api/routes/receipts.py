"""API routes for receipt upload and AI processing."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, File, UploadFile, status

from expense_api.api.dependencies import (
    get_receipt_service,
    get_upload_service,
    process_rate_limit,
    require_ai_processing_enabled,
)
from expense_api.core.observability import sentry_breadcrumb
from expense_api.core.security import get_current_user_id
from expense_api.models.schemas import ProcessReceiptRequest, ProcessReceiptResponse, UploadReceiptResponse
from expense_api.services.receipt_pipeline import ReceiptService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/receipts", tags=["receipts"])


@router.post("/upload", response_model=UploadReceiptResponse, status_code=status.HTTP_201_CREATED)
async def upload_receipt(
    file: UploadFile = File(...),
    user_id: str = Depends(get_current_user_id),
    service: ReceiptService = Depends(get_upload_service),
) -> UploadReceiptResponse:
    """Store a receipt image for later processing."""
    data = await file.read()
    sentry_breadcrumb(category="receipts", message="upload", data={"size": len(data), "type": file.content_type})
    return await service.upload_receipt(user_id, data, file.content_type)


@router.post(
    "/process",
    response_model=ProcessReceiptResponse,
    dependencies=[Depends(require_ai_processing_enabled), Depends(process_rate_limit)],
)
async def process_receipt(
    payload: ProcessReceiptRequest,
    user_id: str = Depends(get_current_user_id),
    service: ReceiptService = Depends(get_receipt_service),
) -> ProcessReceiptResponse:
    """Run the AI extraction pipeline over an uploaded receipt."""
    logger.info("[receipts] process user=%s path=%s", user_id, payload.file_path)
    return await service.process_receipt(payload.file_path, user_id)
