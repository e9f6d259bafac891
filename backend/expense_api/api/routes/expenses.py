"""API routes for persisting verified expenses."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, status

from expense_api.api.dependencies import get_expense_store
from expense_api.core.security import get_current_user_id
from expense_api.models.schemas import BatchExpenseResponse, CreateExpenseBatchCommand
from expense_api.services.stores import ExpenseStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/expenses", tags=["expenses"])


@router.post("/batch", response_model=BatchExpenseResponse, status_code=status.HTTP_201_CREATED)
async def create_expenses_batch(
    command: CreateExpenseBatchCommand,
    user_id: str = Depends(get_current_user_id),
    store: ExpenseStore = Depends(get_expense_store),
) -> BatchExpenseResponse:
    """Create all expenses of a verified receipt in one call."""
    created = await store.create_batch(user_id, command.expenses)
    logger.info("[expenses] batch user=%s requested=%d created=%d", user_id, len(command.expenses), len(created))
    return BatchExpenseResponse(data=created, count=len(created))
