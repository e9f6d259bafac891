"""Pydantic schemas for request and response models.

Pydantic models are used for validating and serialising data that
crosses the boundary of the API and the boundary to the remote model.
This module defines both the domain schemas (e.g. ``ReceiptExtraction``,
``ProcessingContext``) and API facing schemas for uploading and
processing receipts and for saving the verified expenses.

Field names follow the JSON contract consumed by the web client, which
is why most of them are snake_case strings such as ``total_amount``
rather than numbers: amounts cross the boundary already formatted to
two decimals.
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import Any, Dict, Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator

from expense_api.services.errors import PipelineInvariantError

T = TypeVar("T")

FILE_PATH_PATTERN = re.compile(
    r"^receipts/[a-f0-9-]{36}/[a-f0-9-]{36}\.(jpg|jpeg|png|heic|webp)$", re.IGNORECASE
)


# ---------------------------------------------------------------------------
# Domain schemas


class Category(BaseModel):
    """Canonical expense category owned by the category store."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str


class RawExtractedItem(BaseModel):
    """One line item exactly as reported by the model."""

    name: str
    amount: float
    category: str = Field(description="Free text label, not validated against canonical categories")


class ReceiptExtraction(BaseModel):
    """Structured payload the model returns for one receipt."""

    items: List[RawExtractedItem] = Field(default_factory=list)
    total: float
    date: str


class ReceiptExpenseGroup(BaseModel):
    """One canonical category's worth of a receipt."""

    category_id: str
    category_name: str
    amount: str
    items: List[str] = Field(default_factory=list)


class ProcessReceiptResponse(BaseModel):
    """Terminal result of the receipt processing pipeline."""

    expenses: List[ReceiptExpenseGroup]
    total_amount: str
    currency: str
    receipt_date: str
    processing_time_ms: int


class ProcessingContext(BaseModel):
    """Accumulator threaded through the pipeline steps.

    The context is append-only: ``extend`` returns a new context with the
    given fields set and refuses to clear or replace a field that an
    earlier step already set.
    """

    model_config = ConfigDict(frozen=True, protected_namespaces=())

    file_path: str
    user_id: str
    start_time: float
    ai_consent_given: Optional[bool] = None
    categories: Optional[List[Category]] = None
    model_result: Optional[ReceiptExtraction] = None
    result: Optional[ProcessReceiptResponse] = None

    def extend(self, **fields: Any) -> "ProcessingContext":
        for name, value in fields.items():
            if name not in type(self).model_fields:
                raise PipelineInvariantError(f"Unknown context field: {name}")
            if value is None:
                raise PipelineInvariantError(f"Context field {name} cannot be cleared")
            if getattr(self, name) is not None:
                raise PipelineInvariantError(f"Context field {name} is already set")
        return self.model_copy(update=fields)


# ---------------------------------------------------------------------------
# Remote model client schemas


class ResponseSchema(BaseModel):
    """Named JSON schema used as a strict structured-output directive."""

    name: str
    schema_: Dict[str, Any] = Field(alias="schema")

    model_config = ConfigDict(populate_by_name=True)


class ModelUsage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class CompletionOptions(BaseModel):
    """Options for a single structured chat completion."""

    system_message: str
    user_message: Any
    response_schema: ResponseSchema
    model: Optional[str] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    top_p: Optional[float] = None


class CompletionResult(BaseModel, Generic[T]):
    """Parsed structured output plus provider metadata."""

    data: T
    model: str
    usage: Optional[ModelUsage] = None


# ---------------------------------------------------------------------------
# API request/response schemas


class UploadReceiptResponse(BaseModel):
    file_id: str
    file_path: str
    uploaded_at: datetime


class ProcessReceiptRequest(BaseModel):
    file_path: str

    @field_validator("file_path")
    @classmethod
    def _check_path(cls, v: str) -> str:
        if not v:
            raise ValueError("File path is required")
        if not FILE_PATH_PATTERN.match(v):
            raise ValueError("Invalid file path format. Expected: receipts/{user_id}/{uuid}.{ext}")
        return v


class BatchExpenseItem(BaseModel):
    category_id: str
    amount: str
    expense_date: str
    currency: str = "PLN"
    created_by_ai: bool = True
    was_ai_suggestion_edited: bool = False

    @field_validator("amount")
    @classmethod
    def _positive_amount(cls, v: str) -> str:
        try:
            value = float(v)
        except ValueError as exc:
            raise ValueError("Amount must be a number") from exc
        if value <= 0:
            raise ValueError("Amount must be positive")
        return v


class CreateExpenseBatchCommand(BaseModel):
    expenses: List[BatchExpenseItem] = Field(min_length=1, max_length=50)


class ExpenseRead(BaseModel):
    id: str
    user_id: str
    category_id: str
    amount: str
    expense_date: str
    currency: str
    created_by_ai: bool
    was_ai_suggestion_edited: bool


class BatchExpenseResponse(BaseModel):
    data: List[ExpenseRead]
    count: int


class CategoryList(BaseModel):
    data: List[Category]


class ProfileRead(BaseModel):
    id: str
    ai_consent_given: bool


class ProfileUpdate(BaseModel):
    ai_consent_given: bool


class APIErrorBody(BaseModel):
    code: str
    message: str
    details: Optional[Dict[str, Any]] = None


class APIErrorResponse(BaseModel):
    error: APIErrorBody
