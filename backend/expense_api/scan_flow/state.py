"""State carried by one receipt scan flow.

A ``ScanFlowState`` belongs to exactly one controller; the controller
replaces it wholesale on every transition instead of mutating it, so a
snapshot taken by a caller never changes underneath them.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from expense_api.models.enums import ScanStep
from expense_api.models.schemas import ProcessReceiptResponse, UploadReceiptResponse


class EditableExpense(BaseModel):
    """One expense group as the user sees it during verification."""

    id: str
    category_id: str
    category_name: str
    amount: str
    items: List[str] = Field(default_factory=list)
    is_edited: bool = False


class ScanError(BaseModel):
    code: str
    message: str
    details: Optional[Dict[str, Any]] = None
    # Step that was active when the failure happened; drives ``retry``.
    failed_step: Optional[ScanStep] = None


class ScanFlowState(BaseModel):
    step: ScanStep = ScanStep.UPLOAD
    uploaded_file: Optional[UploadReceiptResponse] = None
    processed_data: Optional[ProcessReceiptResponse] = None
    edited_expenses: List[EditableExpense] = Field(default_factory=list)
    error: Optional[ScanError] = None
    is_loading: bool = False
    processing_start_time: Optional[float] = None
