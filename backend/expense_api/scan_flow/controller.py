"""Scan flow state machine.

Drives one receipt from upload to saved expenses::

    consent -> upload -> processing -> verification -> saving -> complete
                  \\__________\\____________________________\\-> error

* ``consent`` is only entered when the profile has not granted AI consent.
* A successful upload starts processing automatically.
* During ``verification`` the user edits, re-categorises or removes
  expense groups. Any edit marks that group as edited, which is sent as
  ``was_ai_suggestion_edited`` on save.
* A failed save returns to ``verification`` with every edit intact and
  the error attached, so nothing the user typed is lost.
* ``retry`` from ``error`` goes back to ``upload`` (or ``consent`` when
  consent was never granted). After a save failure it clears the error
  and stays in ``verification``.

Actions issued in the wrong step raise ``InvalidTransition``. Every
transition replaces ``state`` with a new ``ScanFlowState``.
"""

from __future__ import annotations

import logging
import time
import uuid
from typing import Any, Callable, Dict, List, Optional, Sequence

from expense_api.core.config import settings
from expense_api.models.enums import ErrorCode, ScanStep
from expense_api.models.schemas import BatchExpenseItem, BatchExpenseResponse, Category
from expense_api.scan_flow.api_client import ScanFlowAPI, ScanFlowAPIError
from expense_api.scan_flow.messages import can_continue_manually, error_message
from expense_api.scan_flow.state import EditableExpense, ScanError, ScanFlowState

logger = logging.getLogger(__name__)


class InvalidTransition(RuntimeError):
    """An action was issued in a step that does not allow it."""


class ScanFlowController:
    def __init__(
        self,
        api: ScanFlowAPI,
        id_factory: Callable[[], Any] = uuid.uuid4,
        clock: Callable[[], float] = time.monotonic,
        max_file_size: Optional[int] = None,
        allowed_content_types: Optional[Sequence[str]] = None,
    ) -> None:
        self.api = api
        self._id_factory = id_factory
        self._clock = clock
        self.max_file_size = max_file_size or settings.MAX_UPLOAD_SIZE
        self.allowed_content_types = list(allowed_content_types or settings.ALLOWED_CONTENT_TYPES)
        self.state = ScanFlowState()
        self.categories: List[Category] = []
        self.has_ai_consent: Optional[bool] = None
        self.saved: Optional[BatchExpenseResponse] = None

    # ------------------------------------------------------------------
    # helpers

    def _set(self, **changes: Any) -> ScanFlowState:
        self.state = self.state.model_copy(update=changes)
        return self.state

    def _require(self, action: str, *steps: ScanStep) -> None:
        if self.state.step not in steps:
            raise InvalidTransition(f"Cannot {action} during step '{self.state.step.value}'")

    def _fail(
        self,
        code: str,
        message: str,
        failed_step: ScanStep,
        details: Optional[Dict[str, Any]] = None,
        step: ScanStep = ScanStep.ERROR,
    ) -> ScanFlowState:
        logger.info("[scan] %s failed code=%s", failed_step.value, code)
        return self._set(
            step=step,
            is_loading=False,
            processing_start_time=None,
            error=ScanError(code=code, message=message, details=details, failed_step=failed_step),
        )

    def _fail_from(self, exc: ScanFlowAPIError, failed_step: ScanStep, step: ScanStep = ScanStep.ERROR) -> ScanFlowState:
        return self._fail(exc.code, exc.message, failed_step, exc.details, step=step)

    # ------------------------------------------------------------------
    # consent

    async def start(self) -> ScanFlowState:
        """Load categories and consent, then enter ``consent`` or ``upload``."""
        self.state = ScanFlowState(is_loading=True)
        try:
            self.categories = await self.api.list_categories()
            profile = await self.api.get_profile()
        except ScanFlowAPIError as exc:
            return self._fail_from(exc, ScanStep.CONSENT)
        self.has_ai_consent = profile.ai_consent_given
        self.state = ScanFlowState(step=ScanStep.UPLOAD if profile.ai_consent_given else ScanStep.CONSENT)
        return self.state

    async def grant_consent(self) -> ScanFlowState:
        self._require("grant consent", ScanStep.CONSENT)
        self._set(is_loading=True)
        try:
            profile = await self.api.grant_consent()
        except ScanFlowAPIError as exc:
            return self._fail_from(exc, ScanStep.CONSENT)
        self.has_ai_consent = profile.ai_consent_given
        return self._set(step=ScanStep.UPLOAD, is_loading=False, error=None)

    # ------------------------------------------------------------------
    # upload and processing

    def validate_file(self, data: bytes, content_type: Optional[str]) -> Optional[ScanError]:
        if (content_type or "").lower() not in self.allowed_content_types:
            return ScanError(
                code=ErrorCode.VALIDATION_ERROR.value,
                message="Invalid file type. Please upload JPEG, PNG, or HEIC images only.",
            )
        if len(data) > self.max_file_size:
            return ScanError(
                code=ErrorCode.PAYLOAD_TOO_LARGE.value,
                message=f"File size exceeds {self.max_file_size // (1024 * 1024)}MB limit.",
            )
        if not data:
            return ScanError(code=ErrorCode.VALIDATION_ERROR.value, message="File is empty")
        return None

    async def upload(self, filename: str, data: bytes, content_type: str) -> ScanFlowState:
        """Validate and upload a receipt, then process it automatically."""
        self._require("upload", ScanStep.UPLOAD)
        problem = self.validate_file(data, content_type)
        if problem is not None:
            return self._fail(problem.code, problem.message, ScanStep.UPLOAD)

        self._set(is_loading=True, error=None)
        try:
            uploaded = await self.api.upload_receipt(filename, data, content_type)
        except ScanFlowAPIError as exc:
            return self._fail_from(exc, ScanStep.UPLOAD)

        self._set(uploaded_file=uploaded, is_loading=False, step=ScanStep.PROCESSING)
        return await self.process()

    async def process(self) -> ScanFlowState:
        self._require("process", ScanStep.PROCESSING)
        uploaded = self.state.uploaded_file
        if uploaded is None:
            raise InvalidTransition("Nothing has been uploaded")

        self._set(is_loading=True, processing_start_time=self._clock())
        try:
            result = await self.api.process_receipt(uploaded.file_path)
        except ScanFlowAPIError as exc:
            return self._fail_from(exc, ScanStep.PROCESSING)

        expenses = [
            EditableExpense(
                id=str(self._id_factory()),
                category_id=group.category_id,
                category_name=group.category_name,
                amount=group.amount,
                items=list(group.items),
                is_edited=False,
            )
            for group in result.expenses
        ]
        logger.info("[scan] processed groups=%d in %dms", len(expenses), result.processing_time_ms)
        return self._set(
            step=ScanStep.VERIFICATION,
            processed_data=result,
            edited_expenses=expenses,
            is_loading=False,
            processing_start_time=None,
            error=None,
        )

    # ------------------------------------------------------------------
    # verification

    def _category_name(self, category_id: str) -> Optional[str]:
        for category in self.categories:
            if category.id == category_id:
                return category.name
        return None

    def update_expense(
        self,
        expense_id: str,
        *,
        amount: Optional[str] = None,
        category_id: Optional[str] = None,
        category_name: Optional[str] = None,
    ) -> ScanFlowState:
        """Edit one expense group; the group is marked as edited.

        Raises ``KeyError`` for an unknown expense or category id.
        """
        self._require("edit expenses", ScanStep.VERIFICATION)
        changes: Dict[str, Any] = {"is_edited": True}
        if amount is not None:
            changes["amount"] = amount
        if category_id is not None:
            known_name = self._category_name(category_id)
            if known_name is None:
                raise KeyError(category_id)
            changes["category_id"] = category_id
            changes["category_name"] = category_name or known_name
        elif category_name is not None:
            changes["category_name"] = category_name

        found = False
        updated: List[EditableExpense] = []
        for expense in self.state.edited_expenses:
            if expense.id == expense_id:
                found = True
                expense = expense.model_copy(update=changes)
            updated.append(expense)
        if not found:
            raise KeyError(expense_id)
        return self._set(edited_expenses=updated)

    def update_receipt_date(self, receipt_date: str) -> ScanFlowState:
        self._require("change the receipt date", ScanStep.VERIFICATION)
        if self.state.processed_data is None:
            raise InvalidTransition("No processed receipt to update")
        data = self.state.processed_data.model_copy(update={"receipt_date": receipt_date})
        return self._set(processed_data=data)

    def remove_expense(self, expense_id: str) -> ScanFlowState:
        self._require("remove expenses", ScanStep.VERIFICATION)
        remaining = [e for e in self.state.edited_expenses if e.id != expense_id]
        return self._set(edited_expenses=remaining)

    @property
    def is_valid(self) -> bool:
        expenses = self.state.edited_expenses
        if not expenses:
            return False
        known = {c.id for c in self.categories}
        for expense in expenses:
            try:
                if float(expense.amount) <= 0:
                    return False
            except ValueError:
                return False
            if expense.category_id not in known:
                return False
        return True

    @property
    def can_save(self) -> bool:
        return self.state.step == ScanStep.VERIFICATION and not self.state.is_loading and self.is_valid

    # ------------------------------------------------------------------
    # saving

    def build_batch(self) -> List[BatchExpenseItem]:
        data = self.state.processed_data
        if data is None:
            raise InvalidTransition("No processed receipt to save")
        return [
            BatchExpenseItem(
                category_id=expense.category_id,
                amount=expense.amount,
                expense_date=data.receipt_date,
                currency=data.currency,
                created_by_ai=True,
                was_ai_suggestion_edited=expense.is_edited,
            )
            for expense in self.state.edited_expenses
        ]

    async def save(self) -> ScanFlowState:
        """Persist the verified expenses in one batch."""
        self._require("save", ScanStep.VERIFICATION)
        if not self.is_valid:
            raise InvalidTransition("Expenses are not valid and cannot be saved")
        batch = self.build_batch()

        self._set(step=ScanStep.SAVING, is_loading=True, error=None)
        try:
            self.saved = await self.api.save_expenses_batch(batch)
        except ScanFlowAPIError as exc:
            # Back to verification; edited_expenses is left untouched.
            return self._fail_from(exc, ScanStep.SAVING, step=ScanStep.VERIFICATION)
        logger.info("[scan] saved %d expenses", self.saved.count)
        return self._set(step=ScanStep.COMPLETE, is_loading=False)

    # ------------------------------------------------------------------
    # recovery

    def retry(self) -> ScanFlowState:
        error = self.state.error
        save_failed = error is not None and error.failed_step == ScanStep.SAVING
        if self.state.step != ScanStep.ERROR and not (self.state.step == ScanStep.VERIFICATION and save_failed):
            raise InvalidTransition(f"Nothing to retry during step '{self.state.step.value}'")

        if save_failed:
            return self._set(step=ScanStep.VERIFICATION, error=None, is_loading=False)
        if error is not None and error.failed_step == ScanStep.CONSENT and not self.has_ai_consent:
            return self._set(step=ScanStep.CONSENT, error=None, is_loading=False)
        self.state = ScanFlowState(step=ScanStep.UPLOAD)
        return self.state

    def reset(self) -> ScanFlowState:
        self.saved = None
        self.state = ScanFlowState(step=ScanStep.UPLOAD)
        return self.state

    @property
    def can_continue_manually(self) -> bool:
        return self.state.error is not None and can_continue_manually(self.state.error.code)

    @property
    def error_message(self) -> Optional[str]:
        if self.state.error is None:
            return None
        return error_message(self.state.error.code, self.state.error.message)
