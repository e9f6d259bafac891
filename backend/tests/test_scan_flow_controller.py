from __future__ import annotations

import itertools
from datetime import datetime, timezone

import httpx
import pytest

from expense_api.api import dependencies as deps
from expense_api.api.main import create_app
from expense_api.core.config import settings
from expense_api.core.security import get_current_user_id
from expense_api.models.enums import ErrorCode, ScanStep
from expense_api.models.schemas import (
    BatchExpenseResponse,
    ExpenseRead,
    ProcessReceiptResponse,
    ProfileRead,
    ReceiptExpenseGroup,
    UploadReceiptResponse,
)
from expense_api.scan_flow.api_client import ScanFlowAPI, ScanFlowAPIError
from expense_api.scan_flow.controller import InvalidTransition, ScanFlowController
from expense_api.scan_flow.messages import error_message

from fakes import CATEGORIES, FILE_ID, FILE_PATH, USER_ID, FakeBlobStore, FakeCategories, FakeExpenses, FakeExtractor, FakeProfiles, sample_extraction

JPEG = b"\xff\xd8\xff\xe0fake-jpeg"


def _processed() -> ProcessReceiptResponse:
    return ProcessReceiptResponse(
        expenses=[
            ReceiptExpenseGroup(category_id="c-food", category_name="Żywność", amount="7.70", items=["Chleb - 4.50", "Mleko - 3.20"]),
            ReceiptExpenseGroup(category_id="c-transport", category_name="Transport", amount="6.00", items=["Bilet - 6.00"]),
        ],
        total_amount="13.70",
        currency="PLN",
        receipt_date="2024-03-15",
        processing_time_ms=1200,
    )


class FakeAPI:
    def __init__(self, consent=True):
        self.consent = consent
        self.upload_error = None
        self.process_error = None
        self.save_errors = []
        self.saved_batches = []
        self.uploads = []

    async def list_categories(self):
        return list(CATEGORIES)

    async def get_profile(self):
        return ProfileRead(id=USER_ID, ai_consent_given=self.consent)

    async def grant_consent(self):
        self.consent = True
        return ProfileRead(id=USER_ID, ai_consent_given=True)

    async def upload_receipt(self, filename, data, content_type):
        self.uploads.append((filename, content_type))
        if self.upload_error:
            raise self.upload_error
        return UploadReceiptResponse(file_id=FILE_ID, file_path=FILE_PATH, uploaded_at=datetime.now(timezone.utc))

    async def process_receipt(self, file_path):
        if self.process_error:
            raise self.process_error
        return _processed()

    async def save_expenses_batch(self, expenses):
        self.saved_batches.append(list(expenses))
        if self.save_errors:
            raise self.save_errors.pop(0)
        rows = [ExpenseRead(id=f"e{i}", user_id=USER_ID, **item.model_dump()) for i, item in enumerate(expenses)]
        return BatchExpenseResponse(data=rows, count=len(rows))


def _controller(api=None) -> ScanFlowController:
    counter = itertools.count(1)
    return ScanFlowController(api or FakeAPI(), id_factory=lambda: f"exp-{next(counter)}")


async def _at_verification(api=None) -> ScanFlowController:
    controller = _controller(api)
    await controller.start()
    await controller.upload("receipt.jpg", JPEG, "image/jpeg")
    assert controller.state.step == ScanStep.VERIFICATION
    return controller


@pytest.mark.asyncio
async def test_start_without_consent_enters_consent_step():
    controller = _controller(FakeAPI(consent=False))
    state = await controller.start()
    assert state.step == ScanStep.CONSENT
    await controller.grant_consent()
    assert controller.state.step == ScanStep.UPLOAD


@pytest.mark.asyncio
async def test_upload_processes_automatically_into_verification():
    controller = await _at_verification()
    state = controller.state
    assert state.uploaded_file.file_path == FILE_PATH
    assert state.processed_data.receipt_date == "2024-03-15"
    assert [e.id for e in state.edited_expenses] == ["exp-1", "exp-2"]
    assert not any(e.is_edited for e in state.edited_expenses)
    assert state.is_loading is False
    assert state.processing_start_time is None
    assert controller.can_save


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "data, content_type, code",
    [
        (JPEG, "application/pdf", ErrorCode.VALIDATION_ERROR.value),
        (b"", "image/png", ErrorCode.VALIDATION_ERROR.value),
        (b"x" * (settings.MAX_UPLOAD_SIZE + 1), "image/jpeg", ErrorCode.PAYLOAD_TOO_LARGE.value),
    ],
)
async def test_invalid_file_is_rejected_client_side(data, content_type, code):
    api = FakeAPI()
    controller = _controller(api)
    await controller.start()
    await controller.upload("receipt", data, content_type)
    assert controller.state.step == ScanStep.ERROR
    assert controller.state.error.code == code
    assert api.uploads == []


@pytest.mark.asyncio
async def test_processing_failure_and_retry_returns_to_upload():
    api = FakeAPI()
    api.process_error = ScanFlowAPIError("PROCESSING_TIMEOUT", "Request timed out")
    controller = _controller(api)
    await controller.start()
    await controller.upload("receipt.jpg", JPEG, "image/jpeg")
    assert controller.state.step == ScanStep.ERROR
    assert controller.state.error.failed_step == ScanStep.PROCESSING
    assert controller.can_continue_manually is False
    assert controller.error_message == error_message("PROCESSING_TIMEOUT")

    controller.retry()
    assert controller.state.step == ScanStep.UPLOAD
    assert controller.state.error is None
    assert controller.state.uploaded_file is None


@pytest.mark.asyncio
async def test_consent_error_offers_manual_entry():
    api = FakeAPI()
    api.process_error = ScanFlowAPIError("AI_CONSENT_REQUIRED", "AI consent required", status_code=403)
    controller = _controller(api)
    await controller.start()
    await controller.upload("receipt.jpg", JPEG, "image/jpeg")
    assert controller.can_continue_manually is True


@pytest.mark.asyncio
async def test_edits_mark_expense_and_flow_into_batch():
    api = FakeAPI()
    controller = await _at_verification(api)
    controller.update_expense("exp-2", amount="5.50", category_id="c-other")
    controller.update_receipt_date("2024-03-16")

    edited = controller.state.edited_expenses[1]
    assert edited.is_edited is True
    assert edited.category_name == "Inne"
    assert controller.state.edited_expenses[0].is_edited is False

    await controller.save()
    assert controller.state.step == ScanStep.COMPLETE
    (batch,) = api.saved_batches
    assert [(b.category_id, b.amount, b.was_ai_suggestion_edited) for b in batch] == [
        ("c-food", "7.70", False),
        ("c-other", "5.50", True),
    ]
    assert {b.expense_date for b in batch} == {"2024-03-16"}
    assert all(b.created_by_ai and b.currency == "PLN" for b in batch)


@pytest.mark.asyncio
async def test_validity_rules():
    controller = await _at_verification()
    controller.update_expense("exp-1", amount="0")
    assert controller.is_valid is False
    controller.update_expense("exp-1", amount="1.00")
    assert controller.is_valid is True
    controller.remove_expense("exp-1")
    assert controller.is_valid is True
    controller.remove_expense("exp-2")
    assert controller.is_valid is False
    assert controller.can_save is False
    with pytest.raises(InvalidTransition):
        await controller.save()


@pytest.mark.asyncio
async def test_unknown_category_or_expense_is_rejected_without_changes():
    controller = await _at_verification()
    before = controller.state
    with pytest.raises(KeyError):
        controller.update_expense("exp-1", category_id="unknown")
    with pytest.raises(KeyError):
        controller.update_expense("exp-404", amount="1.00")
    assert controller.state is before
    assert controller.state.edited_expenses[0].category_name == "Żywność"


def test_new_flow_starts_at_upload_step():
    controller = _controller()
    assert controller.state.step == ScanStep.UPLOAD
    assert controller.state.step.value == "upload"
    assert controller.state.error is None


@pytest.mark.asyncio
async def test_save_failure_keeps_edits_in_verification():
    api = FakeAPI()
    api.save_errors.append(ScanFlowAPIError("INTERNAL_ERROR", "database unavailable", status_code=500))
    controller = await _at_verification(api)
    controller.update_expense("exp-1", amount="9.99")
    before = [e.model_dump() for e in controller.state.edited_expenses]

    await controller.save()

    assert controller.state.step == ScanStep.VERIFICATION
    assert controller.state.error.code == "INTERNAL_ERROR"
    assert controller.state.error.failed_step == ScanStep.SAVING
    assert [e.model_dump() for e in controller.state.edited_expenses] == before

    controller.retry()
    assert controller.state.step == ScanStep.VERIFICATION
    assert controller.state.error is None
    await controller.save()
    assert controller.state.step == ScanStep.COMPLETE
    assert len(api.saved_batches) == 2


@pytest.mark.asyncio
async def test_actions_in_wrong_step_are_rejected():
    controller = _controller()
    await controller.start()
    with pytest.raises(InvalidTransition):
        controller.update_expense("exp-1", amount="1.00")
    with pytest.raises(InvalidTransition):
        await controller.grant_consent()
    with pytest.raises(InvalidTransition):
        controller.retry()


@pytest.mark.asyncio
async def test_reset_starts_a_fresh_flow():
    controller = await _at_verification()
    controller.reset()
    assert controller.state.step == ScanStep.UPLOAD
    assert controller.state.edited_expenses == []
    assert controller.state.processed_data is None


@pytest.mark.asyncio
async def test_full_flow_against_the_api(monkeypatch):
    monkeypatch.setattr(settings, "RATE_LIMIT_ENABLED", False)
    monkeypatch.setattr(settings, "AI_RECEIPT_PROCESSING_ENABLED", True)
    blobs, expenses = FakeBlobStore(), FakeExpenses()
    app = create_app()
    app.dependency_overrides[deps.provide_blob_store] = lambda: blobs
    app.dependency_overrides[deps.get_profile_store] = lambda: FakeProfiles(consent=True)
    app.dependency_overrides[deps.get_category_store] = lambda: FakeCategories()
    app.dependency_overrides[deps.get_expense_store] = lambda: expenses
    app.dependency_overrides[deps.get_receipt_extractor] = lambda: FakeExtractor(result=sample_extraction())
    app.dependency_overrides[get_current_user_id] = lambda: USER_ID

    http = httpx.AsyncClient(transport=httpx.ASGITransport(app=app))
    async with ScanFlowAPI("http://testserver", token="t", http_client=http) as api:
        controller = ScanFlowController(api)
        await controller.start()
        await controller.upload("receipt.jpg", JPEG, "image/jpeg")
        assert controller.state.step == ScanStep.VERIFICATION
        assert [e.amount for e in controller.state.edited_expenses] == ["7.70", "6.00"]
        await controller.save()
    await http.aclose()

    assert controller.state.step == ScanStep.COMPLETE
    assert controller.saved.count == 2
    assert [e.category_id for e in expenses.created] == ["c-food", "c-transport"]


@pytest.mark.asyncio
async def test_api_client_maps_error_body_and_transport_failures():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/receipts/process"):
            raise httpx.ReadTimeout("slow", request=request)
        if request.url.path.endswith("/categories"):
            raise httpx.ConnectError("refused", request=request)
        return httpx.Response(403, json={"error": {"code": "FORBIDDEN", "message": "nope", "details": None}})

    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    api = ScanFlowAPI("http://api", http_client=http)
    with pytest.raises(ScanFlowAPIError) as timeout:
        await api.process_receipt(FILE_PATH)
    assert timeout.value.code == "PROCESSING_TIMEOUT"
    with pytest.raises(ScanFlowAPIError) as network:
        await api.list_categories()
    assert network.value.code == "NETWORK_ERROR"
    with pytest.raises(ScanFlowAPIError) as forbidden:
        await api.get_profile()
    assert (forbidden.value.code, forbidden.value.status_code) == ("FORBIDDEN", 403)
    await http.aclose()
