"""HTTP client used by the scan flow to talk to the receipt API.

Every non-2xx response is raised as ``ScanFlowAPIError`` carrying the
server's ``{"error": {...}}`` body. Transport failures are reported as
``NETWORK_ERROR``; the processing call has its own client-side timeout
(20 seconds by default) reported as ``PROCESSING_TIMEOUT``.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

import httpx
from pydantic import ValidationError as PydanticValidationError

from expense_api.models.enums import ErrorCode
from expense_api.models.schemas import (
    APIErrorResponse,
    BatchExpenseItem,
    BatchExpenseResponse,
    Category,
    CategoryList,
    ProcessReceiptResponse,
    ProfileRead,
    UploadReceiptResponse,
)

logger = logging.getLogger(__name__)

PROCESSING_TIMEOUT_S = 20.0
DEFAULT_TIMEOUT_S = 30.0


class ScanFlowAPIError(Exception):
    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details
        self.status_code = status_code

    @classmethod
    def from_response(cls, response: httpx.Response) -> "ScanFlowAPIError":
        try:
            body = APIErrorResponse.model_validate(response.json())
        except (ValueError, PydanticValidationError):
            return cls(
                ErrorCode.INTERNAL_ERROR.value,
                f"Unexpected response (HTTP {response.status_code})",
                status_code=response.status_code,
            )
        return cls(body.error.code, body.error.message, body.error.details, response.status_code)


class ScanFlowAPI:
    """Thin async wrapper over the receipt API endpoints."""

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        api_prefix: str = "/api",
        processing_timeout_s: float = PROCESSING_TIMEOUT_S,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=DEFAULT_TIMEOUT_S)
        self._client.headers.update(headers)
        self._base = base_url.rstrip("/") + api_prefix
        self.processing_timeout_s = processing_timeout_s

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "ScanFlowAPI":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        timeout_code: ErrorCode = ErrorCode.NETWORK_ERROR,
        **kwargs: Any,
    ) -> Any:
        url = f"{self._base}{path}"
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            logger.warning("[scan] %s %s timed out", method, path)
            raise ScanFlowAPIError(timeout_code.value, "Request timed out") from exc
        except httpx.HTTPError as exc:
            logger.warning("[scan] %s %s transport error: %s", method, path, exc)
            raise ScanFlowAPIError(ErrorCode.NETWORK_ERROR.value, "Network request failed") from exc
        if response.status_code >= 400:
            raise ScanFlowAPIError.from_response(response)
        return response.json()

    async def get_profile(self) -> ProfileRead:
        return ProfileRead.model_validate(await self._request("GET", "/profiles/me"))

    async def grant_consent(self) -> ProfileRead:
        data = await self._request("PATCH", "/profiles/me", json={"ai_consent_given": True})
        return ProfileRead.model_validate(data)

    async def list_categories(self) -> List[Category]:
        return CategoryList.model_validate(await self._request("GET", "/categories")).data

    async def upload_receipt(self, filename: str, data: bytes, content_type: str) -> UploadReceiptResponse:
        files = {"file": (filename, data, content_type)}
        return UploadReceiptResponse.model_validate(await self._request("POST", "/receipts/upload", files=files))

    async def process_receipt(self, file_path: str) -> ProcessReceiptResponse:
        data = await self._request(
            "POST",
            "/receipts/process",
            timeout_code=ErrorCode.PROCESSING_TIMEOUT,
            json={"file_path": file_path},
            timeout=self.processing_timeout_s,
        )
        return ProcessReceiptResponse.model_validate(data)

    async def save_expenses_batch(self, expenses: Sequence[BatchExpenseItem]) -> BatchExpenseResponse:
        body = {"expenses": [item.model_dump() for item in expenses]}
        return BatchExpenseResponse.model_validate(await self._request("POST", "/expenses/batch", json=body))
