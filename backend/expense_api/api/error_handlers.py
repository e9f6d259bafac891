"""
Custom exception handlers for FastAPI.
Every error leaves the API as ``{"error": {"code", "message", "details"}}``.
"""

from typing import Any, Dict, List, Optional

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.status import HTTP_400_BAD_REQUEST, HTTP_500_INTERNAL_SERVER_ERROR

from expense_api.core.observability import sentry_capture
from expense_api.models.enums import ErrorCode
from expense_api.models.schemas import APIErrorBody, APIErrorResponse
from expense_api.services.errors import PipelineError

ERROR_STATUS: Dict[ErrorCode, int] = {
    ErrorCode.AI_CONSENT_REQUIRED: 403,
    ErrorCode.FORBIDDEN: 403,
    ErrorCode.UNAUTHORIZED: 401,
    ErrorCode.RATE_LIMIT_EXCEEDED: 429,
    ErrorCode.PROCESSING_TIMEOUT: 408,
    ErrorCode.VALIDATION_ERROR: 400,
    ErrorCode.INVALID_FILE_PATH: 400,
    ErrorCode.FILE_NOT_FOUND: 400,
    ErrorCode.PAYLOAD_TOO_LARGE: 413,
    ErrorCode.EXTRACTION_FAILED: 422,
    ErrorCode.FEATURE_DISABLED: 503,
    ErrorCode.AI_SERVICE_ERROR: 500,
    ErrorCode.NETWORK_ERROR: 500,
    ErrorCode.INTERNAL_ERROR: 500,
}


def status_for(code: ErrorCode) -> int:
    return ERROR_STATUS.get(code, HTTP_500_INTERNAL_SERVER_ERROR)


def error_response(status_code: int, code: ErrorCode, message: str, details: Optional[Dict[str, Any]] = None) -> JSONResponse:
    body = APIErrorResponse(error=APIErrorBody(code=code.value, message=message, details=details))
    return JSONResponse(status_code=status_code, content=body.model_dump())


def pipeline_exception_handler(request: Request, exc: PipelineError):
    return error_response(status_for(exc.code), exc.code, exc.message, exc.details)


def _clean_msg(msg: str) -> str:
    return msg.removeprefix("Value error, ")


def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors: List[Dict[str, str]] = [
        {"field": ".".join(str(p) for p in err.get("loc", ())), "message": _clean_msg(err.get("msg", ""))}
        for err in exc.errors()
    ]
    # A malformed storage path on the process endpoint has its own code.
    if request.url.path.endswith("/receipts/process"):
        path_errors = [e for e in errors if e["field"].endswith("file_path")]
        if path_errors:
            return error_response(
                HTTP_400_BAD_REQUEST, ErrorCode.INVALID_FILE_PATH, path_errors[0]["message"], {"errors": errors}
            )
    message = errors[0]["message"] if errors else "Invalid request"
    return error_response(HTTP_400_BAD_REQUEST, ErrorCode.VALIDATION_ERROR, message, {"errors": errors})


def generic_exception_handler(request: Request, exc: Exception):
    sentry_capture(exc)
    return error_response(HTTP_500_INTERNAL_SERVER_ERROR, ErrorCode.INTERNAL_ERROR, "An unexpected error occurred")
