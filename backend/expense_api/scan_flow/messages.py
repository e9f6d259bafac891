"""Human readable messages for scan flow error codes."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional

from expense_api.models.enums import ErrorCode


@dataclass(frozen=True)
class ErrorPresentation:
    title: str
    description: str
    show_retry: bool


_PRESENTATIONS: Dict[str, ErrorPresentation] = {
    ErrorCode.PROCESSING_TIMEOUT.value: ErrorPresentation(
        "Processing Timeout",
        "AI processing took longer than expected (20 seconds). This can happen with complex receipts "
        "or poor image quality. You can try again with a clearer image.",
        True,
    ),
    ErrorCode.EXTRACTION_FAILED.value: ErrorPresentation(
        "Cannot Read Receipt",
        "The AI could not extract expense information from this receipt. Please try with a clearer image.",
        True,
    ),
    ErrorCode.VALIDATION_ERROR.value: ErrorPresentation(
        "Invalid File",
        "The uploaded file is invalid. Please ensure you upload a JPEG, PNG, or HEIC image under 10MB.",
        True,
    ),
    ErrorCode.PAYLOAD_TOO_LARGE.value: ErrorPresentation(
        "File Too Large",
        "The uploaded file exceeds the 10MB size limit. Please compress the image or take a new photo.",
        True,
    ),
    ErrorCode.AI_CONSENT_REQUIRED.value: ErrorPresentation(
        "AI Consent Required",
        "You need to grant consent to use AI features before uploading receipts. "
        "You can add expenses manually instead.",
        False,
    ),
    ErrorCode.AI_SERVICE_ERROR.value: ErrorPresentation(
        "AI Service Error",
        "The AI service is temporarily unavailable. Please try again in a few moments.",
        True,
    ),
    ErrorCode.RATE_LIMIT_EXCEEDED.value: ErrorPresentation(
        "Too Many Requests",
        "You have scanned too many receipts in a short time. Please wait a minute and try again.",
        True,
    ),
    ErrorCode.FORBIDDEN.value: ErrorPresentation(
        "Access Denied",
        "You do not have access to this receipt.",
        False,
    ),
    ErrorCode.FILE_NOT_FOUND.value: ErrorPresentation(
        "Receipt Not Found",
        "The uploaded receipt could not be found. Please upload it again.",
        True,
    ),
    ErrorCode.FEATURE_DISABLED.value: ErrorPresentation(
        "Feature Unavailable",
        "AI receipt scanning is currently disabled.",
        False,
    ),
    ErrorCode.UNAUTHORIZED.value: ErrorPresentation(
        "Session Expired",
        "Your session has expired. Please log in again to continue.",
        False,
    ),
    ErrorCode.NETWORK_ERROR.value: ErrorPresentation(
        "Connection Problem",
        "Could not reach the server. Check your connection and try again.",
        True,
    ),
}

_DEFAULT = ErrorPresentation("An Error Occurred", "An unexpected error occurred. Please try again.", True)


def present_error(code: str) -> ErrorPresentation:
    return _PRESENTATIONS.get(code, _DEFAULT)


def error_message(code: str, fallback: Optional[str] = None) -> str:
    """Return the user facing message for an error code.

    Unknown codes use ``fallback`` (usually the server's own message) when
    given. Validation errors also prefer the server message, which names
    the offending field.
    """
    if code not in _PRESENTATIONS or code == ErrorCode.VALIDATION_ERROR.value:
        return fallback or present_error(code).description
    return _PRESENTATIONS[code].description


def can_continue_manually(code: Optional[str]) -> bool:
    """Only a missing AI consent offers manual entry instead of a retry."""
    return code == ErrorCode.AI_CONSENT_REQUIRED.value
