"""Enumeration types used throughout the receipt processing API.

Enumerations make it easier to constrain the values that cross the HTTP
boundary. Error codes are part of the public contract consumed by the
scan flow client, so adding a member here means adding a status mapping
in ``expense_api.api.error_handlers`` and a message in
``expense_api.scan_flow.messages``.
"""

from enum import Enum


class ErrorCode(str, Enum):
    """Error codes surfaced in ``{"error": {"code": ...}}`` responses."""

    AI_CONSENT_REQUIRED = "AI_CONSENT_REQUIRED"
    FORBIDDEN = "FORBIDDEN"
    UNAUTHORIZED = "UNAUTHORIZED"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    PROCESSING_TIMEOUT = "PROCESSING_TIMEOUT"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_FILE_PATH = "INVALID_FILE_PATH"
    FILE_NOT_FOUND = "FILE_NOT_FOUND"
    PAYLOAD_TOO_LARGE = "PAYLOAD_TOO_LARGE"
    EXTRACTION_FAILED = "EXTRACTION_FAILED"
    AI_SERVICE_ERROR = "AI_SERVICE_ERROR"
    FEATURE_DISABLED = "FEATURE_DISABLED"
    NETWORK_ERROR = "NETWORK_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class ScanStep(str, Enum):
    """States of the scan flow controller."""

    CONSENT = "consent"
    UPLOAD = "upload"
    PROCESSING = "processing"
    VERIFICATION = "verification"
    SAVING = "saving"
    COMPLETE = "complete"
    ERROR = "error"
