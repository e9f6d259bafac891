"""Error types raised by the remote model client and the receipt pipeline.

Two families live here:

* ``ModelClientError`` and its subclasses classify failures of a single
  call to the remote model provider. The ``retryable`` class attribute
  drives the client's retry loop: only network failures, provider
  throttling and generic API errors are retried.
* ``PipelineError`` carries one of the public ``ErrorCode`` values that
  the HTTP layer maps to a status code. ``PipelineInvariantError`` marks
  internal invariant violations that are fatal and never mapped to a
  user facing code.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from expense_api.models.enums import ErrorCode


class ModelClientError(Exception):
    """Base error for all remote model client failures."""

    code: str = "UNKNOWN_ERROR"
    retryable: bool = False

    def __init__(self, message: str, code: Optional[str] = None, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.status_code = status_code

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r}, status_code={self.status_code!r})"


class NetworkError(ModelClientError):
    """Transport level failure (DNS, refused connection, reset)."""

    code = "NETWORK_ERROR"
    retryable = True

    def __init__(self, message: str = "Network request failed") -> None:
        super().__init__(message)


class RequestTimeoutError(ModelClientError):
    """The call exceeded the configured timeout and was aborted."""

    code = "TIMEOUT_ERROR"

    def __init__(self, message: str = "Request timeout after 20 seconds") -> None:
        super().__init__(message)


class AuthenticationError(ModelClientError):
    """Missing, invalid or expired provider credential (401/403)."""

    code = "AUTH_ERROR"

    def __init__(self, message: str = "Invalid API key", status_code: int = 401) -> None:
        super().__init__(message, status_code=status_code)


class RateLimitError(ModelClientError):
    """Provider throttling (429)."""

    code = "RATE_LIMIT_ERROR"
    retryable = True

    def __init__(self, message: str = "Rate limit exceeded") -> None:
        super().__init__(message, status_code=429)


class ValidationError(ModelClientError):
    """Malformed request or a response that does not match the declared schema."""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, validation_errors: Any = None) -> None:
        super().__init__(message, status_code=400)
        self.validation_errors = validation_errors


class APIError(ModelClientError):
    """Any other non-2xx provider response."""

    code = "API_ERROR"
    retryable = True

    def __init__(self, message: str, status_code: int) -> None:
        super().__init__(message, status_code=status_code)


class PipelineError(Exception):
    """A receipt processing failure with a public error code."""

    def __init__(self, code: ErrorCode, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details

    def __repr__(self) -> str:
        return f"PipelineError({self.code.value}, {self.message!r})"


class PipelineInvariantError(RuntimeError):
    """Internal invariant violated; not recoverable and never retried."""
