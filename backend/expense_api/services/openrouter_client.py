"""Remote model client for structured chat completions.

OpenRouter exposes the OpenAI chat completions API, so the client is a
thin wrapper around ``openai.AsyncOpenAI`` pointed at the OpenRouter
base URL. The SDK's own retries are disabled; this module owns:

* request building (system + user message, strict ``json_schema``
  response format, sampling parameters only when supplied),
* a per-attempt timeout enforced with ``asyncio.wait_for`` so the
  in-flight call is cancelled on expiry,
* classification of failures into the ``ModelClientError`` taxonomy,
* a sequential retry loop with exponential backoff
  (``base_delay_ms * 2 ** attempt``, no jitter, no cap) that only retries
  network, rate limit and generic API errors.

The sleep primitive is injectable so tests can assert on backoff delays
without waiting for them.

Example::

    client = OpenRouterClient.from_settings()
    result = await client.complete(
        CompletionOptions(
            system_message="Extract receipt data",
            user_message="Process this receipt",
            response_schema=ResponseSchema(name="receipt", schema=schema),
        ),
        response_model=ReceiptExtraction,
    )
    result.data  # ReceiptExtraction
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional, Type

import httpx
import openai
from openai import AsyncOpenAI
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from expense_api.core.config import settings
from expense_api.core.observability import sentry_breadcrumb
from expense_api.models.schemas import CompletionOptions, CompletionResult, ModelUsage, ResponseSchema
from expense_api.services.errors import (
    APIError,
    AuthenticationError,
    ModelClientError,
    NetworkError,
    RateLimitError,
    RequestTimeoutError,
    ValidationError,
)

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://openrouter.ai/api/v1"
DEFAULT_MODEL = "openai/gpt-4o-mini"
DEFAULT_TIMEOUT_MS = 20000
DEFAULT_RETRY_ATTEMPTS = 3
DEFAULT_BASE_DELAY_MS = 1000

Sleep = Callable[[float], Awaitable[None]]


def build_response_format(schema: ResponseSchema) -> Dict[str, Any]:
    """Return the strict ``json_schema`` response format for a schema."""
    return {
        "type": "json_schema",
        "json_schema": {
            "name": schema.name,
            "strict": True,
            "schema": schema.schema_,
        },
    }


def build_request(options: CompletionOptions, default_model: str) -> Dict[str, Any]:
    """Assemble the chat completions request body.

    Sampling parameters are included only when explicitly supplied.
    """
    request: Dict[str, Any] = {
        "model": options.model or default_model,
        "messages": [
            {"role": "system", "content": options.system_message},
            {"role": "user", "content": options.user_message},
        ],
        "response_format": build_response_format(options.response_schema),
    }
    if options.temperature is not None:
        request["temperature"] = options.temperature
    if options.max_tokens is not None:
        request["max_tokens"] = options.max_tokens
    if options.top_p is not None:
        request["top_p"] = options.top_p
    return request


def classify_status(status_code: int, message: str) -> ModelClientError:
    """Map a non-2xx provider status to the error taxonomy."""
    if status_code in (401, 403):
        return AuthenticationError(message, status_code=status_code)
    if status_code == 429:
        return RateLimitError(message)
    if status_code == 400:
        return ValidationError(message)
    return APIError(message, status_code)


def backoff_delay_ms(attempt: int, base_delay_ms: int = DEFAULT_BASE_DELAY_MS) -> int:
    """Delay before retrying after a failed ``attempt`` (0-indexed)."""
    return base_delay_ms * (2 ** attempt)


class OpenRouterClient:
    """Structured-output chat completion client with timeout and retry."""

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str = DEFAULT_BASE_URL,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        retry_attempts: int = DEFAULT_RETRY_ATTEMPTS,
        base_delay_ms: int = DEFAULT_BASE_DELAY_MS,
        default_model: str = DEFAULT_MODEL,
        sleep: Sleep = asyncio.sleep,
        http_client: Optional[httpx.AsyncClient] = None,
        extra_headers: Optional[Dict[str, str]] = None,
    ) -> None:
        if not api_key or not api_key.strip():
            raise ValidationError("API key is required")
        if retry_attempts < 1:
            raise ValidationError("retry_attempts must be at least 1")
        self.base_url = base_url
        self.timeout_ms = timeout_ms
        self.retry_attempts = retry_attempts
        self.base_delay_ms = base_delay_ms
        self.default_model = default_model
        self._sleep = sleep
        self._client = AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
            timeout=timeout_ms / 1000,
            max_retries=0,
            default_headers=extra_headers or None,
            http_client=http_client,
        )

    @classmethod
    def from_settings(cls, **overrides: Any) -> "OpenRouterClient":
        """Build a client from ``settings`` (keyword overrides win)."""
        params: Dict[str, Any] = {
            "api_key": settings.OPENROUTER_API_KEY,
            "base_url": settings.OPENROUTER_BASE_URL,
            "timeout_ms": settings.OPENROUTER_TIMEOUT_MS,
            "retry_attempts": settings.OPENROUTER_RETRY_ATTEMPTS,
            "base_delay_ms": settings.OPENROUTER_RETRY_BASE_DELAY_MS,
            "default_model": settings.OPENROUTER_MODEL,
            "extra_headers": {
                "HTTP-Referer": settings.OPENROUTER_APP_URL,
                "X-Title": settings.OPENROUTER_APP_TITLE,
            },
        }
        params.update(overrides)
        return cls(**params)

    async def close(self) -> None:
        await self._client.close()

    async def __aenter__(self) -> "OpenRouterClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def complete(
        self,
        options: CompletionOptions,
        response_model: Optional[Type[BaseModel]] = None,
    ) -> CompletionResult[Any]:
        """Run one structured completion, retrying transient failures.

        :raises ModelClientError: the classified error of the last attempt
        """
        request = build_request(options, self.default_model)
        logger.info("[openrouter] calling model=%s schema=%s", request["model"], options.response_schema.name)

        last_error: Optional[ModelClientError] = None
        for attempt in range(self.retry_attempts):
            try:
                return await self._attempt(request, response_model, attempt)
            except ModelClientError as exc:
                last_error = exc
                if not exc.retryable or attempt >= self.retry_attempts - 1:
                    logger.warning(
                        "[openrouter] giving up attempt=%d error=%s status=%s",
                        attempt + 1,
                        exc.code,
                        exc.status_code,
                    )
                    raise
                delay_ms = backoff_delay_ms(attempt, self.base_delay_ms)
                logger.warning(
                    "[openrouter] attempt=%d failed error=%s; retrying in %dms",
                    attempt + 1,
                    exc.code,
                    delay_ms,
                )
                sentry_breadcrumb(
                    category="openrouter",
                    message="retry",
                    level="warning",
                    data={"attempt": attempt + 1, "error": exc.code, "delay_ms": delay_ms},
                )
                await self._sleep(delay_ms / 1000)

        # Only reachable if the loop exits without returning or raising.
        raise last_error or ModelClientError("Unknown error in retry loop")

    async def _attempt(
        self,
        request: Dict[str, Any],
        response_model: Optional[Type[BaseModel]],
        attempt: int,
    ) -> CompletionResult[Any]:
        t0 = time.monotonic()
        completion = await self._execute(request)
        ms = int((time.monotonic() - t0) * 1000)
        result = self._parse(completion, response_model)
        if result.usage:
            logger.info(
                "[openrouter] %s attempt=%d %dms tokens prompt=%d completion=%d total=%d",
                result.model,
                attempt + 1,
                ms,
                result.usage.prompt_tokens,
                result.usage.completion_tokens,
                result.usage.total_tokens,
            )
        else:
            logger.info("[openrouter] %s attempt=%d %dms", result.model, attempt + 1, ms)
        return result

    async def _execute(self, request: Dict[str, Any]) -> Any:
        """Issue a single network call bounded by the configured timeout."""
        timeout_s = self.timeout_ms / 1000
        try:
            return await asyncio.wait_for(
                self._client.chat.completions.create(**request),
                timeout=timeout_s,
            )
        except asyncio.TimeoutError as exc:
            raise RequestTimeoutError(f"Request timeout after {timeout_s:g} seconds") from exc
        except openai.APITimeoutError as exc:
            raise RequestTimeoutError(f"Request timeout after {timeout_s:g} seconds") from exc
        except openai.APIStatusError as exc:
            raise classify_status(exc.status_code, f"HTTP {exc.status_code}: {exc.message}") from exc
        except openai.APIConnectionError as exc:
            raise NetworkError(str(exc) or "Network request failed") from exc
        except openai.OpenAIError as exc:
            raise ValidationError(f"Unexpected provider response: {exc}") from exc

    def _parse(self, completion: Any, response_model: Optional[Type[BaseModel]]) -> CompletionResult[Any]:
        choices = getattr(completion, "choices", None) or []
        content = choices[0].message.content if choices else None
        if not content:
            raise ValidationError("No content in API response")

        try:
            data: Any = json.loads(content)
        except json.JSONDecodeError as exc:
            raise ValidationError("Failed to parse response as JSON", str(exc)) from exc

        if response_model is not None:
            try:
                data = response_model.model_validate(data)
            except PydanticValidationError as exc:
                raise ValidationError("Response does not match the declared schema", exc.errors()) from exc

        usage = None
        raw_usage = getattr(completion, "usage", None)
        if raw_usage is not None:
            usage = ModelUsage(
                prompt_tokens=raw_usage.prompt_tokens or 0,
                completion_tokens=raw_usage.completion_tokens or 0,
                total_tokens=raw_usage.total_tokens or 0,
            )
        return CompletionResult[Any](data=data, model=getattr(completion, "model", None) or "", usage=usage)


__all__ = [
    "OpenRouterClient",
    "build_request",
    "build_response_format",
    "classify_status",
    "backoff_delay_ms",
]
