from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from expense_api.models.schemas import CompletionOptions, ReceiptExtraction, ResponseSchema
from expense_api.services.errors import (
    APIError,
    AuthenticationError,
    NetworkError,
    RateLimitError,
    RequestTimeoutError,
    ValidationError,
)
from expense_api.services.openrouter_client import (
    OpenRouterClient,
    backoff_delay_ms,
    build_request,
    classify_status,
)

RECEIPT = {"items": [{"name": "Chleb", "amount": 4.5, "category": "żywność"}], "total": 4.5, "date": "2024-03-15"}


def _completion(content: str | None, model: str = "openai/gpt-4o-mini") -> dict:
    return {
        "id": "gen-1",
        "object": "chat.completion",
        "created": 1710000000,
        "model": model,
        "choices": [{"index": 0, "message": {"role": "assistant", "content": content}, "finish_reason": "stop"}],
        "usage": {"prompt_tokens": 100, "completion_tokens": 20, "total_tokens": 120},
    }


class RecordingSleep:
    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class Scripted:
    """Mock transport handler replaying a list of responses (or exceptions)."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def _ok(content=None) -> httpx.Response:
    return httpx.Response(200, json=_completion(json.dumps(RECEIPT) if content is None else content))


def _err(status: int, message: str = "boom") -> httpx.Response:
    return httpx.Response(status, json={"error": {"message": message, "code": status}})


def _client(handler, sleep=None, **kwargs) -> OpenRouterClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return OpenRouterClient(api_key="test-key", sleep=sleep or RecordingSleep(), http_client=http, **kwargs)


def _options(**kwargs) -> CompletionOptions:
    return CompletionOptions(
        system_message="Extract receipt data",
        user_message="Process this receipt",
        response_schema=ResponseSchema(name="receipt", schema={"type": "object"}),
        **kwargs,
    )


def test_build_request_includes_sampling_params_only_when_given():
    bare = build_request(_options(), "default/model")
    assert bare["model"] == "default/model"
    assert [m["role"] for m in bare["messages"]] == ["system", "user"]
    assert bare["response_format"] == {
        "type": "json_schema",
        "json_schema": {"name": "receipt", "strict": True, "schema": {"type": "object"}},
    }
    assert "temperature" not in bare and "max_tokens" not in bare and "top_p" not in bare

    full = build_request(_options(model="m", temperature=0.1, max_tokens=2000, top_p=0.9), "default/model")
    assert full["model"] == "m"
    assert full["temperature"] == 0.1
    assert full["max_tokens"] == 2000
    assert full["top_p"] == 0.9


def test_classify_status():
    assert isinstance(classify_status(401, "x"), AuthenticationError)
    assert isinstance(classify_status(403, "x"), AuthenticationError)
    assert isinstance(classify_status(429, "x"), RateLimitError)
    assert isinstance(classify_status(400, "x"), ValidationError)
    err = classify_status(502, "x")
    assert isinstance(err, APIError) and err.status_code == 502


def test_backoff_is_exponential_without_cap():
    assert [backoff_delay_ms(a) for a in range(5)] == [1000, 2000, 4000, 8000, 16000]


def test_blank_api_key_rejected_before_any_request():
    with pytest.raises(ValidationError):
        OpenRouterClient(api_key="   ")


@pytest.mark.asyncio
async def test_success_returns_validated_model_and_usage():
    handler = Scripted(_ok())
    async with _client(handler) as client:
        result = await client.complete(_options(temperature=0.1), response_model=ReceiptExtraction)
    assert isinstance(result.data, ReceiptExtraction)
    assert result.data.items[0].name == "Chleb"
    assert result.model == "openai/gpt-4o-mini"
    assert result.usage is not None and result.usage.total_tokens == 120
    body = json.loads(handler.requests[0].content)
    assert body["temperature"] == 0.1
    assert body["response_format"]["json_schema"]["strict"] is True


@pytest.mark.asyncio
async def test_two_retryable_failures_then_success_makes_three_attempts():
    handler = Scripted(_err(500), _err(503), _ok())
    sleep = RecordingSleep()
    client = _client(handler, sleep=sleep)
    result = await client.complete(_options())
    assert result.data["total"] == 4.5
    assert len(handler.requests) == 3
    assert sleep.delays == [1.0, 2.0]


@pytest.mark.asyncio
async def test_retries_exhausted_surfaces_last_error():
    handler = Scripted(_err(429, "slow down"), _err(429, "slow down"), _err(502, "bad gateway"))
    sleep = RecordingSleep()
    with pytest.raises(APIError) as exc_info:
        await _client(handler, sleep=sleep).complete(_options())
    assert exc_info.value.status_code == 502
    assert len(handler.requests) == 3
    assert sleep.delays == [1.0, 2.0]


@pytest.mark.asyncio
async def test_network_error_is_retried():
    handler = Scripted(httpx.ConnectError("refused"), _ok())
    sleep = RecordingSleep()
    await _client(handler, sleep=sleep).complete(_options())
    assert len(handler.requests) == 2
    assert sleep.delays == [1.0]


@pytest.mark.asyncio
async def test_network_error_on_every_attempt_raises_network_error():
    handler = Scripted(httpx.ConnectError("refused"))
    with pytest.raises(NetworkError):
        await _client(handler, retry_attempts=2).complete(_options())
    assert len(handler.requests) == 2


@pytest.mark.asyncio
async def test_authentication_error_is_not_retried():
    handler = Scripted(_err(401, "invalid key"), _ok())
    sleep = RecordingSleep()
    with pytest.raises(AuthenticationError):
        await _client(handler, sleep=sleep).complete(_options())
    assert len(handler.requests) == 1
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_bad_request_is_validation_error_and_not_retried():
    handler = Scripted(_err(400, "bad schema"), _ok())
    with pytest.raises(ValidationError):
        await _client(handler).complete(_options())
    assert len(handler.requests) == 1


@pytest.mark.asyncio
async def test_timeout_raises_once_without_retry():
    calls = []

    async def slow(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        await asyncio.sleep(5)
        return _ok()

    sleep = RecordingSleep()
    client = _client(slow, sleep=sleep, timeout_ms=50)
    with pytest.raises(RequestTimeoutError):
        await client.complete(_options())
    assert len(calls) == 1
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_non_json_content_is_validation_error():
    handler = Scripted(_ok(content="not json at all"))
    with pytest.raises(ValidationError):
        await _client(handler).complete(_options())
    assert len(handler.requests) == 1


@pytest.mark.asyncio
async def test_missing_content_is_validation_error():
    handler = Scripted(httpx.Response(200, json=_completion(None)))
    with pytest.raises(ValidationError, match="No content"):
        await _client(handler).complete(_options())


@pytest.mark.asyncio
async def test_schema_mismatch_is_validation_error():
    handler = Scripted(_ok(content=json.dumps({"items": "nope"})))
    with pytest.raises(ValidationError):
        await _client(handler).complete(_options(), response_model=ReceiptExtraction)


@pytest.mark.asyncio
async def test_attribution_headers_are_sent():
    handler = Scripted(_ok())
    client = _client(handler, extra_headers={"HTTP-Referer": "https://paragoniusz.app", "X-Title": "Paragoniusz"})
    await client.complete(_options())
    sent = handler.requests[0].headers
    assert sent["X-Title"] == "Paragoniusz"
    assert sent["HTTP-Referer"] == "https://paragoniusz.app"
    assert sent["Authorization"] == "Bearer test-key"
