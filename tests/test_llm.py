import asyncio
from types import SimpleNamespace

import httpx
import openai
import pytest
from openai.types.chat import ChatCompletion

from keel.exceptions import APIError, RateLimitError, TransportError
from keel.llm.client import LLMClient, compute_max_tokens
from keel.llm.retry import RetryStrategy

REQUEST = httpx.Request("POST", "https://api.example.com/v1/chat/completions")


def _status_error(cls, status: int):
    return cls("boom", response=httpx.Response(status, request=REQUEST), body=None)


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class Flaky:
    def __init__(self, failures: list[Exception], result: str = "ok") -> None:
        self.failures = list(failures)
        self.result = result
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.failures:
            raise self.failures.pop(0)
        return self.result


@pytest.mark.parametrize(
    "estimated, expected",
    [
        (10_000, 32_000),
        (180_000, 19_000),
        (198_000, 4000),
        (250_000, 4000),
    ],
)
def test_max_tokens_is_clamped(estimated, expected):
    assert compute_max_tokens(200_000, estimated, 1000, 4000, 32_000) == expected


def test_request_includes_tools_and_usage(config):
    client = LLMClient(config)
    tools = [{"type": "function", "function": {"name": "createFile", "parameters": {}}}]
    messages = [{"role": "user", "content": "hi"}]

    kwargs = client.build_request(messages, tools, estimated_input_tokens=100)

    assert kwargs["model"] == config.model.name
    assert kwargs["messages"] is messages
    assert kwargs["stream"] is True
    assert kwargs["tools"] is tools
    assert kwargs["tool_choice"] == "auto"
    assert kwargs["stream_options"] == {"include_usage": True}
    assert kwargs["max_tokens"] == 32_000


def test_request_without_tools(config):
    config.model.include_usage = False

    kwargs = LLMClient(config).build_request([], None, estimated_input_tokens=0)

    assert "tools" not in kwargs
    assert "tool_choice" not in kwargs
    assert "stream_options" not in kwargs


def test_missing_api_key_is_a_transport_error(config, monkeypatch):
    monkeypatch.delenv("API_KEY", raising=False)

    async def first_chunk():
        return await LLMClient(config).stream_bytes([], None, 0).__anext__()

    with pytest.raises(TransportError):
        asyncio.run(first_chunk())


class FakeCompletions:
    def __init__(self, response: ChatCompletion) -> None:
        self.response = response
        self.kwargs: list[dict] = []

    async def create(self, **kwargs):
        self.kwargs.append(kwargs)
        return self.response


def test_complete_returns_text_and_usage(config):
    completions = FakeCompletions(
        ChatCompletion.model_validate(
            {
                "id": "chatcmpl-1",
                "object": "chat.completion",
                "created": 0,
                "model": config.model.name,
                "choices": [
                    {
                        "index": 0,
                        "finish_reason": "stop",
                        "message": {"role": "assistant", "content": "Summary text"},
                    },
                ],
                "usage": {"prompt_tokens": 40, "completion_tokens": 5, "total_tokens": 45},
            },
        ),
    )
    client = LLMClient(config)
    client._client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    messages = [{"role": "user", "content": "summarize"}]

    text, usage = asyncio.run(client.complete(messages))

    assert text == "Summary text"
    assert (usage.prompt_tokens, usage.completion_tokens, usage.total_tokens) == (40, 5, 45)
    [kwargs] = completions.kwargs
    assert kwargs["stream"] is False
    assert kwargs["messages"] is messages
    assert "tools" not in kwargs


class TestRetryStrategy:
    def test_connection_errors_are_retried_with_backoff(self):
        sleep = RecordingSleep()
        func = Flaky([openai.APIConnectionError(request=REQUEST)] * 2)

        result = asyncio.run(RetryStrategy(max_retries=3, sleep=sleep).execute(func))

        assert result == "ok"
        assert func.calls == 3
        assert sleep.delays == [1.0, 2.0]

    def test_delay_is_capped(self):
        strategy = RetryStrategy(base_delay=10.0, max_delay=15.0)

        assert strategy._calculate_delay(3) == 15.0

    def test_persistent_connection_failure(self):
        func = Flaky([openai.APIConnectionError(request=REQUEST)] * 3)

        with pytest.raises(TransportError):
            asyncio.run(RetryStrategy(max_retries=2, sleep=RecordingSleep()).execute(func))

    def test_persistent_rate_limit(self):
        func = Flaky([_status_error(openai.RateLimitError, 429)] * 2)

        with pytest.raises(RateLimitError) as exc_info:
            asyncio.run(RetryStrategy(max_retries=1, sleep=RecordingSleep()).execute(func))

        assert exc_info.value.status_code == 429

    def test_status_errors_are_not_retried(self):
        sleep = RecordingSleep()
        func = Flaky([_status_error(openai.BadRequestError, 400)])

        with pytest.raises(APIError) as exc_info:
            asyncio.run(RetryStrategy(sleep=sleep).execute(func))

        assert exc_info.value.status_code == 400
        assert func.calls == 1
        assert sleep.delays == []
