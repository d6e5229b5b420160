import asyncio
import json
from pathlib import Path
from typing import Any, AsyncIterator, Callable

import pytest

from keel.config.schema import Configuration


def sse(*payloads: dict[str, Any], done: bool = True) -> bytes:
    """Encode payloads as an SSE body."""
    body = "".join(f"data: {json.dumps(p)}\n\n" for p in payloads)
    if done:
        body += "data: [DONE]\n\n"
    return body.encode("utf-8")


def content_delta(text: str, finish_reason: str | None = None) -> dict[str, Any]:
    return {"choices": [{"delta": {"content": text}, "finish_reason": finish_reason}]}


def reasoning_delta(text: str) -> dict[str, Any]:
    return {"choices": [{"delta": {"reasoning_content": text}, "finish_reason": None}]}


def tool_delta(
    index: int | None,
    call_id: str | None = None,
    name: str | None = None,
    arguments: str | None = None,
) -> dict[str, Any]:
    fragment: dict[str, Any] = {"function": {}}
    if index is not None:
        fragment["index"] = index
    if call_id is not None:
        fragment["id"] = call_id
    if name is not None:
        fragment["function"]["name"] = name
    if arguments is not None:
        fragment["function"]["arguments"] = arguments
    return {"choices": [{"delta": {"tool_calls": [fragment]}, "finish_reason": None}]}


def finish(reason: str) -> dict[str, Any]:
    return {"choices": [{"delta": {}, "finish_reason": reason}]}


def usage_frame(prompt: int, completion: int) -> dict[str, Any]:
    return {
        "choices": [],
        "usage": {
            "prompt_tokens": prompt,
            "completion_tokens": completion,
            "total_tokens": prompt + completion,
        },
    }


def tool_call_reply(call_id: str, name: str, arguments: dict[str, Any]) -> bytes:
    """A complete reply consisting of one tool call."""
    return sse(
        tool_delta(0, call_id=call_id, name=name, arguments=""),
        tool_delta(0, arguments=json.dumps(arguments)),
        finish("tool_calls"),
    )


def text_reply(text: str) -> bytes:
    return sse(content_delta(text), finish("stop"))


def split_every(data: bytes, size: int) -> list[bytes]:
    return [data[i : i + size] for i in range(0, len(data), size)]


class FakeModelClient:
    """
    Replays one scripted body per request.

    Each script entry is either a body (bytes, sent in one chunk), a list
    of chunks, or an exception to raise when the request is opened.
    """

    def __init__(self, scripts: list[Any], hang_after: int | None = None) -> None:
        self.scripts: list[Any] = list(scripts)
        self.requests: list[dict[str, Any]] = []
        self.hang_after: int | None = hang_after
        self.closed: bool = False

    async def stream_bytes(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None,
        estimated_input_tokens: int,
    ) -> AsyncIterator[bytes]:
        self.requests.append(
            {
                "messages": messages,
                "tools": tools,
                "estimated_input_tokens": estimated_input_tokens,
            },
        )
        if not self.scripts:
            raise AssertionError("No scripted response left")
        script = self.scripts.pop(0)
        if isinstance(script, Exception):
            raise script

        chunks: list[bytes] = [script] if isinstance(script, bytes) else list(script)
        for i, chunk in enumerate(chunks):
            if self.hang_after is not None and i >= self.hang_after:
                await asyncio.Event().wait()
            yield chunk

    async def close(self) -> None:
        self.closed = True


class ScriptedExecutor:
    """Answers tool calls from a handler or a list of canned results."""

    def __init__(
        self,
        results: list[str] | None = None,
        handler: Callable[[str, str], Any] | None = None,
    ) -> None:
        self.results: list[str] = list(results or [])
        self.handler = handler
        self.calls: list[tuple[str, str]] = []

    async def execute(self, name: str, arguments: str) -> str:
        self.calls.append((name, arguments))
        if self.handler is not None:
            result = self.handler(name, arguments)
            if hasattr(result, "__await__"):
                result = await result
            return result
        if self.results:
            return self.results.pop(0)
        return f"ok: {name}"


@pytest.fixture
def config(tmp_path: Path) -> Configuration:
    return Configuration(cwd=tmp_path)
