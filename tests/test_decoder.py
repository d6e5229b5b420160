import asyncio
import logging

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from keel.agent.cancellation import CancellationToken
from keel.exceptions import OperationCancelled
from keel.stream.decoder import SSEDecoder, decode_stream
from keel.stream.models import SSEFrame, TerminalKind

from conftest import content_delta, sse


async def _aiter(chunks):
    for chunk in chunks:
        yield chunk


def _decode(chunks: list[bytes]) -> list[SSEFrame]:
    async def collect():
        return [frame async for frame in decode_stream(_aiter(chunks))]

    return asyncio.run(collect())


BODY: bytes = sse(
    content_delta("Hello, "),
    content_delta("wörld ✓ 🚀"),
    {"choices": [{"delta": {"content": "x"}}], "usage": {"prompt_tokens": 3}},
)


def test_frames_then_single_done_terminal():
    frames = _decode([BODY])

    assert [f.payload["choices"][0]["delta"]["content"] for f in frames[:-1]] == [
        "Hello, ",
        "wörld ✓ 🚀",
        "x",
    ]
    assert frames[-1] == SSEFrame(terminal=TerminalKind.DONE)
    assert sum(1 for f in frames if f.is_terminal) == 1


def test_eof_terminal_without_done_marker():
    frames = _decode([sse(content_delta("a"), done=False)])

    assert frames[-1].terminal is TerminalKind.EOF
    assert len(frames) == 2


def test_line_is_not_parsed_until_newline():
    decoder = SSEDecoder()

    assert decoder.feed(b'data: {"a": 1}') == []
    assert decoder.feed(b"\n") == [SSEFrame(payload={"a": 1})]


def test_flush_parses_unterminated_final_line():
    decoder = SSEDecoder()
    decoder.feed(b'data: {"a": 1}\ndata: {"b": 2}')

    assert decoder.flush() == [SSEFrame(payload={"b": 2})]


def test_multibyte_character_split_across_chunks():
    body = sse(content_delta("é"), done=False)
    split_at = body.index("é".encode("utf-8")) + 1

    frames = _decode([body[:split_at], body[split_at:]])

    assert frames[0].payload["choices"][0]["delta"]["content"] == "é"


def test_malformed_line_is_dropped_and_stream_continues(caplog):
    body = b'data: {"a": 1}\ndata: {not json\ndata: [1, 2]\ndata: {"b": 2}\n'

    with caplog.at_level(logging.WARNING, logger="keel.stream.decoder"):
        frames = _decode([body])

    assert [f.payload for f in frames if not f.is_terminal] == [{"a": 1}, {"b": 2}]
    assert "unparseable" in caplog.text


def test_non_data_fields_and_comments_are_ignored():
    body = b': keep-alive\nevent: message\nid: 7\n\ndata:{"a":1}\r\n\ndata: [DONE]\n'

    frames = _decode([body])

    assert frames == [SSEFrame(payload={"a": 1}), SSEFrame(terminal=TerminalKind.DONE)]


@settings(max_examples=75, deadline=None)
@given(cuts=st.lists(st.integers(min_value=0, max_value=len(BODY)), max_size=12))
def test_any_chunking_decodes_like_one_chunk(cuts):
    points = sorted(set(cuts))
    chunks = [BODY[a:b] for a, b in zip([0, *points], [*points, len(BODY)])]

    assert _decode(chunks) == _decode([BODY])


def test_cancelled_token_stops_decoding():
    token = CancellationToken()

    async def chunks():
        yield sse(content_delta("a"), done=False)
        token.cancel()
        await asyncio.Event().wait()
        yield b""

    async def collect():
        frames = []
        async for frame in decode_stream(chunks(), token):
            frames.append(frame)
        return frames

    with pytest.raises(OperationCancelled):
        asyncio.run(collect())
