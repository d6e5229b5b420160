"""
Incremental decoder for server-sent-event response bodies.

The decoder accepts bytes split at arbitrary boundaries, including inside
a multi-byte UTF-8 character or a ``data:`` line, and emits one frame per
complete ``data:`` line. Decoding a body in any number of chunks yields
the same frames as decoding it in one piece.
"""

import codecs
import json
import logging
from typing import AsyncGenerator, AsyncIterable

from keel.agent.cancellation import CancellationToken
from keel.constants import DEFAULT_ENCODING, SSE_DATA_FIELD, SSE_DONE_MARKER
from keel.stream.models import SSEFrame, TerminalKind

logger = logging.getLogger(__name__)


class SSEDecoder:
    """
    Line framer and JSON parser for an SSE byte stream.

    Lines are only parsed once a newline terminates them; the trailing
    partial line stays buffered until more bytes arrive or :meth:`flush`
    is called. Lines that are not ``data:`` fields are ignored, and a
    ``data:`` line whose payload is not a JSON object is logged and
    dropped without interrupting the stream.

    Attributes
    ----------
    saw_done : bool
        Whether the ``[DONE]`` marker line was seen.
    dropped_lines : int
        Number of ``data:`` lines dropped because they did not parse.

    Examples
    --------
    >>> decoder = SSEDecoder()
    >>> decoder.feed(b'data: {"a": 1}\\ndata: {"b"')
    [SSEFrame(payload={'a': 1}, terminal=None)]
    >>> decoder.feed(b': 2}\\n')
    [SSEFrame(payload={'b': 2}, terminal=None)]
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder(DEFAULT_ENCODING)(errors="replace")
        self._buffer: str = ""
        self.saw_done: bool = False
        self.dropped_lines: int = 0

    def push(self, chunk: bytes) -> list[str]:
        """
        Add bytes and return the lines they completed.

        Parameters
        ----------
        chunk : bytes
            Next slice of the body.

        Returns
        -------
        list[str]
            Complete lines, without their terminating newline.
        """
        self._buffer += self._decoder.decode(chunk)
        lines: list[str] = self._buffer.split("\n")
        self._buffer = lines.pop()
        return lines

    def parse_line(self, line: str) -> SSEFrame | None:
        """
        Interpret one complete line.

        Parameters
        ----------
        line : str
            A line from :meth:`push`.

        Returns
        -------
        SSEFrame | None
            A payload frame, or None for blank, non-data, ``[DONE]`` and
            unparseable lines.
        """
        stripped: str = line.strip()
        if not stripped.startswith(SSE_DATA_FIELD):
            return None

        data: str = stripped[len(SSE_DATA_FIELD):].strip()
        if not data:
            return None

        if data == SSE_DONE_MARKER:
            self.saw_done = True
            return None

        try:
            payload = json.loads(data)
        except json.JSONDecodeError as e:
            self.dropped_lines += 1
            logger.warning(f"Dropping unparseable stream line ({e}): {data[:200]}")
            return None

        if not isinstance(payload, dict):
            self.dropped_lines += 1
            logger.warning(f"Dropping non-object stream payload: {data[:200]}")
            return None

        return SSEFrame(payload=payload)

    def feed(self, chunk: bytes) -> list[SSEFrame]:
        """Add bytes and return the payload frames they completed."""
        frames: list[SSEFrame] = []
        for line in self.push(chunk):
            frame = self.parse_line(line)
            if frame is not None:
                frames.append(frame)
        return frames

    def flush(self) -> list[SSEFrame]:
        """
        Parse whatever is still buffered at end of stream.

        Returns
        -------
        list[SSEFrame]
            Frames parsed from the unterminated remainder.
        """
        self._buffer += self._decoder.decode(b"", final=True)
        remainder, self._buffer = self._buffer, ""
        frames: list[SSEFrame] = []
        for line in remainder.split("\n"):
            frame = self.parse_line(line)
            if frame is not None:
                frames.append(frame)
        return frames

    @property
    def terminal(self) -> TerminalKind:
        return TerminalKind.DONE if self.saw_done else TerminalKind.EOF


async def decode_stream(
    chunks: AsyncIterable[bytes],
    token: CancellationToken | None = None,
) -> AsyncGenerator[SSEFrame, None]:
    """
    Decode an async byte stream into frames.

    Yields every payload frame in order, then exactly one terminal frame.

    Parameters
    ----------
    chunks : AsyncIterable[bytes]
        Response body chunks.
    token : CancellationToken | None, optional
        Polled before every line and raced against every chunk read.

    Yields
    ------
    SSEFrame
        Payload frames followed by a single terminal frame.

    Raises
    ------
    OperationCancelled
        If the token fires while decoding.
    """
    decoder = SSEDecoder()
    iterator = chunks.__aiter__()

    while True:
        if token is not None:
            chunk: bytes | None = await token.guard(anext(iterator, None))
        else:
            chunk = await anext(iterator, None)
        if chunk is None:
            break

        for line in decoder.push(chunk):
            if token is not None:
                token.raise_if_cancelled()
            frame = decoder.parse_line(line)
            if frame is not None:
                yield frame

    for frame in decoder.flush():
        yield frame

    if decoder.dropped_lines:
        logger.info(f"Stream finished with {decoder.dropped_lines} dropped line(s)")

    yield SSEFrame.end(decoder.terminal)
