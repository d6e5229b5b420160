"""
Accumulation of streamed chat-completion deltas.

The accumulator consumes decoded frames and rebuilds visible text,
reasoning text, token usage and tool calls whose names and arguments
arrive in fragments. Tool-call fragments are keyed by their stream
``index``; a ``finish_reason`` of ``"tool_calls"`` closes the current
batch, and anything still open when the stream ends is finalized too.
"""

import logging
import math
import re
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable

from keel.constants import DEFAULT_CHARS_PER_TOKEN
from keel.llm.models import TokenUsage, ToolCall
from keel.stream.models import (
    FinalizedResponse,
    SSEFrame,
    StreamSnapshot,
    TerminalKind,
    ThinkingPhase,
    ThinkingSource,
)

logger = logging.getLogger(__name__)

REASONING_KEYS: tuple[str, ...] = ("reasoning_content", "reasoning", "thinking")
THINK_OPEN: str = "<think>"
THINK_CLOSE: str = "</think>"

_TOOL_SECTION_RE = re.compile(r"<\|tool_calls_section_begin\|>[\s\S]*")
_TOOL_CALL_TAG_RE = re.compile(r"</?tool_call>")

SnapshotCallback = Callable[[StreamSnapshot], None]
ToolCallCallback = Callable[[ToolCall, int], None]


class ThinkingClock:
    """
    Measures how long the model spends reasoning.

    The clock moves ``NOT_THINKING -> THINKING -> FINISHED`` and never
    goes back. It is started by whichever reasoning source shows up first;
    the other source cannot restart it.

    Parameters
    ----------
    clock : Callable[[], float], default=time.monotonic
        Time source in seconds.

    Examples
    --------
    >>> ticks = iter([10.0, 12.4])
    >>> clock = ThinkingClock(clock=lambda: next(ticks))
    >>> clock.start(ThinkingSource.REASONING_FIELD)
    True
    >>> clock.finish()
    2
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock: Callable[[], float] = clock
        self.phase: ThinkingPhase = ThinkingPhase.NOT_THINKING
        self.source: ThinkingSource | None = None
        self.started_at: float | None = None
        self.duration_seconds: int | None = None

    @property
    def running(self) -> bool:
        return self.phase is ThinkingPhase.THINKING

    def start(self, source: ThinkingSource) -> bool:
        """Start the clock; returns False if it already ran or is running."""
        if self.phase is not ThinkingPhase.NOT_THINKING:
            return False
        self.phase = ThinkingPhase.THINKING
        self.source = source
        self.started_at = self._clock()
        logger.debug(f"Thinking started ({source.value})")
        return True

    def finish(self) -> int | None:
        """
        Stop a running clock.

        Returns
        -------
        int | None
            Duration rounded to whole seconds with a floor of 1, or None
            if the clock never started.
        """
        if self.phase is ThinkingPhase.THINKING and self.started_at is not None:
            elapsed: float = self._clock() - self.started_at
            self.duration_seconds = max(1, round(elapsed))
            self.phase = ThinkingPhase.FINISHED
            logger.debug(f"Thinking finished after {self.duration_seconds}s")
        return self.duration_seconds


def split_inline_thinking(raw: str) -> tuple[str, str, bool]:
    """
    Separate ``<think>`` markup from visible content.

    A closing tag without an opening tag marks everything before it as
    reasoning, which is how some models emit their first block.

    Parameters
    ----------
    raw : str
        Content accumulated so far.

    Returns
    -------
    tuple[str, str, bool]
        ``(visible, thinking, block_open)`` where ``block_open`` is True
        while a ``<think>`` block has not been closed yet.

    Examples
    --------
    >>> split_inline_thinking("<think>plan</think>Answer")
    ('Answer', 'plan', False)
    >>> split_inline_thinking("Hi <think>hmm")
    ('Hi ', 'hmm', True)
    """
    visible: list[str] = []
    thinking: list[str] = []
    rest: str = raw

    first_open: int = rest.find(THINK_OPEN)
    first_close: int = rest.find(THINK_CLOSE)
    if first_close != -1 and (first_open == -1 or first_close < first_open):
        thinking.append(rest[:first_close])
        rest = rest[first_close + len(THINK_CLOSE):]

    while True:
        start: int = rest.find(THINK_OPEN)
        if start == -1:
            visible.append(rest)
            return "".join(visible), "\n".join(t.strip() for t in thinking if t.strip()), False

        visible.append(rest[:start])
        rest = rest[start + len(THINK_OPEN):]
        end: int = rest.find(THINK_CLOSE)
        if end == -1:
            thinking.append(rest)
            return "".join(visible), "\n".join(t.strip() for t in thinking if t.strip()), True

        thinking.append(rest[:end])
        rest = rest[end + len(THINK_CLOSE):]


def clean_visible_text(text: str) -> str:
    """Remove tool-call markup some models leak into visible content."""
    text = _TOOL_SECTION_RE.sub("", text)
    return _TOOL_CALL_TAG_RE.sub("", text)


@dataclass
class StreamAccumulatorState:
    """
    Mutable state for one model call. Discarded after the turn.

    Attributes
    ----------
    raw_content : str
        Content deltas exactly as received.
    text_so_far : str
        Visible text derived from ``raw_content``.
    reasoning_so_far : str
        Text from dedicated reasoning fields.
    inline_thinking : str
        Text found inside ``<think>`` markup.
    tool_calls_by_index : dict[int, ToolCall]
        Calls of the batch currently streaming.
    finalized_batches : list[list[ToolCall]]
        Batches closed by ``finish_reason == "tool_calls"``.
    """

    raw_content: str = ""
    text_so_far: str = ""
    reasoning_so_far: str = ""
    inline_thinking: str = ""
    tool_calls_by_index: dict[int, ToolCall] = field(default_factory=dict)
    finalized_batches: list[list[ToolCall]] = field(default_factory=list)
    usage: TokenUsage | None = None
    finish_reason: str | None = None
    terminal: TerminalKind | None = None
    frame_count: int = 0

    @property
    def thinking_so_far(self) -> str:
        parts = [p.strip() for p in (self.reasoning_so_far, self.inline_thinking) if p.strip()]
        return _TOOL_SECTION_RE.sub("", "\n\n".join(parts)).strip()

    def all_tool_calls(self) -> list[ToolCall]:
        calls: list[ToolCall] = [call for batch in self.finalized_batches for call in batch]
        calls.extend(
            self.tool_calls_by_index[index] for index in sorted(self.tool_calls_by_index)
        )
        return calls


class DeltaAccumulator:
    """
    Folds decoded stream frames into a response.

    Parameters
    ----------
    on_snapshot : SnapshotCallback | None, optional
        Called with a fresh :class:`StreamSnapshot` whenever visible text,
        reasoning or tool calls change.
    on_tool_call : ToolCallCallback | None, optional
        Called with a tool call and its stream index every time a fragment
        for it arrives.
    clock : Callable[[], float], default=time.monotonic
        Time source for the thinking clock.

    Examples
    --------
    >>> acc = DeltaAccumulator()
    >>> _ = acc.on_frame(SSEFrame(payload={"choices": [{"delta": {"content": "Hi"}}]}))
    >>> acc.finalize().text
    'Hi'
    """

    def __init__(
        self,
        on_snapshot: SnapshotCallback | None = None,
        on_tool_call: ToolCallCallback | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.state: StreamAccumulatorState = StreamAccumulatorState()
        self.thinking_clock: ThinkingClock = ThinkingClock(clock)
        self._on_snapshot: SnapshotCallback | None = on_snapshot
        self._on_tool_call: ToolCallCallback | None = on_tool_call

    def snapshot(self) -> StreamSnapshot:
        return StreamSnapshot(
            text_so_far=self.state.text_so_far,
            thinking_so_far=self.state.thinking_so_far,
            is_thinking=self.thinking_clock.running,
            tool_calls=[call.model_copy() for call in self.state.all_tool_calls()],
        )

    def on_frame(self, frame: SSEFrame) -> StreamAccumulatorState:
        """
        Apply one frame.

        Parameters
        ----------
        frame : SSEFrame
            A payload or terminal frame from the decoder.

        Returns
        -------
        StreamAccumulatorState
            The updated state.
        """
        if frame.is_terminal:
            self.state.terminal = frame.terminal
            return self.state

        payload: dict[str, Any] = frame.payload or {}
        self.state.frame_count += 1
        changed: bool = False

        usage = payload.get("usage")
        if isinstance(usage, dict):
            self.state.usage = TokenUsage.from_payload(usage)

        choices = payload.get("choices") or []
        if choices and isinstance(choices[0], dict):
            choice: dict[str, Any] = choices[0]
            delta: dict[str, Any] = choice.get("delta") or {}

            reasoning: str | None = self._reasoning_delta(delta)
            if reasoning:
                self.state.reasoning_so_far += reasoning
                self.thinking_clock.start(ThinkingSource.REASONING_FIELD)
                changed = True

            content = delta.get("content")
            if isinstance(content, str) and content:
                self._apply_content(content, reasoning_in_frame=bool(reasoning))
                changed = True

            for fragment in delta.get("tool_calls") or []:
                self._apply_tool_fragment(fragment)
                changed = True

            finish_reason = choice.get("finish_reason")
            if finish_reason:
                self.state.finish_reason = finish_reason
                if finish_reason == "tool_calls":
                    self._close_batch()

        if changed and self._on_snapshot is not None:
            self._on_snapshot(self.snapshot())

        return self.state

    def _reasoning_delta(self, delta: dict[str, Any]) -> str | None:
        for key in REASONING_KEYS:
            value = delta.get(key)
            if isinstance(value, str) and value:
                return value
        return None

    def _apply_content(self, content: str, reasoning_in_frame: bool) -> None:
        self.state.raw_content += content
        raw: str = self.state.raw_content
        visible, inline, block_open = split_inline_thinking(raw)

        has_open: bool = THINK_OPEN in raw
        has_close: bool = THINK_CLOSE in raw

        if block_open:
            self.thinking_clock.start(ThinkingSource.INLINE_TAG)
        elif has_close:
            # A closing tag can arrive without any opening tag
            self.thinking_clock.start(ThinkingSource.INLINE_TAG)
            self.thinking_clock.finish()
        elif (
            not has_open
            and not reasoning_in_frame
            and self.thinking_clock.source is ThinkingSource.REASONING_FIELD
        ):
            self.thinking_clock.finish()

        self.state.inline_thinking = inline
        self.state.text_so_far = clean_visible_text(visible)

    def _apply_tool_fragment(self, fragment: dict[str, Any]) -> None:
        index: int = fragment.get("index")
        if not isinstance(index, int):
            index = 0

        function: dict[str, Any] = fragment.get("function") or {}
        name = function.get("name") or ""
        arguments = function.get("arguments") or ""

        call: ToolCall | None = self.state.tool_calls_by_index.get(index)
        if call is None:
            call = ToolCall(
                id=fragment.get("id") or f"tool_{index}_{uuid.uuid4().hex[:12]}",
                name=name,
            )
            self.state.tool_calls_by_index[index] = call
            logger.debug(f"Tool call started at index {index}: {call.id}")
        elif name and not call.name:
            call.name = name

        if arguments:
            call.arguments += arguments

        if self._on_tool_call is not None:
            self._on_tool_call(call, index)

    def _close_batch(self) -> None:
        if not self.state.tool_calls_by_index:
            return
        batch: list[ToolCall] = [
            self.state.tool_calls_by_index[index]
            for index in sorted(self.state.tool_calls_by_index)
        ]
        self.state.finalized_batches.append(batch)
        self.state.tool_calls_by_index = {}
        logger.debug(f"Finalized batch of {len(batch)} tool call(s)")

    def finalize(self, estimated_input_tokens: int = 0) -> FinalizedResponse:
        """
        Produce the final response, closing any open tool calls.

        Parameters
        ----------
        estimated_input_tokens : int, default=0
            Used as prompt tokens when the provider reported no usage.

        Returns
        -------
        FinalizedResponse
            The accumulated response.
        """
        if self.state.tool_calls_by_index:
            logger.debug(
                f"Stream ended with {len(self.state.tool_calls_by_index)} "
                "unfinished tool call(s); finalizing",
            )
            self._close_batch()

        duration: int | None = self.thinking_clock.finish()

        usage: TokenUsage | None = self.state.usage
        if usage is None:
            output_chars: int = len(self.state.raw_content) + sum(
                len(call.arguments) for call in self.state.all_tool_calls()
            )
            completion: int = math.ceil(output_chars / DEFAULT_CHARS_PER_TOKEN)
            usage = TokenUsage(
                prompt_tokens=estimated_input_tokens,
                completion_tokens=completion,
                total_tokens=estimated_input_tokens + completion,
                estimated=True,
            )

        text: str = self.state.text_so_far.strip()
        thinking: str = self.state.thinking_so_far

        return FinalizedResponse(
            text=text or None,
            thinking=thinking or None,
            thinking_duration_seconds=float(duration) if duration is not None else None,
            tool_calls=self.state.all_tool_calls(),
            usage=usage,
            finish_reason=self.state.finish_reason,
            terminal=self.state.terminal,
        )
