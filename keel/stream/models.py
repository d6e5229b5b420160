"""
Data models for streamed responses.

This module defines the frames produced by the SSE decoder, the live
snapshots published while a response streams in, and the finalized
response handed to the turn loop.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field

from keel.llm.models import TokenUsage, ToolCall
from keel.types import FramePayload


class TerminalKind(str, Enum):
    """
    How a byte stream ended.

    Attributes
    ----------
    DONE : str
        The ``data: [DONE]`` marker was seen.
    EOF : str
        The body ended without the marker.
    """

    DONE = "done"
    EOF = "eof"


class SSEFrame(BaseModel):
    """
    One decoded unit of a server-sent-event stream.

    A frame carries either a JSON ``payload`` or, exactly once at the end
    of a stream, a ``terminal`` marker.

    Examples
    --------
    >>> SSEFrame(payload={"choices": []}).is_terminal
    False
    >>> SSEFrame.end(TerminalKind.DONE).terminal
    <TerminalKind.DONE: 'done'>
    """

    payload: FramePayload | None = Field(default=None, description="JSON payload")
    terminal: TerminalKind | None = Field(default=None, description="End marker")

    @property
    def is_terminal(self) -> bool:
        return self.terminal is not None

    @classmethod
    def end(cls, kind: TerminalKind) -> SSEFrame:
        return cls(terminal=kind)


class ThinkingPhase(str, Enum):
    """Phases of the reasoning clock."""

    NOT_THINKING = "not_thinking"
    THINKING = "thinking"
    FINISHED = "finished"


class ThinkingSource(str, Enum):
    """
    Where reasoning text came from.

    Attributes
    ----------
    REASONING_FIELD : str
        A dedicated delta field (``reasoning_content``, ``reasoning`` or
        ``thinking``).
    INLINE_TAG : str
        ``<think>...</think>`` markup inside ordinary content.
    """

    REASONING_FIELD = "reasoning_field"
    INLINE_TAG = "inline_tag"


class StreamSnapshot(BaseModel):
    """
    Live view of a response while it streams.

    Parameters
    ----------
    text_so_far : str
        Visible text with reasoning markup removed.
    thinking_so_far : str
        Reasoning text collected so far.
    is_thinking : bool
        Whether the model is currently reasoning.
    tool_calls : list[ToolCall]
        Tool calls seen so far, across batches, in order.
    """

    text_so_far: str = ""
    thinking_so_far: str = ""
    is_thinking: bool = False
    tool_calls: list[ToolCall] = Field(default_factory=list)


class FinalizedResponse(BaseModel):
    """
    Everything one model call produced.

    Parameters
    ----------
    text : str | None
        Visible reply text, stripped, or None if empty.
    thinking : str | None
        Reasoning text, or None if the model did not reason.
    thinking_duration_seconds : float | None
        Whole seconds spent reasoning, at least 1 when reasoning occurred.
    tool_calls : list[ToolCall]
        All finalized tool calls in stream order.
    usage : TokenUsage | None
        Provider-reported usage, or a local estimate.
    finish_reason : str | None
        Last finish reason reported by the provider.
    terminal : TerminalKind | None
        How the byte stream ended.
    """

    text: str | None = None
    thinking: str | None = None
    thinking_duration_seconds: float | None = None
    tool_calls: list[ToolCall] = Field(default_factory=list)
    usage: TokenUsage | None = None
    finish_reason: str | None = None
    terminal: TerminalKind | None = None
