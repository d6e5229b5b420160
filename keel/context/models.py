"""
Data models for conversation history.

Messages form a discriminated union on ``role``; user content parts form a
discriminated union on ``kind``. Every model renders itself to the OpenAI
wire shape with ``to_wire()``. Reasoning text is kept on assistant
messages for display and continuity but never sent back to the provider.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter

from keel.llm.models import ToolCall


class TextPart(BaseModel):
    """A text segment of a multi-part user message."""

    kind: Literal["text"] = "text"
    text: str = Field(description="Text content")

    def to_wire(self) -> dict[str, Any]:
        return {"type": "text", "text": self.text}


class ImagePart(BaseModel):
    """An image attachment of a multi-part user message."""

    kind: Literal["image"] = "image"
    url: str = Field(description="Image URL or data URI")

    def to_wire(self) -> dict[str, Any]:
        return {"type": "image_url", "image_url": {"url": self.url}}


ContentPart = Annotated[Union[TextPart, ImagePart], Field(discriminator="kind")]


class SystemMessage(BaseModel):
    """
    A system instruction.

    Parameters
    ----------
    content : str
        Instruction text.
    """

    role: Literal["system"] = "system"
    content: str = Field(description="Instruction text")

    def has_payload(self) -> bool:
        return bool(self.content)

    def text(self) -> str:
        return self.content

    def to_wire(self) -> dict[str, Any]:
        return {"role": "system", "content": self.content}


class UserMessage(BaseModel):
    """
    A message typed by the user, optionally with image parts.

    Parameters
    ----------
    content : str | list[ContentPart]
        Plain text, or a list of text and image parts.

    Examples
    --------
    >>> UserMessage(content="Build a todo app").to_wire()
    {'role': 'user', 'content': 'Build a todo app'}
    """

    role: Literal["user"] = "user"
    content: str | list[ContentPart] = Field(description="Message content")

    def has_payload(self) -> bool:
        return bool(self.content)

    def text(self) -> str:
        """Return the textual content, joining text parts and skipping images."""
        if isinstance(self.content, str):
            return self.content
        return "\n".join(part.text for part in self.content if isinstance(part, TextPart))

    def to_wire(self) -> dict[str, Any]:
        if isinstance(self.content, str):
            return {"role": "user", "content": self.content}
        return {
            "role": "user",
            "content": [part.to_wire() for part in self.content],
        }


class AssistantMessage(BaseModel):
    """
    A model reply, possibly requesting tool calls.

    Parameters
    ----------
    content : str | None, optional
        Visible reply text with reasoning tags stripped.
    tool_calls : list[ToolCall], default=[]
        Tool calls requested by this reply, in stream order.
    thinking : str | None, optional
        Reasoning text. Kept in history, never sent on the wire.
    thinking_duration_seconds : float | None, optional
        How long the model spent reasoning, in whole seconds.
    """

    role: Literal["assistant"] = "assistant"
    content: str | None = Field(default=None, description="Visible reply text")
    tool_calls: list[ToolCall] = Field(
        default_factory=list,
        description="Requested tool calls",
    )
    thinking: str | None = Field(default=None, description="Reasoning text")
    thinking_duration_seconds: float | None = Field(
        default=None,
        description="Reasoning duration in seconds",
    )

    def has_payload(self) -> bool:
        return bool(self.content) or bool(self.tool_calls)

    def text(self) -> str:
        return self.content or ""

    def to_wire(self) -> dict[str, Any]:
        result: dict[str, Any] = {"role": "assistant", "content": self.content}
        if self.tool_calls:
            result["tool_calls"] = [call.to_wire() for call in self.tool_calls]
        return result


class ToolMessage(BaseModel):
    """
    The result of one tool call.

    Parameters
    ----------
    tool_call_id : str
        Identifier of the assistant tool call this answers. Never empty.
    name : str | None, optional
        Tool name, for display.
    content : str
        Result text.
    """

    role: Literal["tool"] = "tool"
    tool_call_id: str = Field(min_length=1, description="Answered tool call id")
    name: str | None = Field(default=None, description="Tool name")
    content: str = Field(default="", description="Result text")

    def has_payload(self) -> bool:
        return True

    def text(self) -> str:
        return self.content

    def to_wire(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "role": "tool",
            "tool_call_id": self.tool_call_id,
            "content": self.content,
        }
        if self.name:
            result["name"] = self.name
        return result


Message = Annotated[
    Union[SystemMessage, UserMessage, AssistantMessage, ToolMessage],
    Field(discriminator="role"),
]

MESSAGE_LIST_ADAPTER: TypeAdapter[list[Message]] = TypeAdapter(list[Message])


def parse_messages(raw: list[dict[str, Any]]) -> list[Message]:
    """
    Validate a list of plain dictionaries into typed messages.

    Examples
    --------
    >>> [m.role for m in parse_messages([{"role": "user", "content": "hi"}])]
    ['user']
    """
    return MESSAGE_LIST_ADAPTER.validate_python(raw)


class ConversationWindow(BaseModel):
    """
    The bounded message list sent to the model for one request.

    Parameters
    ----------
    messages : list[Message]
        System prompt, surviving history and pending messages, in order.
    estimated_tokens : int
        Estimated size of ``messages``.
    budget : int
        Budget the window was built against.
    dropped_count : int, default=0
        Messages removed to fit the budget.
    """

    messages: list[Message] = Field(default_factory=list)
    estimated_tokens: int = Field(default=0, ge=0)
    budget: int = Field(default=0, ge=0)
    dropped_count: int = Field(default=0, ge=0)

    @property
    def over_budget(self) -> bool:
        return self.estimated_tokens > self.budget

    def to_wire(self) -> list[dict[str, Any]]:
        return [message.to_wire() for message in self.messages]


class CompressionResult(BaseModel):
    """
    Outcome of compressing a conversation history.

    Parameters
    ----------
    history : list[Message]
        The replacement history.
    tokens_before : int
        Estimated history size before compression.
    tokens_after : int
        Estimated history size after compression.
    compressed_count : int
        Messages summarized or removed.
    summarized : bool
        Whether the older messages were replaced by a summary, as opposed
        to the oldest-first removal fallback.
    """

    history: list[Message] = Field(default_factory=list)
    tokens_before: int = Field(default=0, ge=0)
    tokens_after: int = Field(default=0, ge=0)
    compressed_count: int = Field(default=0, ge=0)
    summarized: bool = True

    @property
    def tokens_freed(self) -> int:
        return max(0, self.tokens_before - self.tokens_after)

    @property
    def notice(self) -> str:
        """User-facing description of what compression did."""
        if self.summarized:
            return (
                f"Context compressed: {self.compressed_count} old messages summarized. "
                f"Freed {self.tokens_freed:,} tokens."
            )
        return (
            f"Context compressed: {self.compressed_count} old messages removed. "
            f"Freed {self.tokens_freed:,} tokens."
        )
