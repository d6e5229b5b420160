"""
Data models for LLM interactions.

This module defines the Pydantic models shared between the transport,
the stream accumulator and the conversation history: token usage and
tool calls.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class TokenUsage(BaseModel):
    """
    Represents token usage statistics for an LLM request.

    Parameters
    ----------
    prompt_tokens : int, default=0
        Number of tokens in the prompt.
    completion_tokens : int, default=0
        Number of tokens in the completion.
    total_tokens : int, default=0
        Total number of tokens used.
    cached_tokens : int, default=0
        Number of prompt tokens served from cache.
    estimated : bool, default=False
        True when the numbers are a local estimate rather than
        provider-reported.

    Examples
    --------
    >>> usage = TokenUsage(prompt_tokens=100, completion_tokens=50, total_tokens=150)
    >>> (usage + usage).total_tokens
    300
    """

    prompt_tokens: int = Field(default=0, ge=0, description="Prompt tokens")
    completion_tokens: int = Field(default=0, ge=0, description="Completion tokens")
    total_tokens: int = Field(default=0, ge=0, description="Total tokens")
    cached_tokens: int = Field(default=0, ge=0, description="Cached tokens")
    estimated: bool = Field(default=False, description="Locally estimated")

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> TokenUsage:
        """
        Build usage from a provider ``usage`` object.

        Parameters
        ----------
        payload : dict[str, Any]
            The ``usage`` member of a stream frame or response body.

        Returns
        -------
        TokenUsage
            Provider-reported usage.
        """
        details = payload.get("prompt_tokens_details") or {}
        prompt: int = int(payload.get("prompt_tokens") or 0)
        completion: int = int(payload.get("completion_tokens") or 0)
        return cls(
            prompt_tokens=prompt,
            completion_tokens=completion,
            total_tokens=int(payload.get("total_tokens") or prompt + completion),
            cached_tokens=int(details.get("cached_tokens") or 0),
        )

    def __add__(self, other: TokenUsage) -> TokenUsage:
        return TokenUsage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
            cached_tokens=self.cached_tokens + other.cached_tokens,
            estimated=self.estimated or other.estimated,
        )


class ToolCall(BaseModel):
    """
    A tool invocation requested by the model.

    While streaming, ``name`` may start empty and ``arguments`` holds the
    raw concatenation of fragments, which is not guaranteed to be valid
    JSON until the call is finalized.

    Parameters
    ----------
    id : str
        Provider-assigned identifier, or a synthesized one.
    name : str, default=""
        Tool name. Set once, the first time a non-empty name arrives.
    arguments : str, default=""
        Raw JSON argument string.

    Examples
    --------
    >>> call = ToolCall(id="call_1", name="createFile", arguments='{"path": "a.txt"}')
    >>> call.to_wire()["function"]["name"]
    'createFile'
    """

    id: str = Field(description="Tool call identifier")
    name: str = Field(default="", description="Tool name")
    arguments: str = Field(default="", description="Raw argument string")

    def to_wire(self) -> dict[str, Any]:
        """
        Render the call in OpenAI ``tool_calls`` format.

        Returns
        -------
        dict[str, Any]
            ``{"id", "type": "function", "function": {"name", "arguments"}}``.
        """
        return {
            "id": self.id,
            "type": "function",
            "function": {
                "name": self.name,
                "arguments": self.arguments,
            },
        }
