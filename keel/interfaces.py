"""
Protocol definitions for Keel's collaborators.

The turn loop depends only on these structural interfaces, so the model
transport, the tool executor and the summarizer can be swapped for fakes
in tests or for alternative implementations in applications.
"""

from typing import TYPE_CHECKING, AsyncIterator, Protocol, runtime_checkable

from keel.types import MessageDict, ToolSchemas

if TYPE_CHECKING:
    from keel.context.models import Message


@runtime_checkable
class ModelStreamProtocol(Protocol):
    """
    Protocol for clients that open a streaming chat-completion request.

    Implementations return the raw response body as an async iterator of
    byte chunks; framing and interpretation happen in :mod:`keel.stream`.
    """

    def stream_bytes(
        self,
        messages: list[MessageDict],
        tools: ToolSchemas | None,
        estimated_input_tokens: int,
    ) -> AsyncIterator[bytes]:
        """
        Open a streaming request and yield raw body chunks.

        Parameters
        ----------
        messages : list[MessageDict]
            Wire-format conversation window.
        tools : ToolSchemas | None
            Opaque tool schemas, if any.
        estimated_input_tokens : int
            Estimated size of ``messages``, used to size ``max_tokens``.

        Yields
        ------
        bytes
            Response body chunks, split at arbitrary boundaries.
        """
        ...


@runtime_checkable
class ToolExecutorProtocol(Protocol):
    """Protocol for the collaborator that actually runs tools."""

    async def execute(self, name: str, arguments: str) -> str:
        """
        Execute a tool by name with its raw JSON argument string.

        Implementations must tolerate malformed JSON and may raise; the
        dispatch adapter normalizes exceptions into error result text.
        """
        ...


@runtime_checkable
class SummarizerProtocol(Protocol):
    """Protocol for out-of-band history summarizers."""

    async def summarize(self, messages: list["Message"]) -> str | None:
        """
        Summarize messages that are about to be compressed away.

        Returns
        -------
        str | None
            Summary text, or None when no summary could be produced.
        """
        ...
