"""
Conversation compaction for managing context length.

This module provides an LLM-backed summarizer for the messages that are
about to be compressed out of the history. It satisfies
:class:`keel.interfaces.SummarizerProtocol` and is handed to
:meth:`keel.context.manager.ContextWindowManager.compress`.
"""

import logging

from keel.context.models import AssistantMessage, Message, SystemMessage, ToolMessage
from keel.llm.client import LLMClient
from keel.llm.models import TokenUsage
from keel.prompts import get_compression_prompt
from keel.types import MessageDict
from keel.utils.text import truncate_text

logger = logging.getLogger(__name__)

TOOL_RESULT_LIMIT: int = 2000
ASSISTANT_LIMIT: int = 3000
USER_LIMIT: int = 1500
ARGUMENTS_LIMIT: int = 500


class ChatCompactor:
    """
    Summarizes conversation history with a non-streaming model call.

    Parameters
    ----------
    client : LLMClient
        LLM client to use for generating compression summaries.

    Attributes
    ----------
    last_usage : TokenUsage | None
        Usage reported by the most recent summarization call.

    Examples
    --------
    >>> compactor = ChatCompactor(LLMClient(config))
    >>> result = await manager.compress(history, summarizer=compactor)
    """

    def __init__(self, client: LLMClient) -> None:
        self.client: LLMClient = client
        self.last_usage: TokenUsage | None = None

    def _format_history_for_compaction(self, messages: list[Message]) -> str:
        """
        Format typed messages as a plain-text transcript.

        Long tool results, replies and user messages are truncated; system
        messages are skipped.

        Parameters
        ----------
        messages : list[Message]
            Messages to format.

        Returns
        -------
        str
            Transcript sections separated by horizontal rules.
        """
        output: list[str] = ["Here is the conversation that needs to be continued:\n"]

        for msg in messages:
            if isinstance(msg, SystemMessage):
                continue

            if isinstance(msg, ToolMessage):
                content: str = truncate_text(
                    msg.content,
                    TOOL_RESULT_LIMIT,
                    "\n... [tool output truncated]",
                )
                output.append(f"[Tool Result ({msg.name or msg.tool_call_id})]:\n{content}")
            elif isinstance(msg, AssistantMessage):
                if msg.content:
                    content = truncate_text(
                        msg.content,
                        ASSISTANT_LIMIT,
                        "\n... [response truncated]",
                    )
                    output.append(f"Assistant:\n{content}")

                if msg.tool_calls:
                    details: list[str] = [
                        f"  - {call.name or 'unknown'}"
                        f"({truncate_text(call.arguments or '{}', ARGUMENTS_LIMIT, '...')})"
                        for call in msg.tool_calls
                    ]
                    output.append("Assistant called tools:\n" + "\n".join(details))
            else:
                content = truncate_text(msg.text(), USER_LIMIT, "\n... [message truncated]")
                output.append(f"User:\n{content}")

        return "\n\n---\n\n".join(output)

    async def summarize(self, messages: list[Message]) -> str | None:
        """
        Summarize messages into a short recap.

        Parameters
        ----------
        messages : list[Message]
            Messages about to be removed from the history.

        Returns
        -------
        str | None
            Summary text, or None if the call failed or returned nothing.
        """
        if not messages:
            return None

        request: list[MessageDict] = [
            {"role": "system", "content": get_compression_prompt()},
            {"role": "user", "content": self._format_history_for_compaction(messages)},
        ]

        try:
            summary, usage = await self.client.complete(request)
        except Exception as e:
            logger.error(f"Error during compression: {e}", exc_info=True)
            return None

        self.last_usage = usage
        if not summary or not summary.strip():
            logger.warning("Compression failed: empty summary")
            return None

        if usage:
            logger.info(
                f"Summarized {len(messages)} message(s) "
                f"({usage.total_tokens} tokens used for compression)",
            )
        return summary.strip()
