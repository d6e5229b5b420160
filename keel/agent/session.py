"""
Session management for agent execution.

This module provides the conversation session: the collaborators a run
needs (model client, tool dispatcher, context manager, loop detector), the
conversation history they operate on, and session statistics.
"""

import logging
import uuid
from datetime import datetime
from typing import Any

from keel.config.schema import Configuration
from keel.context.compaction import ChatCompactor
from keel.context.loop_detector import LoopDetector
from keel.context.manager import ContextWindowManager
from keel.context.models import CompressionResult, Message
from keel.interfaces import ModelStreamProtocol, SummarizerProtocol, ToolExecutorProtocol
from keel.llm.client import LLMClient
from keel.llm.models import TokenUsage
from keel.prompts import build_system_prompt
from keel.tools.dispatch import ToolDispatcher, UnavailableToolExecutor
from keel.types import ToolSchemas

logger = logging.getLogger(__name__)


class ConversationSession:
    """
    Owns one conversation and the components that act on it.

    The history is only mutated through :meth:`commit`, :meth:`clear` and
    :meth:`compress`. Exactly one run may use a session at a time.

    Parameters
    ----------
    config : Configuration
        Configuration object.
    executor : ToolExecutorProtocol | None, optional
        Collaborator that runs tools. Every call is answered with
        ``Unknown tool`` if not provided.
    client : ModelStreamProtocol | None, optional
        Model transport. An :class:`LLMClient` is built if not provided.
    tools : ToolSchemas | None, optional
        Tool schemas sent with every request.
    summarizer : SummarizerProtocol | None, optional
        Out-of-band summarizer used by compression. When not provided and
        ``context.llm_summary`` is enabled, a :class:`ChatCompactor` over
        the session's :class:`LLMClient` is used.

    Attributes
    ----------
    history : list[Message]
        Committed messages, oldest first. Excludes the system prompt.
    session_id : str
        Unique session identifier.
    created_at : datetime
        Session creation timestamp.
    updated_at : datetime
        Last update timestamp.
    turn_count : int
        Number of model calls made in this session.
    total_usage : TokenUsage
        Usage summed over every model call.

    Examples
    --------
    >>> session = ConversationSession(config, executor=FunctionToolExecutor())
    >>> session.get_stats()["message_count"]
    0
    """

    def __init__(
        self,
        config: Configuration,
        executor: ToolExecutorProtocol | None = None,
        client: ModelStreamProtocol | None = None,
        tools: ToolSchemas | None = None,
        summarizer: SummarizerProtocol | None = None,
    ) -> None:
        self.config: Configuration = config
        self.client: ModelStreamProtocol = client or LLMClient(config=config)
        self.tools: ToolSchemas | None = tools or None
        self.dispatcher: ToolDispatcher = ToolDispatcher(
            executor or UnavailableToolExecutor(),
            config.tools,
        )
        self.context_manager: ContextWindowManager = ContextWindowManager(config)
        self.loop_detector: LoopDetector = LoopDetector(config.loop_detection)

        if summarizer is None and config.context.llm_summary and isinstance(self.client, LLMClient):
            summarizer = ChatCompactor(self.client)
        self.summarizer: SummarizerProtocol | None = summarizer

        self.system_prompt: str = build_system_prompt(
            config.system_prompt,
            config.developer_instructions,
        )
        self.history: list[Message] = []
        self.session_id: str = str(uuid.uuid4())
        self.created_at: datetime = datetime.now()
        self.updated_at: datetime = datetime.now()
        self.turn_count: int = 0
        self.total_usage: TokenUsage = TokenUsage()

    def increment_turn(self) -> int:
        self.turn_count += 1
        self.updated_at = datetime.now()
        return self.turn_count

    def add_usage(self, usage: TokenUsage | None) -> None:
        if usage is not None:
            self.total_usage = self.total_usage + usage

    def commit(self, messages: list[Message]) -> None:
        """
        Append the messages of a finished run to the history.

        Parameters
        ----------
        messages : list[Message]
            Messages the run produced, in order.
        """
        if not messages:
            return
        self.history.extend(messages)
        self.updated_at = datetime.now()
        logger.debug(f"Committed {len(messages)} message(s); history has {len(self.history)}")

    def clear(self) -> None:
        """Forget the conversation but keep the session's components."""
        self.history.clear()
        self.loop_detector.clear()
        self.turn_count = 0
        self.total_usage = TokenUsage()
        self.updated_at = datetime.now()
        logger.info(f"Session {self.session_id} cleared")

    async def compress(self, force: bool = False) -> CompressionResult | None:
        """
        Compress the history if it is over the compression threshold.

        Parameters
        ----------
        force : bool, default=False
            Compress whenever the history is longer than the kept tail,
            ignoring the size and length thresholds.

        Returns
        -------
        CompressionResult | None
            What compression did, or None if the history was left as is.
        """
        manager = self.context_manager
        if force:
            manager = ContextWindowManager(
                self.config.model_copy(
                    update={
                        "context": self.config.context.model_copy(
                            update={
                                "compression_fraction": 0.0,
                                "min_messages_for_compression": 0,
                            },
                        ),
                    },
                ),
                self.context_manager.estimator,
            )

        result: CompressionResult | None = await manager.compress(
            self.history,
            system_prompt=self.system_prompt,
            summarizer=self.summarizer,
        )
        if result is not None:
            self.history = list(result.history)
            self.updated_at = datetime.now()
        return result

    async def close(self) -> None:
        close = getattr(self.client, "close", None)
        if close is not None:
            await close()

    def get_stats(self) -> dict[str, Any]:
        """
        Get session statistics.

        Returns
        -------
        dict[str, Any]
            Dictionary with session statistics.

        Examples
        --------
        >>> stats = session.get_stats()
        >>> print(f"Turns: {stats['turn_count']}")
        """
        return {
            "session_id": self.session_id,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "turn_count": self.turn_count,
            "message_count": len(self.history),
            "estimated_tokens": self.context_manager.estimate(self.history),
            "budget": self.context_manager.budget,
            "token_usage": self.total_usage.model_dump(),
            "tools_count": len(self.tools or []),
        }
