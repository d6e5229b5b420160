"""
Context window management.

This module keeps the request size under a dynamic budget. Before every
model call the history is truncated oldest-first into a
:class:`ConversationWindow`; after a run completes the stored history may
be compressed by replacing older messages with a summary.
"""

import logging

from keel.config.schema import Configuration
from keel.constants import SUMMARY_EXCERPT_CHARS
from keel.context.models import (
    AssistantMessage,
    CompressionResult,
    ConversationWindow,
    Message,
    SystemMessage,
    ToolMessage,
    UserMessage,
)
from keel.interfaces import SummarizerProtocol
from keel.prompts import compression_llm_summary, compression_summary
from keel.utils.text import TokenEstimator

logger = logging.getLogger(__name__)


class ContextWindowManager:
    """
    Builds bounded request windows and compresses history.

    Parameters
    ----------
    config : Configuration
        Configuration with model budget and context settings.
    estimator : TokenEstimator | None, optional
        Token estimator. Built from the context settings if not provided.

    Attributes
    ----------
    budget : int
        ``floor(context_window * (1 - response_reserve_fraction))``.

    Examples
    --------
    >>> manager = ContextWindowManager(Configuration())
    >>> window = manager.build_window("Be brief.", history=[], pending=[UserMessage(content="hi")])
    >>> [m.role for m in window.messages]
    ['system', 'user']
    """

    def __init__(
        self,
        config: Configuration,
        estimator: TokenEstimator | None = None,
    ) -> None:
        self.config: Configuration = config
        self.estimator: TokenEstimator = estimator or TokenEstimator(
            image_tokens=config.context.image_token_estimate,
        )

    @property
    def budget(self) -> int:
        return self.config.model.budget

    def estimate(self, messages: list[Message]) -> int:
        return self.estimator.estimate_messages(messages)

    def _system_messages(self, system_prompt: str | None) -> list[Message]:
        return [SystemMessage(content=system_prompt)] if system_prompt else []

    def build_window(
        self,
        system_prompt: str | None,
        history: list[Message],
        pending: list[Message],
    ) -> ConversationWindow:
        """
        Fit the conversation into the budget for one request.

        History is dropped oldest-first while the estimate exceeds the
        budget. Tool results left at the front without their assistant
        message are dropped as well. If the history is gone and the
        window is still too large, earlier exchanges of the current run
        are dropped, each assistant message together with the tool
        results and notices that follow it. The first pending message and
        the latest exchange are never dropped. Messages with no content
        and no tool calls are filtered out.

        Parameters
        ----------
        system_prompt : str | None
            System prompt placed first.
        history : list[Message]
            Messages from earlier runs, oldest first.
        pending : list[Message]
            Messages of the current run, starting with the user message.

        Returns
        -------
        ConversationWindow
            The window. Its estimate exceeds the budget only when the
            messages that are never dropped exceed it on their own; see
            :attr:`ConversationWindow.over_budget`.
        """
        kept_history: list[Message] = [m for m in history if m.has_payload()]
        kept_pending: list[Message] = [m for m in pending if m.has_payload()]
        system: list[Message] = self._system_messages(system_prompt)

        costs: list[int] = [self.estimator.estimate_message(m) for m in kept_history]
        total: int = self.estimate(system) + self.estimate(kept_pending) + sum(costs)
        budget: int = self.budget

        start: int = 0
        while total > budget and start < len(kept_history):
            total -= costs[start]
            start += 1

        while start < len(kept_history) and isinstance(kept_history[start], ToolMessage):
            total -= costs[start]
            start += 1

        if start:
            logger.info(
                f"Truncated {start} history message(s) to fit budget "
                f"({total:,}/{budget:,} tokens)",
            )

        pending_dropped: int = 0
        if total > budget:
            kept_pending, freed, pending_dropped = self._truncate_run(
                kept_pending,
                total - budget,
            )
            total -= freed

        if total > budget:
            logger.warning(
                f"Pending messages alone exceed the budget ({total:,}/{budget:,} tokens)",
            )

        return ConversationWindow(
            messages=system + kept_history[start:] + kept_pending,
            estimated_tokens=total,
            budget=budget,
            dropped_count=start + pending_dropped,
        )

    def _truncate_run(
        self,
        pending: list[Message],
        excess: int,
    ) -> tuple[list[Message], int, int]:
        """
        Drop the oldest exchanges of the current run until ``excess`` is freed.

        Returns
        -------
        tuple[list[Message], int, int]
            Remaining messages, tokens freed and messages dropped.
        """
        boundaries: list[int] = [
            i for i, message in enumerate(pending) if i > 0 and isinstance(message, AssistantMessage)
        ]
        if len(boundaries) < 2:
            return pending, 0, 0

        freed: int = 0
        cut: int = boundaries[0]
        for next_start in boundaries[1:]:
            if freed >= excess:
                break
            freed += self.estimate(pending[cut:next_start])
            cut = next_start

        dropped: int = cut - boundaries[0]
        if dropped:
            logger.info(
                f"Truncated {dropped} message(s) of the current run to fit budget "
                f"({freed:,} tokens freed)",
            )
        return pending[: boundaries[0]] + pending[cut:], freed, dropped

    def needs_compression(self, history: list[Message], system_prompt: str | None = None) -> bool:
        """
        Check whether the history is large and long enough to compress.

        Returns
        -------
        bool
            True if the estimate exceeds ``compression_fraction`` of the
            budget and the history has more than
            ``min_messages_for_compression`` messages.
        """
        settings = self.config.context
        if len(history) <= settings.min_messages_for_compression:
            return False
        total: int = self.estimate(self._system_messages(system_prompt) + history)
        return total > settings.compression_fraction * self.budget

    def _tail_start(self, history: list[Message]) -> int:
        cut: int = max(0, len(history) - self.config.context.keep_recent_messages)
        while cut > 0 and isinstance(history[cut], ToolMessage):
            cut -= 1
        return cut

    def _minimal_summary(self, older: list[Message]) -> str:
        first_user: UserMessage | None = next(
            (m for m in older if isinstance(m, UserMessage)),
            None,
        )
        if first_user is None:
            excerpt = "Earlier messages"
        else:
            excerpt = first_user.text()[:SUMMARY_EXCERPT_CHARS] or "User started conversation"
        return compression_summary(excerpt, len(older))

    async def compress(
        self,
        history: list[Message],
        system_prompt: str | None = None,
        summarizer: SummarizerProtocol | None = None,
    ) -> CompressionResult | None:
        """
        Compress the history if it is over the compression threshold.

        The most recent ``keep_recent_messages`` messages are kept verbatim,
        extended backwards so the tail never starts with a tool result.
        Everything older is replaced by one system message summarizing it.
        When a summarizer is given and fails, the oldest messages are
        removed instead until the history fits the budget, stopping at
        the kept tail.

        Parameters
        ----------
        history : list[Message]
            Stored history, oldest first.
        system_prompt : str | None, optional
            Counted towards the threshold.
        summarizer : SummarizerProtocol | None, optional
            Produces a richer summary than the built-in excerpt.

        Returns
        -------
        CompressionResult | None
            The replacement history and statistics, or None if compression
            was not needed or not possible.
        """
        if not self.needs_compression(history, system_prompt):
            return None

        system: list[Message] = self._system_messages(system_prompt)
        tokens_before: int = self.estimate(system + history)

        cut: int = self._tail_start(history)
        if cut == 0:
            logger.debug("Nothing older than the kept tail; skipping compression")
            return None

        older: list[Message] = history[:cut]
        recent: list[Message] = history[cut:]

        if summarizer is None:
            content: str = self._minimal_summary(older)
        else:
            summary: str | None = None
            try:
                summary = await summarizer.summarize(older)
            except Exception as e:
                logger.warning(f"Summarizer failed: {e}", exc_info=True)

            if not summary:
                logger.warning("Falling back to oldest-first removal")
                return self._remove_oldest(history, cut, tokens_before)
            content = compression_llm_summary(summary, len(older))

        new_history: list[Message] = [SystemMessage(content=content), *recent]
        tokens_after: int = self.estimate(system + new_history)

        logger.info(
            f"Compressed {len(older)} message(s): {tokens_before:,} -> {tokens_after:,} tokens",
        )
        return CompressionResult(
            history=new_history,
            tokens_before=tokens_before,
            tokens_after=tokens_after,
            compressed_count=len(older),
            summarized=True,
        )

    def _remove_oldest(
        self,
        history: list[Message],
        cut: int,
        tokens_before: int,
    ) -> CompressionResult | None:
        total: int = tokens_before
        budget: int = self.budget

        start: int = 0
        while total > budget and start < cut:
            total -= self.estimator.estimate_message(history[start])
            start += 1

        while start < cut and isinstance(history[start], ToolMessage):
            total -= self.estimator.estimate_message(history[start])
            start += 1

        if start == 0:
            return None

        logger.info(f"Removed {start} oldest message(s): {tokens_before:,} -> {total:,} tokens")
        return CompressionResult(
            history=history[start:],
            tokens_before=tokens_before,
            tokens_after=total,
            compressed_count=start,
            summarized=False,
        )
