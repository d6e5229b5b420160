"""
Text utilities for token estimation and truncation.

Token counts in Keel are deliberately approximate: a fixed characters-per-
token ratio for text and a flat cost per image part. The estimate is
deterministic, which keeps truncation and compression decisions
reproducible across runs and providers.
"""

import math
from typing import Iterable

from keel.constants import DEFAULT_CHARS_PER_TOKEN, DEFAULT_IMAGE_TOKENS
from keel.context.models import (
    AssistantMessage,
    ImagePart,
    Message,
    TextPart,
    UserMessage,
)


class TokenEstimator:
    """
    Deterministic token estimator for conversation messages.

    Parameters
    ----------
    chars_per_token : int, default=4
        Characters counted as one token.
    image_tokens : int, default=1000
        Flat cost of one image part.

    Examples
    --------
    >>> estimator = TokenEstimator()
    >>> estimator.estimate_text("abcde")
    2
    >>> estimator.estimate_message(UserMessage(content="hello world!"))
    3
    """

    def __init__(
        self,
        chars_per_token: int = DEFAULT_CHARS_PER_TOKEN,
        image_tokens: int = DEFAULT_IMAGE_TOKENS,
    ) -> None:
        self.chars_per_token: int = chars_per_token
        self.image_tokens: int = image_tokens

    def estimate_text(self, text: str | None) -> int:
        """
        Estimate tokens in a string as ``ceil(len(text) / chars_per_token)``.

        Parameters
        ----------
        text : str | None
            Text to estimate. None and empty strings cost nothing.

        Returns
        -------
        int
            Estimated token count.
        """
        if not text:
            return 0
        return math.ceil(len(text) / self.chars_per_token)

    def estimate_message(self, message: Message) -> int:
        """
        Estimate the wire cost of one message.

        Reasoning text on assistant messages is not counted because it is
        never sent to the provider.

        Parameters
        ----------
        message : Message
            Message to estimate.

        Returns
        -------
        int
            Estimated token count.
        """
        if isinstance(message, UserMessage) and not isinstance(message.content, str):
            total: int = 0
            for part in message.content:
                if isinstance(part, ImagePart):
                    total += self.image_tokens
                elif isinstance(part, TextPart):
                    total += self.estimate_text(part.text)
            return total

        if isinstance(message, AssistantMessage):
            total = self.estimate_text(message.content)
            for call in message.tool_calls:
                total += self.estimate_text(call.name) + self.estimate_text(call.arguments)
            return total

        return self.estimate_text(message.text())

    def estimate_messages(self, messages: Iterable[Message]) -> int:
        return sum(self.estimate_message(message) for message in messages)


def truncate_text(text: str, max_chars: int, suffix: str = "\n... [truncated]") -> str:
    """
    Cut ``text`` to ``max_chars`` characters, appending ``suffix`` if cut.

    Examples
    --------
    >>> truncate_text("abcdef", 3, suffix="...")
    'abc...'
    >>> truncate_text("abc", 3)
    'abc'
    """
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + suffix
