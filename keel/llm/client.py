"""
LLM client implementation for the Keel engine.

This module provides an async client for OpenAI-compatible chat-completion
endpoints. Streaming requests hand back the raw response body so that SSE
framing and delta accumulation stay under the engine's control; a
non-streaming call serves out-of-band summarization.
"""

import logging
from contextlib import AsyncExitStack
from typing import Any, AsyncGenerator

import httpx
from openai import AsyncOpenAI

from keel.config.schema import Configuration
from keel.exceptions import TransportError
from keel.llm.models import TokenUsage
from keel.llm.retry import RetryStrategy
from keel.types import MessageDict, ToolSchemas

logger = logging.getLogger(__name__)


def compute_max_tokens(
    context_window: int,
    estimated_input_tokens: int,
    safety_buffer: int,
    floor: int,
    ceiling: int,
) -> int:
    """
    Size the response allowance for a request.

    Parameters
    ----------
    context_window : int
        Model context window in tokens.
    estimated_input_tokens : int
        Estimated size of the request messages.
    safety_buffer : int
        Margin subtracted for estimation error.
    floor : int
        Smallest allowance ever requested.
    ceiling : int
        Largest allowance ever requested.

    Returns
    -------
    int
        ``clamp(context_window - estimated_input_tokens - safety_buffer, floor, ceiling)``.

    Examples
    --------
    >>> compute_max_tokens(200_000, 10_000, 1000, 4000, 32_000)
    32000
    >>> compute_max_tokens(16_000, 14_000, 1000, 4000, 32_000)
    4000
    """
    available: int = context_window - estimated_input_tokens - safety_buffer
    return max(floor, min(ceiling, available))


class LLMClient:
    """
    Client for OpenAI-compatible chat-completion APIs.

    Parameters
    ----------
    config : Configuration
        Configuration object containing API settings and model parameters.
    retry_strategy : RetryStrategy | None, optional
        Strategy used when opening requests. Defaults to three retries.

    Attributes
    ----------
    config : Configuration
        Configuration object.
    _client : AsyncOpenAI | None
        Internal OpenAI client instance (lazy-initialized).

    Examples
    --------
    >>> client = LLMClient(config)
    >>> async for chunk in client.stream_bytes(messages, tools=None, estimated_input_tokens=12):
    ...     decoder.feed(chunk)
    >>> await client.close()
    """

    def __init__(
        self,
        config: Configuration,
        retry_strategy: RetryStrategy | None = None,
    ) -> None:
        self.config: Configuration = config
        self._client: AsyncOpenAI | None = None
        self._retry_strategy: RetryStrategy = retry_strategy or RetryStrategy()

    def _get_client(self) -> AsyncOpenAI:
        """
        Get or create the OpenAI client instance.

        Returns
        -------
        AsyncOpenAI
            The OpenAI client instance.

        Raises
        ------
        TransportError
            If the API key is not configured.
        """
        if self._client is None:
            api_key: str | None = self.config.api_key
            if not api_key:
                raise TransportError(
                    "API key not configured. Set API_KEY environment variable.",
                )

            self._client = AsyncOpenAI(
                api_key=api_key,
                base_url=self.config.base_url,
            )
            logger.debug("LLM client initialized")

        return self._client

    async def close(self) -> None:
        if self._client:
            await self._client.close()
            self._client = None
            logger.debug("LLM client closed")

    def max_tokens_for(self, estimated_input_tokens: int) -> int:
        model = self.config.model
        return compute_max_tokens(
            model.context_window,
            estimated_input_tokens,
            model.safety_buffer_tokens,
            model.min_output_tokens,
            model.max_output_tokens,
        )

    def build_request(
        self,
        messages: list[MessageDict],
        tools: ToolSchemas | None,
        estimated_input_tokens: int,
    ) -> dict[str, Any]:
        """
        Build the keyword arguments of a streaming request.

        Parameters
        ----------
        messages : list[MessageDict]
            Wire-format conversation window.
        tools : ToolSchemas | None
            Opaque tool schemas forwarded as-is.
        estimated_input_tokens : int
            Estimated size of ``messages``.

        Returns
        -------
        dict[str, Any]
            Arguments for ``chat.completions.create``.
        """
        kwargs: dict[str, Any] = {
            "model": self.config.model_name,
            "messages": messages,
            "stream": True,
            "temperature": self.config.temperature,
            "max_tokens": self.max_tokens_for(estimated_input_tokens),
        }

        if tools:
            kwargs["tools"] = tools
            kwargs["tool_choice"] = "auto"

        if self.config.model.include_usage:
            kwargs["stream_options"] = {"include_usage": True}

        return kwargs

    async def stream_bytes(
        self,
        messages: list[MessageDict],
        tools: ToolSchemas | None,
        estimated_input_tokens: int,
    ) -> AsyncGenerator[bytes, None]:
        """
        Open a streaming request and yield the raw response body.

        Opening the request is retried on rate-limit and connection errors.
        Failures while reading the body are not retried.

        Yields
        ------
        bytes
            Body chunks, split wherever the network split them.

        Raises
        ------
        TransportError
            If the connection fails or the body cannot be read.
        APIError
            If the endpoint rejects the request.
        """
        client: AsyncOpenAI = self._get_client()
        kwargs: dict[str, Any] = self.build_request(messages, tools, estimated_input_tokens)

        logger.debug(
            f"Opening stream: model={kwargs['model']} messages={len(messages)} "
            f"max_tokens={kwargs['max_tokens']}",
        )

        async with AsyncExitStack() as stack:
            response = await self._retry_strategy.execute(
                lambda: stack.enter_async_context(
                    client.chat.completions.with_streaming_response.create(**kwargs),
                ),
            )

            try:
                async for chunk in response.iter_bytes():
                    yield chunk
            except httpx.HTTPError as e:
                logger.error(f"Stream read failed: {e}", exc_info=True)
                raise TransportError(
                    f"Stream read failed: {e}",
                    endpoint=self.config.base_url,
                    cause=e,
                ) from e

    async def complete(
        self,
        messages: list[MessageDict],
    ) -> tuple[str | None, TokenUsage | None]:
        """
        Run a non-streaming completion without tools.

        Parameters
        ----------
        messages : list[MessageDict]
            Wire-format messages.

        Returns
        -------
        tuple[str | None, TokenUsage | None]
            Response text and usage.
        """
        client: AsyncOpenAI = self._get_client()
        response = await self._retry_strategy.execute(
            lambda: client.chat.completions.create(
                model=self.config.model_name,
                messages=messages,
                temperature=self.config.temperature,
                stream=False,
            ),
        )

        text: str | None = response.choices[0].message.content if response.choices else None
        usage: TokenUsage | None = None
        if response.usage:
            usage = TokenUsage.from_payload(response.usage.model_dump())

        return text, usage
