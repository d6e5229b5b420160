"""
Retry strategy for LLM API calls.

This module provides retry logic with exponential backoff for transient
failures when opening a request, and maps ``openai`` exceptions onto the
Keel exception hierarchy.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable

from openai import APIConnectionError, APIError as OpenAIAPIError, APIStatusError
from openai import RateLimitError as OpenAIRateLimitError

from keel.constants import (
    DEFAULT_MAX_RETRIES,
    DEFAULT_RETRY_BASE_DELAY,
    DEFAULT_RETRY_MAX_DELAY,
)
from keel.exceptions import APIError, RateLimitError, TransportError

logger = logging.getLogger(__name__)


class RetryStrategy:
    """
    Strategy for retrying failed operations with exponential backoff.

    Rate-limit and connection errors are retried; other API errors are
    raised immediately as :class:`keel.exceptions.APIError`.

    Parameters
    ----------
    max_retries : int, default=3
        Maximum number of retry attempts.
    base_delay : float, default=1.0
        Base delay in seconds for exponential backoff.
    max_delay : float, default=60.0
        Maximum delay in seconds between retries.
    sleep : Callable[[float], Awaitable[Any]], default=asyncio.sleep
        Sleep function, replaceable in tests.

    Examples
    --------
    >>> strategy = RetryStrategy(max_retries=3, base_delay=1.0)
    >>> result = await strategy.execute(lambda: client.models.list())
    """

    def __init__(
        self,
        max_retries: int = DEFAULT_MAX_RETRIES,
        base_delay: float = DEFAULT_RETRY_BASE_DELAY,
        max_delay: float = DEFAULT_RETRY_MAX_DELAY,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.max_retries: int = max_retries
        self.base_delay: float = base_delay
        self.max_delay: float = max_delay
        self._sleep: Callable[[float], Awaitable[Any]] = sleep

    def _calculate_delay(self, attempt: int) -> float:
        """
        Calculate delay for a retry attempt using exponential backoff.

        Parameters
        ----------
        attempt : int
            The attempt number (0-indexed).

        Returns
        -------
        float
            Delay in seconds.
        """
        delay: float = self.base_delay * (2**attempt)
        return min(delay, self.max_delay)

    async def execute(
        self,
        func: Callable[[], Awaitable[Any]],
        *,
        on_retry: Callable[[Exception, int], None] | None = None,
    ) -> Any:
        """
        Execute a function with retry logic.

        Parameters
        ----------
        func : Callable[[], Awaitable[Any]]
            Async function to execute.
        on_retry : Callable[[Exception, int], None] | None, optional
            Callback called before each retry with the exception and
            attempt number.

        Returns
        -------
        Any
            Result of the function execution.

        Raises
        ------
        RateLimitError
            If the rate limit persists after all retries.
        TransportError
            If the endpoint stays unreachable after all retries.
        APIError
            For non-retryable API errors.
        """
        for attempt in range(self.max_retries + 1):
            try:
                return await func()
            except OpenAIRateLimitError as e:
                last_error: Exception = e
                if attempt >= self.max_retries:
                    raise RateLimitError(
                        f"Rate limit exceeded after {self.max_retries} retries: {e}",
                        retry_after=self._calculate_delay(attempt),
                        cause=e,
                    ) from e
                wait_time: float = self._calculate_delay(attempt)
                logger.warning(
                    f"Rate limit exceeded (attempt {attempt + 1}/{self.max_retries + 1}), "
                    f"retrying in {wait_time:.2f}s",
                )
            except APIConnectionError as e:
                last_error = e
                if attempt >= self.max_retries:
                    raise TransportError(
                        f"Connection failed after {self.max_retries} retries: {e}",
                        cause=e,
                    ) from e
                wait_time = self._calculate_delay(attempt)
                logger.warning(
                    f"Connection error (attempt {attempt + 1}/{self.max_retries + 1}), "
                    f"retrying in {wait_time:.2f}s: {e}",
                )
            except APIStatusError as e:
                logger.error(f"API error {e.status_code}: {e}")
                raise APIError(str(e), status_code=e.status_code, cause=e) from e
            except OpenAIAPIError as e:
                logger.error(f"API error: {e}")
                raise APIError(str(e), cause=e) from e

            if on_retry:
                on_retry(last_error, attempt)
            await self._sleep(wait_time)

        raise RuntimeError("Retry strategy exhausted without result")
