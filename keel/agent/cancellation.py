"""
Cooperative cancellation for agent runs.
"""

import asyncio
import logging
from typing import Awaitable, TypeVar

from keel.constants import STOPPED_MESSAGE
from keel.exceptions import OperationCancelled

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CancellationToken:
    """
    A one-shot cancellation signal shared by everything in one run.

    The token is polled at suspension points with :meth:`raise_if_cancelled`
    and raced against pending work with :meth:`guard`, so a cancel request
    interrupts a blocked stream read or tool call immediately.

    Examples
    --------
    >>> token = CancellationToken()
    >>> token.cancel()
    >>> token.cancelled
    True
    """

    def __init__(self) -> None:
        self._event: asyncio.Event = asyncio.Event()
        self.reason: str = STOPPED_MESSAGE

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str | None = None) -> None:
        if self._event.is_set():
            return
        if reason:
            self.reason = reason
        self._event.set()
        logger.info(f"Cancellation requested: {self.reason}")

    def raise_if_cancelled(self) -> None:
        """
        Raise if cancellation was requested.

        Raises
        ------
        OperationCancelled
            If :meth:`cancel` has been called.
        """
        if self._event.is_set():
            raise OperationCancelled(self.reason)

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """
        Await ``awaitable`` unless cancellation wins the race.

        Parameters
        ----------
        awaitable : Awaitable[T]
            Work to run.

        Returns
        -------
        T
            The work's result, if it finished first.

        Raises
        ------
        OperationCancelled
            If the token fired before the work finished. The work is
            cancelled.
        """
        self.raise_if_cancelled()

        work: asyncio.Future[T] = asyncio.ensure_future(awaitable)
        waiter: asyncio.Task[bool] = asyncio.ensure_future(self._event.wait())

        try:
            done, _ = await asyncio.wait(
                {work, waiter},
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            work.cancel()
            await asyncio.gather(work, return_exceptions=True)
            raise
        finally:
            waiter.cancel()

        if work in done:
            return work.result()

        work.cancel()
        await asyncio.gather(work, return_exceptions=True)
        raise OperationCancelled(self.reason)
