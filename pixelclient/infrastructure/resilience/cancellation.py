"""Cooperative cancellation for retry and polling loops.

Nothing in flight is aborted; a cancelled token only stops further
attempts or rounds from starting and cuts short a pending wait.
"""

import asyncio
import logging
from typing import List, Optional

logger = logging.getLogger(__name__)


class CancellationToken:
    """A one-shot flag threaded through every suspension point of a loop."""

    def __init__(self):
        self._cancelled = False
        self._waiters: List["asyncio.Future[None]"] = []
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self, reason: Optional[str] = None) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        self.reason = reason
        for waiter in self._waiters:
            if not waiter.done():
                waiter.set_result(None)
        self._waiters.clear()
        logger.debug(f"Cancellation requested: {reason or 'no reason given'}")

    async def wait(self) -> None:
        """Suspends until the token is cancelled."""
        if self._cancelled:
            return
        # Futures are created on the running loop so one token can outlive a loop
        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        try:
            await waiter
        finally:
            if waiter in self._waiters:
                self._waiters.remove(waiter)

    async def sleep(self, sleep_fn, seconds: float) -> bool:
        """Runs sleep_fn(seconds) unless the token is cancelled first.

        Returns:
            True if the full sleep completed, False if it was cut short.
        """
        if self._cancelled:
            return False
        sleeper = asyncio.ensure_future(sleep_fn(seconds))
        canceller = asyncio.ensure_future(self.wait())
        try:
            await asyncio.wait({sleeper, canceller}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            pending = [task for task in (sleeper, canceller) if not task.done()]
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
        if sleeper.cancelled():
            return False
        sleeper.result()
        return not self._cancelled
