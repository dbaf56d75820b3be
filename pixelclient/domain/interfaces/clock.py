"""Interface for reading time and suspending on it.

Business logic (TTL checks, reset-overdue checks, backoff and poll delays)
reads time through this port so tests can simulate time passing.
"""

import abc
from datetime import datetime


class Clock(abc.ABC):
    """Abstract Base Class for a time source."""

    @abc.abstractmethod
    def now_ms(self) -> int:
        """Current epoch time in milliseconds."""
        pass

    @abc.abstractmethod
    def now(self) -> datetime:
        """Current time as a timezone-aware UTC datetime."""
        pass

    @abc.abstractmethod
    async def sleep(self, seconds: float) -> None:
        """Suspends the calling task only."""
        pass
