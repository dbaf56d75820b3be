"""Interface for the subject-scoped request cache.

Defines the contract for serving recent successful reads and joining
in-flight fetches, keyed by an explicit subject key.
"""

import abc
from typing import Any, Awaitable, Callable, Optional, TypeVar

from pixelclient.domain.models.common import SubjectKey

T = TypeVar("T")


class CacheService(abc.ABC):
    """Abstract Base Class for the de-duplicating short-TTL cache."""

    @abc.abstractmethod
    async def get_or_fetch(
        self,
        subject_key: SubjectKey,
        ttl_ms: int,
        fetch_fn: Callable[[], Awaitable[T]],
    ) -> T:
        """Returns a fresh cached value, joins a running fetch, or starts one.

        Args:
            subject_key: Identity scope of the value (e.g. 'alice:history').
            ttl_ms: How long a successful result stays fresh. 0 disables caching
                but keeps de-duplication.
            fetch_fn: Zero-argument coroutine function performing the fetch.

        Returns:
            The fetched or cached value.

        Raises:
            NormalizedError: If the shared fetch failed.
        """
        pass

    @abc.abstractmethod
    def peek(self, subject_key: SubjectKey, ttl_ms: int) -> Optional[Any]:
        """Returns the fresh cached value for a key without fetching, or None."""
        pass

    @abc.abstractmethod
    def invalidate(self, subject_key: SubjectKey) -> None:
        """Drops the entry and any in-flight registration for a key."""
        pass

    @abc.abstractmethod
    def invalidate_subject(self, subject: str) -> None:
        """Drops every key scoped to a subject (e.g. on logout)."""
        pass

    @abc.abstractmethod
    def clear(self) -> None:
        """Drops all entries and in-flight registrations."""
        pass
