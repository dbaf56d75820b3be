"""Concrete implementation of the de-duplicating short-TTL cache.

Holds two pieces of shared state, both keyed by an explicit subject key:
fresh results of successful fetches, and the task of any fetch still running.
A key is therefore always either absent/stale, pending, or fresh.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from pixelclient.domain.events.api_events import CacheHit, InFlightJoined, dispatch_event
from pixelclient.domain.interfaces.cache import CacheService
from pixelclient.domain.interfaces.clock import Clock
from pixelclient.domain.models.common import SubjectKey
from pixelclient.infrastructure.resilience.error_normalizer import normalize_error
from pixelclient.infrastructure.timing.clock import SystemClock

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ENTRIES = 256


@dataclass
class CacheEntry:
    """A successful fetch result and when it was obtained."""
    subject_key: SubjectKey
    value: Any
    fetched_at_ms: int

    def is_fresh(self, now_ms: int, ttl_ms: int) -> bool:
        return now_ms - self.fetched_at_ms < ttl_ms


class InFlightCache(CacheService):
    """In-memory cache that also joins concurrent fetches for the same key."""

    def __init__(self, clock: Optional[Clock] = None, max_entries: int = DEFAULT_MAX_ENTRIES):
        """Initializes the cache.

        Args:
            clock: Time source for freshness checks.
            max_entries: Oldest entries are evicted beyond this size.
        """
        self.clock = clock or SystemClock()
        self.max_entries = max_entries
        self._entries: Dict[SubjectKey, CacheEntry] = {}
        self._in_flight: Dict[SubjectKey, "asyncio.Task[Any]"] = {}
        # Bumped on invalidate so a detached fetch cannot repopulate the key
        self._generations: Dict[SubjectKey, int] = {}
        logger.debug(f"InFlightCache initialized (max_entries={max_entries})")

    # --- Introspection ---

    def is_pending(self, subject_key: SubjectKey) -> bool:
        return subject_key in self._in_flight

    def peek(self, subject_key: SubjectKey, ttl_ms: int) -> Optional[Any]:
        entry = self._entries.get(subject_key)
        if entry is not None and entry.is_fresh(self.clock.now_ms(), ttl_ms):
            return entry.value
        return None

    # --- Core operation ---

    async def get_or_fetch(
        self,
        subject_key: SubjectKey,
        ttl_ms: int,
        fetch_fn: Callable[[], Awaitable[T]],
    ) -> T:
        now_ms = self.clock.now_ms()
        entry = self._entries.get(subject_key)
        if entry is not None:
            if entry.is_fresh(now_ms, ttl_ms):
                dispatch_event(CacheHit(subject_key=subject_key, age_ms=now_ms - entry.fetched_at_ms))
                logger.debug(f"Cache hit for key: {subject_key}")
                return entry.value
            # Stale entries are logically absent
            del self._entries[subject_key]

        task = self._in_flight.get(subject_key)
        if task is not None:
            dispatch_event(InFlightJoined(subject_key=subject_key))
            logger.debug(f"Joining in-flight fetch for key: {subject_key}")
        else:
            logger.debug(f"Cache miss for key: {subject_key}. Starting fetch.")
            generation = self._generations.get(subject_key, 0)
            task = asyncio.ensure_future(self._run_fetch(subject_key, generation, fetch_fn))
            self._in_flight[subject_key] = task

        # Shielded so that cancelling one caller does not cancel the shared fetch
        return await asyncio.shield(task)

    async def _run_fetch(
        self,
        subject_key: SubjectKey,
        generation: int,
        fetch_fn: Callable[[], Awaitable[T]],
    ) -> T:
        this_task = asyncio.current_task()
        try:
            try:
                value = await fetch_fn()
            except Exception as e:
                error = normalize_error(e)
                logger.debug(f"Fetch failed for key {subject_key}: {error.message}")
                raise error from (None if error is e else e)

            if self._generations.get(subject_key, 0) == generation:
                self._entries[subject_key] = CacheEntry(
                    subject_key=subject_key, value=value, fetched_at_ms=self.clock.now_ms(),
                )
                self._prune()
            else:
                logger.debug(f"Discarding result for invalidated key: {subject_key}")
            return value
        finally:
            # Removed before any joined caller resumes
            if self._in_flight.get(subject_key) is this_task:
                del self._in_flight[subject_key]

    def _prune(self) -> None:
        while len(self._entries) > self.max_entries:
            oldest_key = next(iter(self._entries))
            del self._entries[oldest_key]

    # --- Invalidation ---

    def invalidate(self, subject_key: SubjectKey) -> None:
        self._entries.pop(subject_key, None)
        # The running task (if any) keeps serving its current callers but is detached
        self._in_flight.pop(subject_key, None)
        self._generations[subject_key] = self._generations.get(subject_key, 0) + 1
        logger.debug(f"Invalidated cache key: {subject_key}")

    def invalidate_subject(self, subject: str) -> None:
        prefix = f"{subject}:"
        keys = {k for k in list(self._entries) + list(self._in_flight) if k == subject or k.startswith(prefix)}
        for key in keys:
            self.invalidate(key)
        logger.info(f"Invalidated {len(keys)} cache key(s) for subject '{subject}'.")

    def clear(self) -> None:
        for key in list(self._entries) + list(self._in_flight):
            self._generations[key] = self._generations.get(key, 0) + 1
        self._entries.clear()
        self._in_flight.clear()
        logger.info("Cleared request cache.")
