"""Screenshot history for the current subject.

Served from the short-TTL cache; overlapping loads share one request.
"""

import logging
from typing import Any, List, Optional

from pixelclient.domain.interfaces.cache import CacheService
from pixelclient.domain.interfaces.clock import Clock
from pixelclient.domain.interfaces.session import SessionProvider
from pixelclient.domain.models.common import ApiPath, subject_scoped_key
from pixelclient.domain.models.errors import NormalizedError
from pixelclient.domain.models.history import HistoryItem
from pixelclient.infrastructure.config.settings import DEFAULT_HISTORY_TTL_MS
from pixelclient.infrastructure.http.api_client import ApiClient

logger = logging.getLogger(__name__)

# Tried in order; older deployments expose only the later ones
HISTORY_ENDPOINTS = [
    ApiPath("/api/v1/user/screenshot-history"),
    ApiPath("/user/screenshot-history"),
    ApiPath("/api/v1/screenshots"),
]
MAX_HISTORY_ITEMS = 120
# Any other failure moves on to the next endpoint
TERMINAL_HISTORY_STATUSES = (404, 429, 500)
FORMAT_TABS = ("all", "png", "jpeg", "webp", "pdf")


def extract_items(data: Any) -> List[Any]:
    if isinstance(data, dict):
        for key in ("screenshots", "items"):
            if isinstance(data.get(key), list):
                return data[key]
        return []
    if isinstance(data, list):
        return data
    return []


def filter_by_format(items: List[HistoryItem], tab: str) -> List[HistoryItem]:
    """Filters items for a format tab ('all', 'png', 'jpeg', 'webp', 'pdf')."""
    tab = (tab or "all").lower()
    if tab == "all":
        return list(items)
    accepted = {"jpeg", "jpg"} if tab in ("jpeg", "jpg") else {tab}
    return [item for item in items if (item.format or "").lower() in accepted]


class HistoryService:
    """Loads, normalizes and caches the subject's screenshot history."""

    def __init__(
        self,
        api_client: ApiClient,
        session: SessionProvider,
        cache_service: CacheService,
        clock: Clock,
        ttl_ms: int = DEFAULT_HISTORY_TTL_MS,
    ):
        self.api_client = api_client
        self.session = session
        self.cache_service = cache_service
        self.clock = clock
        self.ttl_ms = ttl_ms

    def _cache_key(self):
        return subject_scoped_key(self.session.subject, "history")

    async def load_history(self) -> List[HistoryItem]:
        """Returns the history, newest first.

        Raises:
            NormalizedError: If not signed in or the server reports a failure.
        """
        if not self.session.is_authenticated:
            raise NormalizedError("Authentication required")
        return await self.cache_service.get_or_fetch(self._cache_key(), self.ttl_ms, self._fetch_history)

    async def refresh_history(self) -> List[HistoryItem]:
        """Drops the cached history and loads it again."""
        self.cache_service.invalidate(self._cache_key())
        return await self.load_history()

    async def _fetch_history(self) -> List[HistoryItem]:
        raw_items: Optional[List[Any]] = None
        for path in HISTORY_ENDPOINTS:
            logger.debug(f"Fetching history from {path}")
            try:
                data = await self.api_client.get_json(path)
            except NormalizedError as e:
                if e.status_code in TERMINAL_HISTORY_STATUSES:
                    raise self._history_error(e) from e
                logger.warning(f"History endpoint {path} unavailable: {e.message}")
                continue
            raw_items = extract_items(data)
            break

        if raw_items is None:
            raw_items = []

        now_ms = self.clock.now_ms()
        items = [
            HistoryItem.from_raw(raw, index, now_ms)
            for index, raw in enumerate(raw_items[:MAX_HISTORY_ITEMS])
            if isinstance(raw, dict)
        ]
        items.sort(key=lambda item: item.created_at_dt, reverse=True)
        logger.info(f"Loaded {len(items)} history item(s).")
        return items

    @staticmethod
    def _history_error(error: NormalizedError) -> NormalizedError:
        if error.status_code == 500:
            body = error.raw_payload if isinstance(error.raw_payload, str) else str(error.raw_payload or "")
            if "no such column" in body:
                return NormalizedError("Database needs migration - missing columns detected", 500, raw_payload=error.raw_payload)
            return NormalizedError("Database connection issue - please contact support", 500, raw_payload=error.raw_payload)
        if error.status_code == 404:
            return NormalizedError("History endpoint not available", 404, raw_payload=error.raw_payload)
        return NormalizedError("Server is busy (429). Please retry in a moment.", 429, raw_payload=error.raw_payload)
