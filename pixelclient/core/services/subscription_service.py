"""Subscription status and usage counters for the current session.

Implements the UsageProvider port on top of /subscription_status. Refreshes
for the same subject share one in-flight request. The service also owns
reset-boundary reconciliation: once the server-asserted next reset has
passed, refreshes ask the server to sync so post-reset limits are visible
before any local admission decision.
"""

import logging
from typing import Any, Optional

from pixelclient.domain.interfaces.cache import CacheService
from pixelclient.domain.interfaces.clock import Clock
from pixelclient.domain.interfaces.session import SessionProvider
from pixelclient.domain.interfaces.usage import UsageProvider
from pixelclient.domain.models.common import ApiPath, subject_scoped_key
from pixelclient.domain.models.errors import NormalizedError
from pixelclient.domain.models.usage import UsageSnapshot
from pixelclient.infrastructure.http.api_client import ApiClient

logger = logging.getLogger(__name__)

STATUS_PATH = ApiPath("/subscription_status")
CHECKOUT_PATH = ApiPath("/billing/create_checkout_session")
STATUS_TIMEOUT_S = 10.0
MAX_FETCH_ATTEMPTS = 30


class SubscriptionService(UsageProvider):
    """Fetches and exposes the usage snapshot of the signed-in subject."""

    def __init__(
        self,
        api_client: ApiClient,
        session: SessionProvider,
        cache_service: CacheService,
        clock: Clock,
        max_fetch_attempts: int = MAX_FETCH_ATTEMPTS,
    ):
        self.api_client = api_client
        self.session = session
        self.cache_service = cache_service
        self.clock = clock
        self.max_fetch_attempts = max_fetch_attempts
        self._snapshot = UsageSnapshot.empty()
        self._snapshot_subject: Optional[str] = None
        self._fetch_attempts = 0
        self.last_fetch_ms: Optional[int] = None

    # --- UsageProvider ---

    @property
    def snapshot(self) -> UsageSnapshot:
        if self._snapshot_subject is not None and self._snapshot_subject != self.session.subject:
            # Never show another identity's counters
            return UsageSnapshot.empty()
        return self._snapshot

    @property
    def has_current_snapshot(self) -> bool:
        """True once a snapshot was fetched for the current subject."""
        return self.last_fetch_ms is not None and self._snapshot_subject == self.session.subject

    @property
    def tier(self) -> str:
        return self.snapshot.tier

    def reset(self, subject: Optional[str] = None) -> None:
        """Drops the snapshot and the failure budget (e.g. on logout)."""
        self._snapshot = UsageSnapshot.empty()
        self._snapshot_subject = None
        self._fetch_attempts = 0
        self.last_fetch_ms = None
        logger.debug(f"Subscription state reset{f' for {subject}' if subject else ''}.")

    async def refresh_subscription_status(self, force_sync: bool = True) -> None:
        """Refreshes the snapshot from the server.

        Args:
            force_sync: Ask the server to reconcile counters (sync=1).

        Raises:
            NormalizedError: For failures other than 401, which logs out instead.
        """
        if not self.session.is_authenticated:
            self.reset()
            return

        if self._fetch_attempts >= self.max_fetch_attempts:
            logger.warning("Max subscription fetch attempts reached. Polling paused.")
            return

        subject = self.session.subject
        key = subject_scoped_key(subject, f"subscription:{'sync' if force_sync else 'plain'}")
        self._fetch_attempts += 1
        try:
            payload = await self.cache_service.get_or_fetch(key, 0, lambda: self._fetch_status(force_sync))
        except NormalizedError as e:
            if e.status_code == 401:
                logger.info("Subscription fetch unauthorized, logging out.")
                self.session.logout()
                self.reset(subject)
                return
            logger.error(f"Failed to fetch subscription status: {e.message}")
            raise

        snapshot = UsageSnapshot.from_payload(payload)

        if not force_sync and snapshot.is_reset_overdue(self.clock.now()):
            logger.info("Usage reset overdue, forcing sync...")
            await self.refresh_subscription_status(force_sync=True)
            return

        self._snapshot = snapshot
        self._snapshot_subject = subject
        self._fetch_attempts = 0
        self.last_fetch_ms = self.clock.now_ms()
        logger.debug(f"Subscription status updated: tier={snapshot.tier}, usage={snapshot.used}")

    async def _fetch_status(self, force_sync: bool) -> Any:
        params = {"sync": "1" if force_sync else "0", "_t": str(self.clock.now_ms())}
        return await self.api_client.get_json(
            STATUS_PATH, config={"params": params, "timeout": STATUS_TIMEOUT_S},
        )

    # --- Reset-boundary reconciliation ---

    def is_reset_overdue(self) -> bool:
        return self.snapshot.is_reset_overdue(self.clock.now())

    async def force_refresh_if_needed(self, reason: str) -> bool:
        """Best-effort refresh; forces a server sync when the reset has passed.

        Returns:
            True if the reset was overdue.
        """
        if not self.session.is_authenticated:
            return False
        overdue = self.is_reset_overdue()
        if overdue:
            logger.info(f"Refreshing plan status ({reason}): usage reset has passed.")
        try:
            await self.refresh_subscription_status(force_sync=overdue)
        except NormalizedError as e:
            logger.warning(f"Refresh on {reason} failed: {e.message}")
        return overdue

    async def handle_focus(self) -> None:
        await self.force_refresh_if_needed("focus")

    async def handle_visibility_change(self, visible: bool) -> None:
        if visible:
            await self.force_refresh_if_needed("visible")

    # --- Presentation helpers ---

    def format_usage(self, counter: str) -> str:
        return self.snapshot.display_usage(counter)

    def is_at_limit(self, counter: str) -> bool:
        return self.snapshot.is_at_limit(counter)

    # --- Billing ---

    async def start_checkout(self, plan: str) -> str:
        """Creates a checkout session and returns its URL.

        Raises:
            NormalizedError: When not signed in, on session expiry, or when the
                server returns no URL.
        """
        if not self.session.is_authenticated:
            raise NormalizedError("Authentication required")

        try:
            data = await self.api_client.post_json(CHECKOUT_PATH, {"plan": plan})
        except NormalizedError as e:
            if e.status_code == 401:
                self.session.logout()
                self.reset()
                raise NormalizedError("Session expired. Please log in again.", status_code=401) from e
            raise

        url = data.get("url") if isinstance(data, dict) else None
        if not url:
            detail = data.get("detail") if isinstance(data, dict) else None
            raise NormalizedError(detail or "Checkout setup failed", raw_payload=data)

        self._fetch_attempts = 0
        logger.info(f"Checkout session created for plan '{plan}'.")
        return str(url)
