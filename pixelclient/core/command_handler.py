"""Command Handler: Orchestrates CLI command execution.

Receives commands from the main entry point (main.py) and delegates the work
to the application services (subscription, history, billable actions).
Failures are reported through the UserInterface using their normalized
message; nothing is re-raised to Typer.
"""

import logging
from typing import Any, Dict, List, Optional

from pixelclient.core.services.action_service import (
    ActionOutcome, BillableActionService, DOWNLOAD_KINDS, ScreenshotRequest,
)
from pixelclient.core.services.history_service import FORMAT_TABS, HistoryService, filter_by_format
from pixelclient.core.services.subscription_service import SubscriptionService
from pixelclient.domain.interfaces.cache import CacheService
from pixelclient.domain.interfaces.session import SessionProvider
from pixelclient.domain.interfaces.user_interface import UserInterface
from pixelclient.domain.models.common import KNOWN_COUNTERS
from pixelclient.domain.models.errors import NormalizedError, UsageLimitExceeded
from pixelclient.infrastructure.http.api_client import ApiClient

logger = logging.getLogger(__name__)


class CommandHandler:
    """Handles incoming commands and delegates to appropriate services."""

    def __init__(
        self,
        api_client: ApiClient,
        subscription_service: SubscriptionService,
        history_service: HistoryService,
        action_service: BillableActionService,
        cache_service: CacheService,
        session: SessionProvider,
        ui: UserInterface,
    ):
        self.api_client = api_client
        self.session = session
        self.subscription_service = subscription_service
        self.history_service = history_service
        self.action_service = action_service
        self.cache_service = cache_service
        self.ui = ui

    def _require_session(self) -> bool:
        if self.session.is_authenticated:
            return True
        self.ui.display_error("Authentication required. Set PIXELCLIENT_AUTH_TOKEN and try again.")
        return False

    async def handle_probe(self) -> bool:
        """Handles the 'probe' command."""
        base = self.api_client.current_api_base()
        logger.info(f"Handling 'probe' command for {base}")
        reachable = await self.api_client.probe()
        if reachable:
            self.ui.display_info(f"API at {base} is reachable.")
        else:
            self.ui.display_error(f"API at {base} is not reachable.")
        return reachable

    async def handle_usage(self, sync: bool = True) -> None:
        """Handles the 'usage' command."""
        logger.info(f"Handling 'usage' command (sync={sync})")
        if not self._require_session():
            return
        try:
            await self.subscription_service.refresh_subscription_status(force_sync=sync)
        except NormalizedError as e:
            self.ui.display_error(f"Failed to load usage: {e.message}")
            return
        if not self.session.is_authenticated:
            self.ui.display_error("Session expired. Please log in again.")
            return
        self.ui.display_usage(self.subscription_service.snapshot, list(KNOWN_COUNTERS))

    async def handle_history(self, tab: str = "all", refresh: bool = False) -> None:
        """Handles the 'history' command."""
        logger.info(f"Handling 'history' command (format={tab}, refresh={refresh})")
        if tab.lower() not in FORMAT_TABS and tab.lower() != "jpg":
            self.ui.display_error(f"Invalid format. Choose one of: {', '.join(FORMAT_TABS)}.")
            return
        if not self._require_session():
            return
        try:
            if refresh:
                items = await self.history_service.refresh_history()
            else:
                items = await self.history_service.load_history()
        except NormalizedError as e:
            self.ui.display_error(e.message)
            return
        self.ui.display_history(filter_by_format(items, tab))

    async def handle_capture(self, request: ScreenshotRequest) -> Optional[ActionOutcome]:
        """Handles the 'capture' command."""
        logger.info(f"Handling 'capture' command for {request.url}")
        if not self._require_session():
            return None
        try:
            outcome = await self.action_service.capture_screenshot(request)
        except ValueError as e:
            self.ui.display_error(str(e))
            return None
        except UsageLimitExceeded as e:
            self.ui.display_warning(e.message)
            return None
        except NormalizedError as e:
            self.ui.display_error(f"Screenshot failed: {e.message}")
            return None
        self._report_outcome("Screenshot captured", outcome)
        return outcome

    async def handle_download(self, video: str, kind: str, **options: Any) -> Optional[ActionOutcome]:
        """Handles the 'download' command."""
        logger.info(f"Handling 'download' command ({kind}) for {video}")
        if kind not in DOWNLOAD_KINDS:
            self.ui.display_error(f"Invalid download type. Choose one of: {', '.join(DOWNLOAD_KINDS)}.")
            return None
        if not self._require_session():
            return None
        try:
            outcome = await self.action_service.download(kind, video, **options)
        except ValueError as e:
            self.ui.display_error(str(e))
            return None
        except UsageLimitExceeded as e:
            self.ui.display_warning(e.message)
            return None
        except NormalizedError as e:
            self.ui.display_error(f"Download failed: {e.message}")
            return None
        self._report_outcome(f"{kind.capitalize()} download ready", outcome)
        return outcome

    async def handle_checkout(self, plan: str) -> Optional[str]:
        """Handles the 'checkout' command."""
        logger.info(f"Handling 'checkout' command for plan '{plan}'")
        try:
            url = await self.subscription_service.start_checkout(plan)
        except NormalizedError as e:
            self.ui.display_error(f"Checkout failed: {e.message}")
            return None
        self.ui.display_output(url, title="Checkout URL")
        return url

    def handle_clear_cache(self) -> None:
        """Handles the 'clear-cache' command."""
        logger.info("Handling 'clear-cache' command")
        self.action_service.cancel_pending_poll()
        self.cache_service.clear()
        self.ui.display_info("Cache cleared successfully.")

    def _report_outcome(self, headline: str, outcome: ActionOutcome) -> None:
        self.ui.display_output(self._describe_response(outcome.response), title=headline)
        usage = self.subscription_service.format_usage(outcome.counter_name)
        if outcome.usage_converged:
            self.ui.display_info(f"Usage updated: {usage}")
        else:
            self.ui.display_warning(f"Usage display may lag behind the server (currently {usage}).")

    @staticmethod
    def _describe_response(response: Any) -> str:
        if isinstance(response, dict):
            lines: List[str] = []
            for key in ("screenshot_url", "download_url", "url", "file_url", "filename", "status"):
                if response.get(key):
                    lines.append(f"{key}: {response[key]}")
            if lines:
                return "\n".join(lines)
            keys: Dict[str, Any] = {k: v for k, v in response.items() if not isinstance(v, (dict, list))}
            return "\n".join(f"{k}: {v}" for k, v in keys.items()) or "OK"
        if response is None:
            return "OK"
        return str(response)
