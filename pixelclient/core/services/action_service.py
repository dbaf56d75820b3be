"""Billable actions (screenshot capture, transcript/audio/video download).

Each action first loads the usage snapshot when none is current for the
subject, or refreshes it when the usage reset has passed. It then checks
admission against raw usage, performs the write and reconciles the usage
counter. Once the write succeeds the action is a success, whether or
not the counter change was observed.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs, urlparse

from pixelclient.core.services.subscription_service import SubscriptionService
from pixelclient.core.services.usage_poller import UsagePoller
from pixelclient.domain.models.common import (
    ApiPath, AUDIO_DOWNLOADS, CLEAN_TRANSCRIPTS, CounterName, SCREENSHOTS,
    UNCLEAN_TRANSCRIPTS, VIDEO_DOWNLOADS,
)
from pixelclient.domain.models.errors import NormalizedError, UsageLimitExceeded
from pixelclient.domain.models.usage import limit_reached_message
from pixelclient.infrastructure.http.api_client import ApiClient
from pixelclient.infrastructure.resilience.cancellation import CancellationToken

logger = logging.getLogger(__name__)

SCREENSHOT_PATH = ApiPath("/api/v1/screenshot")
TRANSCRIPT_PATH = ApiPath("/download_transcript/")
AUDIO_PATH = ApiPath("/download_audio/")
VIDEO_PATH = ApiPath("/download_video/")

_VIDEO_ID_PATTERN = re.compile(r'^[A-Za-z0-9_-]{11}$')
DOWNLOAD_KINDS = ("transcript", "audio", "video")


@dataclass
class BillableAction:
    """A write that increments a usage counter server-side."""
    name: str
    path: ApiPath
    payload: Dict[str, Any]
    counter_name: CounterName


@dataclass
class ActionOutcome:
    response: Any
    counter_name: str
    usage_converged: bool


@dataclass
class ScreenshotRequest:
    url: str
    width: int = 1920
    height: int = 1080
    format: str = "png"
    full_page: bool = False
    dark_mode: bool = False
    delay: int = 0
    remove_elements: List[str] = field(default_factory=list)


def extract_video_id(value: str) -> Optional[str]:
    """Accepts a bare id or a watch/short/embed/youtu.be URL."""
    text = (value or "").strip()
    if not text:
        return None
    if _VIDEO_ID_PATTERN.match(text):
        return text

    parsed = urlparse(text if "://" in text else f"https://{text}")
    host = (parsed.hostname or "").lower()
    candidate: Optional[str] = None
    if host.endswith("youtu.be"):
        candidate = parsed.path.lstrip("/").split("/")[0]
    elif "youtube" in host:
        query_id = parse_qs(parsed.query).get("v")
        if query_id:
            candidate = query_id[0]
        else:
            parts = [p for p in parsed.path.split("/") if p]
            if len(parts) >= 2 and parts[0] in ("shorts", "embed", "v", "live"):
                candidate = parts[1]
    if candidate and _VIDEO_ID_PATTERN.match(candidate):
        return candidate
    return None


def screenshot_action(request: ScreenshotRequest) -> BillableAction:
    if not request.url.startswith(("http://", "https://")):
        raise ValueError("Please enter a valid website URL starting with http:// or https://")
    payload: Dict[str, Any] = {
        "url": request.url,
        "width": request.width,
        "height": request.height,
        "format": request.format,
        "full_page": request.full_page,
        "dark_mode": request.dark_mode,
        "delay": request.delay,
    }
    remove = [s.strip() for s in request.remove_elements if s and s.strip()]
    if remove:
        payload["remove_elements"] = remove
    return BillableAction("screenshot", SCREENSHOT_PATH, payload, SCREENSHOTS)


def download_action(
    kind: str,
    video: str,
    clean: bool = True,
    transcript_format: str = "srt",
    quality: str = "high",
) -> BillableAction:
    """Builds a download action.

    Args:
        kind: 'transcript', 'audio' or 'video'.
        video: Video id or URL.
        clean: For transcripts, clean text vs. timestamped (unclean).
        transcript_format: Format of unclean transcripts.
        quality: Audio/video quality.
    """
    video_id = extract_video_id(video)
    if not video_id:
        raise ValueError("Please enter a valid YouTube video ID or URL")

    if kind == "transcript":
        payload = {
            "youtube_id": video_id,
            "clean_transcript": clean,
            "format": None if clean else transcript_format,
        }
        counter = CLEAN_TRANSCRIPTS if clean else UNCLEAN_TRANSCRIPTS
        return BillableAction("transcript", TRANSCRIPT_PATH, payload, counter)
    if kind == "audio":
        return BillableAction("audio", AUDIO_PATH, {"youtube_id": video_id, "quality": quality}, AUDIO_DOWNLOADS)
    if kind == "video":
        return BillableAction("video", VIDEO_PATH, {"youtube_id": video_id, "quality": quality}, VIDEO_DOWNLOADS)
    raise ValueError(f"Unknown download type: {kind}. Expected one of {', '.join(DOWNLOAD_KINDS)}.")


class BillableActionService:
    """Runs billable actions with admission checks and usage reconciliation."""

    def __init__(
        self,
        api_client: ApiClient,
        subscription: SubscriptionService,
        poller: UsagePoller,
    ):
        self.api_client = api_client
        self.subscription = subscription
        self.poller = poller
        self._cancel_token: Optional[CancellationToken] = None

    def cancel_pending_poll(self, reason: str = "cleared") -> None:
        """Stops the current usage poll before its next round."""
        if self._cancel_token is not None:
            self._cancel_token.cancel(reason)

    def check_admission(self, counter_name: str) -> None:
        """Raises UsageLimitExceeded if the raw usage is at the limit."""
        if self.subscription.is_at_limit(counter_name):
            raise UsageLimitExceeded(limit_reached_message(counter_name), counter_name)

    async def perform(self, action: BillableAction) -> ActionOutcome:
        """Runs the action.

        Raises:
            UsageLimitExceeded: When the counter is already at its limit.
            NormalizedError: When usage cannot be loaded or the write itself fails.
        """
        token = CancellationToken()
        self._cancel_token = token

        if not self.subscription.has_current_snapshot:
            logger.info(f"Loading usage before {action.name} action")
            await self.subscription.refresh_subscription_status()
            if not self.subscription.has_current_snapshot:
                if not self.subscription.session.is_authenticated:
                    raise NormalizedError("Session expired. Please log in again.", 401)
                raise NormalizedError("Usage status unavailable. Please retry in a moment.")
        elif self.subscription.is_reset_overdue():
            await self.subscription.force_refresh_if_needed(f"pre-{action.name}")

        self.check_admission(action.counter_name)
        before_usage = self.subscription.snapshot.usage_copy()

        logger.info(f"Performing {action.name} action via {action.path}")
        response = await self.api_client.post_json(action.path, action.payload)

        converged = await self.poller.poll_provider(
            before_usage, action.counter_name, self.subscription, cancel_token=token,
        )
        if not converged:
            logger.info(f"{action.name} succeeded; usage display may lag behind.")
        return ActionOutcome(response=response, counter_name=action.counter_name, usage_converged=converged)

    async def capture_screenshot(self, request: ScreenshotRequest) -> ActionOutcome:
        return await self.perform(screenshot_action(request))

    async def download(self, kind: str, video: str, **options: Any) -> ActionOutcome:
        return await self.perform(download_action(kind, video, **options))
