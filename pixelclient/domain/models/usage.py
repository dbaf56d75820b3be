"""Usage and polling models for the subscription context.

A UsageSnapshot is the client's view of the server-side counters. The
server applies increments asynchronously, so snapshots are refreshed and
compared rather than updated locally.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional, Union

from pixelclient.domain.models.common import CounterName, COUNTER_LABELS

logger = logging.getLogger(__name__)


class _Unlimited:
    """Sentinel type for a counter without a limit."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNLIMITED"

    def __str__(self) -> str:
        return "∞"


UNLIMITED = _Unlimited()
Limit = Union[int, _Unlimited]

_UNLIMITED_MARKERS = {"unlimited", "∞", "inf", "infinity"}


def parse_limit(raw: Any) -> Optional[Limit]:
    """Parses a server-side limit value. Returns None when there is no usable limit."""
    if raw is None:
        return None
    if isinstance(raw, str):
        text = raw.strip().lower()
        if text in _UNLIMITED_MARKERS:
            return UNLIMITED
        try:
            raw = float(text)
        except ValueError:
            logger.warning(f"Ignoring unparseable usage limit: {raw!r}")
            return None
    if isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        if math.isinf(raw):
            return UNLIMITED
        if math.isnan(raw) or raw < 0:
            return None
        return int(raw)
    return None


def parse_server_time(value: Any) -> Optional[datetime]:
    """Parses an ISO-8601 timestamp. Values without an offset are read as UTC."""
    if not value or not isinstance(value, str):
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _coerce_used(raw: Any) -> int:
    try:
        value = int(float(raw))
    except (TypeError, ValueError):
        return 0
    return max(0, value)


@dataclass
class UsageSnapshot:
    """Point-in-time usage counters with their limits."""
    used: Dict[str, int] = field(default_factory=dict)
    limits: Dict[str, Limit] = field(default_factory=dict)
    next_reset: Optional[datetime] = None
    tier: str = "free"

    @classmethod
    def empty(cls) -> "UsageSnapshot":
        return cls()

    @classmethod
    def from_payload(cls, payload: Optional[Mapping[str, Any]]) -> "UsageSnapshot":
        """Builds a snapshot from a /subscription_status response body."""
        if not isinstance(payload, Mapping):
            return cls.empty()

        usage_raw = payload.get("usage") or {}
        limits_raw = payload.get("limits") or {}
        used = {str(k): _coerce_used(v) for k, v in usage_raw.items()} if isinstance(usage_raw, Mapping) else {}
        limits: Dict[str, Limit] = {}
        if isinstance(limits_raw, Mapping):
            for key, raw in limits_raw.items():
                limit = parse_limit(raw)
                if limit is not None:
                    limits[str(key)] = limit

        tier_raw = payload.get("tier")
        tier = tier_raw.strip().lower() if isinstance(tier_raw, str) and tier_raw.strip() else "free"

        return cls(
            used=used,
            limits=limits,
            next_reset=parse_server_time(payload.get("next_reset")),
            tier=tier,
        )

    def used_for(self, counter: str) -> int:
        return self.used.get(counter, 0)

    def limit_for(self, counter: str) -> Optional[Limit]:
        return self.limits.get(counter)

    def is_at_limit(self, counter: str) -> bool:
        """Admission check. Compares the raw (unclamped) usage with the limit."""
        limit = self.limit_for(counter)
        if limit is None or limit is UNLIMITED:
            return False
        return self.used_for(counter) >= limit

    def display_usage(self, counter: str) -> str:
        """Formats 'used / limit' for display, clamping usage to the limit."""
        used = self.used_for(counter)
        limit = self.limit_for(counter)
        if limit is UNLIMITED:
            return f"{used} / ∞"
        numeric_limit = limit if limit is not None else 0
        return f"{min(used, numeric_limit)} / {numeric_limit}"

    def is_reset_overdue(self, now: datetime) -> bool:
        if self.next_reset is None:
            return False
        return now >= self.next_reset

    def usage_copy(self) -> Dict[str, int]:
        return dict(self.used)


def limit_reached_message(counter: str) -> str:
    label = COUNTER_LABELS.get(CounterName(counter), "usage")
    return f"Monthly limit reached for {label}. Please upgrade your plan."


@dataclass
class PollState:
    """Progress of one usage-reconciliation loop."""
    counter_name: str
    before_value: int
    max_attempts: int
    attempts_used: int = 0
    converged: bool = False

    @property
    def exhausted(self) -> bool:
        return self.attempts_used >= self.max_attempts
