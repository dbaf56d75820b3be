"""Domain Events related to API calls, caching and usage reconciliation.

Examples include events for when calls are retried, fail, succeed, are
served from cache, or join an in-flight fetch.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass
class DomainEvent:
    """Base class for domain events."""
    pass


# --- API Events ---

@dataclass
class ApiCallInitiated(DomainEvent):
    """Event triggered when an API call attempt is about to be made."""
    endpoint: str
    attempt_number: int = 1
    timestamp: float = field(default_factory=time.time)


@dataclass
class ApiCallSucceeded(DomainEvent):
    """Event triggered when an API call succeeds."""
    endpoint: str
    latency_ms: float
    attempts: int = 1
    timestamp: float = field(default_factory=time.time)


@dataclass
class ApiCallFailed(DomainEvent):
    """Event triggered when an API call fails definitively (after retries)."""
    endpoint: str
    error_message: str
    status_code: Optional[int] = None
    attempts: int = 1
    timestamp: float = field(default_factory=time.time)


@dataclass
class RetryScheduled(DomainEvent):
    """Event triggered when a retry is scheduled for a failed API call."""
    endpoint: str
    attempt_number: int
    delay_ms: int
    timestamp: float = field(default_factory=time.time)


# --- Cache Events ---

@dataclass
class CacheHit(DomainEvent):
    """Event triggered when a fresh cached value is served."""
    subject_key: str
    age_ms: int
    timestamp: float = field(default_factory=time.time)


@dataclass
class InFlightJoined(DomainEvent):
    """Event triggered when a caller joins an already running fetch."""
    subject_key: str
    timestamp: float = field(default_factory=time.time)


# --- Usage Events ---

@dataclass
class UsagePollFinished(DomainEvent):
    """Event triggered when a usage-reconciliation loop ends."""
    counter_name: str
    converged: bool
    attempts_used: int
    cancelled: bool = False
    timestamp: float = field(default_factory=time.time)


def dispatch_event(event: DomainEvent) -> None:
    """Publishes an event. Events are currently only logged."""
    logger.debug(f"EVENT: {event}")
