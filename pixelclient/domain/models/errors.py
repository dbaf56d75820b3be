"""Canonical failure types surfaced to callers of the API layer."""

from typing import Any, Optional


class NormalizedError(Exception):
    """The single failure shape every network error is converted to.

    Attributes:
        message: Human-readable, never empty. This is what a UI should show.
        status_code: HTTP status when a response was received.
        transport_code: Short code for failures where no response arrived
            (e.g. 'connect_error', 'read_timeout').
        raw_payload: Decoded response body, if any.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        transport_code: Optional[str] = None,
        raw_payload: Any = None,
    ):
        self.message = message or "Network error"
        self.status_code = status_code
        self.transport_code = transport_code
        self.raw_payload = raw_payload
        super().__init__(self.message)

    @property
    def response_received(self) -> bool:
        return self.status_code is not None

    def __repr__(self) -> str:
        return (
            f"NormalizedError(message={self.message!r}, status_code={self.status_code!r}, "
            f"transport_code={self.transport_code!r})"
        )


class UsageLimitExceeded(NormalizedError):
    """Raised locally when an admission check finds a counter at its limit."""

    def __init__(self, message: str, counter_name: str):
        super().__init__(message)
        self.counter_name = counter_name
