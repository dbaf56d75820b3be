"""Interface for the subscription/usage provider."""

import abc

from pixelclient.domain.models.usage import UsageSnapshot


class UsageProvider(abc.ABC):
    """Abstract Base Class exposing refreshable usage counters."""

    @abc.abstractmethod
    async def refresh_subscription_status(self, force_sync: bool = True) -> None:
        """Fetches the latest usage snapshot from the server.

        Args:
            force_sync: Ask the server to reconcile counters before answering.
        """
        pass

    @property
    @abc.abstractmethod
    def snapshot(self) -> UsageSnapshot:
        """The most recently fetched snapshot (empty before the first fetch)."""
        pass
