"""Usage reconciliation after billable actions.

The backend applies usage-counter increments asynchronously relative to the
action response. After an action succeeds, the client polls the usage
snapshot until the counter is seen to move past its "before" value.
Non-convergence is not an error: the write already succeeded server-side.
"""

import logging
from typing import Awaitable, Callable, Mapping, Optional

from pixelclient.domain.events.api_events import UsagePollFinished, dispatch_event
from pixelclient.domain.interfaces.clock import Clock
from pixelclient.domain.interfaces.usage import UsageProvider
from pixelclient.domain.models.usage import PollState
from pixelclient.infrastructure.config.settings import DEFAULT_POLL_INTERVAL_MS, DEFAULT_POLL_MAX_ATTEMPTS
from pixelclient.infrastructure.resilience.cancellation import CancellationToken
from pixelclient.infrastructure.timing.clock import SystemClock

logger = logging.getLogger(__name__)


class UsagePoller:
    """Drives bounded, cancellable polling of a usage counter."""

    def __init__(
        self,
        clock: Optional[Clock] = None,
        max_attempts: int = DEFAULT_POLL_MAX_ATTEMPTS,
        interval_ms: int = DEFAULT_POLL_INTERVAL_MS,
    ):
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")
        if interval_ms < 0:
            raise ValueError(f"interval_ms must be >= 0, got {interval_ms}")
        self.clock = clock or SystemClock()
        self.max_attempts = max_attempts
        self.interval_ms = interval_ms
        self.last_state: Optional[PollState] = None

    async def poll_until_changed(
        self,
        before_usage: Mapping[str, int],
        counter_name: str,
        refresh_fn: Callable[[], Awaitable[None]],
        read_fn: Callable[[], Mapping[str, int]],
        *,
        max_attempts: Optional[int] = None,
        interval_ms: Optional[int] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> bool:
        """Polls until counter_name exceeds its value in before_usage.

        Each round refreshes the snapshot, waits interval_ms, then re-reads the
        counter. Refresh or read failures are logged and count as a used round.

        Args:
            before_usage: Counter values captured before the action.
            counter_name: The counter expected to increase.
            refresh_fn: Asks the usage provider to refetch.
            read_fn: Returns the provider's current counter values.
            max_attempts: Round budget (defaults to the poller's).
            interval_ms: Wait between refresh and re-read (defaults to the poller's).
            cancel_token: Checked before every round; cuts the interval short.

        Returns:
            True on convergence, False if the budget ran out or polling was cancelled.
        """
        budget = max_attempts if max_attempts is not None else self.max_attempts
        wait_ms = interval_ms if interval_ms is not None else self.interval_ms
        state = PollState(
            counter_name=counter_name,
            before_value=int(before_usage.get(counter_name, 0)),
            max_attempts=budget,
        )
        self.last_state = state

        while not state.exhausted:
            if cancel_token is not None and cancel_token.cancelled:
                return self._cancelled(state)

            state.attempts_used += 1
            try:
                await refresh_fn()
            except Exception as e:
                logger.warning(f"Usage refresh failed on round {state.attempts_used}/{budget}: {e}")

            if cancel_token is not None:
                await cancel_token.sleep(self.clock.sleep, wait_ms / 1000)
                if cancel_token.cancelled:
                    return self._cancelled(state)
            else:
                await self.clock.sleep(wait_ms / 1000)

            try:
                current = int(read_fn().get(counter_name, 0))
            except Exception as e:
                logger.warning(f"Usage read failed on round {state.attempts_used}/{budget}: {e}")
                continue
            logger.debug(
                f"Usage poll round {state.attempts_used}/{budget}: {counter_name}={current} "
                f"(before={state.before_value})"
            )
            if current > state.before_value:
                state.converged = True
                break

        dispatch_event(UsagePollFinished(
            counter_name=counter_name, converged=state.converged, attempts_used=state.attempts_used,
        ))
        if not state.converged:
            logger.info(f"Usage for '{counter_name}' did not change within {budget} round(s).")
        return state.converged

    @staticmethod
    def _cancelled(state: PollState) -> bool:
        logger.info(f"Usage poll for '{state.counter_name}' cancelled after {state.attempts_used} round(s).")
        dispatch_event(UsagePollFinished(
            counter_name=state.counter_name, converged=False,
            attempts_used=state.attempts_used, cancelled=True,
        ))
        return False

    async def poll_provider(
        self,
        before_usage: Mapping[str, int],
        counter_name: str,
        provider: UsageProvider,
        *,
        max_attempts: Optional[int] = None,
        interval_ms: Optional[int] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> bool:
        """poll_until_changed bound to a UsageProvider."""
        return await self.poll_until_changed(
            before_usage,
            counter_name,
            provider.refresh_subscription_status,
            lambda: provider.snapshot.used,
            max_attempts=max_attempts,
            interval_ms=interval_ms,
            cancel_token=cancel_token,
        )
