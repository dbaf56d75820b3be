import asyncio

import httpx
import pytest

from pixelclient.domain.models.errors import NormalizedError
from pixelclient.infrastructure.resilience.api_retry import (
    ApiRetryService, RetryPolicy, is_transient_error, with_retry,
)
from pixelclient.infrastructure.resilience.cancellation import CancellationToken


class FlakyOperation:
    """Fails with the queued errors, then returns 'ok'."""

    def __init__(self, *errors):
        self.errors = list(errors)
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return "ok"


def _status(code: int) -> NormalizedError:
    return NormalizedError(f"status {code}", status_code=code)


def _network() -> NormalizedError:
    return NormalizedError("Network error (connect_error)", transport_code="connect_error")


@pytest.mark.parametrize("error,expected", [
    (_status(429), True),
    (_status(503), True),
    (_status(504), True),
    (_network(), True),
    (_status(500), False),
    (_status(502), False),
    (_status(400), False),
    (_status(401), False),
    (_status(404), False),
    (NormalizedError("parse failure"), False),
])
def test_is_transient_error(error, expected):
    assert is_transient_error(error) is expected


@pytest.mark.parametrize("kwargs", [
    {"max_attempts": 0},
    {"initial_delay_ms": -1},
    {"initial_delay_ms": 500, "max_delay_ms": 100},
    {"backoff_multiplier": 1.0},
])
def test_policy_rejects_invalid_values(kwargs):
    with pytest.raises(ValueError):
        RetryPolicy(**kwargs)


def test_delay_sequence_is_capped():
    policy = RetryPolicy()
    delays = [policy.initial_delay_ms]
    for _ in range(6):
        delays.append(policy.next_delay_ms(delays[-1]))
    assert delays == [800, 1280, 2048, 3277, 5243, 6000, 6000]


@pytest.mark.parametrize("code", [429, 503, 504])
def test_retryable_status_uses_every_attempt(fake_clock, code):
    operation = FlakyOperation(_status(code), _status(code), _status(code))
    service = ApiRetryService(clock=fake_clock)

    with pytest.raises(NormalizedError) as exc_info:
        asyncio.run(service.execute_with_retry(operation))

    assert operation.calls == 3
    assert exc_info.value.status_code == code
    assert fake_clock.slept_ms == [800, 1280]


@pytest.mark.parametrize("code", [400, 401, 403, 404, 500, 502])
def test_terminal_status_fails_on_first_attempt(fake_clock, code):
    operation = FlakyOperation(_status(code))
    service = ApiRetryService(clock=fake_clock)

    with pytest.raises(NormalizedError) as exc_info:
        asyncio.run(service.execute_with_retry(operation))

    assert operation.calls == 1
    assert exc_info.value.status_code == code
    assert fake_clock.sleeps == []


def test_recovers_after_transient_failures(fake_clock):
    operation = FlakyOperation(_network(), _status(503))
    service = ApiRetryService(clock=fake_clock)

    assert asyncio.run(service.execute_with_retry(operation)) == "ok"
    assert operation.calls == 3


def test_raw_httpx_errors_are_normalized(fake_clock):
    request = httpx.Request("GET", "http://api.test/")
    operation = FlakyOperation(httpx.ConnectTimeout("slow", request=request))
    service = ApiRetryService(policy=RetryPolicy(max_attempts=1), clock=fake_clock)

    with pytest.raises(NormalizedError) as exc_info:
        asyncio.run(service.execute_with_retry(operation))

    assert exc_info.value.transport_code == "connect_timeout"


def test_per_call_policy_overrides_default(fake_clock):
    operation = FlakyOperation(*[_network()] * 5)
    service = ApiRetryService(clock=fake_clock)
    policy = RetryPolicy(max_attempts=6, initial_delay_ms=600)

    assert asyncio.run(service.execute_with_retry(operation, policy=policy)) == "ok"
    assert operation.calls == 6
    assert fake_clock.slept_ms[0] == 600


def test_custom_predicate(fake_clock):
    operation = FlakyOperation(_status(500))
    policy = RetryPolicy(is_retryable=lambda e: e.status_code == 500)

    assert asyncio.run(with_retry(operation, policy=policy, clock=fake_clock)) == "ok"
    assert operation.calls == 2


def test_cancellation_stops_further_attempts(fake_clock):
    token = CancellationToken()
    calls = []

    async def operation():
        calls.append(1)
        token.cancel("user navigated away")
        raise _status(503)

    service = ApiRetryService(clock=fake_clock)
    with pytest.raises(NormalizedError):
        asyncio.run(service.execute_with_retry(operation, cancel_token=token))

    assert len(calls) == 1
    assert token.reason == "user navigated away"


def test_arguments_are_forwarded(fake_clock):
    async def add(a, b, scale=1):
        return (a + b) * scale

    service = ApiRetryService(clock=fake_clock)
    assert asyncio.run(service.execute_with_retry(add, 1, 2, scale=10)) == 30
