import asyncio
import json

import httpx
import pytest

from pixelclient.domain.models.errors import NormalizedError
from pixelclient.infrastructure.config.settings import ClientSettings
from pixelclient.infrastructure.http.api_client import ApiClient
from pixelclient.infrastructure.resilience.api_retry import ApiRetryService, RetryPolicy


def test_get_attaches_bearer_token(make_client):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers.get("Authorization")
        seen["content_type"] = request.headers.get("Content-Type")
        seen["url"] = str(request.url)
        return httpx.Response(200, json={"ok": True})

    client = make_client(handler)
    result = asyncio.run(client.get_json("/subscription_status", config={"params": {"sync": "1"}}))

    assert result == {"ok": True}
    assert seen["auth"] == "Bearer secret-token"
    assert seen["content_type"] is None
    assert seen["url"] == "http://api.test/subscription_status?sync=1"


def test_post_sends_json_body(make_client):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["body"] = json.loads(request.content)
        seen["content_type"] = request.headers.get("Content-Type")
        return httpx.Response(201, json={"id": "abc"})

    client = make_client(handler)
    result = asyncio.run(client.post_json("/api/v1/screenshot", {"url": "https://example.com"}))

    assert result == {"id": "abc"}
    assert seen["body"] == {"url": "https://example.com"}
    assert seen["content_type"] == "application/json"


def test_explicit_authorization_header_is_kept(make_client):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers.get("Authorization")
        return httpx.Response(200, json={})

    client = make_client(handler)
    asyncio.run(client.get_json("/x", config={"headers": {"authorization": "Bearer other"}}))

    assert seen["auth"] == "Bearer other"


def test_no_token_no_header(make_client):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers.get("Authorization")
        return httpx.Response(200, json={})

    client = make_client(handler, with_session=False)
    asyncio.run(client.get_json("/x"))

    assert seen["auth"] is None


def test_empty_success_body_is_none(make_client):
    client = make_client(lambda request: httpx.Response(204))
    assert asyncio.run(client.delete_json("/thing/1")) is None


def test_terminal_error_is_normalized(make_client):
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(403, json={"detail": "Quota exceeded"})

    client = make_client(handler)
    with pytest.raises(NormalizedError) as exc_info:
        asyncio.run(client.post_json("/download_audio/", {"youtube_id": "x"}))

    assert len(calls) == 1
    assert exc_info.value.message == "Quota exceeded"
    assert exc_info.value.status_code == 403


def test_retryable_status_is_retried(make_client, fake_clock):
    statuses = [503, 429, 200]

    def handler(request: httpx.Request) -> httpx.Response:
        status = statuses.pop(0)
        return httpx.Response(status, json={"done": status == 200})

    client = make_client(handler)
    assert asyncio.run(client.put_json("/thing", {"a": 1})) == {"done": True}
    assert fake_clock.slept_ms == [800, 1280]


def test_transport_failure_is_retried_then_normalized(make_client):
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        raise httpx.ConnectError("refused", request=request)

    client = make_client(handler)
    with pytest.raises(NormalizedError) as exc_info:
        asyncio.run(client.get_json("/x"))

    assert len(calls) == 3
    assert exc_info.value.transport_code == "connect_error"
    assert exc_info.value.message == "Network error (connect_error)"


def test_probe_accepts_any_status(make_client):
    client = make_client(lambda request: httpx.Response(404))
    assert asyncio.run(client.probe()) is True


def test_probe_uses_its_own_budget(make_client, fake_clock):
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.url.path)
        raise httpx.ConnectError("sleeping", request=request)

    client = make_client(handler, probe_policy=RetryPolicy(max_attempts=6, initial_delay_ms=600))
    assert asyncio.run(client.probe()) is False
    assert calls == ["/health"] * 6
    assert fake_clock.slept_ms[0] == 600


def test_from_settings_strips_trailing_slash(fake_clock):
    settings = ClientSettings(base_url="https://api.example.com/", probe_attempts=4)
    client = ApiClient.from_settings(settings, ApiRetryService(clock=fake_clock))

    assert client.current_api_base() == "https://api.example.com"
    assert client.probe_policy.max_attempts == 4
    assert client.probe_policy.initial_delay_ms == 600
    asyncio.run(client.aclose())
