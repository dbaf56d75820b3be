"""HTTP request facade for the PixelPerfect API.

Every call attaches the session's bearer token, runs under the retry
policy, and surfaces failures only as NormalizedError. The facade never
touches the cache; de-duplication is layered on top by the services.
"""

import logging
from typing import Any, Dict, Mapping, Optional

import httpx

from pixelclient.domain.interfaces.session import SessionProvider
from pixelclient.domain.models.common import ApiPath, RequestConfig
from pixelclient.domain.models.errors import NormalizedError
from pixelclient.infrastructure.config.settings import (
    ClientSettings, DEFAULT_PROBE_ATTEMPTS, DEFAULT_PROBE_INITIAL_DELAY_MS,
)
from pixelclient.infrastructure.resilience.api_retry import ApiRetryService, RetryPolicy
from pixelclient.infrastructure.resilience.cancellation import CancellationToken
from pixelclient.infrastructure.resilience.error_normalizer import decode_body

logger = logging.getLogger(__name__)

HEALTH_PATH = ApiPath("/health")
JSON_HEADERS = {"Content-Type": "application/json"}


def _has_header(headers: Mapping[str, str], name: str) -> bool:
    lowered = name.lower()
    return any(key.lower() == lowered for key in headers)


class ApiClient:
    """Async JSON client with bearer auth, retries and normalized errors."""

    def __init__(
        self,
        base_url: str,
        retry_service: ApiRetryService,
        session: Optional[SessionProvider] = None,
        timeout_ms: int = 30000,
        probe_policy: Optional[RetryPolicy] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initializes the ApiClient.

        Args:
            base_url: API root, without a trailing slash.
            retry_service: Retrier wrapping every call.
            session: Source of the bearer token.
            timeout_ms: Default per-request timeout.
            probe_policy: Policy for probe(); larger budget than regular calls.
            transport: Optional httpx transport (tests use httpx.MockTransport).
        """
        self.base_url = base_url.rstrip('/')
        self.retry_service = retry_service
        self.session = session
        self.probe_policy = probe_policy or RetryPolicy(
            max_attempts=DEFAULT_PROBE_ATTEMPTS,
            initial_delay_ms=DEFAULT_PROBE_INITIAL_DELAY_MS,
            max_delay_ms=max(DEFAULT_PROBE_INITIAL_DELAY_MS, retry_service.policy.max_delay_ms),
            backoff_multiplier=retry_service.policy.backoff_multiplier,
        )
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout_ms / 1000,
            transport=transport,
        )
        logger.info(f"ApiClient initialized for {self.base_url}")

    @classmethod
    def from_settings(
        cls,
        settings: ClientSettings,
        retry_service: ApiRetryService,
        session: Optional[SessionProvider] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "ApiClient":
        probe_policy = RetryPolicy(
            max_attempts=settings.probe_attempts,
            initial_delay_ms=settings.probe_initial_delay_ms,
            max_delay_ms=max(settings.probe_initial_delay_ms, settings.retry_max_delay_ms),
            backoff_multiplier=settings.retry_backoff_multiplier,
        )
        return cls(
            base_url=settings.base_url,
            retry_service=retry_service,
            session=session,
            timeout_ms=settings.timeout_ms,
            probe_policy=probe_policy,
            transport=transport,
        )

    def current_api_base(self) -> str:
        return self.base_url

    # --- Context management ---

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> "ApiClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    # --- Request plumbing ---

    def _build_headers(self, config: Optional[RequestConfig], json_body: bool) -> Dict[str, str]:
        headers: Dict[str, str] = {}
        if json_body:
            headers.update(JSON_HEADERS)
        if config and config.get("headers"):
            headers.update(config["headers"])

        if self.session is not None and not _has_header(headers, "Authorization"):
            token = self.session.get_token()
            if token:
                headers["Authorization"] = f"Bearer {token}"
        return headers

    async def _send(
        self,
        method: str,
        path: str,
        body: Any = None,
        config: Optional[RequestConfig] = None,
    ) -> Any:
        """Performs a single attempt. Raises raw httpx errors for the retrier."""
        json_body = method in ("POST", "PUT")
        request_kwargs: Dict[str, Any] = {
            "headers": self._build_headers(config, json_body),
        }
        if config and config.get("params"):
            request_kwargs["params"] = config["params"]
        if config and config.get("timeout") is not None:
            request_kwargs["timeout"] = config["timeout"]
        if json_body:
            request_kwargs["json"] = body

        logger.debug(f"{method} {path}")
        response = await self._http.request(method, path, **request_kwargs)
        response.raise_for_status()
        return decode_body(response)

    async def _call(
        self,
        method: str,
        path: str,
        body: Any = None,
        config: Optional[RequestConfig] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> Any:
        return await self.retry_service.execute_with_retry(
            self._send,
            method,
            path,
            body,
            config,
            endpoint_name=f"{method} {path}",
            cancel_token=cancel_token,
        )

    # --- Public API ---

    async def get_json(self, path: str, config: Optional[RequestConfig] = None,
                       cancel_token: Optional[CancellationToken] = None) -> Any:
        """GET a path and return the decoded body.

        Raises:
            NormalizedError: On a terminal failure or exhausted retries.
        """
        return await self._call("GET", path, None, config, cancel_token)

    async def post_json(self, path: str, body: Any = None, config: Optional[RequestConfig] = None,
                        cancel_token: Optional[CancellationToken] = None) -> Any:
        """POST a JSON body and return the decoded response body."""
        return await self._call("POST", path, body, config, cancel_token)

    async def put_json(self, path: str, body: Any = None, config: Optional[RequestConfig] = None,
                       cancel_token: Optional[CancellationToken] = None) -> Any:
        """PUT a JSON body and return the decoded response body."""
        return await self._call("PUT", path, body, config, cancel_token)

    async def delete_json(self, path: str, config: Optional[RequestConfig] = None,
                          cancel_token: Optional[CancellationToken] = None) -> Any:
        """DELETE a path and return the decoded response body."""
        return await self._call("DELETE", path, None, config, cancel_token)

    async def _probe_once(self) -> int:
        # Any HTTP status means the server is reachable
        response = await self._http.get(HEALTH_PATH)
        return response.status_code

    async def probe(self) -> bool:
        """Best-effort reachability check used to wake the API. Never raises."""
        try:
            status = await self.retry_service.execute_with_retry(
                self._probe_once, policy=self.probe_policy, endpoint_name=f"GET {HEALTH_PATH}",
            )
        except NormalizedError as e:
            logger.warning(f"API at {self.base_url} unreachable: {e.message}")
            return False
        logger.info(f"API at {self.base_url} reachable (status {status}).")
        return True
