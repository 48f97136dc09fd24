from __future__ import annotations

import json
import logging
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field, replace
from types import MappingProxyType

import httpx
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type

from resilience_core.circuit_breaker import (
    BreakerStats,
    CircuitBreaker,
    CircuitBreakerError,
    CircuitBreakerRegistry,
    LoggingListener,
    for_api,
)
from resilience_core.errors import CallerError, TransientError
from resilience_core.logging import log_warning
from resilience_core.retry import RetryBackoffPolicy, build_backoff_retrying
from resilience_core.settings import ApiClientSettings

API_BREAKER_NAME = "api"
_DEFAULT_HEADERS = {"Accept": "application/json"}
_logger = logging.getLogger(__name__)


def _monotonic() -> float:
    return time.monotonic()


class ApiRequestError(RuntimeError):
    """Base exception for API request failures."""

    def __init__(
        self,
        message: str,
        http_status: int | None = None,
        response_body: str | None = None,
    ) -> None:
        """Initialize request-error metadata.

        Args:
            message: Human-readable error message.
            http_status: Optional HTTP status returned by the API.
            response_body: Optional response payload text.
        """
        super().__init__(message)
        self.http_status = http_status
        self.response_body = response_body


class ApiClientError(ApiRequestError, CallerError):
    """Raised for HTTP 4xx responses. Never retried."""


class ApiTransientError(ApiRequestError, TransientError):
    """Raised for 5xx responses, timeouts and transport failures."""


@dataclass(frozen=True)
class ApiResponse:
    """Decoded API response."""

    data: object
    status: int
    headers: Mapping[str, str] = field(default_factory=dict)
    from_cache: bool = False
    from_fallback: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "headers", MappingProxyType(dict(self.headers)))


@dataclass(frozen=True)
class _CacheEntry:
    response: ApiResponse
    stored_at: float
    ttl: float

    def is_fresh(self, now: float) -> bool:
        return now - self.stored_at < self.ttl


class ResilientApiClient:
    """HTTP API client with breaker protection, retries, caching and fallbacks.

    Each request is retried with exponential backoff for transient failures.
    The whole retried request counts as one call against the breaker. When a
    request fails transiently or is rejected by an open breaker, registered
    fallback data for the endpoint is returned, then any expired cached GET
    response, before the error is re-raised.
    """

    def __init__(
        self,
        *,
        client: httpx.AsyncClient,
        base_url: str,
        breaker: CircuitBreaker | None = None,
        registry: CircuitBreakerRegistry | None = None,
        timeout: float = 30.0,
        retry_policy: RetryBackoffPolicy | None = None,
        enable_circuit_breaker: bool = True,
        enable_fallback: bool = True,
        cache_ttl: float = 300.0,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        """Create an API client.

        Args:
            client: Shared async HTTP client, owned by the caller.
            base_url: Prefix joined with every request endpoint.
            breaker: Breaker guarding the API. Defaults to an API preset
                breaker named ``"api"`` that logs its transitions.
            registry: Optional registry the breaker is registered in.
            timeout: Per-attempt timeout in seconds.
            retry_policy: Default retry policy for requests.
            enable_circuit_breaker: Route requests through the breaker.
            enable_fallback: Serve fallback data when a request fails.
            cache_ttl: Seconds a GET response stays fresh. ``0`` disables caching.
            sleep: Async sleep used between retries.
        """
        self._client = client
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._retry_policy = (
            RetryBackoffPolicy() if retry_policy is None else retry_policy
        )
        self._enable_fallback = enable_fallback
        self._cache_ttl = cache_ttl
        self._sleep = sleep
        self._cache: dict[str, _CacheEntry] = {}
        self._fallback_data: dict[str, object] = {}

        self._breaker: CircuitBreaker | None = None
        if enable_circuit_breaker:
            self._breaker = (
                for_api(API_BREAKER_NAME, listeners=[LoggingListener()])
                if breaker is None
                else breaker
            )
            if registry is not None:
                registry.register(self._breaker.name, self._breaker)

    @classmethod
    def from_settings(
        cls,
        settings: ApiClientSettings,
        *,
        client: httpx.AsyncClient,
        registry: CircuitBreakerRegistry | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ) -> ResilientApiClient:
        return cls(
            client=client,
            base_url=settings.base_url,
            registry=registry,
            timeout=settings.timeout,
            retry_policy=settings.retry_policy(),
            enable_circuit_breaker=settings.enable_circuit_breaker,
            enable_fallback=settings.enable_fallback,
            cache_ttl=settings.cache_ttl,
            sleep=sleep,
        )

    @property
    def breaker(self) -> CircuitBreaker | None:
        return self._breaker

    @property
    def cache_size(self) -> int:
        return len(self._cache)

    async def request(
        self,
        method: str,
        endpoint: str,
        *,
        json_body: object | None = None,
        headers: Mapping[str, str] | None = None,
        retry_policy: RetryBackoffPolicy | None = None,
    ) -> ApiResponse:
        """Send one logical request and decode its JSON body.

        Raises:
            ApiClientError: For 4xx responses.
            ApiTransientError: When retries are exhausted and no fallback exists.
            CircuitBreakerError: When the breaker is open and no fallback exists.
        """
        method = method.upper()
        url = f"{self._base_url}{endpoint}"
        cache_key = self._cache_key(method, url, json_body)

        if method == "GET":
            cached = self._fresh_cached(cache_key)
            if cached is not None:
                return cached

        policy = self._retry_policy if retry_policy is None else retry_policy
        try:
            if self._breaker is None:
                response = await self._send_with_retry(
                    method, url, json_body, headers, policy
                )
            else:
                response = await self._breaker.execute(
                    self._send_with_retry, method, url, json_body, headers, policy
                )
        except (ApiTransientError, CircuitBreakerError) as exc:
            fallback = self._fallback_response(cache_key, endpoint)
            if fallback is None:
                raise
            log_warning(
                _logger,
                "api_client.fallback_used",
                method=method,
                endpoint=endpoint,
                error_type=exc.__class__.__name__,
                from_cache=fallback.from_cache,
            )
            return fallback

        if method == "GET" and self._cache_ttl > 0:
            self._cache[cache_key] = _CacheEntry(
                response=response,
                stored_at=_monotonic(),
                ttl=self._cache_ttl,
            )
        return response

    async def get(
        self,
        endpoint: str,
        *,
        headers: Mapping[str, str] | None = None,
        retry_policy: RetryBackoffPolicy | None = None,
    ) -> ApiResponse:
        return await self.request(
            "GET", endpoint, headers=headers, retry_policy=retry_policy
        )

    async def post(
        self,
        endpoint: str,
        json_body: object | None = None,
        *,
        headers: Mapping[str, str] | None = None,
        retry_policy: RetryBackoffPolicy | None = None,
    ) -> ApiResponse:
        return await self.request(
            "POST",
            endpoint,
            json_body=json_body,
            headers=headers,
            retry_policy=retry_policy,
        )

    async def put(
        self,
        endpoint: str,
        json_body: object | None = None,
        *,
        headers: Mapping[str, str] | None = None,
        retry_policy: RetryBackoffPolicy | None = None,
    ) -> ApiResponse:
        return await self.request(
            "PUT",
            endpoint,
            json_body=json_body,
            headers=headers,
            retry_policy=retry_policy,
        )

    async def patch(
        self,
        endpoint: str,
        json_body: object | None = None,
        *,
        headers: Mapping[str, str] | None = None,
        retry_policy: RetryBackoffPolicy | None = None,
    ) -> ApiResponse:
        return await self.request(
            "PATCH",
            endpoint,
            json_body=json_body,
            headers=headers,
            retry_policy=retry_policy,
        )

    async def delete(
        self,
        endpoint: str,
        *,
        headers: Mapping[str, str] | None = None,
        retry_policy: RetryBackoffPolicy | None = None,
    ) -> ApiResponse:
        return await self.request(
            "DELETE", endpoint, headers=headers, retry_policy=retry_policy
        )

    def set_fallback_data(self, endpoint: str, data: object) -> None:
        """Serve ``data`` for ``endpoint`` whenever the API is unavailable."""
        self._fallback_data[endpoint] = data

    def clear_cache(self) -> None:
        self._cache.clear()

    def breaker_stats(self) -> BreakerStats | None:
        return None if self._breaker is None else self._breaker.stats()

    def reset_breaker(self) -> None:
        if self._breaker is not None:
            self._breaker.reset()

    def is_healthy(self) -> bool:
        return self._breaker is None or self._breaker.is_healthy()

    async def _send_with_retry(
        self,
        method: str,
        url: str,
        json_body: object | None,
        headers: Mapping[str, str] | None,
        policy: RetryBackoffPolicy,
    ) -> ApiResponse:
        retrying = self._build_retrying(policy)
        async for attempt in retrying:
            with attempt:
                return await self._send_once(method, url, json_body, headers)

        raise RuntimeError("API retry loop exited unexpectedly.")

    async def _send_once(
        self,
        method: str,
        url: str,
        json_body: object | None,
        headers: Mapping[str, str] | None,
    ) -> ApiResponse:
        request_headers = dict(_DEFAULT_HEADERS)
        if headers is not None:
            request_headers.update(headers)

        try:
            response = await self._client.request(
                method,
                url,
                json=json_body,
                headers=request_headers,
                timeout=self._timeout,
            )
        except httpx.RequestError as exc:
            raise ApiTransientError(f"{method} {url} failed: {exc!r}") from exc

        status = response.status_code
        if not response.is_success:
            message = f"HTTP {status}: {response.reason_phrase}"
            if 400 <= status < 500:
                raise ApiClientError(
                    message, http_status=status, response_body=response.text
                )
            if status >= 500:
                raise ApiTransientError(
                    message, http_status=status, response_body=response.text
                )
            raise ApiRequestError(
                message, http_status=status, response_body=response.text
            )

        try:
            data: object = response.json()
        except ValueError:
            data = response.text
        return ApiResponse(data=data, status=status, headers=response.headers)

    def _build_retrying(self, policy: RetryBackoffPolicy) -> AsyncRetrying:
        return build_backoff_retrying(
            retry=retry_if_exception_type(ApiTransientError),
            policy=policy,
            sleep=self._sleep,
            before_sleep=self._log_retry,
            reraise=True,
        )

    @staticmethod
    def _log_retry(retry_state: RetryCallState) -> None:
        outcome = retry_state.outcome
        error = None if outcome is None else outcome.exception()
        next_action = retry_state.next_action
        log_warning(
            _logger,
            "api_client.retrying",
            attempt=retry_state.attempt_number,
            delay_seconds=None if next_action is None else next_action.sleep,
            error=str(error),
        )

    @staticmethod
    def _cache_key(method: str, url: str, json_body: object | None) -> str:
        body = "" if json_body is None else json.dumps(json_body, sort_keys=True)
        return f"{method}:{url}:{body}"

    def _fresh_cached(self, cache_key: str) -> ApiResponse | None:
        entry = self._cache.get(cache_key)
        if entry is None:
            return None
        if entry.is_fresh(_monotonic()):
            return replace(entry.response, from_cache=True)
        return None

    def _fallback_response(self, cache_key: str, endpoint: str) -> ApiResponse | None:
        if not self._enable_fallback:
            return None
        if endpoint in self._fallback_data:
            return ApiResponse(
                data=self._fallback_data[endpoint],
                status=200,
                from_fallback=True,
            )
        entry = self._cache.get(cache_key)
        if entry is not None:
            return replace(entry.response, from_cache=True, from_fallback=True)
        return None
