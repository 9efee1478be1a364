"""
Resilient HTTP client for one remote channel-manager account
Circuit breaking, token-bucket admission, timeouts, retries and error classification around httpx
"""

import time
from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel

from channel_sync import metrics
from channel_sync.config import SyncSettings
from channel_sync.errors import (
    ChannelSyncError,
    CircuitOpenError,
    ConfigurationError,
    NetworkError,
    RateLimitError,
    RequestTimeoutError,
    ServerError,
    error_from_response,
)
from channel_sync.resilience.circuit_breaker import CircuitBreaker, CircuitBreakerConfig, CircuitBreakerStats
from channel_sync.resilience.rate_limiter import TokenBucketRateLimiter
from channel_sync.resilience.retry import AttemptResult, RetryPolicy
from channel_sync.utils.logging import get_safe_logger, sanitize_url

logger = get_safe_logger("channel_sync.client")


class ConnectionTestResult(BaseModel):
    """Result of an administrative connectivity check"""
    success: bool
    message: str
    available_resources: List[str] = []
    response_time_ms: int
    error: Optional[str] = None


def _parse_retry_after(response: httpx.Response) -> Optional[int]:
    """Retry-After header (seconds) as milliseconds."""
    value = response.headers.get("Retry-After")
    if not value:
        return None
    try:
        return max(0, int(float(value) * 1000))
    except ValueError:
        return None


def _response_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


class ResilientClient:
    """
    HTTP client bound to one remote account.

    Owns the account's rate limiter and circuit breaker; both live only as long
    as this instance. Obtain instances through ClientRegistry rather than
    constructing one per call.
    """

    def __init__(
        self,
        account: str,
        base_url: str,
        api_key: str,
        *,
        rate_limiter: Optional[TokenBucketRateLimiter] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
        retry_policy: Optional[RetryPolicy] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not base_url:
            raise ConfigurationError(f"Remote base URL is required for account {account}")
        if not api_key:
            raise ConfigurationError(f"Remote API key is required for account {account}")

        self.account = account
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.rate_limiter = rate_limiter or TokenBucketRateLimiter(name=account)
        self.circuit_breaker = circuit_breaker or CircuitBreaker(CircuitBreakerConfig(name=account))
        self.retry_policy = retry_policy or RetryPolicy()

        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            auth=httpx.BasicAuth(api_key, ""),
            headers={"Output-Format": "JSON", "Accept": "application/json"},
            timeout=httpx.Timeout(timeout),
            limits=httpx.Limits(max_keepalive_connections=5, max_connections=10),
            transport=transport,
        )
        self.logger = logger.bind(account=account)

    @classmethod
    def from_settings(
        cls,
        account: str,
        base_url: str,
        api_key: str,
        settings: SyncSettings,
        **kwargs,
    ) -> "ResilientClient":
        """Build a client with limiter, breaker and retry policy taken from settings."""
        kwargs.setdefault(
            "rate_limiter",
            TokenBucketRateLimiter(
                capacity=settings.rate_limit_requests,
                window_seconds=settings.rate_limit_window_seconds,
                name=account,
            ),
        )
        kwargs.setdefault(
            "circuit_breaker",
            CircuitBreaker(
                CircuitBreakerConfig(
                    failure_threshold=settings.breaker_failure_threshold,
                    reset_timeout=settings.breaker_reset_timeout_seconds,
                    half_open_max_requests=settings.breaker_half_open_max_requests,
                    name=account,
                )
            ),
        )
        kwargs.setdefault("retry_policy", RetryPolicy.from_settings(settings))
        kwargs.setdefault("timeout", settings.request_timeout_seconds)
        return cls(account, base_url, api_key, **kwargs)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    def _circuit_open_error(self) -> CircuitOpenError:
        return CircuitOpenError(self.account, self.circuit_breaker.opened_at, self.circuit_breaker.reset_at)

    def _admit(self) -> Optional[ChannelSyncError]:
        """Circuit check first, then one token from the bucket."""
        if not self.circuit_breaker.can_proceed():
            return self._circuit_open_error()

        decision = self.rate_limiter.try_consume()
        if not decision.allowed:
            metrics.rate_limited_total.labels(account=self.account).inc()
            return RateLimitError(
                f"Rate limit exceeded. Try again in {decision.retry_after_ms // 1000 + 1} seconds.",
                retry_after_ms=decision.retry_after_ms,
            )
        return None

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
    ) -> Any:
        """
        Send a request to the remote account and return the decoded JSON body.

        Raises CircuitOpenError or RateLimitError before any network I/O when the
        guards refuse the call; otherwise raises the classified error of the
        last attempt once retries are exhausted or the failure is not retryable.
        """
        refused = self._admit()
        if refused is not None:
            self.logger.warning("remote_request_refused", method=method, path=path, reason=refused.code)
            raise refused

        attempts = 0

        async def attempt() -> AttemptResult[Any]:
            nonlocal attempts
            attempts += 1
            if attempts > 1:
                refused_retry = self._admit()
                if refused_retry is not None:
                    return AttemptResult.failure(refused_retry)
            return await self._send_once(method, path, params, json)

        result = await self.retry_policy.run(attempt, operation=f"{method} {path}")
        return result.unwrap()

    async def _send_once(self, method: str, path: str, params: Optional[Dict[str, Any]], body: Any) -> AttemptResult[Any]:
        start = time.perf_counter()
        error: Optional[ChannelSyncError] = None
        payload: Any = None

        try:
            response = await self._http.request(method, path, params=params, json=body)
        except httpx.TimeoutException as e:
            error = RequestTimeoutError(f"Request timed out after {self.timeout}s: {e}", timeout=self.timeout)
        except httpx.RequestError as e:
            error = NetworkError(f"Network error talking to remote API: {e}")
        else:
            if response.is_success:
                if response.content:
                    try:
                        payload = response.json()
                    except ValueError:
                        error = ServerError("Remote API returned invalid JSON", status_code=response.status_code)
                else:
                    payload = {}
            else:
                error = error_from_response(
                    response.status_code,
                    _response_body(response),
                    retry_after_ms=_parse_retry_after(response),
                )
        finally:
            metrics.remote_request_duration_seconds.labels(method=method).observe(time.perf_counter() - start)

        if error is None:
            self.circuit_breaker.record_success()
            metrics.remote_requests_total.labels(method=method, outcome="success").inc()
            self.logger.debug("remote_request_succeeded", method=method, url=sanitize_url(f"{self.base_url}/{path.lstrip('/')}"))
            return AttemptResult.success(payload)

        if error.counts_as_failure:
            self.circuit_breaker.record_failure()
        metrics.remote_requests_total.labels(method=method, outcome=error.code).inc()
        self.logger.warning(
            "remote_request_failed",
            method=method,
            path=path,
            error_code=error.code,
            status_code=error.status_code,
            error=error.message,
        )
        return AttemptResult.failure(error)

    async def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return await self.request("GET", path, params=params)

    async def post(self, path: str, json: Any = None, params: Optional[Dict[str, Any]] = None) -> Any:
        return await self.request("POST", path, json=json, params=params)

    async def put(self, path: str, json: Any = None, params: Optional[Dict[str, Any]] = None) -> Any:
        return await self.request("PUT", path, json=json, params=params)

    async def test_connection(self) -> ConnectionTestResult:
        """Fetch the API root and report which resources the key can see."""
        start = time.perf_counter()
        try:
            root = await self.get("/")
        except ChannelSyncError as e:
            return ConnectionTestResult(
                success=False,
                message=f"Connection failed: {e.message}",
                error=e.message,
                response_time_ms=int((time.perf_counter() - start) * 1000),
            )

        resources = []
        if isinstance(root, dict):
            resources = [key for key, value in root.items() if isinstance(value, (dict, list))]
        return ConnectionTestResult(
            success=True,
            message="Successfully connected to remote API",
            available_resources=resources,
            response_time_ms=int((time.perf_counter() - start) * 1000),
        )

    def circuit_stats(self) -> CircuitBreakerStats:
        return self.circuit_breaker.stats()

    def stats(self) -> Dict[str, Any]:
        return {
            "account": self.account,
            "circuit_breaker": self.circuit_stats().model_dump(mode="json"),
            "rate_limiter": self.rate_limiter.stats(),
        }
