"""
Base HTTP client for external sports providers.

Every provider client shares:
- Rate governor check before each request actually sent (fail fast, no HTTP call)
- Retry with exponential backoff and jitter (tenacity) for transient failures
- A circuit breaker around the whole retried request
- Per-client metrics (totals, rolling average response time, last request)

Payloads are returned raw; mapping into the canonical model happens in the
transformer layer.

Usage:
    class MyProviderClient(BaseSportsClient):
        provider = "myprovider"

    client = MyProviderClient(base_url="https://api.example.com", governor=gov, breaker=breaker)
    payload = await client.request("/fixtures", params={"date": "2025-01-01"}, tag="football")
"""
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Deque, Dict, Optional

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from sports_ingest.core import metrics as prom
from sports_ingest.core.errors import BudgetExhausted, ProviderUnavailable
from sports_ingest.core.logging import get_logger
from sports_ingest.services.core.circuit_breaker import (
    ProviderCircuitBreaker,
    call_with_breaker,
    get_breaker_state,
)
from sports_ingest.services.core.rate_governor import RateGovernor

logger = get_logger(__name__)

RESPONSE_TIME_WINDOW = 100


@dataclass
class RetryPolicy:
    """Retry policy for one provider (delays in seconds)."""
    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0
    jitter: float = 0.3  # up to 30% of base_delay added to every wait


@dataclass
class ClientMetrics:
    """Request counters for one client."""
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    last_request_time: Optional[datetime] = None
    response_times_ms: Deque[float] = field(default_factory=lambda: deque(maxlen=RESPONSE_TIME_WINDOW))

    def record(self, success: bool, elapsed_ms: float) -> None:
        self.total_requests += 1
        if success:
            self.successful_requests += 1
        else:
            self.failed_requests += 1
        self.response_times_ms.append(elapsed_ms)
        self.last_request_time = datetime.utcnow()

    @property
    def average_response_time_ms(self) -> float:
        if not self.response_times_ms:
            return 0.0
        return sum(self.response_times_ms) / len(self.response_times_ms)

    def snapshot(self) -> Dict[str, Any]:
        return {
            "total_requests": self.total_requests,
            "successful_requests": self.successful_requests,
            "failed_requests": self.failed_requests,
            "average_response_time_ms": round(self.average_response_time_ms, 1),
            "last_request_time": self.last_request_time.isoformat() if self.last_request_time else None,
        }


def _is_retryable(exc: BaseException) -> bool:
    """Network errors, timeouts, 429 and 5xx are transient; other 4xx are not."""
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return status == 429 or status >= 500
    return isinstance(exc, httpx.TransportError)


class BaseSportsClient:
    """
    Governed, retried, circuit-protected HTTP client.

    Attributes:
        provider: Provider name for logs, metrics and errors
        governor: Shared request budget for this provider
        breaker: Circuit breaker for this provider
        metrics: Per-client request metrics
    """

    provider = "base"

    def __init__(
        self,
        base_url: str,
        governor: RateGovernor,
        breaker: ProviderCircuitBreaker,
        headers: Optional[Dict[str, str]] = None,
        timeout: float = 30.0,
        retry_policy: Optional[RetryPolicy] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.governor = governor
        self.breaker = breaker
        self.headers = headers or {}
        self.timeout = timeout
        self.retry_policy = retry_policy or RetryPolicy()
        self.metrics = ClientMetrics()
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout, connect=10.0),
                limits=httpx.Limits(max_keepalive_connections=5, max_connections=10),
                headers={"Accept": "application/json"},
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    # ========================================================================
    # REQUESTS
    # ========================================================================

    async def request(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        tag: Optional[str] = None,
        base_url: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        """
        GET ``path`` and return the parsed JSON payload.

        Args:
            path: Path relative to the base URL (or an absolute URL)
            params: Query parameters
            tag: Audit tag recorded with the budget usage (defaults to provider)
            base_url: Override of the client's base URL for this request
            headers: Extra headers for this request

        Returns:
            Raw provider payload

        Raises:
            BudgetExhausted: No request budget left; nothing was sent
            ProviderUnavailable: Circuit open, or request failed after retries
        """
        url = path if path.startswith("http") else f"{(base_url or self.base_url).rstrip('/')}{path}"
        tag = tag or self.provider

        if not self.breaker.allows_request():
            prom.record_provider_request(self.provider, "rejected")
            raise ProviderUnavailable(self.provider, f"circuit {get_breaker_state(self.breaker)}")

        # Reserve the first attempt's slot before touching the breaker
        self.governor.acquire()

        started = time.monotonic()
        try:
            payload = await call_with_breaker(
                self.breaker, self._get_with_retry, url, params, tag, headers
            )
        except BudgetExhausted:
            self._record(False, started)
            raise
        except ProviderUnavailable:
            self._record(False, started)
            raise
        except httpx.HTTPStatusError as e:
            self._record(False, started)
            logger.error(f"{self.provider} request failed: {url} -> HTTP {e.response.status_code}")
            raise ProviderUnavailable(
                self.provider, f"HTTP {e.response.status_code}", status_code=e.response.status_code
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            self._record(False, started)
            logger.error(f"{self.provider} request failed: {url} -> {e}")
            raise ProviderUnavailable(self.provider, str(e) or type(e).__name__) from e

        self._record(True, started)
        return payload

    async def _get_with_retry(
        self,
        url: str,
        params: Optional[Dict[str, Any]],
        tag: str,
        headers: Optional[Dict[str, str]],
    ) -> Any:
        policy = self.retry_policy
        first_attempt = True
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(max(1, policy.max_retries)),
            wait=wait_exponential(multiplier=policy.base_delay, max=policy.max_delay)
            + wait_random(0, policy.base_delay * policy.jitter),
            retry=retry_if_exception(_is_retryable),
            reraise=True,
        ):
            with attempt:
                if not first_attempt:
                    logger.warning(
                        f"{self.provider} retry {attempt.retry_state.attempt_number} for {url}"
                    )
                    self.governor.acquire()
                first_attempt = False
                return await self._send(url, params, tag, headers)

    async def _send(
        self,
        url: str,
        params: Optional[Dict[str, Any]],
        tag: str,
        headers: Optional[Dict[str, str]],
    ) -> Any:
        """Issue one HTTP request against a reserved budget slot."""
        client = await self._get_client()
        try:
            response = await client.get(url, params=params, headers={**self.headers, **(headers or {})})
        except (httpx.ConnectError, httpx.ConnectTimeout):
            # Never reached the provider
            self.governor.release()
            raise
        except httpx.HTTPError:
            self.governor.record_usage(tag)
            raise

        self.governor.record_usage(tag)
        response.raise_for_status()
        return self.parse_response(response)

    def parse_response(self, response: httpx.Response) -> Any:
        """Decode the provider payload. Override to validate envelopes."""
        return response.json()

    # ========================================================================
    # MONITORING
    # ========================================================================

    def _record(self, success: bool, started: float) -> None:
        elapsed = time.monotonic() - started
        self.metrics.record(success, elapsed * 1000)
        prom.record_provider_request(self.provider, "success" if success else "failure", elapsed)

    def get_metrics(self) -> Dict[str, Any]:
        """Request metrics snapshot."""
        return self.metrics.snapshot()

    def get_health(self) -> Dict[str, Any]:
        """Provider health: breaker state, request metrics and budget usage."""
        state = get_breaker_state(self.breaker)
        return {
            "provider": self.provider,
            "healthy": state == "closed",
            "circuit_state": state,
            "metrics": self.get_metrics(),
            "usage": self.governor.usage_stats(),
        }
