"""
Circuit breakers for external sports providers.

Uses pybreaker for the state machine. One breaker per provider client:

- CLOSED: requests pass through; consecutive failures are counted
- OPEN: requests fail fast (after ``fail_max`` consecutive failures)
- HALF_OPEN: after ``reset_timeout`` one probe at a time is allowed;
  ``success_threshold`` successful probes close the circuit, any failure reopens it

A failure is recorded once per logical request, after the retry policy has
been exhausted, so a provider that is down cannot burn the daily budget
through cascading retries.

pybreaker's own ``call_async`` is Tornado based; ``ProviderCircuitBreaker``
awaits the coroutine itself and feeds the outcome through the synchronous
``call`` so pybreaker still owns every state transition.
"""
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, Iterable

from pybreaker import (
    STATE_CLOSED,
    STATE_HALF_OPEN,
    STATE_OPEN,
    CircuitBreaker,
    CircuitBreakerError,
    CircuitBreakerListener,
    CircuitMemoryStorage,
)

from sports_ingest.core import metrics
from sports_ingest.core.errors import BudgetExhausted, ProviderUnavailable
from sports_ingest.core.logging import get_logger

logger = get_logger(__name__)

# Default circuit breaker configuration
DEFAULT_FAIL_MAX = 5
DEFAULT_SUCCESS_THRESHOLD = 3
DEFAULT_RESET_TIMEOUT = 30  # seconds


class ProviderBreakerListener(CircuitBreakerListener):
    """Logs state transitions and mirrors the open state into a gauge."""

    def state_change(self, cb: CircuitBreaker, old_state, new_state) -> None:
        old_name = old_state.name if old_state else None
        logger.warning(f"Circuit breaker '{cb.name}': {old_name} -> {new_state.name}")
        metrics.circuit_breaker_open.labels(provider=cb.name).set(
            1 if new_state.name == STATE_OPEN else 0
        )


def _reraise(exc: BaseException):
    raise exc


class ProviderCircuitBreaker(CircuitBreaker):
    """
    pybreaker CircuitBreaker with asyncio support and single-probe half-open.

    Budget exhaustion is excluded: a local quota refusal says nothing about
    provider health.

    Example:
        breaker = ProviderCircuitBreaker("apisports", fail_max=5, success_threshold=2)
        payload = await breaker.call_async(fetch, url)
    """

    def __init__(
        self,
        name: str,
        fail_max: int = DEFAULT_FAIL_MAX,
        success_threshold: int = DEFAULT_SUCCESS_THRESHOLD,
        reset_timeout: float = DEFAULT_RESET_TIMEOUT,
    ):
        self.storage = CircuitMemoryStorage(STATE_CLOSED)
        super().__init__(
            fail_max=fail_max,
            reset_timeout=reset_timeout,
            success_threshold=success_threshold,
            exclude=[BudgetExhausted],
            listeners=[ProviderBreakerListener()],
            state_storage=self.storage,
            name=name,
        )
        self._probe_in_flight = False

    def allows_request(self) -> bool:
        """Whether a request may be sent now (no side effects)."""
        state = self.current_state
        if state == STATE_CLOSED:
            return True
        if state == STATE_HALF_OPEN:
            return not self._probe_in_flight

        opened_at = self.storage.opened_at
        if opened_at is None:
            return True
        now = datetime.now(opened_at.tzinfo) if opened_at.tzinfo else datetime.utcnow()
        return now >= opened_at + timedelta(seconds=self.reset_timeout) and not self._probe_in_flight

    async def call_async(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """
        Await ``func`` under the breaker.

        Raises:
            CircuitBreakerError: The circuit is open (or tripped by this failure)
            Exception: Whatever ``func`` raised, after being counted
        """
        if not self.allows_request():
            raise CircuitBreakerError(f"Circuit breaker '{self.name}' is {self.current_state}")

        probing = self.current_state != STATE_CLOSED
        if probing:
            self._probe_in_flight = True
        try:
            try:
                result = await func(*args, **kwargs)
            except Exception as exc:
                self.call(_reraise, exc)
                raise
            return self.call(lambda: result)
        finally:
            if probing:
                self._probe_in_flight = False


# ============================================================================
# HELPERS
# ============================================================================

def create_breaker(
    name: str,
    fail_max: int = DEFAULT_FAIL_MAX,
    success_threshold: int = DEFAULT_SUCCESS_THRESHOLD,
    reset_timeout: float = DEFAULT_RESET_TIMEOUT,
) -> ProviderCircuitBreaker:
    """
    Build a provider circuit breaker.

    Args:
        name: Provider name (also used as metrics label)
        fail_max: Consecutive failures before opening
        success_threshold: Half-open successes required to close
        reset_timeout: Seconds to stay open before allowing a probe
    """
    return ProviderCircuitBreaker(
        name,
        fail_max=fail_max,
        success_threshold=success_threshold,
        reset_timeout=reset_timeout,
    )


async def call_with_breaker(
    breaker: ProviderCircuitBreaker,
    func: Callable[..., Awaitable[Any]],
    *args,
    **kwargs,
) -> Any:
    """
    Await ``func`` under ``breaker``, translating an open circuit.

    Raises:
        ProviderUnavailable: The circuit is (or just became) open
    """
    try:
        return await breaker.call_async(func, *args, **kwargs)
    except CircuitBreakerError as e:
        raise ProviderUnavailable(breaker.name, f"circuit {breaker.current_state}: {e}") from e


def get_breaker_state(breaker: CircuitBreaker) -> str:
    """Current state of a circuit breaker: 'closed', 'open' or 'half-open'."""
    return breaker.current_state


def get_all_breaker_states(breakers: Iterable[CircuitBreaker]) -> Dict[str, Dict[str, Any]]:
    """State and counters of each breaker, keyed by breaker name."""
    return {
        breaker.name: {
            "state": breaker.current_state,
            "fail_counter": breaker.fail_counter,
            "fail_max": breaker.fail_max,
            "reset_timeout": breaker.reset_timeout,
        }
        for breaker in breakers
    }


def reset_breaker(breaker: CircuitBreaker) -> None:
    """
    Manually close a circuit breaker.

    Only reset if you know the provider has recovered.
    """
    breaker.close()
    logger.warning(f"Circuit breaker '{breaker.name}' manually reset to CLOSED state")
