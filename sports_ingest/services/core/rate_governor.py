"""
Shared request budget for quota-constrained providers.

One ``RateGovernor`` is created per provider in the composition root and
injected into every client that spends that provider's quota. Tests build a
fresh instance (with a fake clock) instead of patching a global.

Slot lifecycle:
    try_acquire()      reserve a slot (non-blocking, atomic compare-and-increment)
    record_usage(tag)  the request was actually sent; the reservation becomes usage
    release()          the reservation was not used (e.g. circuit open before sending)

Budget invariant: ``used + reserved`` never exceeds the daily limit, so
concurrent callers can never record more usages than the limit allows.

The day window resets when the wall-clock date changes. State lives for the
life of the process only; a restart grants a fresh budget.
"""
import threading
from collections import Counter, deque
from datetime import datetime, timedelta
from typing import Callable, Deque, Dict, List, Optional, Tuple

from sports_ingest.core import metrics
from sports_ingest.core.errors import BudgetExhausted
from sports_ingest.core.logging import get_logger

logger = get_logger(__name__)

MINUTE = timedelta(minutes=1)


class RateGovernor:
    """
    Daily (and optional per-minute) request budget shared across callers.

    Args:
        provider: Provider name used in logs, metrics and errors
        daily_limit: Maximum requests per calendar day
        per_minute_limit: Optional maximum requests in any rolling 60s window
        clock: Returns "now"; defaults to ``datetime.now``

    Example:
        governor = RateGovernor("apisports", daily_limit=100, per_minute_limit=30)
        if governor.try_acquire():
            response = await client.get(url)
            governor.record_usage("football")
    """

    def __init__(
        self,
        provider: str,
        daily_limit: int,
        per_minute_limit: Optional[int] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        if daily_limit < 0:
            raise ValueError("daily_limit must be >= 0")
        self.provider = provider
        self.daily_limit = daily_limit
        self.per_minute_limit = per_minute_limit
        self._clock = clock or datetime.now
        self._lock = threading.Lock()

        now = self._clock()
        self._window_start = now
        self._window_date = now.date()
        self._used = 0
        self._reserved = 0
        self._request_log: List[Tuple[datetime, str]] = []
        self._minute_window: Deque[datetime] = deque()

    # ========================================================================
    # SLOT MANAGEMENT
    # ========================================================================

    def try_acquire(self) -> bool:
        """
        Reserve a request slot if one is available. Never blocks.

        Returns:
            True if a slot was reserved, False if the budget is exhausted
            (in which case nothing is incremented)
        """
        with self._lock:
            now = self._clock()
            self._roll_window(now)
            if self._used + self._reserved >= self.daily_limit:
                return False
            if self.per_minute_limit is not None:
                self._trim_minute(now)
                if len(self._minute_window) >= self.per_minute_limit:
                    return False
                self._minute_window.append(now)
            self._reserved += 1
            return True

    def acquire(self) -> None:
        """
        Reserve a slot or raise.

        Raises:
            BudgetExhausted: No slot available in the current window
        """
        if not self.try_acquire():
            window = "day" if self.remaining() == 0 else "minute"
            limit = self.daily_limit if window == "day" else self.per_minute_limit
            logger.warning(f"{self.provider} request budget exhausted ({window})")
            metrics.record_provider_request(self.provider, "rejected")
            raise BudgetExhausted(self.provider, limit, window)

    def record_usage(self, tag: str) -> None:
        """
        Record one request that was actually issued.

        Must be called exactly once per sent request. Consumes the caller's
        reservation; without one it still counts, but only within the limit.

        Args:
            tag: Caller tag for the audit log (sport, endpoint, ...)
        """
        with self._lock:
            now = self._clock()
            self._roll_window(now)
            if self._reserved > 0:
                self._reserved -= 1
            elif self._used >= self.daily_limit:
                logger.warning(f"{self.provider} usage recorded without reservation over limit ({tag})")
                return
            elif self.per_minute_limit is not None:
                self._minute_window.append(now)
            self._used += 1
            self._request_log.append((now, tag))
            remaining = max(0, self.daily_limit - self._used - self._reserved)

        metrics.provider_quota_remaining.labels(provider=self.provider).set(remaining)
        if remaining in (10, 5, 1):
            logger.warning(f"{self.provider} budget low: {remaining} requests left today")

    def release(self) -> None:
        """
        Return a reservation that did not result in a request.

        The daily slot comes back at once. The per-minute entry stays until it
        ages out: reservations carry no owner, so removing any one timestamp
        could free minute capacity earlier than the released caller's own.
        """
        with self._lock:
            if self._reserved > 0:
                self._reserved -= 1

    # ========================================================================
    # INTROSPECTION
    # ========================================================================

    def remaining(self) -> int:
        """Requests still available in the current day window."""
        with self._lock:
            self._roll_window(self._clock())
            return max(0, self.daily_limit - self._used - self._reserved)

    def usage_stats(self) -> Dict:
        """
        Snapshot of the current window.

        Returns:
            Dict with used, limit, remaining, percent_used, window_start,
            reserved, per_minute_limit and usage by tag
        """
        with self._lock:
            self._roll_window(self._clock())
            used = self._used
            by_tag = Counter(tag for _, tag in self._request_log)
            return {
                "provider": self.provider,
                "used": used,
                "limit": self.daily_limit,
                "remaining": max(0, self.daily_limit - used - self._reserved),
                "percent_used": round(used / self.daily_limit * 100, 1) if self.daily_limit else 100.0,
                "window_start": self._window_start.isoformat(),
                "reserved": self._reserved,
                "per_minute_limit": self.per_minute_limit,
                "by_tag": dict(by_tag),
            }

    def request_log(self) -> List[Tuple[datetime, str]]:
        """Audit log of the current window as (timestamp, tag) pairs."""
        with self._lock:
            return list(self._request_log)

    # ========================================================================
    # INTERNALS (caller holds the lock)
    # ========================================================================

    def _roll_window(self, now: datetime) -> None:
        if now.date() != self._window_date:
            logger.info(
                f"{self.provider} budget window reset "
                f"({self._used}/{self.daily_limit} used on {self._window_date})"
            )
            self._window_date = now.date()
            self._window_start = now
            # in-flight reservations carry over and are charged to the new day
            self._used = 0
            self._request_log.clear()

    def _trim_minute(self, now: datetime) -> None:
        while self._minute_window and now - self._minute_window[0] >= MINUTE:
            self._minute_window.popleft()
