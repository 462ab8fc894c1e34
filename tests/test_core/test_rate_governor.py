"""Unit tests for the provider request budget.

Test Strategy:
1. Test slot reservation up to the daily limit
2. Test that a refused acquire never increments usage
3. Test the rolling per-minute limit
4. Test release of unused reservations
5. Test the day window reset with an injected clock
6. Test the usage snapshot and the audit log
7. Test concurrent callers (threads and gathered tasks) never exceed the limit

Each test builds its own governor with a fake clock, so no global state is
shared between tests.
"""
import asyncio
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta

import pytest

from sports_ingest.core.errors import BudgetExhausted
from sports_ingest.services.core.rate_governor import RateGovernor


class FakeClock:
    """Settable "now" for window tests."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock(datetime(2025, 3, 1, 12, 0, 0))


class TestDailyBudget:
    """Reservations and recorded usage against the daily limit."""

    # Reservation Tests
    # ─────────────────────────────────────────────────────────────

    def test_try_acquire_until_limit(self, clock):
        """Should grant exactly daily_limit slots, then refuse."""
        governor = RateGovernor("apisports", daily_limit=3, clock=clock)

        granted = [governor.try_acquire() for _ in range(5)]

        assert granted == [True, True, True, False, False]
        assert governor.remaining() == 0

    def test_refused_acquire_does_not_count(self, clock):
        """A refused try_acquire should leave used and reserved untouched."""
        governor = RateGovernor("apisports", daily_limit=1, clock=clock)
        governor.try_acquire()
        governor.record_usage("football")

        assert governor.try_acquire() is False

        stats = governor.usage_stats()
        assert stats["used"] == 1
        assert stats["reserved"] == 0

    def test_acquire_raises_budget_exhausted(self, clock):
        """acquire() should raise BudgetExhausted naming the day window."""
        governor = RateGovernor("thesportsdb", daily_limit=1, clock=clock)
        governor.acquire()

        with pytest.raises(BudgetExhausted) as exc_info:
            governor.acquire()

        assert exc_info.value.provider == "thesportsdb"
        assert exc_info.value.window == "day"
        assert exc_info.value.limit == 1

    def test_zero_limit_refuses_everything(self, clock):
        """A zero budget should never grant a slot."""
        governor = RateGovernor("apisports", daily_limit=0, clock=clock)

        assert governor.try_acquire() is False
        assert governor.usage_stats()["percent_used"] == 100.0

    def test_negative_limit_rejected(self):
        """Negative limits are a configuration error."""
        with pytest.raises(ValueError):
            RateGovernor("apisports", daily_limit=-1)

    # Usage Recording Tests
    # ─────────────────────────────────────────────────────────────

    def test_record_usage_consumes_reservation(self, clock):
        """record_usage should turn a reservation into usage."""
        governor = RateGovernor("apisports", daily_limit=10, clock=clock)
        governor.try_acquire()

        governor.record_usage("nba")

        stats = governor.usage_stats()
        assert stats["used"] == 1
        assert stats["reserved"] == 0
        assert stats["remaining"] == 9

    def test_used_never_exceeds_limit(self, clock):
        """Usage recorded without a reservation is dropped once the limit is hit."""
        governor = RateGovernor("apisports", daily_limit=2, clock=clock)

        for _ in range(5):
            governor.record_usage("football")

        assert governor.usage_stats()["used"] == 2

    def test_release_returns_slot(self, clock):
        """release() should hand an unused reservation back."""
        governor = RateGovernor("apisports", daily_limit=1, clock=clock)
        assert governor.try_acquire() is True

        governor.release()

        assert governor.remaining() == 1
        assert governor.try_acquire() is True

    def test_release_without_reservation_is_noop(self, clock):
        """Releasing with nothing reserved should not grant extra budget."""
        governor = RateGovernor("apisports", daily_limit=1, clock=clock)

        governor.release()

        assert governor.remaining() == 1


class TestPerMinuteLimit:
    """Rolling 60 second window on top of the daily budget."""

    def test_minute_limit_refuses_burst(self, clock):
        """Should refuse once per_minute_limit slots were taken within a minute."""
        governor = RateGovernor("apisports", daily_limit=100, per_minute_limit=2, clock=clock)

        assert governor.try_acquire() is True
        assert governor.try_acquire() is True
        assert governor.try_acquire() is False

    def test_minute_window_slides(self, clock):
        """Slots older than a minute should no longer count."""
        governor = RateGovernor("apisports", daily_limit=100, per_minute_limit=1, clock=clock)
        governor.try_acquire()
        governor.record_usage("football")

        clock.advance(seconds=61)

        assert governor.try_acquire() is True

    def test_release_keeps_minute_entry(self, clock):
        """A released slot returns to the day budget but still counts for the minute."""
        governor = RateGovernor("apisports", daily_limit=100, per_minute_limit=1, clock=clock)
        governor.try_acquire()

        governor.release()

        assert governor.remaining() == 100
        assert governor.try_acquire() is False
        clock.advance(seconds=61)
        assert governor.try_acquire() is True

    def test_acquire_reports_minute_window(self, clock):
        """With daily budget left, the refusal should name the minute window."""
        governor = RateGovernor("apisports", daily_limit=100, per_minute_limit=1, clock=clock)
        governor.acquire()

        with pytest.raises(BudgetExhausted) as exc_info:
            governor.acquire()

        assert exc_info.value.window == "minute"
        assert exc_info.value.limit == 1


class TestWindowReset:
    """The day window resets when the date changes."""

    def test_new_day_grants_fresh_budget(self, clock):
        """Should reset usage and the audit log at the date change."""
        governor = RateGovernor("apisports", daily_limit=1, clock=clock)
        governor.try_acquire()
        governor.record_usage("football")
        assert governor.try_acquire() is False

        clock.advance(days=1)

        assert governor.try_acquire() is True
        assert governor.request_log() == []
        assert governor.usage_stats()["window_start"].startswith("2025-03-02")

    def test_same_day_keeps_usage(self, clock):
        """Hours passing within one date should not reset anything."""
        governor = RateGovernor("apisports", daily_limit=5, clock=clock)
        governor.try_acquire()
        governor.record_usage("football")

        clock.advance(hours=11)

        assert governor.usage_stats()["used"] == 1

    def test_inflight_reservation_charged_to_new_day(self, clock):
        """A reservation taken before midnight counts against the next day."""
        governor = RateGovernor("apisports", daily_limit=2, clock=clock)
        governor.try_acquire()

        clock.advance(days=1)

        assert governor.remaining() == 1
        governor.record_usage("football")
        assert governor.usage_stats()["used"] == 1
        assert governor.remaining() == 1


class TestUsageStats:
    """Snapshot and audit log."""

    def test_usage_stats_shape(self, clock):
        """Should expose used, limit, remaining, percent_used and usage by tag."""
        governor = RateGovernor("apisports", daily_limit=4, per_minute_limit=10, clock=clock)
        for tag in ("football", "football", "nba"):
            governor.try_acquire()
            governor.record_usage(tag)

        stats = governor.usage_stats()

        assert stats["provider"] == "apisports"
        assert stats["used"] == 3
        assert stats["limit"] == 4
        assert stats["remaining"] == 1
        assert stats["percent_used"] == 75.0
        assert stats["per_minute_limit"] == 10
        assert stats["by_tag"] == {"football": 2, "nba": 1}

    def test_request_log_records_tag_and_time(self, clock):
        """The audit log should hold (timestamp, tag) per recorded request."""
        governor = RateGovernor("apisports", daily_limit=4, clock=clock)
        governor.try_acquire()
        governor.record_usage("hockey")

        assert governor.request_log() == [(clock.now, "hockey")]


class TestConcurrentCallers:
    """The budget holds when many callers race for slots."""

    def test_threads_never_exceed_limit(self, clock):
        """Exactly daily_limit of many threaded acquire/record pairs succeed."""
        governor = RateGovernor("apisports", daily_limit=50, clock=clock)

        def call(index):
            if governor.try_acquire():
                governor.record_usage(f"worker-{index % 4}")
                return True
            return False

        with ThreadPoolExecutor(max_workers=16) as pool:
            granted = list(pool.map(call, range(400)))

        assert sum(granted) == 50
        stats = governor.usage_stats()
        assert stats["used"] == 50
        assert stats["remaining"] == 0
        assert len(governor.request_log()) == 50

    @pytest.mark.asyncio
    async def test_gathered_tasks_never_exceed_limit(self, clock):
        """Tasks yielding between reserve and record share one budget."""
        governor = RateGovernor("apisports", daily_limit=25, per_minute_limit=100, clock=clock)

        async def call():
            if not governor.try_acquire():
                return False
            await asyncio.sleep(0)
            governor.record_usage("football")
            return True

        granted = await asyncio.gather(*(call() for _ in range(120)))

        assert sum(granted) == 25
        assert governor.usage_stats()["used"] <= governor.daily_limit
