"""Unit tests for InMemoryEventBus and the domain event envelope.

Test Strategy:
1. Test routing by event key and the '*' wildcard
2. Test handler retries and isolation of a failing handler
3. Test subscribe/unsubscribe bookkeeping
4. Test the optional event store and the publish history
5. Test DomainEvent keys, correlation metadata and dict round trips
"""
import pytest

from sports_ingest.core.logging import correlation_scope
from sports_ingest.events.bus import EventBusConfig, create_event_handler
from sports_ingest.events.domain_event import DomainEvent
from sports_ingest.events.in_memory_bus import InMemoryEventBus
from sports_ingest.events.store import InMemoryEventStore


def live_event(aggregate_id="evt-1"):
    return DomainEvent(
        event_type="live",
        aggregate_id=aggregate_id,
        aggregate_type="sports.event",
        payload={"event_id": aggregate_id, "home_score": 1, "away_score": 0},
    )


class Recorder:
    """Async handler that records events and can fail a number of times first."""

    def __init__(self, failures=0):
        self.failures = failures
        self.calls = 0
        self.events = []

    async def __call__(self, event):
        self.calls += 1
        if self.calls <= self.failures:
            raise RuntimeError("handler down")
        self.events.append(event)


class TestRouting:
    """Which handlers receive an event."""

    @pytest.mark.asyncio
    async def test_exact_key(self, event_bus):
        live, finished = Recorder(), Recorder()
        event_bus.subscribe("sports.event.live", create_event_handler("live", "sports.event.live", live))
        event_bus.subscribe("sports.event.finished", create_event_handler("fin", "sports.event.finished", finished))

        await event_bus.publish(live_event())

        assert len(live.events) == 1
        assert finished.events == []

    @pytest.mark.asyncio
    async def test_wildcard_receives_everything(self, event_bus):
        everything = Recorder()
        event_bus.subscribe("*", create_event_handler("audit", "*", everything))

        await event_bus.publish_all([live_event("a"), live_event("b")])

        assert [e.aggregate_id for e in everything.events] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_no_handlers_is_fine(self, event_bus):
        await event_bus.publish(live_event())

        assert len(event_bus.get_history()) == 1

    def test_unsubscribe(self, event_bus):
        handler = create_event_handler("live", "sports.event.live", Recorder())
        event_bus.subscribe("sports.event.live", handler)

        event_bus.unsubscribe("live")
        event_bus.unsubscribe("never-subscribed")

        assert event_bus.get_handlers() == []
        assert event_bus.handlers_for("sports.event.live") == []


class TestRetries:
    """Per-handler retry policy."""

    @pytest.mark.asyncio
    async def test_handler_retried_until_success(self):
        bus = InMemoryEventBus(EventBusConfig(max_retries=3, retry_delay=0))
        flaky = Recorder(failures=2)
        bus.subscribe("sports.event.live", create_event_handler("flaky", "sports.event.live", flaky))

        await bus.publish(live_event())

        assert flaky.calls == 3
        assert len(flaky.events) == 1

    @pytest.mark.asyncio
    async def test_failing_handler_isolated(self, event_bus):
        """A handler that keeps failing must not stop the others or raise."""
        broken, healthy = Recorder(failures=99), Recorder()
        event_bus.subscribe("sports.event.live", create_event_handler("broken", "sports.event.live", broken))
        event_bus.subscribe("sports.event.live", create_event_handler("healthy", "sports.event.live", healthy))

        await event_bus.publish(live_event())

        assert broken.calls == 1  # retries disabled in the fixture
        assert len(healthy.events) == 1

    def test_max_attempts(self):
        assert EventBusConfig(max_retries=3).max_attempts == 3
        assert EventBusConfig(retry_on_failure=False, max_retries=3).max_attempts == 1


class TestStoreAndHistory:
    """Event store appends and in-process history."""

    @pytest.mark.asyncio
    async def test_appends_to_store_when_enabled(self):
        store = InMemoryEventStore()
        bus = InMemoryEventBus(EventBusConfig(enable_event_store=True), event_store=store)

        await bus.publish(live_event())

        assert await store.count_events() == 1

    @pytest.mark.asyncio
    async def test_store_ignored_when_disabled(self):
        store = InMemoryEventStore()
        bus = InMemoryEventBus(EventBusConfig(enable_event_store=False), event_store=store)

        await bus.publish(live_event())

        assert await store.count_events() == 0

    @pytest.mark.asyncio
    async def test_shutdown_clears(self, event_bus):
        event_bus.subscribe("*", create_event_handler("audit", "*", Recorder()))
        await event_bus.publish(live_event())

        await event_bus.shutdown()

        assert event_bus.get_history() == []
        assert event_bus.get_handlers() == []
        assert await event_bus.is_healthy() is True


class TestDomainEvent:
    """Envelope behaviour."""

    def test_event_key(self):
        assert live_event().event_key == "sports.event.live"

    def test_correlation_id_captured(self):
        with correlation_scope("sync-123"):
            event = live_event()

        assert event.metadata["correlation_id"] == "sync-123"
        assert "timestamp" in event.metadata

    def test_dict_round_trip_keeps_identity(self):
        event = live_event()

        rebuilt = DomainEvent.from_dict(event.to_dict())

        assert rebuilt.event_id == event.event_id
        assert rebuilt.occurred_on == event.occurred_on
        assert rebuilt.payload == event.payload
