"""Unit tests for UnitOfWork and EventDispatcher.

Test Strategy:
1. Test events are published only after every operation succeeded
2. Test a failing operation discards pending events, runs on_rollback and propagates
3. Test sync and async operations, and the async context manager
4. Test misuse (inactive unit, double begin) is rejected
5. Test the dispatcher preserves per-aggregate order
"""
from unittest.mock import AsyncMock, Mock

import pytest

from sports_ingest.events.domain_event import DomainEvent
from sports_ingest.events.unit_of_work import UnitOfWork, UnitOfWorkError


def event(aggregate_id, event_type="created"):
    return DomainEvent(event_type=event_type, aggregate_id=aggregate_id, aggregate_type="sports.event")


class TestCommit:
    """Happy path."""

    @pytest.mark.asyncio
    async def test_operations_run_before_dispatch(self, dispatcher, event_bus):
        order = []

        def write():
            order.append(("write", len(event_bus.get_history())))

        uow = UnitOfWork(dispatcher)
        uow.begin()
        uow.add_operation(write)
        uow.register_events("evt-1", [event("evt-1")])

        published = await uow.commit()

        assert published == 1
        assert order == [("write", 0)]
        assert len(event_bus.get_history()) == 1
        assert uow.is_active() is False

    @pytest.mark.asyncio
    async def test_async_operations_awaited(self, dispatcher):
        write = AsyncMock()

        async with UnitOfWork(dispatcher) as uow:
            uow.add_operation(write)

        write.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_dispatches_only_own_aggregates(self, dispatcher, event_bus):
        """Events registered outside the unit stay pending."""
        dispatcher.register_events("other", [event("other")])

        async with UnitOfWork(dispatcher) as uow:
            uow.register_events("evt-1", [event("evt-1")])

        assert [e.aggregate_id for e in event_bus.get_history()] == ["evt-1"]
        assert dispatcher.get_pending_count() == 1


class TestRollback:
    """Failure paths."""

    @pytest.mark.asyncio
    async def test_failed_operation_discards_events(self, dispatcher, event_bus):
        on_rollback = Mock()
        uow = UnitOfWork(dispatcher, on_rollback=on_rollback)
        uow.begin()
        uow.add_operation(Mock(side_effect=RuntimeError("commit failed")))
        uow.register_events("evt-1", [event("evt-1")])

        with pytest.raises(RuntimeError):
            await uow.commit()

        assert event_bus.get_history() == []
        assert dispatcher.get_pending_count() == 0
        on_rollback.assert_called_once()
        assert uow.is_active() is False

    @pytest.mark.asyncio
    async def test_context_manager_rolls_back_on_error(self, dispatcher, event_bus):
        with pytest.raises(ValueError):
            async with UnitOfWork(dispatcher) as uow:
                uow.register_events("evt-1", [event("evt-1")])
                raise ValueError("bad row")

        assert event_bus.get_history() == []
        assert dispatcher.get_pending_count() == 0

    @pytest.mark.asyncio
    async def test_async_on_rollback(self, dispatcher):
        on_rollback = AsyncMock()
        uow = UnitOfWork(dispatcher, on_rollback=on_rollback)
        uow.begin()

        await uow.rollback()

        on_rollback.assert_awaited_once()


class TestMisuse:
    """Lifecycle guards."""

    def test_inactive_unit_rejects_operations(self, dispatcher):
        with pytest.raises(UnitOfWorkError):
            UnitOfWork(dispatcher).add_operation(Mock())

    def test_double_begin(self, dispatcher):
        uow = UnitOfWork(dispatcher)
        uow.begin()

        with pytest.raises(UnitOfWorkError):
            uow.begin()


class TestDispatcher:
    """Pending-event buffer."""

    @pytest.mark.asyncio
    async def test_per_aggregate_order(self, dispatcher, event_bus):
        dispatcher.register_events("evt-1", [event("evt-1", "created")])
        dispatcher.register_events("evt-2", [event("evt-2", "created")])
        dispatcher.register_events("evt-1", [event("evt-1", "live")])

        assert dispatcher.pending_by_aggregate() == {"evt-1": 2, "evt-2": 1}

        total = await dispatcher.dispatch_all()

        assert total == 3
        keys = [(e.aggregate_id, e.event_type) for e in event_bus.get_history()]
        assert keys.index(("evt-1", "created")) < keys.index(("evt-1", "live"))
        assert dispatcher.get_pending_count() == 0

    def test_clear(self, dispatcher):
        dispatcher.register_events("evt-1", [event("evt-1")])
        dispatcher.register_events("evt-2", [])

        dispatcher.clear_events("evt-1")

        assert dispatcher.get_pending_events("evt-1") == []
        assert dispatcher.pending_by_aggregate() == {}
