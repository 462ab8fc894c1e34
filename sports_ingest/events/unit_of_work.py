"""
Unit-of-work: run queued write operations, then dispatch their events.

Operations run in registration order on ``commit()``. If any of them raises,
pending events are discarded and the error propagates, so no event is ever
published for a write that did not succeed.

Example:
    async with UnitOfWork(dispatcher) as uow:
        uow.add_operation(store.commit)
        uow.register_events(row_id, [event])
    # committed, then events published
"""
import inspect
from typing import Any, Awaitable, Callable, List, Optional, Union

from sports_ingest.core.logging import get_logger
from sports_ingest.events.dispatcher import EventDispatcher
from sports_ingest.events.domain_event import DomainEvent

logger = get_logger(__name__)

Operation = Callable[[], Union[Any, Awaitable[Any]]]


class UnitOfWorkError(RuntimeError):
    """Unit-of-work used outside of begin()/commit()."""


class UnitOfWork:
    """
    Coordinates writes and the domain events they produce.

    Args:
        dispatcher: Pending-event buffer published after the operations succeed
        on_rollback: Optional callable run when the unit is rolled back
            (e.g. ``store.rollback``)
    """

    def __init__(self, dispatcher: EventDispatcher, on_rollback: Optional[Operation] = None):
        self.dispatcher = dispatcher
        self.on_rollback = on_rollback
        self._operations: List[Operation] = []
        self._aggregates: List[str] = []
        self._active = False

    def begin(self) -> None:
        if self._active:
            raise UnitOfWorkError("Unit of work already active")
        self._active = True
        self._operations = []
        self._aggregates = []

    def is_active(self) -> bool:
        return self._active

    def add_operation(self, operation: Operation) -> None:
        self._require_active()
        self._operations.append(operation)

    def register_events(self, aggregate_id: str, events: List[DomainEvent]) -> None:
        self._require_active()
        if events:
            self.dispatcher.register_events(aggregate_id, events)
            if aggregate_id not in self._aggregates:
                self._aggregates.append(aggregate_id)

    async def commit(self) -> int:
        """
        Run the queued operations, then publish the registered events.

        Returns:
            Number of events published

        Raises:
            Whatever a queued operation raised, after rolling back
        """
        self._require_active()
        try:
            for operation in self._operations:
                result = operation()
                if inspect.isawaitable(result):
                    await result
        except Exception:
            logger.exception("Unit of work operation failed, rolling back")
            await self.rollback()
            raise

        aggregates = self._aggregates
        self._reset()
        published = 0
        for aggregate_id in aggregates:
            published += await self.dispatcher.dispatch_events(aggregate_id)
        return published

    async def rollback(self) -> None:
        for aggregate_id in self._aggregates:
            self.dispatcher.clear_events(aggregate_id)
        self._reset()
        if self.on_rollback is not None:
            result = self.on_rollback()
            if inspect.isawaitable(result):
                await result

    def _reset(self) -> None:
        self._operations = []
        self._aggregates = []
        self._active = False

    def _require_active(self) -> None:
        if not self._active:
            raise UnitOfWorkError("Unit of work is not active, call begin() first")

    async def __aenter__(self) -> "UnitOfWork":
        self.begin()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if not self._active:
            return
        if exc_type is not None:
            await self.rollback()
        else:
            await self.commit()
