"""
Relational store used by the ingestion core.

The sync layer only needs table-scoped operations: select (with filter,
in-list filter, order and range), count, insert, update-by-filter and
upsert-on-conflict. This class implements them on a SQLAlchemy session with
Core statements so callers exchange plain dict rows keyed by column name.

Example:
    store = RelationalStore(db)
    rows = store.select("sports_events", in_filters={"external_id": ["1", "2"]})
    store.upsert("sports_events", new_rows, conflict=("external_id", "source"))
    store.commit()
"""
from contextlib import contextmanager
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from sqlalchemy import Table, delete, func, insert, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from sports_ingest.core.errors import PersistenceError
from sports_ingest.core.logging import get_logger
from sports_ingest.models.tables import Base

logger = get_logger(__name__)

Row = Dict[str, Any]
Range = Tuple[Optional[Any], Optional[Any]]


class RelationalStore:
    """
    Table-scoped access to the canonical tables.

    Attributes:
        db: The SQLAlchemy session; writes are not committed until commit()
    """

    def __init__(self, db: Session):
        self.db = db

    # ========================================================================
    # Reads
    # ========================================================================

    def select(
        self,
        table: str,
        filters: Optional[Dict[str, Any]] = None,
        in_filters: Optional[Dict[str, Iterable[Any]]] = None,
        ranges: Optional[Dict[str, Range]] = None,
        order_by: Optional[str] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
        columns: Optional[Sequence[str]] = None,
    ) -> List[Row]:
        """
        Select rows as dicts.

        Args:
            table: Table name
            filters: Equality filters (None matches NULL)
            in_filters: Column -> values "in-list" filters; an empty list matches nothing
            ranges: Column -> (lower, upper) bounds, either may be None; lower is
                exclusive, upper inclusive
            order_by: Column name, prefix with '-' for descending
            limit: Maximum number of rows
            offset: Number of rows to skip
            columns: Subset of columns to return (default: all)

        Returns:
            List of rows keyed by column name
        """
        tbl = self._table(table)
        cols = [tbl.c[name] for name in columns] if columns else [tbl]
        stmt = self._where(select(*cols), tbl, filters, in_filters, ranges)
        if stmt is None:
            return []

        if order_by:
            column = tbl.c[order_by.lstrip("-")]
            stmt = stmt.order_by(column.desc() if order_by.startswith("-") else column)
        if offset is not None:
            stmt = stmt.offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)

        try:
            return [dict(row) for row in self.db.execute(stmt).mappings()]
        except SQLAlchemyError as e:
            raise PersistenceError(table, str(e)) from e

    def count(
        self,
        table: str,
        filters: Optional[Dict[str, Any]] = None,
        in_filters: Optional[Dict[str, Iterable[Any]]] = None,
        ranges: Optional[Dict[str, Range]] = None,
    ) -> int:
        """Count rows matching the filters."""
        tbl = self._table(table)
        stmt = self._where(select(func.count()).select_from(tbl), tbl, filters, in_filters, ranges)
        if stmt is None:
            return 0
        try:
            return self.db.execute(stmt).scalar() or 0
        except SQLAlchemyError as e:
            raise PersistenceError(table, str(e)) from e

    # ========================================================================
    # Writes
    # ========================================================================

    def insert(self, table: str, rows: List[Row]) -> int:
        """Insert rows. Returns the number of rows written."""
        if not rows:
            return 0
        tbl = self._table(table)
        try:
            self.db.execute(insert(tbl), rows)
        except SQLAlchemyError as e:
            raise PersistenceError(table, str(e)) from e
        return len(rows)

    def update(self, table: str, values: Row, filters: Dict[str, Any]) -> int:
        """
        Update rows matching ``filters``.

        An empty filter is rejected so a bug can never rewrite a whole table.

        Returns:
            Number of rows matched
        """
        if not filters:
            raise PersistenceError(table, "update without a filter is not allowed")
        tbl = self._table(table)
        stmt = self._where(update(tbl), tbl, filters, None, None).values(**values)
        try:
            return self.db.execute(stmt).rowcount
        except SQLAlchemyError as e:
            raise PersistenceError(table, str(e)) from e

    def upsert(
        self,
        table: str,
        rows: List[Row],
        conflict: Sequence[str] = ("source", "external_id"),
        preserve: Sequence[str] = ("id", "created_at"),
    ) -> int:
        """
        Insert rows, updating existing ones that collide on ``conflict``.

        Args:
            table: Table name
            rows: Rows with identical key sets
            conflict: Columns of the unique constraint to resolve on
            preserve: Columns kept from the existing row on conflict

        Returns:
            Number of rows written
        """
        if not rows:
            return 0
        tbl = self._table(table)
        dialect_insert = self._dialect_insert(table)

        stmt = dialect_insert(tbl).values(rows)
        skip = set(conflict) | set(preserve)
        stmt = stmt.on_conflict_do_update(
            index_elements=list(conflict),
            set_={name: stmt.excluded[name] for name in rows[0] if name not in skip},
        )
        try:
            self.db.execute(stmt)
        except SQLAlchemyError as e:
            raise PersistenceError(table, str(e)) from e
        return len(rows)

    def delete(self, table: str, filters: Dict[str, Any], ranges: Optional[Dict[str, Range]] = None) -> int:
        """Delete rows matching ``filters`` and ``ranges`` (operational tables only)."""
        if not filters and not ranges:
            raise PersistenceError(table, "delete without a filter is not allowed")
        tbl = self._table(table)
        try:
            return self.db.execute(self._where(delete(tbl), tbl, filters, None, ranges)).rowcount
        except SQLAlchemyError as e:
            raise PersistenceError(table, str(e)) from e

    # ========================================================================
    # Transaction control
    # ========================================================================

    def commit(self) -> None:
        """Commit pending writes."""
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError("*", f"commit failed: {e}") from e

    def rollback(self) -> None:
        """Discard pending writes."""
        self.db.rollback()

    @contextmanager
    def savepoint(self) -> Iterator[None]:
        """
        Run a block inside a SAVEPOINT; a failure rolls back only that block.

        Example:
            with store.savepoint():
                store.upsert("sports_events", [row])
        """
        nested = self.db.begin_nested()
        try:
            yield
        except Exception:
            nested.rollback()
            raise
        nested.commit()

    # ========================================================================
    # Helpers
    # ========================================================================

    def _table(self, name: str) -> Table:
        tbl = Base.metadata.tables.get(name)
        if tbl is None:
            raise PersistenceError(name, "unknown table")
        return tbl

    def _dialect_insert(self, table: str):
        dialect = self.db.get_bind().dialect.name
        if dialect == "postgresql":
            from sqlalchemy.dialects.postgresql import insert as dialect_insert
        elif dialect == "sqlite":
            from sqlalchemy.dialects.sqlite import insert as dialect_insert
        else:
            raise PersistenceError(table, f"upsert is not supported on '{dialect}'")
        return dialect_insert

    @staticmethod
    def _where(stmt, tbl: Table, filters, in_filters, ranges=None):
        for name, value in (filters or {}).items():
            column = tbl.c[name]
            stmt = stmt.where(column.is_(None) if value is None else column == value)
        for name, values in (in_filters or {}).items():
            values = list(values)
            if not values:
                return None
            stmt = stmt.where(tbl.c[name].in_(values))
        for name, (lower, upper) in (ranges or {}).items():
            if lower is not None:
                stmt = stmt.where(tbl.c[name] > lower)
            if upper is not None:
                stmt = stmt.where(tbl.c[name] <= upper)
        return stmt
