"""
Batch upsert engine for canonical leagues, teams and events.

Each call runs in phases:

1. Prefetch: one in-list select per referenced table builds the
   ``(source, external_id) -> id`` maps, so round-trips stay bounded by the
   number of tables rather than the number of records.
2. Classify: records without an existing row become inserts, the rest updates.
   Updates repair foreign keys (a null reference is filled once the target
   exists, a resolved one is never cleared) and respect the status guard.
3. Write: inserts go through the store's on-conflict upsert in chunks of
   ``batch_size``; a failing chunk is retried row by row inside savepoints.
   Updates are applied per row.
4. Commit: the commit and the domain events of the rows that were written are
   queued on a unit-of-work, so events are published only after the commit
   succeeds.

Example:
    engine = BatchUpsertEngine(RelationalStore(db), dispatcher)
    result = await engine.upsert_events(events)
    print(result.created, result.updated, result.errors)
"""
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from sports_ingest.core.errors import DispatchError, PersistenceError
from sports_ingest.core.logging import get_logger
from sports_ingest.core.metrics import record_upsert
from sports_ingest.events import sports_events
from sports_ingest.events.dispatcher import EventDispatcher
from sports_ingest.events.domain_event import DomainEvent
from sports_ingest.events.unit_of_work import UnitOfWork
from sports_ingest.models.canonical import (
    CanonicalEvent,
    CanonicalLeague,
    CanonicalTeam,
    EventStatus,
    IN_PLAY_STATUSES,
    TERMINAL_STATUSES,
)
from sports_ingest.services.sync.store import RelationalStore, Row

logger = get_logger(__name__)

DEFAULT_BATCH_SIZE = 50

LEAGUES = "sports_leagues"
TEAMS = "sports_teams"
EVENTS = "sports_events"

EVENT_REFERENCES = ("league_id", "home_team_id", "away_team_id")

# Columns owned by admins or other services once a row exists
INSERT_ONLY = {
    LEAGUES: ("is_active", "is_featured", "display_order"),
    TEAMS: ("is_active",),
    EVENTS: ("has_market", "is_featured"),
}

# Statuses a SCHEDULED update may not overwrite
ADVANCED_STATUSES = IN_PLAY_STATUSES | TERMINAL_STATUSES


@dataclass
class UpsertResult:
    """Counters of one upsert call."""
    created: int = 0
    updated: int = 0
    errors: int = 0

    def __add__(self, other: "UpsertResult") -> "UpsertResult":
        return UpsertResult(
            created=self.created + other.created,
            updated=self.updated + other.updated,
            errors=self.errors + other.errors,
        )

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


@dataclass
class _Written:
    """Rows persisted in this call, with what to publish for them."""
    rows: List[Tuple[str, List[DomainEvent]]]

    @classmethod
    def empty(cls) -> "_Written":
        return cls(rows=[])


def _chunks(items: Sequence[Row], size: int) -> Iterator[Sequence[Row]]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


def _unique(values: Iterable[Optional[str]]) -> List[str]:
    return list(dict.fromkeys(v for v in values if v))


def guard_status(current: EventStatus, incoming: EventStatus) -> EventStatus:
    """
    Status to store when ``incoming`` arrives for a row at ``current``.

    Terminal rows keep their status. LIVE, HALFTIME and FINISHED never
    regress to SCHEDULED.
    """
    if current in TERMINAL_STATUSES:
        return current
    if incoming == EventStatus.SCHEDULED and current in ADVANCED_STATUSES:
        return current
    return incoming


class BatchUpsertEngine:
    """
    Persists canonical records with bulk lookups and per-row fallback.

    Args:
        store: Relational store bound to the cycle's session
        dispatcher: Pending-event buffer; when None no domain events are emitted
        batch_size: Insert chunk size
    """

    def __init__(
        self,
        store: RelationalStore,
        dispatcher: Optional[EventDispatcher] = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.batch_size = batch_size

    # ========================================================================
    # Leagues
    # ========================================================================

    async def upsert_leagues(self, leagues: List[CanonicalLeague]) -> UpsertResult:
        if not leagues:
            return UpsertResult()
        logger.info(f"Starting batch upsert of {len(leagues)} leagues")
        skipped = UpsertResult()
        nameless = [lg.identity() for lg in leagues if not lg.name]
        if nameless:
            logger.warning(f"Skipping {len(nameless)} leagues without a name: {nameless}")
            skipped = self._failed("league", len(nameless))
            leagues = [lg for lg in leagues if lg.name]
            if not leagues:
                return skipped

        try:
            existing = self._existing(LEAGUES, [lg.external_id for lg in leagues])
        except PersistenceError as e:
            logger.error(f"League prefetch failed: {e}")
            return self._failed("league", len(leagues)) + skipped

        now = datetime.utcnow()
        rows = [(lg.identity(), self._league_row(lg, now)) for lg in leagues]
        result, _ = self._write(LEAGUES, rows, existing)
        return await self._finish("league", result, _Written.empty()) + skipped

    @staticmethod
    def _league_row(league: CanonicalLeague, now: datetime) -> Row:
        return {
            "external_id": league.external_id,
            "source": league.source,
            "sport": league.sport.value,
            "name": league.name,
            "name_alternate": league.name_alternate,
            "country": league.country,
            "country_code": league.country_code,
            "logo_url": league.logo_url,
            "banner_url": league.banner_url,
            "season_current": league.season_current,
            "is_active": league.is_active,
            "is_featured": league.is_featured,
            "display_order": 0,
            "metadata": dict(league.metadata),
            "updated_at": now,
        }

    # ========================================================================
    # Teams
    # ========================================================================

    async def upsert_teams(self, teams: List[CanonicalTeam]) -> UpsertResult:
        if not teams:
            return UpsertResult()
        logger.info(f"Starting batch upsert of {len(teams)} teams")

        try:
            leagues = self._league_index(_unique(t.league_external_id for t in teams), [])
            existing = self._existing(TEAMS, [t.external_id for t in teams])
        except PersistenceError as e:
            logger.error(f"Team prefetch failed: {e}")
            return self._failed("team", len(teams))

        now = datetime.utcnow()
        rows = []
        for team in teams:
            league_id = self._resolve_league(leagues, team.source, team.sport.value, team.league_external_id)
            rows.append((team.identity(), self._team_row(team, league_id, now)))
        result, _ = self._write(TEAMS, rows, existing, references=("league_id",))
        return await self._finish("team", result, _Written.empty())

    @staticmethod
    def _team_row(team: CanonicalTeam, league_id: Optional[str], now: datetime) -> Row:
        return {
            "external_id": team.external_id,
            "source": team.source,
            "sport": team.sport.value,
            "league_id": league_id,
            "name": team.name,
            "name_short": team.name_short,
            "country": team.country,
            "city": team.city,
            "stadium": team.stadium,
            "logo_url": team.logo_url,
            "is_active": team.is_active,
            "metadata": dict(team.metadata),
            "updated_at": now,
        }

    # ========================================================================
    # Events
    # ========================================================================

    async def upsert_events(self, events: List[CanonicalEvent]) -> UpsertResult:
        """
        Upsert events and publish their lifecycle events after commit.

        ``sports.event.created`` is emitted per inserted row and
        ``sports.event.updated|live|finished`` per changed row. Rows whose
        content did not change count as updated but emit nothing.
        """
        if not events:
            return UpsertResult()
        logger.info(f"Starting batch upsert of {len(events)} events")

        try:
            leagues = self._league_index(
                _unique(e.league_external_id for e in events),
                _unique(e.metadata.get("league_name") for e in events),
            )
            teams = self._team_index(_unique(
                ref for e in events for ref in (e.home_team_external_id, e.away_team_external_id)
            ))
            existing = self._existing(EVENTS, [e.external_id for e in events])
        except PersistenceError as e:
            logger.error(f"Event prefetch failed: {e}")
            return self._failed("event", len(events))

        now = datetime.utcnow()
        rows = []
        for event in events:
            sport = event.sport.value
            league_id = self._resolve_league(leagues, event.source, sport, event.league_external_id)
            if league_id is None and event.metadata.get("league_name"):
                league_id = leagues.get(f"name:{event.metadata['league_name'].strip().lower()}")
            home_id = self._resolve_team(teams, event.source, sport, event.home_team_external_id)
            away_id = self._resolve_team(teams, event.source, sport, event.away_team_external_id)
            rows.append((event.identity(), self._event_row(event, league_id, home_id, away_id, now)))

        result, written = self._write(
            EVENTS, rows, existing,
            references=EVENT_REFERENCES,
            merge=self._merge_event,
            on_insert=sports_events.event_created,
            on_change=sports_events.event_changed,
        )
        return await self._finish("event", result, written)

    @staticmethod
    def _event_row(event: CanonicalEvent, league_id, home_id, away_id, now: datetime) -> Row:
        return {
            "external_id": event.external_id,
            "source": event.source,
            "sport": event.sport.value,
            "league_id": league_id,
            "home_team_id": home_id,
            "away_team_id": away_id,
            "season": event.season,
            "round": event.round,
            "name": event.name,
            "venue": event.venue,
            "city": event.city,
            "country": event.country,
            "start_time": event.start_time,
            "timezone": event.timezone or "UTC",
            "status": EventStatus(event.status).value,
            "status_detail": event.status_detail,
            "elapsed_time": event.elapsed_time,
            "home_score": event.home_score,
            "away_score": event.away_score,
            "home_score_halftime": event.home_score_halftime,
            "away_score_halftime": event.away_score_halftime,
            "home_score_extra": event.home_score_extra,
            "away_score_extra": event.away_score_extra,
            "home_score_penalty": event.home_score_penalty,
            "away_score_penalty": event.away_score_penalty,
            "referee": event.referee,
            "attendance": event.attendance,
            "thumbnail_url": event.thumbnail_url,
            "stats": dict(event.stats),
            "has_market": False,
            "is_featured": False,
            "metadata": dict(event.metadata),
            "updated_at": now,
        }

    @staticmethod
    def _merge_event(current: Row, incoming: Row) -> Row:
        """Apply the status guard and estimated-start rule to an event update."""
        status = EventStatus(current["status"])
        if status in TERMINAL_STATUSES:
            # finished and cancelled rows only get their references repaired
            return {column: incoming[column] for column in EVENT_REFERENCES}

        merged = dict(incoming)
        guarded = guard_status(status, EventStatus(incoming["status"]))
        if guarded.value != incoming["status"]:
            merged["status"] = current["status"]
            merged["status_detail"] = current["status_detail"]

        metadata = {**(current.get("metadata") or {}), **incoming["metadata"]}
        if incoming["metadata"].get("start_time_estimated"):
            merged["start_time"] = current["start_time"]
        else:
            metadata.pop("start_time_estimated", None)
        merged["metadata"] = metadata
        return merged

    # ========================================================================
    # Prefetch
    # ========================================================================

    def _existing(self, table: str, external_ids: List[str]) -> Dict[str, Row]:
        rows = self.store.select(table, in_filters={"external_id": _unique(external_ids)})
        return {f"{row['source']}:{row['external_id']}": row for row in rows}

    def _league_index(self, external_ids: List[str], names: List[str]) -> Dict[str, str]:
        index: Dict[str, str] = {}
        if external_ids:
            for row in self.store.select(
                LEAGUES,
                in_filters={"external_id": external_ids},
                columns=("id", "external_id", "source", "sport"),
            ):
                index[f"{row['source']}:{row['external_id']}"] = row["id"]
                index.setdefault(f"{row['external_id']}:{row['sport']}", row["id"])
                index.setdefault(row["external_id"], row["id"])
        if names:
            for row in self.store.select(LEAGUES, in_filters={"name": names}, columns=("id", "name")):
                index.setdefault(f"name:{row['name'].strip().lower()}", row["id"])
        return index

    def _team_index(self, external_ids: List[str]) -> Dict[str, str]:
        index: Dict[str, str] = {}
        if external_ids:
            for row in self.store.select(
                TEAMS,
                in_filters={"external_id": external_ids},
                columns=("id", "external_id", "source", "sport"),
            ):
                index[f"{row['source']}:{row['external_id']}"] = row["id"]
                index.setdefault(f"{row['external_id']}:{row['sport']}", row["id"])
        return index

    @staticmethod
    def _resolve_league(index: Dict[str, str], source, sport: str, external_id: Optional[str]) -> Optional[str]:
        if not external_id:
            return None
        return (
            index.get(f"{source}:{external_id}")
            or index.get(f"{external_id}:{sport}")
            or index.get(external_id)
        )

    @staticmethod
    def _resolve_team(index: Dict[str, str], source, sport: str, external_id: Optional[str]) -> Optional[str]:
        if not external_id:
            return None
        return index.get(f"{source}:{external_id}") or index.get(f"{external_id}:{sport}")

    # ========================================================================
    # Write phase
    # ========================================================================

    def _write(
        self,
        table: str,
        rows: List[Tuple[str, Row]],
        existing: Dict[str, Row],
        references: Sequence[str] = (),
        merge: Optional[Callable[[Row, Row], Row]] = None,
        on_insert: Optional[Callable[[Row], DomainEvent]] = None,
        on_change: Optional[Callable[[Row], DomainEvent]] = None,
    ) -> Tuple[UpsertResult, _Written]:
        result = UpsertResult()
        written = _Written.empty()
        inserts: Dict[str, Row] = {}
        updates: List[Tuple[Row, Row]] = []

        for identity, row in rows:
            current = existing.get(identity)
            if current is None:
                if identity in inserts:
                    # repeated within one batch: the later record wins
                    row["id"] = inserts[identity]["id"]
                    result.updated += 1
                else:
                    row["id"] = str(uuid.uuid4())
                row["created_at"] = row["updated_at"]
                inserts[identity] = row
                continue

            for column in references:
                if row[column] is None:
                    row[column] = current[column]
            for column in INSERT_ONLY.get(table, ()):
                row.pop(column, None)
            if merge is not None:
                row = merge(current, row)
            changes = {
                column: value for column, value in row.items()
                if column != "updated_at" and current.get(column) != value
            }
            updates.append((current, changes))

        for chunk_written in self._insert_chunks(table, list(inserts.values()), result):
            result.created += 1
            written.rows.append((chunk_written["id"], [on_insert(chunk_written)] if on_insert else []))

        for current, changes in updates:
            if not changes:
                result.updated += 1
                continue
            changes["updated_at"] = datetime.utcnow()
            try:
                with self.store.savepoint():
                    self.store.update(table, changes, {"id": current["id"]})
            except PersistenceError as e:
                logger.warning(f"Update failed for {table} row {current['id']}: {e}")
                result.errors += 1
                continue
            result.updated += 1
            merged = {**current, **changes}
            written.rows.append((current["id"], [on_change(merged)] if on_change else []))

        return result, written

    def _insert_chunks(self, table: str, rows: List[Row], result: UpsertResult) -> Iterator[Row]:
        """Yield every row that was written; failures are counted on ``result``."""
        for chunk in _chunks(rows, self.batch_size):
            try:
                with self.store.savepoint():
                    self.store.upsert(table, list(chunk))
                yield from chunk
                continue
            except PersistenceError as e:
                logger.error(f"Batch upsert into {table} failed, retrying per row: {e}")

            for row in chunk:
                try:
                    with self.store.savepoint():
                        self.store.upsert(table, [row])
                except PersistenceError as e:
                    logger.warning(f"Single upsert failed for {table} {row['source']}:{row['external_id']}: {e}")
                    result.errors += 1
                    continue
                yield row

    # ========================================================================
    # Commit phase
    # ========================================================================

    async def _finish(self, entity: str, result: UpsertResult, written: _Written) -> UpsertResult:
        try:
            if self.dispatcher is None:
                self.store.commit()
            else:
                uow = UnitOfWork(self.dispatcher, on_rollback=self.store.rollback)
                uow.begin()
                uow.add_operation(self.store.commit)
                for aggregate_id, events in written.rows:
                    uow.register_events(aggregate_id, events)
                await uow.commit()
        except PersistenceError as e:
            logger.error(f"Commit of {entity} batch failed: {e}")
            self.store.rollback()
            result = UpsertResult(errors=result.created + result.updated + result.errors)
        except DispatchError as e:
            # rows are committed; subscribers catch up on the next change
            logger.error(f"Publishing {entity} events failed after commit: {e}")

        record_upsert(entity, result.created, result.updated, result.errors)
        logger.info(
            f"{entity.capitalize()} upsert complete: {result.created} created, "
            f"{result.updated} updated, {result.errors} errors"
        )
        return result

    @staticmethod
    def _failed(entity: str, count: int) -> UpsertResult:
        record_upsert(entity, 0, 0, count)
        return UpsertResult(errors=count)
