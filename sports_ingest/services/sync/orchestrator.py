"""ETL orchestrator for the API-Sports and TheSportsDB ingestion cycle.

This orchestrator coordinates:
- Fetching leagues, teams and games from both providers
- Transforming provider payloads into canonical records
- Cross-source deduplication
- Batch upserts (which publish the domain events)
- Default market generation
- Sync log rows and health monitoring

Sync Schedule (see core/scheduler.py):
- games: hourly
- live: every 2 minutes
- leagues: daily at 3am UTC
"""
import asyncio
import uuid
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from typing import Any, Awaitable, Callable, Dict, Iterator, List, Optional, Set, TypeVar

from sqlalchemy.orm import Session

from sports_ingest.core.errors import (
    BudgetExhausted, DispatchError, IngestionError, PersistenceError, ProviderUnavailable,
)
from sports_ingest.core.logging import correlation_scope, get_logger
from sports_ingest.events import sports_events
from sports_ingest.events.dispatcher import EventDispatcher
from sports_ingest.models.canonical import CanonicalEvent, DataSource, SportKind
from sports_ingest.services.clients.api_sports import APISportsClient
from sports_ingest.services.clients.thesportsdb import TheSportsDBClient
from sports_ingest.services.core.circuit_breaker import get_all_breaker_states
from sports_ingest.services.sync.dedup import DedupResult, Deduplicator
from sports_ingest.services.sync.markets import DEFAULT_MARKET_LIMIT, MarketGenerator
from sports_ingest.services.sync.store import RelationalStore
from sports_ingest.services.sync.time_shift import NoTimeShift, TimeShiftStrategy, build_strategy
from sports_ingest.services.sync.upsert import LEAGUES, BatchUpsertEngine, UpsertResult
from sports_ingest.services.transformers import api_sports as apisports_transform
from sports_ingest.services.transformers import thesportsdb as thesportsdb_transform

logger = get_logger(__name__)

T = TypeVar("T")

APISPORTS = "apisports"
THESPORTSDB = "thesportsdb"

SYNC_LOGS = "sports_sync_logs"
SYNC_TYPES = ("leagues", "games", "live")

SPORT_ORDER = [
    SportKind.FOOTBALL,
    SportKind.NBA,
    SportKind.NFL,
    SportKind.BASKETBALL,
    SportKind.HOCKEY,
    SportKind.MMA,
    SportKind.FORMULA1,
    SportKind.RUGBY,
    SportKind.VOLLEYBALL,
    SportKind.HANDBALL,
    SportKind.AFL,
]


def _source_family(source: str) -> str:
    return THESPORTSDB if source == DataSource.THESPORTSDB.value else APISPORTS


# ============================================================================
# RESULTS
# ============================================================================

@dataclass
class SourceStats:
    """Per-provider counters for one sync run."""
    fetched: int = 0
    created: int = 0
    updated: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)
    succeeded: bool = False

    def add(self, result: UpsertResult) -> None:
        self.created += result.created
        self.updated += result.updated
        self.failed += result.errors

    def merge(self, other: "SourceStats") -> None:
        self.fetched += other.fetched
        self.created += other.created
        self.updated += other.updated
        self.failed += other.failed
        self.errors.extend(other.errors)
        self.succeeded = self.succeeded or other.succeeded


@dataclass
class ETLSyncResult:
    """
    Outcome of a sport run or of a whole cycle.

    A cycle result carries its per-sport results in ``sports`` and the
    summed counters at the top level.
    """
    sync_type: str
    sport: Optional[str] = None
    success: bool = False
    skipped: bool = False
    sources: Dict[str, SourceStats] = field(
        default_factory=lambda: {APISPORTS: SourceStats(), THESPORTSDB: SourceStats()}
    )
    duplicates_found: int = 0
    merged_records: int = 0
    markets_generated: int = 0
    duration_ms: int = 0
    errors: List[str] = field(default_factory=list)
    sports: Dict[str, "ETLSyncResult"] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.utcnow)

    @property
    def records_fetched(self) -> int:
        return sum(s.fetched for s in self.sources.values())

    @property
    def records_created(self) -> int:
        return sum(s.created for s in self.sources.values())

    @property
    def records_updated(self) -> int:
        return sum(s.updated for s in self.sources.values())

    @property
    def records_failed(self) -> int:
        return sum(s.failed for s in self.sources.values())

    def all_errors(self) -> List[str]:
        return self.errors + [e for s in self.sources.values() for e in s.errors]

    def record_dedup(self, dedup: DedupResult) -> None:
        self.duplicates_found += dedup.duplicates_found
        self.merged_records += dedup.merged_records

    def absorb(self, other: "ETLSyncResult") -> None:
        """Add a sport result to this cycle result."""
        self.sports[other.sport] = other
        for name, stats in other.sources.items():
            self.sources.setdefault(name, SourceStats()).merge(stats)
        self.duplicates_found += other.duplicates_found
        self.merged_records += other.merged_records
        self.markets_generated += other.markets_generated
        self.errors.extend(other.errors)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "success": self.success,
            "skipped": self.skipped,
            "sync_type": self.sync_type,
            "sport": self.sport,
            "sources": {
                name: {k: v for k, v in asdict(stats).items() if k != "succeeded"}
                for name, stats in self.sources.items()
            },
            "deduplication": {
                "duplicates_found": self.duplicates_found,
                "merged_records": self.merged_records,
            },
            "markets_generated": self.markets_generated,
            "duration_ms": self.duration_ms,
            "errors": self.errors,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.sports:
            data["sports"] = {sport: result.to_dict() for sport, result in self.sports.items()}
        return data


@dataclass
class ETLConfig:
    """Orchestrator knobs, usually built from settings."""
    enable_apisports: bool = True
    enable_thesportsdb: bool = True
    batch_size: int = 10
    delay_between_batches_ms: int = 2000
    deduplicate_by_name: bool = True
    generate_markets: bool = True
    fuzzy_dedup: bool = False
    fuzzy_threshold: int = 90
    upsert_batch_size: int = 50
    market_limit: int = DEFAULT_MARKET_LIMIT
    time_shift_strategy: str = NoTimeShift.name

    @classmethod
    def from_settings(cls, settings) -> "ETLConfig":
        return cls(
            enable_apisports=settings.ETL_ENABLE_APISPORTS,
            enable_thesportsdb=settings.ETL_ENABLE_THESPORTSDB,
            batch_size=settings.ETL_BATCH_SIZE,
            delay_between_batches_ms=settings.ETL_DELAY_BETWEEN_BATCHES_MS,
            deduplicate_by_name=settings.ETL_DEDUPLICATE_BY_NAME,
            generate_markets=settings.ETL_GENERATE_MARKETS,
            fuzzy_dedup=settings.ETL_FUZZY_DEDUP,
            fuzzy_threshold=settings.ETL_FUZZY_THRESHOLD,
            upsert_batch_size=settings.UPSERT_BATCH_SIZE,
            time_shift_strategy=settings.ETL_TIME_SHIFT_STRATEGY,
        )


# ============================================================================
# ORCHESTRATOR
# ============================================================================

class ETLOrchestrator:
    """
    Coordinates ingestion cycles across both providers.

    This is the entry point for the ingestion core; the scheduler and the
    sync routes only ever call the public ``sync_*`` methods.

    Args:
        session_factory: Returns a new SQLAlchemy session (one per sport run)
        apisports: API-Sports client, or None to disable the provider
        thesportsdb: TheSportsDB client, or None to disable the provider
        dispatcher: Pending-event buffer; its bus also receives
            ``sports.sync.completed``. None disables event publishing.
        config: Orchestrator knobs (defaults to ``ETLConfig()``)
        strategy: Upcoming-games strategy (defaults to the configured one)
        sleep: Awaitable sleep used between sport batches

    Example:
        orchestrator = ETLOrchestrator(SessionLocal, apisports, thesportsdb, dispatcher)
        result = await orchestrator.sync_all_sports("games")
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        apisports: Optional[APISportsClient] = None,
        thesportsdb: Optional[TheSportsDBClient] = None,
        dispatcher: Optional[EventDispatcher] = None,
        config: Optional[ETLConfig] = None,
        strategy: Optional[TimeShiftStrategy] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.session_factory = session_factory
        self.apisports = apisports
        self.thesportsdb = thesportsdb
        self.dispatcher = dispatcher
        self.config = config or ETLConfig()
        self.strategy = strategy or build_strategy(self.config.time_shift_strategy)
        self.deduplicator = Deduplicator(
            by_name=self.config.deduplicate_by_name,
            fuzzy=self.config.fuzzy_dedup,
            fuzzy_threshold=self.config.fuzzy_threshold,
        )
        self._sleep = sleep

        self.is_syncing = False
        self.last_sync_time: Optional[datetime] = None
        self.last_result: Optional[ETLSyncResult] = None
        # Providers whose budget ran out during the current cycle
        self._exhausted: Set[str] = set()

    # ========================================================================
    # ENTRY POINTS
    # ========================================================================

    async def sync_all_sports(self, sync_type: str = "games") -> ETLSyncResult:
        """
        Run one ingestion cycle over every sport.

        Sports run in order, in batches of ``batch_size`` with a pause between
        batches. A failing sport never stops the cycle; the cycle succeeds when
        at least one sport had a provider call succeed.

        Args:
            sync_type: One of leagues, games, live

        Returns:
            Cycle result with per-sport results; ``skipped`` when a cycle is
            already running
        """
        self._check_sync_type(sync_type)
        if self.is_syncing:
            logger.warning("Sync already in progress, skipping")
            return ETLSyncResult(sync_type=sync_type, skipped=True, errors=["Sync already in progress"])

        self.is_syncing = True
        self._exhausted = set()
        start_time = datetime.utcnow()
        cycle = ETLSyncResult(sync_type=sync_type)

        try:
            with correlation_scope(prefix="sync") as cycle_id:
                logger.info(f"Starting {sync_type} sync for {len(SPORT_ORDER)} sports")
                batch_size = max(1, self.config.batch_size)

                for offset in range(0, len(SPORT_ORDER), batch_size):
                    if offset:
                        await self._sleep(self.config.delay_between_batches_ms / 1000)
                    for sport in SPORT_ORDER[offset:offset + batch_size]:
                        cycle.absorb(await self._run_sport(sport, sync_type))

                cycle.success = any(result.success for result in cycle.sports.values())
                cycle.duration_ms = int((datetime.utcnow() - start_time).total_seconds() * 1000)
                self.last_sync_time = datetime.utcnow()
                self.last_result = cycle

                logger.info(
                    f"{sync_type} sync complete: fetched={cycle.records_fetched}, "
                    f"created={cycle.records_created}, updated={cycle.records_updated}, "
                    f"failed={cycle.records_failed}, duration={cycle.duration_ms}ms"
                )
                await self._publish_completed(cycle, cycle_id)
        finally:
            self.is_syncing = False

        return cycle

    async def sync_sport(self, sport: "str | SportKind", sync_type: str = "games", **options) -> ETLSyncResult:
        """
        Run one sync type for one sport, outside of a full cycle.

        Args:
            sport: Sport to sync
            sync_type: One of leagues, games, live
            **options: league, season, day for games syncs

        Returns:
            Sport result
        """
        sport = SportKind.parse(sport)
        self._check_sync_type(sync_type)
        if not self.is_syncing:
            self._exhausted = set()

        with correlation_scope(prefix="sync") as cycle_id:
            result = await self._run_sport(sport, sync_type, **options)
            await self._publish_completed(result, cycle_id)
        return result

    async def sync_leagues_for_sport(self, sport: "str | SportKind") -> ETLSyncResult:
        return await self.sync_sport(sport, "leagues")

    async def sync_games_for_sport(
        self,
        sport: "str | SportKind",
        league: Optional[Any] = None,
        season: Optional[Any] = None,
        day: Optional[date] = None,
    ) -> ETLSyncResult:
        """
        Sync upcoming games for one sport.

        Args:
            sport: Sport to sync
            league: API-Sports league id to restrict the fetch to
            season: API-Sports season (defaults to the day's year with a league)
            day: Day to fetch (defaults to today, UTC)
        """
        return await self.sync_sport(sport, "games", league=league, season=season, day=day)

    async def sync_live_scores_for_sport(self, sport: "str | SportKind") -> ETLSyncResult:
        return await self.sync_sport(sport, "live")

    async def sync_live_scores_all_sports(self) -> ETLSyncResult:
        return await self.sync_all_sports("live")

    # ========================================================================
    # SPORT RUNS
    # ========================================================================

    async def _run_sport(self, sport: SportKind, sync_type: str, **options) -> ETLSyncResult:
        start_time = datetime.utcnow()
        result = ETLSyncResult(sync_type=sync_type, sport=sport.value)
        logger.info(f"Syncing {sync_type} for {sport.value}")

        with self._store() as store:
            log_id = self._start_log(store, sport, sync_type, start_time)
            crashed = False
            try:
                if sync_type == "leagues":
                    await self._sync_leagues(store, sport, result)
                elif sync_type == "games":
                    await self._sync_games(store, sport, result, **options)
                else:
                    await self._sync_live(store, sport, result)
            except IngestionError as e:
                logger.error(f"{sync_type} sync for {sport.value} failed: {e}")
                result.errors.append(str(e))
            except Exception as e:
                # one sport crashing must not stop the remaining sports
                logger.exception(f"{sync_type} sync for {sport.value} crashed")
                result.errors.append(f"{type(e).__name__}: {e}")
                store.rollback()
                crashed = True

            result.success = not crashed and any(stats.succeeded for stats in result.sources.values())
            result.duration_ms = int((datetime.utcnow() - start_time).total_seconds() * 1000)
            self._finish_log(store, log_id, result, start_time)

        logger.info(
            f"{sport.value} {sync_type}: success={result.success}, "
            f"created={result.records_created}, updated={result.records_updated}, "
            f"errors={len(result.all_errors())}"
        )
        return result

    async def _sync_leagues(self, store: RelationalStore, sport: SportKind, result: ETLSyncResult) -> None:
        leagues = []

        if self._enabled(THESPORTSDB):
            stats = result.sources[THESPORTSDB]
            raw = await self._fetch(
                THESPORTSDB, stats, f"thesportsdb leagues ({sport.value})",
                lambda: self.thesportsdb.get_leagues_by_sport(sport),
            )
            if raw:
                stats.fetched += len(raw)
                leagues.extend(thesportsdb_transform.transform_leagues(raw, sport)[0])

        if self._enabled(APISPORTS):
            stats = result.sources[APISPORTS]
            raw = await self._fetch(
                APISPORTS, stats, f"apisports leagues ({sport.value})",
                lambda: self.apisports.get_leagues(sport=sport),
            )
            if raw:
                stats.fetched += len(raw)
                leagues.extend(apisports_transform.transform_leagues(raw, sport)[0])

        deduped = self.deduplicator.deduplicate_leagues(leagues)
        result.record_dedup(deduped)
        await self._upsert(result, deduped.records, self._engine(store).upsert_leagues)

    async def _sync_games(
        self,
        store: RelationalStore,
        sport: SportKind,
        result: ETLSyncResult,
        league: Optional[Any] = None,
        season: Optional[Any] = None,
        day: Optional[date] = None,
    ) -> None:
        engine = self._engine(store)
        events: List[CanonicalEvent] = []

        if self._enabled(THESPORTSDB):
            events.extend(await self._thesportsdb_games(store, engine, sport, result.sources[THESPORTSDB], day))

        if self._enabled(APISPORTS):
            stats = result.sources[APISPORTS]
            games = await self._fetch(
                APISPORTS, stats, f"apisports games ({sport.value})",
                lambda: self.strategy.fetch_upcoming(self.apisports, sport, league, season, day),
            )
            if games is not None:
                stats.fetched += games.fetched
                if games.shifted:
                    logger.info(f"{len(games.events)} {sport.value} games were time-shifted")
                await self._upsert_embedded_teams(engine, games.events, stats)
                events.extend(games.events)

        deduped = self.deduplicator.deduplicate_events(events)
        result.record_dedup(deduped)
        await self._upsert(result, deduped.records, engine.upsert_events)

        if self.config.generate_markets and deduped.records:
            generator = MarketGenerator(store, self.dispatcher)
            result.markets_generated = await generator.generate_default_markets(self.config.market_limit)

    async def _thesportsdb_games(
        self,
        store: RelationalStore,
        engine: BatchUpsertEngine,
        sport: SportKind,
        stats: SourceStats,
        day: Optional[date],
    ) -> List[CanonicalEvent]:
        """Teams and upcoming events per active league, or the day's events when no league is known."""
        leagues = store.select(
            LEAGUES,
            filters={"sport": sport.value, "source": DataSource.THESPORTSDB.value, "is_active": True},
            order_by="display_order",
            limit=self.config.batch_size,
        )

        if not leagues:
            day = day or datetime.utcnow().date()
            logger.info(f"No {sport.value} leagues stored, fetching TheSportsDB events for {day}")
            raw = await self._fetch(
                THESPORTSDB, stats, f"thesportsdb events {day} ({sport.value})",
                lambda: self.thesportsdb.get_events_by_date(day, sport),
            )
            if not raw:
                return []
            stats.fetched += len(raw)
            return thesportsdb_transform.transform_events(raw)[0]

        events: List[CanonicalEvent] = []
        for league in leagues:
            if THESPORTSDB in self._exhausted:
                break
            league_id = league["external_id"]

            raw_teams = await self._fetch(
                THESPORTSDB, stats, f"thesportsdb teams (league {league_id})",
                lambda: self.thesportsdb.get_teams_by_league(league_id),
            )
            if raw_teams:
                stats.fetched += len(raw_teams)
                teams = thesportsdb_transform.transform_teams(raw_teams)[0]
                stats.add(await engine.upsert_teams(self.deduplicator.deduplicate_teams(teams, by_name=False).records))

            raw_events = await self._fetch(
                THESPORTSDB, stats, f"thesportsdb events (league {league_id})",
                lambda: self.thesportsdb.get_upcoming_events_by_league(league_id),
            )
            if raw_events:
                stats.fetched += len(raw_events)
                events.extend(thesportsdb_transform.transform_events(raw_events)[0])

        return events

    async def _sync_live(self, store: RelationalStore, sport: SportKind, result: ETLSyncResult) -> None:
        engine = self._engine(store)
        events: List[CanonicalEvent] = []

        # the free tier only exposes the latest soccer results
        if self._enabled(THESPORTSDB) and (self.thesportsdb.is_premium or sport == SportKind.FOOTBALL):
            stats = result.sources[THESPORTSDB]
            premium = self.thesportsdb.is_premium
            raw = await self._fetch(
                THESPORTSDB, stats, f"thesportsdb live ({sport.value})",
                lambda: self.thesportsdb.get_live_scores(sport if premium else None),
            )
            if raw:
                stats.fetched += len(raw)
                live = thesportsdb_transform.transform_live_scores(raw, premium=premium)[0]
                events.extend(event for event in live if event.sport == sport)

        if self._enabled(APISPORTS):
            stats = result.sources[APISPORTS]
            raw = await self._fetch(
                APISPORTS, stats, f"apisports live ({sport.value})",
                lambda: self.apisports.get_live_games(sport=sport),
            )
            if raw:
                stats.fetched += len(raw)
                live = apisports_transform.transform_events(raw, sport)[0]
                await self._upsert_embedded_teams(engine, live, stats)
                events.extend(live)

        deduped = self.deduplicator.deduplicate_events(events)
        result.record_dedup(deduped)
        await self._upsert(result, deduped.records, engine.upsert_events)

    # ========================================================================
    # HELPERS
    # ========================================================================

    def _enabled(self, provider: str) -> bool:
        if provider in self._exhausted:
            return False
        if provider == APISPORTS:
            return self.config.enable_apisports and self.apisports is not None
        return self.config.enable_thesportsdb and self.thesportsdb is not None

    async def _fetch(
        self,
        provider: str,
        stats: SourceStats,
        label: str,
        call: Callable[[], Awaitable[T]],
    ) -> Optional[T]:
        """
        Await one provider call, recording its failure instead of raising.

        ``BudgetExhausted`` also disables the provider until the cycle ends.
        """
        if provider in self._exhausted:
            return None
        try:
            value = await call()
        except BudgetExhausted as e:
            self._exhausted.add(provider)
            stats.errors.append(f"{label}: {e}")
            logger.warning(f"{provider} budget exhausted, skipping it for the rest of the cycle: {e}")
            return None
        except ProviderUnavailable as e:
            stats.errors.append(f"{label}: {e}")
            logger.error(f"{label} failed: {e}")
            return None
        stats.succeeded = True
        return value

    async def _upsert(self, result: ETLSyncResult, records: List[Any],
                      write: Callable[[List[Any]], Awaitable[UpsertResult]]) -> None:
        """Write ``records`` per provider so each source keeps its own counters."""
        groups: Dict[str, List[Any]] = {}
        for record in records:
            groups.setdefault(_source_family(record.source), []).append(record)
        for family, group in groups.items():
            result.sources[family].add(await write(group))

    async def _upsert_embedded_teams(self, engine: BatchUpsertEngine, events: List[CanonicalEvent],
                                     stats: SourceStats) -> None:
        teams = [team for event in events for team in apisports_transform.embedded_teams(event)]
        if teams:
            stats.add(await engine.upsert_teams(self.deduplicator.deduplicate_teams(teams, by_name=False).records))

    def _engine(self, store: RelationalStore) -> BatchUpsertEngine:
        return BatchUpsertEngine(store, self.dispatcher, batch_size=self.config.upsert_batch_size)

    @contextmanager
    def _store(self) -> Iterator[RelationalStore]:
        session = self.session_factory()
        try:
            yield RelationalStore(session)
        finally:
            session.close()

    @staticmethod
    def _check_sync_type(sync_type: str) -> None:
        if sync_type not in SYNC_TYPES:
            raise ValueError(f"Unknown sync type: {sync_type} (expected one of {', '.join(SYNC_TYPES)})")

    async def _publish_completed(self, result: ETLSyncResult, cycle_id: str) -> None:
        if self.dispatcher is None:
            return
        message = sports_events.SportsSyncMessage(
            sync_type=result.sync_type,
            records_fetched=result.records_fetched,
            records_created=result.records_created,
            records_updated=result.records_updated,
            duration_ms=result.duration_ms,
            sport=result.sport,
            success=result.success,
        )
        try:
            await self.dispatcher.event_bus.publish(sports_events.sync_completed(message, cycle_id))
        except DispatchError as e:
            logger.error(f"Publishing sync.completed failed: {e}")

    # ========================================================================
    # SYNC LOGS
    # ========================================================================

    def _start_log(self, store: RelationalStore, sport: SportKind, sync_type: str,
                   start_time: datetime) -> Optional[str]:
        log_id = str(uuid.uuid4())
        try:
            store.insert(SYNC_LOGS, [{
                "id": log_id,
                "source": DataSource.ETL_ORCHESTRATOR.value,
                "sport": sport.value,
                "sync_type": sync_type,
                "status": "running",
                "records_fetched": 0,
                "records_created": 0,
                "records_updated": 0,
                "records_failed": 0,
                "started_at": start_time,
            }])
            store.commit()
        except PersistenceError as e:
            store.rollback()
            logger.error(f"Could not create sync log for {sport.value} {sync_type}: {e}")
            return None
        return log_id

    def _finish_log(self, store: RelationalStore, log_id: Optional[str], result: ETLSyncResult,
                    start_time: datetime) -> None:
        if log_id is None:
            return
        errors = result.all_errors()
        try:
            store.update(SYNC_LOGS, {
                "status": "completed" if result.success else "failed",
                "records_fetched": result.records_fetched,
                "records_created": result.records_created,
                "records_updated": result.records_updated,
                "records_failed": result.records_failed,
                "error_message": "; ".join(errors) if errors else None,
                "duration_ms": int((datetime.utcnow() - start_time).total_seconds() * 1000),
                "completed_at": datetime.utcnow(),
            }, {"id": log_id})
            store.commit()
        except PersistenceError as e:
            store.rollback()
            logger.error(f"Could not update sync log {log_id}: {e}")

    def get_sync_logs(self, limit: int = 20, sport: Optional[str] = None) -> List[Dict[str, Any]]:
        """Most recent sync log rows, newest first."""
        with self._store() as store:
            rows = store.select(
                SYNC_LOGS,
                filters={"sport": sport} if sport else None,
                order_by="-started_at",
                limit=limit,
            )
        for row in rows:
            for key in ("started_at", "completed_at"):
                if row.get(key) is not None:
                    row[key] = row[key].isoformat()
        return rows

    # ========================================================================
    # MONITORING
    # ========================================================================

    def get_status(self) -> Dict[str, Any]:
        """
        Orchestrator status for the status endpoint.

        Returns:
            is_syncing, last sync time and result, config, provider budget
            usage, breaker states and an overall health_status
        """
        clients = [client for client in (self.apisports, self.thesportsdb) if client is not None]
        breakers = get_all_breaker_states(client.breaker for client in clients)

        open_count = sum(1 for state in breakers.values() if state["state"] == "open")
        if not breakers or open_count == len(breakers):
            health_status = "unhealthy"
        elif open_count or self._exhausted:
            health_status = "degraded"
        else:
            health_status = "healthy"

        return {
            "is_syncing": self.is_syncing,
            "last_sync_time": self.last_sync_time.isoformat() if self.last_sync_time else None,
            "last_result": self.last_result.to_dict() if self.last_result else None,
            "config": {**asdict(self.config), "time_shift_strategy": self.strategy.name},
            "usage": self.get_usage(),
            "breakers": breakers,
            "health_status": health_status,
        }

    def get_usage(self) -> Dict[str, Any]:
        return {
            APISPORTS: self.apisports.governor.usage_stats() if self.apisports else None,
            THESPORTSDB: self.thesportsdb.governor.usage_stats() if self.thesportsdb else None,
        }

    async def cleanup(self):
        """Close provider HTTP clients."""
        for client in (self.apisports, self.thesportsdb):
            if client is not None:
                await client.close()
