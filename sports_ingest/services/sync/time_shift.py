"""
Upcoming-games strategies for API-Sports.

``NoTimeShift`` (the default) fetches today's games and stores them as-is.

``DemoTimeShift`` keeps quota-scarce sports populated for demonstrations.
Free API-Sports plans expose little current data outside football and NFL,
so when today's fetch is empty for such a sport it searches past seasons
across a fixed set of league ids and moves the results into the near future
as SCHEDULED events. Select it with ``ETL_TIME_SHIFT_STRATEGY=demo``.
"""
import random
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from sports_ingest.core.errors import BudgetExhausted, ProviderUnavailable
from sports_ingest.core.logging import get_logger
from sports_ingest.models.canonical import CanonicalEvent, EventStatus, SportKind
from sports_ingest.services.clients.api_sports import APISportsClient
from sports_ingest.services.transformers import api_sports as transformers

logger = get_logger(__name__)

LeagueRef = Union[int, str]

UNRESTRICTED_SPORTS = frozenset({SportKind.FOOTBALL, SportKind.NFL})

CANDIDATE_SEASONS = (2024, 2023, 2025)

DEMO_LEAGUES: Dict[SportKind, Sequence[LeagueRef]] = {
    SportKind.BASKETBALL: (12, 1, 2, 5),
    SportKind.AFL: (1,),
    SportKind.HANDBALL: (39, 3, 1, 2),
    SportKind.HOCKEY: (57, 1, 33),
    SportKind.RUGBY: (16, 1, 13, 44),
    SportKind.VOLLEYBALL: (140, 97, 88, 237, 13, 179),
    SportKind.MMA: (),
    SportKind.BASEBALL: (1, 12),
    SportKind.FORMULA1: (1,),
    SportKind.NBA: ("standard",),
}

ENOUGH_GAMES = 20
MAX_SHIFTED_GAMES = 30
SHIFT_SPACING = timedelta(hours=2)


@dataclass
class UpcomingGames:
    """Canonical games returned by a strategy."""
    events: List[CanonicalEvent] = field(default_factory=list)
    fetched: int = 0
    skipped: int = 0
    shifted: bool = False


def format_season(sport: SportKind, season: int) -> Union[int, str]:
    """Season parameter for ``sport`` (basketball uses ``2024-2025``)."""
    if sport == SportKind.BASKETBALL:
        return f"{season}-{season + 1}"
    return season


class TimeShiftStrategy(ABC):
    """How the orchestrator obtains upcoming API-Sports games for a sport."""

    name: str = ""

    @abstractmethod
    async def fetch_upcoming(
        self,
        client: APISportsClient,
        sport: SportKind,
        league: Optional[LeagueRef] = None,
        season: Optional[Union[int, str]] = None,
        day: Optional[date] = None,
    ) -> UpcomingGames:
        """Fetch and transform upcoming games."""

    async def fetch_today(
        self,
        client: APISportsClient,
        sport: SportKind,
        league: Optional[LeagueRef] = None,
        season: Optional[Union[int, str]] = None,
        day: Optional[date] = None,
    ) -> UpcomingGames:
        day = day or datetime.utcnow().date()
        params: Dict[str, Any] = {"date": day.isoformat()}
        if league is not None:
            params["league"] = league
            params["season"] = season or day.year
        raw = await client.get_games(sport=sport, **params) or []
        events, skipped = transformers.transform_events(raw, sport)
        return UpcomingGames(events=events, fetched=len(raw), skipped=skipped)


class NoTimeShift(TimeShiftStrategy):
    """Store what the provider reports for the day, unchanged."""

    name = "off"

    async def fetch_upcoming(self, client, sport, league=None, season=None, day=None) -> UpcomingGames:
        return await self.fetch_today(client, sport, league, season, day)


class DemoTimeShift(TimeShiftStrategy):
    """
    Fill quota-scarce sports with time-shifted historical games.

    Args:
        rng: Random source used to pick a window when more than 30 games match
        clock: Returns "now" (naive UTC)
    """

    name = "demo"

    def __init__(self, rng: Optional[random.Random] = None, clock: Optional[Callable[[], datetime]] = None):
        self.rng = rng or random.Random()
        self.clock = clock or datetime.utcnow

    async def fetch_upcoming(self, client, sport, league=None, season=None, day=None) -> UpcomingGames:
        today = await self.fetch_today(client, sport, league, season, day)
        if today.events or sport in UNRESTRICTED_SPORTS:
            return today

        logger.info(f"[Time Machine] Fetching historical data for {sport.value} and time-shifting")
        raw = await self._historical(client, sport, league)
        if not raw:
            logger.warning(
                f"[Time Machine] No historical data for {sport.value} in seasons "
                f"{', '.join(str(s) for s in CANDIDATE_SEASONS)}"
            )
            return today

        if len(raw) > MAX_SHIFTED_GAMES:
            start = self.rng.randrange(len(raw) - MAX_SHIFTED_GAMES)
            raw = raw[start:start + MAX_SHIFTED_GAMES]

        events, skipped = transformers.transform_events(raw, sport)
        return UpcomingGames(
            events=self.shift(events),
            fetched=today.fetched + len(raw),
            skipped=today.skipped + skipped,
            shifted=True,
        )

    def shift(self, events: List[CanonicalEvent]) -> List[CanonicalEvent]:
        """Move events to now + 2h, now + 4h, ... as SCHEDULED with no scores."""
        now = self.clock()
        return [
            replace(
                event,
                start_time=now + SHIFT_SPACING * (index + 1),
                status=EventStatus.SCHEDULED,
                status_detail=None,
                elapsed_time=None,
                home_score=None,
                away_score=None,
                metadata={**event.metadata, "time_shifted": True, "original_start_time": event.start_time.isoformat()},
            )
            for index, event in enumerate(events)
        ]

    async def _historical(self, client: APISportsClient, sport: SportKind,
                          league: Optional[LeagueRef]) -> List[Dict[str, Any]]:
        leagues = [league] if league is not None else list(DEMO_LEAGUES.get(sport, ()))
        games: List[Dict[str, Any]] = []

        for candidate in CANDIDATE_SEASONS:
            season = format_season(sport, candidate)

            if sport == SportKind.MMA:
                # fights are fetched by season only
                try:
                    games = await client.get_games(sport=sport, season=season) or []
                except ProviderUnavailable as e:
                    logger.error(f"[Time Machine] MMA season {season} failed: {e}")
                    continue
                except BudgetExhausted as e:
                    logger.warning(f"[Time Machine] Budget exhausted during {sport.value} search: {e}")
                    return games
            else:
                for target in leagues:
                    try:
                        result = await client.get_games(sport=sport, season=season, league=target)
                    except ProviderUnavailable as e:
                        logger.debug(f"[Time Machine] No data for league {target} season {season}: {e}")
                        continue
                    except BudgetExhausted as e:
                        # keep what the spent requests already returned
                        logger.warning(
                            f"[Time Machine] Budget exhausted during {sport.value} search, "
                            f"keeping {len(games)} games: {e}"
                        )
                        return games
                    if result:
                        logger.info(
                            f"[Time Machine] Found {len(result)} games for {sport.value} "
                            f"(league {target}, season {season})"
                        )
                        games.extend(result)
                        if len(games) >= ENOUGH_GAMES:
                            break

            # one season with data is enough, seasons are not mixed
            if games:
                break

        return games


def build_strategy(name: str) -> TimeShiftStrategy:
    """Strategy for the ``ETL_TIME_SHIFT_STRATEGY`` setting."""
    if name == DemoTimeShift.name:
        return DemoTimeShift()
    if name == NoTimeShift.name:
        return NoTimeShift()
    raise ValueError(f"Unknown time-shift strategy: {name}")
