"""
TheSportsDB client.

v1 (free tier, key in the path) for catalogue and schedule lookups; v2
(premium, ``X-API-KEY`` header) for multi-sport live scores. The free key
"3" only gets the soccer live feed.

API Documentation: https://www.thesportsdb.com/docs_api_examples
"""
from datetime import date
from typing import Any, Dict, List, Optional

import httpx

from sports_ingest.core.logging import get_logger
from sports_ingest.models.canonical import SportKind
from sports_ingest.services.clients.base_client import BaseSportsClient, RetryPolicy
from sports_ingest.services.core.circuit_breaker import ProviderCircuitBreaker
from sports_ingest.services.core.rate_governor import RateGovernor

logger = get_logger(__name__)

BASE_URL_V1 = "https://www.thesportsdb.com/api/v1/json"
BASE_URL_V2 = "https://www.thesportsdb.com/api/v2/json"
FREE_API_KEY = "3"

SPORT_TO_THESPORTSDB: Dict[SportKind, str] = {
    SportKind.AFL: "Australian Football",
    SportKind.BASEBALL: "Baseball",
    SportKind.BASKETBALL: "Basketball",
    SportKind.FOOTBALL: "Soccer",
    SportKind.FORMULA1: "Motorsport",
    SportKind.HANDBALL: "Handball",
    SportKind.HOCKEY: "Ice Hockey",
    SportKind.MMA: "Fighting",
    SportKind.NBA: "Basketball",
    SportKind.NFL: "American Football",
    SportKind.RUGBY: "Rugby",
    SportKind.VOLLEYBALL: "Volleyball",
}

# Basketball is listed before NBA so the generic kind wins the reverse lookup
THESPORTSDB_TO_SPORT: Dict[str, SportKind] = {}
for _kind, _name in SPORT_TO_THESPORTSDB.items():
    THESPORTSDB_TO_SPORT.setdefault(_name, _kind)


def detect_sport(sport_name: Optional[str]) -> SportKind:
    """Map a TheSportsDB ``strSport`` value to a SportKind (default football)."""
    return THESPORTSDB_TO_SPORT.get(sport_name or "", SportKind.FOOTBALL)


class TheSportsDBClient(BaseSportsClient):
    """
    TheSportsDB v1/v2 client. Returns raw record lists.

    Example:
        client = TheSportsDBClient("3", governor, breaker)
        leagues = await client.get_leagues_by_sport(SportKind.HOCKEY)
    """

    provider = "thesportsdb"

    def __init__(
        self,
        api_key: str,
        governor: RateGovernor,
        breaker: ProviderCircuitBreaker,
        timeout: float = 30.0,
        retry_policy: Optional[RetryPolicy] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key or FREE_API_KEY
        super().__init__(
            base_url=f"{BASE_URL_V1}/{self.api_key}",
            governor=governor,
            breaker=breaker,
            timeout=timeout,
            retry_policy=retry_policy,
            transport=transport,
        )
        self.is_premium = self.api_key != FREE_API_KEY and len(self.api_key) > 5
        logger.info(f"TheSportsDB client initialized with {'premium' if self.is_premium else 'free'} tier")

    async def _records(self, path: str, key: str, params: Optional[Dict[str, Any]] = None,
                       tag: Optional[str] = None, **kwargs) -> List[Dict[str, Any]]:
        payload = await self.request(path, params=params, tag=tag, **kwargs)
        # Empty lookups come back as {"key": null}
        return (payload or {}).get(key) or []

    # ========================================================================
    # CATALOGUE
    # ========================================================================

    async def get_all_sports(self) -> List[Dict[str, Any]]:
        return await self._records("/all_sports.php", "sports")

    async def get_leagues_by_sport(self, sport: SportKind) -> List[Dict[str, Any]]:
        """Leagues for a sport. The search endpoint nests them under 'countries'."""
        return await self._records(
            "/search_all_leagues.php",
            "countries",
            params={"s": SPORT_TO_THESPORTSDB[sport]},
            tag=sport.value,
        )

    async def get_teams_by_league(self, league_id: str) -> List[Dict[str, Any]]:
        return await self._records("/lookup_all_teams.php", "teams", params={"id": league_id})

    async def search_teams(self, query: str) -> List[Dict[str, Any]]:
        return await self._records("/searchteams.php", "teams", params={"t": query})

    async def get_team_by_id(self, team_id: str) -> Optional[Dict[str, Any]]:
        teams = await self._records("/lookupteam.php", "teams", params={"id": team_id})
        return teams[0] if teams else None

    # ========================================================================
    # EVENTS
    # ========================================================================

    async def get_events_by_date(self, day: date, sport: Optional[SportKind] = None) -> List[Dict[str, Any]]:
        params = {"d": day.isoformat()}
        if sport is not None:
            params["s"] = SPORT_TO_THESPORTSDB[sport]
        return await self._records(
            "/eventsday.php", "events", params=params, tag=sport.value if sport else None
        )

    async def get_upcoming_events_by_league(self, league_id: str) -> List[Dict[str, Any]]:
        return await self._records("/eventsnextleague.php", "events", params={"id": league_id})

    async def get_past_events_by_league(self, league_id: str) -> List[Dict[str, Any]]:
        return await self._records("/eventspastleague.php", "events", params={"id": league_id})

    async def get_event_by_id(self, event_id: str) -> Optional[Dict[str, Any]]:
        events = await self._records("/lookupevent.php", "events", params={"id": event_id})
        return events[0] if events else None

    async def get_events_by_round(self, league_id: str, round_number: int, season: str) -> List[Dict[str, Any]]:
        return await self._records(
            "/eventsround.php", "events", params={"id": league_id, "r": round_number, "s": season}
        )

    async def get_live_scores(self, sport: Optional[SportKind] = None) -> List[Dict[str, Any]]:
        """
        Live scores.

        Premium keys use the v2 livescore feed (per sport or 'all'); the free
        tier only has the latest soccer results, in the regular event shape.
        """
        if self.is_premium:
            sport_path = SPORT_TO_THESPORTSDB[sport].lower() if sport else "all"
            return await self._records(
                f"/livescore/{sport_path}",
                "events",
                tag=sport.value if sport else "live",
                base_url=BASE_URL_V2,
                headers={"X-API-KEY": self.api_key},
            )
        return await self._records("/latestsoccer.php", "events", tag="live")
