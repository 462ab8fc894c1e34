"""
API-Sports client (api-sports.io family of APIs).

One API key and one daily budget cover every sport, but each sport lives on
its own host with slightly different endpoint names. A single client
instance targets any of them through a routing table; ``set_sport`` switches
the current context and every fetch method also accepts an explicit
``sport`` so concurrent callers do not race on the shared context.

Response envelope:
    {"get": ..., "parameters": {...}, "errors": [] | {...}, "results": N,
     "paging": {...}, "response": [...]}
"""
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional, Tuple

import httpx

from sports_ingest.core.errors import BudgetExhausted, ProviderUnavailable
from sports_ingest.core.logging import get_logger
from sports_ingest.models.canonical import APISPORTS_SOURCES, DataSource, SportKind
from sports_ingest.services.clients.base_client import BaseSportsClient, RetryPolicy
from sports_ingest.services.core.circuit_breaker import ProviderCircuitBreaker
from sports_ingest.services.core.rate_governor import RateGovernor

logger = get_logger(__name__)

Endpoint = Tuple[str, Dict[str, Any]]


@dataclass(frozen=True)
class SportAPIConfig:
    """Routing table entry for one sport."""
    sport: SportKind
    base_url: str
    leagues: Endpoint = ("/leagues", {})
    teams: Endpoint = ("/teams", {})
    games: Endpoint = ("/games", {})
    live: Optional[Endpoint] = ("/games", {"live": "all"})
    standings: Optional[Endpoint] = None
    status: Endpoint = ("/status", {})
    extra: Dict[str, Endpoint] = field(default_factory=dict)

    @property
    def source(self) -> DataSource:
        return APISPORTS_SOURCES[self.sport]


def _host(name: str, version: str = "v1") -> str:
    return f"https://{version}.{name}.api-sports.io"


SPORT_API_CONFIGS: Dict[SportKind, SportAPIConfig] = {
    SportKind.FOOTBALL: SportAPIConfig(
        sport=SportKind.FOOTBALL,
        base_url=_host("football", "v3"),
        games=("/fixtures", {}),
        live=("/fixtures", {"live": "all"}),
        standings=("/standings", {}),
        extra={"odds": ("/odds", {})},
    ),
    SportKind.BASEBALL: SportAPIConfig(sport=SportKind.BASEBALL, base_url=_host("baseball")),
    SportKind.BASKETBALL: SportAPIConfig(
        sport=SportKind.BASKETBALL,
        base_url=_host("basketball"),
        standings=("/standings", {}),
    ),
    SportKind.AFL: SportAPIConfig(sport=SportKind.AFL, base_url=_host("afl")),
    SportKind.FORMULA1: SportAPIConfig(
        sport=SportKind.FORMULA1,
        base_url=_host("formula-1"),
        leagues=("/competitions", {}),
        games=("/races", {}),
        live=None,
        standings=("/rankings/drivers", {}),
    ),
    SportKind.HANDBALL: SportAPIConfig(sport=SportKind.HANDBALL, base_url=_host("handball")),
    SportKind.HOCKEY: SportAPIConfig(sport=SportKind.HOCKEY, base_url=_host("hockey")),
    SportKind.MMA: SportAPIConfig(
        sport=SportKind.MMA,
        base_url=_host("mma"),
        teams=("/fighters", {}),
        games=("/fights", {}),
        live=None,
    ),
    SportKind.NBA: SportAPIConfig(
        sport=SportKind.NBA,
        base_url=_host("nba", "v2"),
        standings=("/standings", {}),
    ),
    SportKind.NFL: SportAPIConfig(
        sport=SportKind.NFL,
        base_url=_host("american-football"),
        standings=("/standings", {}),
    ),
    SportKind.RUGBY: SportAPIConfig(sport=SportKind.RUGBY, base_url=_host("rugby")),
    SportKind.VOLLEYBALL: SportAPIConfig(sport=SportKind.VOLLEYBALL, base_url=_host("volleyball")),
}


class APISportsClient(BaseSportsClient):
    """
    Multi-sport API-Sports client.

    Example:
        client = APISportsClient(api_key, governor, breaker)
        fixtures = await client.set_sport("football").get_games(date="2025-03-01")
        nba_live = await client.get_live_games(sport=SportKind.NBA)
    """

    provider = "apisports"

    def __init__(
        self,
        api_key: str,
        governor: RateGovernor,
        breaker: ProviderCircuitBreaker,
        timeout: float = 30.0,
        retry_policy: Optional[RetryPolicy] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(
            base_url=SPORT_API_CONFIGS[SportKind.FOOTBALL].base_url,
            governor=governor,
            breaker=breaker,
            headers={"x-apisports-key": api_key},
            timeout=timeout,
            retry_policy=retry_policy,
            transport=transport,
        )
        if not api_key:
            logger.warning("API-Sports API key not configured. Set APISPORTS_API_KEY in environment.")
        self.current_sport = SportKind.FOOTBALL

    # ========================================================================
    # SPORT CONTEXT
    # ========================================================================

    def set_sport(self, sport: "str | SportKind") -> "APISportsClient":
        """
        Switch the current sport context.

        Raises:
            ValueError: Unsupported sport
        """
        try:
            kind = SportKind.parse(sport)
        except ValueError:
            raise ValueError(
                f"Unsupported sport: {sport}. Available: {', '.join(s.value for s in SPORT_API_CONFIGS)}"
            )
        self.current_sport = kind
        self.base_url = SPORT_API_CONFIGS[kind].base_url
        return self

    def get_config(self, sport: Optional[SportKind] = None) -> SportAPIConfig:
        """Routing entry for ``sport`` (default: current context)."""
        return SPORT_API_CONFIGS[SportKind.parse(sport) if sport else self.current_sport]

    @staticmethod
    def available_sports() -> List[SportKind]:
        return list(SPORT_API_CONFIGS)

    # ========================================================================
    # ENDPOINTS
    # ========================================================================

    async def get_status(self, sport: Optional[SportKind] = None) -> Dict[str, Any]:
        """Account status (plan, request counters) for the sport's host."""
        response = await self._fetch(self.get_config(sport), "status", {})
        return response if isinstance(response, dict) else {"response": response}

    async def get_leagues(self, sport: Optional[SportKind] = None, **params) -> List[Dict[str, Any]]:
        """Raw league records (``/leagues``, ``/competitions`` for F1)."""
        return await self._fetch(self.get_config(sport), "leagues", params)

    async def get_teams(self, sport: Optional[SportKind] = None, **params) -> List[Dict[str, Any]]:
        """Raw team records (``/fighters`` for MMA)."""
        return await self._fetch(self.get_config(sport), "teams", params)

    async def get_games(self, sport: Optional[SportKind] = None, **params) -> List[Dict[str, Any]]:
        """Raw game records (``/fixtures`` football, ``/races`` F1, ``/fights`` MMA)."""
        return await self._fetch(self.get_config(sport), "games", params)

    async def get_games_by_date(self, day: date, sport: Optional[SportKind] = None) -> List[Dict[str, Any]]:
        return await self.get_games(sport=sport, date=day.isoformat())

    async def get_live_games(self, sport: Optional[SportKind] = None) -> List[Dict[str, Any]]:
        """Live games, or an empty list for sports without a live endpoint."""
        config = self.get_config(sport)
        if config.live is None:
            logger.debug(f"Live endpoint not available for {config.sport.value}")
            return []
        return await self._fetch(config, "live", {})

    async def get_standings(self, league: Any, season: Any, sport: Optional[SportKind] = None) -> List[Dict[str, Any]]:
        config = self.get_config(sport)
        if config.standings is None:
            logger.debug(f"Standings endpoint not available for {config.sport.value}")
            return []
        return await self._fetch(config, "standings", {"league": league, "season": season})

    async def get_odds(self, fixture: Any) -> List[Dict[str, Any]]:
        """Pre-match odds for a football fixture."""
        config = SPORT_API_CONFIGS[SportKind.FOOTBALL]
        path, defaults = config.extra["odds"]
        payload = await self.request(
            path, params={**defaults, "fixture": fixture}, tag="football", base_url=config.base_url
        )
        return payload.get("response") or []

    async def _fetch(self, config: SportAPIConfig, endpoint: str, params: Dict[str, Any]) -> Any:
        path, defaults = getattr(config, endpoint)
        payload = await self.request(
            path,
            params={**defaults, **{k: v for k, v in params.items() if v is not None}},
            tag=config.sport.value,
            base_url=config.base_url,
        )
        items = payload.get("response") or []
        logger.debug(f"API-Sports {config.sport.value}{path}: {len(items) if isinstance(items, list) else 1} records")
        return items

    def parse_response(self, response: httpx.Response) -> Dict[str, Any]:
        """
        Decode and validate the envelope.

        Raises:
            BudgetExhausted: The provider reports its own request limit reached
            ProviderUnavailable: The envelope carries any other error
        """
        payload = response.json()
        if not isinstance(payload, dict):
            raise ProviderUnavailable(self.provider, "unexpected response envelope")

        errors = payload.get("errors")
        if errors:
            messages = errors if isinstance(errors, dict) else {"error": errors}
            if "requests" in messages or "rateLimit" in messages:
                raise BudgetExhausted(self.provider, self.governor.daily_limit, "provider")
            raise ProviderUnavailable(self.provider, f"API error: {messages}")
        return payload
