"""
Default market generation for freshly ingested events.

Scheduled events without a market (starting no earlier than 24 hours ago) get
one simulated ``match_winner`` market with two outcomes, home and away. The
event's ``has_market`` flag is set in the same transaction and
``sports.market.created`` is published after the commit.
"""
import random
import re
import uuid
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

from sports_ingest.core.errors import DispatchError, PersistenceError
from sports_ingest.core.logging import get_logger
from sports_ingest.events import sports_events
from sports_ingest.events.dispatcher import EventDispatcher
from sports_ingest.events.unit_of_work import UnitOfWork
from sports_ingest.models.canonical import EventStatus
from sports_ingest.services.sync.store import RelationalStore, Row

logger = get_logger(__name__)

DEFAULT_MARKET_LIMIT = 50
LOOKBACK = timedelta(hours=24)

_MATCHUP_SEPARATORS = re.compile(r"\s+(?:vs\.?|v|@)\s+", re.IGNORECASE)


def split_matchup(name: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
    """
    Split an event name into home and away names.

    ``"Away @ Home"`` is reversed so the home side always comes first.

    Examples:
        >>> split_matchup("Arsenal vs Chelsea")
        ('Arsenal', 'Chelsea')
        >>> split_matchup("Celtics @ Lakers")
        ('Lakers', 'Celtics')
    """
    if not name:
        return None, None
    parts = _MATCHUP_SEPARATORS.split(name)
    if len(parts) != 2:
        return None, None
    first, second = parts[0].strip(), parts[1].strip()
    if "@" in name:
        return second, first
    return first, second


class MarketGenerator:
    """
    Creates simulated default markets.

    Args:
        store: Relational store
        dispatcher: Pending-event buffer for ``sports.market.created``
        rng: Random source for simulated prices (seed it in tests)
    """

    def __init__(
        self,
        store: RelationalStore,
        dispatcher: Optional[EventDispatcher] = None,
        rng: Optional[random.Random] = None,
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.rng = rng or random.Random()

    async def generate_default_markets(self, limit: int = DEFAULT_MARKET_LIMIT) -> int:
        """
        Generate markets for up to ``limit`` pending events.

        Returns:
            Number of markets created
        """
        since = datetime.utcnow() - LOOKBACK
        try:
            events = self.store.select(
                "sports_events",
                filters={"has_market": False, "status": EventStatus.SCHEDULED.value},
                ranges={"start_time": (since, None)},
                order_by="start_time",
                limit=limit,
            )
        except PersistenceError as e:
            logger.error(f"Could not load events for market generation: {e}")
            return 0

        if not events:
            logger.info("No pending events found for market generation")
            return 0

        logger.info(f"Generating default markets for {len(events)} pending events")
        team_names = self._team_names(events)
        generated = 0

        for event in events:
            if self.store.count("sports_markets", filters={"event_id": event["id"]}):
                # flag out of sync with the markets table
                self.store.update("sports_events", {"has_market": True}, {"id": event["id"]})
                self.store.commit()
                continue
            if await self._create_market(event, team_names):
                generated += 1

        logger.info(f"Generated {generated} simulated markets")
        return generated

    async def _create_market(self, event: Row, team_names: Dict[str, str]) -> bool:
        home, away = self._matchup(event, team_names)
        home_price = round(0.45 + self.rng.random() * 0.2, 2)
        now = datetime.utcnow()
        market = {
            "id": str(uuid.uuid4()),
            "event_id": event["id"],
            "market_type": "match_winner",
            "title": "Match Winner",
            "question": f"Will {home} beat {away}?",
            "outcomes": [home, away],
            "outcome_prices": [home_price, round(1 - home_price, 2)],
            "volume": float(self.rng.randint(1000, 51000)),
            "resolved": False,
            "is_simulated": True,
            "created_at": now,
            "updated_at": now,
        }

        try:
            self.store.insert("sports_markets", [market])
            self.store.update("sports_events", {"has_market": True, "updated_at": now}, {"id": event["id"]})
            if self.dispatcher is None:
                self.store.commit()
            else:
                uow = UnitOfWork(self.dispatcher, on_rollback=self.store.rollback)
                uow.begin()
                uow.add_operation(self.store.commit)
                uow.register_events(market["id"], [sports_events.market_created(market)])
                await uow.commit()
        except PersistenceError as e:
            logger.error(f"Failed to create simulated market for event {event['id']}: {e}")
            self.store.rollback()
            return False
        except DispatchError as e:
            logger.error(f"Publishing market.created for {market['id']} failed: {e}")
        return True

    def _matchup(self, event: Row, team_names: Dict[str, str]) -> Tuple[str, str]:
        metadata = event.get("metadata") or {}
        home = team_names.get(event.get("home_team_id")) or metadata.get("home_team_name")
        away = team_names.get(event.get("away_team_id")) or metadata.get("away_team_name")
        if not home or not away:
            parsed_home, parsed_away = split_matchup(event.get("name"))
            home = home or parsed_home
            away = away or parsed_away
        return home or "Home Team", away or "Away Team"

    def _team_names(self, events: List[Row]) -> Dict[str, str]:
        ids = {
            team_id for event in events
            for team_id in (event.get("home_team_id"), event.get("away_team_id")) if team_id
        }
        if not ids:
            return {}
        rows = self.store.select("sports_teams", in_filters={"id": ids}, columns=("id", "name"))
        return {row["id"]: row["name"] for row in rows}
