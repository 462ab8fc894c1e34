"""Unit tests for upcoming-games strategies.

Test Strategy:
1. Test NoTimeShift passes today's games through unchanged
2. Test DemoTimeShift only searches history when today is empty
3. Test football and NFL are never shifted
4. Test the season/league search order and the 30 game window
5. Test games found before the budget runs out are kept
6. Test shifted games become future SCHEDULED events without scores
7. Test strategy selection by name
"""
import random
from datetime import date, datetime, timedelta
from unittest.mock import AsyncMock, Mock

import pytest

from sports_ingest.core.errors import BudgetExhausted, ProviderUnavailable
from sports_ingest.models.canonical import EventStatus, SportKind
from sports_ingest.services.sync.time_shift import (
    DemoTimeShift,
    NoTimeShift,
    build_strategy,
    format_season,
)

NOW = datetime(2030, 3, 1, 12, 0)


def hockey_game(game_id, day="2024-11-02", status="FT"):
    return {
        "id": game_id,
        "date": f"{day}T00:00:00+00:00",
        "league": {"id": 57, "name": "NHL", "season": 2024},
        "teams": {"home": {"id": 5, "name": "Boston Bruins"}, "away": {"id": 6, "name": "Toronto Maple Leafs"}},
        "scores": {"home": {"total": 4}, "away": {"total": 2}},
        "status": {"short": status},
    }


def client_with(games_by_call):
    """Client double whose get_games delegates to ``games_by_call(**params)``."""
    client = Mock()
    client.get_games = AsyncMock(side_effect=lambda **params: games_by_call(**params))
    return client


class TestNoTimeShift:
    """Default strategy."""

    @pytest.mark.asyncio
    async def test_fetches_requested_day(self):
        client = client_with(lambda **p: [hockey_game(1, status="NS")])

        result = await NoTimeShift().fetch_upcoming(client, SportKind.HOCKEY, day=date(2030, 3, 1))

        client.get_games.assert_awaited_once_with(sport=SportKind.HOCKEY, date="2030-03-01")
        assert result.fetched == 1
        assert result.shifted is False
        assert result.events[0].status == EventStatus.SCHEDULED

    @pytest.mark.asyncio
    async def test_league_filter_adds_season(self):
        client = client_with(lambda **p: [])

        await NoTimeShift().fetch_upcoming(client, SportKind.HOCKEY, league=57, day=date(2030, 3, 1))

        client.get_games.assert_awaited_once_with(sport=SportKind.HOCKEY, date="2030-03-01",
                                                  league=57, season=2030)

    @pytest.mark.asyncio
    async def test_never_searches_history(self):
        client = client_with(lambda **p: [])

        result = await NoTimeShift().fetch_upcoming(client, SportKind.HOCKEY)

        assert result.events == []
        assert client.get_games.await_count == 1


class TestDemoTimeShift:
    """Historical fill for quota-scarce sports."""

    @pytest.fixture
    def strategy(self):
        return DemoTimeShift(rng=random.Random(3), clock=lambda: NOW)

    @pytest.mark.asyncio
    async def test_today_wins_when_present(self, strategy):
        client = client_with(lambda **p: [hockey_game(1, status="NS")] if "date" in p else [])

        result = await strategy.fetch_upcoming(client, SportKind.HOCKEY)

        assert result.shifted is False
        assert client.get_games.await_count == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("sport", [SportKind.FOOTBALL, SportKind.NFL])
    async def test_unrestricted_sports_never_shifted(self, strategy, sport):
        client = client_with(lambda **p: [])

        result = await strategy.fetch_upcoming(client, sport)

        assert result.shifted is False
        assert client.get_games.await_count == 1

    @pytest.mark.asyncio
    async def test_shifts_historical_games(self, strategy):
        """Historical games become SCHEDULED at now + 2h, now + 4h, ..."""
        def games(**params):
            if params.get("season") == 2024 and params.get("league") == 57:
                return [hockey_game(1), hockey_game(2)]
            return []

        result = await strategy.fetch_upcoming(client_with(games), SportKind.HOCKEY)

        assert result.shifted is True
        assert result.fetched == 2
        assert [e.start_time for e in result.events] == [NOW + timedelta(hours=2), NOW + timedelta(hours=4)]
        first = result.events[0]
        assert first.status == EventStatus.SCHEDULED
        assert first.home_score is None
        assert first.metadata["time_shifted"] is True
        assert first.metadata["original_start_time"] == "2024-11-02T00:00:00"

    @pytest.mark.asyncio
    async def test_first_season_with_data_wins(self, strategy):
        """Seasons are tried 2024, 2023, 2025 and never mixed."""
        calls = []

        def games(**params):
            calls.append((params.get("season"), params.get("league")))
            if params.get("season") == 2023 and params.get("league") == 1:
                return [hockey_game(7)]
            return []

        result = await strategy.fetch_upcoming(client_with(games), SportKind.HOCKEY)

        assert [e.external_id for e in result.events] == ["7"]
        seasons = [season for season, _ in calls[1:]]
        assert seasons == [2024, 2024, 2024, 2023, 2023, 2023]

    @pytest.mark.asyncio
    async def test_provider_errors_skip_league(self, strategy):
        def games(**params):
            if params.get("league") == 57:
                raise ProviderUnavailable("apisports", "HTTP 500", 500)
            if params.get("league") == 1 and params.get("season") == 2024:
                return [hockey_game(9)]
            return []

        result = await strategy.fetch_upcoming(client_with(games), SportKind.HOCKEY)

        assert [e.external_id for e in result.events] == ["9"]

    @pytest.mark.asyncio
    async def test_budget_exhausted_keeps_collected_games(self, strategy):
        """Games paid for before the budget ran out are still shifted."""
        def games(**params):
            if params.get("league") == 57:
                return [hockey_game(1), hockey_game(2)]
            if "league" in params:
                raise BudgetExhausted("apisports", 100)
            return []

        client = client_with(games)

        result = await strategy.fetch_upcoming(client, SportKind.HOCKEY)

        assert result.shifted is True
        assert [e.external_id for e in result.events] == ["1", "2"]
        assert client.get_games.await_count == 3

    @pytest.mark.asyncio
    async def test_null_response_treated_as_empty(self, strategy):
        client = client_with(lambda **p: None)

        result = await strategy.fetch_upcoming(client, SportKind.HOCKEY)

        assert result.events == []
        assert result.fetched == 0

    @pytest.mark.asyncio
    async def test_caps_at_thirty_games(self, strategy):
        def games(**params):
            if params.get("season") == 2024 and params.get("league") == 57:
                return [hockey_game(i) for i in range(1, 46)]
            return []

        result = await strategy.fetch_upcoming(client_with(games), SportKind.HOCKEY)

        assert len(result.events) == 30
        ids = [int(e.external_id) for e in result.events]
        assert ids == list(range(ids[0], ids[0] + 30))

    @pytest.mark.asyncio
    async def test_nothing_found_returns_today(self, strategy):
        result = await strategy.fetch_upcoming(client_with(lambda **p: []), SportKind.HOCKEY)

        assert result.events == []
        assert result.shifted is False

    @pytest.mark.asyncio
    async def test_mma_fetched_by_season_only(self, strategy):
        client = client_with(lambda **p: [])

        await strategy.fetch_upcoming(client, SportKind.MMA)

        historical = [call.kwargs for call in client.get_games.await_args_list[1:]]
        assert historical == [{"sport": SportKind.MMA, "season": s} for s in (2024, 2023, 2025)]

    @pytest.mark.asyncio
    async def test_explicit_league_only(self, strategy):
        client = client_with(lambda **p: [])

        await strategy.fetch_upcoming(client, SportKind.HOCKEY, league=99)

        leagues = {call.kwargs.get("league") for call in client.get_games.await_args_list[1:]}
        assert leagues == {99}


class TestHelpers:
    """Season format and strategy lookup."""

    def test_basketball_season_format(self):
        assert format_season(SportKind.BASKETBALL, 2024) == "2024-2025"
        assert format_season(SportKind.HOCKEY, 2024) == 2024

    def test_build_strategy(self):
        assert isinstance(build_strategy("off"), NoTimeShift)
        assert isinstance(build_strategy("demo"), DemoTimeShift)
        with pytest.raises(ValueError):
            build_strategy("rewind")
