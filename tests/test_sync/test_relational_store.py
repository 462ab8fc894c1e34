"""Unit tests for RelationalStore.

Test Strategy:
1. Test select with equality, in-list, range, order, limit and offset
2. Test an empty in-list matches nothing without touching the database
3. Test upsert inserts new rows and updates colliding ones, preserving id
4. Test update/delete refuse to run without a filter
5. Test savepoints roll back only the failing block
"""
import uuid
from datetime import datetime

import pytest

from sports_ingest.core.errors import PersistenceError


def league_row(external_id, name, sport="football", source="apifootball", **extra):
    return {
        "id": str(uuid.uuid4()),
        "external_id": external_id,
        "source": source,
        "sport": sport,
        "name": name,
        "metadata": {},
        **extra,
    }


@pytest.fixture
def seeded(store):
    store.insert("sports_leagues", [
        league_row("39", "Premier League", display_order=1),
        league_row("140", "La Liga", display_order=2),
        league_row("12", "NBA", sport="nba", source="apinba", display_order=3),
    ])
    store.commit()
    return store


class TestSelect:
    """Read paths."""

    def test_equality_filter(self, seeded):
        rows = seeded.select("sports_leagues", filters={"sport": "football"}, order_by="display_order")

        assert [r["name"] for r in rows] == ["Premier League", "La Liga"]
        assert rows[0]["metadata"] == {}
        assert rows[0]["is_active"] is True

    def test_none_filter_matches_null(self, seeded):
        """A None filter value should compile to IS NULL."""
        rows = seeded.select("sports_leagues", filters={"country": None})

        assert len(rows) == 3

    def test_in_filter(self, seeded):
        rows = seeded.select("sports_leagues", in_filters={"external_id": ["39", "12", "999"]})

        assert {r["external_id"] for r in rows} == {"39", "12"}

    def test_empty_in_filter_matches_nothing(self, seeded):
        assert seeded.select("sports_leagues", in_filters={"external_id": []}) == []
        assert seeded.count("sports_leagues", in_filters={"external_id": []}) == 0

    def test_range_lower_exclusive_upper_inclusive(self, seeded):
        rows = seeded.select("sports_leagues", ranges={"display_order": (1, 3)}, order_by="display_order")

        assert [r["display_order"] for r in rows] == [2, 3]

    def test_descending_order_with_paging(self, seeded):
        rows = seeded.select("sports_leagues", order_by="-display_order", limit=1, offset=1,
                             columns=["name"])

        assert rows == [{"name": "La Liga"}]

    def test_count(self, seeded):
        assert seeded.count("sports_leagues") == 3
        assert seeded.count("sports_leagues", filters={"sport": "nba"}) == 1

    def test_unknown_table(self, store):
        with pytest.raises(PersistenceError) as exc:
            store.select("players")

        assert exc.value.table == "players"


class TestWrites:
    """Insert, upsert, update and delete."""

    def test_upsert_updates_on_conflict(self, seeded):
        """A colliding (source, external_id) should update in place and keep its id."""
        original = seeded.select("sports_leagues", filters={"external_id": "39"})[0]

        seeded.upsert("sports_leagues", [
            league_row("39", "English Premier League"),
            league_row("78", "Bundesliga"),
        ])
        seeded.commit()

        updated = seeded.select("sports_leagues", filters={"external_id": "39"})[0]
        assert updated["id"] == original["id"]
        assert updated["name"] == "English Premier League"
        assert seeded.count("sports_leagues") == 4

    def test_upsert_empty_is_noop(self, store):
        assert store.upsert("sports_leagues", []) == 0

    def test_update_by_filter(self, seeded):
        matched = seeded.update("sports_leagues", {"is_featured": True}, {"sport": "football"})
        seeded.commit()

        assert matched == 2
        assert seeded.count("sports_leagues", filters={"is_featured": True}) == 2

    def test_update_without_filter_rejected(self, seeded):
        with pytest.raises(PersistenceError):
            seeded.update("sports_leagues", {"is_active": False}, {})

    def test_delete_requires_filter(self, seeded):
        with pytest.raises(PersistenceError):
            seeded.delete("sports_leagues", {})

    def test_delete_by_range(self, store):
        store.insert("sports_sync_logs", [
            {"id": str(uuid.uuid4()), "source": "etl_orchestrator", "sync_type": "full",
             "status": "completed", "started_at": datetime(2025, 1, 1)},
            {"id": str(uuid.uuid4()), "source": "etl_orchestrator", "sync_type": "full",
             "status": "completed", "started_at": datetime(2025, 3, 1)},
        ])

        deleted = store.delete("sports_sync_logs", {}, ranges={"started_at": (None, datetime(2025, 2, 1))})

        assert deleted == 1
        assert store.count("sports_sync_logs") == 1

    def test_integrity_error_wrapped(self, seeded):
        """Database errors should surface as PersistenceError with the table name."""
        with pytest.raises(PersistenceError) as exc:
            seeded.insert("sports_leagues", [league_row("39", "Duplicate")])

        assert exc.value.table == "sports_leagues"
        seeded.rollback()


class TestSavepoint:
    """Nested transactions."""

    def test_failed_block_rolls_back_alone(self, store):
        store.insert("sports_leagues", [league_row("39", "Premier League")])

        with pytest.raises(PersistenceError):
            with store.savepoint():
                store.insert("sports_leagues", [league_row("140", "La Liga")])
                store.insert("sports_leagues", [league_row("39", "Duplicate")])

        with store.savepoint():
            store.insert("sports_leagues", [league_row("78", "Bundesliga")])
        store.commit()

        names = {r["name"] for r in store.select("sports_leagues")}
        assert names == {"Premier League", "Bundesliga"}
