"""Tests for the SQL-backed store (SQLite file per test)."""

import pytest
from datetime import date
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from sqlalchemy.exc import OperationalError

from services.models import SprintSnapshot
from services.store import SqlStore, is_transient_db_error


@pytest.fixture
def sql_store(tmp_path):
    store = SqlStore(f"sqlite:///{tmp_path / 'burndown.db'}")
    store.ensure_tables()
    yield store
    store.close()


class TestSprintsAndItems:
    """Test seeding and reading tracker data."""

    def test_sprint_round_trip_keeps_days_off(self, sql_store, sprint_with_team_day_off):
        sql_store.save_sprint(sprint_with_team_day_off)
        loaded = sql_store.get_sprint(sprint_with_team_day_off.id)
        assert loaded == sprint_with_team_day_off

    def test_missing_sprint(self, sql_store):
        assert sql_store.get_sprint("missing") is None

    def test_list_sprints_by_state(self, sql_store, sprint, sprint_with_team_day_off):
        sql_store.save_sprint(sprint)
        sql_store.save_sprint(sprint_with_team_day_off)
        assert [s.id for s in sql_store.list_sprints("ACTIVE")] == ["sprint-1", "sprint-2"]
        assert sql_store.list_sprints("past") == []

    def test_work_items(self, sql_store, planned_task, late_task):
        sql_store.save_work_items([planned_task, late_task])
        items = sql_store.get_work_items("sprint-1")
        assert [i.id for i in items] == [1, 2]
        assert items[0].created_date == planned_task.created_date
        assert items[0].remaining_work == 3.0
        assert items[0].completed_work is None

    def test_removed_items_filtered(self, sql_store, planned_task):
        from dataclasses import replace
        sql_store.save_work_items([replace(planned_task, is_removed=True)])
        assert sql_store.get_work_items("sprint-1", include_removed=False) == []
        assert sql_store.get_work_items("sprint-1")[0].is_removed is True

    def test_revisions_grouped_and_ordered(self, sql_store, planned_task_revisions,
                                           late_task_revisions):
        sql_store.save_revisions(list(reversed(planned_task_revisions)) + late_task_revisions)
        revisions = sql_store.get_revisions([1, 2, 99])
        assert [r.rev for r in revisions[1]] == [1, 2, 3]
        assert revisions[1][0].fields == planned_task_revisions[0].fields
        assert len(revisions[2]) == 1
        assert revisions[99] == []

    def test_update_history_fields(self, sql_store, planned_task):
        sql_store.save_work_items([planned_task])
        sql_store.update_history_fields(1, 8.0, 3.0, None)
        item = sql_store.get_work_items("sprint-1")[0]
        assert item.initial_remaining_work == 8.0
        assert item.last_remaining_work == 3.0
        assert item.done_remaining_work is None


class TestSnapshots:
    """Test keyed snapshot writes."""

    def test_upsert_never_duplicates(self, sql_store):
        sql_store.upsert_snapshots([SprintSnapshot("s", date(2024, 1, 1), remaining_work=5)])
        sql_store.upsert_snapshots([SprintSnapshot("s", date(2024, 1, 1), remaining_work=3)])
        rows = sql_store.get_snapshots("s")
        assert len(rows) == 1
        assert rows[0].remaining_work == 3

    def test_replace(self, sql_store):
        sql_store.upsert_snapshots([
            SprintSnapshot("s", date(2024, 1, 1)),
            SprintSnapshot("s", date(2024, 1, 2)),
            SprintSnapshot("other", date(2024, 1, 2)),
        ])
        sql_store.replace_snapshots("s", [SprintSnapshot("s", date(2024, 1, 3))])
        assert [r.snapshot_date for r in sql_store.get_snapshots("s")] == [date(2024, 1, 3)]
        assert len(sql_store.get_snapshots("other")) == 1

    def test_delete_after(self, sql_store):
        sql_store.upsert_snapshots([
            SprintSnapshot("s", date(2024, 1, 1)),
            SprintSnapshot("s", date(2024, 1, 2)),
            SprintSnapshot("s", date(2024, 1, 3)),
        ])
        assert sql_store.delete_snapshots("s", after=date(2024, 1, 1)) == 2
        assert [r.snapshot_date for r in sql_store.get_snapshots("s")] == [date(2024, 1, 1)]


class TestTransientDbErrors:
    """Test recognition of retryable database errors."""

    def test_locked_database_is_transient(self):
        error = OperationalError("SELECT 1", {}, Exception("database is locked"))
        assert is_transient_db_error(error)

    def test_missing_table_is_not(self):
        error = OperationalError("SELECT 1", {}, Exception("no such table: sprints"))
        assert not is_transient_db_error(error)

    def test_empty_url_rejected(self):
        with pytest.raises(ValueError):
            SqlStore("")
