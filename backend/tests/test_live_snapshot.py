"""Tests for the live (today-only) snapshot path."""

import pytest
from datetime import date, datetime, timezone
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from services.errors import SprintNotFoundError
from services.live_snapshot import capture_live_snapshot, closed_today_remaining, item_contribution
from services.models import SprintSnapshot, WorkItem
from services.settings import Settings
from services.store import InMemoryStore

TODAY = date(2024, 1, 3)


@pytest.fixture
def closed_today(sprint):
    """Task closed today; its closing revision does not touch remaining work."""
    return WorkItem(
        id=30, type="Task", state="Done", iteration_path=sprint.path, sprint_id=sprint.id,
        created_date=datetime(2024, 1, 1, 9, tzinfo=timezone.utc),
        closed_date=datetime(2024, 1, 3, 16, tzinfo=timezone.utc),
        remaining_work=0, completed_work=4,
    )


@pytest.fixture
def active_task(sprint):
    return WorkItem(
        id=31, type="Bug", state="Active", iteration_path=sprint.path, sprint_id=sprint.id,
        created_date=datetime(2024, 1, 1, 9, tzinfo=timezone.utc),
        activated_date=datetime(2024, 1, 2, 9, tzinfo=timezone.utc),
        remaining_work=5, completed_work=2,
    )


@pytest.fixture
def live_store(sprint, closed_today, active_task, make_revision):
    store = InMemoryStore()
    store.save_sprint(sprint)
    store.save_work_items([closed_today, active_task])
    store.save_revisions([
        make_revision(30, 1, "2024-01-01T09:00:00Z", remaining=6, iteration=sprint.path),
        make_revision(30, 2, "2024-01-03T16:00:00Z", state="Done"),
    ])
    return store


class TestItemContribution:
    """Test per-item live values."""

    def test_open_item(self, active_task):
        assert item_contribution(active_task, TODAY, Settings()) == (5, 2)

    def test_done_item_uses_planned_value(self, closed_today):
        assert item_contribution(closed_today, date(2024, 1, 4), Settings()) == (0, 4)

    def test_closed_today_uses_last_remaining(self, closed_today, live_store):
        revisions = live_store.get_revisions([30])[30]
        assert item_contribution(closed_today, TODAY, Settings(), revisions) == (0, 6)

    def test_explicit_remaining_today_wins(self, make_revision):
        revisions = [
            make_revision(30, 1, "2024-01-01T09:00:00Z", remaining=6),
            make_revision(30, 2, "2024-01-03T16:00:00Z", remaining=0, state="Done"),
        ]
        assert closed_today_remaining(revisions, TODAY) is None

    def test_earlier_done_without_remaining_carries_nothing(self, make_revision):
        """Done yesterday without a remaining value, then closed again today."""
        revisions = [
            make_revision(30, 1, "2024-01-01T09:00:00Z", remaining=6),
            make_revision(30, 2, "2024-01-02T16:00:00Z", state="Done"),
            make_revision(30, 3, "2024-01-03T16:00:00Z", state="Closed"),
        ]
        assert closed_today_remaining(revisions, TODAY) is None

    def test_blank_fields_fall_back_to_history(self, sprint):
        item = WorkItem(id=32, type="Task", state="To Do", iteration_path=sprint.path,
                        last_remaining_work=7)
        assert item_contribution(item, TODAY, Settings()) == (7, 0)


class TestCaptureLiveSnapshot:
    """Test writing today's row."""

    def test_first_row(self, live_store, sprint):
        row = capture_live_snapshot(live_store, sprint.id, TODAY)
        assert row.remaining_work == 5
        assert row.completed_work == 8
        assert row.total_work == 13
        assert row.ideal_remaining == 13
        assert row.added_hours == 0
        assert row.done_count == 1
        assert row.in_progress_count == 1
        assert live_store.get_snapshots(sprint.id) == [row]

    def test_continues_from_previous_row(self, live_store, sprint):
        live_store.upsert_snapshots([
            SprintSnapshot(sprint.id, date(2024, 1, 2), remaining_work=10, total_work=10,
                           ideal_remaining=9),
        ])
        row = capture_live_snapshot(live_store, sprint.id, TODAY)
        # 9 + 3 net, eight working days left including today
        assert row.ideal_remaining == 11
        assert row.added_hours == 3
        assert row.removed_hours == 0

    def test_rows_after_today_dropped(self, live_store, sprint):
        live_store.upsert_snapshots([SprintSnapshot(sprint.id, date(2024, 1, 5))])
        capture_live_snapshot(live_store, sprint.id, TODAY)
        assert [r.snapshot_date for r in live_store.get_snapshots(sprint.id)] == [TODAY]

    def test_weekend_writes_nothing(self, live_store, sprint):
        assert capture_live_snapshot(live_store, sprint.id, date(2024, 1, 6)) is None
        assert live_store.get_snapshots(sprint.id) == []

    def test_outside_sprint_writes_nothing(self, live_store, sprint):
        assert capture_live_snapshot(live_store, sprint.id, date(2024, 2, 1)) is None

    def test_team_day_off_writes_nothing(self, sprint_with_team_day_off):
        store = InMemoryStore()
        store.save_sprint(sprint_with_team_day_off)
        assert capture_live_snapshot(store, sprint_with_team_day_off.id, TODAY) is None

    def test_unknown_sprint(self, live_store):
        with pytest.raises(SprintNotFoundError):
            capture_live_snapshot(live_store, "missing", TODAY)
