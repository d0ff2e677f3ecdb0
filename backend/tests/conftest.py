"""Shared fixtures for burndown reconstruction tests."""

import os
import sys
from datetime import date, datetime, timezone

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from services.models import (
    ITERATION_PATH_FIELD,
    REMAINING_WORK_FIELD,
    STATE_FIELD,
    DayOffRange,
    MemberDaysOff,
    Revision,
    Sprint,
    WorkItem,
)
from services.settings import Settings
from services.store import InMemoryStore

SPRINT_PATH = "Proj\\Sprint 1"


@pytest.fixture
def settings():
    """Default settings (UTC, stock state and type sets)."""
    return Settings()


@pytest.fixture
def sprint():
    """Two-week sprint: Mon 2024-01-01 to Fri 2024-01-12, ten working days."""
    return Sprint(
        id="sprint-1",
        name="Sprint 1",
        path=SPRINT_PATH,
        start_date=date(2024, 1, 1),
        end_date=date(2024, 1, 12),
        state="active",
    )


@pytest.fixture
def sprint_with_team_day_off(sprint):
    """Same sprint where every member is off on Wednesday 2024-01-03."""
    return Sprint(
        id="sprint-2",
        name="Sprint 2",
        path=sprint.path,
        start_date=sprint.start_date,
        end_date=sprint.end_date,
        member_days_off=(
            MemberDaysOff("alice", (DayOffRange(date(2024, 1, 3), date(2024, 1, 3)),)),
            MemberDaysOff("bob", (DayOffRange(date(2024, 1, 3), date(2024, 1, 4)),)),
        ),
    )


@pytest.fixture
def make_revision():
    """Factory for revisions carrying only the given fields."""
    def _make(item_id, rev, when, remaining=None, state=None, iteration=None):
        fields = {}
        if remaining is not None:
            fields[REMAINING_WORK_FIELD] = remaining
        if state is not None:
            fields[STATE_FIELD] = state
        if iteration is not None:
            fields[ITERATION_PATH_FIELD] = iteration
        return Revision(work_item_id=item_id, rev=rev, changed_date=when, fields=fields)
    return _make


@pytest.fixture
def planned_task():
    """Task planned into the sprint before it started (8h), reopened later."""
    return WorkItem(
        id=1,
        type="Task",
        state="Active",
        iteration_path=SPRINT_PATH,
        sprint_id="sprint-1",
        created_date=datetime(2023, 12, 28, 9, 0, tzinfo=timezone.utc),
        activated_date=datetime(2024, 1, 2, 9, 0, tzinfo=timezone.utc),
        changed_date=datetime(2024, 1, 5, 10, 0, tzinfo=timezone.utc),
        remaining_work=3.0,
    )


@pytest.fixture
def planned_task_revisions(make_revision):
    """Planned 8h before day one, done on day 3, reopened with 3h on day 5."""
    return [
        make_revision(1, 1, "2023-12-28T09:00:00Z", remaining=8, state="To Do",
                      iteration=SPRINT_PATH),
        make_revision(1, 2, "2024-01-03T15:00:00Z", remaining=0, state="Done"),
        make_revision(1, 3, "2024-01-05T10:00:00Z", remaining=3, state="Active"),
    ]


@pytest.fixture
def late_task():
    """Task created and added on day 2 with 5h."""
    return WorkItem(
        id=2,
        type="Task",
        state="To Do",
        iteration_path=SPRINT_PATH,
        sprint_id="sprint-1",
        created_date=datetime(2024, 1, 2, 11, 0, tzinfo=timezone.utc),
        changed_date=datetime(2024, 1, 2, 11, 0, tzinfo=timezone.utc),
        remaining_work=5.0,
    )


@pytest.fixture
def late_task_revisions(make_revision):
    return [
        make_revision(2, 1, "2024-01-02T11:00:00Z", remaining=5, state="To Do",
                      iteration=SPRINT_PATH),
    ]


@pytest.fixture
def store(sprint, planned_task, late_task, planned_task_revisions, late_task_revisions):
    """In-memory store seeded with one sprint and its two tasks."""
    store = InMemoryStore()
    store.save_sprint(sprint)
    store.save_work_items([planned_task, late_task])
    store.save_revisions(planned_task_revisions + late_task_revisions)
    return store


@pytest.fixture
def app(store, settings):
    """Create Flask test app backed by the in-memory store."""
    from app import create_app
    app = create_app(store=store, settings=settings)
    app.config['TESTING'] = True
    return app


@pytest.fixture
def client(app):
    """Create Flask test client."""
    return app.test_client()
