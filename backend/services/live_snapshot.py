"""Today's snapshot row from current item fields.

A lighter path than the full rebuild: no replay, just the items as they are
now. The row continues the ideal line and scope counters from the previous
stored row.
"""

import logging
from datetime import date
from typing import Optional

from services.calendar import business_days, excluded_dates_for_sprint
from services.errors import SprintNotFoundError
from services.models import SprintSnapshot
from services.revisions import date_revisions
from services.settings import DEFAULT_DONE_LIKE_STATES, Settings
from services.state_classifier import count_states
from services.work_fields import (
    is_done_like,
    parse_hours,
    planned_hours,
    round_half_up,
    to_business_date,
)

logger = logging.getLogger(__name__)


def closed_today_remaining(revisions, today: date, tz_name: str = "UTC",
                           done_states=DEFAULT_DONE_LIKE_STATES) -> Optional[float]:
    """Remaining hours an item carried into the day it was closed.

    Returns None when a revision dated today sets remaining work explicitly
    (the current fields already tell the story) or no earlier value exists.
    """
    last_before = None
    for revision in date_revisions(revisions, tz_name):
        if revision.day > today:
            break
        if revision.day == today:
            if revision.remaining is not None:
                return None
            continue
        if revision.remaining is not None:
            last_before = revision.remaining
        elif is_done_like(revision.state, done_states):
            last_before = 0.0
    if last_before is None or last_before <= 0:
        return None
    return last_before


def item_contribution(item, today: date, settings: Settings, revisions=None) -> tuple:
    """(remaining, completed) hours one item adds to today's row."""
    done = is_done_like(item.state, settings.done_like_states)
    planned = planned_hours(item, done)

    if not done:
        return planned, parse_hours(item.completed_work) or 0.0

    closed = to_business_date(item.closed_date, settings.sprint_timezone)
    if closed == today and revisions:
        carried = closed_today_remaining(
            revisions, today, settings.sprint_timezone, settings.done_like_states
        )
        if carried is not None:
            return 0.0, carried
    return 0.0, planned


def _next_ideal(previous: Optional[SprintSnapshot], total: int, today: date, days: list) -> int:
    if previous is None or today == days[0]:
        return total
    cursor = max(0.0, previous.ideal_remaining + (total - previous.total_work))
    steps_remaining = len([d for d in days if d >= today])
    return round_half_up(max(0.0, cursor - cursor / steps_remaining))


def capture_live_snapshot(store, sprint_id: str, today: date,
                          settings: Optional[Settings] = None) -> Optional[SprintSnapshot]:
    """Compute and store today's row for one sprint.

    Returns None (and writes nothing) on weekends, team-wide days off and
    dates outside the sprint.
    """
    settings = settings or Settings()
    sprint = store.get_sprint(sprint_id)
    if sprint is None:
        raise SprintNotFoundError(sprint_id)

    if not sprint.start_date or not sprint.end_date:
        logger.info(f"Sprint {sprint.name} has no dates, no live row")
        return None
    if today < sprint.start_date or today > sprint.end_date:
        logger.info(f"{today} is outside sprint {sprint.name}, no live row")
        return None

    days = business_days(sprint.start_date, sprint.end_date, excluded_dates_for_sprint(sprint))
    if today not in days:
        logger.info(f"{today} is not a working day for {sprint.name}, no live row")
        return None

    items = store.get_work_items(sprint.id, include_removed=False)
    hours_items = [
        i for i in items
        if str(i.type or "").strip().lower() in settings.hours_types
    ]

    closed_today = [
        i.id for i in hours_items
        if is_done_like(i.state, settings.done_like_states)
        and to_business_date(i.closed_date, settings.sprint_timezone) == today
    ]
    revisions_by_item = store.get_revisions(closed_today) if closed_today else {}

    remaining = 0.0
    completed = 0.0
    for item in hours_items:
        item_remaining, item_completed = item_contribution(
            item, today, settings, revisions_by_item.get(item.id)
        )
        remaining += item_remaining
        completed += item_completed

    remaining_work = round_half_up(remaining)
    completed_work = round_half_up(completed)
    total_work = remaining_work + completed_work

    previous = None
    for row in store.get_snapshots(sprint.id):
        if row.snapshot_date < today:
            previous = row

    net = total_work - previous.total_work if previous else 0
    counts = count_states(items, today, settings)

    snapshot = SprintSnapshot(
        sprint_id=sprint.id,
        snapshot_date=today,
        remaining_work=remaining_work,
        completed_work=completed_work,
        total_work=total_work,
        ideal_remaining=_next_ideal(previous, total_work, today, days),
        todo_count=counts.todo,
        in_progress_count=counts.in_progress,
        done_count=counts.done,
        blocked_count=counts.blocked,
        added_hours=max(0, net),
        removed_hours=max(0, -net),
    )

    dropped = store.delete_snapshots(sprint.id, after=today)
    if dropped:
        logger.info(f"Dropped {dropped} rows dated after {today} for {sprint.name}")
    store.upsert_snapshots([snapshot])
    return snapshot
