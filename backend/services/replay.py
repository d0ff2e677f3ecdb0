"""Per-item replay of revisions into per-working-day deltas.

Each item is replayed on its own as a fold over its ordered revisions; the
carried state is an immutable record, so items can be replayed in any order
or in parallel and summed afterwards.
"""

import logging
from dataclasses import dataclass, replace
from datetime import date
from typing import Optional

from services.calendar import day_index_at_or_after
from services.revisions import CarriedState, DatedRevision, date_revisions, split_at
from services.settings import Settings
from services.work_fields import (
    in_sprint_path,
    is_done_like,
    parse_iteration,
    parse_state,
    planned_hours,
    to_business_date,
)

logger = logging.getLogger(__name__)


@dataclass
class DailyDeltas:
    """Three parallel per-working-day arrays."""

    scope_added: list
    scope_removed: list
    completed: list

    @classmethod
    def zeros(cls, size: int) -> "DailyDeltas":
        return cls([0.0] * size, [0.0] * size, [0.0] * size)

    def __len__(self) -> int:
        return len(self.scope_added)

    def add(self, index: int, step: "ReplayStep") -> None:
        self.scope_added[index] += step.scope_added
        self.scope_removed[index] += step.scope_removed
        self.completed[index] += step.completed

    def merge(self, other: "DailyDeltas") -> None:
        for i in range(len(self)):
            self.scope_added[i] += other.scope_added[i]
            self.scope_removed[i] += other.scope_removed[i]
            self.completed[i] += other.completed[i]

    def net_scope(self, index: int) -> float:
        return self.scope_added[index] - self.scope_removed[index]


@dataclass(frozen=True)
class ReplayStep:
    scope_added: float = 0.0
    scope_removed: float = 0.0
    completed: float = 0.0


def apply_revision(carried: CarriedState, revision: DatedRevision, sprint_path: str,
                   done_states) -> tuple:
    """Apply one revision and return (new carried state, step deltas)."""
    current_state = revision.state or carried.state or ""
    current_iteration = revision.iteration or carried.iteration

    if revision.remaining is not None:
        current_remaining = revision.remaining
    elif is_done_like(current_state, done_states):
        # The tracker omits RemainingWork on most done transitions
        current_remaining = 0.0
    else:
        current_remaining = carried.remaining

    # Never estimated before: the first estimate counts from zero
    previous = carried.remaining if carried.remaining is not None else 0.0
    current = current_remaining if current_remaining is not None else 0.0
    accumulated = carried.completed

    was_in = in_sprint_path(carried.iteration, sprint_path)
    now_in = in_sprint_path(current_iteration, sprint_path)

    step = ReplayStep()
    if now_in and not was_in:
        # Entering: its completed share comes back into the sprint's ledger
        entering = max(0.0, current + accumulated)
        step = ReplayStep(scope_added=entering, completed=accumulated)
    elif was_in and not now_in:
        leaving = max(0.0, current + accumulated)
        step = ReplayStep(scope_removed=leaving, completed=-accumulated)
    elif was_in and now_in:
        completion = (
            previous > 0 and current == 0 and is_done_like(current_state, done_states)
        )
        if completion:
            step = ReplayStep(completed=previous)
            accumulated += previous
        elif previous == 0 and current > 0 and accumulated > 0:
            # Reopen: hours move back from completed to remaining
            debit = min(accumulated, current)
            accumulated -= debit
            excess = current - debit
            step = ReplayStep(scope_added=excess, completed=-debit)
        elif revision.remaining is not None:
            delta = current - previous
            if delta > 0:
                step = ReplayStep(scope_added=delta)
            elif delta < 0:
                step = ReplayStep(scope_removed=-delta)

    new_state = replace(
        carried,
        remaining=current_remaining,
        state=current_state or None,
        iteration=current_iteration,
        completed=accumulated,
        saw_remaining=carried.saw_remaining or revision.remaining is not None,
        saw_iteration=carried.saw_iteration or revision.iteration is not None,
    )
    return new_state, step


def approximate_revisions(item, sprint_path: str, first_day: date,
                          settings: Settings) -> list:
    """Single-point approximation for an item with no revision history.

    The item enters on max(created, day one) with its planned hours; a
    done-like item then completes on its closing (or last change) date.
    Items not currently in the sprint produce nothing.
    """
    if item.is_removed or not in_sprint_path(item.iteration_path, sprint_path):
        return []

    tz_name = settings.sprint_timezone
    done = is_done_like(item.state, settings.done_like_states)
    planned = planned_hours(item, done)
    if planned <= 0:
        return []

    created = to_business_date(item.created_date, tz_name)
    entry_day = max(created, first_day) if created else first_day
    logger.info(
        f"Item {item.id} has no revisions; approximating {planned}h entering on {entry_day}"
    )

    approximated = [
        DatedRevision(
            day=entry_day,
            remaining=planned,
            state=None,
            iteration=parse_iteration(item.iteration_path),
            rev=0,
        )
    ]
    if done:
        closed = to_business_date(item.closed_date or item.changed_date, tz_name)
        approximated.append(
            DatedRevision(
                day=max(closed, entry_day) if closed else entry_day,
                remaining=0.0,
                state=parse_state(item.state),
                iteration=None,
                rev=1,
            )
        )
    return approximated


def replay_item(item, revisions, sprint_path: str, days: list,
                settings: Optional[Settings] = None,
                window_end: Optional[date] = None) -> DailyDeltas:
    """Turn one item's revisions into per-working-day deltas.

    Revisions before day one only seed the carried state (they belong to the
    baseline). Revisions after ``window_end`` are ignored; those between the
    last working day and ``window_end`` land on the last working day.
    """
    settings = settings or Settings()
    deltas = DailyDeltas.zeros(len(days))
    first_day = days[0]
    window_end = window_end or days[-1]

    if revisions:
        dated = date_revisions(revisions, settings.sprint_timezone)
        carried, later = split_at(dated, first_day, settings.done_like_states)
        if not any(r.iteration for r in dated):
            # No iteration in the history at all: the item has always been where it is now
            carried = replace(
                carried,
                iteration=parse_iteration(item.iteration_path) or parse_iteration(sprint_path),
            )
    else:
        carried, later = CarriedState(), approximate_revisions(item, sprint_path, first_day, settings)

    created = to_business_date(item.created_date, settings.sprint_timezone)
    # Created before day one but its pre-sprint iteration is unknown: entering
    # is taken as having been inside all along, not as scope added
    quiet_entry = (
        bool(revisions) and created is not None and created < first_day
        and not carried.saw_iteration
    )

    for revision in later:
        if revision.day > window_end:
            break
        entering = (
            not in_sprint_path(carried.iteration, sprint_path)
            and in_sprint_path(revision.iteration or carried.iteration, sprint_path)
        )
        carried, step = apply_revision(carried, revision, sprint_path, settings.done_like_states)
        if entering and quiet_entry:
            continue
        deltas.add(day_index_at_or_after(revision.day, days), step)

    return deltas


def replay_sprint(sprint, items, revisions_by_item: dict, days: list,
                  settings: Optional[Settings] = None,
                  window_end: Optional[date] = None) -> DailyDeltas:
    """Sum the per-item deltas of every hours-type item."""
    settings = settings or Settings()
    total = DailyDeltas.zeros(len(days))
    for item in items:
        if str(item.type or "").strip().lower() not in settings.hours_types:
            continue
        total.merge(
            replay_item(item, revisions_by_item.get(item.id, []), sprint.path, days,
                        settings, window_end)
        )
    return total
