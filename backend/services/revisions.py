"""Carry-forward state over an item's sparse revision stream."""

import logging
from dataclasses import dataclass, replace
from datetime import date, timezone
from typing import Optional

from services.models import (
    CHANGED_DATE_FIELD,
    ITERATION_PATH_FIELD,
    REMAINING_WORK_FIELD,
    STATE_FIELD,
)
from services.settings import DEFAULT_DONE_LIKE_STATES
from services.work_fields import (
    is_done_like,
    parse_datetime,
    parse_hours,
    parse_iteration,
    parse_state,
    to_business_date,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CarriedState:
    """Last-known values for one item at a point in its revision stream."""

    remaining: Optional[float] = None
    state: Optional[str] = None
    iteration: Optional[str] = None
    completed: float = 0.0
    saw_remaining: bool = False
    saw_iteration: bool = False


@dataclass(frozen=True)
class DatedRevision:
    day: date
    remaining: Optional[float]
    state: Optional[str]
    iteration: Optional[str]
    rev: int


def changed_value(revision):
    return revision.changed_date or revision.get(CHANGED_DATE_FIELD)


def revision_timestamp(revision):
    return parse_datetime(changed_value(revision))


def date_revisions(revisions, tz_name: str = "UTC") -> list:
    """Parse and sort revisions by (timestamp, revision number).

    Revisions whose timestamp cannot be parsed cannot be placed on a day
    and are dropped.
    """
    keyed = []
    for revision in revisions:
        changed = revision_timestamp(revision)
        if changed is None:
            logger.debug(
                f"Skipping revision {revision.rev} of item {revision.work_item_id}: "
                f"unparsable timestamp {revision.changed_date!r}"
            )
            continue
        aware = changed if changed.tzinfo else changed.replace(tzinfo=timezone.utc)
        keyed.append((aware, revision.rev, revision))

    keyed.sort(key=lambda entry: (entry[0], entry[1]))

    return [
        DatedRevision(
            day=to_business_date(changed_value(revision), tz_name),
            remaining=parse_hours(revision.get(REMAINING_WORK_FIELD)),
            state=parse_state(revision.get(STATE_FIELD)),
            iteration=parse_iteration(revision.get(ITERATION_PATH_FIELD)),
            rev=revision.rev,
        )
        for aware, _, revision in keyed
    ]


def absorb(carried: CarriedState, revision: DatedRevision,
           done_states=DEFAULT_DONE_LIKE_STATES) -> CarriedState:
    """Fold one revision into the carried state using only explicit values.

    A done-like revision without remaining work means remaining is zero.
    """
    updates = {}
    if revision.remaining is not None:
        updates["remaining"] = revision.remaining
        updates["saw_remaining"] = True
    elif is_done_like(revision.state or carried.state, done_states):
        updates["remaining"] = 0.0
    if revision.state:
        updates["state"] = revision.state
    if revision.iteration:
        updates["iteration"] = revision.iteration
        updates["saw_iteration"] = True
    return replace(carried, **updates) if updates else carried


def split_at(dated: list, first_day: date, done_states=DEFAULT_DONE_LIKE_STATES) -> tuple:
    """Fold revisions before ``first_day`` and return (state, later revisions)."""
    carried = CarriedState()
    later = []
    for revision in dated:
        if revision.day < first_day:
            carried = absorb(carried, revision, done_states)
        else:
            later.append(revision)
    return carried, later
