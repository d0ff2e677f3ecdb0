"""Cumulative-flow item counts per day.

Uses each item's final lifecycle timestamps, not a replay of its state
history. If an item's activation or closing date was edited after the fact,
past days reflect the edited value. This is a known approximation suited to
item-count flow charts and must not feed the hours series.
"""

from dataclasses import dataclass
from datetime import date
from typing import Optional

from services.settings import Settings
from services.work_fields import DONE, IN_PROGRESS, lifecycle_category, to_business_date

TODO = "todo"


@dataclass(frozen=True)
class StateCounts:
    todo: int = 0
    in_progress: int = 0
    done: int = 0
    blocked: int = 0

    def to_dict(self) -> dict:
        return {
            "todoCount": self.todo,
            "inProgressCount": self.in_progress,
            "doneCount": self.done,
            "blockedCount": self.blocked,
        }


def classify_item(item, day: date, settings: Optional[Settings] = None) -> Optional[str]:
    """Bucket an item as of the end of ``day``; None if it did not exist yet."""
    settings = settings or Settings()
    tz_name = settings.sprint_timezone

    created = to_business_date(item.created_date, tz_name)
    if created is None or created > day:
        return None

    category = lifecycle_category(
        item.state, settings.done_like_states, settings.in_progress_states
    )
    changed = to_business_date(item.changed_date, tz_name)

    closed = to_business_date(item.closed_date, tz_name)
    if closed is not None:
        done = closed <= day
    else:
        done = category == DONE and changed is not None and changed <= day
    if done:
        return DONE

    activated = to_business_date(item.activated_date, tz_name)
    if activated is not None:
        started = activated <= day
    else:
        started = category == IN_PROGRESS and changed is not None and changed <= day
    return IN_PROGRESS if started else TODO


def count_states(items, day: date, settings: Optional[Settings] = None) -> StateCounts:
    """Counts for one day over countable, non-removed items.

    Blocked is an overlay: a blocked item is also counted in its bucket.
    """
    settings = settings or Settings()
    buckets = {TODO: 0, IN_PROGRESS: 0, DONE: 0}
    blocked = 0

    for item in items:
        if item.is_removed:
            continue
        if str(item.type or "").strip().lower() not in settings.flow_types:
            continue
        bucket = classify_item(item, day, settings)
        if bucket is None:
            continue
        buckets[bucket] += 1
        if item.is_blocked:
            blocked += 1

    return StateCounts(
        todo=buckets[TODO],
        in_progress=buckets[IN_PROGRESS],
        done=buckets[DONE],
        blocked=blocked,
    )


def count_states_by_day(items, days: list, settings: Optional[Settings] = None) -> list:
    return [count_states(items, day, settings) for day in days]
