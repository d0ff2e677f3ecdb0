"""Parsing and normalisation of work item field values.

Tracker values arrive as strings, numbers or nothing at all. Anything that
cannot be parsed is treated as absent (``None``) rather than zero, so a bad
value never shows up as a scope change.
"""

import math
import re
from datetime import date, datetime, timezone
from typing import Callable, Iterable, Optional
from zoneinfo import ZoneInfo

DONE = "done"
IN_PROGRESS = "in_progress"
OTHER = "other"

DATE_ONLY = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def parse_hours(value) -> Optional[float]:
    """Parse a work-hours value. Returns None when absent or unparsable."""
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def parse_datetime(value) -> Optional[datetime]:
    """Parse a tracker timestamp.

    Accepts datetime/date objects and the string layouts the tracker emits,
    e.g. "2024-10-31T12:11:56.289-0400", "2024-10-31T12:11:56.289Z" or a
    bare "2024-10-31".
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if not isinstance(value, str):
        return None

    text = value.strip()
    formats = [
        "%Y-%m-%dT%H:%M:%S.%f%z",  # With milliseconds and timezone
        "%Y-%m-%dT%H:%M:%S%z",      # Without milliseconds, with timezone
        "%Y-%m-%dT%H:%M:%S.%f",     # With milliseconds, no timezone
        "%Y-%m-%dT%H:%M:%S",        # Basic ISO format
        "%Y-%m-%d"                   # Date only
    ]
    for fmt in formats:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue

    # Seven-digit fractions and other ISO variants
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None


def parse_date(value) -> Optional[date]:
    """Parse a calendar date (no timezone shifting)."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    parsed = parse_datetime(value)
    return parsed.date() if parsed else None


def to_business_date(value, tz_name: str = "UTC") -> Optional[date]:
    """Map a timestamp to its calendar date in the sprint timezone.

    Naive timestamps are taken as UTC. Plain dates and bare "YYYY-MM-DD"
    strings are returned unchanged.
    """
    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    if isinstance(value, str) and DATE_ONLY.match(value.strip()):
        # A bare calendar date has no instant to shift
        return parse_date(value)
    parsed = parse_datetime(value)
    if parsed is None:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(ZoneInfo(tz_name)).date()


def parse_state(value) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip().lower()
    return text or None


def parse_iteration(value) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip().lower()
    return text or None


def in_sprint_path(iteration: Optional[str], sprint_path: str) -> bool:
    """Case-insensitive membership: equal to the sprint path or a child of it."""
    it = str(iteration or "").strip().lower()
    if not it:
        return False
    sp = str(sprint_path or "").strip().lower()
    return it == sp or it.startswith(sp + "\\")


def is_done_like(state: Optional[str], done_states: Iterable[str]) -> bool:
    return str(state or "").strip().lower() in done_states


def lifecycle_category(state: Optional[str], done_states: Iterable[str],
                       in_progress_states: Iterable[str]) -> str:
    """Normalise a free-text state to done / in_progress / other."""
    s = str(state or "").strip().lower()
    if s in done_states:
        return DONE
    if s in in_progress_states or "progress" in s:
        return IN_PROGRESS
    return OTHER


def resolve_positive(candidates: Iterable[Callable[[], Optional[float]]],
                     default: float = 0.0) -> float:
    """Evaluate candidate accessors in order and return the first positive value."""
    for candidate in candidates:
        value = parse_hours(candidate())
        if value is not None and value > 0:
            return value
    return default


def planned_hours(item, done: bool) -> float:
    """Best available planned-hours figure for an item from its current fields.

    Order: current value (completed work when done, remaining otherwise),
    last observed remaining, remaining at completion, completed + remaining,
    original estimate.
    """
    return resolve_positive([
        lambda: item.completed_work if done else item.remaining_work,
        lambda: item.last_remaining_work,
        lambda: item.done_remaining_work,
        lambda: (parse_hours(item.remaining_work) or 0) + (parse_hours(item.completed_work) or 0),
        lambda: item.original_estimate,
    ])


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def business_today(tz_name: str = "UTC") -> date:
    """Today's calendar date in the sprint timezone."""
    return to_business_date(datetime.now(timezone.utc), tz_name)
