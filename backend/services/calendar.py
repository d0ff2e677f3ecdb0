"""Working-day calendar and team-wide day-off resolution."""

from bisect import bisect_left
from datetime import date, timedelta
from typing import Iterable, Optional

from services.errors import NoWorkingDaysError
from services.work_fields import parse_date


def _is_weekday(day: date) -> bool:
    return day.weekday() < 5  # Monday = 0, Friday = 4


def business_days(start: date, end: date, excluded: Optional[set] = None) -> list:
    """Working days from start to end (inclusive), minus weekends and excluded dates.

    Raises:
        NoWorkingDaysError: when nothing qualifies.
    """
    excluded = excluded or set()
    days = []
    current = start
    while current <= end:
        if _is_weekday(current) and current not in excluded:
            days.append(current)
        current += timedelta(days=1)

    if not days:
        raise NoWorkingDaysError(start, end)
    return days


def expand_day_off_ranges(ranges: Iterable) -> set:
    """Expand day-off ranges into the weekdays they cover.

    Ranges with a missing or unparsable bound are ignored.
    """
    days = set()
    for day_off in ranges:
        start = parse_date(getattr(day_off, "start", None))
        end = parse_date(getattr(day_off, "end", None))
        if not start or not end:
            continue
        current = start
        while current <= end:
            if _is_weekday(current):
                days.add(current)
            current += timedelta(days=1)
    return days


def resolve_team_days_off(member_days_off: Iterable) -> set:
    """Dates on which every member is off.

    An individual's day off does not close the sprint, so only the
    intersection is returned. No members means no team-wide day off.
    """
    member_sets = [expand_day_off_ranges(m.ranges) for m in member_days_off]
    if not member_sets:
        return set()
    team_off = member_sets[0]
    for days in member_sets[1:]:
        team_off = team_off & days
    return team_off


def excluded_dates_for_sprint(sprint) -> set:
    """Team-level day-off ranges plus the days every member is off."""
    return expand_day_off_ranges(sprint.team_days_off) | resolve_team_days_off(
        sprint.member_days_off
    )


def day_index_at_or_after(day: date, days: list) -> int:
    """Index of the first working day on or after ``day``.

    Days past the last working day land on the last one.
    """
    idx = bisect_left(days, day)
    return min(idx, len(days) - 1)
