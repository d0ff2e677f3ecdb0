"""Day-zero planned effort for a sprint."""

import logging
import time
from dataclasses import dataclass
from datetime import date
from typing import Optional

from services.revisions import date_revisions, split_at
from services.settings import DEFAULT_DONE_LIKE_STATES, Settings
from services.work_fields import in_sprint_path, parse_hours, round_half_up, to_business_date

logger = logging.getLogger(__name__)

SOURCE_REVISIONS = "revisions"
SOURCE_PLANNED_HOURS = "planned_hours"
SOURCE_NONE = "none"


@dataclass(frozen=True)
class Baseline:
    hours: int
    contributors: int
    source: str

    @property
    def is_zero_evidence(self) -> bool:
        return self.source == SOURCE_NONE

    def to_dict(self) -> dict:
        return {
            "hours": self.hours,
            "contributors": self.contributors,
            "source": self.source,
            "zeroEvidence": self.is_zero_evidence,
        }


def item_baseline_contribution(item, revisions, sprint_path: str, first_day: date,
                               tz_name: str = "UTC",
                               done_states=DEFAULT_DONE_LIKE_STATES) -> float:
    """Remaining hours an item had already planned in the sprint before day one.

    Requires explicit pre-day-one iteration evidence: an item created early
    that only joined after day one must not be counted here.
    """
    created = to_business_date(item.created_date, tz_name)
    if created is None or created >= first_day:
        return 0.0

    carried, _ = split_at(date_revisions(revisions, tz_name), first_day, done_states)
    if not carried.saw_iteration or not in_sprint_path(carried.iteration, sprint_path):
        return 0.0
    if not carried.saw_remaining or not carried.remaining or carried.remaining <= 0:
        return 0.0
    return carried.remaining


def compute_baseline(sprint, items, revisions_by_item: dict, first_day: date,
                     settings: Optional[Settings] = None) -> Baseline:
    settings = settings or Settings()
    total = 0.0
    contributors = 0

    for item in items:
        if str(item.type or "").strip().lower() not in settings.hours_types:
            continue
        contribution = item_baseline_contribution(
            item,
            revisions_by_item.get(item.id, []),
            sprint.path,
            first_day,
            settings.sprint_timezone,
            settings.done_like_states,
        )
        if contribution > 0:
            total += contribution
            contributors += 1

    if total > 0:
        return Baseline(round_half_up(total), contributors, SOURCE_REVISIONS)

    planned = parse_hours(sprint.total_planned_hours)
    if planned is not None and planned > 0:
        logger.warning(
            f"No pre-sprint revision evidence for {sprint.name}; "
            f"using recorded planned hours {planned}h as baseline"
        )
        return Baseline(round_half_up(planned), 0, SOURCE_PLANNED_HOURS)

    logger.warning(f"Zero baseline for {sprint.name}: no contributing items and no planned hours")
    return Baseline(0, 0, SOURCE_NONE)


class BaselineCalculator:
    """Baseline computation with a short per-sprint cache."""

    def __init__(self, settings: Optional[Settings] = None, ttl: Optional[float] = None,
                 clock=time.monotonic):
        self.settings = settings or Settings()
        self.ttl = self.settings.baseline_cache_ttl if ttl is None else ttl
        self._clock = clock
        self._cache = {}

    def calculate(self, sprint, items, revisions_by_item: dict, first_day: date) -> Baseline:
        cache_key = (sprint.id, first_day)
        cached = self._cache.get(cache_key)
        if cached is not None and self._clock() - cached[0] < self.ttl:
            return cached[1]

        baseline = compute_baseline(sprint, items, revisions_by_item, first_day, self.settings)
        self._cache[cache_key] = (self._clock(), baseline)
        return baseline

    def invalidate(self, sprint_id: Optional[str] = None) -> None:
        if sprint_id is None:
            self._cache.clear()
            return
        for key in [k for k in self._cache if k[0] == sprint_id]:
            del self._cache[key]
