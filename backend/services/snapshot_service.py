"""Rebuild of one sprint's snapshot rows from its revision history."""

import logging
from dataclasses import dataclass
from datetime import date
from typing import Optional

from services.aggregator import aggregate
from services.baseline import Baseline, BaselineCalculator
from services.calendar import business_days, excluded_dates_for_sprint
from services.errors import NoWorkingDaysError, SprintNotFoundError
from services.models import SprintSnapshot
from services.replay import replay_sprint
from services.settings import Settings
from services.state_classifier import count_states_by_day

logger = logging.getLogger(__name__)

STATUS_OK = "ok"
STATUS_SKIPPED = "skipped"


@dataclass
class RebuildResult:
    sprint_id: str
    status: str
    rows: int = 0
    reason: Optional[str] = None
    baseline: Optional[Baseline] = None

    def to_dict(self) -> dict:
        return {
            "sprintId": self.sprint_id,
            "status": self.status,
            "rows": self.rows,
            "reason": self.reason,
            "baseline": self.baseline.to_dict() if self.baseline else None,
        }


class SnapshotService:
    """Per-sprint unit of work: load, replay, aggregate, replace rows."""

    def __init__(self, store, settings: Optional[Settings] = None,
                 calculator: Optional[BaselineCalculator] = None):
        self.store = store
        self.settings = settings or Settings()
        self.calculator = calculator or BaselineCalculator(self.settings)

    def get_sprint(self, sprint_id: str):
        sprint = self.store.get_sprint(sprint_id)
        if sprint is None:
            raise SprintNotFoundError(sprint_id)
        return sprint

    def working_days(self, sprint, until: Optional[date] = None) -> list:
        """Working days of the sprint, optionally cut at ``until``.

        Raises:
            NoWorkingDaysError: when the window holds no working day.
        """
        if not sprint.start_date or not sprint.end_date:
            raise NoWorkingDaysError(sprint.start_date, sprint.end_date)
        end = min(sprint.end_date, until) if until else sprint.end_date
        return business_days(sprint.start_date, end, excluded_dates_for_sprint(sprint))

    def rebuild_sprint(self, sprint_id: str, as_of: Optional[date] = None,
                       refresh_baseline: bool = False) -> RebuildResult:
        """Recompute every row of a sprint and replace what is stored.

        With ``as_of`` the series stops at that day (open sprints); stored
        rows past it are removed. Running it twice on the same data writes
        the same rows.
        """
        sprint = self.get_sprint(sprint_id)

        try:
            days = self.working_days(sprint, until=as_of)
        except NoWorkingDaysError as e:
            logger.warning(f"Skipping {sprint.name}: {e}")
            return RebuildResult(sprint.id, STATUS_SKIPPED, reason=str(e))

        window_end = min(sprint.end_date, as_of) if as_of else sprint.end_date
        items = self.store.get_work_items(sprint.id, include_removed=True)
        revisions_by_item = self.store.get_revisions([i.id for i in items])

        if refresh_baseline:
            self.calculator.invalidate(sprint.id)
        baseline = self.calculator.calculate(sprint, items, revisions_by_item, days[0])

        deltas = replay_sprint(
            sprint, items, revisions_by_item, days, self.settings, window_end=window_end
        )
        series = aggregate(baseline.hours, deltas, days)
        counts = count_states_by_day(items, days, self.settings)

        rows = [
            SprintSnapshot(
                sprint_id=sprint.id,
                snapshot_date=day,
                remaining_work=series.remaining[i],
                completed_work=series.completed[i],
                total_work=series.total_work[i],
                ideal_remaining=series.ideal[i],
                todo_count=counts[i].todo,
                in_progress_count=counts[i].in_progress,
                done_count=counts[i].done,
                blocked_count=counts[i].blocked,
                added_hours=series.scope_added[i],
                removed_hours=series.scope_removed[i],
            )
            for i, day in enumerate(days)
        ]
        self.store.replace_snapshots(sprint.id, rows)

        logger.info(
            f"Rebuilt {len(rows)} rows for {sprint.name} "
            f"(baseline {baseline.hours}h from {baseline.source})"
        )
        return RebuildResult(sprint.id, STATUS_OK, rows=len(rows), baseline=baseline)

    def baseline_for(self, sprint_id: str) -> dict:
        """Baseline diagnostics for a sprint."""
        sprint = self.get_sprint(sprint_id)
        days = self.working_days(sprint)
        items = self.store.get_work_items(sprint.id, include_removed=True)
        revisions_by_item = self.store.get_revisions([i.id for i in items])
        baseline = self.calculator.calculate(sprint, items, revisions_by_item, days[0])

        result = baseline.to_dict()
        result["sprint"] = sprint.to_dict()
        result["firstWorkingDay"] = days[0].isoformat()
        result["itemCount"] = len(items)
        return result

    def working_days_for(self, sprint_id: str) -> dict:
        sprint = self.get_sprint(sprint_id)
        excluded = excluded_dates_for_sprint(sprint)
        days = self.working_days(sprint)
        return {
            "sprint": sprint.to_dict(),
            "workingDays": [d.isoformat() for d in days],
            "teamDaysOff": sorted(d.isoformat() for d in excluded),
            "count": len(days),
        }
