"""Domain records shared by the reconstruction services."""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Optional

# Tracker reference names carried on revisions
REMAINING_WORK_FIELD = "Microsoft.VSTS.Scheduling.RemainingWork"
STATE_FIELD = "System.State"
ITERATION_PATH_FIELD = "System.IterationPath"
CHANGED_DATE_FIELD = "System.ChangedDate"


@dataclass(frozen=True)
class DayOffRange:
    start: date
    end: date


@dataclass(frozen=True)
class MemberDaysOff:
    member: str
    ranges: tuple = ()


@dataclass(frozen=True)
class Sprint:
    id: str
    name: str
    path: str
    start_date: Optional[date]
    end_date: Optional[date]
    state: str = "active"
    total_planned_hours: Optional[float] = None
    member_days_off: tuple = ()
    team_days_off: tuple = ()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "path": self.path,
            "startDate": self.start_date.isoformat() if self.start_date else None,
            "endDate": self.end_date.isoformat() if self.end_date else None,
            "state": self.state,
            "totalPlannedHours": self.total_planned_hours,
        }


@dataclass(frozen=True)
class WorkItem:
    id: int
    type: str
    state: str
    iteration_path: Optional[str] = None
    sprint_id: Optional[str] = None
    is_removed: bool = False
    is_blocked: bool = False
    created_date: Optional[datetime] = None
    activated_date: Optional[datetime] = None
    closed_date: Optional[datetime] = None
    changed_date: Optional[datetime] = None
    remaining_work: Optional[float] = None
    completed_work: Optional[float] = None
    initial_remaining_work: Optional[float] = None
    last_remaining_work: Optional[float] = None
    done_remaining_work: Optional[float] = None
    original_estimate: Optional[float] = None


@dataclass(frozen=True)
class Revision:
    """One change event. ``fields`` holds only the fields that changed."""

    work_item_id: int
    rev: int
    changed_date: Any
    fields: dict = field(default_factory=dict)

    def get(self, name: str) -> Any:
        return self.fields.get(name)


@dataclass(frozen=True)
class SprintSnapshot:
    sprint_id: str
    snapshot_date: date
    remaining_work: int = 0
    completed_work: int = 0
    total_work: int = 0
    ideal_remaining: int = 0
    todo_count: int = 0
    in_progress_count: int = 0
    done_count: int = 0
    blocked_count: int = 0
    added_hours: int = 0
    removed_hours: int = 0

    def to_dict(self) -> dict:
        return {
            "sprintId": self.sprint_id,
            "snapshotDate": self.snapshot_date.isoformat(),
            "remainingWork": self.remaining_work,
            "completedWork": self.completed_work,
            "totalWork": self.total_work,
            "idealRemaining": self.ideal_remaining,
            "todoCount": self.todo_count,
            "inProgressCount": self.in_progress_count,
            "doneCount": self.done_count,
            "blockedCount": self.blocked_count,
            "addedHours": self.added_hours,
            "removedHours": self.removed_hours,
        }
