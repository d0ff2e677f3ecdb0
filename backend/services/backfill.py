"""Triggers that run the per-sprint unit of work over one or many sprints.

Each sprint is independent: a failure is recorded in the report and the
next sprint still runs. Transient storage failures are retried with fixed
delays before the sprint is given up.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, Iterable, Optional

from services.errors import BurndownError, TransientStorageError
from services.live_snapshot import capture_live_snapshot
from services.snapshot_service import STATUS_OK, STATUS_SKIPPED, SnapshotService
from services.store import is_transient_db_error
from services.work_fields import business_today

logger = logging.getLogger(__name__)


def is_transient_storage_error(error: Exception) -> bool:
    if isinstance(error, TransientStorageError):
        return True
    if isinstance(error, (ConnectionError, TimeoutError)):
        return True
    return is_transient_db_error(error)


@dataclass
class BackfillReport:
    processed: int = 0
    succeeded: int = 0
    skipped: int = 0
    failures: list = field(default_factory=list)
    results: list = field(default_factory=list)

    def record_failure(self, sprint_id: str, name: Optional[str], error: Exception) -> None:
        self.processed += 1
        self.failures.append({"sprintId": sprint_id, "name": name, "error": str(error)})

    def to_dict(self) -> dict:
        return {
            "processed": self.processed,
            "succeeded": self.succeeded,
            "skipped": self.skipped,
            "failed": len(self.failures),
            "failures": self.failures,
            "results": self.results,
        }


class BackfillOrchestrator:
    def __init__(self, service: SnapshotService, retry_delays: Optional[Iterable[float]] = None,
                 sleep: Callable[[float], None] = time.sleep):
        self.service = service
        self.store = service.store
        self.settings = service.settings
        self.retry_delays = tuple(
            self.settings.retry_delays if retry_delays is None else retry_delays
        )
        self._sleep = sleep

    def with_retry(self, label: str, fn: Callable):
        """Call ``fn``, retrying transient storage errors after each configured delay."""
        for attempt, delay in enumerate(self.retry_delays + (None,), start=1):
            try:
                return fn()
            except Exception as e:
                if delay is None or not is_transient_storage_error(e):
                    raise
                logger.warning(
                    f"{label}: transient storage error on attempt {attempt} ({e}), "
                    f"retrying in {delay}s"
                )
                self._sleep(delay)

    def _run(self, report: BackfillReport, sprint_id: str, name: Optional[str], fn: Callable) -> None:
        try:
            result = self.with_retry(f"Sprint {sprint_id}", fn)
        except (BurndownError, LookupError, ValueError) as e:
            logger.error(f"Sprint {sprint_id} failed: {e}")
            report.record_failure(sprint_id, name, e)
            return
        except Exception as e:
            logger.exception(f"Sprint {sprint_id} failed unexpectedly")
            report.record_failure(sprint_id, name, e)
            return

        report.processed += 1
        if result is None or result.get("status") == STATUS_SKIPPED:
            report.skipped += 1
        else:
            report.succeeded += 1
        report.results.append(result or {"sprintId": sprint_id, "status": STATUS_SKIPPED})

    def _active_sprints(self) -> list:
        return self.with_retry("List active sprints", lambda: self.store.list_sprints("active"))

    def recompute_sprint(self, sprint_id: str, as_of: Optional[date] = None) -> BackfillReport:
        report = BackfillReport()
        self._run(report, sprint_id, None,
                  lambda: self.service.rebuild_sprint(sprint_id, as_of=as_of).to_dict())
        return report

    def recompute_open_sprints(self, today: Optional[date] = None) -> BackfillReport:
        """Rebuild every active sprint up to ``today``."""
        today = today or business_today(self.settings.sprint_timezone)
        report = BackfillReport()
        for sprint in self._active_sprints():
            self._run(report, sprint.id, sprint.name,
                      lambda s=sprint: self.service.rebuild_sprint(s.id, as_of=today).to_dict())
        logger.info(
            f"Recomputed open sprints: {report.succeeded} ok, {report.skipped} skipped, "
            f"{len(report.failures)} failed"
        )
        return report

    def rebuild_history(self, sprint_ids: Iterable[str]) -> BackfillReport:
        """Full rebuild of the named sprints with a fresh baseline."""
        report = BackfillReport()
        for sprint_id in sprint_ids:
            self._run(
                report, sprint_id, None,
                lambda s=sprint_id: self.service.rebuild_sprint(s, refresh_baseline=True).to_dict(),
            )
        return report

    def capture_live(self, sprint_id: str, today: Optional[date] = None) -> BackfillReport:
        today = today or business_today(self.settings.sprint_timezone)
        report = BackfillReport()
        self._run(report, sprint_id, None, lambda: self._live_row(sprint_id, today))
        return report

    def capture_live_snapshots(self, today: Optional[date] = None) -> BackfillReport:
        today = today or business_today(self.settings.sprint_timezone)
        report = BackfillReport()
        for sprint in self._active_sprints():
            self._run(report, sprint.id, sprint.name,
                      lambda s=sprint: self._live_row(s.id, today))
        return report

    def _live_row(self, sprint_id: str, today: date) -> dict:
        row = capture_live_snapshot(self.store, sprint_id, today, self.settings)
        if row is None:
            return {"sprintId": sprint_id, "status": STATUS_SKIPPED,
                    "reason": f"{today} is not a working day of the sprint"}
        return {"sprintId": sprint_id, "status": STATUS_OK, "snapshot": row.to_dict()}
