"""Storage access for sprints, work items, revisions and snapshot rows.

Every service receives a ``SnapshotStore``; there is no module-level
connection. ``InMemoryStore`` backs unit tests, ``SqlStore`` runs on any
SQLAlchemy URL that supports ``ON CONFLICT`` upserts (SQLite, PostgreSQL).
"""

import json
import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import replace
from datetime import date
from typing import Iterable, Optional

from sqlalchemy import bindparam, create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DisconnectionError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from services.errors import TransientStorageError
from services.models import DayOffRange, MemberDaysOff, Revision, Sprint, SprintSnapshot, WorkItem
from services.work_fields import parse_date, parse_datetime, parse_hours

logger = logging.getLogger(__name__)

TRANSIENT_MARKERS = (
    "could not connect",
    "can't connect",
    "connection refused",
    "connection reset",
    "server closed the connection",
    "connection terminated",
    "timed out",
    "timeout",
    "database is locked",
)


class SnapshotStore(ABC):
    """Read access to tracker data and keyed writes of snapshot rows."""

    @abstractmethod
    def get_sprint(self, sprint_id: str) -> Optional[Sprint]:
        pass

    @abstractmethod
    def list_sprints(self, state: Optional[str] = None) -> list:
        pass

    @abstractmethod
    def get_work_items(self, sprint_id: str, include_removed: bool = True) -> list:
        pass

    @abstractmethod
    def get_revisions(self, item_ids: Iterable[int]) -> dict:
        """Revisions per item id, ordered by revision number."""
        pass

    @abstractmethod
    def update_history_fields(self, item_id: int, initial: Optional[float],
                              last: Optional[float], done: Optional[float]) -> None:
        pass

    @abstractmethod
    def get_snapshots(self, sprint_id: str) -> list:
        pass

    @abstractmethod
    def upsert_snapshots(self, rows: list) -> None:
        pass

    @abstractmethod
    def replace_snapshots(self, sprint_id: str, rows: list) -> None:
        """Delete every row of the sprint and write ``rows`` in one unit."""
        pass

    @abstractmethod
    def delete_snapshots(self, sprint_id: str, after: Optional[date] = None) -> int:
        pass

    # Seeding helpers for the ingestion side and tests

    @abstractmethod
    def save_sprint(self, sprint: Sprint) -> None:
        pass

    @abstractmethod
    def save_work_items(self, items: Iterable[WorkItem]) -> None:
        pass

    @abstractmethod
    def save_revisions(self, revisions: Iterable[Revision]) -> None:
        pass


class InMemoryStore(SnapshotStore):
    def __init__(self):
        self._sprints = {}
        self._items = {}
        self._revisions = {}
        self._snapshots = {}

    def get_sprint(self, sprint_id):
        return self._sprints.get(sprint_id)

    def list_sprints(self, state=None):
        sprints = sorted(self._sprints.values(), key=lambda s: (s.start_date or date.min, s.id))
        if state is None:
            return sprints
        return [s for s in sprints if str(s.state).lower() == state.lower()]

    def get_work_items(self, sprint_id, include_removed=True):
        items = [i for i in self._items.values() if i.sprint_id == sprint_id]
        if not include_removed:
            items = [i for i in items if not i.is_removed]
        return sorted(items, key=lambda i: i.id)

    def get_revisions(self, item_ids):
        return {
            item_id: sorted(self._revisions.get(item_id, {}).values(), key=lambda r: r.rev)
            for item_id in item_ids
        }

    def update_history_fields(self, item_id, initial, last, done):
        item = self._items[item_id]
        self._items[item_id] = replace(
            item,
            initial_remaining_work=initial,
            last_remaining_work=last,
            done_remaining_work=done,
        )

    def get_snapshots(self, sprint_id):
        rows = self._snapshots.get(sprint_id, {})
        return [rows[d] for d in sorted(rows)]

    def upsert_snapshots(self, rows):
        for row in rows:
            self._snapshots.setdefault(row.sprint_id, {})[row.snapshot_date] = row

    def replace_snapshots(self, sprint_id, rows):
        self._snapshots[sprint_id] = {}
        self.upsert_snapshots(rows)

    def delete_snapshots(self, sprint_id, after=None):
        rows = self._snapshots.get(sprint_id, {})
        doomed = [d for d in rows if after is None or d > after]
        for d in doomed:
            del rows[d]
        return len(doomed)

    def save_sprint(self, sprint):
        self._sprints[sprint.id] = sprint

    def save_work_items(self, items):
        for item in items:
            self._items[item.id] = item

    def save_revisions(self, revisions):
        for revision in revisions:
            self._revisions.setdefault(revision.work_item_id, {})[revision.rev] = revision


def _iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _days_off_to_json(members) -> str:
    return json.dumps([
        {
            "member": m.member,
            "ranges": [{"start": _iso(r.start), "end": _iso(r.end)} for r in m.ranges],
        }
        for m in members
    ])


def _ranges_from_json(ranges) -> tuple:
    return tuple(
        DayOffRange(parse_date(r.get("start")), parse_date(r.get("end")))
        for r in ranges or []
    )


def is_transient_db_error(error: Exception) -> bool:
    if isinstance(error, (DisconnectionError, PoolTimeoutError)):
        return True
    if isinstance(error, OperationalError):
        if getattr(error, "connection_invalidated", False):
            return True
        message = str(error).lower()
        return any(marker in message for marker in TRANSIENT_MARKERS)
    return False


class SqlStore(SnapshotStore):
    """SQLAlchemy-backed store with idempotent upserts keyed by (sprint, day)."""

    def __init__(self, db_url: str):
        if not db_url:
            raise ValueError("Database URL is required")
        self.engine: Engine = create_engine(db_url, pool_pre_ping=True, echo=False)

    def close(self) -> None:
        self.engine.dispose()

    @contextmanager
    def _transaction(self):
        try:
            with self.engine.begin() as conn:
                yield conn
        except (OperationalError, DisconnectionError, PoolTimeoutError) as e:
            if is_transient_db_error(e):
                logger.warning(f"Transient database error: {e}")
                raise TransientStorageError(str(e)) from e
            raise

    def ensure_tables(self) -> None:
        stmts = [
            """
            CREATE TABLE IF NOT EXISTS sprints (
              id TEXT PRIMARY KEY,
              name TEXT NOT NULL,
              path TEXT NOT NULL,
              start_date TEXT,
              end_date TEXT,
              state TEXT NOT NULL,
              total_planned_hours REAL,
              member_days_off TEXT NOT NULL DEFAULT '[]',
              team_days_off TEXT NOT NULL DEFAULT '[]'
            )
            """,
            """
            CREATE TABLE IF NOT EXISTS work_items (
              id INTEGER PRIMARY KEY,
              type TEXT NOT NULL,
              state TEXT NOT NULL,
              iteration_path TEXT,
              sprint_id TEXT,
              is_removed INTEGER NOT NULL DEFAULT 0,
              is_blocked INTEGER NOT NULL DEFAULT 0,
              created_date TEXT,
              activated_date TEXT,
              closed_date TEXT,
              changed_date TEXT,
              remaining_work REAL,
              completed_work REAL,
              initial_remaining_work REAL,
              last_remaining_work REAL,
              done_remaining_work REAL,
              original_estimate REAL
            )
            """,
            """
            CREATE TABLE IF NOT EXISTS work_item_revisions (
              work_item_id INTEGER NOT NULL,
              rev INTEGER NOT NULL,
              changed_date TEXT,
              fields TEXT NOT NULL,
              PRIMARY KEY (work_item_id, rev)
            )
            """,
            """
            CREATE TABLE IF NOT EXISTS sprint_snapshots (
              sprint_id TEXT NOT NULL,
              snapshot_date TEXT NOT NULL,
              remaining_work INTEGER NOT NULL,
              completed_work INTEGER NOT NULL,
              total_work INTEGER NOT NULL,
              ideal_remaining INTEGER NOT NULL,
              todo_count INTEGER NOT NULL,
              in_progress_count INTEGER NOT NULL,
              done_count INTEGER NOT NULL,
              blocked_count INTEGER NOT NULL,
              added_hours INTEGER NOT NULL,
              removed_hours INTEGER NOT NULL,
              PRIMARY KEY (sprint_id, snapshot_date)
            )
            """,
            "CREATE INDEX IF NOT EXISTS idx_work_items_sprint ON work_items(sprint_id)",
        ]
        with self._transaction() as conn:
            for stmt in stmts:
                conn.execute(text(stmt))

    def _sprint_from_row(self, row) -> Sprint:
        members = json.loads(row["member_days_off"] or "[]")
        return Sprint(
            id=row["id"],
            name=row["name"],
            path=row["path"],
            start_date=parse_date(row["start_date"]),
            end_date=parse_date(row["end_date"]),
            state=row["state"],
            total_planned_hours=parse_hours(row["total_planned_hours"]),
            member_days_off=tuple(
                MemberDaysOff(m.get("member", ""), _ranges_from_json(m.get("ranges")))
                for m in members
            ),
            team_days_off=tuple(
                r for m in json.loads(row["team_days_off"] or "[]")
                for r in _ranges_from_json(m.get("ranges"))
            ),
        )

    def get_sprint(self, sprint_id):
        with self._transaction() as conn:
            row = conn.execute(
                text("SELECT * FROM sprints WHERE id = :id"), {"id": sprint_id}
            ).mappings().first()
        return self._sprint_from_row(row) if row else None

    def list_sprints(self, state=None):
        query = "SELECT * FROM sprints"
        params = {}
        if state is not None:
            query += " WHERE LOWER(state) = :state"
            params["state"] = state.lower()
        query += " ORDER BY start_date, id"
        with self._transaction() as conn:
            rows = conn.execute(text(query), params).mappings().all()
        return [self._sprint_from_row(r) for r in rows]

    def get_work_items(self, sprint_id, include_removed=True):
        query = "SELECT * FROM work_items WHERE sprint_id = :sprint_id"
        if not include_removed:
            query += " AND is_removed = 0"
        query += " ORDER BY id"
        with self._transaction() as conn:
            rows = conn.execute(text(query), {"sprint_id": sprint_id}).mappings().all()
        return [
            WorkItem(
                id=r["id"],
                type=r["type"],
                state=r["state"],
                iteration_path=r["iteration_path"],
                sprint_id=r["sprint_id"],
                is_removed=bool(r["is_removed"]),
                is_blocked=bool(r["is_blocked"]),
                created_date=parse_datetime(r["created_date"]),
                activated_date=parse_datetime(r["activated_date"]),
                closed_date=parse_datetime(r["closed_date"]),
                changed_date=parse_datetime(r["changed_date"]),
                remaining_work=r["remaining_work"],
                completed_work=r["completed_work"],
                initial_remaining_work=r["initial_remaining_work"],
                last_remaining_work=r["last_remaining_work"],
                done_remaining_work=r["done_remaining_work"],
                original_estimate=r["original_estimate"],
            )
            for r in rows
        ]

    def get_revisions(self, item_ids):
        ids = list(item_ids)
        if not ids:
            return {}
        stmt = text(
            "SELECT * FROM work_item_revisions WHERE work_item_id IN :ids "
            "ORDER BY work_item_id, rev"
        ).bindparams(bindparam("ids", expanding=True))
        with self._transaction() as conn:
            rows = conn.execute(stmt, {"ids": ids}).mappings().all()

        result = {item_id: [] for item_id in ids}
        for r in rows:
            result[r["work_item_id"]].append(
                Revision(
                    work_item_id=r["work_item_id"],
                    rev=r["rev"],
                    changed_date=r["changed_date"],
                    fields=json.loads(r["fields"]),
                )
            )
        return result

    def update_history_fields(self, item_id, initial, last, done):
        with self._transaction() as conn:
            conn.execute(
                text(
                    """
                    UPDATE work_items SET
                      initial_remaining_work = :initial,
                      last_remaining_work = :last,
                      done_remaining_work = :done
                    WHERE id = :id
                    """
                ),
                {"id": item_id, "initial": initial, "last": last, "done": done},
            )

    def get_snapshots(self, sprint_id):
        with self._transaction() as conn:
            rows = conn.execute(
                text(
                    "SELECT * FROM sprint_snapshots WHERE sprint_id = :sprint_id "
                    "ORDER BY snapshot_date"
                ),
                {"sprint_id": sprint_id},
            ).mappings().all()
        return [
            SprintSnapshot(
                sprint_id=r["sprint_id"],
                snapshot_date=parse_date(r["snapshot_date"]),
                remaining_work=r["remaining_work"],
                completed_work=r["completed_work"],
                total_work=r["total_work"],
                ideal_remaining=r["ideal_remaining"],
                todo_count=r["todo_count"],
                in_progress_count=r["in_progress_count"],
                done_count=r["done_count"],
                blocked_count=r["blocked_count"],
                added_hours=r["added_hours"],
                removed_hours=r["removed_hours"],
            )
            for r in rows
        ]

    _UPSERT_SNAPSHOT = text(
        """
        INSERT INTO sprint_snapshots (
          sprint_id, snapshot_date, remaining_work, completed_work, total_work,
          ideal_remaining, todo_count, in_progress_count, done_count,
          blocked_count, added_hours, removed_hours
        ) VALUES (
          :sprint_id, :snapshot_date, :remaining_work, :completed_work, :total_work,
          :ideal_remaining, :todo_count, :in_progress_count, :done_count,
          :blocked_count, :added_hours, :removed_hours
        )
        ON CONFLICT(sprint_id, snapshot_date) DO UPDATE SET
          remaining_work=excluded.remaining_work,
          completed_work=excluded.completed_work,
          total_work=excluded.total_work,
          ideal_remaining=excluded.ideal_remaining,
          todo_count=excluded.todo_count,
          in_progress_count=excluded.in_progress_count,
          done_count=excluded.done_count,
          blocked_count=excluded.blocked_count,
          added_hours=excluded.added_hours,
          removed_hours=excluded.removed_hours
        """
    )

    @staticmethod
    def _snapshot_row(row: SprintSnapshot) -> dict:
        return {
            "sprint_id": row.sprint_id,
            "snapshot_date": row.snapshot_date.isoformat(),
            "remaining_work": row.remaining_work,
            "completed_work": row.completed_work,
            "total_work": row.total_work,
            "ideal_remaining": row.ideal_remaining,
            "todo_count": row.todo_count,
            "in_progress_count": row.in_progress_count,
            "done_count": row.done_count,
            "blocked_count": row.blocked_count,
            "added_hours": row.added_hours,
            "removed_hours": row.removed_hours,
        }

    def upsert_snapshots(self, rows):
        if not rows:
            return
        with self._transaction() as conn:
            conn.execute(self._UPSERT_SNAPSHOT, [self._snapshot_row(r) for r in rows])

    def replace_snapshots(self, sprint_id, rows):
        with self._transaction() as conn:
            conn.execute(
                text("DELETE FROM sprint_snapshots WHERE sprint_id = :sprint_id"),
                {"sprint_id": sprint_id},
            )
            if rows:
                conn.execute(self._UPSERT_SNAPSHOT, [self._snapshot_row(r) for r in rows])

    def delete_snapshots(self, sprint_id, after=None):
        query = "DELETE FROM sprint_snapshots WHERE sprint_id = :sprint_id"
        params = {"sprint_id": sprint_id}
        if after is not None:
            query += " AND snapshot_date > :after"
            params["after"] = after.isoformat()
        with self._transaction() as conn:
            deleted = conn.execute(text(query), params).rowcount
        return deleted

    def save_sprint(self, sprint):
        with self._transaction() as conn:
            conn.execute(
                text(
                    """
                    INSERT INTO sprints (
                      id, name, path, start_date, end_date, state,
                      total_planned_hours, member_days_off, team_days_off
                    ) VALUES (
                      :id, :name, :path, :start_date, :end_date, :state,
                      :total_planned_hours, :member_days_off, :team_days_off
                    )
                    ON CONFLICT(id) DO UPDATE SET
                      name=excluded.name,
                      path=excluded.path,
                      start_date=excluded.start_date,
                      end_date=excluded.end_date,
                      state=excluded.state,
                      total_planned_hours=excluded.total_planned_hours,
                      member_days_off=excluded.member_days_off,
                      team_days_off=excluded.team_days_off
                    """
                ),
                {
                    "id": sprint.id,
                    "name": sprint.name,
                    "path": sprint.path,
                    "start_date": _iso(sprint.start_date),
                    "end_date": _iso(sprint.end_date),
                    "state": sprint.state,
                    "total_planned_hours": sprint.total_planned_hours,
                    "member_days_off": _days_off_to_json(sprint.member_days_off),
                    "team_days_off": _days_off_to_json(
                        [MemberDaysOff("team", tuple(sprint.team_days_off))]
                    ),
                },
            )

    def save_work_items(self, items):
        payload = [
            {
                "id": i.id,
                "type": i.type,
                "state": i.state,
                "iteration_path": i.iteration_path,
                "sprint_id": i.sprint_id,
                "is_removed": int(i.is_removed),
                "is_blocked": int(i.is_blocked),
                "created_date": _iso(i.created_date),
                "activated_date": _iso(i.activated_date),
                "closed_date": _iso(i.closed_date),
                "changed_date": _iso(i.changed_date),
                "remaining_work": i.remaining_work,
                "completed_work": i.completed_work,
                "initial_remaining_work": i.initial_remaining_work,
                "last_remaining_work": i.last_remaining_work,
                "done_remaining_work": i.done_remaining_work,
                "original_estimate": i.original_estimate,
            }
            for i in items
        ]
        if not payload:
            return
        columns = list(payload[0].keys())
        updates = ",\n".join(f"{c}=excluded.{c}" for c in columns if c != "id")
        stmt = text(
            f"INSERT INTO work_items ({', '.join(columns)}) "
            f"VALUES ({', '.join(':' + c for c in columns)}) "
            f"ON CONFLICT(id) DO UPDATE SET {updates}"
        )
        with self._transaction() as conn:
            conn.execute(stmt, payload)

    def save_revisions(self, revisions):
        payload = [
            {
                "work_item_id": r.work_item_id,
                "rev": r.rev,
                "changed_date": _iso(r.changed_date) if hasattr(r.changed_date, "isoformat")
                else r.changed_date,
                "fields": json.dumps(r.fields, default=str),
            }
            for r in revisions
        ]
        if not payload:
            return
        with self._transaction() as conn:
            conn.execute(
                text(
                    """
                    INSERT INTO work_item_revisions (work_item_id, rev, changed_date, fields)
                    VALUES (:work_item_id, :rev, :changed_date, :fields)
                    ON CONFLICT(work_item_id, rev) DO NOTHING
                    """
                ),
                payload,
            )
