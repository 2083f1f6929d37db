"""Scheduled task CRUD, due selection, and run logging."""

from __future__ import annotations

import sqlite3

from groupcron.scheduling.schedule import to_iso, utc_now
from groupcron.scheduling.types import ScheduledTask, TaskRunLog

TASK_COLUMNS = tuple(ScheduledTask.model_fields)
# Columns an administrative update may touch; run bookkeeping goes through update_task_after_run
UPDATABLE_COLUMNS = frozenset({"prompt", "schedule_type", "schedule_value", "context_mode", "next_run", "status"})


class TaskRepository:
    def __init__(self, db: sqlite3.Connection) -> None:
        self._db = db

    def create_task(self, task: ScheduledTask) -> None:
        row = task.model_dump()
        placeholders = ", ".join(f":{col}" for col in TASK_COLUMNS)
        self._db.execute(f"INSERT INTO scheduled_tasks ({', '.join(TASK_COLUMNS)}) VALUES ({placeholders})", row)
        self._db.commit()

    def get_task_by_id(self, id: str) -> ScheduledTask | None:
        row = self._db.execute("SELECT * FROM scheduled_tasks WHERE id = ?", (id,)).fetchone()
        return self._row_to_task(row) if row else None

    def get_tasks_for_group(self, group_folder: str) -> list[ScheduledTask]:
        return self._select("WHERE group_folder = ? ORDER BY created_at DESC", (group_folder,))

    def get_all_tasks(self) -> list[ScheduledTask]:
        return self._select("ORDER BY created_at DESC")

    def update_task(self, id: str, **updates: str | None) -> None:
        """Set the given columns, skipping None values."""
        unknown = updates.keys() - UPDATABLE_COLUMNS
        if unknown:
            raise ValueError(f"Cannot update task columns: {', '.join(sorted(unknown))}")
        changes = {col: value for col, value in updates.items() if value is not None}
        if not changes:
            return
        assignments = ", ".join(f"{col} = :{col}" for col in changes)
        self._db.execute(f"UPDATE scheduled_tasks SET {assignments} WHERE id = :id", {**changes, "id": id})
        self._db.commit()

    def set_next_run(self, id: str, next_run: str | None) -> None:
        self._db.execute("UPDATE scheduled_tasks SET next_run = ? WHERE id = ?", (next_run, id))
        self._db.commit()

    def delete_task(self, id: str) -> None:
        # Logs reference the task, remove them first
        self._db.execute("DELETE FROM task_run_logs WHERE task_id = ?", (id,))
        self._db.execute("DELETE FROM scheduled_tasks WHERE id = ?", (id,))
        self._db.commit()

    def get_due_tasks(self, now: str | None = None) -> list[ScheduledTask]:
        """Active tasks whose next_run has passed. A NULL next_run is never due."""
        return self._select(
            "WHERE status = 'active' AND next_run IS NOT NULL AND next_run <= ? ORDER BY next_run",
            (now or to_iso(utc_now()),),
        )

    def update_task_after_run(self, id: str, next_run: str | None, last_result: str) -> None:
        """Record a finished run. Status is left alone; None next_run means no further runs."""
        self._db.execute(
            "UPDATE scheduled_tasks SET next_run = ?, last_run = ?, last_result = ? WHERE id = ?",
            (next_run, to_iso(utc_now()), last_result, id),
        )
        self._db.commit()

    def log_task_run(self, log: TaskRunLog) -> None:
        self._db.execute(
            """INSERT INTO task_run_logs (task_id, run_at, duration_ms, status, result, error)
               VALUES (:task_id, :run_at, :duration_ms, :status, :result, :error)""",
            log.model_dump(),
        )
        self._db.commit()

    def get_run_logs(self, task_id: str, limit: int = 50) -> list[TaskRunLog]:
        """Most recent runs first."""
        rows = self._db.execute(
            "SELECT * FROM task_run_logs WHERE task_id = ? ORDER BY id DESC LIMIT ?", (task_id, limit)
        ).fetchall()
        return [TaskRunLog.model_validate(dict(row)) for row in rows]

    def _select(self, clause: str, params: tuple = ()) -> list[ScheduledTask]:
        rows = self._db.execute(f"SELECT * FROM scheduled_tasks {clause}", params).fetchall()
        return [self._row_to_task(row) for row in rows]

    def _row_to_task(self, row: sqlite3.Row) -> ScheduledTask:
        data = dict(row)
        # Rows written before context_mode existed
        data["context_mode"] = data.get("context_mode") or "isolated"
        return ScheduledTask.model_validate(data)
