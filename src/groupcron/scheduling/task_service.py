"""Administrative task operations used by the CLI and the orchestrator."""

from __future__ import annotations

import secrets
import time

from groupcron.groups.paths import InvalidGroupFolderError, is_valid_group_folder
from groupcron.infrastructure.logger import logger
from groupcron.scheduling.repository import TaskRepository
from groupcron.scheduling.schedule import initial_next_run, to_iso, utc_now
from groupcron.scheduling.types import ScheduledTask


def new_task_id() -> str:
    return f"task-{int(time.time())}-{secrets.token_hex(4)}"


class TaskManager:
    def __init__(self, task_repo: TaskRepository) -> None:
        self._repo = task_repo

    def create(
        self,
        group_folder: str,
        chat_jid: str,
        prompt: str,
        schedule_type: str,
        schedule_value: str,
        context_mode: str = "isolated",
    ) -> ScheduledTask:
        """Store a new active task. Bad folders and schedules raise before anything is written."""
        if not is_valid_group_folder(group_folder):
            raise InvalidGroupFolderError(f'Invalid group folder "{group_folder}"')
        first_run = initial_next_run(schedule_type, schedule_value)

        task = ScheduledTask.model_validate({
            "id": new_task_id(),
            "group_folder": group_folder,
            "chat_jid": chat_jid,
            "prompt": prompt,
            "schedule_type": schedule_type,
            "schedule_value": schedule_value,
            "context_mode": context_mode,
            "next_run": to_iso(first_run),
            "status": "active",
            "created_at": to_iso(utc_now()),
        })
        self._repo.create_task(task)
        logger.info("Task created", task_id=task.id, group=group_folder, next_run=task.next_run)
        return task

    def list_tasks(self, group_folder: str | None = None) -> list[ScheduledTask]:
        if group_folder is None:
            return self._repo.get_all_tasks()
        return self._repo.get_tasks_for_group(group_folder)

    def pause(self, task_id: str) -> None:
        self._require(task_id)
        self._repo.update_task(task_id, status="paused")

    def resume(self, task_id: str) -> None:
        """Reactivate a task.

        A recurring task that lost its next run gets a fresh one; an
        exhausted once-task stays idle.
        """
        task = self._require(task_id)
        next_run = task.next_run
        if next_run is None and task.schedule_type != "once":
            next_run = to_iso(initial_next_run(task.schedule_type, task.schedule_value))
        self._repo.update_task(task_id, status="active", next_run=next_run)

    def cancel(self, task_id: str) -> None:
        self._require(task_id)
        self._repo.delete_task(task_id)
        logger.info("Task cancelled", task_id=task_id)

    def _require(self, task_id: str) -> ScheduledTask:
        task = self._repo.get_task_by_id(task_id)
        if task is None:
            raise ValueError(f"Task not found: {task_id}")
        return task
