"""Writes the tasks snapshot that containers read at startup."""

from __future__ import annotations

import json

from groupcron.groups.paths import GroupPaths
from groupcron.scheduling.repository import TaskRepository
from groupcron.scheduling.types import ScheduledTask

TASKS_SNAPSHOT_FILE = "current_tasks.json"


def task_snapshot_entry(task: ScheduledTask) -> dict:
    return {
        "id": task.id,
        "groupFolder": task.group_folder,
        "prompt": task.prompt,
        "scheduleType": task.schedule_type,
        "scheduleValue": task.schedule_value,
        "status": task.status,
        "nextRun": task.next_run,
    }


class SnapshotWriter:
    """Writes JSON snapshot files for container-visible state."""

    def __init__(self, task_repo: TaskRepository) -> None:
        self._task_repo = task_repo

    def write_tasks(self, group_folder: str, is_main: bool, tasks: list[dict]) -> None:
        """Write the snapshot; only the main group sees other groups' tasks."""
        ipc_dir = GroupPaths.ipc_dir(group_folder)
        ipc_dir.mkdir(parents=True, exist_ok=True)

        visible = tasks if is_main else [t for t in tasks if t.get("groupFolder") == group_folder]

        tasks_file = ipc_dir / TASKS_SNAPSHOT_FILE
        tmp_file = tasks_file.with_suffix(".json.tmp")
        tmp_file.write_text(json.dumps(visible, indent=2))
        tmp_file.replace(tasks_file)

    def refresh_tasks(self, group_folder: str, is_main: bool) -> None:
        """Refresh tasks snapshot from the database."""
        tasks = self._task_repo.get_all_tasks()
        self.write_tasks(group_folder, is_main, [task_snapshot_entry(t) for t in tasks])
