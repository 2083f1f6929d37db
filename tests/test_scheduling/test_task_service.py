"""Tests for administrative task operations."""

from datetime import datetime, timezone

import pytest

from groupcron.groups.paths import InvalidGroupFolderError
from groupcron.scheduling.schedule import ScheduleParseError
from groupcron.scheduling.task_service import TaskManager, new_task_id

LATER = "2099-01-01T00:00:00+00:00"


@pytest.fixture
def tasks(db):
    return TaskManager(db.task_repo)


def test_task_id_shape():
    prefix, epoch, suffix = new_task_id().split("-")
    assert prefix == "task"
    assert epoch.isdigit()
    assert len(suffix) == 8


class TestCreate:
    def test_once_task_keeps_its_timestamp(self, tasks, db):
        task = tasks.create("team", "team@g.us", "Post the release notes", "once", LATER)
        stored = db.task_repo.get_task_by_id(task.id)
        assert stored == task
        assert stored.status == "active"
        assert stored.next_run == LATER
        assert stored.context_mode == "isolated"

    def test_cron_task_first_run_is_in_the_future(self, tasks):
        task = tasks.create("team", "team@g.us", "Morning digest", "cron", "0 9 * * *")
        assert datetime.fromisoformat(task.next_run) > datetime.now(timezone.utc)

    def test_group_context_mode(self, tasks):
        task = tasks.create("team", "team@g.us", "Follow up", "interval", "60000", context_mode="group")
        assert task.context_mode == "group"

    @pytest.mark.parametrize(
        ("schedule_type", "schedule_value", "message"),
        [
            ("cron", "every morning", "Invalid cron"),
            ("interval", "soon", "Invalid interval"),
            ("interval", "0", "Invalid interval"),
            ("once", "next tuesday", "Invalid timestamp"),
        ],
    )
    def test_bad_schedule_stores_nothing(self, tasks, schedule_type, schedule_value, message):
        with pytest.raises(ScheduleParseError, match=message):
            tasks.create("team", "team@g.us", "Bad", schedule_type, schedule_value)
        assert tasks.list_tasks() == []

    @pytest.mark.parametrize("folder", ["../escape", "global", ""])
    def test_bad_folder_stores_nothing(self, tasks, folder):
        with pytest.raises(InvalidGroupFolderError):
            tasks.create(folder, "team@g.us", "Bad", "interval", "60000")
        assert tasks.list_tasks() == []

    def test_bad_context_mode(self, tasks):
        with pytest.raises(ValueError):
            tasks.create("team", "team@g.us", "Bad", "interval", "60000", context_mode="shared")


class TestLifecycle:
    def test_pause_then_resume_keeps_next_run(self, tasks, db):
        task = tasks.create("team", "team@g.us", "Post", "once", LATER)
        tasks.pause(task.id)
        assert db.task_repo.get_task_by_id(task.id).status == "paused"

        tasks.resume(task.id)
        resumed = db.task_repo.get_task_by_id(task.id)
        assert resumed.status == "active"
        assert resumed.next_run == LATER

    def test_resume_gives_recurring_task_a_next_run(self, tasks, db):
        task = tasks.create("team", "team@g.us", "Sweep", "interval", "60000")
        tasks.pause(task.id)
        db.task_repo.set_next_run(task.id, None)

        tasks.resume(task.id)
        assert db.task_repo.get_task_by_id(task.id).next_run is not None

    def test_resume_leaves_exhausted_once_task_idle(self, tasks, db):
        task = tasks.create("team", "team@g.us", "Post", "once", LATER)
        db.task_repo.update_task_after_run(task.id, None, "Completed")
        tasks.pause(task.id)

        tasks.resume(task.id)
        assert db.task_repo.get_task_by_id(task.id).next_run is None

    def test_cancel_deletes(self, tasks, db):
        task = tasks.create("team", "team@g.us", "Post", "once", LATER)
        tasks.cancel(task.id)
        assert db.task_repo.get_task_by_id(task.id) is None

    @pytest.mark.parametrize("operation", ["pause", "resume", "cancel"])
    def test_unknown_task(self, tasks, operation):
        with pytest.raises(ValueError, match="Task not found"):
            getattr(tasks, operation)("task-missing")


def test_list_tasks_filters_by_group(tasks):
    tasks.create("team", "team@g.us", "Team task", "once", LATER)
    tasks.create("ops", "ops@g.us", "Ops task", "once", LATER)
    assert len(tasks.list_tasks()) == 2
    assert [t.prompt for t in tasks.list_tasks("ops")] == ["Ops task"]
