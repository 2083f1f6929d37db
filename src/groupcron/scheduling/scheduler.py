"""Task scheduler: polls for due tasks and runs them through the group queue."""

from __future__ import annotations

import contextlib
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Awaitable

from groupcron.execution.container_runner import ContainerInput
from groupcron.execution.execution_queue import GroupQueue
from groupcron.execution.session_driver import (
    ContainerSessionDriver,
    PartialResult,
    SessionFailed,
    SessionFinished,
    SessionSucceeded,
)
from groupcron.groups.paths import InvalidGroupFolderError, resolve_group_folder_path
from groupcron.groups.repository import RegisteredGroup
from groupcron.infrastructure.close_timer import DelayedCall
from groupcron.infrastructure.config import (
    ASSISTANT_NAME,
    GROUP_RETRY_DELAY,
    MAIN_GROUP_FOLDER,
    SCHEDULER_POLL_INTERVAL,
    TASK_CLOSE_DELAY,
    TIMEZONE,
)
from groupcron.infrastructure.logger import logger
from groupcron.infrastructure.poll_loop import PollLoop
from groupcron.scheduling.issue_log import IssueLogClient, extract_issue_payload
from groupcron.scheduling.repository import TaskRepository
from groupcron.scheduling.schedule import ScheduleParseError, compute_next_run, to_iso, utc_now
from groupcron.scheduling.snapshot_writer import SnapshotWriter
from groupcron.scheduling.types import ScheduledTask, TaskRunLog
from groupcron.sessions.manager import SessionManager

RESULT_SUMMARY_LIMIT = 200


class SchedulerDependencies:
    def __init__(
        self,
        registered_groups: Callable[[], dict[str, RegisteredGroup]],
        session_manager: SessionManager,
        queue: GroupQueue,
        send_message: Callable[[str, str], Awaitable[object]],
        task_repo: TaskRepository,
        snapshot_writer: SnapshotWriter,
        driver: ContainerSessionDriver,
        issue_log: IssueLogClient | None = None,
    ) -> None:
        self.registered_groups = registered_groups
        self.session_manager = session_manager
        self.queue = queue
        self.send_message = send_message
        self.task_repo = task_repo
        self.snapshot_writer = snapshot_writer
        self.driver = driver
        self.issue_log = issue_log or IssueLogClient()


@dataclass
class RunOutcome:
    result: str | None = None
    error: str | None = None
    issue_content: str | None = None


def summarize(result: str | None, error: str | None) -> str:
    if error:
        summary = f"Error: {error}"
    elif result:
        summary = result
    else:
        summary = "Completed"
    return summary[:RESULT_SUMMARY_LIMIT]


class TaskScheduler:
    """Owns the scheduler poll loop. Create one per process; ``start()`` is idempotent."""

    def __init__(
        self,
        deps: SchedulerDependencies,
        poll_interval_s: float = SCHEDULER_POLL_INTERVAL,
        close_delay_s: float = TASK_CLOSE_DELAY,
        group_retry_delay_s: float = GROUP_RETRY_DELAY,
        assistant_name: str = ASSISTANT_NAME,
        timezone: str = TIMEZONE,
    ) -> None:
        self._deps = deps
        self._poll_interval = poll_interval_s
        self._close_delay = close_delay_s
        self._group_retry_delay = group_retry_delay_s
        self._assistant_name = assistant_name
        self._timezone = timezone
        self._loop: PollLoop | None = None

    @property
    def running(self) -> bool:
        return self._loop is not None and self._loop.running

    def start(self) -> PollLoop:
        if self._loop is not None and self._loop.running:
            logger.debug("Scheduler loop already running, skipping duplicate start")
            return self._loop
        self._loop = PollLoop("Scheduler", self._poll_interval, self.poll)
        self._loop.start()
        return self._loop

    def stop(self) -> None:
        if self._loop is not None:
            self._loop.stop()
            self._loop = None
            logger.info("Scheduler loop stopped")

    async def poll(self) -> None:
        """One cycle: find due tasks and hand the still-active ones to the queue."""
        deps = self._deps
        due_tasks = deps.task_repo.get_due_tasks()
        if due_tasks:
            logger.info("Found due tasks", count=len(due_tasks))

        for task in due_tasks:
            # Re-check status in case it was paused/cancelled since the query
            current = deps.task_repo.get_task_by_id(task.id)
            if not current or current.status != "active":
                continue

            deps.queue.enqueue_task(current.chat_jid, current.id, lambda t=current: self.run_task(t))

    async def run_task(self, task: ScheduledTask) -> None:
        """Run a single scheduled task in a container. Never raises."""
        deps = self._deps
        started_at = utc_now()
        start_time = time.monotonic()

        # The task may have been paused while it sat in the queue
        current = deps.task_repo.get_task_by_id(task.id)
        if not current or current.status != "active":
            logger.info("Task no longer active, skipping run", task_id=task.id)
            return
        task = current

        try:
            group_dir = resolve_group_folder_path(task.group_folder)
        except InvalidGroupFolderError as err:
            # Stop retry churn for malformed legacy rows
            deps.task_repo.update_task(task.id, status="paused")
            logger.error("Task has invalid group folder", task_id=task.id, group_folder=task.group_folder, error=str(err))
            self._log_run(task, start_time, None, str(err))
            return
        group_dir.mkdir(parents=True, exist_ok=True)

        logger.info("Running scheduled task", task_id=task.id, group=task.group_folder)

        group = next((g for g in deps.registered_groups().values() if g.folder == task.group_folder), None)
        if not group:
            retry_at = utc_now() + timedelta(seconds=self._group_retry_delay)
            logger.error(
                "Group not found for task",
                task_id=task.id,
                group_folder=task.group_folder,
                retry_at=to_iso(retry_at),
            )
            self._log_run(task, start_time, None, f"Group not found: {task.group_folder}")
            deps.task_repo.set_next_run(task.id, to_iso(retry_at))
            return

        outcome = await self._execute(task, group)
        logger.info(
            "Task completed" if not outcome.error else "Task failed",
            task_id=task.id,
            duration_ms=self._elapsed_ms(start_time),
            error=outcome.error,
        )

        if not outcome.error and outcome.issue_content:
            await deps.issue_log.save(outcome.issue_content)

        self._log_run(task, start_time, outcome.result, outcome.error)
        self._finish_run(task, started_at, outcome)

    async def _execute(self, task: ScheduledTask, group: RegisteredGroup) -> RunOutcome:
        deps = self._deps
        outcome = RunOutcome()
        is_main = task.group_folder == MAIN_GROUP_FOLDER
        session_id = deps.session_manager.get(task.group_folder) if task.context_mode == "group" else None

        def close_after_result() -> None:
            logger.debug("Closing task container after result", task_id=task.id)
            deps.queue.close_stdin(task.chat_jid)

        close_timer = DelayedCall(close_after_result, self._close_delay)

        try:
            deps.snapshot_writer.refresh_tasks(task.group_folder, is_main)

            container_input = ContainerInput(
                prompt=task.prompt,
                session_id=session_id,
                group_folder=task.group_folder,
                chat_jid=task.chat_jid,
                is_main=is_main,
                is_scheduled_task=True,
                assistant_name=self._assistant_name,
            )
            # Leaving this block waits for the container to exit
            async with contextlib.aclosing(deps.driver.stream(
                group,
                container_input,
                on_process=lambda proc, name: deps.queue.register_process(task.chat_jid, proc, name, task.group_folder),
            )) as events:
                async for event in events:
                    if isinstance(event, PartialResult):
                        outcome.result = event.text
                        outcome.issue_content = extract_issue_payload(event.text) or outcome.issue_content
                        await self._deliver(task, event.text)
                        close_timer.arm()
                    elif isinstance(event, SessionSucceeded):
                        if event.new_session_id and task.context_mode == "group":
                            deps.session_manager.set(task.group_folder, event.new_session_id)
                        deps.queue.notify_idle(task.chat_jid)
                    elif isinstance(event, SessionFailed):
                        outcome.error = event.error
                    elif isinstance(event, SessionFinished):
                        if event.output.status == "error":
                            outcome.error = event.output.error or "Unknown error"
                        elif event.output.result:
                            outcome.result = event.output.result
        except Exception as err:
            outcome.error = str(err) or type(err).__name__
            logger.error("Task execution raised", task_id=task.id, error=outcome.error)
        finally:
            close_timer.cancel()

        return outcome

    async def _deliver(self, task: ScheduledTask, text: str) -> None:
        """Forward a result to the chat. Delivery failures do not end the run."""
        try:
            await self._deps.send_message(task.chat_jid, text)
        except Exception as err:
            logger.warning("Failed to deliver task result", task_id=task.id, jid=task.chat_jid, error=str(err))

    def _finish_run(self, task: ScheduledTask, started_at: datetime, outcome: RunOutcome) -> None:
        deps = self._deps
        # Intervals count from run start; cron looks for the next slot after now
        base = started_at if task.schedule_type == "interval" else utc_now()
        try:
            next_run = compute_next_run(task.schedule_type, task.schedule_value, base, self._timezone)
        except ScheduleParseError as err:
            logger.error("Task has invalid schedule, pausing", task_id=task.id, error=str(err))
            deps.task_repo.update_task(task.id, status="paused")
            deps.task_repo.update_task_after_run(task.id, None, summarize(None, str(err)))
            return

        deps.task_repo.update_task_after_run(
            task.id,
            to_iso(next_run) if next_run else None,
            summarize(outcome.result, outcome.error),
        )

    def _log_run(self, task: ScheduledTask, start_time: float, result: str | None, error: str | None) -> None:
        self._deps.task_repo.log_task_run(TaskRunLog(
            task_id=task.id,
            run_at=to_iso(utc_now()),
            duration_ms=self._elapsed_ms(start_time),
            status="error" if error else "success",
            result=result,
            error=error,
        ))

    @staticmethod
    def _elapsed_ms(start_time: float) -> int:
        return int((time.monotonic() - start_time) * 1000)
