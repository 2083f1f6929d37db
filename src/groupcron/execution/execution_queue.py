"""Per-group FIFO execution queue with a global container limit."""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Awaitable

from groupcron.infrastructure.config import MAX_CONCURRENT_CONTAINERS
from groupcron.infrastructure.logger import logger
from groupcron.ipc.transport import IpcTransport


@dataclass
class QueuedTask:
    id: str
    group_jid: str
    fn: Callable[[], Awaitable[None]]


@dataclass
class ActiveSession:
    """Handle of the live container for a group."""

    process: asyncio.subprocess.Process
    container_name: str
    group_folder: str | None = None


@dataclass
class GroupState:
    pending: deque[QueuedTask] = field(default_factory=deque)
    running: QueuedTask | None = None
    session: ActiveSession | None = None  # None means no live container
    idle_waiting: bool = False


class GroupQueue:
    """Runs at most one work item per group at a time, in enqueue order.

    Different groups run concurrently, up to ``max_concurrent`` at once.
    """

    def __init__(self, transport: IpcTransport | None = None, max_concurrent: int = MAX_CONCURRENT_CONTAINERS) -> None:
        self._groups: dict[str, GroupState] = {}
        self._active_count = 0
        self._max_concurrent = max_concurrent
        # Groups with work held back by the global limit, oldest first
        self._blocked_groups: dict[str, None] = {}
        self._shutting_down = False
        self._transport = transport or IpcTransport()
        self._tasks: set[asyncio.Task[None]] = set()

    def _get_group(self, group_jid: str) -> GroupState:
        if group_jid not in self._groups:
            self._groups[group_jid] = GroupState()
        return self._groups[group_jid]

    @property
    def active_count(self) -> int:
        return self._active_count

    def is_active(self, group_jid: str) -> bool:
        state = self._groups.get(group_jid)
        return bool(state and state.running)

    def pending_count(self, group_jid: str) -> int:
        state = self._groups.get(group_jid)
        return len(state.pending) if state else 0

    def enqueue_task(self, group_jid: str, task_id: str, fn: Callable[[], Awaitable[None]]) -> bool:
        """Queue ``fn`` for the group. Returns False if it was dropped."""
        if self._shutting_down:
            return False

        state = self._get_group(group_jid)

        if (state.running and state.running.id == task_id) or any(t.id == task_id for t in state.pending):
            logger.debug("Task already queued, skipping", group_jid=group_jid, task_id=task_id)
            return False

        item = QueuedTask(id=task_id, group_jid=group_jid, fn=fn)

        if state.running or state.pending:
            state.pending.append(item)
            if state.idle_waiting:
                self.close_stdin(group_jid)
            logger.debug("Group busy, task queued", group_jid=group_jid, task_id=task_id, depth=len(state.pending))
            return True

        if self._active_count >= self._max_concurrent:
            state.pending.append(item)
            self._blocked_groups.setdefault(group_jid)
            logger.debug("At concurrency limit, task queued", group_jid=group_jid, task_id=task_id, active=self._active_count)
            return True

        self._start(group_jid, item)
        return True

    def register_process(
        self,
        group_jid: str,
        proc: asyncio.subprocess.Process,
        container_name: str,
        group_folder: str | None = None,
    ) -> None:
        state = self._get_group(group_jid)
        state.session = ActiveSession(process=proc, container_name=container_name, group_folder=group_folder)

    def notify_idle(self, group_jid: str) -> None:
        """The running item reached a final result; let waiting work preempt the session."""
        state = self._get_group(group_jid)
        state.idle_waiting = True
        if state.pending:
            self.close_stdin(group_jid)

    def close_stdin(self, group_jid: str) -> bool:
        """Tell the group's live container that no more input is coming."""
        state = self._get_group(group_jid)
        if not state.running or not state.session or not state.session.group_folder:
            return False
        logger.debug("Closing container input", group_jid=group_jid, container=state.session.container_name)
        return self._transport.close_stdin(state.session.group_folder)

    def _start(self, group_jid: str, item: QueuedTask) -> None:
        state = self._get_group(group_jid)
        state.running = item
        state.idle_waiting = False
        self._active_count += 1
        task = asyncio.create_task(self._run_task(group_jid, item))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run_task(self, group_jid: str, item: QueuedTask) -> None:
        logger.debug("Running queued task", group_jid=group_jid, task_id=item.id, active=self._active_count)
        try:
            await item.fn()
        except Exception:
            logger.exception("Queued task failed", group_jid=group_jid, task_id=item.id)
        finally:
            self._release(group_jid)

    def _release(self, group_jid: str) -> None:
        """Free the group's slot and hand it to the next item in line."""
        state = self._get_group(group_jid)
        state.running = None
        state.session = None
        state.idle_waiting = False
        self._active_count -= 1
        if self._shutting_down:
            return

        # The group's own backlog goes first, then groups held at the limit
        if state.pending:
            self._blocked_groups.pop(group_jid, None)
            self._start(group_jid, state.pending.popleft())
            return
        while self._blocked_groups and self._active_count < self._max_concurrent:
            blocked_jid = next(iter(self._blocked_groups))
            del self._blocked_groups[blocked_jid]
            blocked = self._get_group(blocked_jid)
            if blocked.pending and not blocked.running:
                self._start(blocked_jid, blocked.pending.popleft())

    async def join(self) -> None:
        """Wait until every started item, and whatever it drained into, has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self, grace_period_s: float = 5.0) -> None:
        """Stop starting work and give running items ``grace_period_s`` to finish.

        Containers still alive afterwards are left running.
        """
        self._shutting_down = True
        if self._tasks:
            await asyncio.wait(list(self._tasks), timeout=grace_period_s)

        still_running = [
            state.session.container_name
            for state in self._groups.values()
            if state.session is not None and state.session.process.returncode is None
        ]
        logger.info("Group queue stopped", active=self._active_count, detached=still_running)
