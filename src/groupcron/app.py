"""Orchestrator class: composes services, wires subsystems."""

from __future__ import annotations

from groupcron.execution.container_runner import ContainerRunner
from groupcron.execution.execution_queue import GroupQueue
from groupcron.execution.session_driver import ContainerSessionDriver
from groupcron.groups.paths import resolve_group_folder_path
from groupcron.groups.repository import RegisteredGroup
from groupcron.infrastructure.database import AppDatabase, database
from groupcron.infrastructure.logger import logger
from groupcron.ipc.transport import IpcTransport
from groupcron.messaging.channel_registry import Channel, ChannelRegistry
from groupcron.scheduling.issue_log import IssueLogClient
from groupcron.scheduling.scheduler import SchedulerDependencies, TaskScheduler
from groupcron.scheduling.snapshot_writer import SnapshotWriter
from groupcron.sessions.manager import SessionManager


class Orchestrator:
    """Composes all services and manages the application lifecycle."""

    def __init__(self, db: AppDatabase | None = None, channels: list[Channel] | None = None) -> None:
        self._db: AppDatabase = db or database
        self._channel_registry = ChannelRegistry(channels)
        self._transport = IpcTransport()
        self._queue = GroupQueue(transport=self._transport)
        self._scheduler: TaskScheduler | None = None

    @property
    def scheduler(self) -> TaskScheduler | None:
        return self._scheduler

    async def start(self) -> None:
        """Initialize all services and start the scheduler."""
        logger.info("Starting groupcron...")

        if not self._db.is_open:
            self._db.init()

        logger.info("Loaded registered groups", count=len(self._db.group_repo.get_all_registered_groups()))

        session_manager = SessionManager(self._db.db)
        session_manager.load_from_db()

        snapshot_writer = SnapshotWriter(self._db.task_repo)
        driver = ContainerSessionDriver(ContainerRunner(transport=self._transport))

        await self._channel_registry.connect_all()

        scheduler_deps = SchedulerDependencies(
            # Read through so groups registered while running are picked up
            registered_groups=self._db.group_repo.get_all_registered_groups,
            session_manager=session_manager,
            queue=self._queue,
            send_message=self._channel_registry.send_message,
            task_repo=self._db.task_repo,
            snapshot_writer=snapshot_writer,
            driver=driver,
            issue_log=IssueLogClient(),
        )
        self._scheduler = TaskScheduler(scheduler_deps)
        self._scheduler.start()

        logger.info("groupcron started successfully")

    def register_group(self, jid: str, group: RegisteredGroup) -> None:
        """Register a group and create its working directory."""
        group_dir = resolve_group_folder_path(group.folder)
        self._db.group_repo.set_registered_group(jid, group)
        group_dir.mkdir(parents=True, exist_ok=True)

    async def shutdown(self) -> None:
        """Gracefully shut down all services."""
        logger.info("Shutting down groupcron...")

        if self._scheduler:
            self._scheduler.stop()

        await self._queue.shutdown()
        await self._channel_registry.disconnect_all()

        logger.info("groupcron shut down complete")
