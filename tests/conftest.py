import asyncio
import os
from types import SimpleNamespace

import httpx
import pytest

from groupcron.execution.container_runner import ContainerInput
from groupcron.execution.execution_queue import GroupQueue
from groupcron.execution.output_protocol import ContainerOutput, encode_frame
from groupcron.execution.session_driver import ContainerSessionDriver
from groupcron.groups.repository import RegisteredGroup
from groupcron.infrastructure import config
from groupcron.infrastructure.database import AppDatabase
from groupcron.scheduling.issue_log import IssueLogClient
from groupcron.scheduling.scheduler import SchedulerDependencies, TaskScheduler
from groupcron.scheduling.snapshot_writer import SnapshotWriter
from groupcron.scheduling.types import ScheduledTask
from groupcron.sessions.manager import SessionManager

TEAM_JID = "team@g.us"


@pytest.fixture(autouse=True)
def fs_roots(tmp_path, monkeypatch):
    """Point groups/ and data/ at a temp dir for every test."""
    groups_dir = tmp_path / "groups"
    data_dir = tmp_path / "data"
    monkeypatch.setattr(config, "GROUPS_DIR", groups_dir)
    monkeypatch.setattr(config, "DATA_DIR", data_dir)
    return SimpleNamespace(groups=groups_dir, data=data_dir)


@pytest.fixture
def db() -> AppDatabase:
    """Create an in-memory database for testing."""
    app_db = AppDatabase()
    app_db.init_memory()
    return app_db


class FakeProcess:
    returncode = None


class FakeContainerRunner:
    """Replays scripted outputs instead of starting a container."""

    def __init__(self) -> None:
        self.outputs: list[ContainerOutput] = []
        self.final: ContainerOutput | None = None
        self.raises: Exception | None = None
        self.delay_s = 0.0
        self.calls: list[ContainerInput] = []
        self.active = False
        self.cancelled = False

    async def run(self, group, input_data, on_process=None, on_output=None):
        self.calls.append(input_data)
        self.active = True
        try:
            if on_process:
                on_process(FakeProcess(), f"fake-{group.folder}")
            for output in self.outputs:
                if on_output:
                    await on_output(output)
            if self.delay_s:
                await asyncio.sleep(self.delay_s)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        finally:
            self.active = False
        if self.raises:
            raise self.raises
        if self.final is not None:
            return self.final
        return self.outputs[-1] if self.outputs else ContainerOutput()


@pytest.fixture
def fake_runner() -> FakeContainerRunner:
    return FakeContainerRunner()


@pytest.fixture
def fake_docker(tmp_path):
    """Writes an executable shell script that stands in for the docker CLI."""

    def _write(body: str) -> str:
        path = tmp_path / "fake-docker"
        path.write_text("#!/bin/sh\n" + body)
        os.chmod(path, 0o755)
        return str(path)

    return _write


@pytest.fixture
def frame_lines():
    """Shell lines that print one output frame."""

    def _lines(output: ContainerOutput) -> str:
        return f"cat <<'FRAME'\n{encode_frame(output)}FRAME\n"

    return _lines


@pytest.fixture
def issue_server():
    """Records requests to the issue endpoint; set .status or .error to change replies."""
    server = SimpleNamespace(requests=[], status=201, error=None)

    def handler(request: httpx.Request) -> httpx.Response:
        server.requests.append(request)
        if server.error:
            raise server.error
        return httpx.Response(server.status, json={"ok": server.status < 300})

    server.client = IssueLogClient("https://issues.test/api", "secret-key", transport=httpx.MockTransport(handler))
    return server


@pytest.fixture
def harness(db, fake_runner, issue_server):
    sent: list[tuple[str, str]] = []

    async def send_message(jid: str, text: str) -> None:
        sent.append((jid, text))

    groups = {
        TEAM_JID: RegisteredGroup(name="Team", folder="team", trigger="@Andy", added_at="2024-01-01T00:00:00"),
        "main@g.us": RegisteredGroup(name="Main", folder="main", trigger="@Andy", added_at="2024-01-01T00:00:00"),
    }
    queue = GroupQueue()
    session_manager = SessionManager(db.db)
    deps = SchedulerDependencies(
        registered_groups=lambda: groups,
        session_manager=session_manager,
        queue=queue,
        send_message=send_message,
        task_repo=db.task_repo,
        snapshot_writer=SnapshotWriter(db.task_repo),
        driver=ContainerSessionDriver(fake_runner),
        issue_log=issue_server.client,
    )
    scheduler = TaskScheduler(
        deps,
        poll_interval_s=0.01,
        close_delay_s=0.05,
        group_retry_delay_s=300,
        assistant_name="Andy",
        timezone="UTC",
    )
    return SimpleNamespace(
        scheduler=scheduler,
        deps=deps,
        queue=queue,
        repo=db.task_repo,
        sessions=session_manager,
        groups=groups,
        sent=sent,
        runner=fake_runner,
        issues=issue_server,
    )


@pytest.fixture
def make_task(db):
    def _make(**overrides) -> ScheduledTask:
        fields = dict(
            id="t1",
            group_folder="team",
            chat_jid=TEAM_JID,
            prompt="Summarize open incidents",
            schedule_type="interval",
            schedule_value="60000",
            next_run="2020-01-01T00:00:00+00:00",
            status="active",
            created_at="2020-01-01T00:00:00+00:00",
        )
        fields.update(overrides)
        task = ScheduledTask(**fields)
        db.task_repo.create_task(task)
        return task

    return _make
