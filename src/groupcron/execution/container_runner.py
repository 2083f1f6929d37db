"""ContainerRunner: one docker/podman subprocess per task run."""

from __future__ import annotations

import asyncio
import json
import shutil
import time
from dataclasses import dataclass
from typing import Callable, Awaitable

from groupcron.execution.output_protocol import ContainerOutput, FrameDecoder
from groupcron.groups.paths import GroupPaths
from groupcron.groups.repository import RegisteredGroup
from groupcron.infrastructure.config import (
    CONTAINER_IMAGE,
    CONTAINER_RUNTIME,
    TimeoutConfig,
    read_env_file,
)
from groupcron.infrastructure.logger import logger
from groupcron.ipc.transport import IpcTransport

SECRET_KEYS = ["ANTHROPIC_API_KEY", "CLAUDE_CODE_OAUTH_TOKEN"]
SUPPORTED_RUNTIMES = ("docker", "podman")


def resolve_runtime_bin(name: str = CONTAINER_RUNTIME) -> str:
    """Path of the container CLI. Unknown runtime names fall back to docker."""
    if name not in SUPPORTED_RUNTIMES:
        logger.warning("Unsupported container runtime, using docker", runtime=name)
        name = "docker"
    return shutil.which(name) or name


@dataclass
class ContainerInput:
    prompt: str
    session_id: str | None
    group_folder: str
    chat_jid: str
    is_main: bool
    is_scheduled_task: bool = False
    assistant_name: str | None = None

    def env_args(self) -> list[str]:
        env = {
            "GROUPCRON_GROUP_FOLDER": self.group_folder,
            "GROUPCRON_IS_MAIN": "1" if self.is_main else "0",
            "GROUPCRON_CHAT_JID": self.chat_jid,
        }
        return [arg for key, value in env.items() for arg in ("-e", f"{key}={value}")]

    def stdin_payload(self, secrets: dict[str, str]) -> bytes:
        """JSON the agent reads from stdin. Secrets travel here only, never as env or argv."""
        return json.dumps({
            "prompt": self.prompt,
            "sessionId": self.session_id,
            "groupFolder": self.group_folder,
            "chatJid": self.chat_jid,
            "isMain": self.is_main,
            "isScheduledTask": self.is_scheduled_task,
            "assistantName": self.assistant_name,
            "secrets": secrets,
        }).encode()


OnProcess = Callable[[asyncio.subprocess.Process, str], None]
OnOutput = Callable[[ContainerOutput], Awaitable[None]]


def build_mounts(group: RegisteredGroup) -> list[str]:
    """Docker -v arguments: group workspace, IPC dir, and agent session state."""
    mounts: list[str] = []
    for host_dir, container_path in (
        (GroupPaths.group_dir(group.folder), "/workspace/group"),
        (GroupPaths.ipc_dir(group.folder), "/workspace/ipc"),
        (GroupPaths.sessions_dir(group.folder), "/home/node/.claude"),
    ):
        host_dir.mkdir(parents=True, exist_ok=True)
        mounts.extend(["-v", f"{host_dir}:{container_path}"])
    return mounts


class ContainerRunner:
    """Starts one agent container per call and reports its output frames.

    ``run`` returns only once the subprocess has exited, including when it
    is cancelled or hits the hard timeout.
    """

    def __init__(
        self,
        runtime_bin: str | None = None,
        timeout_config: TimeoutConfig | None = None,
        transport: IpcTransport | None = None,
        image: str = CONTAINER_IMAGE,
    ) -> None:
        self._bin = runtime_bin or resolve_runtime_bin()
        self._timeout = timeout_config or TimeoutConfig()
        self._transport = transport or IpcTransport()
        self._image = image

    async def run(
        self,
        group: RegisteredGroup,
        input_data: ContainerInput,
        on_process: OnProcess | None = None,
        on_output: OnOutput | None = None,
    ) -> ContainerOutput:
        """Run a container to completion and return its last output."""
        name = f"groupcron-{group.folder}-{int(time.time() * 1000)}"

        # A sentinel left by the previous container would close this one at once
        self._transport.clear_close(group.folder)

        args = ["run", "-i", "--rm", "--name", name, *build_mounts(group), *input_data.env_args(), self._image]
        logger.info("Starting container", name=name, group=group.name, image=self._image)

        proc = await asyncio.create_subprocess_exec(
            self._bin,
            *args,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        if on_process:
            on_process(proc, name)

        assert proc.stdin is not None
        proc.stdin.write(input_data.stdin_payload(read_env_file(SECRET_KEYS)))
        await proc.stdin.drain()
        proc.stdin.close()

        outputs: list[ContainerOutput] = []
        hard_timeout_s = self._timeout.for_group(group).hard_timeout_s
        try:
            await asyncio.wait_for(
                asyncio.gather(self._pump_stdout(proc, outputs, on_output), self._pump_stderr(proc, name), proc.wait()),
                timeout=hard_timeout_s,
            )
        except asyncio.TimeoutError:
            logger.warning("Container hard timeout, killing", name=name, timeout_s=hard_timeout_s)
            await self._kill(proc)
            return ContainerOutput(status="error", error="Container timeout")
        except asyncio.CancelledError:
            logger.warning("Container run cancelled, killing", name=name)
            await self._kill(proc)
            raise

        last = outputs[-1] if outputs else ContainerOutput()
        if proc.returncode and last.status != "error":
            logger.warning("Container exited with error", name=name, code=proc.returncode)
            if last.result is None:
                last = ContainerOutput(status="error", error=f"Container exited with code {proc.returncode}")

        logger.info("Container finished", name=name, status=last.status, outputs=len(outputs))
        return last

    @staticmethod
    async def _kill(proc: asyncio.subprocess.Process) -> None:
        if proc.returncode is None:
            try:
                proc.kill()
            except ProcessLookupError:
                pass
        await proc.wait()

    @staticmethod
    async def _pump_stdout(
        proc: asyncio.subprocess.Process,
        outputs: list[ContainerOutput],
        on_output: OnOutput | None,
    ) -> None:
        assert proc.stdout is not None
        decoder = FrameDecoder()
        async for raw_line in proc.stdout:
            output = decoder.feed(raw_line.decode(errors="replace"))
            if output is None:
                continue
            outputs.append(output)
            if on_output:
                await on_output(output)

    @staticmethod
    async def _pump_stderr(proc: asyncio.subprocess.Process, name: str) -> None:
        assert proc.stderr is not None
        async for raw_line in proc.stderr:
            line = raw_line.decode(errors="replace").rstrip()
            if line:
                logger.debug("Container stderr", name=name, line=line)
