"""Container session driver: exposes a container run as a stream of tagged events."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import AsyncIterator, Protocol, Union

from groupcron.execution.container_runner import ContainerInput, OnOutput, OnProcess
from groupcron.execution.output_protocol import ContainerOutput
from groupcron.groups.repository import RegisteredGroup


@dataclass(frozen=True)
class PartialResult:
    text: str


@dataclass(frozen=True)
class SessionSucceeded:
    new_session_id: str | None = None


@dataclass(frozen=True)
class SessionFailed:
    error: str


@dataclass(frozen=True)
class SessionFinished:
    """Always the last event; carries the runner's return value."""

    output: ContainerOutput


SessionEvent = Union[PartialResult, SessionSucceeded, SessionFailed, SessionFinished]


class ProcessRunner(Protocol):
    async def run(
        self,
        group: RegisteredGroup,
        input_data: ContainerInput,
        on_process: OnProcess | None = None,
        on_output: OnOutput | None = None,
    ) -> ContainerOutput: ...


def events_for_output(output: ContainerOutput) -> list[SessionEvent]:
    events: list[SessionEvent] = []
    if output.result:
        events.append(PartialResult(output.result))
    if output.status == "error":
        events.append(SessionFailed(output.error or "Unknown error"))
    else:
        events.append(SessionSucceeded(output.new_session_id))
    return events


class ContainerSessionDriver:
    """Runs a container and yields its output as events through one queue.

    The runner writes into an unbounded queue and the caller reads it in a
    single loop, so a slow consumer never blocks the container's stdout.
    """

    def __init__(self, runner: ProcessRunner) -> None:
        self._runner = runner

    async def stream(
        self,
        group: RegisteredGroup,
        input_data: ContainerInput,
        on_process: OnProcess | None = None,
    ) -> AsyncIterator[SessionEvent]:
        """Yield events until the container exits.

        Exceptions from the runner are re-raised after buffered events.
        Closing the iterator early cancels the runner and waits for it.
        """
        events: asyncio.Queue[SessionEvent | None] = asyncio.Queue()

        async def on_output(output: ContainerOutput) -> None:
            for event in events_for_output(output):
                events.put_nowait(event)

        async def drive() -> None:
            try:
                output = await self._runner.run(group, input_data, on_process, on_output)
                events.put_nowait(SessionFinished(output))
            finally:
                events.put_nowait(None)

        runner_task = asyncio.create_task(drive())
        try:
            while (event := await events.get()) is not None:
                yield event
            await runner_task
        finally:
            if not runner_task.done():
                runner_task.cancel()
            # The runner kills its container on cancel; wait for that before returning
            await asyncio.gather(runner_task, return_exceptions=True)
