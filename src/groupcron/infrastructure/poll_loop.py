"""Periodic coroutine runner with a per-cycle failure boundary."""

from __future__ import annotations

import asyncio
from typing import Callable, Awaitable

from groupcron.infrastructure.logger import logger


class PollLoop:
    """Awaits ``fn`` every ``interval_s`` seconds on its own task until stopped."""

    def __init__(self, name: str, interval_s: float, fn: Callable[[], Awaitable[None]]) -> None:
        self.name = name
        self.interval_s = interval_s
        self._fn = fn
        self._task: asyncio.Task[None] | None = None
        self.cycles = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run(), name=f"{self.name}-poll")
        logger.info("Poll loop started", loop=self.name, interval_s=self.interval_s)

    def stop(self) -> None:
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            logger.info("Poll loop stopped", loop=self.name)

    async def run_once(self) -> bool:
        """Run one cycle. A failing cycle is logged and reported as False."""
        self.cycles += 1
        try:
            await self._fn()
        except Exception:
            logger.exception("Poll cycle failed", loop=self.name, cycle=self.cycles)
            return False
        return True

    async def _run(self) -> None:
        while True:
            await self.run_once()
            await asyncio.sleep(self.interval_s)
