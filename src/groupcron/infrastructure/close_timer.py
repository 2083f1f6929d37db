"""One-shot delayed callback using asyncio."""

from __future__ import annotations

import asyncio
from typing import Callable, Awaitable


class DelayedCall:
    """Fires ``callback`` once, ``delay_s`` seconds after the first ``arm()``.

    Re-arming while a call is pending does nothing; ``cancel()`` drops it.
    """

    def __init__(self, callback: Callable[[], Awaitable[None] | None], delay_s: float) -> None:
        self._callback = callback
        self._delay = delay_s
        self._task: asyncio.Task[None] | None = None
        self.fired = False

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    def arm(self) -> None:
        if self._task is not None:
            return
        self._task = asyncio.create_task(self._fire())

    async def _fire(self) -> None:
        await asyncio.sleep(self._delay)
        self.fired = True
        result = self._callback()
        if asyncio.iscoroutine(result):
            await result

    def cancel(self) -> None:
        """Cancel a pending call without firing it."""
        if self._task and not self._task.done():
            self._task.cancel()
