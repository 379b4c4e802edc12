from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)


class CountdownTimer:
    """Periodic tick on the running event loop.

    ``on_tick`` is called once per ``interval`` and returns whether time
    remains. The first time it returns False the loop ends and ``on_expire``
    is awaited exactly once. Callbacks should be bound methods so they always
    see the owner's current state.
    """

    def __init__(
        self,
        on_tick: Callable[[], bool],
        on_expire: Callable[[], Awaitable[object]],
        *,
        interval: float = 1.0,
    ):
        self.on_tick = on_tick
        self.on_expire = on_expire
        self.interval = float(interval)
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    def stop(self) -> None:
        task, self._task = self._task, None
        if task is None or task.done():
            return
        # Called from on_expire: the task finishes on its own.
        if task is asyncio.current_task():
            return
        task.cancel()

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            if not self.on_tick():
                break
        try:
            await self.on_expire()
        except Exception:
            logger.exception("countdown expiry handler failed")
