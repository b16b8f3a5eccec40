from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Callable, Optional

log = logging.getLogger("scheduler")


class ScheduledTask:
    """One owned timer. Scheduling again replaces the outstanding one."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._task: Optional[asyncio.Task] = None

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    def schedule(self, delay_s: float, callback: Callable[[], Any], *, repeat: bool = False) -> None:
        self.cancel()
        loop = asyncio.get_running_loop()
        self._task = loop.create_task(self._run(float(delay_s), callback, repeat), name=f"scheduled:{self.name}")
        log.debug("scheduled name=%s delay=%.1fs repeat=%s", self.name, delay_s, repeat)

    def cancel(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            log.debug("cancelled name=%s", self.name)

    async def _run(self, delay_s: float, callback: Callable[[], Any], repeat: bool) -> None:
        while True:
            await asyncio.sleep(delay_s)
            try:
                res = callback()
                if inspect.isawaitable(res):
                    await res
            except asyncio.CancelledError:
                raise
            except Exception as e:
                log.exception("scheduled_callback_failed name=%s err=%s", self.name, e)
            if not repeat:
                return
