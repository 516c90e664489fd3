"""In-process repeating job that drives ``run_tick`` on a fixed cadence."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from app.services.chat_session import ChatSession
from app.services.dispatcher import TickReport, run_tick

_LOGGER = logging.getLogger(__name__)

TickHandler = Callable[[ChatSession], Awaitable[TickReport]]


class SchedulerLoop:
    """Fires the tick handler every ``interval`` seconds.

    Ticks run one after another inside a single task; ``run_once`` holds a lock
    so an on-demand tick can never overlap the periodic one. When a tick
    overruns, the missed firings are dropped rather than queued.

    Example:
        loop = SchedulerLoop(session, interval=60)
        await loop.start()
        ...
        await loop.stop()
    """

    def __init__(
        self,
        session: ChatSession,
        interval: float = 60.0,
        tick: TickHandler = run_tick,
    ):
        self._session = session
        self._interval = interval
        self._tick = tick
        self._lock = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None
        self._running = False
        self.ticks = 0

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop(), name="scheduler-loop")
        _LOGGER.info("Scheduler loop started (every %ss)", self._interval)

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        _LOGGER.info("Scheduler loop stopped after %d ticks", self.ticks)

    async def run_once(self) -> TickReport:
        async with self._lock:
            self.ticks += 1
            return await self._tick(self._session)

    async def _loop(self) -> None:
        clock = asyncio.get_running_loop()
        next_at = clock.time()
        while self._running:
            try:
                await self.run_once()
            except Exception:  # noqa: BLE001
                _LOGGER.exception("Scheduler tick crashed; next tick still scheduled")

            next_at += self._interval
            now = clock.time()
            while next_at <= now:
                next_at += self._interval
            await asyncio.sleep(next_at - now)
