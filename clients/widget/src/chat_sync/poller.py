from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)


class PollScheduler:
    """Fixed-interval driver for fetch-and-reconcile cycles.

    At most one cycle is in flight; a tick that fires while one is running
    is dropped, not queued. Nothing runs after ``stop``.
    """

    def __init__(self, cycle: Callable[[], Awaitable[None]], interval_s: float) -> None:
        self._cycle = cycle
        self.interval_s = interval_s
        self._in_flight = False
        self._stopped = False
        self._loop_task: asyncio.Task | None = None
        self._cycle_task: asyncio.Task | None = None
        self.skipped_ticks = 0
        self.completed_cycles = 0

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._stopped

    @property
    def stopped(self) -> bool:
        return self._stopped

    def start(self) -> None:
        if self._stopped:
            raise RuntimeError("scheduler was stopped")
        if self._loop_task is None:
            logger.info("poll scheduler started (interval %.3fs)", self.interval_s)
            self._loop_task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        self._stopped = True
        if self._loop_task is None:
            return
        self._loop_task.cancel()
        try:
            await self._loop_task
        except asyncio.CancelledError:
            pass
        self._loop_task = None
        logger.info("poll scheduler stopped")

    def tick(self) -> bool:
        """Start a cycle in the background unless one is running. Returns True if started."""

        if not self._acquire():
            return False
        self._cycle_task = asyncio.create_task(self._run())
        return True

    async def run_once(self) -> bool:
        """Run a cycle inline unless one is running. Returns True if it ran."""

        if not self._acquire():
            return False
        await self._run()
        return True

    async def wait_idle(self) -> None:
        task = self._cycle_task
        if task is not None and not task.done():
            await asyncio.shield(task)

    def _acquire(self) -> bool:
        if self._stopped or self._in_flight:
            self.skipped_ticks += 1
            logger.debug("poll tick skipped (stopped=%s, in_flight=%s)", self._stopped, self._in_flight)
            return False
        self._in_flight = True
        return True

    async def _run(self) -> None:
        try:
            await self._cycle()
            self.completed_cycles += 1
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("poll cycle failed")
        finally:
            self._in_flight = False

    async def _loop(self) -> None:
        try:
            while not self._stopped:
                self.tick()
                await asyncio.sleep(self.interval_s)
        except asyncio.CancelledError:
            return
