from __future__ import annotations

import asyncio
import random
from typing import Awaitable, Callable, Sequence

import structlog

from reachability_checks.models import Target
from reachability_checks.worker_pool import WorkerPool


logger = structlog.get_logger(__name__)

Sleep = Callable[[float], Awaitable[None]]

IDLE = "IDLE"
RUNNING = "RUNNING"


class CycleScheduler:
    """
    Runs a cycle on start, then one every ``refresh_interval_seconds`` plus a
    fresh random jitter. ``trigger_now()`` starts an extra cycle without
    touching the periodic timer.
    """

    def __init__(
        self,
        pool: WorkerPool,
        targets: Sequence[Target],
        *,
        concurrency: int,
        refresh_interval_seconds: float,
        jitter_max_seconds: float = 1.5,
        allow_overlap: bool = True,
        sleep: Sleep = asyncio.sleep,
        rng: random.Random | None = None,
    ):
        if refresh_interval_seconds <= 0:
            raise ValueError("refresh_interval_seconds must be > 0")
        if jitter_max_seconds < 0:
            raise ValueError("jitter_max_seconds must be >= 0")
        self.pool = pool
        self.targets = tuple(targets)
        self.concurrency = int(concurrency)
        self.refresh_interval_seconds = float(refresh_interval_seconds)
        self.jitter_max_seconds = float(jitter_max_seconds)
        self.allow_overlap = bool(allow_overlap)
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._cycle_lock = asyncio.Lock()
        self._cycle_tasks: set[asyncio.Task[None]] = set()
        self._timer_task: asyncio.Task[None] | None = None
        self.running_cycles = 0
        self.cycles_launched = 0

    @property
    def state(self) -> str:
        return RUNNING if self.running_cycles > 0 else IDLE

    @property
    def started(self) -> bool:
        return self._timer_task is not None and not self._timer_task.done()

    def next_delay(self) -> float:
        return self.refresh_interval_seconds + self._rng.uniform(0.0, self.jitter_max_seconds)

    async def _execute(self) -> None:
        self.running_cycles += 1
        try:
            await self.pool.run_cycle(self.targets, self.concurrency)
        finally:
            self.running_cycles -= 1

    async def _run_cycle(self, reason: str) -> None:
        if self.allow_overlap:
            await self._execute()
            return
        if self._cycle_lock.locked():
            logger.info("Cycle queued behind running cycle", reason=reason)
        async with self._cycle_lock:
            await self._execute()

    def _on_cycle_done(self, task: asyncio.Task[None]) -> None:
        self._cycle_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Cycle failed", error=f"{type(exc).__name__}: {exc}")

    def _launch(self, reason: str) -> asyncio.Task[None]:
        self.cycles_launched += 1
        logger.debug("Launching cycle", reason=reason, running_cycles=self.running_cycles)
        task = asyncio.create_task(self._run_cycle(reason))
        self._cycle_tasks.add(task)
        task.add_done_callback(self._on_cycle_done)
        return task

    async def _timer_loop(self) -> None:
        while True:
            delay = self.next_delay()
            logger.debug("Next periodic cycle scheduled", sleep_seconds=round(delay, 3))
            await self._sleep(delay)
            self._launch("periodic")

    def start(self) -> None:
        if self.started:
            logger.warning("Scheduler already running")
            return
        self._launch("startup")
        self._timer_task = asyncio.create_task(self._timer_loop())
        logger.info(
            "Scheduler started",
            targets=len(self.targets),
            refresh_interval_seconds=self.refresh_interval_seconds,
            jitter_max_seconds=self.jitter_max_seconds,
        )

    def trigger_now(self) -> asyncio.Task[None]:
        logger.info("Manual cycle requested", running_cycles=self.running_cycles)
        return self._launch("manual")

    async def run_once(self) -> None:
        await self._run_cycle("once")

    async def wait_idle(self) -> None:
        while self._cycle_tasks:
            await asyncio.gather(*list(self._cycle_tasks), return_exceptions=True)

    async def stop(self) -> None:
        """Stop the periodic timer; cycles already running finish normally."""
        timer = self._timer_task
        self._timer_task = None
        if timer is not None:
            timer.cancel()
            try:
                await timer
            except asyncio.CancelledError:
                pass
        await self.wait_idle()
        logger.info("Scheduler stopped", cycles_launched=self.cycles_launched)
