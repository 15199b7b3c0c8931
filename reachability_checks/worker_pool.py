from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable, Iterator, Sequence

import structlog

from reachability_checks.common_probe import UNREACHABLE_NOTE
from reachability_checks.models import ProbeResult, ProbeStatus, StatusSnapshot, Target
from reachability_checks.state import StateStore, utc_now


logger = structlog.get_logger(__name__)

Probe = Callable[[Target], Awaitable[ProbeResult]]
Observer = Callable[[StatusSnapshot], None]


class WorkerPool:
    """Fans one probe cycle out over a fixed number of asyncio workers."""

    def __init__(self, store: StateStore, probe: Probe, *, observers: Sequence[Observer] = ()):
        self.store = store
        self.probe = probe
        self.observers: list[Observer] = list(observers)
        self.in_flight = 0
        self.cycles_started = 0

    def add_observer(self, observer: Observer) -> None:
        self.observers.append(observer)

    def _notify(self, *, cycle_complete: bool = False) -> None:
        if not self.observers:
            return
        snapshot = self.store.snapshot(cycle_complete=cycle_complete)
        for observer in list(self.observers):
            try:
                observer(snapshot)
            except Exception:
                logger.exception("Observer failed", observer=repr(observer))

    async def _probe_one(self, target: Target) -> ProbeResult:
        self.in_flight += 1
        try:
            return await self.probe(target)
        except Exception as exc:
            logger.exception("Probe raised; recording target as down", url=target.url, error=str(exc))
            return ProbeResult(status=ProbeStatus.DOWN, latency_ms=None, note=UNREACHABLE_NOTE)
        finally:
            self.in_flight -= 1

    async def _worker(self, cursor: Iterator[Target]) -> None:
        # next() on a shared iterator never yields to the loop, so no target is claimed twice.
        for target in cursor:
            result = await self._probe_one(target)
            self.store.set(target.id, result.stamped(utc_now()))
            self._notify()

    async def run_cycle(self, targets: Sequence[Target], concurrency: int) -> None:
        concurrency = int(concurrency)
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")

        self.cycles_started += 1
        cycle = self.cycles_started
        started = time.perf_counter()

        now = utc_now()
        for target in targets:
            self.store.set(target.id, ProbeResult.checking(now))
        self._notify()
        logger.info("Cycle started", cycle=cycle, targets=len(targets), concurrency=concurrency)

        cursor = iter(list(targets))
        workers = [asyncio.create_task(self._worker(cursor)) for _ in range(concurrency)]
        await asyncio.gather(*workers)

        self._notify(cycle_complete=True)
        counts = self.store.summary()
        logger.info(
            "Cycle complete",
            cycle=cycle,
            elapsed_seconds=round(time.perf_counter() - started, 3),
            up=counts.up,
            slow=counts.slow,
            down=counts.down,
            checking=counts.checking,
        )
