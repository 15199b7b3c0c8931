from __future__ import annotations

import threading
from datetime import datetime, timezone
from typing import Iterable

from reachability_checks.models import (
    ProbeResult,
    ProbeStatus,
    StatusCounts,
    StatusRow,
    StatusSnapshot,
    Target,
)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class StateStore:
    """
    Latest probe result per target, keyed by target URL.

    One slot per target, overwritten in place; nothing is ever evicted. Writes
    and snapshots go through a lock so a reader on another thread never sees
    a half-applied update.
    """

    def __init__(self, targets: Iterable[Target]):
        self._targets: tuple[Target, ...] = tuple(targets)
        self._by_id: dict[str, Target] = {t.id: t for t in self._targets}
        self._results: dict[str, ProbeResult] = {}
        self._lock = threading.Lock()

    @property
    def targets(self) -> tuple[Target, ...]:
        return self._targets

    def __len__(self) -> int:
        with self._lock:
            return len(self._results)

    def __contains__(self, target_id: object) -> bool:
        with self._lock:
            return target_id in self._results

    def set(self, target_id: str, result: ProbeResult) -> None:
        if target_id not in self._by_id:
            raise KeyError(f"Unknown target {target_id!r}")
        with self._lock:
            self._results[target_id] = result

    def get(self, target_id: str) -> ProbeResult | None:
        with self._lock:
            return self._results.get(target_id)

    def all(self) -> list[tuple[Target, ProbeResult]]:
        with self._lock:
            results = dict(self._results)
        # Targets never probed yet are shown as checking, like a fresh dashboard.
        return [(t, results.get(t.id) or ProbeResult.checking()) for t in self._targets]

    def summary(self) -> StatusCounts:
        return count_statuses(result for _target, result in self.all())

    def snapshot(self, *, cycle_complete: bool = False) -> StatusSnapshot:
        pairs = self.all()
        return StatusSnapshot(
            rows=[StatusRow(target=t, result=r) for t, r in pairs],
            counts=count_statuses(r for _t, r in pairs),
            generated_at=utc_now(),
            cycle_complete=cycle_complete,
        )


def count_statuses(results: Iterable[ProbeResult]) -> StatusCounts:
    up = slow = down = checking = 0
    for result in results:
        if result.status in (ProbeStatus.UP, ProbeStatus.UP_OPAQUE):
            up += 1
        elif result.status == ProbeStatus.SLOW:
            slow += 1
        elif result.status == ProbeStatus.DOWN:
            down += 1
        else:
            checking += 1
    return StatusCounts(up=up, slow=slow, down=down, checking=checking)
