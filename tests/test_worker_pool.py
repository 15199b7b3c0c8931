from __future__ import annotations

import asyncio

import pytest

from reachability_checks.models import ProbeResult, ProbeStatus, StatusSnapshot, Target
from reachability_checks.state import StateStore
from reachability_checks.worker_pool import WorkerPool


def _targets(n: int) -> list[Target]:
    return [Target(url=f"https://t{i}.example/", name=f"t{i}", kind="WEBSITE") for i in range(n)]


class FakeProbe:
    """Sleeps per target and tracks how many probes are running at once."""

    def __init__(self, delays: dict[str, float] | None = None, default_delay: float = 0.02):
        self.delays = delays or {}
        self.default_delay = default_delay
        self.calls: list[str] = []
        self.active = 0
        self.max_active = 0
        self.active_at_start: list[int] = []

    async def __call__(self, target: Target) -> ProbeResult:
        self.calls.append(target.url)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        self.active_at_start.append(self.active)
        try:
            await asyncio.sleep(self.delays.get(target.url, self.default_delay))
        finally:
            self.active -= 1
        return ProbeResult(status=ProbeStatus.UP, latency_ms=10.0, note="HTTP 200")


class RecordingObserver:
    def __init__(self) -> None:
        self.snapshots: list[StatusSnapshot] = []

    def __call__(self, snapshot: StatusSnapshot) -> None:
        self.snapshots.append(snapshot)


@pytest.mark.asyncio
async def test_cycle_resolves_every_target_exactly_once() -> None:
    targets = _targets(7)
    store = StateStore(targets)
    probe = FakeProbe(delays={targets[0].url: 0.05, targets[3].url: 0.001})
    pool = WorkerPool(store, probe)

    await pool.run_cycle(targets, concurrency=3)

    assert sorted(probe.calls) == sorted(t.url for t in targets)
    assert len(store) == len(targets)
    for target in targets:
        result = store.get(target.url)
        assert result is not None
        assert result.status in {ProbeStatus.UP, ProbeStatus.UP_OPAQUE, ProbeStatus.SLOW, ProbeStatus.DOWN}
        assert result.checked_at is not None


@pytest.mark.asyncio
async def test_concurrency_cap_five_targets_two_workers() -> None:
    targets = _targets(5)
    store = StateStore(targets)
    probe = FakeProbe(default_delay=0.03)
    pool = WorkerPool(store, probe)

    await pool.run_cycle(targets, concurrency=2)

    assert probe.max_active == 2
    # The first four probes start while both workers are busy; only the last runs alone.
    assert probe.active_at_start[:4] == [1, 2, 2, 2]
    assert pool.in_flight == 0


@pytest.mark.asyncio
@pytest.mark.parametrize("n_targets,concurrency", [(1, 1), (3, 8), (10, 4), (6, 6)])
async def test_concurrency_never_exceeds_cap(n_targets: int, concurrency: int) -> None:
    targets = _targets(n_targets)
    store = StateStore(targets)
    probe = FakeProbe(default_delay=0.01)
    pool = WorkerPool(store, probe)

    await pool.run_cycle(targets, concurrency=concurrency)

    assert probe.max_active <= min(concurrency, n_targets)
    assert len(probe.calls) == n_targets


@pytest.mark.asyncio
async def test_checking_published_before_any_probe_and_results_trickle_in() -> None:
    targets = _targets(4)
    store = StateStore(targets)
    observer = RecordingObserver()
    seen_before_probe: list[list[ProbeStatus]] = []

    async def probe(target: Target) -> ProbeResult:
        seen_before_probe.append([r.status for _t, r in store.all()])
        await asyncio.sleep(0.01)
        return ProbeResult(status=ProbeStatus.DOWN, latency_ms=None, note="timeout")

    pool = WorkerPool(store, probe, observers=[observer])
    await pool.run_cycle(targets, concurrency=1)

    first = observer.snapshots[0]
    assert all(row.result.status == ProbeStatus.CHECKING for row in first.rows)
    assert first.counts.checking == 4
    assert seen_before_probe[0] == [ProbeStatus.CHECKING] * 4

    # One CHECKING notification, one per completed probe, one end-of-cycle notification.
    assert len(observer.snapshots) == 1 + len(targets) + 1
    checking_counts = [s.counts.checking for s in observer.snapshots[1:-1]]
    assert checking_counts == [3, 2, 1, 0]
    assert observer.snapshots[-1].cycle_complete is True
    assert observer.snapshots[-1].counts.down == 4


@pytest.mark.asyncio
async def test_failing_probe_does_not_abort_cycle() -> None:
    targets = _targets(3)
    store = StateStore(targets)

    async def probe(target: Target) -> ProbeResult:
        if target is targets[1]:
            raise RuntimeError("boom")
        return ProbeResult(status=ProbeStatus.UP, latency_ms=5.0, note="HTTP 200")

    pool = WorkerPool(store, probe)
    await pool.run_cycle(targets, concurrency=2)

    broken = store.get(targets[1].url)
    assert broken is not None
    assert broken.status == ProbeStatus.DOWN
    assert broken.note == "unreachable"
    assert broken.latency_ms is None
    assert store.summary().up == 2


@pytest.mark.asyncio
async def test_failing_observer_does_not_abort_cycle() -> None:
    targets = _targets(2)
    store = StateStore(targets)

    def bad_observer(snapshot: StatusSnapshot) -> None:
        raise RuntimeError("render failed")

    pool = WorkerPool(store, FakeProbe(default_delay=0.0), observers=[bad_observer])
    await pool.run_cycle(targets, concurrency=1)

    assert store.summary().up == 2


@pytest.mark.asyncio
async def test_invalid_concurrency_rejected() -> None:
    targets = _targets(1)
    pool = WorkerPool(StateStore(targets), FakeProbe())
    with pytest.raises(ValueError):
        await pool.run_cycle(targets, concurrency=0)


@pytest.mark.asyncio
async def test_empty_target_list_completes() -> None:
    pool = WorkerPool(StateStore([]), FakeProbe())
    await pool.run_cycle([], concurrency=3)
    assert pool.cycles_started == 1


@pytest.mark.asyncio
async def test_overlapping_cycles_last_completion_wins() -> None:
    targets = _targets(1)
    store = StateStore(targets)
    calls = 0

    async def probe(target: Target) -> ProbeResult:
        nonlocal calls
        calls += 1
        if calls == 1:
            await asyncio.sleep(0.1)
            return ProbeResult(status=ProbeStatus.DOWN, latency_ms=100.0, note="HTTP 503")
        await asyncio.sleep(0.01)
        return ProbeResult(status=ProbeStatus.UP, latency_ms=10.0, note="HTTP 200")

    pool = WorkerPool(store, probe)
    await asyncio.gather(pool.run_cycle(targets, 1), pool.run_cycle(targets, 1))

    # The first cycle's probe started earlier but finished last.
    result = store.get(targets[0].url)
    assert result is not None
    assert result.note == "HTTP 503"
    assert len(store) == 1
