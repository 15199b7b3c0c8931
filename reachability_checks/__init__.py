"""HTTP reachability monitor: probe, worker pool, result store and cycle scheduler."""

from .common_probe import probe_target
from .models import ProbeResult, ProbeStatus, Target
from .scheduler import CycleScheduler
from .state import StateStore
from .worker_pool import WorkerPool

__all__ = [
    "CycleScheduler",
    "ProbeResult",
    "ProbeStatus",
    "StateStore",
    "Target",
    "WorkerPool",
    "probe_target",
]
