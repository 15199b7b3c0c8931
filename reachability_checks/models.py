from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum


class ProbeStatus(str, Enum):
    CHECKING = "CHECKING"
    UP = "UP"
    UP_OPAQUE = "UP_OPAQUE"
    SLOW = "SLOW"
    DOWN = "DOWN"


RESOLVED_STATUSES = frozenset({ProbeStatus.UP, ProbeStatus.UP_OPAQUE, ProbeStatus.SLOW, ProbeStatus.DOWN})


@dataclass(frozen=True)
class Target:
    url: str
    name: str
    kind: str = "WEBSITE"

    @property
    def id(self) -> str:
        return self.url


@dataclass(frozen=True)
class ProbeResult:
    status: ProbeStatus
    latency_ms: float | None = None
    note: str = ""
    checked_at: datetime | None = None

    @classmethod
    def checking(cls, checked_at: datetime | None = None) -> ProbeResult:
        return cls(status=ProbeStatus.CHECKING, latency_ms=None, note="", checked_at=checked_at)

    @property
    def resolved(self) -> bool:
        return self.status in RESOLVED_STATUSES

    def stamped(self, checked_at: datetime) -> ProbeResult:
        return replace(self, checked_at=checked_at)


@dataclass(frozen=True)
class StatusCounts:
    up: int = 0
    slow: int = 0
    down: int = 0
    checking: int = 0

    @property
    def total(self) -> int:
        return self.up + self.slow + self.down + self.checking


@dataclass(frozen=True)
class StatusRow:
    target: Target
    result: ProbeResult


@dataclass(frozen=True)
class StatusSnapshot:
    rows: list[StatusRow]
    counts: StatusCounts
    generated_at: datetime
    # Set on the final notification of a cycle.
    cycle_complete: bool = False
