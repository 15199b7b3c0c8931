from __future__ import annotations

from datetime import datetime

import structlog

from reachability_checks.models import ProbeResult, ProbeStatus, StatusCounts, StatusRow, StatusSnapshot


logger = structlog.get_logger(__name__)

PLACEHOLDER = "—"


def status_label(status: ProbeStatus, note: str = "") -> str:
    if status in (ProbeStatus.UP, ProbeStatus.UP_OPAQUE):
        return "UP & RUNNING"
    if status == ProbeStatus.SLOW:
        return "SLOW"
    if status == ProbeStatus.DOWN:
        return f"DOWN ({note})" if note else "DOWN"
    return "CHECKING"


def format_latency(latency_ms: float | None) -> str:
    if latency_ms is None:
        return PLACEHOLDER
    return f"{round(latency_ms)}ms"


def format_checked_at(checked_at: datetime | None) -> str:
    if checked_at is None:
        return PLACEHOLDER
    return checked_at.astimezone().strftime("%Y-%m-%d %H:%M:%S")


def format_summary(counts: StatusCounts) -> str:
    return f"{counts.up} up • {counts.slow} slow • {counts.down} down • {counts.checking} checking"


def format_row(row: StatusRow) -> str:
    result: ProbeResult = row.result
    return (
        f"[{row.target.kind}] {row.target.name} {row.target.url} "
        f"{status_label(result.status, result.note)} "
        f"last={format_checked_at(result.checked_at)} rtt={format_latency(result.latency_ms)}"
    )


class LoggingObserver:
    """
    Console stand-in for a status page: logs the running summary on every
    change and the full table once a cycle is finished.
    """

    def __init__(self, *, log_rows: bool = True):
        self.log_rows = log_rows
        self.last_summary: str | None = None

    def __call__(self, snapshot: StatusSnapshot) -> None:
        summary = format_summary(snapshot.counts)
        if summary != self.last_summary:
            self.last_summary = summary
            logger.info("Status", summary=summary)

        if not snapshot.cycle_complete or not self.log_rows:
            return
        for row in snapshot.rows:
            result = row.result
            log = logger.warning if result.status == ProbeStatus.DOWN else logger.info
            log(
                "Target",
                name=row.target.name,
                kind=row.target.kind,
                url=row.target.url,
                status=status_label(result.status, result.note),
                rtt=format_latency(result.latency_ms),
                last_checked=format_checked_at(result.checked_at),
            )
