from __future__ import annotations

import argparse
import asyncio
import functools
import logging
import signal

import httpx
import structlog
import yaml
from pydantic import ValidationError

from reachability_checks.common_probe import probe_target, resolve_fallback
from reachability_checks.config import MonitorConfig, load_config
from reachability_checks.render import LoggingObserver, format_row, format_summary
from reachability_checks.scheduler import CycleScheduler
from reachability_checks.state import StateStore
from reachability_checks.worker_pool import WorkerPool


logger = structlog.get_logger(__name__)


def configure_logging(level_name: str) -> None:
    level = getattr(logging, str(level_name or "INFO").upper(), logging.INFO)
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="ISO"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
    # httpx logs every request at INFO; the cycle logs already cover that.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def build_scheduler(config: MonitorConfig, client: httpx.AsyncClient, store: StateStore) -> CycleScheduler:
    probe = functools.partial(
        probe_target,
        client=client,
        timeout_seconds=config.timeout_seconds,
        slow_threshold_ms=config.slow_threshold_ms,
        fallback=resolve_fallback(config.fallback),
    )
    pool = WorkerPool(store, probe, observers=[LoggingObserver()])
    return CycleScheduler(
        pool,
        store.targets,
        concurrency=config.concurrency,
        refresh_interval_seconds=config.refresh_interval_seconds,
        jitter_max_seconds=config.jitter_max_seconds,
        allow_overlap=config.allow_overlap,
    )


def _install_signal_handlers(scheduler: CycleScheduler, stop_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGUSR1, scheduler.trigger_now)
        loop.add_signal_handler(signal.SIGINT, stop_event.set)
        loop.add_signal_handler(signal.SIGTERM, stop_event.set)
    except (NotImplementedError, AttributeError):
        logger.warning("Signal handlers unavailable; manual trigger via SIGUSR1 disabled")


async def run_monitor(config: MonitorConfig, *, once: bool) -> int:
    store = StateStore(config.registry())
    async with httpx.AsyncClient() as client:
        scheduler = build_scheduler(config, client, store)

        if once:
            await scheduler.run_once()
            snapshot = store.snapshot(cycle_complete=True)
            for row in snapshot.rows:
                print(format_row(row))
            print(format_summary(snapshot.counts))
            return 1 if snapshot.counts.down else 0

        stop_event = asyncio.Event()
        _install_signal_handlers(scheduler, stop_event)
        scheduler.start()
        try:
            await stop_event.wait()
        finally:
            await scheduler.stop()
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(description="HTTP reachability monitor")
    parser.add_argument("--config", default=None, help="Path to YAML config (default: REACHABILITY_CONFIG or packaged config.yaml)")
    parser.add_argument("--once", action="store_true", help="Run one check cycle, print the table and exit")
    parser.add_argument("--log-level", default=None, help="Logging level (INFO, WARNING, ...)")
    args = parser.parse_args()

    try:
        config = load_config(args.config)
    except (ValueError, ValidationError, OSError, yaml.YAMLError) as exc:
        configure_logging(args.log_level or "INFO")
        logger.error("Invalid configuration", error=str(exc))
        return 2

    configure_logging(args.log_level or config.log_level)
    return asyncio.run(run_monitor(config, once=bool(args.once)))


if __name__ == "__main__":
    raise SystemExit(main())
