from __future__ import annotations

import asyncio
import time
from enum import Enum
from typing import Awaitable, Callable
from urllib.parse import urlsplit

import httpx
import structlog

from reachability_checks.models import ProbeResult, ProbeStatus, Target


logger = structlog.get_logger(__name__)

DEFAULT_SLOW_THRESHOLD_MS = 1200.0
OPAQUE_NOTE = "CORS blocked details"
READABLE_FALLBACK_NOTE = "OK"
TIMEOUT_NOTE = "timeout"
UNREACHABLE_NOTE = "unreachable"

# Failures of the direct attempt that leave room for the reduced-visibility retry.
_ATTEMPT_ERRORS = (httpx.RequestError, httpx.InvalidURL, OSError, ValueError)
_DEADLINE_ERRORS = (asyncio.TimeoutError, httpx.TimeoutException)


class AttemptOutcome(str, Enum):
    OPAQUE = "opaque"
    READABLE = "readable"


class ProbeFailure(str, Enum):
    READABLE_HTTP_FAILURE = "readable_http_failure"
    VISIBILITY_RESTRICTED = "visibility_restricted"
    TIMEOUT = "timeout"
    UNREACHABLE = "unreachable"


FallbackAttempt = Callable[[str, httpx.AsyncClient, float], Awaitable[AttemptOutcome]]


def _host_port_from_url(url: str) -> tuple[str, int]:
    parts = urlsplit(str(url or "").strip())
    scheme = (parts.scheme or "").lower()
    if scheme not in {"http", "https"}:
        raise ValueError(f"Unsupported URL scheme for {url!r}")
    host = (parts.hostname or "").strip()
    if not host:
        raise ValueError(f"URL has no host: {url!r}")
    port = parts.port or (443 if scheme == "https" else 80)
    return host, int(port)


def is_ok_status(status_code: int) -> bool:
    return 200 <= int(status_code) < 400


def classify_elapsed(elapsed_ms: float, *, fast: ProbeStatus, slow_threshold_ms: float) -> ProbeStatus:
    return ProbeStatus.SLOW if float(elapsed_ms) > float(slow_threshold_ms) else fast


def failure_kind(result: ProbeResult) -> ProbeFailure | None:
    """
    Map a result back onto the failure taxonomy. Returns None for clean successes
    and for CHECKING placeholders.
    """
    if result.status == ProbeStatus.DOWN:
        if result.note == TIMEOUT_NOTE:
            return ProbeFailure.TIMEOUT
        if result.note == UNREACHABLE_NOTE:
            return ProbeFailure.UNREACHABLE
        return ProbeFailure.READABLE_HTTP_FAILURE
    if result.note == OPAQUE_NOTE:
        return ProbeFailure.VISIBILITY_RESTRICTED
    return None


async def direct_attempt(url: str, client: httpx.AsyncClient, timeout_seconds: float) -> int:
    # Resolve on response headers; the body is never read.
    request = client.build_request("GET", url, timeout=timeout_seconds)
    response = await client.send(request, follow_redirects=True, stream=True)
    try:
        return response.status_code
    finally:
        await response.aclose()


async def tcp_connect_attempt(url: str, client: httpx.AsyncClient, timeout_seconds: float) -> AttemptOutcome:
    """
    Establish (and immediately drop) a TCP connection to the URL's host/port.
    A completed handshake proves a network path exists without exposing any
    HTTP status, so the outcome is opaque.
    """
    host, port = _host_port_from_url(url)
    _reader, writer = await asyncio.wait_for(asyncio.open_connection(host=host, port=port), timeout=timeout_seconds)
    writer.close()
    try:
        await writer.wait_closed()
    except OSError:
        pass
    return AttemptOutcome.OPAQUE


async def insecure_http_attempt(url: str, client: httpx.AsyncClient, timeout_seconds: float) -> AttemptOutcome:
    # Any response at all counts; certificate problems are what this retry works around.
    async with httpx.AsyncClient(verify=False, timeout=timeout_seconds) as insecure_client:
        await direct_attempt(url, insecure_client, timeout_seconds)
    return AttemptOutcome.READABLE


FALLBACK_ATTEMPTS: dict[str, FallbackAttempt | None] = {
    "tcp": tcp_connect_attempt,
    "insecure_http": insecure_http_attempt,
    "none": None,
}


def resolve_fallback(name: str) -> FallbackAttempt | None:
    key = str(name or "").strip().lower()
    if key not in FALLBACK_ATTEMPTS:
        raise ValueError(f"Unknown fallback {name!r}; expected one of {sorted(FALLBACK_ATTEMPTS)}")
    return FALLBACK_ATTEMPTS[key]


async def probe_target(
    target: Target,
    client: httpx.AsyncClient,
    *,
    timeout_seconds: float,
    slow_threshold_ms: float = DEFAULT_SLOW_THRESHOLD_MS,
    fallback: FallbackAttempt | None = tcp_connect_attempt,
) -> ProbeResult:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + max(0.0, float(timeout_seconds))
    started = time.perf_counter()

    def remaining() -> float:
        return deadline - loop.time()

    def elapsed_ms() -> float:
        return round((time.perf_counter() - started) * 1000.0, 3)

    def timed_out() -> ProbeResult:
        return ProbeResult(status=ProbeStatus.DOWN, latency_ms=None, note=TIMEOUT_NOTE)

    if remaining() <= 0:
        return timed_out()

    try:
        status_code = await asyncio.wait_for(direct_attempt(target.url, client, remaining()), timeout=remaining())
    except _DEADLINE_ERRORS:
        return timed_out()
    except _ATTEMPT_ERRORS as exc:
        direct_error = exc
    else:
        ms = elapsed_ms()
        if is_ok_status(status_code):
            status = classify_elapsed(ms, fast=ProbeStatus.UP, slow_threshold_ms=slow_threshold_ms)
        else:
            status = ProbeStatus.DOWN
        return ProbeResult(status=status, latency_ms=ms, note=f"HTTP {status_code}")

    if fallback is None:
        logger.debug("probe_direct_failed", url=target.url, error=f"{type(direct_error).__name__}: {direct_error}")
        return ProbeResult(status=ProbeStatus.DOWN, latency_ms=None, note=UNREACHABLE_NOTE)

    if remaining() <= 0:
        return timed_out()

    logger.debug(
        "probe_fallback",
        url=target.url,
        error=f"{type(direct_error).__name__}: {direct_error}",
        remaining_seconds=round(remaining(), 3),
    )
    try:
        outcome = await asyncio.wait_for(fallback(target.url, client, remaining()), timeout=remaining())
    except _DEADLINE_ERRORS:
        return timed_out()
    except _ATTEMPT_ERRORS as exc:
        logger.debug("probe_unreachable", url=target.url, error=f"{type(exc).__name__}: {exc}")
        return ProbeResult(status=ProbeStatus.DOWN, latency_ms=None, note=UNREACHABLE_NOTE)

    ms = elapsed_ms()
    if outcome == AttemptOutcome.OPAQUE:
        status = classify_elapsed(ms, fast=ProbeStatus.UP_OPAQUE, slow_threshold_ms=slow_threshold_ms)
        return ProbeResult(status=status, latency_ms=ms, note=OPAQUE_NOTE)
    status = classify_elapsed(ms, fast=ProbeStatus.UP, slow_threshold_ms=slow_threshold_ms)
    return ProbeResult(status=status, latency_ms=ms, note=READABLE_FALLBACK_NOTE)
