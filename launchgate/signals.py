"""Readiness signal factories.

Each factory binds a ReadinessSignal to live handles of one launch attempt
(pid getters, window listers, output buffers, DOM probes). The engine in
readiness.py knows nothing about what a signal checks.
"""

import logging
import re
import time
from typing import Awaitable, Callable, List, Optional, Sequence

import aiohttp
import psutil

from .models import DriverWindow, RetryPolicy, SignalKind, SignalResult
from .readiness import ReadinessSignal

logger = logging.getLogger(__name__)

HTTP_PROBE_TIMEOUT_S = 5.0

PidGetter = Callable[[], Optional[int]]
WindowLister = Callable[[], Awaitable[Sequence[DriverWindow]]]
LineGetter = Callable[[], Sequence[str]]
HttpGet = Callable[[str], Awaitable[int]]


def default_is_alive(pid: int) -> bool:
    """Signal-0 liveness probe; a process we may not signal still counts as alive."""
    return psutil.pid_exists(pid)


async def aiohttp_get_status(url: str) -> int:
    """GET ``url`` and return the HTTP status code."""
    timeout = aiohttp.ClientTimeout(total=HTTP_PROBE_TIMEOUT_S)
    async with aiohttp.ClientSession(timeout=timeout) as session:
        async with session.get(url) as response:
            return response.status


def is_devtools_window(window: DriverWindow) -> bool:
    kind = window.kind.strip().lower()
    url = window.url.strip().lower()
    return (
        kind == "devtools"
        or url.startswith("devtools://")
        or url.startswith("chrome-devtools://")
    )


def is_window_url_ready(url: str) -> bool:
    """A renderer URL counts once it is neither empty nor about:blank."""
    normalized = url.strip().lower()
    return normalized not in ("", "about:blank")


def create_process_stable_signal(
    timeout_ms: int,
    stable_for_ms: int,
    get_pid: PidGetter,
    is_alive: Optional[Callable[[int], bool]] = None,
    retry_policy: Optional[RetryPolicy] = None,
    name: Optional[str] = None,
) -> ReadinessSignal:
    """
    Ready once the process has stayed alive for ``stable_for_ms``.

    The alive-since timestamp resets whenever the pid is missing or the
    process is reported dead, so stability is measured from the most recent
    continuous liveness.

    Args:
        timeout_ms: Signal deadline
        stable_for_ms: Required continuous liveness
        get_pid: Returns the current pid, or None when unknown
        is_alive: Liveness probe (default: psutil.pid_exists)
        retry_policy: Polling policy
        name: Signal name override
    """
    alive_check = is_alive or default_is_alive
    alive_since: List[Optional[float]] = [None]

    async def check() -> SignalResult:
        pid = get_pid()
        if pid is None or pid <= 0:
            alive_since[0] = None
            return SignalResult(ready=False, detail="No Electron process id is available yet.")

        if not alive_check(pid):
            alive_since[0] = None
            return SignalResult(ready=False, detail=f"Electron process {pid} is not alive.")

        now = time.monotonic()
        if alive_since[0] is None:
            alive_since[0] = now
        alive_for_ms = int((now - alive_since[0]) * 1000)

        if alive_for_ms >= stable_for_ms:
            return SignalResult(
                ready=True,
                detail=f"Electron process {pid} stayed alive for {alive_for_ms}ms.",
            )
        return SignalResult(
            ready=False,
            detail=f"Electron process {pid} alive for {alive_for_ms}ms (needs {stable_for_ms}ms).",
        )

    return ReadinessSignal(
        name=name or SignalKind.PROCESS_STABLE.value,
        check=check,
        timeout_ms=timeout_ms,
        retry_policy=retry_policy,
        diagnostic_payload={"stable_for_ms": stable_for_ms},
    )


def create_dev_server_ready_signal(
    timeout_ms: int,
    ready_pattern: Optional[re.Pattern] = None,
    probe_url: Optional[str] = None,
    get_stdout_lines: Optional[LineGetter] = None,
    get_stderr_lines: Optional[LineGetter] = None,
    http_get: Optional[HttpGet] = None,
    retry_policy: Optional[RetryPolicy] = None,
    name: Optional[str] = None,
) -> ReadinessSignal:
    """
    Ready when dev server output matches ``ready_pattern`` or ``probe_url`` answers 2xx.

    With neither configured the signal is a no-op gate and is ready at once.
    A failing probe request is reported in the detail, not raised.
    """
    get_status = http_get or aiohttp_get_status

    payload = {}
    if ready_pattern is not None:
        payload["ready_pattern"] = ready_pattern.pattern
    if probe_url is not None:
        payload["probe_url"] = probe_url

    async def check() -> SignalResult:
        if ready_pattern is None and probe_url is None:
            return SignalResult(ready=True, detail="No dev server readiness checks were configured.")

        stdout_lines = list(get_stdout_lines()) if get_stdout_lines else []
        stderr_lines = list(get_stderr_lines()) if get_stderr_lines else []
        joined_output = "\n".join(stdout_lines + stderr_lines)

        pattern_ready = ready_pattern is not None and ready_pattern.search(joined_output) is not None

        probe_ready = False
        probe_detail: Optional[str] = None
        if probe_url is not None:
            try:
                status = await get_status(probe_url)
                probe_ready = 200 <= status < 300
                probe_detail = f"HTTP {status}"
            except Exception as e:
                probe_detail = str(e) or type(e).__name__

        if pattern_ready and probe_ready:
            return SignalResult(ready=True, detail="Dev server matched readiness output and HTTP probe succeeded.")
        if pattern_ready:
            return SignalResult(ready=True, detail="Dev server output matched readiness pattern.")
        if probe_ready:
            return SignalResult(ready=True, detail="Dev server HTTP probe succeeded.")

        parts = []
        if ready_pattern is not None:
            parts.append("waiting for readiness pattern in process output")
        if probe_url is not None:
            parts.append(f"HTTP probe pending ({probe_detail or 'no response'})")
        return SignalResult(ready=False, detail="; ".join(parts))

    return ReadinessSignal(
        name=name or SignalKind.DEV_SERVER_READY.value,
        check=check,
        timeout_ms=timeout_ms,
        retry_policy=retry_policy,
        diagnostic_payload=payload or None,
    )


def create_window_created_signal(
    timeout_ms: int,
    get_windows: WindowLister,
    retry_policy: Optional[RetryPolicy] = None,
    name: Optional[str] = None,
) -> ReadinessSignal:
    """Ready once at least one non-devtools window exists."""

    async def check() -> SignalResult:
        windows = await get_windows()
        renderer_windows = [w for w in windows if not is_devtools_window(w)]
        if renderer_windows:
            return SignalResult(ready=True, detail=f"Discovered {len(renderer_windows)} renderer window(s).")
        return SignalResult(ready=False, detail=f"No renderer windows yet (saw {len(windows)} total windows).")

    return ReadinessSignal(
        name=name or SignalKind.WINDOW_CREATED.value,
        check=check,
        timeout_ms=timeout_ms,
        retry_policy=retry_policy,
    )


def create_renderer_ready_signal(
    timeout_ms: int,
    get_windows: WindowLister,
    check_dom_ready: Optional[Callable[[str], Awaitable[bool]]] = None,
    retry_policy: Optional[RetryPolicy] = None,
    name: Optional[str] = None,
) -> ReadinessSignal:
    """
    Ready once a non-devtools window shows a real URL.

    When every renderer URL is still blank and ``check_dom_ready`` is given,
    the probe is asked per window id and the first success counts.
    """

    async def check() -> SignalResult:
        windows = await get_windows()
        renderer_windows = [w for w in windows if not is_devtools_window(w)]
        if not renderer_windows:
            return SignalResult(ready=False, detail="No renderer windows available for readiness checks.")

        for window in renderer_windows:
            if is_window_url_ready(window.url):
                return SignalResult(ready=True, detail=f"Renderer URL became non-blank ({window.url}).")

        if check_dom_ready is None:
            return SignalResult(ready=False, detail="Renderer URLs are still blank/about:blank.")

        for window in renderer_windows:
            if await check_dom_ready(window.id):
                return SignalResult(ready=True, detail=f"Renderer DOM content loaded in window {window.id}.")

        return SignalResult(ready=False, detail="Renderer DOM content is not ready yet.")

    return ReadinessSignal(
        name=name or SignalKind.RENDERER_READY.value,
        check=check,
        timeout_ms=timeout_ms,
        retry_policy=retry_policy,
    )


def create_app_marker_ready_signal(
    timeout_ms: int,
    marker: str,
    check_marker: Callable[[], Awaitable[bool]],
    retry_policy: Optional[RetryPolicy] = None,
    name: Optional[str] = None,
) -> ReadinessSignal:
    """Ready once ``check_marker`` reports the app marker visible."""

    async def check() -> SignalResult:
        if await check_marker():
            return SignalResult(ready=True, detail=f'App marker "{marker}" is visible.')
        return SignalResult(ready=False, detail=f'Waiting for app marker "{marker}".')

    return ReadinessSignal(
        name=name or SignalKind.APP_MARKER_READY.value,
        check=check,
        timeout_ms=timeout_ms,
        retry_policy=retry_policy,
        diagnostic_payload={"marker": marker},
    )
