"""
Launch diagnostics collection.

Bounded line buffers for child process output, a capped event log, an
environment snapshot with secrets redacted, and a per-orchestrator store of
the diagnostics bundle of each session.
"""

import codecs
import logging
import os
import platform
import re
import sys
from collections import deque
from datetime import datetime
from typing import Deque, Dict, Iterable, List, Mapping, Optional, Union

from .models import (
    AttachDiagnostics,
    DiagnosticEventType,
    DiagnosticsConfig,
    LaunchDiagnosticEvent,
    LaunchDiagnostics,
    ProcessOutputSnapshot,
    ReadinessTimelineEntry,
    SanitizedEnvironment,
    utc_now,
)

logger = logging.getLogger(__name__)

MIN_BUFFER_LINES = 10
MIN_EVENT_LOG_LIMIT = 10

REDACTED_VALUE = "[REDACTED]"
SECRET_KEY_PATTERN = re.compile(
    r"(token|secret|password|passwd|key|auth|cookie|session|credential)",
    re.IGNORECASE,
)
_LINE_SPLIT = re.compile(r"\r?\n")


class LineRingBuffer:
    """
    Fixed-capacity buffer of complete output lines.

    Chunks are split on line breaks; text after the last break is held in
    ``partial`` until the next chunk completes it. Blank lines are skipped
    and surrounding whitespace is stripped.
    """

    def __init__(self, capacity: int):
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.capacity = capacity
        self._lines: Deque[str] = deque(maxlen=capacity)
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self.partial = ""

    def push(self, chunk: Union[str, bytes]) -> None:
        if isinstance(chunk, bytes):
            chunk = self._decoder.decode(chunk)
        if not chunk:
            return

        parts = _LINE_SPLIT.split(self.partial + chunk)
        self.partial = parts.pop()
        for line in parts:
            line = line.strip()
            if line:
                self._lines.append(line)

    def lines(self) -> List[str]:
        """Complete lines, oldest first, followed by the trimmed partial line."""
        result = list(self._lines)
        tail = self.partial.strip()
        if tail:
            result.append(tail)
        return result

    def __len__(self) -> int:
        return len(self._lines)


class ProcessOutputCollector:
    """Stdout/stderr line buffers for one named child process."""

    def __init__(
        self,
        name: str,
        command: Optional[str] = None,
        pid: Optional[int] = None,
        line_limit: int = 160,
    ):
        self.name = name
        self.command = command
        self.pid = pid
        limit = max(MIN_BUFFER_LINES, line_limit)
        self.stdout = LineRingBuffer(limit)
        self.stderr = LineRingBuffer(limit)

    def push_stdout(self, chunk: Union[str, bytes]) -> None:
        self.stdout.push(chunk)

    def push_stderr(self, chunk: Union[str, bytes]) -> None:
        self.stderr.push(chunk)

    def stdout_lines(self) -> List[str]:
        return self.stdout.lines()

    def stderr_lines(self) -> List[str]:
        return self.stderr.lines()

    def snapshot(self) -> ProcessOutputSnapshot:
        return ProcessOutputSnapshot(
            name=self.name,
            command=self.command,
            pid=self.pid,
            stdout=self.stdout.lines(),
            stderr=self.stderr.lines(),
        )


class DiagnosticEventLog:
    """Capped event log; the oldest entries are dropped once full."""

    def __init__(self, limit: int = 300):
        self.limit = max(MIN_EVENT_LOG_LIMIT, limit)
        self._events: Deque[LaunchDiagnosticEvent] = deque(maxlen=self.limit)

    def add(
        self,
        event_type: DiagnosticEventType,
        message: str,
        data: Optional[Dict] = None,
        timestamp: Optional[datetime] = None,
    ) -> LaunchDiagnosticEvent:
        event = LaunchDiagnosticEvent(
            timestamp=timestamp or utc_now(),
            type=event_type,
            message=message,
            data=data,
        )
        self._events.append(event)
        logger.debug(f"[{event_type.value}] {message}")
        return event

    def entries(self) -> List[LaunchDiagnosticEvent]:
        return list(self._events)

    def __len__(self) -> int:
        return len(self._events)


def is_secret_key(key: str) -> bool:
    return SECRET_KEY_PATTERN.search(key) is not None


def sanitize_environment(
    env: Optional[Mapping[str, str]] = None,
    config: Optional[DiagnosticsConfig] = None,
    cwd: Optional[str] = None,
) -> SanitizedEnvironment:
    """
    Snapshot the environment with only allowlisted keys and secrets redacted.

    A key is included when it is listed in ``include_env_keys`` or starts
    with one of ``include_env_prefixes``. Included keys whose name looks
    secret are always replaced by ``[REDACTED]``.

    Args:
        env: Environment to snapshot (default: os.environ)
        config: Allowlist configuration
        cwd: Working directory to report (default: os.getcwd())

    Returns:
        SanitizedEnvironment with keys in sorted order
    """
    env = os.environ if env is None else env
    config = config or DiagnosticsConfig()
    include_keys = set(config.include_env_keys)

    selected: Dict[str, str] = {}
    redacted: List[str] = []
    for key in sorted(env):
        if key not in include_keys and not key.startswith(tuple(config.include_env_prefixes)):
            continue
        if is_secret_key(key):
            selected[key] = REDACTED_VALUE
            redacted.append(key)
        else:
            selected[key] = env[key]

    return SanitizedEnvironment(
        cwd=cwd or os.getcwd(),
        platform=sys.platform,
        arch=platform.machine(),
        python_version=platform.python_version(),
        pid=os.getpid(),
        env=selected,
        redacted_keys=redacted,
    )


def build_launch_diagnostics(
    config: Optional[DiagnosticsConfig] = None,
    collectors: Iterable[ProcessOutputCollector] = (),
    timeline: Iterable[ReadinessTimelineEntry] = (),
    event_log: Optional[DiagnosticEventLog] = None,
    attach: Optional[AttachDiagnostics] = None,
    env: Optional[Mapping[str, str]] = None,
    cwd: Optional[str] = None,
) -> LaunchDiagnostics:
    """Assemble the diagnostics bundle attached to sessions and errors."""
    return LaunchDiagnostics(
        process_output=[collector.snapshot() for collector in collectors],
        signal_timeline=list(timeline),
        event_log=event_log.entries() if event_log is not None else [],
        environment=sanitize_environment(env, config, cwd),
        attach=attach,
    )


class SessionDiagnosticsStore:
    """Diagnostics bundles keyed by session id.

    Owned by one orchestrator; entries live until ``pop`` or ``clear``.
    """

    def __init__(self):
        self._bundles: Dict[str, LaunchDiagnostics] = {}

    def put(self, session_id: str, diagnostics: LaunchDiagnostics) -> None:
        self._bundles[session_id] = diagnostics

    def get(self, session_id: str) -> Optional[LaunchDiagnostics]:
        return self._bundles.get(session_id)

    def pop(self, session_id: str) -> Optional[LaunchDiagnostics]:
        return self._bundles.pop(session_id, None)

    def clear(self) -> None:
        self._bundles.clear()

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._bundles

    def __len__(self) -> int:
        return len(self._bundles)
