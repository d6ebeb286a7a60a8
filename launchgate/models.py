"""
Pydantic data models for launch orchestration.

Catalog entities (presets, playbooks) are frozen and hold tuples so they can
be shared across launches without defensive copies. Runtime results
(timelines, diagnostics, sessions) are plain models built fresh per launch.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def utc_now() -> datetime:
    """Current wall-clock time, timezone-aware."""
    return datetime.now(timezone.utc)


# Enumerations

class LaunchMode(str, Enum):
    """How a preset brings the application up."""
    LAUNCH = "launch"
    ATTACH = "attach"


class SignalKind(str, Enum):
    """Readiness milestones a preset may declare."""
    PROCESS_STABLE = "processStable"
    DEV_SERVER_READY = "devServerReady"
    WINDOW_CREATED = "windowCreated"
    RENDERER_READY = "rendererReady"
    APP_MARKER_READY = "appMarkerReady"


class DiagnosticEventType(str, Enum):
    """Categories for the launch event log."""
    LAUNCH = "launch"
    PROCESS = "process"
    SIGNAL = "signal"
    WINDOW = "window"
    TARGET = "target"
    ATTACH = "attach"


class SessionLaunchMode(str, Enum):
    """Launch mode reported by the automation driver."""
    PRESET = "preset"
    CUSTOM = "custom"
    ATTACHED = "attached"


class LaunchPath(str, Enum):
    """Which path produced a ready session."""
    DIRECT_LAUNCH = "direct_launch"
    CDP_ATTACH = "cdp_attach"
    FALLBACK_ATTACH = "fallback_attach"


# Catalog entities

class RetryPolicy(BaseModel):
    """Polling policy for a readiness signal."""

    model_config = ConfigDict(frozen=True)

    interval_ms: Optional[int] = Field(None, ge=0, description="Delay between attempts")
    max_attempts: Optional[int] = Field(None, ge=1, description="Attempt budget (unbounded when unset)")


class ReadinessSignalSpec(BaseModel):
    """Declarative readiness signal entry in a preset."""

    model_config = ConfigDict(frozen=True)

    kind: SignalKind = Field(..., description="Readiness milestone")
    timeout_ms: int = Field(..., gt=0, description="Signal deadline in milliseconds")
    retry_policy: Optional[RetryPolicy] = Field(None, description="Polling policy")
    optional: bool = Field(False, description="Signal only runs when its inputs are supplied")


class DevServerConfig(BaseModel):
    """Dev server managed by a preset."""

    model_config = ConfigDict(frozen=True)

    managed: bool = Field(False, description="Whether the preset spawns a dev server")
    command: Optional[str] = Field(None, description="Shell command starting the dev server")
    ready_pattern: Optional[str] = Field(None, description="Case-insensitive regex matched against output")
    ready_url: Optional[str] = Field(None, description="URL probed with HTTP GET")
    timeout_ms: Optional[int] = Field(None, gt=0, description="Dev server readiness timeout")

    @field_validator('ready_pattern')
    @classmethod
    def validate_ready_pattern(cls, v: Optional[str]) -> Optional[str]:
        """Validate regex pattern compiles."""
        if v is not None:
            try:
                re.compile(v)
            except re.error as e:
                raise ValueError(f"Invalid regex pattern: {e}")
        return v

    def compiled_pattern(self) -> Optional[re.Pattern]:
        if self.ready_pattern is None:
            return None
        return re.compile(self.ready_pattern, re.IGNORECASE)


class AttachConfig(BaseModel):
    """Remote-debugging endpoint for attach mode."""

    model_config = ConfigDict(frozen=True)

    cdp_url: Optional[str] = Field(None, description="HTTP DevTools endpoint, e.g. http://127.0.0.1:9222")
    ws_endpoint: Optional[str] = Field(None, description="Browser websocket endpoint")


class ProcessLaunchConfig(BaseModel):
    """Defaults for launching the application process."""

    model_config = ConfigDict(frozen=True)

    entry_path: Optional[str] = Field(None, description="Main entry, resolved against the project root")
    executable_path: Optional[str] = Field(None, description="Application binary")
    default_args: Tuple[str, ...] = Field(default_factory=tuple, description="Arguments prepended to caller args")
    default_env: Tuple[Tuple[str, str], ...] = Field(default_factory=tuple, description="Environment defaults")
    attach: Optional[AttachConfig] = Field(None, description="Attach endpoint defaults")

    @field_validator('default_env', mode='before')
    @classmethod
    def normalize_env(cls, v: Any) -> Any:
        """Accept a mapping and store it as sorted key/value pairs."""
        if isinstance(v, dict):
            return tuple(sorted((str(key), str(value)) for key, value in v.items()))
        return v

    def env_dict(self) -> Dict[str, str]:
        return dict(self.default_env)


class DiagnosticsConfig(BaseModel):
    """Capacity and environment allowlist for launch diagnostics."""

    model_config = ConfigDict(frozen=True)

    process_ring_buffer_lines: int = Field(160, ge=1, description="Lines kept per output stream")
    event_log_limit: int = Field(300, ge=1, description="Events kept in the launch event log")
    include_env_prefixes: Tuple[str, ...] = Field(
        ("LAUNCHGATE_", "ELECTRON_", "PLAYWRIGHT_", "NODE_", "NPM_", "CI"),
        description="Environment key prefixes included in snapshots",
    )
    include_env_keys: Tuple[str, ...] = Field(
        ("PATH", "HOME", "SHELL", "TERM", "PWD", "USER", "LANG", "TZ"),
        description="Exact environment keys included in snapshots",
    )


class LaunchPreset(BaseModel):
    """Versioned, immutable description of how to bring an app up."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1, description="Preset identifier")
    version: int = Field(..., ge=1, description="Preset revision")
    mode: LaunchMode = Field(..., description="Launch a new process or attach to a running one")
    dev_server: DevServerConfig = Field(default_factory=DevServerConfig)
    process_launch: ProcessLaunchConfig = Field(default_factory=ProcessLaunchConfig)
    readiness_signals: Tuple[ReadinessSignalSpec, ...] = Field(default_factory=tuple)
    diagnostics: DiagnosticsConfig = Field(default_factory=DiagnosticsConfig)
    diagnostic_hints: Tuple[str, ...] = Field(default_factory=tuple)

    @model_validator(mode='after')
    def validate_dev_server(self):
        """A managed dev server needs a command."""
        if self.dev_server.managed and not self.dev_server.command:
            raise ValueError("dev_server.command required when dev_server.managed=True")
        return self


class FailurePlaybook(BaseModel):
    """Static remediation note for a known failure symptom."""

    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    presets: Tuple[str, ...] = Field(..., min_length=1, description="'*' or exact preset ids")
    platforms: Tuple[str, ...] = Field(..., min_length=1, description="'*' or platform names")
    symptoms: Tuple[str, ...] = Field(..., min_length=1, description="Case-insensitive regexes")
    explanation: str
    steps: Tuple[str, ...]
    link: Optional[str] = None


# Readiness results

class SignalResult(BaseModel):
    """Outcome of one readiness check."""

    ready: bool
    detail: Optional[str] = None


class ReadinessTimelineEntry(BaseModel):
    """One attempt of one readiness signal."""

    signal_name: str
    attempt: int = Field(..., ge=1)
    started_at: datetime
    finished_at: datetime
    duration_ms: float = Field(..., ge=0)
    ready: bool
    timed_out: bool
    detail: Optional[str] = None
    error: Optional[str] = None
    diagnostic_payload: Optional[Dict[str, Any]] = None


class FailedSignal(BaseModel):
    """Signal that terminated a chain."""

    name: str
    detail: Optional[str] = None
    timed_out: bool
    attempts: int = Field(..., ge=1)


class ReadinessDiagnostics(BaseModel):
    """Timeline of a chain run."""

    started_at: datetime
    finished_at: datetime
    timeline: List[ReadinessTimelineEntry] = Field(default_factory=list)


class ReadinessChainResult(BaseModel):
    """Result of running an ordered chain of readiness signals."""

    ok: bool
    completed_signals: List[str] = Field(default_factory=list)
    failed_signal: Optional[FailedSignal] = None
    diagnostics: ReadinessDiagnostics

    @model_validator(mode='after')
    def validate_failure_presence(self):
        """failed_signal is present exactly when the chain failed."""
        if self.ok and self.failed_signal is not None:
            raise ValueError("failed_signal must be absent when ok=True")
        if not self.ok and self.failed_signal is None:
            raise ValueError("failed_signal required when ok=False")
        return self


# Diagnostics

class LaunchDiagnosticEvent(BaseModel):
    """Structured entry in the launch event log."""

    timestamp: datetime = Field(default_factory=utc_now)
    type: DiagnosticEventType
    message: str
    data: Optional[Dict[str, Any]] = None


class ProcessOutputSnapshot(BaseModel):
    """Bounded stdout/stderr capture of a child process."""

    name: str
    command: Optional[str] = None
    pid: Optional[int] = None
    stdout: List[str] = Field(default_factory=list)
    stderr: List[str] = Field(default_factory=list)


class SanitizedEnvironment(BaseModel):
    """Environment summary safe to include in error reports."""

    cwd: str
    platform: str
    arch: str
    python_version: str
    pid: int
    env: Dict[str, str] = Field(default_factory=dict)
    redacted_keys: List[str] = Field(default_factory=list)


class AttachTargetDiagnostic(BaseModel):
    """DevTools target discovered during attach."""

    target_id: Optional[str] = None
    type: Optional[str] = None
    url: Optional[str] = None
    title: Optional[str] = None


class AttachDiagnostics(BaseModel):
    """How the driver selected a target when attaching."""

    discovered_targets: Optional[List[AttachTargetDiagnostic]] = None
    selection_rationale: Optional[str] = None
    selected_target_id: Optional[str] = None
    selected_target_url: Optional[str] = None


class LaunchDiagnostics(BaseModel):
    """Combined diagnostics bundle attached to results and errors."""

    captured_at: datetime = Field(default_factory=utc_now)
    process_output: List[ProcessOutputSnapshot] = Field(default_factory=list)
    signal_timeline: List[ReadinessTimelineEntry] = Field(default_factory=list)
    event_log: List[LaunchDiagnosticEvent] = Field(default_factory=list)
    environment: SanitizedEnvironment
    attach: Optional[AttachDiagnostics] = None


# Driver-facing entities

class TargetSelection(BaseModel):
    """Constraints the driver applies when picking an attach target."""

    target_url_includes: Optional[str] = None
    target_type: Optional[str] = None
    prefer_non_devtools: Optional[bool] = None


class DriverLaunchConfig(BaseModel):
    """Launch request handed to the automation driver."""

    session_id: Optional[str] = None
    project_root: str
    preset: Optional[str] = None
    executable_path: Optional[str] = None
    args: List[str] = Field(default_factory=list)
    env: Dict[str, str] = Field(default_factory=dict)
    timeout_ms: Optional[int] = None
    first_window_timeout_ms: Optional[int] = None


class DriverAttachConfig(BaseModel):
    """Attach request handed to the automation driver."""

    session_id: Optional[str] = None
    cdp_url: Optional[str] = None
    ws_endpoint: Optional[str] = None
    timeout_ms: Optional[int] = None
    target_selection: Optional[TargetSelection] = None

    def has_endpoint(self) -> bool:
        return bool(self.cdp_url or self.ws_endpoint)


class DriverWindow(BaseModel):
    """Window reported by the automation driver."""

    id: str
    title: str = ""
    url: str = ""
    kind: str = "unknown"
    focused: bool = False
    visible: bool = True


class DriverSession(BaseModel):
    """Session produced by the automation driver.

    The orchestrator only annotates ``metadata``; the rest belongs to the
    driver and downstream session management.
    """

    id: str
    launch_mode: SessionLaunchMode
    metadata: Dict[str, Any] = Field(default_factory=dict)

    def process_id(self) -> Optional[int]:
        """Application pid when the driver reported a positive integer."""
        value = self.metadata.get("process_id")
        if isinstance(value, int) and not isinstance(value, bool) and value > 0:
            return value
        return None
