"""Pytest configuration and fixtures for launchgate tests."""

import sys
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

# Make the package importable without installation
sys.path.insert(0, str(Path(__file__).parent.parent))

from launchgate.diagnostics import ProcessOutputCollector
from launchgate.driver import AutomationDriver
from launchgate.models import (
    DriverAttachConfig,
    DriverLaunchConfig,
    DriverSession,
    DriverWindow,
    LaunchMode,
    LaunchPreset,
    ReadinessSignalSpec,
    RetryPolicy,
    SessionLaunchMode,
    SignalKind,
)


class FakeDriver(AutomationDriver):
    """Driver double recording every call.

    ``launch_result`` / ``attach_result`` may be a DriverSession or an
    exception instance to raise.
    """

    supports_evaluate = True

    def __init__(
        self,
        launch_result: Any = None,
        attach_result: Any = None,
        windows: Optional[List[DriverWindow]] = None,
        evaluate_result: Any = True,
    ):
        self.launch_result = launch_result or DriverSession(
            id="session-1",
            launch_mode=SessionLaunchMode.PRESET,
            metadata={"process_id": 4242},
        )
        self.attach_result = attach_result or DriverSession(
            id="session-attached",
            launch_mode=SessionLaunchMode.ATTACHED,
        )
        self.windows = windows if windows is not None else [
            DriverWindow(id="w1", title="App", url="http://localhost:5173/", kind="primary", focused=True)
        ]
        self.evaluate_result = evaluate_result
        self.launch_calls: List[DriverLaunchConfig] = []
        self.attach_calls: List[DriverAttachConfig] = []
        self.evaluate_calls: List[tuple] = []

    async def launch(self, config: DriverLaunchConfig) -> DriverSession:
        self.launch_calls.append(config)
        if isinstance(self.launch_result, Exception):
            raise self.launch_result
        return self.launch_result

    async def attach(self, config: DriverAttachConfig) -> DriverSession:
        self.attach_calls.append(config)
        if isinstance(self.attach_result, Exception):
            raise self.attach_result
        return self.attach_result

    async def get_windows(self, session: DriverSession) -> List[DriverWindow]:
        return list(self.windows)

    async def evaluate(self, window: DriverWindow, script: str) -> Any:
        self.evaluate_calls.append((window.id, script))
        return self.evaluate_result


class FakeDevServer:
    """Stands in for DevServerProcess without spawning anything."""

    def __init__(self, command: str, stdout: str = "", stderr: str = "", pid: int = 31337):
        self.command = command
        self.pid = pid
        self.collector = ProcessOutputCollector(name="devServer", command=command, pid=pid)
        self.collector.push_stdout(stdout)
        self.collector.push_stderr(stderr)
        self.unbind = MagicMock()
        self.terminate = AsyncMock(return_value=0)


def make_spawner(stdout: str = "", stderr: str = "") -> Callable:
    """Dev server factory returning FakeDevServer instances; spawned servers are kept on .spawned."""
    spawned: List[FakeDevServer] = []

    async def spawn(command: str, cwd: str, line_limit: int = 160, event_log=None, env=None):
        server = FakeDevServer(command, stdout=stdout, stderr=stderr)
        spawned.append(server)
        return server

    spawn.spawned = spawned
    return spawn


def fast_chain(*kinds: SignalKind, timeout_ms: int = 200) -> tuple:
    """Readiness specs with short timeouts for tests."""
    return tuple(
        ReadinessSignalSpec(kind=kind, timeout_ms=timeout_ms, retry_policy=RetryPolicy(interval_ms=10))
        for kind in kinds
    )


@pytest.fixture
def fake_driver() -> FakeDriver:
    return FakeDriver()


@pytest.fixture
def test_preset() -> LaunchPreset:
    """Launch preset with a managed dev server and a fast full chain."""
    return LaunchPreset(
        id="electron-vite",
        version=2,
        mode=LaunchMode.LAUNCH,
        dev_server={
            "managed": True,
            "command": "npx electron-vite dev",
            "ready_pattern": r"ready in \d+ms",
            "timeout_ms": 200,
        },
        process_launch={"entry_path": "."},
        readiness_signals=fast_chain(
            SignalKind.PROCESS_STABLE,
            SignalKind.DEV_SERVER_READY,
            SignalKind.WINDOW_CREATED,
            SignalKind.RENDERER_READY,
            SignalKind.APP_MARKER_READY,
        ),
        diagnostic_hints=("Check the dev server output.",),
    )


@pytest.fixture
def clean_env() -> Dict[str, str]:
    return {
        "PATH": "/usr/bin",
        "HOME": "/home/dev",
        "ELECTRON_ENABLE_LOGGING": "1",
        "ELECTRON_AUTH_TOKEN": "abc123",
        "UNRELATED": "ignored",
    }
