"""
Launch preset catalog.

Presets are frozen pydantic models built once at import time. Composing a
launch config from a preset plus caller overrides always produces a new
object; preset args/env are extended, never replaced.
"""

import logging
import os
from typing import Dict, List, Optional, Tuple

from .errors import invalid_input
from .models import (
    AttachConfig,
    DevServerConfig,
    DiagnosticsConfig,
    DriverLaunchConfig,
    LaunchMode,
    LaunchPreset,
    ProcessLaunchConfig,
    ReadinessSignalSpec,
    RetryPolicy,
    SignalKind,
)
from .options import LaunchOptions

logger = logging.getLogger(__name__)

DEFAULT_DEV_SERVER_TIMEOUT_MS = 60_000

DEFAULT_DIAGNOSTICS_CONFIG = DiagnosticsConfig()

LAUNCH_SIGNAL_CHAIN: Tuple[ReadinessSignalSpec, ...] = (
    ReadinessSignalSpec(
        kind=SignalKind.PROCESS_STABLE,
        timeout_ms=15_000,
        retry_policy=RetryPolicy(interval_ms=150),
    ),
    ReadinessSignalSpec(
        kind=SignalKind.DEV_SERVER_READY,
        timeout_ms=DEFAULT_DEV_SERVER_TIMEOUT_MS,
        retry_policy=RetryPolicy(interval_ms=250),
    ),
    ReadinessSignalSpec(
        kind=SignalKind.WINDOW_CREATED,
        timeout_ms=20_000,
        retry_policy=RetryPolicy(interval_ms=200),
    ),
    ReadinessSignalSpec(
        kind=SignalKind.RENDERER_READY,
        timeout_ms=20_000,
        retry_policy=RetryPolicy(interval_ms=200),
    ),
    ReadinessSignalSpec(
        kind=SignalKind.APP_MARKER_READY,
        timeout_ms=10_000,
        optional=True,
        retry_policy=RetryPolicy(interval_ms=200),
    ),
)

ATTACH_CONNECTIVITY_SIGNAL_CHAIN: Tuple[ReadinessSignalSpec, ...] = ()


ELECTRON_VITE_PRESET = LaunchPreset(
    id="electron-vite",
    version=2,
    mode=LaunchMode.LAUNCH,
    dev_server=DevServerConfig(
        managed=True,
        command="npx electron-vite dev",
        ready_pattern=r"ready in \d+ms",
        timeout_ms=DEFAULT_DEV_SERVER_TIMEOUT_MS,
    ),
    process_launch=ProcessLaunchConfig(entry_path="."),
    readiness_signals=LAUNCH_SIGNAL_CHAIN,
    diagnostics=DEFAULT_DIAGNOSTICS_CONFIG,
    diagnostic_hints=(
        "If first window readiness times out on macOS, verify nodeCliInspect fuse support or use CDP attach fallback.",
        "Ensure the renderer dev server prints a ready signal before expecting window creation.",
    ),
)

ELECTRON_FORGE_WEBPACK_PRESET = LaunchPreset(
    id="electron-forge-webpack",
    version=2,
    mode=LaunchMode.LAUNCH,
    dev_server=DevServerConfig(
        managed=True,
        command="npx electron-forge start",
        ready_pattern=r"webpack compilation complete|compiled successfully",
        timeout_ms=90_000,
    ),
    readiness_signals=LAUNCH_SIGNAL_CHAIN,
    diagnostics=DEFAULT_DIAGNOSTICS_CONFIG,
    diagnostic_hints=(
        "Electron Forge manages the webpack dev server lifecycle and Electron startup together.",
        "If dev server readiness fails, consider loosening the ready regex or relying on URL probes.",
    ),
)

ELECTRON_FORGE_VITE_PRESET = LaunchPreset(
    id="electron-forge-vite",
    version=2,
    mode=LaunchMode.LAUNCH,
    dev_server=DevServerConfig(
        managed=True,
        command="npx electron-forge start",
        ready_pattern=r"vite.*ready|built in",
        timeout_ms=90_000,
    ),
    readiness_signals=LAUNCH_SIGNAL_CHAIN,
    diagnostics=DEFAULT_DIAGNOSTICS_CONFIG,
    diagnostic_hints=(
        "Electron Forge manages the Vite lifecycle and Electron startup together.",
        "If readiness is flaky, add an explicit probe URL or extend the dev server timeout.",
    ),
)

ELECTRON_BUILDER_PRESET = LaunchPreset(
    id="electron-builder",
    version=2,
    mode=LaunchMode.LAUNCH,
    dev_server=DevServerConfig(
        managed=True,
        command="npm run dev",
        ready_pattern=r"ready|listening|started",
        timeout_ms=90_000,
    ),
    process_launch=ProcessLaunchConfig(entry_path="."),
    readiness_signals=LAUNCH_SIGNAL_CHAIN,
    diagnostics=DEFAULT_DIAGNOSTICS_CONFIG,
    diagnostic_hints=(
        "electron-builder dev setups vary across repos; override dev_server.command when needed.",
        "If main entry resolution fails, set process.entry_path to your compiled main.js/main.ts output.",
    ),
)

PRE_LAUNCHED_ATTACH_PRESET = LaunchPreset(
    id="pre-launched-attach",
    version=2,
    mode=LaunchMode.ATTACH,
    dev_server=DevServerConfig(managed=False),
    process_launch=ProcessLaunchConfig(attach=AttachConfig()),
    readiness_signals=ATTACH_CONNECTIVITY_SIGNAL_CHAIN,
    diagnostics=DEFAULT_DIAGNOSTICS_CONFIG,
    diagnostic_hints=(
        "Start Electron manually with --remote-debugging-port=<port> before launching with this preset.",
        "Provide a CDP URL or ws endpoint; this preset does not manage a dev server process.",
    ),
)

LAUNCH_PRESETS: Tuple[LaunchPreset, ...] = (
    ELECTRON_VITE_PRESET,
    ELECTRON_FORGE_WEBPACK_PRESET,
    ELECTRON_FORGE_VITE_PRESET,
    ELECTRON_BUILDER_PRESET,
    PRE_LAUNCHED_ATTACH_PRESET,
)

_PRESETS_BY_ID: Dict[str, LaunchPreset] = {preset.id: preset for preset in LAUNCH_PRESETS}


def list_presets() -> List[LaunchPreset]:
    """Catalog presets in declaration order."""
    return list(LAUNCH_PRESETS)


def resolve_preset(name: str) -> LaunchPreset:
    """
    Look up a preset by id.

    Args:
        name: Preset identifier

    Returns:
        The catalog preset (shared, immutable)

    Raises:
        LaunchGateError: INVALID_INPUT listing all known preset ids
    """
    preset = _PRESETS_BY_ID.get(name)
    if preset is None:
        raise invalid_input(
            f'Unknown launch preset "{name}".',
            {"name": name, "supported_presets": list(_PRESETS_BY_ID.keys())},
        )
    return preset


def find_signal_spec(preset: LaunchPreset, kind: SignalKind) -> Optional[ReadinessSignalSpec]:
    """First readiness spec of the given kind, if the preset declares one."""
    for spec in preset.readiness_signals:
        if spec.kind == kind:
            return spec
    return None


class ComposedLaunchConfig(DriverLaunchConfig):
    """Driver launch config plus the full argument list it was built from."""

    composed_args: Tuple[str, ...] = ()


def compose_launch_config(
    preset: LaunchPreset,
    project_root: str,
    options: Optional[LaunchOptions] = None
) -> ComposedLaunchConfig:
    """
    Merge preset launch defaults with caller overrides.

    Args are concatenated (preset defaults, resolved entry path, caller args)
    and env is a key union where the caller wins. The preset is untouched.

    Args:
        preset: Catalog preset
        project_root: Project directory; entry paths resolve against it
        options: Caller overrides

    Returns:
        A new ComposedLaunchConfig
    """
    options = options or LaunchOptions()
    overrides = options.process
    launch_defaults = preset.process_launch

    entry_path = (overrides.entry_path if overrides else None) or launch_defaults.entry_path
    entry_args = [] if entry_path is None else [os.path.abspath(os.path.join(project_root, entry_path))]
    caller_args = list(overrides.args) if overrides else []
    composed_args = [*launch_defaults.default_args, *entry_args, *caller_args]

    env = launch_defaults.env_dict()
    if overrides:
        env.update(overrides.env)

    executable_path = (overrides.executable_path if overrides else None) or launch_defaults.executable_path
    timeouts = options.timeouts

    config = ComposedLaunchConfig(
        session_id=options.session_id,
        project_root=project_root,
        preset=preset.id,
        executable_path=executable_path,
        args=composed_args,
        env=env,
        timeout_ms=timeouts.launch_ms if timeouts else None,
        first_window_timeout_ms=timeouts.first_window_ms if timeouts else None,
        composed_args=tuple(composed_args),
    )
    logger.debug(f"Composed launch config for preset {preset.id}: args={composed_args}")
    return config
