"""
launchgate - launch orchestration and readiness gating for Electron apps.

Brings an app process up (or attaches to a running one) and only hands the
session over once an ordered chain of readiness signals has passed.
"""

__version__ = "1.0.0"

from .errors import ErrorCode, LaunchGateError, DriverLaunchError
from .driver import AutomationDriver
from .options import LaunchOptions, AttachOptions
from .orchestrator import LaunchOrchestrator
from .playbooks import match_playbooks
from .presets import list_presets, resolve_preset
from .readiness import ReadinessSignal, run_readiness_chain

__all__ = [
    "__version__",
    "ErrorCode",
    "LaunchGateError",
    "DriverLaunchError",
    "AutomationDriver",
    "LaunchOptions",
    "AttachOptions",
    "LaunchOrchestrator",
    "match_playbooks",
    "list_presets",
    "resolve_preset",
    "ReadinessSignal",
    "run_readiness_chain",
]
