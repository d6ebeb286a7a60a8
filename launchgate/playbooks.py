"""
Failure playbooks.

Static remediation notes matched against launch error text. Matching is
advisory only and never changes how a launch proceeds.
"""

import logging
import re
from typing import List, Optional, Sequence, Tuple

from .models import FailurePlaybook

logger = logging.getLogger(__name__)

WILDCARD = "*"

FAILURE_PLAYBOOKS: Tuple[FailurePlaybook, ...] = (
    FailurePlaybook(
        id="electron-vite-macos-first-window-timeout",
        title="electron-vite first-window timeout on macOS",
        presets=("electron-vite",),
        platforms=("darwin",),
        symptoms=(
            r"first\s*window",
            r"windowcreated",
            r'readiness signal\s+"windowCreated"\s+did not complete',
            r"Electron launched but no first window became ready within timeout",
        ),
        explanation=(
            "Some Electron builds disable the nodeCliInspect fuse, which breaks the automation "
            "driver's Electron launch path and can present as a first-window timeout."
        ),
        steps=(
            "Confirm whether your build disables nodeCliInspect fuses.",
            "If fuses are disabled, launch the app manually with --remote-debugging-port=<port> "
            "and use the pre-launched attach preset.",
            "Increase first window timeout only after validating fuse/debug-port configuration.",
        ),
        link="https://playwright.dev/docs/api/class-electron",
    ),
    FailurePlaybook(
        id="linux-first-window-timeout-ci-headless",
        title="First-window timeout on Linux CI (headed requirement)",
        presets=(WILDCARD,),
        platforms=("linux",),
        symptoms=(
            r"first\s*window",
            r"windowcreated",
            r"rendererready",
            r"no\s+display",
            r"WAYLAND_DISPLAY",
            r"DISPLAY",
        ),
        explanation=(
            "Linux CI often lacks a display server. Headed Electron launch can fail or stall "
            "before a renderer window is reported."
        ),
        steps=(
            "Run tests with a virtual display (for example Xvfb) or switch to a headless-compatible strategy.",
            "Set DISPLAY/WAYLAND_DISPLAY explicitly in CI before launch.",
            "Verify sandbox and GPU-related Electron flags for your CI image.",
        ),
    ),
    FailurePlaybook(
        id="electron-forge-dev-server-readiness",
        title="Electron Forge dev server readiness mismatch",
        presets=("electron-forge-webpack", "electron-forge-vite"),
        platforms=(WILDCARD,),
        symptoms=(
            r"devserverready",
            r"dev server not ready",
            r'readiness signal\s+"devServerReady"\s+did not complete',
        ),
        explanation=(
            "Electron Forge controls both the bundler lifecycle and Electron startup. Generic "
            "readiness checks can misclassify startup state."
        ),
        steps=(
            "Use Forge-specific output patterns and increase readiness timeout where necessary.",
            "Prefer URL probes for deterministic readiness where your app exposes one.",
            "Avoid layering duplicate process management outside Forge unless needed.",
        ),
    ),
    FailurePlaybook(
        id="cdp-attach-remote-debugging-not-enabled",
        title="CDP attach failed because remote debugging endpoint is unavailable",
        presets=(WILDCARD,),
        platforms=(WILDCARD,),
        symptoms=(
            r"attach",
            r"cdp",
            r"ws_?endpoint",
            r"remote-debugging-port",
            r"Failed to attach to Electron via CDP",
            r"Attach requires either cdp_url or ws_endpoint",
        ),
        explanation=(
            "Attach mode requires an active DevTools protocol endpoint. Without "
            "--remote-debugging-port (or an explicit ws endpoint), attach will fail."
        ),
        steps=(
            "Start Electron with --remote-debugging-port=<port>.",
            "Provide cdp_url (for example http://127.0.0.1:9222) or ws_endpoint explicitly.",
            "If multiple targets exist, set target selection constraints.",
        ),
        link="https://www.electronjs.org/docs/latest/api/command-line-switches#--remote-debugging-portport",
    ),
    FailurePlaybook(
        id="dev-server-port-conflict",
        title="Dev server port conflict",
        presets=(WILDCARD,),
        platforms=(WILDCARD,),
        symptoms=(
            r"EADDRINUSE",
            r"address already in use",
            r"port\s+\d+\s+already in use",
            r"listen\s+EADDRINUSE",
        ),
        explanation=(
            "Another process is already bound to the configured dev server port, so readiness "
            "never completes for the intended instance."
        ),
        steps=(
            "Stop the conflicting process or change the dev server port.",
            "Re-run launch and confirm the startup logs reflect the expected port.",
            "When using shared CI hosts, randomize ports or reserve them per job.",
        ),
    ),
    FailurePlaybook(
        id="macos-gatekeeper-quarantine-crash",
        title="Electron crashes on macOS due to Gatekeeper quarantine",
        presets=(WILDCARD,),
        platforms=("darwin",),
        symptoms=(
            r"quarantine",
            r"app translocation",
            r"code signature",
            r"killed:\s*9",
            r"crash",
            r"launch failed",
        ),
        explanation=(
            "Freshly downloaded binaries can be quarantined by Gatekeeper, causing immediate "
            "launch crashes or termination on first run."
        ),
        steps=(
            "Validate notarization/signing for the binary under test.",
            "Clear quarantine attributes in trusted local/dev environments before automation.",
            "Run the app once manually to confirm Gatekeeper prompts are resolved.",
        ),
    ),
)


def _matches_scope(scope: Sequence[str], candidate: Optional[str]) -> bool:
    if WILDCARD in scope or candidate is None:
        return True
    normalized = candidate.strip().lower()
    return any(entry.strip().lower() == normalized for entry in scope)


def _matches_symptoms(symptoms: Sequence[str], message: str) -> bool:
    if not message:
        return False
    for pattern in symptoms:
        try:
            if re.search(pattern, message, re.IGNORECASE):
                return True
        except re.error:
            logger.debug(f"Skipping invalid playbook symptom pattern: {pattern}")
    return False


def match_playbooks(
    message: str,
    preset_id: Optional[str] = None,
    platform: Optional[str] = None,
) -> List[FailurePlaybook]:
    """
    Playbooks whose scope and symptoms match an error message.

    Args:
        message: Error text to match symptoms against
        preset_id: Preset in use (None matches any preset scope)
        platform: sys.platform value (None matches any platform scope)

    Returns:
        Matching playbooks in catalog order
    """
    text = message.strip()
    return [
        playbook
        for playbook in FAILURE_PLAYBOOKS
        if _matches_scope(playbook.presets, preset_id)
        and _matches_scope(playbook.platforms, platform)
        and _matches_symptoms(playbook.symptoms, text)
    ]
