"""
Launch orchestrator.

Sequences one launch attempt: optional managed dev server, dev server
readiness, launch or CDP attach through the automation driver, post-launch
readiness signals, and attach-on-failure fallback. Every terminal failure
becomes a retriable LAUNCH_FAILED error carrying the diagnostics bundle,
preset hints and matched failure playbooks.
"""

import asyncio
import json
import logging
import re
import sys
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Union

from .config import LaunchSettings
from .dev_server import DevServerProcess, DevServerSpawner
from .diagnostics import (
    DiagnosticEventLog,
    ProcessOutputCollector,
    SessionDiagnosticsStore,
    build_launch_diagnostics,
)
from .driver import AutomationDriver
from .endpoints import cdp_url_from_args, derive_attach_endpoint
from .errors import LaunchGateError, error_message, invalid_input, launch_failed
from .models import (
    AttachDiagnostics,
    AttachTargetDiagnostic,
    DiagnosticEventType,
    DiagnosticsConfig,
    DriverAttachConfig,
    DriverLaunchConfig,
    DriverSession,
    DriverWindow,
    LaunchDiagnostics,
    LaunchMode,
    LaunchPath,
    LaunchPreset,
    ReadinessDiagnostics,
    ReadinessTimelineEntry,
    SignalKind,
)
from .options import AttachOptions, LaunchOptions, ReadinessOverrides
from .playbooks import match_playbooks
from .presets import ComposedLaunchConfig, compose_launch_config, find_signal_spec, resolve_preset
from .readiness import ReadinessSignal, combine_readiness_diagnostics, run_readiness_chain
from .signals import (
    HttpGet,
    create_app_marker_ready_signal,
    create_dev_server_ready_signal,
    create_process_stable_signal,
    create_renderer_ready_signal,
    create_window_created_signal,
    is_devtools_window,
)

logger = logging.getLogger(__name__)

DOM_READY_SCRIPT = '() => document.readyState === "interactive" || document.readyState === "complete"'

APP_MARKER_SCRIPT_TEMPLATE = """() => {{
    const selector = {marker};
    const element = document.querySelector(selector);
    if (element === null) {{
        return false;
    }}
    const style = globalThis.getComputedStyle(element);
    if (style.display === "none" || style.visibility === "hidden") {{
        return false;
    }}
    const rect = element.getBoundingClientRect();
    return rect.width > 0 && rect.height > 0;
}}"""


@dataclass
class LaunchAttempt:
    """Mutable state of one launch attempt. Never shared between attempts."""

    preset: LaunchPreset
    project_root: str
    options: LaunchOptions
    event_log: DiagnosticEventLog
    completed_signals: List[str] = field(default_factory=list)
    readiness_runs: List[ReadinessDiagnostics] = field(default_factory=list)
    dev_server: Optional[DevServerProcess] = None

    @property
    def collectors(self) -> List[ProcessOutputCollector]:
        return [] if self.dev_server is None else [self.dev_server.collector]

    def readiness(self) -> Optional[ReadinessDiagnostics]:
        return combine_readiness_diagnostics(self.readiness_runs)

    def timeline(self) -> List[ReadinessTimelineEntry]:
        combined = self.readiness()
        return [] if combined is None else list(combined.timeline)


def attach_diagnostics_from_session(session: DriverSession) -> Optional[AttachDiagnostics]:
    """Target discovery details a driver reported in session metadata."""
    metadata = session.metadata

    def text(value: Any) -> Optional[str]:
        return value if isinstance(value, str) and value else None

    raw_targets = metadata.get("attach_targets")
    targets = [t for t in raw_targets if isinstance(t, dict)] if isinstance(raw_targets, list) else []
    discovered = [
        AttachTargetDiagnostic(
            target_id=text(target.get("target_id")),
            type=text(target.get("type")),
            url=text(target.get("url")),
            title=text(target.get("title")),
        )
        for target in targets
    ] or None

    rationale = text(metadata.get("attach_selection_rationale"))
    selected_id = text(metadata.get("primary_renderer_target_id"))
    selected_url = text(metadata.get("primary_renderer_url"))

    if discovered is None and rationale is None and selected_id is None and selected_url is None:
        return None

    return AttachDiagnostics(
        discovered_targets=discovered,
        selection_rationale=rationale,
        selected_target_id=selected_id,
        selected_target_url=selected_url,
    )


def _lines_from_error(error: BaseException) -> List[str]:
    """Captured stdout then stderr lines a driver attached to its launch error."""
    details = getattr(error, "details", None)
    if not isinstance(details, dict):
        return []
    lines: List[str] = []
    for key in ("stdout", "stderr"):
        value = details.get(key)
        if isinstance(value, list):
            lines.extend(line for line in value if isinstance(line, str))
    return lines


class LaunchOrchestrator:
    """
    Brings an Electron app to a verified ready state through a driver.

    One orchestrator may run many launches; each launch owns its own event
    log, readiness runs and dev server. Diagnostics of successful sessions
    are kept in a store owned by this instance until ``release``.
    """

    def __init__(
        self,
        driver: AutomationDriver,
        settings: Optional[LaunchSettings] = None,
        spawn_dev_server: Optional[DevServerSpawner] = None,
        is_alive: Optional[Callable[[int], bool]] = None,
        http_get: Optional[HttpGet] = None,
        platform: Optional[str] = None,
        env: Optional[Mapping[str, str]] = None,
    ):
        """
        Initialize launch orchestrator.

        Args:
            driver: Automation driver performing launch/attach
            settings: User-level defaults
            spawn_dev_server: Dev server factory (default: DevServerProcess.spawn)
            is_alive: Pid liveness probe for processStable
            http_get: HTTP status probe for devServerReady
            platform: Platform used for playbook matching (default: sys.platform)
            env: Environment snapshotted into diagnostics (default: os.environ)
        """
        self.driver = driver
        self.settings = settings or LaunchSettings()
        self.spawn_dev_server = spawn_dev_server or DevServerProcess.spawn
        self.is_alive = is_alive
        self.http_get = http_get
        self.platform = platform or sys.platform
        self.env = env
        self.diagnostics = SessionDiagnosticsStore()

    # Public operations

    async def launch_with_preset(
        self,
        preset: Union[LaunchPreset, str],
        project_root: str,
        options: Optional[LaunchOptions] = None,
    ) -> DriverSession:
        """
        Launch (or attach, for attach-mode presets) and wait for readiness.

        Args:
            preset: Preset or preset id
            project_root: Project directory; dev server cwd and entry path base
            options: Caller overrides

        Returns:
            Driver session annotated with launch path and readiness timeline

        Raises:
            LaunchGateError: INVALID_INPUT for an unknown preset id,
                LAUNCH_FAILED for any failure while bringing the app up
        """
        if isinstance(preset, str):
            preset = resolve_preset(preset)
        options = options or LaunchOptions()

        attempt = LaunchAttempt(
            preset=preset,
            project_root=project_root,
            options=options,
            event_log=DiagnosticEventLog(preset.diagnostics.event_log_limit),
        )
        launch_config = compose_launch_config(preset, project_root, options)
        logger.info(f"Launching preset {preset.id} (v{preset.version}, mode={preset.mode.value}) in {project_root}")

        try:
            await self._start_dev_server(attempt)
            await self._run_dev_server_readiness(attempt)

            if preset.mode == LaunchMode.ATTACH:
                session = await self._attach_preset_flow(attempt)
            else:
                session = await self._direct_launch_flow(attempt, launch_config)
        except Exception as launch_error:
            if not options.fallback_enabled(self.settings.attach_fallback_enabled) or preset.mode == LaunchMode.ATTACH:
                await self._abandon_dev_server(attempt)
                raise self._launch_failure(
                    attempt,
                    f'Preset launch failed for "{preset.id}".',
                    error_message(launch_error),
                ) from launch_error

            logger.warning(f"Launch of preset {preset.id} failed, trying CDP attach fallback: {launch_error}")
            try:
                session = await self._fallback_attach_flow(attempt, launch_config, launch_error)
            except Exception as attach_error:
                await self._abandon_dev_server(attempt)
                raise self._launch_failure(
                    attempt,
                    "Preset launch failed and CDP attach fallback also failed.",
                    f"launchError={error_message(launch_error)}; attachError={error_message(attach_error)}",
                ) from attach_error
            except asyncio.CancelledError:
                await self._abandon_dev_server(attempt)
                raise
        except asyncio.CancelledError:
            logger.warning(f"Launch of preset {preset.id} cancelled")
            await self._abandon_dev_server(attempt)
            raise

        self._remember(session, attempt)
        logger.info(
            f"Session {session.id} ready via {session.metadata.get('launch_path')} "
            f"(signals: {', '.join(attempt.completed_signals) or 'none'})"
        )
        return session

    async def attach_to_cdp(self, options: AttachOptions, cwd: Optional[str] = None) -> DriverSession:
        """
        Attach to an already running app over its DevTools endpoint.

        Raises:
            LaunchGateError: INVALID_INPUT without cdp_url/ws_endpoint,
                LAUNCH_FAILED when the driver cannot attach
        """
        event_log = DiagnosticEventLog()
        session = await self._attach(
            DriverAttachConfig(
                session_id=options.session_id,
                cdp_url=options.cdp_url,
                ws_endpoint=options.ws_endpoint,
                timeout_ms=options.timeout_ms,
                target_selection=options.target_selection,
            ),
            event_log,
            collectors=[],
            cwd=cwd,
        )
        self.diagnostics.put(
            session.id,
            build_launch_diagnostics(
                event_log=event_log,
                attach=attach_diagnostics_from_session(session),
                env=self.env,
                cwd=cwd,
            ),
        )
        return session

    async def launch_custom(self, config: DriverLaunchConfig) -> DriverSession:
        """Launch with a caller-built config; no readiness chain or diagnostics."""
        return await self.driver.launch(config)

    def diagnostics_for(self, session_id: str) -> Optional[LaunchDiagnostics]:
        return self.diagnostics.get(session_id)

    def release(self, session_id: str) -> Optional[LaunchDiagnostics]:
        """Drop the diagnostics kept for a session that has ended."""
        return self.diagnostics.pop(session_id)

    # Launch paths

    async def _direct_launch_flow(self, attempt: LaunchAttempt, launch_config: ComposedLaunchConfig) -> DriverSession:
        driver_config = DriverLaunchConfig(**launch_config.model_dump(exclude={"composed_args"}))
        session = await self.driver.launch(driver_config)
        attempt.event_log.add(
            DiagnosticEventType.LAUNCH,
            f"Electron launch completed for preset {attempt.preset.id}.",
            {"session_id": session.id, "launch_mode": session.launch_mode.value},
        )

        await self._add_window_events(session, attempt.event_log)
        await self._run_post_launch_readiness(attempt, session)

        return self._annotate(session, attempt, {"launch_path": LaunchPath.DIRECT_LAUNCH.value})

    async def _attach_preset_flow(self, attempt: LaunchAttempt) -> DriverSession:
        options = attempt.options
        preset_attach = attempt.preset.process_launch.attach
        overrides = options.attach
        caller_args = options.process.args if options.process else []

        cdp_url = (
            (overrides.cdp_url if overrides else None)
            or (preset_attach.cdp_url if preset_attach else None)
            or cdp_url_from_args(caller_args)
        )
        ws_endpoint = (
            (overrides.ws_endpoint if overrides else None)
            or (preset_attach.ws_endpoint if preset_attach else None)
        )

        session = await self._attach(
            DriverAttachConfig(
                session_id=options.session_id,
                cdp_url=cdp_url,
                ws_endpoint=ws_endpoint,
                timeout_ms=overrides.timeout_ms if overrides else None,
                target_selection=overrides.target_selection if overrides else None,
            ),
            attempt.event_log,
            collectors=attempt.collectors,
            cwd=attempt.project_root,
            diagnostics_config=attempt.preset.diagnostics,
        )

        await self._add_window_events(session, attempt.event_log)
        await self._run_post_launch_readiness(attempt, session)

        return self._annotate(session, attempt, {})

    async def _fallback_attach_flow(
        self,
        attempt: LaunchAttempt,
        launch_config: ComposedLaunchConfig,
        launch_error: BaseException,
    ) -> DriverSession:
        options = attempt.options
        fallback = options.attach_fallback
        overrides = options.attach

        def pick(name: str) -> Any:
            for source in (fallback, overrides):
                value = getattr(source, name, None) if source is not None else None
                if value is not None:
                    return value
            return None

        dev_server_lines: List[str] = []
        for collector in attempt.collectors:
            dev_server_lines.extend(collector.stdout_lines())
            dev_server_lines.extend(collector.stderr_lines())

        endpoint = derive_attach_endpoint(
            explicit_cdp_url=pick("cdp_url"),
            explicit_ws_endpoint=pick("ws_endpoint"),
            launch_args=launch_config.composed_args,
            output_lines=_lines_from_error(launch_error),
            banner_lines=dev_server_lines,
        )
        logger.info(f"Fallback attach endpoint: cdp_url={endpoint.cdp_url} ws_endpoint={endpoint.ws_endpoint}")

        session = await self._attach(
            DriverAttachConfig(
                session_id=launch_config.session_id,
                cdp_url=endpoint.cdp_url,
                ws_endpoint=endpoint.ws_endpoint,
                timeout_ms=pick("timeout_ms"),
                target_selection=pick("target_selection"),
            ),
            attempt.event_log,
            collectors=attempt.collectors,
            cwd=attempt.project_root,
            diagnostics_config=attempt.preset.diagnostics,
        )

        await self._add_window_events(session, attempt.event_log)
        await self._run_post_launch_readiness(attempt, session)

        return self._annotate(session, attempt, {
            "launch_path": LaunchPath.FALLBACK_ATTACH.value,
            "launch_fallback_reason": error_message(launch_error),
        })

    async def _attach(
        self,
        config: DriverAttachConfig,
        event_log: DiagnosticEventLog,
        collectors: Sequence[ProcessOutputCollector],
        cwd: Optional[str],
        diagnostics_config: Optional[DiagnosticsConfig] = None,
    ) -> DriverSession:
        if not config.has_endpoint():
            raise invalid_input("Attach requires either cdp_url or ws_endpoint.")

        endpoint_data = {
            key: value
            for key, value in (("cdp_url", config.cdp_url), ("ws_endpoint", config.ws_endpoint))
            if value is not None
        }
        event_log.add(DiagnosticEventType.ATTACH, "Attempting CDP attach.", endpoint_data)

        try:
            session = await self.driver.attach(config)
        except Exception as e:
            logger.error(f"CDP attach failed ({endpoint_data}): {e}")
            diagnostics = build_launch_diagnostics(
                config=diagnostics_config,
                collectors=collectors,
                event_log=event_log,
                env=self.env,
                cwd=cwd,
            )
            message = "Failed to attach to Electron via CDP."
            cause = error_message(e)
            raise launch_failed(message, {
                "cause": cause,
                "attach_config": {**endpoint_data, **({"timeout_ms": config.timeout_ms} if config.timeout_ms else {})},
                "diagnostics": diagnostics.model_dump(mode="json"),
                "playbooks": self._playbooks(f"{message} {cause}", None),
            }) from e

        attach_diagnostics = attach_diagnostics_from_session(session)
        if attach_diagnostics is not None:
            for target in attach_diagnostics.discovered_targets or []:
                event_log.add(
                    DiagnosticEventType.TARGET,
                    "Discovered attach target.",
                    target.model_dump(exclude_none=True, exclude={"title"}),
                )
            if attach_diagnostics.selection_rationale is not None:
                event_log.add(
                    DiagnosticEventType.TARGET,
                    "Attach target selection rationale.",
                    {
                        "rationale": attach_diagnostics.selection_rationale,
                        "selected_target_id": attach_diagnostics.selected_target_id,
                        "selected_target_url": attach_diagnostics.selected_target_url,
                    },
                )

        metadata = dict(session.metadata)
        metadata["launch_path"] = LaunchPath.CDP_ATTACH.value
        if attach_diagnostics is not None:
            metadata["attach_diagnostics"] = attach_diagnostics
        logger.info(f"Attached to session {session.id} via CDP")
        return session.model_copy(update={"metadata": metadata})

    # Dev server

    async def _start_dev_server(self, attempt: LaunchAttempt) -> None:
        overrides = attempt.options.dev_server
        managed = attempt.preset.dev_server.managed
        command = (overrides.command if overrides else None) or (
            attempt.preset.dev_server.command if managed else None
        )
        if command is None:
            return

        attempt.dev_server = await self.spawn_dev_server(
            command,
            attempt.project_root,
            line_limit=attempt.preset.diagnostics.process_ring_buffer_lines,
            event_log=attempt.event_log,
        )

    async def _run_dev_server_readiness(self, attempt: LaunchAttempt) -> None:
        preset = attempt.preset
        spec = find_signal_spec(preset, SignalKind.DEV_SERVER_READY)
        if spec is None:
            return

        overrides = attempt.options.dev_server
        managed = preset.dev_server.managed

        if overrides and overrides.ready_pattern:
            ready_pattern = re.compile(overrides.ready_pattern, re.IGNORECASE)
        else:
            ready_pattern = preset.dev_server.compiled_pattern() if managed else None

        probe_url = (overrides.url if overrides else None) or (preset.dev_server.ready_url if managed else None)
        timeout_ms = (
            (overrides.timeout_ms if overrides else None)
            or (preset.dev_server.timeout_ms if managed else None)
            or spec.timeout_ms
        )

        collector = attempt.dev_server.collector if attempt.dev_server else None
        signal = create_dev_server_ready_signal(
            timeout_ms=timeout_ms,
            ready_pattern=ready_pattern,
            probe_url=probe_url,
            get_stdout_lines=collector.stdout_lines if collector else None,
            get_stderr_lines=collector.stderr_lines if collector else None,
            http_get=self.http_get,
            retry_policy=spec.retry_policy,
        )
        await self._run_chain_and_track([signal], attempt)

    async def _abandon_dev_server(self, attempt: LaunchAttempt) -> None:
        dev_server = attempt.dev_server
        if dev_server is None:
            return
        dev_server.unbind()
        await dev_server.terminate(self.settings.dev_server_terminate_timeout_s)

    # Readiness

    def _post_launch_signals(
        self,
        preset: LaunchPreset,
        session: DriverSession,
        readiness: Optional[ReadinessOverrides],
    ) -> List[ReadinessSignal]:
        signals: List[ReadinessSignal] = []

        async def get_windows() -> List[DriverWindow]:
            return await self.driver.get_windows(session)

        for spec in preset.readiness_signals:
            if spec.kind == SignalKind.PROCESS_STABLE:
                pid = session.process_id()
                if pid is None:
                    continue
                stable_for_ms = self.settings.process_stable_ms
                if readiness and readiness.process_stable_ms is not None:
                    stable_for_ms = readiness.process_stable_ms
                signals.append(create_process_stable_signal(
                    timeout_ms=spec.timeout_ms,
                    stable_for_ms=stable_for_ms,
                    get_pid=lambda: pid,
                    is_alive=self.is_alive,
                    retry_policy=spec.retry_policy,
                ))

            elif spec.kind == SignalKind.WINDOW_CREATED:
                signals.append(create_window_created_signal(
                    timeout_ms=spec.timeout_ms,
                    get_windows=get_windows,
                    retry_policy=spec.retry_policy,
                ))

            elif spec.kind == SignalKind.RENDERER_READY:
                signals.append(create_renderer_ready_signal(
                    timeout_ms=spec.timeout_ms,
                    get_windows=get_windows,
                    check_dom_ready=self._dom_ready_probe(session),
                    retry_policy=spec.retry_policy,
                ))

            elif spec.kind == SignalKind.APP_MARKER_READY:
                marker = readiness.app_marker if readiness else None
                if not marker:
                    continue
                timeout_ms = spec.timeout_ms
                if readiness.app_marker_timeout_ms is not None:
                    timeout_ms = readiness.app_marker_timeout_ms
                signals.append(create_app_marker_ready_signal(
                    timeout_ms=timeout_ms,
                    marker=marker,
                    check_marker=self._app_marker_probe(marker, session),
                    retry_policy=spec.retry_policy,
                ))

        return signals

    def _dom_ready_probe(self, session: DriverSession):
        if not self.driver.supports_evaluate:
            return None

        async def check_dom_ready(window_id: str) -> bool:
            windows = await self.driver.get_windows(session)
            selected = next((w for w in windows if w.id == window_id), None)
            if selected is None:
                return False
            return await self.driver.evaluate(selected, DOM_READY_SCRIPT) is True

        return check_dom_ready

    def _app_marker_probe(self, marker: str, session: DriverSession):
        script = APP_MARKER_SCRIPT_TEMPLATE.format(marker=json.dumps(marker))

        async def check_marker() -> bool:
            if not self.driver.supports_evaluate:
                return False
            windows = await self.driver.get_windows(session)
            renderer = next((w for w in windows if not is_devtools_window(w)), None)
            if renderer is None:
                return False
            return await self.driver.evaluate(renderer, script) is True

        return check_marker

    async def _run_post_launch_readiness(self, attempt: LaunchAttempt, session: DriverSession) -> None:
        signals = self._post_launch_signals(attempt.preset, session, attempt.options.readiness)
        await self._run_chain_and_track(signals, attempt)

    async def _run_chain_and_track(self, signals: Sequence[ReadinessSignal], attempt: LaunchAttempt) -> None:
        """Run a chain, record it on the attempt and raise LAUNCH_FAILED if it failed."""
        if not signals:
            return

        result = await run_readiness_chain(signals)
        attempt.completed_signals.extend(result.completed_signals)
        attempt.readiness_runs.append(result.diagnostics)

        for entry in result.diagnostics.timeline:
            data: Dict[str, Any] = {"timed_out": entry.timed_out, "duration_ms": entry.duration_ms}
            if entry.detail is not None:
                data["detail"] = entry.detail
            attempt.event_log.add(
                DiagnosticEventType.SIGNAL,
                f"{entry.signal_name} attempt {entry.attempt}: {'ready' if entry.ready else 'pending'}",
                data,
                timestamp=entry.finished_at,
            )

        if not result.ok:
            failed = result.failed_signal
            raise launch_failed(f'Readiness signal "{failed.name}" did not complete.', {
                "failed_signal": failed.model_dump(mode="json"),
                "completed_signals": list(result.completed_signals),
                "timeline": [entry.model_dump(mode="json") for entry in result.diagnostics.timeline],
            })

    async def _add_window_events(self, session: DriverSession, event_log: DiagnosticEventLog) -> None:
        windows = await self.driver.get_windows(session)
        for window in windows:
            event_log.add(
                DiagnosticEventType.WINDOW,
                f"Discovered window {window.id}",
                {"title": window.title, "url": window.url, "kind": window.kind, "focused": window.focused},
            )

    # Results

    def _annotate(self, session: DriverSession, attempt: LaunchAttempt, extra: Dict[str, Any]) -> DriverSession:
        metadata = dict(session.metadata)
        metadata.update(extra)
        metadata["preset"] = attempt.preset.id
        metadata["preset_version"] = attempt.preset.version
        metadata["readiness_completed_signals"] = list(attempt.completed_signals)
        metadata["readiness_timeline"] = attempt.timeline()
        if attempt.dev_server is not None:
            metadata["dev_server_pid"] = attempt.dev_server.pid
            metadata["dev_server_process"] = attempt.dev_server
        return session.model_copy(update={"metadata": metadata})

    def _remember(self, session: DriverSession, attempt: LaunchAttempt) -> None:
        attach = session.metadata.get("attach_diagnostics")
        self.diagnostics.put(session.id, build_launch_diagnostics(
            config=attempt.preset.diagnostics,
            collectors=attempt.collectors,
            timeline=attempt.timeline(),
            event_log=attempt.event_log,
            attach=attach if isinstance(attach, AttachDiagnostics) else None,
            env=self.env,
            cwd=attempt.project_root,
        ))

    def _playbooks(self, text: str, preset_id: Optional[str]) -> List[Dict[str, Any]]:
        return [
            playbook.model_dump(mode="json")
            for playbook in match_playbooks(text, preset_id, self.platform)
        ]

    def _launch_failure(self, attempt: LaunchAttempt, message: str, cause: str) -> LaunchGateError:
        preset = attempt.preset
        diagnostics = build_launch_diagnostics(
            config=preset.diagnostics,
            collectors=attempt.collectors,
            timeline=attempt.timeline(),
            event_log=attempt.event_log,
            env=self.env,
            cwd=attempt.project_root,
        )
        logger.error(f"{message} cause: {cause}")
        return launch_failed(message, {
            "preset": preset.id,
            "preset_version": preset.version,
            "diagnostic_hints": list(preset.diagnostic_hints),
            "cause": cause,
            "diagnostics": diagnostics.model_dump(mode="json"),
            "playbooks": self._playbooks(f"{message} {cause}", preset.id),
        })
