"""Tests for the launch orchestrator using a fake driver and dev server.

Run with:
    pytest tests/test_orchestrator.py -v
"""

import asyncio

import pytest

from conftest import FakeDriver, make_spawner
from launchgate.config import LaunchSettings
from launchgate.errors import DriverLaunchError, ErrorCode, LaunchGateError
from launchgate.models import (
    DiagnosticEventType,
    DriverLaunchConfig,
    DriverSession,
    SessionLaunchMode,
)
from launchgate.options import (
    AttachFallbackOptions,
    AttachOptions,
    LaunchOptions,
    ProcessOverrides,
    ReadinessOverrides,
)
from launchgate.orchestrator import LaunchOrchestrator


def make_orchestrator(driver, spawner=None, platform="linux", **settings):
    return LaunchOrchestrator(
        driver,
        settings=LaunchSettings(process_stable_ms=0, **settings),
        spawn_dev_server=spawner or make_spawner(stdout="VITE v5\nready in 312ms\n"),
        is_alive=lambda pid: True,
        platform=platform,
        env={"PATH": "/usr/bin", "ELECTRON_SECRET": "x"},
    )


class TestDirectLaunch:
    """Successful launches."""

    @pytest.mark.asyncio
    async def test_launch_runs_full_chain(self, fake_driver, test_preset, tmp_path):
        spawner = make_spawner(stdout="Local: http://localhost:5173\nready in 312ms\n")
        orchestrator = make_orchestrator(fake_driver, spawner)

        session = await orchestrator.launch_with_preset(test_preset, str(tmp_path))

        metadata = session.metadata
        assert metadata["launch_path"] == "direct_launch"
        assert metadata["readiness_completed_signals"] == [
            "devServerReady",
            "processStable",
            "windowCreated",
            "rendererReady",
        ]
        assert metadata["preset"] == "electron-vite"
        assert metadata["preset_version"] == 2
        assert metadata["dev_server_pid"] == 31337
        assert metadata["dev_server_process"] is spawner.spawned[0]
        assert metadata["process_id"] == 4242
        assert [e.signal_name for e in metadata["readiness_timeline"]][0] == "devServerReady"

        assert len(fake_driver.launch_calls) == 1
        assert fake_driver.attach_calls == []
        assert spawner.spawned[0].command == "npx electron-vite dev"
        spawner.spawned[0].terminate.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_launch_by_preset_id(self, fake_driver, tmp_path):
        orchestrator = make_orchestrator(fake_driver)
        session = await orchestrator.launch_with_preset(
            "pre-launched-attach",
            str(tmp_path),
            LaunchOptions(process=ProcessOverrides(args=["--remote-debugging-port=9222"])),
        )

        assert session.metadata["launch_path"] == "cdp_attach"
        assert fake_driver.attach_calls[0].cdp_url == "http://127.0.0.1:9222"
        assert fake_driver.launch_calls == []

    @pytest.mark.asyncio
    async def test_unknown_preset_id(self, fake_driver, tmp_path):
        orchestrator = make_orchestrator(fake_driver)

        with pytest.raises(LaunchGateError) as exc_info:
            await orchestrator.launch_with_preset("nope", str(tmp_path))

        assert exc_info.value.code == ErrorCode.INVALID_INPUT

    @pytest.mark.asyncio
    async def test_process_stable_skipped_without_pid(self, test_preset, tmp_path):
        driver = FakeDriver(launch_result=DriverSession(id="s", launch_mode=SessionLaunchMode.PRESET))
        orchestrator = make_orchestrator(driver)

        session = await orchestrator.launch_with_preset(test_preset, str(tmp_path))

        assert "processStable" not in session.metadata["readiness_completed_signals"]

    @pytest.mark.asyncio
    async def test_app_marker_checked_when_requested(self, fake_driver, test_preset, tmp_path):
        orchestrator = make_orchestrator(fake_driver)
        options = LaunchOptions(readiness=ReadinessOverrides(app_marker="#app-root"))

        session = await orchestrator.launch_with_preset(test_preset, str(tmp_path), options)

        assert session.metadata["readiness_completed_signals"][-1] == "appMarkerReady"
        assert any('"#app-root"' in script for _, script in fake_driver.evaluate_calls)

    @pytest.mark.asyncio
    async def test_diagnostics_kept_per_session(self, fake_driver, test_preset, tmp_path):
        orchestrator = make_orchestrator(fake_driver)

        session = await orchestrator.launch_with_preset(test_preset, str(tmp_path))
        diagnostics = orchestrator.diagnostics_for(session.id)

        messages = [e.message for e in diagnostics.event_log]
        assert "devServerReady attempt 1: ready" in messages
        assert "Electron launch completed for preset electron-vite." in messages
        assert "Discovered window w1" in messages
        assert diagnostics.process_output[0].stdout[-1] == "ready in 312ms"
        assert diagnostics.environment.env["ELECTRON_SECRET"] == "[REDACTED]"

        assert orchestrator.release(session.id) is diagnostics
        assert orchestrator.diagnostics_for(session.id) is None

    @pytest.mark.asyncio
    async def test_caller_dev_server_override(self, fake_driver, test_preset, tmp_path):
        spawner = make_spawner(stdout="custom server up\n")
        orchestrator = make_orchestrator(fake_driver, spawner)
        options = LaunchOptions(dev_server={"command": "pnpm dev", "ready_pattern": "SERVER UP"})

        session = await orchestrator.launch_with_preset(test_preset, str(tmp_path), options)

        assert spawner.spawned[0].command == "pnpm dev"
        assert session.metadata["readiness_completed_signals"][0] == "devServerReady"


class TestLaunchFailure:
    """Terminal failures without fallback."""

    @pytest.mark.asyncio
    async def test_dev_server_never_ready(self, fake_driver, test_preset, tmp_path):
        spawner = make_spawner(stdout="compiling...\n")
        orchestrator = make_orchestrator(fake_driver, spawner)

        with pytest.raises(LaunchGateError) as exc_info:
            await orchestrator.launch_with_preset(test_preset, str(tmp_path))

        error = exc_info.value
        assert error.code == ErrorCode.LAUNCH_FAILED
        assert error.retriable is True
        assert error.message == 'Preset launch failed for "electron-vite".'
        assert error.details["cause"] == 'Readiness signal "devServerReady" did not complete.'
        assert error.details["preset"] == "electron-vite"
        assert error.details["preset_version"] == 2
        assert error.details["diagnostic_hints"] == ["Check the dev server output."]
        assert error.details["diagnostics"]["process_output"][0]["stdout"] == ["compiling..."]
        assert error.details["diagnostics"]["signal_timeline"][-1]["timed_out"] is True

        assert fake_driver.launch_calls == []
        server = spawner.spawned[0]
        server.unbind.assert_called_once()
        server.terminate.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_window_timeout_matches_playbooks(self, test_preset, tmp_path):
        driver = FakeDriver(windows=[])
        spawner = make_spawner(stdout="ready in 5ms\n")
        orchestrator = make_orchestrator(driver, spawner, platform="darwin")

        with pytest.raises(LaunchGateError) as exc_info:
            await orchestrator.launch_with_preset(test_preset, str(tmp_path))

        details = exc_info.value.details
        assert details["cause"] == 'Readiness signal "windowCreated" did not complete.'
        playbook_ids = [p["id"] for p in details["playbooks"]]
        assert "electron-vite-macos-first-window-timeout" in playbook_ids
        spawner.spawned[0].terminate.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_driver_launch_error(self, test_preset, tmp_path):
        driver = FakeDriver(launch_result=DriverLaunchError("Process failed to launch"))
        spawner = make_spawner(stdout="ready in 5ms\n")
        orchestrator = make_orchestrator(driver, spawner)

        with pytest.raises(LaunchGateError) as exc_info:
            await orchestrator.launch_with_preset(test_preset, str(tmp_path))

        assert exc_info.value.details["cause"] == "Process failed to launch"
        assert driver.attach_calls == []
        spawner.spawned[0].terminate.assert_awaited_once()


class TestAttachFallback:
    """Attach-on-failure for launch-mode presets."""

    @pytest.mark.asyncio
    async def test_fallback_uses_banner_from_launch_error(self, test_preset, tmp_path):
        driver = FakeDriver(launch_result=DriverLaunchError(
            "Electron exited early",
            stderr=["DevTools listening on ws://127.0.0.1:9222/devtools/browser/abc"],
        ))
        orchestrator = make_orchestrator(driver)
        options = LaunchOptions(attach_fallback=AttachFallbackOptions(enabled=True))

        session = await orchestrator.launch_with_preset(test_preset, str(tmp_path), options)

        assert driver.attach_calls[0].ws_endpoint == "ws://127.0.0.1:9222/devtools/browser/abc"
        assert session.metadata["launch_path"] == "fallback_attach"
        assert session.metadata["launch_fallback_reason"] == "Electron exited early"

    @pytest.mark.asyncio
    async def test_fallback_uses_banner_from_captured_output(self, test_preset, tmp_path):
        driver = FakeDriver(launch_result=RuntimeError("Process failed to launch"))
        spawner = make_spawner(stdout="ready in 20ms\nDevTools listening on ws://127.0.0.1:9222/abc\n")
        orchestrator = make_orchestrator(driver, spawner)
        options = LaunchOptions(attach_fallback=AttachFallbackOptions(enabled=True))

        session = await orchestrator.launch_with_preset(test_preset, str(tmp_path), options)

        assert driver.attach_calls[0].ws_endpoint == "ws://127.0.0.1:9222/abc"
        assert session.metadata["launch_fallback_reason"] == "Process failed to launch"
        assert "windowCreated" in session.metadata["readiness_completed_signals"]
        spawner.spawned[0].terminate.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_fallback_prefers_port_argument(self, test_preset, tmp_path):
        driver = FakeDriver(launch_result=RuntimeError("boom"))
        orchestrator = make_orchestrator(driver)
        options = LaunchOptions(
            process=ProcessOverrides(args=["--remote-debugging-port=9229"]),
            attach_fallback=AttachFallbackOptions(enabled=True),
        )

        await orchestrator.launch_with_preset(test_preset, str(tmp_path), options)

        assert driver.attach_calls[0].cdp_url == "http://127.0.0.1:9229"

    @pytest.mark.asyncio
    async def test_fallback_enabled_from_settings(self, test_preset, tmp_path):
        driver = FakeDriver(launch_result=RuntimeError("boom"))
        orchestrator = make_orchestrator(driver, attach_fallback_enabled=True)
        options = LaunchOptions(process=ProcessOverrides(args=["--remote-debugging-port=9229"]))

        session = await orchestrator.launch_with_preset(test_preset, str(tmp_path), options)

        assert session.metadata["launch_path"] == "fallback_attach"

    @pytest.mark.asyncio
    async def test_fallback_without_endpoint_fails(self, test_preset, tmp_path):
        driver = FakeDriver(launch_result=RuntimeError("boom"))
        spawner = make_spawner(stdout="ready in 1ms\n")
        orchestrator = make_orchestrator(driver, spawner)
        options = LaunchOptions(attach_fallback=AttachFallbackOptions(enabled=True))

        with pytest.raises(LaunchGateError) as exc_info:
            await orchestrator.launch_with_preset(test_preset, str(tmp_path), options)

        error = exc_info.value
        assert error.code == ErrorCode.LAUNCH_FAILED
        assert error.message == "Preset launch failed and CDP attach fallback also failed."
        assert error.details["cause"] == (
            "launchError=boom; attachError=Attach requires either cdp_url or ws_endpoint."
        )
        assert driver.attach_calls == []
        spawner.spawned[0].terminate.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_fallback_ignores_dev_server_local_url(self, test_preset, tmp_path):
        driver = FakeDriver(launch_result=RuntimeError("boom"))
        spawner = make_spawner(stdout="Local: http://localhost:5173/\nready in 312ms\n")
        orchestrator = make_orchestrator(driver, spawner)
        options = LaunchOptions(attach_fallback=AttachFallbackOptions(enabled=True))

        with pytest.raises(LaunchGateError) as exc_info:
            await orchestrator.launch_with_preset(test_preset, str(tmp_path), options)

        assert driver.attach_calls == []
        assert exc_info.value.details["cause"].endswith(
            "attachError=Attach requires either cdp_url or ws_endpoint."
        )
        spawner.spawned[0].terminate.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_fallback_uses_local_url_from_launch_error(self, test_preset, tmp_path):
        driver = FakeDriver(launch_result=DriverLaunchError(
            "Electron exited early",
            stdout=["Debugger available at http://127.0.0.1:9333"],
        ))
        spawner = make_spawner(stdout="Local: http://localhost:5173/\nready in 312ms\n")
        orchestrator = make_orchestrator(driver, spawner)
        options = LaunchOptions(attach_fallback=AttachFallbackOptions(enabled=True))

        await orchestrator.launch_with_preset(test_preset, str(tmp_path), options)

        assert driver.attach_calls[0].cdp_url == "http://127.0.0.1:9333"

    @pytest.mark.asyncio
    async def test_attach_mode_never_falls_back(self, tmp_path):
        driver = FakeDriver(attach_result=ConnectionError("refused"))
        orchestrator = make_orchestrator(driver)
        options = LaunchOptions(
            attach={"cdp_url": "http://127.0.0.1:9222"},
            attach_fallback=AttachFallbackOptions(enabled=True),
        )

        with pytest.raises(LaunchGateError) as exc_info:
            await orchestrator.launch_with_preset("pre-launched-attach", str(tmp_path), options)

        assert exc_info.value.message == 'Preset launch failed for "pre-launched-attach".'
        assert exc_info.value.details["cause"] == "Failed to attach to Electron via CDP."
        assert len(driver.attach_calls) == 1


class TestCancellation:
    """Cancelling a launch still releases the dev server."""

    @pytest.mark.asyncio
    async def test_cancel_during_dev_server_readiness(self, fake_driver, test_preset, tmp_path):
        spawner = make_spawner(stdout="compiling...\n")
        orchestrator = make_orchestrator(fake_driver, spawner)
        slow_preset = test_preset.model_copy(
            update={"dev_server": test_preset.dev_server.model_copy(update={"timeout_ms": 10_000})}
        )

        task = asyncio.create_task(orchestrator.launch_with_preset(slow_preset, str(tmp_path)))
        await asyncio.sleep(0.05)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        server = spawner.spawned[0]
        server.unbind.assert_called_once()
        server.terminate.assert_awaited_once()
        assert fake_driver.launch_calls == []

    @pytest.mark.asyncio
    async def test_cancel_during_post_launch_readiness(self, test_preset, tmp_path):
        driver = FakeDriver(windows=[])
        spawner = make_spawner(stdout="ready in 5ms\n")
        orchestrator = make_orchestrator(driver, spawner)
        slow_chain = tuple(
            spec.model_copy(update={"timeout_ms": 10_000}) for spec in test_preset.readiness_signals
        )
        slow_preset = test_preset.model_copy(update={"readiness_signals": slow_chain})

        task = asyncio.create_task(orchestrator.launch_with_preset(slow_preset, str(tmp_path)))
        await asyncio.sleep(0.1)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert len(driver.launch_calls) == 1
        spawner.spawned[0].terminate.assert_awaited_once()


class TestAttachToCdp:
    """Standalone CDP attach."""

    @pytest.mark.asyncio
    async def test_requires_endpoint(self, fake_driver):
        orchestrator = make_orchestrator(fake_driver)

        with pytest.raises(LaunchGateError) as exc_info:
            await orchestrator.attach_to_cdp(AttachOptions())

        assert exc_info.value.code == ErrorCode.INVALID_INPUT
        assert exc_info.value.retriable is False

    @pytest.mark.asyncio
    async def test_attach_failure(self):
        driver = FakeDriver(attach_result=ConnectionError("ECONNREFUSED 127.0.0.1:9222"))
        orchestrator = make_orchestrator(driver)

        with pytest.raises(LaunchGateError) as exc_info:
            await orchestrator.attach_to_cdp(AttachOptions(cdp_url="http://127.0.0.1:9222", timeout_ms=500))

        error = exc_info.value
        assert error.code == ErrorCode.LAUNCH_FAILED
        assert error.message == "Failed to attach to Electron via CDP."
        assert error.details["attach_config"] == {"cdp_url": "http://127.0.0.1:9222", "timeout_ms": 500}
        assert "cdp-attach-remote-debugging-not-enabled" in [p["id"] for p in error.details["playbooks"]]

    @pytest.mark.asyncio
    async def test_attach_records_targets(self):
        attached = DriverSession(
            id="attached-1",
            launch_mode=SessionLaunchMode.ATTACHED,
            metadata={
                "attach_targets": [
                    {"target_id": "t1", "type": "page", "url": "http://localhost:5173/"},
                    {"target_id": "t2", "type": "page", "url": "devtools://devtools"},
                    "garbage",
                ],
                "attach_selection_rationale": "first non-devtools page",
                "primary_renderer_target_id": "t1",
            },
        )
        driver = FakeDriver(attach_result=attached)
        orchestrator = make_orchestrator(driver)

        session = await orchestrator.attach_to_cdp(AttachOptions(ws_endpoint="ws://127.0.0.1:9222/x"))

        attach = session.metadata["attach_diagnostics"]
        assert session.metadata["launch_path"] == "cdp_attach"
        assert attach.selected_target_id == "t1"
        assert [t.target_id for t in attach.discovered_targets] == ["t1", "t2"]

        events = orchestrator.diagnostics_for("attached-1").event_log
        assert [e.type for e in events] == [
            DiagnosticEventType.ATTACH,
            DiagnosticEventType.TARGET,
            DiagnosticEventType.TARGET,
            DiagnosticEventType.TARGET,
        ]
        assert orchestrator.diagnostics_for("attached-1").attach.selection_rationale == "first non-devtools page"


class TestLaunchCustom:
    """Passthrough launch."""

    @pytest.mark.asyncio
    async def test_passthrough(self, fake_driver, tmp_path):
        orchestrator = make_orchestrator(fake_driver)
        config = DriverLaunchConfig(project_root=str(tmp_path), args=["main.js"])

        session = await orchestrator.launch_custom(config)

        assert session is fake_driver.launch_result
        assert fake_driver.launch_calls == [config]
