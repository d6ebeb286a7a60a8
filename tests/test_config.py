"""Unit tests for settings loading and merging."""

import pytest

from launchgate.config import (
    LaunchSettings,
    SettingsLoader,
    env_overrides,
    load_effective_settings,
    merge_settings,
)
from launchgate.errors import ErrorCode, LaunchGateError


@pytest.fixture
def config_file(tmp_path):
    def write(content):
        path = tmp_path / "config.toml"
        path.write_text(content)
        return path
    return write


class TestSettingsLoader:
    """Reading config.toml."""

    def test_missing_file_gives_defaults(self, tmp_path):
        settings = SettingsLoader(tmp_path / "absent.toml").load()

        assert settings == LaunchSettings()
        assert settings.process_stable_ms == 750
        assert settings.attach_fallback_enabled is False

    def test_launchgate_table(self, config_file):
        path = config_file(
            '[launchgate]\n'
            'default_preset = "electron-forge-vite"\n'
            'process_stable_ms = 1200\n'
            'log_level = "debug"\n'
        )

        settings = SettingsLoader(path).load()

        assert settings.default_preset == "electron-forge-vite"
        assert settings.process_stable_ms == 1200
        assert settings.log_level == "DEBUG"

    def test_top_level_values(self, config_file):
        path = config_file("attach_fallback_enabled = true\n")
        assert SettingsLoader(path).load().attach_fallback_enabled is True

    def test_invalid_toml(self, config_file):
        path = config_file("[launchgate\nprocess_stable_ms = ")

        with pytest.raises(LaunchGateError) as exc_info:
            SettingsLoader(path).load()

        assert exc_info.value.code == ErrorCode.INVALID_INPUT
        assert exc_info.value.details["path"] == str(path)

    def test_section_must_be_table(self, config_file):
        path = config_file('launchgate = "yes"\n')

        with pytest.raises(LaunchGateError):
            SettingsLoader(path).load()

    def test_invalid_values_listed(self, config_file):
        path = config_file('[launchgate]\nprocess_stable_ms = -1\nunknown_key = 1\n')

        with pytest.raises(LaunchGateError) as exc_info:
            SettingsLoader(path).load()

        fields = {err["field"] for err in exc_info.value.details["errors"]}
        assert fields == {"process_stable_ms", "unknown_key"}


class TestMerge:
    """Environment and explicit overrides."""

    def test_env_overrides_only_known_keys(self):
        env = {
            "LAUNCHGATE_PROCESS_STABLE_MS": "300",
            "LAUNCHGATE_ATTACH_FALLBACK": "true",
            "LAUNCHGATE_LOG_LEVEL": "",
            "LAUNCHGATE_SOMETHING_ELSE": "x",
        }

        assert env_overrides(env) == {
            "process_stable_ms": "300",
            "attach_fallback_enabled": "true",
        }

    def test_merge_coerces_and_ignores_none(self):
        base = LaunchSettings(default_preset="electron-vite")

        merged = merge_settings(base, {"process_stable_ms": "300", "default_preset": None})

        assert merged.process_stable_ms == 300
        assert merged.default_preset == "electron-vite"
        assert base.process_stable_ms == 750

    def test_merge_rejects_bad_values(self):
        with pytest.raises(LaunchGateError) as exc_info:
            merge_settings(LaunchSettings(), {"log_level": "LOUD"})
        assert exc_info.value.code == ErrorCode.INVALID_INPUT

    def test_precedence(self, config_file):
        path = config_file('[launchgate]\nprocess_stable_ms = 1000\ndev_server_timeout_ms = 90000\n')
        env = {"LAUNCHGATE_PROCESS_STABLE_MS": "500"}

        settings = load_effective_settings(path, env=env, overrides={"dev_server_timeout_ms": 1000})

        assert settings.process_stable_ms == 500
        assert settings.dev_server_timeout_ms == 1000

    def test_settings_frozen(self):
        settings = LaunchSettings()
        with pytest.raises(Exception):
            settings.process_stable_ms = 1
