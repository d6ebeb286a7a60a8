"""
Settings merger.

Precedence (lowest to highest):
1. LaunchSettings defaults
2. config.toml values
3. LAUNCHGATE_* environment variables
4. Explicit overrides (CLI flags)
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from .loader import SettingsLoader, build_settings
from .settings import LaunchSettings

logger = logging.getLogger(__name__)

ENV_PREFIX = "LAUNCHGATE_"

ENV_FIELDS = {
    "DEFAULT_PRESET": "default_preset",
    "PROCESS_STABLE_MS": "process_stable_ms",
    "DEV_SERVER_TIMEOUT_MS": "dev_server_timeout_ms",
    "DEV_SERVER_TERMINATE_TIMEOUT_S": "dev_server_terminate_timeout_s",
    "ATTACH_FALLBACK": "attach_fallback_enabled",
    "LOG_LEVEL": "log_level",
}


def env_overrides(env: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """Settings values taken from LAUNCHGATE_* variables.

    Values stay strings; pydantic coerces them when settings are built.
    """
    env = os.environ if env is None else env
    overrides: Dict[str, Any] = {}
    for suffix, field_name in ENV_FIELDS.items():
        value = env.get(f"{ENV_PREFIX}{suffix}")
        if value is not None and value != "":
            overrides[field_name] = value
    return overrides


def merge_settings(base: LaunchSettings, overrides: Mapping[str, Any]) -> LaunchSettings:
    """
    Apply overrides on top of base settings.

    None values are ignored so unset CLI options never clobber file values.

    Returns:
        New validated LaunchSettings
    """
    values = base.model_dump()
    for key, value in overrides.items():
        if value is None:
            continue
        if key in values and values[key] != value:
            logger.debug(f"Setting {key} overridden: {values[key]!r} -> {value!r}")
        values[key] = value
    return build_settings(values, source="overrides")


def load_effective_settings(
    config_path: Optional[Path] = None,
    env: Optional[Mapping[str, str]] = None,
    overrides: Optional[Mapping[str, Any]] = None,
) -> LaunchSettings:
    """Load config.toml, then layer environment and explicit overrides."""
    settings = SettingsLoader(config_path).load()
    settings = merge_settings(settings, env_overrides(env))
    if overrides:
        settings = merge_settings(settings, overrides)
    return settings
