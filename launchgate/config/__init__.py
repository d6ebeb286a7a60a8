"""
Configuration subsystem for launchgate.

Modules:
- settings: LaunchSettings model and defaults
- loader: Load settings from ~/.config/launchgate/config.toml
- merger: Layer file values, environment overrides and CLI overrides
"""

from .settings import LaunchSettings, DEFAULT_CONFIG_PATH
from .loader import SettingsLoader
from .merger import merge_settings, env_overrides, load_effective_settings

__all__ = [
    "LaunchSettings",
    "DEFAULT_CONFIG_PATH",
    "SettingsLoader",
    "merge_settings",
    "env_overrides",
    "load_effective_settings",
]
