"""
Settings loader for launchgate.

Reads config.toml (TOML format). A missing file yields defaults; malformed
TOML or invalid values are reported as INVALID_INPUT errors.
"""

import logging
import tomllib
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import ValidationError

from ..errors import invalid_input
from .settings import DEFAULT_CONFIG_PATH, LaunchSettings

logger = logging.getLogger(__name__)


class SettingsLoader:
    """Loads LaunchSettings from a TOML file."""

    def __init__(self, config_path: Optional[Path] = None):
        """
        Initialize settings loader.

        Args:
            config_path: Path to config.toml (default: ~/.config/launchgate/config.toml)
        """
        self.config_path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH

    def load_raw(self) -> Dict[str, Any]:
        """
        Read the raw settings table.

        Returns:
            Settings mapping, empty when the file does not exist

        Raises:
            LaunchGateError: INVALID_INPUT when the TOML cannot be parsed
        """
        if not self.config_path.exists():
            logger.debug(f"No config file at {self.config_path}, using defaults")
            return {}

        try:
            with open(self.config_path, "rb") as f:
                data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise invalid_input(
                f"Invalid TOML in {self.config_path}: {e}",
                {"path": str(self.config_path)},
            )

        # Settings may live at top level or under a [launchgate] table
        section = data.get("launchgate", data)
        if not isinstance(section, dict):
            raise invalid_input(
                f"[launchgate] in {self.config_path} must be a table",
                {"path": str(self.config_path)},
            )
        return section

    def load(self) -> LaunchSettings:
        """Load and validate settings from the config file."""
        return build_settings(self.load_raw(), source=str(self.config_path))


def build_settings(values: Dict[str, Any], source: str = "<memory>") -> LaunchSettings:
    """
    Validate a settings mapping.

    Raises:
        LaunchGateError: INVALID_INPUT listing every validation error
    """
    try:
        return LaunchSettings(**values)
    except ValidationError as e:
        errors = [
            {"field": ".".join(str(part) for part in err["loc"]), "message": err["msg"]}
            for err in e.errors()
        ]
        raise invalid_input(f"Invalid launch settings in {source}", {"errors": errors})
