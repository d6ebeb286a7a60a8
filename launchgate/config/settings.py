"""Launch settings model."""

from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_CONFIG_PATH = Path.home() / ".config" / "launchgate" / "config.toml"

DEFAULT_PROCESS_STABLE_MS = 750

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class LaunchSettings(BaseModel):
    """User-level defaults applied to every launch."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    default_preset: Optional[str] = Field(None, description="Preset used when none is given")
    process_stable_ms: int = Field(DEFAULT_PROCESS_STABLE_MS, ge=0, description="Continuous liveness for processStable")
    dev_server_timeout_ms: int = Field(60_000, gt=0, le=300_000, description="Fallback dev server readiness timeout")
    dev_server_terminate_timeout_s: float = Field(5.0, gt=0, description="Grace period before SIGKILL")
    attach_fallback_enabled: bool = Field(False, description="Attach over CDP when a launch fails")
    log_level: str = Field("INFO", description="Root log level")

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of {', '.join(LOG_LEVELS)}")
        return level
