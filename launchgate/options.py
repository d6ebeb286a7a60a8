"""
Caller-supplied overrides for preset launches.

Every field is optional; anything left unset falls back to the preset or to
LaunchSettings defaults.
"""

from __future__ import annotations

import re
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from .models import TargetSelection


class DevServerOverrides(BaseModel):
    """Dev server overrides."""

    command: Optional[str] = Field(None, min_length=1)
    url: Optional[str] = Field(None, min_length=1, description="URL probed for readiness")
    ready_pattern: Optional[str] = Field(None, min_length=1, description="Case-insensitive regex")
    timeout_ms: Optional[int] = Field(None, gt=0, le=300_000)

    @field_validator('ready_pattern')
    @classmethod
    def validate_ready_pattern(cls, v: Optional[str]) -> Optional[str]:
        """Validate regex pattern compiles."""
        if v is not None:
            try:
                re.compile(v)
            except re.error as e:
                raise ValueError(f"Invalid devServer.readyPattern regex: {e}")
        return v


class ProcessOverrides(BaseModel):
    """Application process overrides. Args and env are merged with preset defaults."""

    entry_path: Optional[str] = Field(None, min_length=1)
    executable_path: Optional[str] = Field(None, min_length=1)
    args: List[str] = Field(default_factory=list)
    env: Dict[str, str] = Field(default_factory=dict)


class TimeoutOverrides(BaseModel):
    """Driver-level launch timeouts."""

    launch_ms: Optional[int] = Field(None, gt=0, le=300_000)
    first_window_ms: Optional[int] = Field(None, gt=0, le=300_000)


class AttachOverrides(BaseModel):
    """Explicit attach endpoint and target constraints."""

    cdp_url: Optional[str] = None
    ws_endpoint: Optional[str] = None
    timeout_ms: Optional[int] = Field(None, gt=0)
    target_selection: Optional[TargetSelection] = None


class ReadinessOverrides(BaseModel):
    """Post-launch readiness tuning."""

    app_marker: Optional[str] = Field(None, description="CSS selector that must become visible")
    app_marker_timeout_ms: Optional[int] = Field(None, gt=0)
    process_stable_ms: Optional[int] = Field(None, ge=0)


class AttachFallbackOptions(BaseModel):
    """Attach-on-failure fallback for launch-mode presets."""

    enabled: bool = False
    cdp_url: Optional[str] = None
    ws_endpoint: Optional[str] = None
    timeout_ms: Optional[int] = Field(None, gt=0)
    target_selection: Optional[TargetSelection] = None


class LaunchOptions(BaseModel):
    """Everything a caller may override for one preset launch."""

    session_id: Optional[str] = None
    dev_server: Optional[DevServerOverrides] = None
    process: Optional[ProcessOverrides] = None
    timeouts: Optional[TimeoutOverrides] = None
    attach: Optional[AttachOverrides] = None
    readiness: Optional[ReadinessOverrides] = None
    attach_fallback: Optional[AttachFallbackOptions] = None

    def fallback_enabled(self, default: bool = False) -> bool:
        if self.attach_fallback is None:
            return default
        return self.attach_fallback.enabled


class AttachOptions(BaseModel):
    """Standalone CDP attach request."""

    session_id: Optional[str] = None
    cdp_url: Optional[str] = None
    ws_endpoint: Optional[str] = None
    timeout_ms: Optional[int] = Field(None, gt=0)
    target_selection: Optional[TargetSelection] = None
