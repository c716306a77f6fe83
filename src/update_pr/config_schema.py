"""Configuration schema for update-pr.

Defines all configuration options with types, defaults, and validation.
Uses Pydantic for schema enforcement and clear error messages.
"""

from __future__ import annotations

import warnings
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from .constants import DEFAULT_SSH_USER, REMOTE_BRANCH, REMOTE_NAME
from .duration import parse_duration
from .errors import ConfigError


def _check_name(kind: str, value: str) -> str:
    value = value.strip()
    if not value or any(ch.isspace() for ch in value):
        raise ValueError(f"{kind} must be a non-empty name without whitespace")
    return value


class SyncSettings(BaseModel):
    """Which remote and integration branch to sync with, and how often."""

    remote: str = Field(
        default=REMOTE_NAME,
        description="Remote to fetch from and push to",
    )
    branch: str = Field(
        default=REMOTE_BRANCH,
        description="Integration branch merged into the current branch",
    )
    delay: Optional[str] = Field(
        default=None,
        description="Delay between rounds, e.g. '30s' or '5m' (empty = run once)",
    )

    @field_validator("remote")
    @classmethod
    def validate_remote(cls, v: str) -> str:
        return _check_name("remote", v)

    @field_validator("branch")
    @classmethod
    def validate_branch(cls, v: str) -> str:
        return _check_name("branch", v)

    @field_validator("delay", mode="before")
    @classmethod
    def validate_delay(cls, v: Any) -> Optional[str]:
        # TOML allows a bare number of seconds: delay = 30
        if v is None or not str(v).strip():
            return None
        try:
            parse_duration(str(v))
        except ConfigError as e:
            raise ValueError(str(e)) from e
        return str(v).strip()

    @property
    def delay_seconds(self) -> Optional[float]:
        return parse_duration(self.delay) if self.delay else None


class GitSettings(BaseModel):
    """Transport authentication settings."""

    ssh_key: str = Field(
        default="",
        description="Path to SSH private key (empty = use the SSH agent)",
    )
    ssh_user: str = Field(
        default=DEFAULT_SSH_USER,
        description="SSH user when the remote URL does not name one",
    )

    @field_validator("ssh_key")
    @classmethod
    def validate_ssh_key(cls, v: str) -> str:
        """Warn if SSH key path doesn't exist."""
        if v:
            path = Path(v).expanduser()
            if not path.exists():
                warnings.warn(
                    f"SSH key path does not exist: {v}",
                    UserWarning,
                )
            elif not path.is_file():
                warnings.warn(
                    f"SSH key path is not a file: {v}",
                    UserWarning,
                )
        return v


class UpdatePrConfig(BaseModel):
    """Root configuration object."""

    sync: SyncSettings = Field(default_factory=SyncSettings)
    git: GitSettings = Field(default_factory=GitSettings)
