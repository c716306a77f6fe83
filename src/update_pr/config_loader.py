"""Configuration loading and merging for update-pr.

Handles TOML loading, config discovery, deep merging, and environment overlay.
"""

from __future__ import annotations

import os
import sys
import warnings
from pathlib import Path
from typing import Any, Dict, Optional

# TOML loading: tomllib (3.11+) with tomli fallback
if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

from pydantic import ValidationError

from .config_schema import UpdatePrConfig
from .errors import ConfigError


CONFIG_FILENAME = "config.toml"

# Directory names
USER_CONFIG_DIR = ".update-pr"
PROJECT_CONFIG_DIR = ".update-pr"

# Environment variable -> (section, key)
ENV_MAPPING: Dict[str, tuple[str, str]] = {
    "UPDATE_PR_REMOTE": ("sync", "remote"),
    "UPDATE_PR_BRANCH": ("sync", "branch"),
    "UPDATE_PR_DELAY": ("sync", "delay"),
    "UPDATE_PR_SSH_KEY": ("git", "ssh_key"),
    "UPDATE_PR_SSH_USER": ("git", "ssh_user"),
}


def _get_user_config_dir() -> Path:
    """Get user-level config directory (~/.update-pr/)."""
    return Path.home() / USER_CONFIG_DIR


def _get_project_config_path(project_path: Optional[Path] = None) -> Path:
    if project_path is None:
        project_path = Path.cwd()
    return project_path.resolve() / PROJECT_CONFIG_DIR / CONFIG_FILENAME


def _load_toml(path: Path) -> Dict[str, Any]:
    """Load a TOML file.

    Raises:
        ConfigError: If file cannot be loaded or parsed
    """
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except FileNotFoundError:
        raise ConfigError(f"Config file not found: {path}")
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML in {path}: {e}")


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Deep merge two dictionaries.

    Override values take precedence. Nested dicts are merged recursively.
    """
    result = base.copy()

    for key, value in override.items():
        if (
            key in result
            and isinstance(result[key], dict)
            and isinstance(value, dict)
        ):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value

    return result


def _apply_env_overlay(config_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Apply environment variable overrides to config dict."""
    result = config_dict.copy()

    for env_var, (section, key) in ENV_MAPPING.items():
        value = os.getenv(env_var)
        if value is None:
            continue
        current = dict(result.get(section) or {})
        # Type conversion happens during Pydantic validation
        current[key] = value
        result[section] = current

    return result


def load_config(
    project_path: Optional[Path] = None,
    *,
    overrides: Optional[Dict[str, Any]] = None,
    skip_env: bool = False,
) -> UpdatePrConfig:
    """Load and merge update-pr configuration.

    Discovery order (later sources override earlier):
    1. Built-in defaults
    2. User config (~/.update-pr/config.toml)
    3. Project config (<project>/.update-pr/config.toml)
    4. Environment variables (unless skip_env=True)
    5. ``overrides`` (CLI flags), same shape as the TOML files

    Raises:
        ConfigError: If the project config or the merged result is invalid
    """
    config_dict: Dict[str, Any] = {}

    user_config_path = _get_user_config_dir() / CONFIG_FILENAME
    if user_config_path.exists():
        try:
            config_dict = _deep_merge(config_dict, _load_toml(user_config_path))
        except ConfigError as e:
            # User config is optional, warn but continue
            warnings.warn(
                f"Skipping invalid user config at {user_config_path}: {e}",
                UserWarning,
            )

    project_config_path = _get_project_config_path(project_path)
    if project_config_path.exists():
        try:
            config_dict = _deep_merge(config_dict, _load_toml(project_config_path))
        except ConfigError as e:
            raise ConfigError(f"Invalid project config: {e}")

    if not skip_env:
        config_dict = _apply_env_overlay(config_dict)

    if overrides:
        config_dict = _deep_merge(config_dict, overrides)

    try:
        return UpdatePrConfig.model_validate(config_dict)
    except ValidationError as e:
        raise ConfigError(f"Config validation failed:\n{e}")
