"""
Configuration loader: reads config.yml into Settings.

Discovery order:
    explicit path  >  DOTCLUSTER_CONFIG env var  >  $XDG_CONFIG_HOME/dotcluster/config.yml

A missing file is not an error; every setting has a default.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

import yaml

from dotcluster.core.config.expansion import ExpansionError, expand_path
from dotcluster.core.models.settings import Settings

logger = logging.getLogger(__name__)

SETTINGS_FILE = "config.yml"
CONFIG_ENV_VAR = "DOTCLUSTER_CONFIG"
STORE_DIRNAME = "dotcluster-store"
STATE_DIRNAME = ".dotcluster"


class ConfigError(Exception):
    """Raised when the settings file is unreadable or invalid."""


def _xdg_dir(env_var: str, fallback: str) -> Path:
    value = os.environ.get(env_var)
    if value:
        return Path(value)
    return Path.home() / fallback


def find_settings_file(path: Path | None = None) -> Path | None:
    """Locate the settings file.

    Args:
        path: Explicit path (from ``--config``). Returned as-is.

    Returns:
        Path to the settings file, or None if there is none.
    """
    if path is not None:
        return path

    from_env = os.environ.get(CONFIG_ENV_VAR)
    if from_env:
        return Path(from_env)

    candidate = _xdg_dir("XDG_CONFIG_HOME", ".config") / "dotcluster" / SETTINGS_FILE
    if candidate.is_file():
        return candidate

    return None


def load_settings(path: Path | None = None) -> Settings:
    """Load and validate settings.

    Args:
        path: Explicit path to config.yml. If None, searches the default
            locations.

    Returns:
        Validated Settings model (defaults when no file exists).

    Raises:
        ConfigError: If an explicit file is missing, or any file is invalid.
    """
    explicit = path is not None or bool(os.environ.get(CONFIG_ENV_VAR))
    path = find_settings_file(path)

    if path is None:
        logger.debug("No settings file found, using defaults")
        return Settings()

    if not path.is_file():
        if explicit:
            raise ConfigError(f"Config file not found: {path}")
        return Settings()

    logger.debug("Loading settings from %s", path)

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        return Settings()

    if not isinstance(data, dict):
        raise ConfigError(f"Expected a YAML mapping in {path}, got {type(data).__name__}")

    try:
        return Settings.model_validate(data)
    except Exception as e:
        raise ConfigError(f"Invalid settings in {path}: {e}") from e


def default_store_dir() -> Path:
    """``$XDG_DATA_HOME/dotcluster-store`` (``~/.local/share/...`` if unset)."""
    return _xdg_dir("XDG_DATA_HOME", ".local/share") / STORE_DIRNAME


def resolve_store_dir(settings: Settings, override: Path | None = None) -> Path:
    """Resolve the store directory from an override, settings, or default.

    Raises:
        ConfigError: If the configured path references an undefined variable.
    """
    if override is not None:
        return override.expanduser().resolve()
    if not settings.store_dir:
        return default_store_dir()
    try:
        return Path(expand_path(settings.store_dir)).resolve()
    except ExpansionError as e:
        raise ConfigError(f"Invalid store_dir: {e}") from e


def state_dir(store_root: Path) -> Path:
    """Directory inside the store holding the state file and audit ledger."""
    return store_root / STATE_DIRNAME
