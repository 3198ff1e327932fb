"""
Configuration loading and data paths for tickr.

Config is a small YAML file; every key is optional.
"""

import logging
import os
from pathlib import Path
from typing import Optional

import yaml

log = logging.getLogger("tickr.config")

APP_NAME = "tickr"
DB_FILENAME = "tickr.db"


def _xdg_dir(env_var: str, fallback: str) -> Optional[Path]:
    value = os.environ.get(env_var)
    if value:
        return Path(value)
    try:
        return Path.home() / fallback
    except RuntimeError:
        return None


def default_config_path() -> Optional[Path]:
    base = _xdg_dir("XDG_CONFIG_HOME", ".config")
    return base / APP_NAME / "config.yaml" if base else None


def default_db_path() -> str:
    """Database location in the user's data directory, or ./tickr.db."""
    base = _xdg_dir("XDG_DATA_HOME", ".local/share")
    if base is None:
        return DB_FILENAME
    return str(base / APP_NAME / DB_FILENAME)


def default_config() -> dict:
    """Return default configuration."""
    return {
        "database": {
            "path": None,
        },
        "logging": {
            "level": "WARNING",
        },
    }


def load_config(path: str = None) -> dict:
    """Load configuration from YAML, filling in defaults for missing keys.

    A missing file is only worth a warning when the path was given explicitly.
    """
    config = default_config()
    explicit = path is not None
    config_path = Path(path) if explicit else default_config_path()

    if config_path is None or not config_path.exists():
        if explicit:
            log.warning(f"Config not found at {path}, using defaults")
        return config

    with open(config_path) as f:
        data = yaml.safe_load(f) or {}

    for section, values in data.items():
        if isinstance(config.get(section), dict):
            if isinstance(values, dict):
                config[section].update(values)
            elif values is not None:
                log.warning(f"Ignoring config section '{section}': expected a mapping, got {values!r}")
        else:
            config[section] = values
    return config


def resolve_db_path(cli_path: str = None, config: dict = None) -> str:
    """Pick the database path: --db flag, then config, then the data dir."""
    if cli_path:
        return str(Path(cli_path).expanduser())
    configured = ((config or {}).get("database") or {}).get("path")
    if configured:
        return str(Path(configured).expanduser())
    return default_db_path()
