"""Configuration loading and access helpers.

Declarative settings (logging setup, default enabled plugins, toolbar command
argument rules, ...) ship as YAML files inside :mod:`mdpp.config` and are
merged with user overrides.

On Windows: ``%LOCALAPPDATA%\\Mdpp\\config\\*.yml``
On Unix: ``~/.mdpp/*.yml``

Callers construct one :class:`ConfigManager` and pass it to whatever needs
it; there is no process-wide instance.
"""

from __future__ import annotations

import importlib.resources as pkg_resources
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)

__all__ = ["ConfigManager", "get_user_config_dir"]


def get_user_config_dir() -> Path:
    """Get the per-user configuration directory."""
    if os.name == 'nt':
        local_appdata = os.environ.get('LOCALAPPDATA')
        if local_appdata:
            return Path(local_appdata) / "Mdpp" / "config"
        return Path.home() / "AppData" / "Local" / "Mdpp" / "config"
    return Path.home() / ".mdpp"


def _read_packaged(filename: str) -> str:
    return pkg_resources.files(__package__).joinpath(filename).read_text(encoding="utf-8")


class ConfigManager:
    """Loads configuration sections and exposes them as dictionaries."""

    _DEFAULT_FILENAMES = {
        "logging": "logging.yml",
        "plugins": "plugins.yml",
    }

    def __init__(self, user_config_dir: Optional[Path] = None) -> None:
        self._user_config_dir = Path(user_config_dir) if user_config_dir else get_user_config_dir()
        self._data: Dict[str, Dict[str, Any]] = {}
        self._load()

    # ------------------------------------------------------------------
    # Public helpers
    # ------------------------------------------------------------------
    @property
    def user_config_dir(self) -> Path:
        return self._user_config_dir

    def get_logging_config(self) -> Dict[str, Any]:
        return self._data.get("logging", {})

    def get_plugin_config(self) -> Dict[str, Any]:
        return self._data.get("plugins", {})

    def get(self, section: str, key: str, default: Any = None) -> Any:
        """Return a single value from a section, or *default*."""
        return self._data.get(section, {}).get(key, default)

    def reload(self) -> None:
        self._data = {}
        self._load()

    # ------------------------------------------------------------------
    # Internal loading logic
    # ------------------------------------------------------------------
    def _load(self) -> None:
        startup_summary = []

        for key, filename in self._DEFAULT_FILENAMES.items():
            merged_cfg: Dict[str, Any] = {}
            status = "missing"

            # 1. packaged default
            try:
                packaged_data = yaml.safe_load(_read_packaged(filename)) or {}
                merged_cfg.update(packaged_data)
                status = "loaded"
            except (FileNotFoundError, OSError):
                logger.error("Missing packaged config for %s (%s)", key, filename)
            except yaml.YAMLError as exc:
                logger.error("Invalid packaged config for %s (%s): %s", key, filename, exc)
                status = "invalid"

            # 2. user overrides
            user_path = self._user_config_dir / filename
            if user_path.exists():
                try:
                    user_data = yaml.safe_load(user_path.read_text(encoding="utf-8")) or {}
                    if not isinstance(user_data, dict):
                        raise ValueError("top-level mapping expected")
                    merged_cfg.update(user_data)
                    if status == "loaded":
                        status = "loaded+overrides"
                except (OSError, ValueError, yaml.YAMLError) as exc:
                    logger.error("Could not parse user config %s: %s", user_path, exc)

            self._data[key] = merged_cfg
            startup_summary.append(f"{key}: {status}")

        logger.info("Config startup: %s", " | ".join(startup_summary))
