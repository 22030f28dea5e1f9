"""Plugin manifest loading and discovery.

Reads plugin manifests from mappings or from ``plugin.json`` /
``plugin.yml`` files, converts the legacy flat format, and attaches
runtime instances to manifests. Discovery scans a directory of plugin
folders and skips (with a logged error) any folder whose manifest is
invalid, so one broken plugin never hides the others.
"""

from __future__ import annotations

import inspect
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Union

import yaml

from .base import BasePlugin
from .exceptions import PluginLoadError, PluginValidationError
from .manifest import PluginManifest, convert_legacy_manifest, parse_manifest

logger = logging.getLogger(__name__)

MANIFEST_FILENAMES = ("plugin.json", "plugin.yml", "plugin.yaml")


@dataclass
class DiscoveredPlugin:
    """A manifest found on disk and the folder it came from."""

    path: Path
    manifest: PluginManifest

    @property
    def plugin_id(self) -> str:
        return self.manifest.id

    def __str__(self) -> str:
        return f"{self.manifest.name} v{self.manifest.version} ({self.path})"


class PluginLoader:
    """Turns manifest documents into :class:`PluginManifest` objects."""

    def __init__(self) -> None:
        self._logger = logging.getLogger(f"{__name__}.PluginLoader")

    # -------------------------------------------------------------------------
    # Manifests
    # -------------------------------------------------------------------------

    def load_from_manifest(self, data: Mapping[str, Any]) -> PluginManifest:
        """Validate a manifest mapping; raises :class:`PluginValidationError` listing every problem."""
        return parse_manifest(data)

    def load_from_legacy(self, data: Mapping[str, Any]) -> PluginManifest:
        """Convert and validate a legacy ``framework`` + ``components`` document."""
        manifest = parse_manifest(convert_legacy_manifest(data))
        self._logger.info("Converted legacy plugin manifest: %s", manifest.id)
        return manifest

    def load_data(self, data: Mapping[str, Any]) -> PluginManifest:
        """Load either manifest shape, detecting the legacy one by its ``framework`` key."""
        if isinstance(data, Mapping) and "framework" in data and "id" not in data:
            return self.load_from_legacy(data)
        return self.load_from_manifest(data)

    def load_file(self, path: Union[str, Path]) -> PluginManifest:
        """Read and validate a JSON or YAML manifest file.

        Raises:
            PluginValidationError: the file is missing, unreadable or invalid
        """
        path = Path(path)
        if not path.exists():
            raise PluginValidationError(f"Plugin manifest file not found: {path}")

        try:
            text = path.read_text(encoding="utf-8")
            if path.suffix.lower() in (".yml", ".yaml"):
                data = yaml.safe_load(text)
            else:
                data = json.loads(text)
        except (json.JSONDecodeError, yaml.YAMLError) as e:
            raise PluginValidationError(f"Invalid plugin manifest syntax in {path.name}: {e}", cause=e) from e
        except OSError as e:
            raise PluginValidationError(f"Failed to read plugin manifest {path}: {e}", cause=e) from e

        return self.load_data(data if data is not None else {})

    # -------------------------------------------------------------------------
    # Discovery
    # -------------------------------------------------------------------------

    def discover_plugins(self, directory: Union[str, Path]) -> List[DiscoveredPlugin]:
        """Find plugin folders with a valid manifest under *directory*."""
        directory = Path(directory)
        discovered: List[DiscoveredPlugin] = []

        if not directory.is_dir():
            self._logger.info("Plugins directory does not exist: %s", directory)
            return discovered

        self._logger.info("Discovering plugins in: %s", directory)
        for item in sorted(directory.iterdir()):
            if not item.is_dir() or item.name.startswith('.') or item.name == '__pycache__':
                continue

            manifest_file = next((item / name for name in MANIFEST_FILENAMES if (item / name).exists()), None)
            if manifest_file is None:
                self._logger.debug("No manifest in %s, skipping", item)
                continue

            try:
                manifest = self.load_file(manifest_file)
            except PluginValidationError as e:
                self._logger.error("Plugin validation failed for %s: %s", item.name, e)
                continue

            plugin = DiscoveredPlugin(item, manifest)
            discovered.append(plugin)
            self._logger.info("Discovered plugin: %s", plugin)

        self._logger.info("Discovery complete: found %d plugins", len(discovered))
        return discovered

    # -------------------------------------------------------------------------
    # Runtime instances
    # -------------------------------------------------------------------------

    async def load_instance(self, manifest: PluginManifest, source: Any) -> BasePlugin:
        """Produce the runtime instance for *manifest*.

        *source* is a :class:`BasePlugin` instance, a ``BasePlugin`` subclass
        (instantiated with the manifest) or a factory taking the manifest,
        which may be a coroutine function.

        Raises:
            PluginLoadError: the source fails or yields something else, or
                the instance declares a different id
        """
        try:
            if isinstance(source, BasePlugin):
                instance = source
            elif callable(source):
                instance = source(manifest)
                if inspect.isawaitable(instance):
                    instance = await instance
            else:
                raise PluginLoadError(f"Cannot build a plugin instance from {type(source).__name__}",
                                      plugin_id=manifest.id)
        except PluginLoadError:
            raise
        except Exception as e:
            raise PluginLoadError(f"Plugin instance creation failed: {e}",
                                  plugin_id=manifest.id, cause=e) from e

        if not isinstance(instance, BasePlugin):
            raise PluginLoadError(f"Plugin instance must derive from BasePlugin, got {type(instance).__name__}",
                                  plugin_id=manifest.id)

        instance_id = getattr(instance, "id", None)
        if instance_id is not None and instance_id != manifest.id:
            raise PluginLoadError(f"Plugin instance id '{instance_id}' does not match manifest",
                                  plugin_id=manifest.id)
        if getattr(instance, "manifest", None) is None:
            instance.manifest = manifest
        return instance

    def get_loader_stats(self, plugins: List[DiscoveredPlugin]) -> Dict[str, int]:
        stats: Dict[str, int] = {"total": len(plugins)}
        for plugin in plugins:
            key = plugin.manifest.type.value
            stats[key] = stats.get(key, 0) + 1
        return stats
