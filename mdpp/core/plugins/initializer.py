"""Plugin system composition root.

:class:`PluginInitializer` pushes a plugin's contribution declarations into
every contribution registry when it is enabled and pulls them out again
when it is disabled.

Enabling is best-effort, not transactional: if one registry rejects a
declaration, the registries that already accepted theirs keep them. The
points that were populated are recorded in
:attr:`PluginInitState.registered_points`, and :meth:`PluginInitializer.disable_plugin`
removes them.

:class:`PluginSystem` constructs one instance of every registry and wires
them together. Several systems can live side by side in one process.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Union

from lxml import etree as ET

from mdpp.config import ConfigManager

from .artifacts import ArtifactFactory, ArtifactTable, ImportArtifactLoader
from .contributions import (
    DEFAULT_COMMAND_ARG_RULES,
    CommandArgRule,
    ContributionRegistry,
    EditorContributionHandler,
    ExportBundle,
    ExportContributionHandler,
    PreviewContext,
    PreviewContributionHandler,
    ToolbarContributionHandler,
)
from .exceptions import PluginDependencyError, PluginError
from .loader import PluginLoader
from .manifest import PluginManifest
from .pipeline import PipelineBuilder
from .registry import PluginRegistry

logger = logging.getLogger(__name__)


@dataclass
class PluginInitState:
    plugin_id: str
    loaded: bool = True
    enabled: bool = False
    error: Optional[str] = None
    registered_points: List[str] = field(default_factory=list)


class PluginInitializer:
    """Keeps contribution registries in step with which plugins are enabled."""

    def __init__(self, registry: PluginRegistry, contributions: ContributionRegistry,
                 toolbar: ToolbarContributionHandler, export: ExportContributionHandler,
                 preview: PreviewContributionHandler, editor: EditorContributionHandler) -> None:
        self._registry = registry
        self._contributions = contributions
        self._toolbar = toolbar
        self._export = export
        self._preview = preview
        self._editor = editor
        self._manifests: Dict[str, PluginManifest] = {}
        self._states: Dict[str, PluginInitState] = {}
        self._listeners: List[Callable[[], None]] = []
        self._logger = logging.getLogger(f"{__name__}.PluginInitializer")

    # -------------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------------

    def load_plugin(self, manifest: PluginManifest, path: Optional[str] = None,
                    instance: Any = None) -> PluginInitState:
        self._manifests[manifest.id] = manifest
        self._registry.register(manifest, path=path, instance=instance)
        state = PluginInitState(manifest.id)
        self._states[manifest.id] = state
        return state

    def load_plugins(self, manifests: Iterable[PluginManifest]) -> List[PluginInitState]:
        return [self.load_plugin(manifest) for manifest in manifests]

    # -------------------------------------------------------------------------
    # Enable / disable
    # -------------------------------------------------------------------------

    def enable_plugin(self, plugin_id: str) -> bool:
        """Register the plugin's contributions everywhere; ``True`` on success.

        Already-enabled plugins are left alone. A failure records the error
        on the init state and leaves earlier registries populated.
        """
        manifest = self._manifests.get(plugin_id)
        if manifest is None:
            self._logger.error("Plugin not found: %s", plugin_id)
            return False

        state = self._states[plugin_id]
        if state.enabled:
            return True

        if state.error is not None:
            # leftovers of a previous failed attempt
            self._remove_contributions(plugin_id)
        state.registered_points = []
        try:
            state.registered_points.extend(self._contributions.process_plugin_contributions(manifest))

            toolbar = manifest.get_contributions("toolbar")
            if toolbar:
                self._toolbar.register(plugin_id, toolbar)
                state.registered_points.append("toolbar-items")

            export_assets = manifest.get_contributions("export_assets")
            if export_assets:
                self._export.register(plugin_id, export_assets)
                state.registered_points.append("export-assets")

            preview_renderer = manifest.get_contributions("preview_renderer")
            if preview_renderer:
                self._preview.register(plugin_id, preview_renderer)
                state.registered_points.append("preview-renderer")

            for extension in manifest.get_contributions("editor_extensions") or ():
                self._editor.register(plugin_id, extension)
            if manifest.get_contributions("editor_extensions"):
                state.registered_points.append("editor-extensions")
        except (PluginError, KeyError, TypeError, ValueError, AttributeError) as exc:
            state.error = str(exc)
            self._logger.error("Failed to enable plugin %s after %s: %s",
                               plugin_id, state.registered_points or "nothing", exc)
            return False

        state.enabled = True
        state.error = None
        self._logger.info("Enabled plugin: %s", plugin_id)
        self._notify()
        return True

    def disable_plugin(self, plugin_id: str, container: Optional[ET._Element] = None) -> bool:
        """Remove the plugin's contributions from every registry.

        When a preview *container* is given, the plugin's rendered output in
        it is reset first. Safe to call after a partially failed enable.
        """
        state = self._states.get(plugin_id)
        if state is None:
            self._logger.error("Plugin not found: %s", plugin_id)
            return False

        if container is not None:
            self._preview.reset_plugin(plugin_id, container)

        self._remove_contributions(plugin_id)

        was_enabled = state.enabled
        state.enabled = False
        state.registered_points = []
        if was_enabled:
            self._logger.info("Disabled plugin: %s", plugin_id)
            self._notify()
        return True

    def _remove_contributions(self, plugin_id: str) -> None:
        self._contributions.remove_plugin_contributions(plugin_id)
        self._toolbar.unregister(plugin_id)
        self._export.unregister(plugin_id)
        self._preview.unregister(plugin_id)
        self._editor.unregister(plugin_id)

    def initialize(self, manifests: Iterable[PluginManifest], enabled_ids: Iterable[str]) -> Dict[str, bool]:
        """Load every manifest, then enable the listed plugins."""
        self.load_plugins(manifests)
        return {plugin_id: self.enable_plugin(plugin_id) for plugin_id in enabled_ids}

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_init_state(self, plugin_id: str) -> Optional[PluginInitState]:
        return self._states.get(plugin_id)

    def get_all_init_states(self) -> List[PluginInitState]:
        return list(self._states.values())

    def get_enabled_plugins(self) -> List[str]:
        return [pid for pid, state in self._states.items() if state.enabled]

    def is_enabled(self, plugin_id: str) -> bool:
        state = self._states.get(plugin_id)
        return bool(state and state.enabled)

    def get_manifest(self, plugin_id: str) -> Optional[PluginManifest]:
        return self._manifests.get(plugin_id)

    def subscribe(self, listener: Callable[[], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener()
            except Exception:
                self._logger.exception("Initializer listener failed")


class PluginSystem:
    """One fully wired plugin system.

    Args:
        config: source of ``plugins.yml`` settings (theme, command argument
            rules, default enabled plugins); optional
        artifacts: table of plugin implementation modules; a table falling
            back to ``module:attr`` imports is created when omitted
        icon_table: toolbar icon references by name; may also be supplied
            later with ``toolbar.set_icon_table``
    """

    def __init__(self, config: Optional[ConfigManager] = None,
                 artifacts: Optional[ArtifactTable] = None,
                 icon_table: Optional[Mapping[str, Any]] = None) -> None:
        self.config = config
        plugin_config = config.get_plugin_config() if config is not None else {}

        rules = [CommandArgRule.from_config(rule) for rule in plugin_config.get("command_args") or []]

        self.artifacts = artifacts if artifacts is not None else ArtifactTable(ImportArtifactLoader())
        self.registry = PluginRegistry()
        self.contributions = ContributionRegistry()
        self.toolbar = ToolbarContributionHandler(icon_table, rules or DEFAULT_COMMAND_ARG_RULES)
        self.export = ExportContributionHandler(self.artifacts)
        self.preview = PreviewContributionHandler(self.artifacts)
        self.editor = EditorContributionHandler(self.artifacts)
        self.pipeline = PipelineBuilder(self.registry)
        self.loader = PluginLoader()
        self.initializer = PluginInitializer(
            self.registry, self.contributions,
            toolbar=self.toolbar, export=self.export, preview=self.preview, editor=self.editor,
        )
        self.theme: str = plugin_config.get("theme", "light")
        self.default_enabled: List[str] = list(plugin_config.get("enabled") or [])

    # -------------------------------------------------------------------------
    # Plugin registration
    # -------------------------------------------------------------------------

    async def add_plugin(self, manifest: PluginManifest, instance: Any = None,
                         artifacts: Optional[Mapping[str, ArtifactFactory]] = None,
                         path: Optional[str] = None) -> None:
        """Register a plugin with its runtime instance (or factory) and artifacts."""
        if instance is not None:
            instance = await self.loader.load_instance(manifest, instance)
        if artifacts:
            self.artifacts.register_plugin(manifest.id, artifacts)
        self.initializer.load_plugin(manifest, path=path, instance=instance)

    def discover(self, directory: Union[str, Path]) -> List[str]:
        """Register every valid manifest found under *directory*; returns their ids."""
        found = []
        for plugin in self.loader.discover_plugins(directory):
            self.initializer.load_plugin(plugin.manifest, path=str(plugin.path))
            found.append(plugin.plugin_id)
        return found

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(self, enabled_ids: Optional[Iterable[str]] = None) -> Dict[str, bool]:
        """Activate the given plugins (default: ``enabled`` from config) and enable them."""
        requested = list(enabled_ids) if enabled_ids is not None else self.default_enabled
        known = []
        for plugin_id in requested:
            if self.registry.has(plugin_id):
                known.append(plugin_id)
            else:
                logger.warning("Configured plugin %s is not registered", plugin_id)
        if not known:
            return {}

        await self.registry.activate_all(known)
        results: Dict[str, bool] = {}
        for plugin_id in self.registry.get_active_ids():
            results[plugin_id] = await self._enable_active(plugin_id)
        return results

    async def enable(self, plugin_id: str) -> bool:
        """Activate *plugin_id* (and its dependencies) and enable their contributions."""
        for activated in await self.registry.activate_all([plugin_id]):
            if activated != plugin_id:
                await self._enable_active(activated)
        return await self._enable_active(plugin_id)

    async def disable(self, plugin_id: str, container: Optional[ET._Element] = None) -> None:
        """Remove the plugin's contributions and deactivate it.

        Raises:
            PluginDependencyError: an active plugin still requires it
        """
        dependents = self.registry.get_active_dependents(plugin_id)
        if dependents:
            raise PluginDependencyError(f"Required by active plugin(s): {', '.join(dependents)}",
                                        plugin_id=plugin_id, dependents=dependents)
        self.initializer.disable_plugin(plugin_id, container)
        await self.registry.deactivate(plugin_id)

    async def load_artifacts(self, plugin_id: str) -> None:
        """Load export assets, preview renderer and editor extensions of *plugin_id*."""
        await self.export.load_assets(plugin_id)
        await self.preview.load_renderer(plugin_id)
        await self.editor.load_extensions(plugin_id)

    async def shutdown(self) -> None:
        for plugin_id in self.initializer.get_enabled_plugins():
            self.initializer.disable_plugin(plugin_id)
        await self.registry.dispose()

    # -------------------------------------------------------------------------
    # Consumers
    # -------------------------------------------------------------------------

    def settings_by_plugin(self) -> Dict[str, Dict[str, Any]]:
        return {entry.id: dict(entry.settings) for entry in self.registry.get_all()}

    def build_export_bundle(self, html: str) -> ExportBundle:
        return self.export.build_bundle(html, self.initializer.get_enabled_plugins(),
                                        self.settings_by_plugin(), self.theme)

    def preview_context(self) -> PreviewContext:
        return PreviewContext(theme=self.theme,
                              enabled_plugins=self.initializer.get_enabled_plugins(),
                              settings_by_plugin=self.settings_by_plugin())

    async def render_preview(self, container: ET._Element) -> int:
        return await self.preview.render_all(container, self.preview_context())

    async def _enable_active(self, plugin_id: str) -> bool:
        if self.initializer.is_enabled(plugin_id):
            return True
        enabled = self.initializer.enable_plugin(plugin_id)
        if enabled:
            await self.load_artifacts(plugin_id)
        return enabled


def create_plugin_system(config: Optional[ConfigManager] = None,
                         artifacts: Optional[ArtifactTable] = None,
                         icon_table: Optional[Mapping[str, Any]] = None) -> PluginSystem:
    """Build a :class:`PluginSystem` and register plugins from configured directories."""
    system = PluginSystem(config=config, artifacts=artifacts, icon_table=icon_table)
    plugin_dirs = config.get("plugins", "plugin_dirs", []) if config is not None else []
    for directory in plugin_dirs or []:
        system.discover(Path(directory).expanduser())
    return system
