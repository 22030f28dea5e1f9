"""Plugin registry and lifecycle state machine.

The :class:`PluginRegistry` owns every registered plugin's status, settings
and runtime instance. It consults the :class:`~.resolver.DependencyResolver`
before every activation and deactivation, drives the lifecycle hooks and
notifies subscribers after each state change.

Hooks may be synchronous or return awaitables; :meth:`PluginRegistry.activate_all`
awaits them one at a time in dependency order, never concurrently.
"""

from __future__ import annotations

import inspect
import logging
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional

from .base import BasePlugin, PluginContext, PluginStatus
from .exceptions import (
    PluginConflictError,
    PluginCycleError,
    PluginDependencyError,
    PluginHookError,
    PluginNotFoundError,
    PluginStateError,
)
from .manifest import PluginManifest, thaw
from .models import PluginEvent, PluginEventType, RegisteredPlugin, ResolutionResult
from .resolver import DependencyResolver

PluginListener = Callable[[PluginEvent], None]


async def call_hook(hook: Callable[..., Any], *args: Any) -> Any:
    """Call a sync-or-async hook and await its result when needed."""
    result = hook(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


class PluginRegistry:
    """Registry of plugin manifests, their status and their runtime instances."""

    def __init__(self) -> None:
        self._plugins: Dict[str, RegisteredPlugin] = {}
        self._components: Dict[str, Any] = {}
        self._activation_order: List[str] = []
        self._listeners: List[PluginListener] = []
        self._resolver = DependencyResolver(self.get_manifest, self.get_active_ids)
        self._logger = logging.getLogger(f"{__name__}.PluginRegistry")

    @property
    def resolver(self) -> DependencyResolver:
        return self._resolver

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, manifest: PluginManifest, path: Optional[str] = None,
                 instance: Optional[BasePlugin] = None) -> RegisteredPlugin:
        """Register a manifest as an inactive plugin.

        Registering an id twice replaces the previous entry (last write wins).
        Dependencies are not checked here, so plugins can be registered in any
        order.
        """
        if manifest.id in self._plugins:
            self._logger.warning("Plugin %s already registered, overwriting", manifest.id)
            self._forget_active(manifest.id)
            self._remove_components(manifest.id)

        entry = RegisteredPlugin(
            manifest=manifest,
            instance=instance,
            settings=thaw(manifest.settings),
            path=path,
        )
        self._plugins[manifest.id] = entry
        self._logger.info("Registered plugin: %s v%s", manifest.id, manifest.version)
        self._emit(PluginEventType.REGISTERED, manifest.id)
        return entry

    def set_instance(self, plugin_id: str, instance: Optional[BasePlugin]) -> None:
        """Attach (or detach) the runtime instance of a registered plugin."""
        self._require(plugin_id).instance = instance

    async def unregister(self, plugin_id: str) -> None:
        entry = self._plugins.get(plugin_id)
        if entry is None:
            return
        if entry.is_active:
            await self.deactivate(plugin_id)
        self._remove_components(plugin_id)
        self._forget_active(plugin_id)
        del self._plugins[plugin_id]
        self._logger.info("Unregistered plugin: %s", plugin_id)
        self._emit(PluginEventType.UNREGISTERED, plugin_id)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def activate(self, plugin_id: str) -> None:
        """Activate a single plugin.

        Raises:
            PluginNotFoundError: the plugin is not registered
            PluginDependencyError: a required dependency is not registered
            PluginConflictError: a conflicting plugin is active or would be
            PluginCycleError: the dependency graph contains a cycle
            PluginHookError: the plugin's activation hook failed
            PluginStateError: the plugin is still activating
        """
        entry = self._require(plugin_id)
        if entry.is_active:
            self._logger.debug("Plugin %s is already active", plugin_id)
            return

        self._check_not_activating(entry)
        self._check_resolution(plugin_id, self._resolver.resolve([plugin_id]))
        self._check_active_conflicts(plugin_id)

        await self._run_activation(entry)

    async def deactivate(self, plugin_id: str) -> None:
        """Deactivate a plugin once no active plugin requires it.

        Raises:
            PluginDependencyError: an active plugin still requires it
            PluginHookError: the plugin's deactivation hook failed
        """
        entry = self._require(plugin_id)
        if not entry.is_active:
            self._logger.debug("Plugin %s is not active (%s)", plugin_id, entry.status.value)
            return

        dependents = self.get_active_dependents(plugin_id)
        if dependents:
            raise PluginDependencyError(
                f"Required by active plugin(s): {', '.join(dependents)}",
                plugin_id=plugin_id, dependents=dependents,
            )

        await self._run_deactivation(entry)

    async def activate_all(self, plugin_ids: Iterable[str]) -> List[str]:
        """Activate plugins and everything they require, serially in dependency order.

        The whole set is resolved, and checked against the active plugins,
        before any plugin changes state. Only the requested plugins and their
        transitive required dependencies are activated. Returns the ids
        activated by this call.
        """
        requested = list(plugin_ids)
        for plugin_id in requested:
            self._require(plugin_id)

        result = self._resolver.resolve(requested)
        self._check_resolution(", ".join(requested), result)

        # optional dependencies only affect ordering
        wanted = set(requested)
        for plugin_id in requested:
            wanted.update(self._resolver.get_all_dependencies(plugin_id))
        pending = [pid for pid in result.order
                   if pid in wanted and not self._plugins[pid].is_active]

        for plugin_id in pending:
            self._check_not_activating(self._plugins[plugin_id])
            self._check_active_conflicts(plugin_id)

        activated: List[str] = []
        for plugin_id in pending:
            await self._run_activation(self._plugins[plugin_id])
            activated.append(plugin_id)
        return activated

    async def dispose(self) -> None:
        """Deactivate all active plugins in reverse dependency order, then clear state.

        Failures are logged and do not stop the sweep.
        """
        active = self.get_active_ids()
        if active:
            result = self._resolver.resolve(active)
            order = [pid for pid in result.order if pid in active]
            order += [pid for pid in active if pid not in order]
            for plugin_id in reversed(order):
                entry = self._plugins[plugin_id]
                if not entry.is_active:
                    continue
                try:
                    await self._run_deactivation(entry)
                except PluginHookError as exc:
                    self._logger.error("Error deactivating %s during dispose: %s", plugin_id, exc)

        self._plugins.clear()
        self._components.clear()
        self._activation_order.clear()
        self._listeners.clear()
        self._logger.info("Plugin registry disposed")

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    async def set_settings(self, plugin_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        """Merge *patch* over the manifest defaults and the current settings.

        Raises:
            PluginHookError: the plugin's settings hook failed (settings are kept)
        """
        entry = self._require(plugin_id)
        merged = thaw(entry.manifest.settings)
        merged.update(entry.settings)
        merged.update(patch)
        entry.settings = merged

        if entry.instance is not None:
            try:
                await call_hook(entry.instance.on_settings_change, dict(merged))
            except Exception as exc:
                raise PluginHookError(f"Settings hook failed: {exc}", plugin_id=plugin_id,
                                      hook="on_settings_change", cause=exc) from exc

        self._emit(PluginEventType.SETTINGS_CHANGED, plugin_id, dict(merged))
        return dict(merged)

    def get_settings(self, plugin_id: str) -> Dict[str, Any]:
        return dict(self._require(plugin_id).settings)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def has(self, plugin_id: str) -> bool:
        return plugin_id in self._plugins

    def get(self, plugin_id: str) -> Optional[RegisteredPlugin]:
        return self._plugins.get(plugin_id)

    def get_manifest(self, plugin_id: str) -> Optional[PluginManifest]:
        entry = self._plugins.get(plugin_id)
        return entry.manifest if entry else None

    def get_status(self, plugin_id: str) -> Optional[PluginStatus]:
        entry = self._plugins.get(plugin_id)
        return entry.status if entry else None

    def get_all(self) -> List[RegisteredPlugin]:
        return list(self._plugins.values())

    def get_active(self) -> List[RegisteredPlugin]:
        """Active plugins in the order they were activated."""
        return [self._plugins[pid] for pid in self._activation_order]

    def get_active_ids(self) -> List[str]:
        return list(self._activation_order)

    def is_active(self, plugin_id: str) -> bool:
        entry = self._plugins.get(plugin_id)
        return bool(entry and entry.is_active)

    def get_active_dependents(self, plugin_id: str) -> List[str]:
        """Active plugins that list *plugin_id* as a required dependency."""
        return [
            entry.id for entry in self.get_active()
            if entry.id != plugin_id and plugin_id in entry.manifest.dependencies
        ]

    def get_plugin_api(self, plugin_id: str) -> Any:
        """Public API of an active plugin, ``None`` otherwise."""
        entry = self._plugins.get(plugin_id)
        if entry is None or not entry.is_active or entry.instance is None:
            return None
        return entry.instance.api

    def get_component(self, plugin_id: str, name: str) -> Any:
        return self._components.get(f"{plugin_id}:{name}")

    def get_components(self, plugin_id: str) -> Dict[str, Any]:
        prefix = f"{plugin_id}:"
        return {key[len(prefix):]: value for key, value in self._components.items() if key.startswith(prefix)}

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def subscribe(self, listener: PluginListener) -> Callable[[], None]:
        """Register *listener* for lifecycle events; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, event_type: PluginEventType, plugin_id: str, data: Any = None) -> None:
        event = PluginEvent(event_type, plugin_id, data)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                self._logger.exception("Plugin event listener failed for %s (%s)",
                                       plugin_id, event_type.value)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require(self, plugin_id: str) -> RegisteredPlugin:
        entry = self._plugins.get(plugin_id)
        if entry is None:
            raise PluginNotFoundError(plugin_id)
        return entry

    @staticmethod
    def _check_resolution(label: str, result: ResolutionResult) -> None:
        missing = result.missing_required
        if missing:
            names = sorted({m.dependency for m in missing})
            raise PluginDependencyError(
                f"Missing required dependencies: {', '.join(names)}",
                plugin_id=label, missing_dependencies=names,
            )
        if result.conflicts:
            pairs = ", ".join(f"{c.plugin_id} <-> {c.conflicts_with}" for c in result.conflicts)
            raise PluginConflictError(f"Conflicting plugins: {pairs}",
                                      plugin_id=label, conflicts=result.conflicting_ids)
        if result.circular:
            paths = "; ".join(" -> ".join(cycle) for cycle in result.circular)
            raise PluginCycleError(f"Circular dependencies: {paths}",
                                   plugin_id=label, cycles=result.circular)

    def _make_context(self, entry: RegisteredPlugin) -> PluginContext:
        plugin_id = entry.id

        def register_component(name: str, component: Any) -> None:
            self._components[f"{plugin_id}:{name}"] = component

        return PluginContext(plugin_id, dict(entry.settings), register_component, self.get_plugin_api)

    def _check_not_activating(self, entry: RegisteredPlugin) -> None:
        if entry.status is PluginStatus.ACTIVATING:
            raise PluginStateError(
                f"Plugin {entry.id} is already activating",
                plugin_id=entry.id, current_state=entry.status.value,
                expected_state=PluginStatus.INACTIVE.value,
            )

    def _check_active_conflicts(self, plugin_id: str) -> None:
        active_conflicts = self._resolver.would_conflict(plugin_id)
        if active_conflicts:
            raise PluginConflictError(
                f"Conflicts with active plugin(s): {', '.join(active_conflicts)}",
                plugin_id=plugin_id, conflicts=active_conflicts,
            )

    async def _run_activation(self, entry: RegisteredPlugin) -> None:
        plugin_id = entry.id
        entry.status = PluginStatus.ACTIVATING
        self._logger.debug("Activating plugin %s", plugin_id)
        try:
            if entry.instance is not None:
                await call_hook(entry.instance.activate, self._make_context(entry))
        except Exception as exc:
            self._fail(entry, exc)
            raise PluginHookError(f"Activation failed: {exc}", plugin_id=plugin_id,
                                  hook="activate", cause=exc) from exc

        entry.status = PluginStatus.ACTIVE
        entry.activated_at = datetime.now()
        entry.error = None
        self._activation_order.append(plugin_id)
        self._logger.info("Activated plugin: %s", plugin_id)
        self._emit(PluginEventType.ACTIVATED, plugin_id)

    async def _run_deactivation(self, entry: RegisteredPlugin) -> None:
        plugin_id = entry.id
        entry.status = PluginStatus.DEACTIVATING
        self._forget_active(plugin_id)
        self._logger.debug("Deactivating plugin %s", plugin_id)
        try:
            if entry.instance is not None:
                await call_hook(entry.instance.deactivate)
        except Exception as exc:
            self._remove_components(plugin_id)
            self._fail(entry, exc)
            raise PluginHookError(f"Deactivation failed: {exc}", plugin_id=plugin_id,
                                  hook="deactivate", cause=exc) from exc

        self._remove_components(plugin_id)
        entry.status = PluginStatus.INACTIVE
        self._logger.info("Deactivated plugin: %s", plugin_id)
        self._emit(PluginEventType.DEACTIVATED, plugin_id)

    def _fail(self, entry: RegisteredPlugin, exc: BaseException) -> None:
        entry.status = PluginStatus.ERROR
        entry.error = str(exc)
        self._logger.error("Plugin %s failed: %s", entry.id, exc)
        self._emit(PluginEventType.ERROR, entry.id, entry.error)

    def _remove_components(self, plugin_id: str) -> None:
        prefix = f"{plugin_id}:"
        for key in [k for k in self._components if k.startswith(prefix)]:
            del self._components[key]

    def _forget_active(self, plugin_id: str) -> None:
        if plugin_id in self._activation_order:
            self._activation_order.remove(plugin_id)
