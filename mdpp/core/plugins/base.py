"""Base plugin class and activation context.

:class:`BasePlugin` is the capability interface a plugin's runtime instance
implements. Every hook has a no-op default so a plugin overrides only what it
needs. Hooks may be plain methods or coroutines; the registry awaits
whatever they return.

Plugin Lifecycle:
1. The manifest is registered with the :class:`~.registry.PluginRegistry`
2. ``activate(context)`` runs when the plugin (or a dependent) is activated
3. ``on_settings_change(settings)`` runs whenever its settings are patched
4. ``deactivate()`` runs when it is deactivated or the registry is disposed

The ``remark_plugins``/``rehype_plugins``/``code_block_handler`` trio is only
consumed by the :class:`~.pipeline.PipelineBuilder`.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, List, Optional, Union

if TYPE_CHECKING:
    from .manifest import PluginManifest

logger = logging.getLogger(__name__)

HookResult = Union[None, Awaitable[None]]


class PluginStatus(Enum):
    """Plugin lifecycle states.

    INACTIVE -> ACTIVATING -> ACTIVE -> DEACTIVATING -> INACTIVE

    A failing hook moves the plugin to ERROR from either transitional state.
    """

    INACTIVE = "inactive"
    ACTIVATING = "activating"
    ACTIVE = "active"
    DEACTIVATING = "deactivating"
    ERROR = "error"


class PluginLoggerAdapter(logging.LoggerAdapter):
    """Prefixes every record with the owning plugin id."""

    def process(self, msg: Any, kwargs: Any) -> Any:
        return f"[{self.extra['plugin_id']}] {msg}", kwargs


def get_plugin_logger(plugin_id: str) -> PluginLoggerAdapter:
    return PluginLoggerAdapter(logging.getLogger(f"plugin.{plugin_id}"), {"plugin_id": plugin_id})


class PluginContext:
    """What a plugin sees while it is being activated.

    Built by the registry for each activation. ``settings`` is a copy of the
    merged settings at activation time.
    """

    def __init__(self, plugin_id: str, settings: Dict[str, Any],
                 register_component: Callable[[str, Any], None],
                 get_plugin_api: Callable[[str], Any]) -> None:
        self.plugin_id = plugin_id
        self.settings = settings
        self._register_component = register_component
        self._get_plugin_api = get_plugin_api
        self.logger = get_plugin_logger(plugin_id)

    def register_component(self, name: str, component: Any) -> None:
        """Register a runtime-only capability, removed again on deactivation."""
        self._register_component(name, component)

    def get_plugin_api(self, plugin_id: str) -> Any:
        """Public API of another plugin, or ``None`` unless that plugin is active."""
        return self._get_plugin_api(plugin_id)


class BasePlugin:
    """Runtime side of a plugin.

    Subclasses set :attr:`id` to their manifest id (checked by the loader
    when present) and :attr:`api` to whatever they expose to other plugins.
    """

    id: Optional[str] = None
    api: Any = None

    def __init__(self, manifest: Optional['PluginManifest'] = None) -> None:
        self.manifest = manifest
        if manifest is not None and self.id is None:
            self.id = manifest.id

    # -------------------------------------------------------------------------
    # Lifecycle Hooks
    # -------------------------------------------------------------------------

    def activate(self, context: PluginContext) -> HookResult:
        return None

    def deactivate(self) -> HookResult:
        return None

    def on_settings_change(self, settings: Dict[str, Any]) -> HookResult:
        return None

    # -------------------------------------------------------------------------
    # Pipeline Capabilities
    # -------------------------------------------------------------------------

    def remark_plugins(self) -> List[Any]:
        """Transforms applied to the Markdown syntax tree."""
        return []

    def rehype_plugins(self) -> List[Any]:
        """Transforms applied to the HTML syntax tree."""
        return []

    def code_block_handler(self) -> Optional[Callable[..., Any]]:
        """Handler for the fenced code-block languages the manifest declares."""
        return None
