"""Plugin orchestration core for MD++.

This package provides:
- Manifest parsing and validation (including the legacy flat format)
- Dependency resolution with cycle and conflict detection
- The plugin registry and its activation lifecycle
- Contribution registries (toolbar, export, preview, editor, catalog)
- Pipeline assembly from active plugins
- The composition root wiring all of the above

Nothing here is a process-wide singleton: build a :class:`PluginSystem`
(or the individual registries) and pass it to whatever needs it.
"""

from .artifacts import ArtifactTable, DeduplicatedLoader, ImportArtifactLoader
from .base import BasePlugin, PluginContext, PluginStatus
from .exceptions import (
    PluginConflictError,
    PluginCycleError,
    PluginDependencyError,
    PluginError,
    PluginHookError,
    PluginLoadError,
    PluginNotFoundError,
    PluginStateError,
    PluginValidationError,
)
from .initializer import PluginInitializer, PluginInitState, PluginSystem, create_plugin_system
from .loader import DiscoveredPlugin, PluginLoader
from .manifest import PluginManifest, PluginType, parse_manifest
from .models import (
    Conflict,
    MissingDependency,
    PluginEvent,
    PluginEventType,
    RegisteredPlugin,
    ResolutionResult,
)
from .pipeline import PipelineBuilder, PipelinePlugins
from .registry import PluginRegistry
from .resolver import DependencyResolver

__all__ = [
    # Core classes
    "PluginSystem",
    "create_plugin_system",
    "PluginRegistry",
    "DependencyResolver",
    "PluginInitializer",
    "PipelineBuilder",
    "PluginLoader",
    "ArtifactTable",
    "DeduplicatedLoader",
    "ImportArtifactLoader",

    # Plugin authoring
    "BasePlugin",
    "PluginContext",

    # Data models
    "PluginManifest",
    "PluginType",
    "PluginStatus",
    "RegisteredPlugin",
    "ResolutionResult",
    "MissingDependency",
    "Conflict",
    "PluginEvent",
    "PluginEventType",
    "PluginInitState",
    "PipelinePlugins",
    "DiscoveredPlugin",
    "parse_manifest",

    # Exceptions
    "PluginError",
    "PluginValidationError",
    "PluginDependencyError",
    "PluginConflictError",
    "PluginCycleError",
    "PluginHookError",
    "PluginLoadError",
    "PluginNotFoundError",
    "PluginStateError",
]
