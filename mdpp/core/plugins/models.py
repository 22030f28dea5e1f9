"""Plugin system data models.

Registry entries, dependency resolution results and lifecycle events.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .base import BasePlugin, PluginStatus
from .manifest import PluginManifest


@dataclass
class RegisteredPlugin:
    """A manifest plus its mutable runtime state inside a registry."""

    manifest: PluginManifest
    status: PluginStatus = PluginStatus.INACTIVE
    instance: Optional[BasePlugin] = None
    error: Optional[str] = None
    activated_at: Optional[datetime] = None
    settings: Dict[str, Any] = field(default_factory=dict)
    path: Optional[str] = None

    @property
    def id(self) -> str:
        return self.manifest.id

    @property
    def is_active(self) -> bool:
        return self.status is PluginStatus.ACTIVE


@dataclass(frozen=True)
class MissingDependency:
    plugin_id: str
    dependency: str
    required: bool


@dataclass(frozen=True)
class Conflict:
    plugin_id: str
    conflicts_with: str

    @property
    def pair(self) -> Tuple[str, str]:
        return (self.plugin_id, self.conflicts_with)


@dataclass
class ResolutionResult:
    """Outcome of a dependency resolution.

    ``order`` lists the expanded plugin set with every dependency before its
    dependents. ``circular`` holds one path per detected cycle, starting and
    ending with the same id.
    """

    resolved: bool
    order: List[str] = field(default_factory=list)
    missing: List[MissingDependency] = field(default_factory=list)
    conflicts: List[Conflict] = field(default_factory=list)
    circular: List[List[str]] = field(default_factory=list)

    @property
    def missing_required(self) -> List[MissingDependency]:
        return [m for m in self.missing if m.required]

    @property
    def circular_ids(self) -> List[str]:
        seen: List[str] = []
        for cycle in self.circular:
            for plugin_id in cycle:
                if plugin_id not in seen:
                    seen.append(plugin_id)
        return seen

    @property
    def conflicting_ids(self) -> List[str]:
        seen: List[str] = []
        for conflict in self.conflicts:
            for plugin_id in conflict.pair:
                if plugin_id not in seen:
                    seen.append(plugin_id)
        return seen


class PluginEventType(Enum):
    REGISTERED = "registered"
    UNREGISTERED = "unregistered"
    ACTIVATED = "activated"
    DEACTIVATED = "deactivated"
    ERROR = "error"
    SETTINGS_CHANGED = "settings-changed"


@dataclass(frozen=True)
class PluginEvent:
    type: PluginEventType
    plugin_id: str
    data: Any = None
