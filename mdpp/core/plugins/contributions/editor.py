"""Editor extension contribution registry.

Plugins declare rich-text editor extensions by name with a module reference
and an optional node view reference. Declarations resolve immediately into
unloaded :class:`EditorExtension` records keyed ``plugin:name``; the modules
themselves are loaded on demand by :meth:`EditorContributionHandler.load_extensions`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ..artifacts import ArtifactTable, DeduplicatedLoader
from ..manifest import DEFAULT_PRIORITY
from .base import BaseContributionHandler, composite_id


@dataclass
class EditorExtension:
    id: str
    plugin_id: str
    name: str
    module: str
    kind: str = "extension"
    node_view_ref: Optional[str] = None
    priority: int = DEFAULT_PRIORITY
    extension: Any = None
    node_view: Any = None
    loaded: bool = False
    error: Optional[str] = None


class EditorContributionHandler(BaseContributionHandler[EditorExtension]):
    point = "editor"

    def __init__(self, artifacts: ArtifactTable) -> None:
        super().__init__()
        self._loader = DeduplicatedLoader(artifacts, kind="editor module")

    async def load_extensions(self, plugin_id: str) -> List[EditorExtension]:
        """Load every not-yet-loaded extension of *plugin_id*.

        A failing module marks its extension with ``error`` and leaves it
        unloaded; the others still load.
        """
        loaded: List[EditorExtension] = []
        for ext in self.get_all():
            if ext.plugin_id != plugin_id or ext.loaded:
                continue

            extension = await self._loader.load(plugin_id, ext.module)
            node_view = None
            failed_ref = ext.module if extension is None else None
            if extension is not None and ext.node_view_ref:
                node_view = await self._loader.load(plugin_id, ext.node_view_ref)
                if node_view is None:
                    failed_ref = ext.node_view_ref

            if failed_ref is not None:
                ext.error = self._loader.get_error(plugin_id, failed_ref) or f"Failed to load {failed_ref}"
                ext.loaded = False
                continue

            ext.extension = extension
            ext.node_view = node_view
            ext.loaded = True
            ext.error = None
            loaded.append(ext)

        self._notify()
        return loaded

    def get_loaded_extensions(self) -> List[EditorExtension]:
        """Loaded extensions in priority order (lower priorities first)."""
        return sorted((e for e in self.get_all() if e.loaded), key=lambda e: e.priority)

    def get_extension(self, key: str) -> Optional[EditorExtension]:
        return self.get(key)

    def get_extensions_for_plugin(self, plugin_id: str) -> List[EditorExtension]:
        return [e for e in self.get_all() if e.plugin_id == plugin_id]

    def _project(self, plugin_id: str, declaration: Any) -> Dict[str, EditorExtension]:
        name = declaration["name"]
        return {
            name: EditorExtension(
                id=composite_id(plugin_id, name),
                plugin_id=plugin_id,
                name=name,
                module=declaration.get("module") or name,
                kind=declaration.get("type", "extension"),
                node_view_ref=declaration.get("node_view"),
                priority=declaration.get("priority", DEFAULT_PRIORITY),
            )
        }

    def _on_unregister(self, plugin_id: str) -> None:
        self._loader.forget(plugin_id)
