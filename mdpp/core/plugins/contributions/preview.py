"""Preview renderer contribution registry.

A preview renderer post-processes the rendered HTML of the preview pane.
It declares CSS selectors, a priority and a ``render(elements, context)``
callable, plus an optional ``reset(elements)`` that restores the original
markup when its plugin is disabled.

The preview container is an :mod:`lxml` element; selectors are compiled
with :class:`lxml.cssselect.CSSSelector`.
"""

from __future__ import annotations

import inspect
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from cssselect import SelectorError
from lxml import etree as ET
from lxml.cssselect import CSSSelector

from ..artifacts import ArtifactTable, DeduplicatedLoader
from ..exceptions import PluginLoadError
from ..manifest import DEFAULT_PRIORITY
from .base import BaseContributionHandler


@dataclass
class PreviewContext:
    theme: str = "light"
    enabled_plugins: List[str] = field(default_factory=list)
    settings_by_plugin: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    def get_enabled_plugins(self) -> List[str]:
        return list(self.enabled_plugins)

    def get_plugin_settings(self, plugin_id: str) -> Dict[str, Any]:
        return dict(self.settings_by_plugin.get(plugin_id, {}))


@dataclass
class PreviewRenderer:
    """A validated, loaded renderer."""

    plugin_id: str
    selectors: Tuple[str, ...]
    render: Callable[..., Any]
    priority: int = DEFAULT_PRIORITY
    reset: Optional[Callable[[List[Any]], Any]] = None
    matcher: Optional[CSSSelector] = field(default=None, repr=False)

    def select(self, container: ET._Element) -> List[ET._Element]:
        return self.matcher(container) if self.matcher is not None else []

    @classmethod
    def coerce(cls, plugin_id: str, value: Any) -> "PreviewRenderer":
        """Validate a renderer object or mapping.

        Raises:
            PluginLoadError: when ``selectors`` or ``render`` is missing or malformed
        """
        if isinstance(value, cls):
            return value
        getter = value.get if isinstance(value, Mapping) else (lambda name: getattr(value, name, None))

        selectors = getter("selectors")
        render = getter("render")
        if not isinstance(selectors, (list, tuple)) or not selectors \
                or not all(isinstance(s, str) for s in selectors):
            raise PluginLoadError("Preview renderer needs a non-empty list of selectors",
                                  plugin_id=plugin_id)
        if not callable(render):
            raise PluginLoadError("Preview renderer needs a callable render", plugin_id=plugin_id)
        reset = getter("reset")
        if reset is not None and not callable(reset):
            raise PluginLoadError("Preview renderer reset must be callable", plugin_id=plugin_id)

        try:
            matcher = CSSSelector(", ".join(selectors), translator="html")
        except SelectorError as exc:
            raise PluginLoadError(f"Invalid preview selectors: {exc}", plugin_id=plugin_id,
                                  cause=exc) from exc

        priority = getter("priority")
        return cls(
            plugin_id=plugin_id,
            selectors=tuple(selectors),
            render=render,
            priority=DEFAULT_PRIORITY if priority is None else priority,
            reset=reset,
            matcher=matcher,
        )


@dataclass
class PreviewDeclaration:
    plugin_id: str
    module: str
    styles: Tuple[str, ...] = ()


class PreviewContributionHandler(BaseContributionHandler[PreviewDeclaration]):
    """Stores preview declarations and runs loaded renderers over the preview DOM."""

    point = "preview"

    def __init__(self, artifacts: ArtifactTable) -> None:
        super().__init__()
        self._loader = DeduplicatedLoader(artifacts, PreviewRenderer.coerce, kind="preview renderer")

    async def load_renderer(self, plugin_id: str) -> Optional[PreviewRenderer]:
        declaration = self._declaration_for(plugin_id)
        if declaration is None:
            return None
        return await self._loader.load(plugin_id, declaration.module)

    async def load_all(self) -> Dict[str, PreviewRenderer]:
        loaded: Dict[str, PreviewRenderer] = {}
        for plugin_id in self.get_plugin_ids():
            renderer = await self.load_renderer(plugin_id)
            if renderer is not None:
                loaded[plugin_id] = renderer
        return loaded

    def get_loaded_renderer(self, plugin_id: str) -> Optional[PreviewRenderer]:
        declaration = self._declaration_for(plugin_id)
        if declaration is None:
            return None
        return self._loader.get_loaded(plugin_id, declaration.module)

    def get_all_selectors(self) -> List[str]:
        selectors: List[str] = []
        for plugin_id in self.get_plugin_ids():
            renderer = self.get_loaded_renderer(plugin_id)
            for selector in renderer.selectors if renderer else ():
                if selector not in selectors:
                    selectors.append(selector)
        return selectors

    def get_styles(self, enabled_plugins: Iterable[str]) -> List[str]:
        enabled = set(enabled_plugins)
        styles: List[str] = []
        for declaration in self.get_all():
            if declaration.plugin_id in enabled:
                styles.extend(s for s in declaration.styles if s not in styles)
        return styles

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    async def render_all(self, container: ET._Element, context: PreviewContext) -> int:
        """Run every loaded renderer of an enabled plugin, highest priority first.

        A renderer is only called when its selectors match something. A
        failing renderer is logged and does not stop the others. Returns the
        number of renderers that ran successfully.
        """
        renderers = [
            renderer for renderer in
            (self.get_loaded_renderer(pid) for pid in context.get_enabled_plugins())
            if renderer is not None
        ]
        renderers.sort(key=lambda r: r.priority, reverse=True)

        ran = 0
        for renderer in renderers:
            try:
                elements = renderer.select(container)
                if not elements:
                    continue
                result = renderer.render(elements, context)
                if inspect.isawaitable(result):
                    await result
                ran += 1
            except Exception:
                self._logger.exception("Preview renderer of %s failed", renderer.plugin_id)
        return ran

    def reset_plugin(self, plugin_id: str, container: ET._Element) -> bool:
        """Restore the original markup of elements touched by *plugin_id*."""
        renderer = self.get_loaded_renderer(plugin_id)
        if renderer is None or renderer.reset is None:
            return False
        try:
            elements = renderer.select(container)
            if elements:
                renderer.reset(elements)
        except Exception:
            self._logger.exception("Preview reset of %s failed", plugin_id)
            return False
        return True

    def reset_disabled_plugins(self, container: ET._Element, enabled_plugins: Iterable[str]) -> List[str]:
        """Reset every loaded renderer whose plugin is not enabled; returns the ids reset."""
        enabled = set(enabled_plugins)
        reset: List[str] = []
        for plugin_id in self.get_plugin_ids():
            if plugin_id not in enabled and self.reset_plugin(plugin_id, container):
                reset.append(plugin_id)
        return reset

    # ------------------------------------------------------------------
    # Projection
    # ------------------------------------------------------------------

    def _project(self, plugin_id: str, declaration: Any) -> Dict[str, PreviewDeclaration]:
        module = declaration.get("module") or declaration["renderer"]
        styles = tuple(declaration.get("styles") or ())
        return {module: PreviewDeclaration(plugin_id, module, styles)}

    def _declaration_for(self, plugin_id: str) -> Optional[PreviewDeclaration]:
        declarations = self.get_declarations(plugin_id)
        if not declarations:
            return None
        last = declarations[-1]
        return self.get(f"{plugin_id}:{last.get('module') or last['renderer']}")

    def _on_unregister(self, plugin_id: str) -> None:
        self._loader.forget(plugin_id)
