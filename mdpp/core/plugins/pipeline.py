"""Document pipeline assembly.

The :class:`PipelineBuilder` turns the set of currently active plugins into
the ordered transform stages used to render a document: Markdown-tree
transforms, HTML-tree transforms, code-block language handlers and static
assets. It only orders and wires what plugins supply; it never looks at
document content.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional

from .manifest import PluginType
from .models import RegisteredPlugin
from .registry import PluginRegistry

logger = logging.getLogger(__name__)


@dataclass
class PipelinePlugins:
    remark_plugins: List[Any] = field(default_factory=list)
    rehype_plugins: List[Any] = field(default_factory=list)
    code_block_handlers: Dict[str, Callable[..., Any]] = field(default_factory=dict)
    css_assets: List[str] = field(default_factory=list)
    js_assets: List[str] = field(default_factory=list)


class PipelineBuilder:
    """Builds transform pipelines from the active plugins of a registry."""

    def __init__(self, registry: PluginRegistry) -> None:
        self._registry = registry

    def build(self, types: Optional[Iterable[PluginType]] = None) -> PipelinePlugins:
        """Collect pipeline stages from active plugins, highest priority first.

        Args:
            types: only consider plugins of these types

        A code-block language is bound to the first plugin (in priority
        order, then activation order) that claims it. Later claimants are
        logged and ignored.
        """
        result = PipelinePlugins()

        for entry in self._ordered_plugins(types):
            manifest, instance = entry.manifest, entry.instance
            if instance is None:
                continue

            try:
                result.remark_plugins.extend(instance.remark_plugins() or [])
            except Exception:
                logger.exception("Error getting remark plugins from %s", manifest.id)

            try:
                result.rehype_plugins.extend(instance.rehype_plugins() or [])
            except Exception:
                logger.exception("Error getting rehype plugins from %s", manifest.id)

            if manifest.code_block_languages:
                try:
                    handler = instance.code_block_handler()
                except Exception:
                    logger.exception("Error getting code block handler from %s", manifest.id)
                    handler = None
                if handler is not None:
                    self._bind_languages(result, manifest.id, manifest.code_block_languages, handler)

            result.css_assets.extend(manifest.assets.css)
            result.js_assets.extend(manifest.assets.js)

        result.css_assets = _unique(result.css_assets)
        result.js_assets = _unique(result.js_assets)
        logger.debug(
            "Built pipeline: %d remark, %d rehype, code blocks=%s",
            len(result.remark_plugins), len(result.rehype_plugins), sorted(result.code_block_handlers),
        )
        return result

    def get_code_block_handler(self, language: str) -> Optional[Callable[..., Any]]:
        """Handler of the first active plugin (activation order) declaring *language*."""
        for entry in self._registry.get_active():
            if entry.instance is not None and entry.manifest.declares_language(language):
                try:
                    handler = entry.instance.code_block_handler()
                except Exception:
                    logger.exception("Error getting code block handler from %s", entry.id)
                    continue
                if handler is not None:
                    return handler
        return None

    def has_code_block_handler(self, language: str) -> bool:
        return any(entry.manifest.declares_language(language) for entry in self._registry.get_active())

    def get_all_assets(self, include_inactive: bool = False) -> Dict[str, List[str]]:
        plugins = self._registry.get_all() if include_inactive else self._registry.get_active()
        css: List[str] = []
        js: List[str] = []
        for entry in plugins:
            css.extend(entry.manifest.assets.css)
            js.extend(entry.manifest.assets.js)
        return {"css": _unique(css), "js": _unique(js)}

    def _ordered_plugins(self, types: Optional[Iterable[PluginType]]) -> List[RegisteredPlugin]:
        plugins = self._registry.get_active()
        if types is not None:
            wanted = set(types)
            plugins = [p for p in plugins if p.manifest.type in wanted]
        # sorted() is stable: equal priorities keep activation order
        return sorted(plugins, key=lambda p: p.manifest.priority, reverse=True)

    @staticmethod
    def _bind_languages(result: PipelinePlugins, plugin_id: str, languages: Iterable[str],
                        handler: Callable[..., Any]) -> None:
        for language in languages:
            lang = language.lower()
            if lang in result.code_block_handlers:
                logger.warning("Code block language '%s' already handled; ignoring claim by %s",
                               lang, plugin_id)
                continue
            result.code_block_handlers[lang] = handler


def _unique(values: Iterable[str]) -> List[str]:
    return list(dict.fromkeys(values))
