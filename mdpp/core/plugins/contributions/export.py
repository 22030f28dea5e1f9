"""Export asset contribution registry.

Plugins declare an export assets module (``{"module": "<reference>"}``).
The module is loaded lazily, once, into an :class:`ExportAssets` record and
combined into an :class:`ExportBundle` for a given document: only enabled
plugins whose ``is_needed(html)`` predicate accepts the document contribute.
"""

from __future__ import annotations

import html as html_lib
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from ..artifacts import ArtifactTable, DeduplicatedLoader
from ..exceptions import PluginLoadError
from .base import BaseContributionHandler

InitScript = Callable[[Dict[str, Any], str], str]
NeedPredicate = Callable[[str], bool]


@dataclass
class ExportAssets:
    """What a plugin adds to an exported HTML document."""

    css: List[str] = field(default_factory=list)
    js: List[str] = field(default_factory=list)
    inline_styles: Optional[str] = None
    init_script: Optional[InitScript] = None
    is_needed: Optional[NeedPredicate] = None

    @classmethod
    def coerce(cls, plugin_id: str, value: Any) -> "ExportAssets":
        """Accept an :class:`ExportAssets` or a mapping (snake_case or camelCase keys)."""
        if isinstance(value, cls):
            return value
        if not isinstance(value, Mapping):
            raise PluginLoadError("Export assets must be a mapping or ExportAssets",
                                  plugin_id=plugin_id)

        def pick(*names: str) -> Any:
            for name in names:
                if name in value:
                    return value[name]
            return None

        assets = cls(
            css=list(pick("css") or []),
            js=list(pick("js") or []),
            inline_styles=pick("inline_styles", "inlineStyles"),
            init_script=pick("init_script", "initScript"),
            is_needed=pick("is_needed", "isNeeded"),
        )
        for name, hook in (("init_script", assets.init_script), ("is_needed", assets.is_needed)):
            if hook is not None and not callable(hook):
                raise PluginLoadError(f"Export assets '{name}' must be callable", plugin_id=plugin_id)
        return assets


@dataclass
class ExportBundle:
    css: List[str] = field(default_factory=list)
    js: List[str] = field(default_factory=list)
    inline_styles: List[str] = field(default_factory=list)
    init_scripts: List[str] = field(default_factory=list)
    plugins: List[str] = field(default_factory=list)


@dataclass
class ExportDeclaration:
    plugin_id: str
    module: str


class ExportContributionHandler(BaseContributionHandler[ExportDeclaration]):
    """Stores export declarations and loads their assets on demand."""

    point = "export"

    def __init__(self, artifacts: ArtifactTable) -> None:
        super().__init__()
        self._loader = DeduplicatedLoader(artifacts, ExportAssets.coerce, kind="export assets")

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def load_assets(self, plugin_id: str) -> Optional[ExportAssets]:
        """Load the export assets of *plugin_id*; ``None`` if absent or broken."""
        declaration = self._declaration_for(plugin_id)
        if declaration is None:
            return None
        return await self._loader.load(plugin_id, declaration.module)

    async def load_all(self) -> Dict[str, ExportAssets]:
        loaded: Dict[str, ExportAssets] = {}
        for plugin_id in self.get_plugin_ids():
            assets = await self.load_assets(plugin_id)
            if assets is not None:
                loaded[plugin_id] = assets
        return loaded

    def get_loaded_assets(self) -> Dict[str, ExportAssets]:
        loaded: Dict[str, ExportAssets] = {}
        for plugin_id in self.get_plugin_ids():
            declaration = self._declaration_for(plugin_id)
            assets = self._loader.get_loaded(plugin_id, declaration.module) if declaration else None
            if assets is not None:
                loaded[plugin_id] = assets
        return loaded

    # ------------------------------------------------------------------
    # Bundle assembly
    # ------------------------------------------------------------------

    def build_bundle(self, html: str, enabled_plugins: Iterable[str],
                     settings_by_plugin: Optional[Mapping[str, Dict[str, Any]]] = None,
                     theme: str = "light") -> ExportBundle:
        """Collect the assets needed to export *html*.

        Disabled plugins never contribute. Enabled ones contribute only when
        their ``is_needed`` predicate (if any) accepts the document.
        """
        enabled = set(enabled_plugins)
        settings_by_plugin = settings_by_plugin or {}
        bundle = ExportBundle()

        for plugin_id, assets in self.get_loaded_assets().items():
            if plugin_id not in enabled:
                continue
            try:
                if assets.is_needed is not None and not assets.is_needed(html):
                    self._logger.debug("Export assets of %s not needed for this document", plugin_id)
                    continue
                init_script = None
                if assets.init_script is not None:
                    init_script = assets.init_script(dict(settings_by_plugin.get(plugin_id, {})), theme)
            except Exception:
                self._logger.exception("Export assets of %s failed, skipping", plugin_id)
                continue

            _extend_unique(bundle.css, assets.css)
            _extend_unique(bundle.js, assets.js)
            if assets.inline_styles:
                bundle.inline_styles.append(assets.inline_styles)
            if init_script:
                bundle.init_scripts.append(init_script)
            bundle.plugins.append(plugin_id)

        return bundle

    @staticmethod
    def generate_head_html(bundle: ExportBundle) -> str:
        parts = [f'<link rel="stylesheet" href="{html_lib.escape(href)}">' for href in bundle.css]
        if bundle.inline_styles:
            parts.append("<style>")
            parts.append("\n\n".join(bundle.inline_styles))
            parts.append("</style>")
        return "\n".join(parts)

    @staticmethod
    def generate_scripts_html(bundle: ExportBundle) -> str:
        parts = [f'<script src="{html_lib.escape(src)}"></script>' for src in bundle.js]
        if bundle.init_scripts:
            parts.append("<script>")
            parts.append('document.addEventListener("DOMContentLoaded", function() {')
            for script in bundle.init_scripts:
                parts.append(f"  try {{ {script} }} catch(e) {{ console.error('Init script error:', e); }}")
            parts.append("});")
            parts.append("</script>")
        return "\n".join(parts)

    # ------------------------------------------------------------------
    # Projection
    # ------------------------------------------------------------------

    def _project(self, plugin_id: str, declaration: Any) -> Dict[str, ExportDeclaration]:
        module = declaration["module"]
        return {module: ExportDeclaration(plugin_id, module)}

    def _declaration_for(self, plugin_id: str) -> Optional[ExportDeclaration]:
        declarations = self.get_declarations(plugin_id)
        if not declarations:
            return None
        return self.get(f"{plugin_id}:{declarations[-1]['module']}")

    def _on_unregister(self, plugin_id: str) -> None:
        self._loader.forget(plugin_id)


def _extend_unique(target: List[str], values: Iterable[str]) -> None:
    for value in values:
        if value not in target:
            target.append(value)
