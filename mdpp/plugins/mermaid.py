"""Mermaid diagram plugin.

Renders ``mermaid`` fenced code blocks as ``<pre class="mermaid">`` elements
and ships the Mermaid runtime with exported documents that contain one.
"""

from __future__ import annotations

import html
import json
from typing import Any, Dict, List, Optional

from mdpp.core.plugins import BasePlugin, PluginContext
from mdpp.core.plugins.contributions import ExportAssets

MERMAID_CDN = "https://cdn.jsdelivr.net/npm/mermaid@10/dist/mermaid.min.js"

DEFAULT_SETTINGS: Dict[str, Any] = {
    "theme": "default",
    "security_level": "loose",
    "start_on_load": True,
    "log_level": "error",
}

DIAGRAM_TYPES = (
    "flowchart", "sequenceDiagram", "classDiagram", "stateDiagram", "erDiagram",
    "gantt", "pie", "journey", "gitGraph", "mindmap", "timeline", "quadrantChart",
    "requirement", "sankey", "block", "packet", "architecture",
)

MANIFEST: Dict[str, Any] = {
    "id": "mermaid",
    "name": "Mermaid",
    "version": "1.0.0",
    "type": "hybrid",
    "description": "Flowcharts, sequence diagrams and other Mermaid diagrams",
    "parser": {"codeBlockLanguages": ["mermaid"], "priority": 100},
    "contributes": {
        "toolbar": {
            "items": [{
                "id": "insert-diagram",
                "command": "setMermaid",
                "group": "insert",
                "priority": 4,
                "icon": "GitBranch",
                "label": "Diagram",
                "tooltip": "Insert Mermaid Diagram (Ctrl+Shift+M)",
                "shortcut": "Ctrl+Shift+M",
            }],
        },
        "exportAssets": {"module": "export"},
        "editorExtensions": [{"name": "mermaidBlock", "module": "editor", "type": "node"}],
    },
    "settings": dict(DEFAULT_SETTINGS),
}


def render_code_block(code: str) -> str:
    """Wrap diagram source so the Mermaid runtime picks it up."""
    return f'<pre class="mermaid">{html.escape(code)}</pre>'


def _init_script(settings: Dict[str, Any], theme: str) -> str:
    mermaid_theme = "dark" if theme == "dark" else "default"
    # a JS string literal that cannot close the surrounding <script>
    security_level = json.dumps(str(settings.get("security_level", "loose"))).replace("<", "\\u003c")
    return (
        "if (typeof mermaid !== 'undefined') { "
        f"mermaid.initialize({{ startOnLoad: false, theme: '{mermaid_theme}', "
        f"securityLevel: {security_level} }}); "
        "mermaid.run({ nodes: document.querySelectorAll('.mermaid') }); }"
    )


def _is_needed(document: str) -> bool:
    return ('class="mermaid"' in document
            or "class='mermaid'" in document
            or 'data-type="mermaid-block"' in document)


EXPORT_ASSETS = ExportAssets(
    css=[],
    js=[MERMAID_CDN],
    inline_styles=(
        ".mermaid {\n  text-align: center;\n  margin: 1em 0;\n  background-color: transparent;\n}\n"
        ".mermaid svg {\n  max-width: 100%;\n  height: auto;\n}"
    ),
    init_script=_init_script,
    is_needed=_is_needed,
)

EDITOR_NODE = {"name": "mermaidBlock", "group": "block", "atom": True, "language": "mermaid"}


class MermaidApi:
    def __init__(self, plugin: "MermaidPlugin") -> None:
        self._plugin = plugin

    def get_diagram_types(self) -> List[str]:
        return list(DIAGRAM_TYPES)

    def get_settings(self) -> Dict[str, Any]:
        return dict(self._plugin.settings)


class MermaidPlugin(BasePlugin):
    id = "mermaid"

    def __init__(self, manifest=None) -> None:
        super().__init__(manifest)
        self.settings: Dict[str, Any] = dict(DEFAULT_SETTINGS)
        self.api = MermaidApi(self)

    def activate(self, context: PluginContext) -> None:
        self.settings.update(context.settings)
        context.logger.info("Mermaid plugin activated")

    def deactivate(self) -> None:
        self.settings = dict(DEFAULT_SETTINGS)

    def on_settings_change(self, settings: Dict[str, Any]) -> None:
        self.settings.update(settings)

    def code_block_handler(self) -> Optional[Any]:
        return render_code_block


ARTIFACTS = {
    "export": lambda: EXPORT_ASSETS,
    "editor": lambda: dict(EDITOR_NODE),
}
