"""Admonitions (callouts) plugin.

Contributes the callout toolbar group, export styles and a preview renderer
that decorates admonition blocks with type classes and icons. The renderer
keeps each block's original markup in ``data-original-content`` so that
disabling the plugin restores the preview exactly.
"""

from __future__ import annotations

import re
from typing import Any, Dict, List, Optional

from lxml import etree as ET
from lxml import html as lxml_html

from mdpp.core.plugins import BasePlugin
from mdpp.core.plugins.contributions import ExportAssets, PreviewContext

ICONS: Dict[str, str] = {
    "note": "\U0001F4DD",
    "tip": "\U0001F4A1",
    "warning": "⚠️",
    "danger": "\U0001F6A8",
    "info": "ℹ️",
    "success": "✅",
    "question": "❓",
    "quote": "\U0001F4AC",
    "example": "\U0001F4CB",
    "bug": "\U0001F41B",
    "abstract": "\U0001F4C4",
}

# type -> (border, background)
COLORS = (
    ("note", "#448aff", "#e3f2fd"),
    ("tip", "#00c853", "#e8f5e9"),
    ("warning", "#ff9100", "#fff3e0"),
    ("danger", "#ff5252", "#ffebee"),
    ("info", "#2196f3", "#e3f2fd"),
    ("success", "#4caf50", "#e8f5e9"),
    ("question", "#64b5f6", "#e3f2fd"),
)

_TOOLBAR_TYPES = (
    ("note", "Info", "Ctrl+Shift+N"),
    ("tip", "Lightbulb", None),
    ("warning", "AlertTriangle", None),
    ("danger", "AlertCircle", None),
    ("success", "CheckCircle", None),
    ("question", "HelpCircle", None),
    ("info", "Info", None),
)


def _toolbar_item(index: int, kind: str, icon: str, shortcut: Optional[str]) -> Dict[str, Any]:
    label = kind.capitalize()
    item = {
        "id": f"callout-{kind}",
        "command": "toggleAdmonition",
        "group": "callout",
        "priority": index,
        "icon": icon,
        "label": label,
        "tooltip": f"Insert {label} Callout" + (f" ({shortcut})" if shortcut else ""),
    }
    if shortcut:
        item["shortcut"] = shortcut
    return item


MANIFEST: Dict[str, Any] = {
    "id": "admonitions",
    "name": "Admonitions",
    "version": "1.0.0",
    "type": "components",
    "description": "Note, tip, warning and other callout blocks",
    "contributes": {
        "toolbar": {
            "groups": [{"id": "callout", "label": "Callouts", "priority": 45}],
            "items": [_toolbar_item(i, *entry) for i, entry in enumerate(_TOOLBAR_TYPES)],
        },
        "exportAssets": {"module": "export"},
        "previewRenderer": {"module": "preview"},
    },
    "settings": {"showIcons": True, "collapsible": False},
}


def _build_styles() -> str:
    parts = [
        ".admonition {\n  padding: 1rem;\n  margin: 1rem 0;\n"
        "  border-left: 4px solid var(--admonition-border, #448aff);\n"
        "  background: var(--admonition-bg, #e3f2fd);\n  border-radius: 4px;\n}",
        ".admonition-title {\n  font-weight: 600;\n  margin-bottom: 0.5rem;\n}",
        ".admonition-icon {\n  font-size: 1.2em;\n}",
    ]
    for kind, border, background in COLORS:
        parts.append(f".admonition-{kind} {{\n  --admonition-border: {border};\n"
                     f"  --admonition-bg: {background};\n}}")
    return "\n\n".join(parts)


def _is_needed(document: str) -> bool:
    return ('class="admonition' in document
            or 'data-type="admonition' in document
            or 'class="callout' in document
            or "data-callout=" in document)


EXPORT_ASSETS = ExportAssets(inline_styles=_build_styles(), is_needed=_is_needed)


# ----------------------------------------------------------------------
# Preview renderer
# ----------------------------------------------------------------------

PROCESSED_ATTR = "data-admonition-processed"
ORIGINAL_ATTR = "data-original-content"

_CALLOUT_RE = re.compile(r"^\[!(\w+)\]", re.IGNORECASE)
_ADDED_CLASSES = ("admonition-collapsible", "admonition-collapsed", "admonition-dark")


def _classes(el: ET._Element) -> List[str]:
    return (el.get("class") or "").split()


def _set_classes(el: ET._Element, classes: List[str]) -> None:
    if classes:
        el.set("class", " ".join(dict.fromkeys(classes)))
    elif "class" in el.attrib:
        del el.attrib["class"]


def _inner_html(el: ET._Element) -> str:
    return (el.text or "") + "".join(
        ET.tostring(child, encoding="unicode", method="html") for child in el
    )


def _replace_inner_html(el: ET._Element, markup: str) -> None:
    for child in list(el):
        el.remove(child)
    el.text = None
    for fragment in lxml_html.fragments_fromstring(markup):
        if isinstance(fragment, str):
            el.text = (el.text or "") + fragment
        else:
            el.append(fragment)


def get_admonition_type(el: ET._Element) -> Optional[str]:
    """Admonition kind from class, data attributes or a leading ``[!TYPE]`` marker."""
    for cls in _classes(el):
        if cls.startswith("admonition-") and cls not in ("admonition-title",) + _ADDED_CLASSES:
            return cls[len("admonition-"):]

    data_type = el.get("data-callout") or el.get("data-type")
    if data_type and data_type != "admonition":
        return data_type.lower()

    first_line = (el.text_content() if hasattr(el, "text_content") else "".join(el.itertext()))
    match = _CALLOUT_RE.match(first_line.strip().split("\n")[0])
    if match:
        return match.group(1).lower()
    return None


def _find_title(el: ET._Element) -> Optional[ET._Element]:
    for child in el.iter():
        if child is not el and "admonition-title" in _classes(child):
            return child
    return None


def _insert_icon(el: ET._Element, kind: str) -> None:
    icon = ET.Element("span")
    icon.set("class", "admonition-icon")
    icon.set("aria-hidden", "true")
    icon.text = ICONS.get(kind, ICONS["note"])

    target = _find_title(el)
    if target is None:
        target = el
    # keep leading text after the icon
    icon.tail = target.text
    target.text = None
    target.insert(0, icon)


def render(elements: List[ET._Element], context: PreviewContext) -> None:
    settings = context.get_plugin_settings("admonitions")
    show_icons = settings.get("showIcons", True)
    collapsible = settings.get("collapsible", False)

    for el in elements:
        if el.get(PROCESSED_ATTR):
            continue
        el.set(PROCESSED_ATTR, "true")

        kind = get_admonition_type(el)
        if not kind:
            continue

        if el.get(ORIGINAL_ATTR) is None:
            el.set(ORIGINAL_ATTR, _inner_html(el))

        _set_classes(el, _classes(el) + ["admonition", f"admonition-{kind}"])

        has_icon = any("admonition-icon" in _classes(child) for child in el.iter())
        if show_icons and not has_icon:
            _insert_icon(el, kind)

        classes = _classes(el)
        if collapsible and "admonition-collapsible" not in classes:
            classes.append("admonition-collapsible")
        if context.theme == "dark":
            classes.append("admonition-dark")
        else:
            classes = [c for c in classes if c != "admonition-dark"]
        _set_classes(el, classes)


def reset(elements: List[ET._Element]) -> None:
    for el in elements:
        original = el.get(ORIGINAL_ATTR)
        if original:
            _replace_inner_html(el, original)
        el.attrib.pop(PROCESSED_ATTR, None)
        _set_classes(el, [c for c in _classes(el) if c not in _ADDED_CLASSES])


PREVIEW_RENDERER: Dict[str, Any] = {
    "selectors": [".admonition", '[data-type="admonition"]', ".callout", "blockquote[data-callout]"],
    "priority": 80,
    "render": render,
    "reset": reset,
}


class AdmonitionsPlugin(BasePlugin):
    id = "admonitions"


ARTIFACTS = {
    "export": lambda: EXPORT_ASSETS,
    "preview": lambda: PREVIEW_RENDERER,
}
