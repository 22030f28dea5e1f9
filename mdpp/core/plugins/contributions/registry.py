"""Generic contribution registry.

Keeps a catalog of every contribution point a manifest can populate
(parser languages, editor extensions, toolbar, preview, export, sidebar
panels, keybindings and help entries). Each point has a light schema that
declarations are checked against before anything is registered, and a
handler that stores them keyed ``plugin:declaration``.

The specialised handlers in this package (toolbar, export, preview, editor)
are populated separately by the initializer; this registry records the raw,
validated declarations for consumers that only need the catalog.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from ..exceptions import PluginValidationError
from ..manifest import DEFAULT_PRIORITY, PluginManifest, thaw
from ..schema import validate_against_schema
from .base import BaseContributionHandler, ChangeListener

logger = logging.getLogger(__name__)

# ``contributes`` key in a manifest -> contribution point
CONTRIBUTES_KEYS: Dict[str, str] = {
    "toolbar": "toolbar",
    "export_assets": "export",
    "preview_renderer": "preview",
    "editor_extensions": "editor",
    "sidebar": "sidebar",
    "keybindings": "keybindings",
    "help": "help",
}

_STRING = {"type": "string", "minLength": 1}


def _list_of(item_properties: Dict[str, Any], required: List[str]) -> Dict[str, Any]:
    return {
        "type": "array",
        "items": {"type": "object", "required": required, "properties": item_properties},
    }


CONTRIBUTION_SCHEMAS: Dict[str, Dict[str, Any]] = {
    "parser": {
        "type": "object",
        "required": ["language"],
        "properties": {"language": _STRING, "priority": {"type": "number"}},
    },
    "editor": _list_of({"name": _STRING, "module": _STRING, "node_view": _STRING,
                        "type": {"type": "string", "enum": ["node", "mark", "extension"]},
                        "priority": {"type": "number"}},
                       ["name"]),
    "toolbar": {
        "type": "object",
        "properties": {
            "items": _list_of({"id": _STRING, "command": _STRING, "group": _STRING,
                               "label": {"type": "string"}, "priority": {"type": "number"}},
                              ["id", "command"]),
            "groups": _list_of({"id": _STRING, "label": {"type": "string"},
                                "priority": {"type": "number"}},
                               ["id"]),
        },
    },
    "preview": {
        "type": "object",
        "properties": {"module": _STRING, "renderer": _STRING,
                       "styles": {"type": "array", "items": {"type": "string"}}},
    },
    "export": {
        "type": "object",
        "required": ["module"],
        "properties": {"module": _STRING},
    },
    "sidebar": _list_of({"id": _STRING, "title": _STRING}, ["id", "title"]),
    "keybindings": _list_of({"key": _STRING, "command": _STRING}, ["key", "command"]),
    "help": _list_of({"id": _STRING, "title": _STRING}, ["id", "title"]),
}

# Field used as the declaration id of each point.
_ID_FIELDS = {
    "parser": "language",
    "editor": "name",
    "sidebar": "id",
    "keybindings": "key",
    "help": "id",
}


@dataclass
class ParserLanguage:
    plugin_id: str
    language: str
    priority: int = DEFAULT_PRIORITY


class DeclarationHandler(BaseContributionHandler[Dict[str, Any]]):
    """Stores declarations as plain dictionaries."""

    def __init__(self, point: str, id_field: Optional[str] = None) -> None:
        self.point = point
        self._id_field = id_field
        super().__init__()

    def _project(self, plugin_id: str, declaration: Any) -> Dict[str, Dict[str, Any]]:
        decl_id = declaration.get(self._id_field) if self._id_field else None
        if decl_id is None:
            decl_id = f"{self.point}-{len(self.get_declarations(plugin_id))}"
        return {str(decl_id): thaw(declaration)}


class ParserContributionHandler(BaseContributionHandler[ParserLanguage]):
    """Maps fenced code-block languages to the plugins that parse them."""

    point = "parser"

    def get_plugin_for_language(self, language: str) -> Optional[str]:
        """Highest-priority claimant of *language*; earlier registration wins ties."""
        wanted = language.lower()
        best: Optional[ParserLanguage] = None
        for entry in self.get_all():
            if entry.language == wanted and (best is None or entry.priority > best.priority):
                best = entry
        return best.plugin_id if best else None

    def get_languages(self) -> List[str]:
        return sorted({entry.language for entry in self.get_all()})

    def _project(self, plugin_id: str, declaration: Any) -> Dict[str, ParserLanguage]:
        language = declaration["language"].lower()
        priority = declaration.get("priority", DEFAULT_PRIORITY)
        return {language: ParserLanguage(plugin_id, language, priority)}


class ContributionRegistry:
    """Catalog of all contribution points and their declarations."""

    def __init__(self) -> None:
        self._handlers: Dict[str, BaseContributionHandler[Any]] = {}
        for point in CONTRIBUTION_SCHEMAS:
            if point == "parser":
                self._handlers[point] = ParserContributionHandler()
            else:
                self._handlers[point] = DeclarationHandler(point, _ID_FIELDS.get(point))
        self._logger = logging.getLogger(f"{__name__}.ContributionRegistry")

    @property
    def points(self) -> List[str]:
        return list(self._handlers)

    def get_handler(self, point: str) -> BaseContributionHandler[Any]:
        if point not in self._handlers:
            raise KeyError(f"Unknown contribution point: {point}")
        return self._handlers[point]

    @property
    def parser(self) -> ParserContributionHandler:
        return self._handlers["parser"]  # type: ignore[return-value]

    # ------------------------------------------------------------------
    # Plugin contributions
    # ------------------------------------------------------------------

    def collect_declarations(self, manifest: PluginManifest) -> Dict[str, Any]:
        """Declarations of *manifest* grouped by contribution point."""
        collected: Dict[str, Any] = {}
        if manifest.code_block_languages:
            collected["parser"] = [
                {"language": language, "priority": manifest.priority}
                for language in manifest.code_block_languages
            ]
        for key, value in manifest.contributes.items():
            point = CONTRIBUTES_KEYS.get(key)
            if point is None:
                self._logger.warning("Plugin %s declares unknown contribution '%s'", manifest.id, key)
                continue
            collected[point] = value
        return collected

    def validate_contributions(self, manifest: PluginManifest) -> List[str]:
        errors: List[str] = []
        for point, value in self.collect_declarations(manifest).items():
            schema = CONTRIBUTION_SCHEMAS[point]
            if point == "parser":
                for index, decl in enumerate(value):
                    errors.extend(validate_against_schema(decl, schema, f"parser[{index}]"))
            else:
                errors.extend(validate_against_schema(value, schema, f"contributes.{point}"))
            if point == "preview" and hasattr(value, "get") \
                    and not (value.get("module") or value.get("renderer")):
                errors.append("Missing required field: contributes.preview.module")
        return errors

    def process_plugin_contributions(self, manifest: PluginManifest) -> List[str]:
        """Validate and register every declaration of *manifest*.

        Nothing is registered when any declaration is invalid.

        Returns:
            The contribution points that received declarations.

        Raises:
            PluginValidationError: listing all invalid declarations
        """
        errors = self.validate_contributions(manifest)
        if errors:
            raise PluginValidationError("Invalid contribution declarations",
                                        plugin_id=manifest.id, validation_errors=errors)

        touched: List[str] = []
        for point, value in self.collect_declarations(manifest).items():
            handler = self._handlers[point]
            declarations = value if isinstance(value, (list, tuple)) else [value]
            for declaration in declarations:
                handler.register(manifest.id, declaration)
            touched.append(point)
        self._logger.debug("Processed contributions of %s: %s", manifest.id, touched)
        return touched

    def remove_plugin_contributions(self, plugin_id: str) -> None:
        for handler in self._handlers.values():
            handler.unregister(plugin_id)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_contributions(self, point: str) -> List[Any]:
        return self.get_handler(point).get_all()

    def get_plugin_contributions(self, plugin_id: str) -> Dict[str, List[Any]]:
        return {
            point: handler.get_declarations(plugin_id)
            for point, handler in self._handlers.items()
            if handler.has_plugin(plugin_id)
        }

    def get_plugin_for_language(self, language: str) -> Optional[str]:
        return self.parser.get_plugin_for_language(language)

    def subscribe(self, point: str, listener: ChangeListener) -> Callable[[], None]:
        return self.get_handler(point).subscribe(listener)
