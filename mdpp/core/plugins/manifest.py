"""Plugin manifest model.

A :class:`PluginManifest` is the static, immutable description of a plugin:
identity, type, dependency and conflict declarations, contribution
declarations and settings defaults. Manifests are parsed from mappings
(JSON/YAML documents) with :func:`parse_manifest`, which reports every
schema violation at once. The flat legacy shape (``framework`` +
``components``) is converted by :func:`convert_legacy_manifest`.
"""

from __future__ import annotations

import copy
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .exceptions import PluginValidationError
from .schema import LEGACY_MANIFEST_SCHEMA, MANIFEST_SCHEMA, validate_against_schema

logger = logging.getLogger(__name__)

__all__ = [
    "DEFAULT_PRIORITY",
    "PluginType",
    "ParserConfig",
    "AssetConfig",
    "PluginManifest",
    "normalize_manifest_data",
    "validate_manifest",
    "parse_manifest",
    "convert_legacy_manifest",
    "thaw",
]

DEFAULT_PRIORITY = 100


def _empty_mapping() -> Mapping[str, Any]:
    return MappingProxyType({})


class PluginType(Enum):
    """What a plugin contributes to the document pipeline."""

    PARSER = "parser"
    COMPONENTS = "components"
    HYBRID = "hybrid"
    THEME = "theme"


@dataclass(frozen=True)
class ParserConfig:
    code_block_languages: Tuple[str, ...] = ()
    priority: int = DEFAULT_PRIORITY


@dataclass(frozen=True)
class AssetConfig:
    css: Tuple[str, ...] = ()
    js: Tuple[str, ...] = ()


@dataclass(frozen=True)
class PluginManifest:
    """Immutable plugin descriptor.

    Nested mappings (``contributes``, ``settings`` and each component) are
    exposed as read-only views; use :func:`thaw` to get a mutable copy.
    """

    id: str
    name: str
    version: str
    type: PluginType
    description: Optional[str] = None
    author: Optional[str] = None
    dependencies: Tuple[str, ...] = ()
    optional_dependencies: Tuple[str, ...] = ()
    conflicts: Tuple[str, ...] = ()
    parser: Optional[ParserConfig] = None
    components: Tuple[Mapping[str, Any], ...] = field(default=(), hash=False)
    assets: AssetConfig = field(default_factory=AssetConfig)
    contributes: Mapping[str, Any] = field(default_factory=_empty_mapping, hash=False, compare=False)
    settings: Mapping[str, Any] = field(default_factory=_empty_mapping, hash=False, compare=False)

    @property
    def priority(self) -> int:
        return self.parser.priority if self.parser else DEFAULT_PRIORITY

    @property
    def code_block_languages(self) -> Tuple[str, ...]:
        return self.parser.code_block_languages if self.parser else ()

    def get_contributions(self, point: str) -> Any:
        """Raw declarations for a contribution point, or ``None``."""
        return self.contributes.get(point)

    def declares_language(self, language: str) -> bool:
        wanted = language.lower()
        return any(lang.lower() == wanted for lang in self.code_block_languages)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PluginManifest":
        """Create a manifest from an already validated, normalized mapping."""
        parser_data = data.get("parser")
        parser = None
        if parser_data is not None:
            parser = ParserConfig(
                code_block_languages=tuple(parser_data.get("code_block_languages", ())),
                priority=parser_data.get("priority", DEFAULT_PRIORITY),
            )
        assets_data = data.get("assets") or {}
        return cls(
            id=data["id"],
            name=data["name"],
            version=data["version"],
            type=PluginType(data["type"]),
            description=data.get("description"),
            author=data.get("author"),
            dependencies=tuple(data.get("dependencies", ())),
            optional_dependencies=tuple(data.get("optional_dependencies", ())),
            conflicts=tuple(data.get("conflicts", ())),
            parser=parser,
            components=tuple(_freeze(c) for c in data.get("components", ())),
            assets=AssetConfig(css=tuple(assets_data.get("css", ())), js=tuple(assets_data.get("js", ()))),
            contributes=_freeze(data.get("contributes") or {}),
            settings=_freeze(data.get("settings") or {}),
        )


# ----------------------------------------------------------------------
# Parsing
# ----------------------------------------------------------------------

_CAMEL_RE = re.compile(r"(?<!^)(?=[A-Z])")

# Keys of these mappings are plugin-authored data, never renamed.
_OPAQUE_KEYS = {"settings"}


def _snake(name: str) -> str:
    return _CAMEL_RE.sub("_", name).lower()


def _snake_keys(data: Mapping[str, Any]) -> Dict[str, Any]:
    return {_snake(k) if isinstance(k, str) else k: v for k, v in data.items()}


def normalize_manifest_data(data: Mapping[str, Any]) -> Dict[str, Any]:
    """Return a copy of *data* with snake_case keys and list-form dependencies.

    ``dependencies`` may be given as a list of ids or as a mapping
    ``{"plugins": [...], "optional": [...]}``.
    """
    result = _snake_keys(data)

    for key in ("parser", "assets"):
        if isinstance(result.get(key), Mapping):
            result[key] = _snake_keys(result[key])

    deps = result.get("dependencies")
    if isinstance(deps, Mapping):
        deps = _snake_keys(deps)
        result["dependencies"] = list(deps.get("plugins", deps.get("required", [])))
        optional = list(result.get("optional_dependencies") or [])
        optional.extend(d for d in deps.get("optional", []) if d not in optional)
        result["optional_dependencies"] = optional

    contributes = result.get("contributes")
    if isinstance(contributes, Mapping):
        contributes = _snake_keys(contributes)
        extensions = contributes.get("editor_extensions")
        if isinstance(extensions, list):
            contributes["editor_extensions"] = [
                _snake_keys(ext) if isinstance(ext, Mapping) else ext for ext in extensions
            ]
        result["contributes"] = contributes

    for key in _OPAQUE_KEYS:
        if key in data:
            result[key] = data[key]
    return result


def validate_manifest(data: Mapping[str, Any]) -> List[str]:
    """Return every schema violation in a (normalized) manifest mapping."""
    if not isinstance(data, Mapping):
        return ["Manifest must be an object"]
    return validate_against_schema(data, MANIFEST_SCHEMA)


def parse_manifest(data: Mapping[str, Any]) -> PluginManifest:
    """Validate a raw manifest mapping and build a :class:`PluginManifest`.

    Raises:
        PluginValidationError: listing all violations when the data is invalid.
    """
    if not isinstance(data, Mapping):
        raise PluginValidationError("Invalid plugin manifest", validation_errors=["Manifest must be an object"])

    normalized = normalize_manifest_data(data)
    errors = validate_manifest(normalized)
    if errors:
        plugin_id = normalized.get("id") if isinstance(normalized.get("id"), str) else None
        raise PluginValidationError("Invalid plugin manifest", plugin_id=plugin_id, validation_errors=errors)

    manifest = PluginManifest.from_dict(normalized)
    logger.debug("Plugin manifest validated: %s v%s", manifest.id, manifest.version)
    return manifest


def convert_legacy_manifest(data: Mapping[str, Any]) -> Dict[str, Any]:
    """Convert the flat ``framework`` + ``components`` shape into a manifest mapping.

    The id is the framework name, the display name its capitalized form, and
    the type is inferred: hybrid when both code-block languages and
    components are present, parser for languages only, components otherwise.

    Raises:
        PluginValidationError: when the legacy document itself is invalid.
    """
    if not isinstance(data, Mapping):
        raise PluginValidationError("Invalid legacy plugin manifest",
                                    validation_errors=["Manifest must be an object"])
    legacy = _snake_keys(data)
    errors = validate_against_schema(legacy, LEGACY_MANIFEST_SCHEMA)
    if errors:
        plugin_id = legacy.get("framework") if isinstance(legacy.get("framework"), str) else None
        raise PluginValidationError("Invalid legacy plugin manifest", plugin_id=plugin_id,
                                    validation_errors=errors)

    framework = legacy["framework"]
    languages = list(legacy.get("code_block_languages") or [])
    components = list(legacy.get("components") or [])

    if languages and components:
        plugin_type = PluginType.HYBRID
    elif languages:
        plugin_type = PluginType.PARSER
    else:
        plugin_type = PluginType.COMPONENTS

    converted: Dict[str, Any] = {
        "id": framework,
        "name": framework[:1].upper() + framework[1:],
        "version": legacy.get("version", "1.0.0"),
        "type": plugin_type.value,
        "components": components,
    }
    if legacy.get("description"):
        converted["description"] = legacy["description"]
    if languages:
        converted["parser"] = {"code_block_languages": languages}
    if isinstance(legacy.get("assets"), Mapping):
        converted["assets"] = legacy["assets"]
    return converted


# ----------------------------------------------------------------------
# Freezing helpers
# ----------------------------------------------------------------------

def _freeze(value: Any) -> Any:
    if isinstance(value, Mapping):
        return MappingProxyType({k: _freeze(v) for k, v in value.items()})
    if isinstance(value, list):
        return tuple(_freeze(v) for v in value)
    return value


def thaw(value: Any) -> Any:
    """Return a mutable deep copy of a frozen manifest value."""
    if isinstance(value, Mapping):
        return {k: thaw(v) for k, v in value.items()}
    if isinstance(value, tuple):
        return [thaw(v) for v in value]
    return copy.copy(value) if isinstance(value, (list, dict, set)) else value
