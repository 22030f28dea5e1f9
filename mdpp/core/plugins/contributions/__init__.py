"""Contribution registries.

Each registry accepts declarative contributions keyed by plugin id, derives
a resolved projection keyed ``plugin:declaration`` and supports removing a
plugin's contributions at runtime.
"""

from .base import BaseContributionHandler, composite_id
from .editor import EditorContributionHandler, EditorExtension
from .export import ExportAssets, ExportBundle, ExportContributionHandler
from .preview import PreviewContext, PreviewContributionHandler, PreviewRenderer
from .registry import (
    CONTRIBUTES_KEYS,
    ContributionRegistry,
    DeclarationHandler,
    ParserContributionHandler,
)
from .toolbar import (
    DEFAULT_COMMAND_ARG_RULES,
    CommandArgRule,
    ToolbarContributionHandler,
    ToolbarGroup,
    ToolbarItem,
)

__all__ = [
    "BaseContributionHandler",
    "composite_id",
    "ContributionRegistry",
    "DeclarationHandler",
    "ParserContributionHandler",
    "CONTRIBUTES_KEYS",
    "ToolbarContributionHandler",
    "ToolbarGroup",
    "ToolbarItem",
    "CommandArgRule",
    "DEFAULT_COMMAND_ARG_RULES",
    "ExportContributionHandler",
    "ExportAssets",
    "ExportBundle",
    "PreviewContributionHandler",
    "PreviewContext",
    "PreviewRenderer",
    "EditorContributionHandler",
    "EditorExtension",
]
