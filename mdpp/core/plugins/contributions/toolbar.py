"""Toolbar contribution registry.

Plugins declare toolbar groups and items. Items are resolved into
:class:`ToolbarItem` records keyed ``plugin:item`` with their icon reference
looked up in an icon table supplied by the host. Items declared before the
table is available are backfilled once :meth:`ToolbarContributionHandler.set_icon_table`
is called.

Command arguments are never guessed from item ids. They come from an
explicit table of :class:`CommandArgRule` entries, one per
``(plugin, command)`` pair.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Pattern, Tuple

from ..manifest import DEFAULT_PRIORITY
from .base import BaseContributionHandler, composite_id


@dataclass(frozen=True)
class CommandArgRule:
    """Derives command arguments from the id of a toolbar item.

    The named groups of ``pattern`` matched against the item id become the
    arguments.
    """

    plugin_id: str
    command: str
    pattern: Pattern[str]

    @classmethod
    def from_config(cls, data: Mapping[str, Any]) -> "CommandArgRule":
        return cls(data["plugin"], data["command"], re.compile(data["pattern"]))

    def derive(self, item_id: str) -> Dict[str, str]:
        match = self.pattern.match(item_id)
        return match.groupdict() if match else {}


DEFAULT_COMMAND_ARG_RULES: Tuple[CommandArgRule, ...] = (
    CommandArgRule("admonitions", "toggleAdmonition", re.compile(r"^callout-(?P<type>\w+)$")),
)


@dataclass
class ToolbarGroup:
    id: str
    plugin_id: str
    label: str
    priority: int = DEFAULT_PRIORITY


@dataclass
class ToolbarItem:
    """A toolbar button as consumed by the toolbar UI."""

    id: str
    plugin_id: str
    item_id: str
    command: str
    group: str
    label: str
    priority: int = DEFAULT_PRIORITY
    tooltip: Optional[str] = None
    shortcut: Optional[str] = None
    when: Optional[str] = None
    icon: Any = None
    icon_name: Optional[str] = None
    args: Dict[str, Any] = field(default_factory=dict)

    @property
    def icon_resolved(self) -> bool:
        return self.icon is not None


class ToolbarContributionHandler(BaseContributionHandler[ToolbarItem]):
    """Resolves toolbar declarations (``{"items": [...], "groups": [...]}``)."""

    point = "toolbar"

    def __init__(self, icon_table: Optional[Mapping[str, Any]] = None,
                 command_arg_rules: Iterable[CommandArgRule] = DEFAULT_COMMAND_ARG_RULES) -> None:
        super().__init__()
        self._icon_table: Optional[Mapping[str, Any]] = icon_table
        self._rules: Dict[Tuple[str, str], CommandArgRule] = {}
        for rule in command_arg_rules:
            self.add_command_arg_rule(rule)
        self._groups: Dict[str, ToolbarGroup] = {}

    # ------------------------------------------------------------------
    # Icon and argument tables
    # ------------------------------------------------------------------

    def set_icon_table(self, icon_table: Mapping[str, Any]) -> int:
        """Install the icon table and backfill unresolved items.

        Returns the number of items that received an icon.
        """
        self._icon_table = icon_table
        filled = 0
        for item in self._resolved.values():
            if item.icon is None and item.icon_name and item.icon_name in icon_table:
                item.icon = icon_table[item.icon_name]
                filled += 1
        if filled:
            self._logger.debug("Backfilled %d toolbar icon(s)", filled)
            self._notify()
        return filled

    def add_command_arg_rule(self, rule: CommandArgRule) -> None:
        self._rules[(rule.plugin_id, rule.command)] = rule

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_groups(self) -> List[ToolbarGroup]:
        return sorted(self._groups.values(), key=lambda g: g.priority)

    def get_group(self, group_id: str) -> Optional[ToolbarGroup]:
        return self._groups.get(group_id)

    def get_items_for_group(self, group_id: str) -> List[ToolbarItem]:
        items = [item for item in self._resolved.values() if item.group == group_id]
        return sorted(items, key=lambda i: i.priority)

    def get_item(self, key: str) -> Optional[ToolbarItem]:
        return self._resolved.get(key)

    # ------------------------------------------------------------------
    # Projection
    # ------------------------------------------------------------------

    def _project(self, plugin_id: str, declaration: Any) -> Dict[str, ToolbarItem]:
        for group in declaration.get("groups", ()) or ():
            self._add_group(plugin_id, group)

        items: Dict[str, ToolbarItem] = {}
        for decl in declaration.get("items", ()) or ():
            item = self._resolve_item(plugin_id, decl)
            items[item.item_id] = item
        return items

    def _add_group(self, plugin_id: str, decl: Mapping[str, Any]) -> None:
        group_id = decl["id"]
        owner = self._groups.get(group_id)
        if owner is not None and owner.plugin_id != plugin_id:
            self._logger.debug("Toolbar group %s already owned by %s", group_id, owner.plugin_id)
            return
        self._groups[group_id] = ToolbarGroup(
            id=group_id,
            plugin_id=plugin_id,
            label=decl.get("label", group_id),
            priority=decl.get("priority", DEFAULT_PRIORITY),
        )

    def _resolve_item(self, plugin_id: str, decl: Mapping[str, Any]) -> ToolbarItem:
        item_id = decl["id"]
        command = decl["command"]

        icon_ref = decl.get("icon")
        icon_name = icon_ref if isinstance(icon_ref, str) else None
        icon = icon_ref if icon_name is None else None
        if icon_name and self._icon_table is not None:
            icon = self._icon_table.get(icon_name)
            if icon is None:
                self._logger.warning("Unknown toolbar icon '%s' for %s",
                                     icon_name, composite_id(plugin_id, item_id))

        args: Dict[str, Any] = {}
        rule = self._rules.get((plugin_id, command))
        if rule is not None:
            args.update(rule.derive(item_id))
        args.update(decl.get("args") or {})

        return ToolbarItem(
            id=composite_id(plugin_id, item_id),
            plugin_id=plugin_id,
            item_id=item_id,
            command=command,
            group=decl.get("group", "default"),
            label=decl.get("label", item_id),
            priority=decl.get("priority", DEFAULT_PRIORITY),
            tooltip=decl.get("tooltip"),
            shortcut=decl.get("shortcut"),
            when=decl.get("when"),
            icon=icon,
            icon_name=icon_name,
            args=args,
        )

    def _on_unregister(self, plugin_id: str) -> None:
        for group_id in [g for g, group in self._groups.items() if group.plugin_id == plugin_id]:
            del self._groups[group_id]
