"""Shared shape of every contribution registry.

A handler keeps, per plugin, the raw declarations it was given and a
resolved projection keyed by the composite id ``"{plugin_id}:{declaration_id}"``.
Consumers (toolbar, export pipeline, preview pane, editor) only ever read the
resolved projection.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar

R = TypeVar("R")

ChangeListener = Callable[[], None]


def composite_id(plugin_id: str, declaration_id: str) -> str:
    return f"{plugin_id}:{declaration_id}"


class BaseContributionHandler(Generic[R]):
    """Declarations keyed by plugin id plus their resolved projection."""

    point: str = ""

    def __init__(self) -> None:
        self._declarations: Dict[str, List[Any]] = {}
        self._resolved: Dict[str, R] = {}
        self._listeners: List[ChangeListener] = []
        self._logger = logging.getLogger(f"{__name__}.{type(self).__name__}")

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, plugin_id: str, declaration: Any) -> Dict[str, R]:
        """Add a declaration and derive its resolved entries.

        Returns the resolved entries keyed by composite id.
        """
        self._declarations.setdefault(plugin_id, []).append(declaration)
        projected = {
            composite_id(plugin_id, decl_id): value
            for decl_id, value in self._project(plugin_id, declaration).items()
        }
        self._resolved.update(projected)
        self._logger.debug("Registered %s contribution(s) for %s: %s",
                           self.point, plugin_id, list(projected))
        self._notify()
        return projected

    def unregister(self, plugin_id: str) -> None:
        """Remove every declaration and resolved entry owned by *plugin_id*."""
        had_declarations = self._declarations.pop(plugin_id, None) is not None
        prefix = composite_id(plugin_id, "")
        owned = [key for key in self._resolved if key.startswith(prefix)]
        for key in owned:
            del self._resolved[key]
        self._on_unregister(plugin_id)
        if had_declarations or owned:
            self._logger.debug("Unregistered %s contributions of %s", self.point, plugin_id)
            self._notify()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_all(self) -> List[R]:
        return list(self._resolved.values())

    def get(self, key: str) -> Optional[R]:
        return self._resolved.get(key)

    def get_declarations(self, plugin_id: str) -> List[Any]:
        return list(self._declarations.get(plugin_id, []))

    def get_plugin_ids(self) -> List[str]:
        """Plugins with declarations, in registration order."""
        return list(self._declarations)

    def has_plugin(self, plugin_id: str) -> bool:
        return plugin_id in self._declarations

    # ------------------------------------------------------------------
    # Change notification
    # ------------------------------------------------------------------

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener()
            except Exception:
                self._logger.exception("%s contribution listener failed", self.point)

    # ------------------------------------------------------------------
    # Hooks for subclasses
    # ------------------------------------------------------------------

    def _project(self, plugin_id: str, declaration: Any) -> Dict[str, R]:
        """Map a declaration to ``{declaration_id: resolved}``."""
        raise NotImplementedError

    def _on_unregister(self, plugin_id: str) -> None:
        pass
