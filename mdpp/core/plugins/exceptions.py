"""Plugin system exception classes.

Every failure raised by the orchestration core derives from
:class:`PluginError`. Errors coming from a plugin's own code are wrapped in
:class:`PluginHookError` at the registry boundary so callers can tell them
apart from dependency or manifest problems.
"""

from __future__ import annotations

from typing import Optional, Sequence


class PluginError(Exception):
    """Base exception for all plugin-related errors.

    Carries the id of the plugin involved (when known) and the original
    exception that caused it.
    """

    def __init__(self, message: str, plugin_id: Optional[str] = None,
                 cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.plugin_id = plugin_id
        self.cause = cause

    @property
    def message(self) -> str:
        return super().__str__()

    def __str__(self) -> str:
        if self.plugin_id:
            return f"[Plugin: {self.plugin_id}] {self.message}"
        return self.message


class PluginNotFoundError(PluginError):
    """Raised when an operation names a plugin that is not registered."""

    def __init__(self, plugin_id: str) -> None:
        super().__init__("Plugin is not registered", plugin_id)


class PluginValidationError(PluginError):
    """Raised when a manifest or contribution declaration is malformed.

    ``validation_errors`` lists every violation found, not just the first.
    """

    def __init__(self, message: str, plugin_id: Optional[str] = None,
                 validation_errors: Optional[Sequence[str]] = None,
                 cause: Optional[BaseException] = None) -> None:
        super().__init__(message, plugin_id, cause)
        self.validation_errors = list(validation_errors or [])

    def __str__(self) -> str:
        base = super().__str__()
        if self.validation_errors:
            return f"{base}: {'; '.join(self.validation_errors)}"
        return base


class PluginDependencyError(PluginError):
    """Raised when dependency requirements block a lifecycle transition.

    On activation ``missing_dependencies`` names the required plugins that
    are not registered. On deactivation ``dependents`` names the active
    plugins that still require this one.
    """

    def __init__(self, message: str, plugin_id: Optional[str] = None,
                 missing_dependencies: Optional[Sequence[str]] = None,
                 dependents: Optional[Sequence[str]] = None,
                 cause: Optional[BaseException] = None) -> None:
        super().__init__(message, plugin_id, cause)
        self.missing_dependencies = list(missing_dependencies or [])
        self.dependents = list(dependents or [])


class PluginConflictError(PluginError):
    """Raised when plugins declared as mutually exclusive would be active together."""

    def __init__(self, message: str, plugin_id: Optional[str] = None,
                 conflicts: Optional[Sequence[str]] = None,
                 cause: Optional[BaseException] = None) -> None:
        super().__init__(message, plugin_id, cause)
        self.conflicts = list(conflicts or [])


class PluginCycleError(PluginError):
    """Raised when the dependency graph contains a circular chain."""

    def __init__(self, message: str, plugin_id: Optional[str] = None,
                 cycles: Optional[Sequence[Sequence[str]]] = None,
                 cause: Optional[BaseException] = None) -> None:
        super().__init__(message, plugin_id, cause)
        self.cycles = [list(c) for c in (cycles or [])]


class PluginHookError(PluginError):
    """Raised when a plugin's own lifecycle or settings hook fails.

    The plugin is left in the ``error`` state and the message is stored on
    its registry entry.
    """

    def __init__(self, message: str, plugin_id: Optional[str] = None,
                 hook: Optional[str] = None,
                 cause: Optional[BaseException] = None) -> None:
        super().__init__(message, plugin_id, cause)
        self.hook = hook


class PluginLoadError(PluginError):
    """Raised when a plugin artifact cannot be loaded or has the wrong shape.

    The deduplicated loaders log this and treat the feature as absent.
    """

    def __init__(self, message: str, plugin_id: Optional[str] = None,
                 reference: Optional[str] = None,
                 cause: Optional[BaseException] = None) -> None:
        super().__init__(message, plugin_id, cause)
        self.reference = reference


class PluginStateError(PluginError):
    """Raised when a plugin is in the wrong lifecycle state for an operation."""

    def __init__(self, message: str, plugin_id: Optional[str] = None,
                 current_state: Optional[str] = None,
                 expected_state: Optional[str] = None) -> None:
        super().__init__(message, plugin_id)
        self.current_state = current_state
        self.expected_state = expected_state
