"""Top-level package for the MD++ plugin orchestration core.

Front-ends (editor shell, export command, preview pane) should depend on the
public API exposed by :mod:`mdpp.core.plugins` rather than importing internal
modules directly.
"""

from .core.plugins import PluginSystem, create_plugin_system

__all__: list[str] = [
    "PluginSystem",
    "create_plugin_system",
]
