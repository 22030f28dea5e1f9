"""Plugins bundled with MD++.

Each bundled plugin module exposes ``MANIFEST`` (a manifest mapping), a
:class:`~mdpp.core.plugins.BasePlugin` subclass and ``ARTIFACTS`` (the
factories its contribution declarations refer to).
"""

from __future__ import annotations

import logging
from typing import List

from mdpp.core.plugins import PluginSystem, parse_manifest

from . import admonitions, mermaid

logger = logging.getLogger(__name__)

BUILTIN_PLUGINS = (
    (mermaid.MANIFEST, mermaid.MermaidPlugin, mermaid.ARTIFACTS),
    (admonitions.MANIFEST, admonitions.AdmonitionsPlugin, admonitions.ARTIFACTS),
)


async def install_builtin_plugins(system: PluginSystem) -> List[str]:
    """Register every bundled plugin with *system*; returns their ids."""
    installed = []
    for data, plugin_class, artifacts in BUILTIN_PLUGINS:
        manifest = parse_manifest(data)
        await system.add_plugin(manifest, instance=plugin_class, artifacts=artifacts)
        installed.append(manifest.id)
    logger.info("Installed built-in plugins: %s", ", ".join(installed))
    return installed
