"""Shared fixtures for the MD++ plugin core tests.

Provides manifest builders, fresh registries and a recording plugin
implementation whose hooks log every call so lifecycle order can be
asserted.
"""

import logging
from typing import Any, Dict, List, Optional

import pytest

from mdpp.core.plugins import (
    ArtifactTable,
    BasePlugin,
    PluginContext,
    PluginRegistry,
    PluginSystem,
    parse_manifest,
)

logging.basicConfig(
    level=logging.DEBUG,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)


class RecordingPlugin(BasePlugin):
    """Plugin whose hooks append ``"<id>:<hook>"`` to a shared log."""

    def __init__(self, manifest=None, log: Optional[List[str]] = None,
                 fail_on: Optional[set] = None, api: Any = None):
        super().__init__(manifest)
        self.log = log if log is not None else []
        self.fail_on = fail_on or set()
        self.api = api
        self.context: Optional[PluginContext] = None
        self.received_settings: List[Dict[str, Any]] = []

    def _record(self, hook: str) -> None:
        self.log.append(f"{self.id}:{hook}")
        if hook in self.fail_on:
            raise RuntimeError(f"{hook} exploded")

    async def activate(self, context: PluginContext) -> None:
        self.context = context
        self._record("activate")

    def deactivate(self) -> None:
        self._record("deactivate")

    def on_settings_change(self, settings: Dict[str, Any]) -> None:
        self.received_settings.append(settings)
        self._record("settings")


def build_manifest(plugin_id: str, **fields: Any):
    """Parse a minimal valid manifest, overriding any field."""
    data = {
        "id": plugin_id,
        "name": plugin_id.capitalize(),
        "version": "1.0.0",
        "type": "components",
    }
    data.update(fields)
    return parse_manifest(data)


@pytest.fixture
def make_manifest():
    """Provides the manifest builder."""
    return build_manifest


@pytest.fixture
def call_log() -> List[str]:
    """Shared hook call log."""
    return []


@pytest.fixture
def make_plugin(call_log):
    """Creates RecordingPlugin instances writing to ``call_log``."""
    def factory(manifest, **kwargs):
        kwargs.setdefault("log", call_log)
        return RecordingPlugin(manifest, **kwargs)
    return factory


@pytest.fixture
def registry() -> PluginRegistry:
    """Creates a fresh PluginRegistry."""
    return PluginRegistry()


@pytest.fixture
def artifact_table() -> ArtifactTable:
    """Creates an ArtifactTable without import fallback."""
    return ArtifactTable()


@pytest.fixture
def system(artifact_table) -> PluginSystem:
    """Creates a PluginSystem using default configuration values."""
    return PluginSystem(artifacts=artifact_table)
