"""Integration tests for the initializer and the composed plugin system."""

import json
from unittest.mock import Mock

import pytest
from lxml import html as lxml_html

from mdpp.config import ConfigManager
from mdpp.core.plugins import PluginDependencyError, PluginSystem, create_plugin_system
from mdpp.plugins import install_builtin_plugins
from mdpp.plugins.mermaid import MERMAID_CDN

ADMONITION_PREVIEW = (
    '<div id="preview">'
    '<div class="admonition admonition-note"><p class="admonition-title">Note</p><p>Body</p></div>'
    '</div>'
)


@pytest.mark.integration
class TestPluginSystemLifecycle:
    """Test enabling and disabling the bundled plugins end to end."""

    @pytest.mark.asyncio
    async def test_start_enables_contributions(self, system):
        """Test that start activates plugins and fills every registry."""
        await install_builtin_plugins(system)

        results = await system.start(["mermaid", "admonitions"])

        assert results == {"mermaid": True, "admonitions": True}
        assert system.registry.get_active_ids() == ["mermaid", "admonitions"]
        note = system.toolbar.get_item("admonitions:callout-note")
        assert note.args == {"type": "note"}
        assert system.toolbar.get_item("mermaid:insert-diagram").command == "setMermaid"
        assert system.export.get_loaded_assets().keys() == {"mermaid", "admonitions"}
        assert system.preview.get_loaded_renderer("admonitions").priority == 80
        assert system.editor.get_extension("mermaid:mermaidBlock").loaded
        assert system.contributions.get_plugin_for_language("mermaid") == "mermaid"

        state = system.initializer.get_init_state("admonitions")
        assert state.enabled
        assert state.registered_points == ["toolbar", "export", "preview", "toolbar-items",
                                           "export-assets", "preview-renderer"]

    @pytest.mark.asyncio
    async def test_disable_then_enable_restores_identical_ids(self, system):
        """Test that contributions come back under the same composite ids."""
        await install_builtin_plugins(system)
        await system.start(["mermaid", "admonitions"])
        before = sorted(item.id for item in system.toolbar.get_all())

        await system.disable("admonitions")

        assert not any(item.plugin_id == "admonitions" for item in system.toolbar.get_all())
        assert system.toolbar.get_group("callout") is None
        assert not system.registry.is_active("admonitions")

        assert await system.enable("admonitions")

        assert sorted(item.id for item in system.toolbar.get_all()) == before
        assert system.registry.is_active("admonitions")

    @pytest.mark.asyncio
    async def test_preview_render_and_reset_on_disable(self, system):
        """Test that disabling with a container restores the original preview markup."""
        await install_builtin_plugins(system)
        await system.start(["admonitions"])
        container = lxml_html.fromstring(ADMONITION_PREVIEW)

        assert await system.render_preview(container) == 1
        block = container.cssselect(".admonition")[0]
        assert block.get("data-admonition-processed") == "true"
        assert len(container.cssselect(".admonition-title .admonition-icon")) == 1

        await system.disable("admonitions", container)

        block = container.cssselect(".admonition")[0]
        assert block.get("data-admonition-processed") is None
        assert container.cssselect(".admonition-icon") == []
        assert [p.text for p in block] == ["Note", "Body"]

    @pytest.mark.asyncio
    async def test_export_bundle(self, system):
        """Test that export assets follow document content and enabled plugins."""
        await install_builtin_plugins(system)
        await system.start(["mermaid", "admonitions"])

        diagram = system.build_export_bundle('<pre class="mermaid">graph TD</pre>')
        plain = system.build_export_bundle("<p>text</p>")

        assert diagram.plugins == ["mermaid"]
        assert diagram.js == [MERMAID_CDN]
        assert "theme: 'default'" in diagram.init_scripts[0]
        assert 'securityLevel: "loose"' in diagram.init_scripts[0]
        assert plain.plugins == []

        await system.disable("mermaid")
        assert system.build_export_bundle('<pre class="mermaid">graph TD</pre>').plugins == []

    @pytest.mark.asyncio
    async def test_pipeline_and_api(self, system):
        """Test the mermaid code-block handler and public API through the system."""
        await install_builtin_plugins(system)
        await system.start(["mermaid"])

        handler = system.pipeline.build().code_block_handlers["mermaid"]

        assert handler("A --> B<C") == '<pre class="mermaid">A --&gt; B&lt;C</pre>'
        assert "flowchart" in system.registry.get_plugin_api("mermaid").get_diagram_types()

        await system.registry.set_settings("mermaid", {"security_level": "strict"})
        assert system.registry.get_plugin_api("mermaid").get_settings()["security_level"] == "strict"

    @pytest.mark.asyncio
    async def test_disable_with_active_dependent(self, system, make_manifest):
        """Test that a required plugin cannot be disabled under an active dependent."""
        await install_builtin_plugins(system)
        await system.add_plugin(make_manifest("flowcharts", dependencies=["mermaid"]))
        await system.enable("flowcharts")

        assert system.registry.get_active_ids() == ["mermaid", "flowcharts"]
        assert system.initializer.is_enabled("mermaid")

        with pytest.raises(PluginDependencyError) as exc_info:
            await system.disable("mermaid")

        assert exc_info.value.dependents == ["flowcharts"]
        assert system.initializer.is_enabled("mermaid")

    @pytest.mark.asyncio
    async def test_shutdown(self, system):
        """Test that shutdown removes contributions and clears the registry."""
        await install_builtin_plugins(system)
        await system.start(["mermaid", "admonitions"])

        await system.shutdown()

        assert system.toolbar.get_all() == []
        assert system.initializer.get_enabled_plugins() == []
        assert system.registry.get_all() == []

    def test_independent_systems(self):
        """Test that two systems share no state."""
        first = PluginSystem()
        second = PluginSystem()

        first.toolbar.register("p", {"items": [{"id": "x", "command": "run"}]})

        assert second.toolbar.get_all() == []
        assert first.registry is not second.registry


@pytest.mark.integration
class TestPartialEnable:
    """Test best-effort enabling when one registry rejects a declaration."""

    @pytest.fixture
    def broken_manifest(self, make_manifest):
        return make_manifest("broken", contributes={
            "toolbar": {"items": [{"id": "x", "command": "run", "args": ["not", "a", "mapping"]}]},
            "exportAssets": {"module": "export"},
            "sidebar": [{"id": "panel", "title": "Panel"}],
        })

    def test_failure_records_points_without_rollback(self, system, broken_manifest):
        """Test that earlier registrations survive and the error is recorded."""
        listener = Mock()
        system.initializer.subscribe(listener)
        system.initializer.load_plugin(broken_manifest)

        assert not system.initializer.enable_plugin("broken")

        state = system.initializer.get_init_state("broken")
        assert not state.enabled
        assert state.error
        assert state.registered_points == ["toolbar", "export", "sidebar"]
        assert system.contributions.get_contributions("sidebar") == [{"id": "panel", "title": "Panel"}]
        assert not system.export.has_plugin("broken")
        listener.assert_not_called()

    def test_disable_cleans_up_after_failure(self, system, broken_manifest):
        """Test that disabling removes the partial registrations."""
        system.initializer.load_plugin(broken_manifest)
        system.initializer.enable_plugin("broken")

        assert system.initializer.disable_plugin("broken")

        assert system.contributions.get_contributions("sidebar") == []
        assert not system.toolbar.has_plugin("broken")
        assert system.initializer.get_init_state("broken").registered_points == []

    def test_retry_does_not_duplicate(self, system, broken_manifest):
        """Test that a second failed attempt starts from a clean slate."""
        system.initializer.load_plugin(broken_manifest)
        system.initializer.enable_plugin("broken")
        system.initializer.enable_plugin("broken")

        assert len(system.contributions.get_handler("sidebar").get_declarations("broken")) == 1

    def test_unknown_plugin(self, system):
        """Test enabling and disabling ids that were never loaded."""
        assert not system.initializer.enable_plugin("ghost")
        assert not system.initializer.disable_plugin("ghost")


@pytest.mark.integration
class TestCreatePluginSystem:
    """Test building a system from configuration."""

    def test_discovers_configured_directories(self, tmp_path):
        """Test that plugin_dirs from the user config are scanned."""
        plugins_dir = tmp_path / "plugins"
        (plugins_dir / "katex").mkdir(parents=True)
        (plugins_dir / "katex" / "plugin.json").write_text(json.dumps({
            "id": "katex", "name": "KaTeX", "version": "0.16.0", "type": "parser",
        }), encoding="utf-8")
        config_dir = tmp_path / "config"
        config_dir.mkdir()
        (config_dir / "plugins.yml").write_text(
            f"theme: dark\nplugin_dirs:\n  - {plugins_dir.as_posix()}\n", encoding="utf-8")

        system = create_plugin_system(ConfigManager(config_dir))

        assert system.registry.has("katex")
        assert system.registry.get("katex").path == str(plugins_dir / "katex")
        assert system.theme == "dark"
        assert system.default_enabled == ["mermaid", "admonitions"]

    @pytest.mark.asyncio
    async def test_start_uses_configured_defaults(self, tmp_path):
        """Test that start() without ids enables the configured plugins."""
        system = create_plugin_system(ConfigManager(tmp_path))
        await install_builtin_plugins(system)

        results = await system.start()

        assert results == {"mermaid": True, "admonitions": True}
