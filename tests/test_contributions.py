"""Tests for the contribution registries."""

from unittest.mock import Mock

import pytest
from lxml import html as lxml_html

from mdpp.core.plugins import PluginValidationError
from mdpp.core.plugins.contributions import (
    CommandArgRule,
    ContributionRegistry,
    EditorContributionHandler,
    ExportAssets,
    ExportContributionHandler,
    PreviewContext,
    PreviewContributionHandler,
    ToolbarContributionHandler,
)
from mdpp.core.plugins.contributions.export import ExportBundle

CALLOUTS = {
    "groups": [{"id": "callout", "label": "Callouts", "priority": 45}],
    "items": [
        {"id": "callout-note", "command": "toggleAdmonition", "group": "callout", "priority": 0,
         "icon": "Info", "label": "Note"},
        {"id": "callout-tip", "command": "toggleAdmonition", "group": "callout", "priority": 1,
         "icon": "Lightbulb"},
    ],
}


class TestToolbarContributions:
    """Test toolbar item resolution."""

    def test_items_are_keyed_by_composite_id(self):
        """Test composite ids, defaults and derived command arguments."""
        handler = ToolbarContributionHandler()

        resolved = handler.register("admonitions", CALLOUTS)

        assert sorted(resolved) == ["admonitions:callout-note", "admonitions:callout-tip"]
        note = handler.get_item("admonitions:callout-note")
        assert note.args == {"type": "note"}
        assert note.label == "Note"
        assert handler.get_item("admonitions:callout-tip").label == "callout-tip"
        assert [i.item_id for i in handler.get_items_for_group("callout")] == ["callout-note", "callout-tip"]

    def test_args_only_derived_for_matching_rule(self):
        """Test that arguments are never guessed for commands without a rule."""
        handler = ToolbarContributionHandler()

        handler.register("other", {"items": [{"id": "callout-note", "command": "toggleAdmonition"}]})

        assert handler.get_item("other:callout-note").args == {}

    def test_declared_args_override_derived(self):
        """Test that explicit args win over rule-derived ones."""
        handler = ToolbarContributionHandler()

        handler.register("admonitions", {"items": [
            {"id": "callout-note", "command": "toggleAdmonition", "args": {"type": "custom", "fold": True}},
        ]})

        assert handler.get_item("admonitions:callout-note").args == {"type": "custom", "fold": True}

    def test_rule_from_config(self):
        """Test rules built from configuration mappings."""
        rule = CommandArgRule.from_config({"plugin": "math", "command": "insertMath",
                                           "pattern": r"^math-(?P<mode>\w+)$"})
        handler = ToolbarContributionHandler(command_arg_rules=[rule])

        handler.register("math", {"items": [{"id": "math-block", "command": "insertMath"}]})

        assert handler.get_item("math:math-block").args == {"mode": "block"}

    def test_icons_resolved_and_backfilled(self):
        """Test icon lookup at registration and backfill once the table arrives."""
        handler = ToolbarContributionHandler()
        handler.register("admonitions", CALLOUTS)
        note = handler.get_item("admonitions:callout-note")
        assert not note.icon_resolved
        assert note.icon_name == "Info"

        filled = handler.set_icon_table({"Info": "<svg info/>"})

        assert filled == 1
        assert note.icon == "<svg info/>"
        assert handler.get_item("admonitions:callout-tip").icon is None

        handler.register("mermaid", {"items": [{"id": "insert-diagram", "command": "setMermaid",
                                                "icon": "Info"}]})
        assert handler.get_item("mermaid:insert-diagram").icon == "<svg info/>"

    def test_non_string_icon_passes_through(self):
        """Test that icon objects are used as-is."""
        icon = object()
        handler = ToolbarContributionHandler(icon_table={})

        handler.register("p", {"items": [{"id": "x", "command": "run", "icon": icon}]})

        assert handler.get_item("p:x").icon is icon

    def test_groups_first_owner_wins(self):
        """Test group ownership and ordering."""
        handler = ToolbarContributionHandler()
        handler.register("admonitions", CALLOUTS)
        handler.register("other", {"groups": [{"id": "callout", "label": "Hijacked"},
                                              {"id": "insert", "priority": 10}]})

        assert handler.get_group("callout").label == "Callouts"
        assert [g.id for g in handler.get_groups()] == ["insert", "callout"]

    def test_unregister_removes_everything(self):
        """Test that unregistering leaves no trace and notifies listeners."""
        listener = Mock()
        handler = ToolbarContributionHandler()
        handler.register("admonitions", CALLOUTS)
        handler.subscribe(listener)

        handler.unregister("admonitions")

        assert handler.get_all() == []
        assert handler.get_groups() == []
        assert not handler.has_plugin("admonitions")
        listener.assert_called_once_with()

    def test_unregister_does_not_touch_other_plugins(self):
        """Test that prefix removal is scoped to the plugin id."""
        handler = ToolbarContributionHandler()
        handler.register("a", {"items": [{"id": "x", "command": "run"}]})
        handler.register("ab", {"items": [{"id": "x", "command": "run"}]})

        handler.unregister("a")

        assert [item.id for item in handler.get_all()] == ["ab:x"]


def _needs_marker(document):
    return "marker" in document


class TestExportContributions:
    """Test export asset loading and bundle assembly."""

    @pytest.fixture
    def handler(self, artifact_table):
        artifact_table.register("mermaid", "export", lambda: {
            "js": ["https://cdn.example/mermaid.js"],
            "inlineStyles": ".mermaid{}",
            "initScript": lambda settings, theme: f"init('{theme}', '{settings.get('level', 'loose')}')",
            "isNeeded": _needs_marker,
        })
        artifact_table.register("admonitions", "export", lambda: ExportAssets(
            css=["https://cdn.example/shared.css"], inline_styles=".admonition{}"))
        handler = ExportContributionHandler(artifact_table)
        handler.register("mermaid", {"module": "export"})
        handler.register("admonitions", {"module": "export"})
        return handler

    @pytest.mark.asyncio
    async def test_load_assets_accepts_mappings(self, handler):
        """Test that camelCase asset mappings are coerced."""
        assets = await handler.load_assets("mermaid")

        assert isinstance(assets, ExportAssets)
        assert assets.inline_styles == ".mermaid{}"
        assert callable(assets.is_needed)

    @pytest.mark.asyncio
    async def test_bundle_respects_is_needed(self, handler):
        """Test that plugins whose predicate rejects the document are left out."""
        await handler.load_all()

        with_marker = handler.build_bundle("<p>marker</p>", ["mermaid", "admonitions"],
                                           {"mermaid": {"level": "strict"}}, theme="dark")
        without = handler.build_bundle("<p>plain</p>", ["mermaid", "admonitions"])

        assert with_marker.plugins == ["mermaid", "admonitions"]
        assert with_marker.js == ["https://cdn.example/mermaid.js"]
        assert with_marker.init_scripts == ["init('dark', 'strict')"]
        assert without.plugins == ["admonitions"]
        assert without.js == []

    @pytest.mark.asyncio
    async def test_disabled_plugins_never_contribute(self, handler):
        """Test that only enabled plugins appear in the bundle."""
        await handler.load_all()

        bundle = handler.build_bundle("<p>marker</p>", ["admonitions"])

        assert bundle.plugins == ["admonitions"]

    @pytest.mark.asyncio
    async def test_failing_predicate_skips_plugin(self, artifact_table):
        """Test that an exploding is_needed only drops its own plugin."""
        def broken(document):
            raise RuntimeError("bad predicate")

        artifact_table.register("bad", "export", lambda: ExportAssets(js=["bad.js"], is_needed=broken))
        artifact_table.register("good", "export", lambda: ExportAssets(js=["good.js"]))
        handler = ExportContributionHandler(artifact_table)
        handler.register("bad", {"module": "export"})
        handler.register("good", {"module": "export"})
        await handler.load_all()

        bundle = handler.build_bundle("<p/>", ["bad", "good"])

        assert bundle.js == ["good.js"]

    @pytest.mark.asyncio
    async def test_malformed_assets_are_absent(self, artifact_table):
        """Test that invalid asset modules load as None."""
        artifact_table.register("p", "export", lambda: {"initScript": "not callable"})
        handler = ExportContributionHandler(artifact_table)
        handler.register("p", {"module": "export"})

        assert await handler.load_assets("p") is None
        assert handler.get_loaded_assets() == {}

    @pytest.mark.asyncio
    async def test_unregister_forgets_loaded_assets(self, handler):
        """Test that unregistering drops the cached assets."""
        await handler.load_all()

        handler.unregister("mermaid")

        assert list(handler.get_loaded_assets()) == ["admonitions"]

    def test_head_html(self):
        """Test stylesheet links and the inline style block, with escaping."""
        bundle = ExportBundle(css=["a.css?x=1&y=2"], inline_styles=["p{}", "b{}"])

        assert ExportContributionHandler.generate_head_html(bundle) == (
            '<link rel="stylesheet" href="a.css?x=1&amp;y=2">\n'
            "<style>\n"
            "p{}\n\nb{}\n"
            "</style>"
        )

    def test_scripts_html(self):
        """Test script tags and the guarded DOMContentLoaded init block."""
        bundle = ExportBundle(js=['x.js"onload="alert(1)'], init_scripts=["init()"])

        assert ExportContributionHandler.generate_scripts_html(bundle) == (
            '<script src="x.js&quot;onload=&quot;alert(1)"></script>\n'
            "<script>\n"
            'document.addEventListener("DOMContentLoaded", function() {\n'
            "  try { init() } catch(e) { console.error('Init script error:', e); }\n"
            "});\n"
            "</script>"
        )

    def test_empty_bundle_html(self):
        """Test that an empty bundle produces no markup."""
        bundle = ExportBundle()

        assert ExportContributionHandler.generate_head_html(bundle) == ""
        assert ExportContributionHandler.generate_scripts_html(bundle) == ""


PREVIEW_HTML = """
<div id="preview">
  <div class="box">one</div>
  <div class="box">two</div>
  <p class="note">three</p>
</div>
"""


class TestPreviewContributions:
    """Test preview renderer loading, rendering and reset."""

    @pytest.fixture
    def container(self):
        return lxml_html.fromstring(PREVIEW_HTML)

    def _register(self, artifact_table, handler, plugin_id, renderer):
        artifact_table.register(plugin_id, "preview", lambda: renderer)
        handler.register(plugin_id, {"module": "preview"})

    @pytest.mark.asyncio
    async def test_render_matched_elements(self, artifact_table, container):
        """Test that render receives the elements matching the selectors."""
        render = Mock()
        handler = PreviewContributionHandler(artifact_table)
        self._register(artifact_table, handler, "boxes", {"selectors": [".box"], "render": render})
        await handler.load_all()
        context = PreviewContext(enabled_plugins=["boxes"])

        ran = await handler.render_all(container, context)

        assert ran == 1
        elements, passed_context = render.call_args[0]
        assert [el.text for el in elements] == ["one", "two"]
        assert passed_context is context

    @pytest.mark.asyncio
    async def test_priority_order_and_isolation(self, artifact_table, container):
        """Test highest priority first, async renderers and error isolation."""
        order = []

        async def high(elements, context):
            order.append("high")

        def broken(elements, context):
            order.append("broken")
            raise RuntimeError("renderer bug")

        def low(elements, context):
            order.append("low")

        handler = PreviewContributionHandler(artifact_table)
        self._register(artifact_table, handler, "low", {"selectors": ["p"], "render": low, "priority": 10})
        self._register(artifact_table, handler, "high", {"selectors": ["p"], "render": high, "priority": 90})
        self._register(artifact_table, handler, "broken", {"selectors": ["p"], "render": broken,
                                                           "priority": 50})
        await handler.load_all()

        ran = await handler.render_all(container, PreviewContext(enabled_plugins=["low", "high", "broken"]))

        assert order == ["high", "broken", "low"]
        assert ran == 2

    @pytest.mark.asyncio
    async def test_unmatched_and_disabled_renderers_do_not_run(self, artifact_table, container):
        """Test that renderers run only for enabled plugins with matches."""
        unmatched = Mock()
        disabled = Mock()
        handler = PreviewContributionHandler(artifact_table)
        self._register(artifact_table, handler, "unmatched", {"selectors": ["table"], "render": unmatched})
        self._register(artifact_table, handler, "disabled", {"selectors": ["p"], "render": disabled})
        await handler.load_all()

        ran = await handler.render_all(container, PreviewContext(enabled_plugins=["unmatched"]))

        assert ran == 0
        unmatched.assert_not_called()
        disabled.assert_not_called()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("renderer", [
        {"selectors": [], "render": lambda e, c: None},
        {"selectors": ["p"]},
        {"selectors": ["[["], "render": lambda e, c: None},
        {"selectors": ["p"], "render": lambda e, c: None, "reset": "nope"},
    ])
    async def test_invalid_renderers_are_absent(self, artifact_table, renderer):
        """Test that malformed renderers load as None."""
        handler = PreviewContributionHandler(artifact_table)
        self._register(artifact_table, handler, "bad", renderer)

        assert await handler.load_renderer("bad") is None

    @pytest.mark.asyncio
    async def test_reset(self, artifact_table, container):
        """Test resetting one plugin and sweeping disabled plugins."""
        reset_a = Mock()
        reset_b = Mock()
        handler = PreviewContributionHandler(artifact_table)
        self._register(artifact_table, handler, "a", {"selectors": [".box"], "render": Mock(),
                                                      "reset": reset_a})
        self._register(artifact_table, handler, "b", {"selectors": [".note"], "render": Mock(),
                                                      "reset": reset_b})
        self._register(artifact_table, handler, "c", {"selectors": [".note"], "render": Mock()})
        await handler.load_all()

        assert handler.reset_plugin("a", container)
        assert len(reset_a.call_args[0][0]) == 2
        assert handler.reset_disabled_plugins(container, ["a"]) == ["b"]
        assert handler.get_all_selectors() == [".box", ".note"]

    def test_styles_of_enabled_plugins(self, artifact_table):
        """Test declared preview styles filtered by enabled plugins."""
        handler = PreviewContributionHandler(artifact_table)
        handler.register("a", {"module": "preview", "styles": ["a.css", "shared.css"]})
        handler.register("b", {"renderer": "preview", "styles": ["shared.css", "b.css"]})

        assert handler.get_styles(["a", "b"]) == ["a.css", "shared.css", "b.css"]
        assert handler.get_styles(["b"]) == ["shared.css", "b.css"]


class TestEditorContributions:
    """Test editor extension declarations and loading."""

    @pytest.mark.asyncio
    async def test_load_extensions(self, artifact_table):
        """Test successful loads, defaults and priority ordering."""
        artifact_table.register("math", "mathBlock", lambda: "math-ext")
        artifact_table.register("math", "inline", lambda: "inline-ext")
        artifact_table.register("math", "inline-view", lambda: "inline-view")
        handler = EditorContributionHandler(artifact_table)
        handler.register("math", {"name": "mathBlock", "type": "node", "priority": 50})
        handler.register("math", {"name": "mathInline", "module": "inline", "node_view": "inline-view",
                                  "priority": 10})

        loaded = await handler.load_extensions("math")

        assert len(loaded) == 2
        block = handler.get_extension("math:mathBlock")
        assert block.module == "mathBlock"
        assert block.kind == "node"
        assert block.extension == "math-ext"
        assert [e.name for e in handler.get_loaded_extensions()] == ["mathInline", "mathBlock"]
        assert handler.get_extension("math:mathInline").node_view == "inline-view"

    @pytest.mark.asyncio
    async def test_failed_load_records_error(self, artifact_table):
        """Test that a missing node view leaves the extension unloaded with an error."""
        artifact_table.register("mermaid", "editor", lambda: "ext")
        handler = EditorContributionHandler(artifact_table)
        handler.register("mermaid", {"name": "mermaidBlock", "module": "editor", "node_view": "view"})

        loaded = await handler.load_extensions("mermaid")

        ext = handler.get_extension("mermaid:mermaidBlock")
        assert loaded == []
        assert not ext.loaded
        assert "view" in ext.error
        assert handler.get_loaded_extensions() == []


class TestContributionRegistry:
    """Test the generic contribution catalog."""

    def test_process_and_remove(self, make_manifest):
        """Test validation, registration and removal of catalog declarations."""
        registry = ContributionRegistry()
        manifest = make_manifest(
            "katex",
            parser={"codeBlockLanguages": ["math", "latex"]},
            contributes={
                "keybindings": [{"key": "Ctrl+M", "command": "insertMath"}],
                "sidebar": [{"id": "symbols", "title": "Symbols"}],
            },
        )

        points = registry.process_plugin_contributions(manifest)

        assert points == ["parser", "keybindings", "sidebar"]
        assert registry.get_contributions("keybindings") == [{"key": "Ctrl+M", "command": "insertMath"}]
        assert registry.get_plugin_for_language("MATH") == "katex"
        assert sorted(registry.get_plugin_contributions("katex")) == ["keybindings", "parser", "sidebar"]

        registry.remove_plugin_contributions("katex")

        assert registry.get_contributions("sidebar") == []
        assert registry.get_plugin_for_language("math") is None

    def test_invalid_declarations_register_nothing(self, make_manifest):
        """Test that one bad declaration blocks the whole manifest."""
        registry = ContributionRegistry()
        manifest = make_manifest("bad", contributes={
            "sidebar": [{"id": "ok", "title": "Fine"}],
            "keybindings": [{"key": "Ctrl+K"}],
            "previewRenderer": {"styles": ["x.css"]},
        })

        with pytest.raises(PluginValidationError) as exc_info:
            registry.process_plugin_contributions(manifest)

        errors = exc_info.value.validation_errors
        assert "Missing required field: contributes.keybindings[0].command" in errors
        assert "Missing required field: contributes.preview.module" in errors
        assert registry.get_contributions("sidebar") == []

    def test_unknown_point_is_ignored(self, make_manifest):
        """Test that unknown contribution keys are skipped."""
        registry = ContributionRegistry()
        manifest = make_manifest("x", contributes={"statusBar": [{"id": "s"}]})

        assert registry.process_plugin_contributions(manifest) == []
        with pytest.raises(KeyError):
            registry.get_handler("status_bar")

    def test_language_priority(self, make_manifest):
        """Test that the highest priority claimant wins and ties keep registration order."""
        registry = ContributionRegistry()
        registry.process_plugin_contributions(make_manifest("first", parser={"codeBlockLanguages": ["math"]}))
        registry.process_plugin_contributions(make_manifest("second", parser={"codeBlockLanguages": ["math"]}))

        assert registry.get_plugin_for_language("math") == "first"

        registry.process_plugin_contributions(make_manifest(
            "third", parser={"codeBlockLanguages": ["math"], "priority": 200}))

        assert registry.get_plugin_for_language("math") == "third"
        assert registry.parser.get_languages() == ["math"]
