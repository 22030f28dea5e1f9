"""Tests for pipeline assembly from active plugins."""

import pytest

from mdpp.core.plugins import BasePlugin, PipelineBuilder, PluginType


class StagePlugin(BasePlugin):
    """Plugin exposing fixed pipeline stages."""

    def __init__(self, manifest, remark=(), rehype=(), handler=None, broken=False):
        super().__init__(manifest)
        self._remark = list(remark)
        self._rehype = list(rehype)
        self._handler = handler
        self._broken = broken

    def remark_plugins(self):
        if self._broken:
            raise RuntimeError("remark failure")
        return self._remark

    def rehype_plugins(self):
        return self._rehype

    def code_block_handler(self):
        return self._handler


def first_handler(code):
    return "first"


def second_handler(code):
    return "second"


@pytest.fixture
def builder(registry):
    return PipelineBuilder(registry)


async def _activate(registry, *plugins):
    for plugin in plugins:
        registry.register(plugin.manifest, instance=plugin)
    await registry.activate_all([p.manifest.id for p in plugins])


class TestPipelineBuilder:
    """Test stage collection and ordering."""

    @pytest.mark.asyncio
    async def test_priority_order(self, registry, builder, make_manifest):
        """Test that higher parser priority comes first and ties keep activation order."""
        low = StagePlugin(make_manifest("low", parser={"priority": 10}), remark=["low-remark"])
        high = StagePlugin(make_manifest("high", parser={"priority": 200}), remark=["high-remark"],
                           rehype=["high-rehype"])
        default = StagePlugin(make_manifest("default"), remark=["default-remark"])
        await _activate(registry, low, high, default)

        pipeline = builder.build()

        assert pipeline.remark_plugins == ["high-remark", "default-remark", "low-remark"]
        assert pipeline.rehype_plugins == ["high-rehype"]

    @pytest.mark.asyncio
    async def test_code_block_first_claimant_wins(self, registry, builder, make_manifest):
        """Test that a language is bound once, to the first claimant in pipeline order."""
        first = StagePlugin(make_manifest("first", type="parser",
                                          parser={"codeBlockLanguages": ["Mermaid"], "priority": 150}),
                            handler=first_handler)
        second = StagePlugin(make_manifest("second", type="parser",
                                           parser={"codeBlockLanguages": ["mermaid", "graph"]}),
                             handler=second_handler)
        await _activate(registry, first, second)

        pipeline = builder.build()

        assert pipeline.code_block_handlers == {"mermaid": first_handler, "graph": second_handler}

    @pytest.mark.asyncio
    async def test_get_code_block_handler_uses_activation_order(self, registry, builder, make_manifest):
        """Test the single-language lookup among active plugins."""
        a = StagePlugin(make_manifest("a", parser={"codeBlockLanguages": ["math"]}), handler=first_handler)
        b = StagePlugin(make_manifest("b", parser={"codeBlockLanguages": ["math"]}), handler=second_handler)
        registry.register(a.manifest, instance=a)
        registry.register(b.manifest, instance=b)
        await registry.activate("b")
        await registry.activate("a")

        assert builder.get_code_block_handler("MATH") is second_handler
        assert builder.has_code_block_handler("math")
        assert builder.get_code_block_handler("plantuml") is None

    @pytest.mark.asyncio
    async def test_failing_plugin_does_not_break_build(self, registry, builder, make_manifest):
        """Test that a plugin raising from a stage getter is skipped for that stage."""
        broken = StagePlugin(make_manifest("broken"), rehype=["still-here"], broken=True)
        healthy = StagePlugin(make_manifest("healthy"), remark=["ok"])
        await _activate(registry, broken, healthy)

        pipeline = builder.build()

        assert pipeline.remark_plugins == ["ok"]
        assert pipeline.rehype_plugins == ["still-here"]

    @pytest.mark.asyncio
    async def test_type_filter_and_inactive_plugins(self, registry, builder, make_manifest):
        """Test filtering by plugin type; inactive plugins never contribute."""
        parser = StagePlugin(make_manifest("p", type="parser"), remark=["parser-stage"])
        theme = StagePlugin(make_manifest("t", type="theme"), remark=["theme-stage"])
        idle = StagePlugin(make_manifest("idle"), remark=["idle-stage"])
        await _activate(registry, parser, theme)
        registry.register(idle.manifest, instance=idle)

        assert builder.build([PluginType.PARSER]).remark_plugins == ["parser-stage"]
        assert "idle-stage" not in builder.build().remark_plugins

    @pytest.mark.asyncio
    async def test_assets_are_deduplicated(self, registry, builder, make_manifest):
        """Test manifest asset collection across plugins."""
        await _activate(
            registry,
            StagePlugin(make_manifest("a", assets={"css": ["katex.css", "shared.css"], "js": ["katex.js"]})),
            StagePlugin(make_manifest("b", assets={"css": ["shared.css"]})),
        )
        registry.register(make_manifest("c", assets={"css": ["idle.css"]}))

        pipeline = builder.build()

        # activation order is b, a
        assert pipeline.css_assets == ["shared.css", "katex.css"]
        assert pipeline.js_assets == ["katex.js"]
        assert builder.get_all_assets()["css"] == ["shared.css", "katex.css"]
        assert builder.get_all_assets(include_inactive=True)["css"] == ["katex.css", "shared.css", "idle.css"]
