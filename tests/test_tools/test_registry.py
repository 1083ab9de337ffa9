"""Unit tests for the tool registry and the Tool base class."""

from __future__ import annotations

from pathlib import Path

import pytest

from recipeflow.config import AiConfig, EngineConfig
from recipeflow.errors import DuplicateToolError, UnknownToolError
from recipeflow.models import ToolValidationResult
from recipeflow.tools.action_tool import ActionRegistry, ActionTool
from recipeflow.tools.ai_tool import AiTool
from recipeflow.tools.base import Tool, ToolOutcome, ToolResource
from recipeflow.tools.registry import ToolRegistry, create_default_registry


class _Noop(Tool):
    tool_type = "noop"

    def __init__(self) -> None:
        super().__init__()
        self.setups = 0

    async def on_setup(self) -> None:
        self.setups += 1

    async def validate(self, step, context):
        return ToolValidationResult()

    async def execute(self, step, context, options):
        return ToolOutcome()


class TestToolRegistry:
    @pytest.mark.unit
    def test_register_and_create(self):
        registry = ToolRegistry()
        registry.register("noop", _Noop)

        assert registry.has("noop")
        assert "noop" in registry
        assert len(registry) == 1
        assert isinstance(registry.create("noop"), _Noop)

    @pytest.mark.unit
    def test_create_returns_fresh_instances(self):
        registry = ToolRegistry()
        registry.register("noop", _Noop)
        assert registry.create("noop") is not registry.create("noop")

    @pytest.mark.unit
    def test_duplicate_rejected_unless_replace(self):
        registry = ToolRegistry()
        registry.register("noop", _Noop)
        with pytest.raises(DuplicateToolError):
            registry.register("noop", _Noop)
        registry.register("noop", _Noop, replace=True)

    @pytest.mark.unit
    def test_empty_tag_rejected(self):
        with pytest.raises(ValueError):
            ToolRegistry().register("", _Noop)

    @pytest.mark.unit
    def test_unknown_tag(self):
        with pytest.raises(UnknownToolError) as exc_info:
            ToolRegistry().create("mystery", step="s1", recipe="r1")
        assert str(exc_info.value) == "Unknown tool 'mystery' (step 's1' in recipe 'r1')"
        assert exc_info.value.tag == "mystery"

    @pytest.mark.unit
    def test_unregister(self):
        registry = ToolRegistry()
        registry.register("noop", _Noop)
        registry.unregister("noop")
        registry.unregister("noop")
        assert registry.tags() == []

    @pytest.mark.unit
    def test_registries_are_independent(self):
        first, second = ToolRegistry(), ToolRegistry()
        first.register("noop", _Noop)
        assert not second.has("noop")


class TestDefaultRegistry:
    @pytest.mark.unit
    def test_built_in_tags(self):
        assert create_default_registry().tags() == ["action", "ai", "codemod", "recipe", "shell", "template"]

    @pytest.mark.unit
    def test_ai_tool_uses_config(self):
        config = EngineConfig(ai=AiConfig(url="http://gpu-box:11434/", model="llama3.1:8b", timeout=30))
        tool = create_default_registry(config).create("ai")

        assert isinstance(tool, AiTool)
        assert tool.client.base_url == "http://gpu-box:11434"
        assert tool.client.timeout == 30
        assert tool.default_model == "llama3.1:8b"

    @pytest.mark.unit
    def test_action_tool_uses_given_actions(self):
        actions = ActionRegistry()
        tool = create_default_registry(actions=actions).create("action")

        assert isinstance(tool, ActionTool)
        assert tool.actions is actions


class TestToolLifecycle:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_setup_runs_once(self):
        tool = _Noop()
        await tool.setup()
        await tool.setup()
        assert tool.setups == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_cleanup_releases_resources(self):
        released: list[str] = []
        tool = _Noop()
        tool.register_resource(ToolResource(id="a", kind="file", release=lambda: released.append("a")))

        async def release_b() -> None:
            released.append("b")

        tool.register_resource(ToolResource(id="b", kind="network", release=release_b))

        assert await tool.cleanup() == []
        assert released == ["a", "b"]
        assert tool.resources == {}
        assert await tool.cleanup() == []
        assert released == ["a", "b"]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_cleanup_collects_errors(self):
        def broken() -> None:
            raise OSError("busy")

        released: list[str] = []
        tool = _Noop()
        tool.register_resource(ToolResource(id="bad", kind="process", release=broken))
        tool.register_resource(ToolResource(id="good", kind="file", release=lambda: released.append("good")))

        errors = await tool.cleanup()

        assert errors == ["Failed to release process resource 'bad': busy"]
        assert released == ["good"]

    @pytest.mark.unit
    def test_write_file_creates_parents(self, tmp_path: Path):
        target = tmp_path / "a" / "b" / "c.txt"
        _Noop().write_file(target, "hello")
        assert target.read_text() == "hello"
        assert sorted(p.name for p in target.parent.iterdir()) == ["c.txt"]

    @pytest.mark.unit
    def test_relative(self, tmp_path: Path):
        assert Tool.relative(tmp_path / "x" / "y.py", tmp_path) == "x/y.py"
        assert Tool.relative(Path("/elsewhere/file"), tmp_path) == "/elsewhere/file"
