"""Unit tests for recipeflow.engine.RecipeEngine."""

from __future__ import annotations

from pathlib import Path

import pytest

from recipeflow.engine import RecipeEngine
from recipeflow.errors import RecipeLoadError
from recipeflow.loader import RecipeLoader
from recipeflow.models import StepErrorKind, StepStatus, ToolValidationResult
from recipeflow.tools.base import Tool, ToolOutcome


def _recipe(name: str = "demo", steps=None, **extra):
    doc = {"name": name, "steps": steps or [{"name": "only", "tool": "fake"}]}
    doc.update(extra)
    return RecipeLoader().parse(doc)


class TestSequentialExecution:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_exports_flow_to_later_steps(self, engine, registry):
        recipe = _recipe(
            steps=[
                {"name": "first", "tool": "fake", "exports": {"module": "orders"}},
                {"name": "second", "tool": "fake", "export_from": {"copied": "module"}},
            ]
        )

        result = await engine.execute(recipe)

        assert result.success
        assert registry.steps_run() == ["demo:first", "demo:second"]
        assert registry.calls[1]["variables"]["module"] == "orders"
        assert result.variables["copied"] == "orders"
        assert result.completed_steps == 2

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_step_variables_are_rendered(self, engine, registry):
        recipe = _recipe(
            steps=[{"name": "greet", "tool": "fake", "variables": {"greeting": "hi {{ name | pascal_case }}"}}],
            variables={"name": {"type": "string", "required": True}},
        )

        await engine.execute(recipe, overrides={"name": "order_item"})

        assert registry.calls[0]["variables"]["greeting"] == "hi OrderItem"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_depends_on_reorders_steps(self, engine, registry):
        recipe = _recipe(
            steps=[
                {"name": "b", "tool": "fake", "depends_on": "a"},
                {"name": "a", "tool": "fake"},
            ]
        )

        await engine.execute(recipe)

        assert registry.steps_run() == ["demo:a", "demo:b"]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_files_deduplicated_in_order(self, engine):
        recipe = _recipe(
            steps=[
                {"name": "a", "tool": "fake", "files": ["x.py", "y.py"]},
                {"name": "b", "tool": "fake", "files": ["y.py", "z.py"]},
            ]
        )

        result = await engine.execute(recipe)

        assert result.files_created == ["x.py", "y.py", "z.py"]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_tools_cleaned_up(self, engine, registry):
        await engine.execute(_recipe(steps=[{"name": "boom", "tool": "fake", "fail": "no"}]))
        assert registry.cleanups == ["fake"]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_run_loads_from_disk(self, engine, registry, recipes_dir, write_recipe, recipe_doc):
        recipe_dir = write_recipe(recipes_dir, "from-disk", recipe_doc("from-disk"))

        result = await engine.run(recipe_dir)

        assert result.success
        assert registry.recipes_run() == ["from-disk"]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_run_raises_load_errors(self, engine, tmp_path: Path):
        with pytest.raises(RecipeLoadError):
            await engine.run(tmp_path / "missing")


class TestBindings:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_precedence(self, engine, registry):
        recipe = _recipe(
            variables={
                "a": {"type": "string"},
                "b": {"type": "string", "default": "from-default"},
                "c": {"type": "string", "default": "from-default"},
            }
        )

        await engine.execute(
            recipe,
            base={"a": "base", "b": "base"},
            provided={"a": "provided", "b": "provided"},
            overrides={"c": "override"},
        )

        seen = registry.calls[0]["variables"]
        assert seen["a"] == "provided"
        assert seen["b"] == "from-default"
        assert seen["c"] == "override"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_missing_required_fails_before_any_step(self, engine, registry):
        recipe = _recipe(variables={"name": {"type": "string", "required": True}})

        result = await engine.execute(recipe)

        assert not result.success
        assert result.step_results == []
        assert "variable 'name' (required)" in result.errors[0]
        assert registry.calls == []

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_constraint_violation_fails(self, engine):
        recipe = _recipe(variables={"port": {"type": "number", "max": 65535}})

        result = await engine.execute(recipe, overrides={"port": "70000"})

        assert not result.success
        assert "(max)" in result.errors[0]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_tools_cannot_mutate_bindings(self, engine, registry):
        class Mutator(Tool):
            tool_type = "mutator"

            async def validate(self, step, context):
                return ToolValidationResult()

            async def execute(self, step, context, options):
                context.variables["name"] = "changed"
                return ToolOutcome()

        registry.register("mutator", Mutator)
        recipe = _recipe(steps=[{"name": "m", "tool": "mutator"}])

        result = await engine.execute(recipe, overrides={"name": "kept"})

        assert not result.success
        assert "TypeError" in result.errors[0]
        assert result.variables["name"] == "kept"


class TestPreflight:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_invalid_step_blocks_whole_recipe(self, engine, registry):
        recipe = _recipe(
            steps=[
                {"name": "good", "tool": "fake"},
                {"name": "bad", "tool": "fake", "invalid": "needs a target"},
            ]
        )

        result = await engine.execute(recipe)

        assert not result.success
        assert result.errors == ["Step 'bad': needs a target"]
        assert registry.calls == []
        assert registry.cleanups == ["fake"]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_preflight_warnings_reported_once(self, engine):
        recipe = _recipe(steps=[{"name": "w", "tool": "fake", "warn": ["careful"], "invalid": "no"}])

        result = await engine.execute(recipe)

        assert result.warnings == ["Step 'w': careful"]


class TestFailurePolicy:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_failure_stops_remaining_steps(self, engine, registry):
        recipe = _recipe(
            steps=[
                {"name": "one", "tool": "fake", "fail": "broken"},
                {"name": "two", "tool": "fake"},
            ]
        )

        result = await engine.execute(recipe)

        assert not result.success
        assert registry.steps_run() == ["demo:one"]
        assert result.errors == ["Step 'one': broken"]
        assert "1 remaining step(s) not run after 'one' failed" in result.warnings

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_continue_on_error_runs_everything(self, engine, registry):
        recipe = _recipe(
            steps=[
                {"name": "one", "tool": "fake", "fail": "broken"},
                {"name": "two", "tool": "fake"},
            ]
        )

        result = await engine.execute(recipe, continue_on_error=True)

        assert not result.success
        assert registry.steps_run() == ["demo:one", "demo:two"]
        assert result.failed_steps == 1
        assert result.completed_steps == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_step_level_continue_on_error(self, engine, registry):
        recipe = _recipe(
            steps=[
                {"name": "lint", "tool": "fake", "fail": "warnings", "continueOnError": True},
                {"name": "two", "tool": "fake"},
            ]
        )

        result = await engine.execute(recipe)

        assert registry.steps_run() == ["demo:lint", "demo:two"]
        assert not result.success

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_dependents_of_failed_step_are_skipped(self, engine, registry):
        recipe = _recipe(
            steps=[
                {"name": "gen", "tool": "fake", "fail": "broken"},
                {"name": "format", "tool": "fake", "depends_on": ["gen"]},
                {"name": "docs", "tool": "fake"},
            ]
        )

        result = await engine.execute(recipe, continue_on_error=True)

        statuses = {r.step_name: r.status for r in result.step_results}
        assert statuses == {
            "gen": StepStatus.FAILED,
            "format": StepStatus.SKIPPED,
            "docs": StepStatus.COMPLETED,
        }
        skipped = next(r for r in result.step_results if r.step_name == "format")
        assert skipped.output == {"reason": "dependency 'gen' did not complete"}
        assert "demo:format" not in registry.steps_run()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unrenderable_step_variables_fail_the_step(self, engine, registry):
        recipe = _recipe(steps=[{"name": "s", "tool": "fake", "variables": {"x": "{{ undefined_name }}"}}])

        result = await engine.execute(recipe)

        assert not result.success
        assert result.step_results[0].error.kind == StepErrorKind.CONFIGURATION
        assert registry.calls == []

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unexpected_error_becomes_failed_result(self, engine, monkeypatch):
        def explode(*args, **kwargs):
            raise RuntimeError("resolver broke")

        monkeypatch.setattr("recipeflow.engine.resolve_variables", explode)

        result = await engine.execute(_recipe())

        assert not result.success
        assert result.errors == [
            "Unexpected error while executing recipe 'demo': RuntimeError: resolver broke"
        ]


class TestProvidedValues:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_provided_values_taken_from_exports(self, engine):
        recipe = _recipe(
            steps=[{"name": "s", "tool": "fake", "exports": {"router": "app.routes"}}],
            provides=["router"],
        )

        result = await engine.execute(recipe)

        assert result.provided_values == {"router": "app.routes"}

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_provided_values_may_come_from_inputs(self, engine):
        recipe = _recipe(provides=["name"], variables={"name": {"type": "string", "default": "shop"}})

        result = await engine.execute(recipe)

        assert result.provided_values == {"name": "shop"}

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unfulfilled_promise_warns(self, engine):
        result = await engine.execute(_recipe(provides=["router"]))

        assert result.success
        assert result.provided_values == {}
        assert "Recipe promised 'router' but did not produce it" in result.warnings

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_failed_recipe_provides_nothing(self, engine):
        recipe = _recipe(
            steps=[
                {"name": "s", "tool": "fake", "exports": {"router": "r"}},
                {"name": "t", "tool": "fake", "fail": "no"},
            ],
            provides=["router"],
        )

        result = await engine.execute(recipe)

        assert not result.success
        assert result.provided_values == {}


class TestModes:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_dry_run(self, engine, registry):
        result = await engine.execute(_recipe(), dry_run=True)

        assert result.success
        assert registry.calls == []
        assert result.step_results[0].output["dry_run"] is True

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_on_error_render_failure_becomes_warning(self, engine):
        recipe = _recipe(
            steps=[{"name": "s", "tool": "fake", "fail": "no"}],
            on_error="Failed: {{ missing_name }}",
        )

        result = await engine.execute(recipe)

        assert any(w.startswith("Cannot render completion message") for w in result.warnings)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_on_success_rendered(self, engine):
        recipe = _recipe(on_success="Created {{ name }}", variables={"name": {"type": "string"}})

        result = await engine.execute(recipe, overrides={"name": "orders"})

        assert result.success
        assert result.warnings == []

    @pytest.mark.unit
    def test_default_registry_used_when_none_given(self, fast_config):
        engine = RecipeEngine(config=fast_config)
        assert engine.registry.tags() == ["action", "ai", "codemod", "recipe", "shell", "template"]
