"""Shared pytest fixtures for the recipeflow test suite.

Provides reusable fixtures for:
- Temporary project roots and recipe directories
- A recording fake tool and a registry that hands it out
- Engine, executor and group executor instances wired to the fake tool
"""

from __future__ import annotations

import asyncio
import textwrap
from pathlib import Path
from types import MappingProxyType
from typing import Any, Callable

import pytest
import yaml

from recipeflow.config import EngineConfig, ExecutionConfig
from recipeflow.engine import RecipeEngine
from recipeflow.errors import ToolExecutionError
from recipeflow.group import GroupExecutor
from recipeflow.loader import RecipeLoader
from recipeflow.models import RecipeDefinition, StepDefinition, ToolValidationResult
from recipeflow.tools.base import StepContext, StepExecutionOptions, Tool, ToolOutcome
from recipeflow.tools.registry import ToolRegistry


# ---------------------------------------------------------------------------
# Fake tool
# ---------------------------------------------------------------------------


class FakeTool(Tool):
    """Scriptable tool driven entirely by step config.

    Recognised config keys:
        invalid:     validation error message
        warn:        validation warnings
        exports:     static exports
        export_from: {export_name: variable_name} copied from the step variables
        files:       reported as created
        fail:        ToolExecutionError message
        retryable:   whether ``fail`` is retryable
        fail_times:  fail only the first N attempts
        sleep:       seconds to sleep before finishing
        crash:       raise RuntimeError with this message
    """

    tool_type = "fake"

    def __init__(self, calls: list[dict[str, Any]], cleanups: list[str]) -> None:
        super().__init__()
        self.calls = calls
        self.cleanups = cleanups
        self.attempts: dict[str, int] = {}

    async def validate(self, step: StepDefinition, context: StepContext) -> ToolValidationResult:
        warnings = list(step.config.get("warn", []))
        if "invalid" in step.config:
            return ToolValidationResult(is_valid=False, errors=[step.config["invalid"]], warnings=warnings)
        return ToolValidationResult(is_valid=True, warnings=warnings)

    async def execute(
        self,
        step: StepDefinition,
        context: StepContext,
        options: StepExecutionOptions,
    ) -> ToolOutcome:
        self.attempts[step.name] = self.attempts.get(step.name, 0) + 1
        self.calls.append(
            {
                "recipe": context.recipe.name,
                "step": step.name,
                "variables": dict(context.variables),
                "attempt": self.attempts[step.name],
            }
        )
        if step.config.get("sleep"):
            await asyncio.sleep(step.config["sleep"])
        if "crash" in step.config:
            raise RuntimeError(step.config["crash"])
        if "fail" in step.config:
            limit = step.config.get("fail_times")
            if limit is None or self.attempts[step.name] <= limit:
                raise ToolExecutionError(step.config["fail"], retryable=step.config.get("retryable", False))

        exports = dict(step.config.get("exports", {}))
        for export_name, var_name in step.config.get("export_from", {}).items():
            exports[export_name] = context.variables[var_name]
        return ToolOutcome(files_created=list(step.config.get("files", [])), exports=exports)

    async def on_cleanup(self) -> None:
        self.cleanups.append(self.tool_type)


class RecordingRegistry(ToolRegistry):
    """A registry with ``fake`` registered that records every call."""

    def __init__(self) -> None:
        super().__init__()
        self.calls: list[dict[str, Any]] = []
        self.cleanups: list[str] = []
        self.register(FakeTool.tool_type, lambda: FakeTool(self.calls, self.cleanups))

    def steps_run(self) -> list[str]:
        return [f"{c['recipe']}:{c['step']}" for c in self.calls]

    def recipes_run(self) -> list[str]:
        return list(dict.fromkeys(c["recipe"] for c in self.calls))


# ---------------------------------------------------------------------------
# Paths & Directories
# ---------------------------------------------------------------------------


@pytest.fixture
def project_root(tmp_path: Path) -> Path:
    """Temporary project tree that tools write into."""
    root = tmp_path / "project"
    root.mkdir()
    return root


@pytest.fixture
def recipes_dir(tmp_path: Path) -> Path:
    """Temporary directory holding a recipe group."""
    directory = tmp_path / "recipes"
    directory.mkdir()
    return directory


@pytest.fixture
def write_recipe() -> Callable[..., Path]:
    """Factory writing ``<parent>/<name>/recipe.yml`` plus optional asset files.

    ``data`` may be a dict (dumped as YAML) or a YAML string.
    """

    def _write(parent: Path, name: str, data: dict | str, files: dict[str, str] | None = None) -> Path:
        recipe_dir = parent / name
        recipe_dir.mkdir(parents=True, exist_ok=True)
        text = data if isinstance(data, str) else yaml.safe_dump(data, sort_keys=False)
        (recipe_dir / "recipe.yml").write_text(textwrap.dedent(text), encoding="utf-8")
        for rel, content in (files or {}).items():
            target = recipe_dir / rel
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content, encoding="utf-8")
        return recipe_dir

    return _write


# ---------------------------------------------------------------------------
# Recipe builders
# ---------------------------------------------------------------------------


def fake_recipe(
    name: str,
    *,
    requires: list[str] | None = None,
    provides: list[str] | None = None,
    defaults: dict[str, Any] | None = None,
    steps: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    """Recipe document using only the ``fake`` tool.

    By default the single step exports every provided name as ``<name>-<var>``.
    """
    variables: dict[str, Any] = {v: {"type": "string", "required": True} for v in requires or []}
    for var, value in (defaults or {}).items():
        variables[var] = {"type": "string", "required": True, "default": value}
    if steps is None:
        steps = [
            {
                "name": "produce",
                "tool": "fake",
                "exports": {p: f"{name}-{p}" for p in provides or []},
            }
        ]
    return {
        "name": name,
        "variables": variables,
        "provides": [{"name": p} for p in provides or []],
        "steps": steps,
    }


@pytest.fixture
def make_recipe() -> Callable[..., RecipeDefinition]:
    """Build a ``RecipeDefinition`` in memory from a ``fake_recipe``-style document."""

    def _make(name: str, **kwargs: Any) -> RecipeDefinition:
        return RecipeLoader().parse(fake_recipe(name, **kwargs))

    return _make


@pytest.fixture
def recipe_doc() -> Callable[..., dict[str, Any]]:
    return fake_recipe


# ---------------------------------------------------------------------------
# Engine wiring
# ---------------------------------------------------------------------------


@pytest.fixture
def fast_config(project_root: Path) -> EngineConfig:
    """Config with short timeouts and no retry delay."""
    return EngineConfig(
        working_dir=project_root,
        execution=ExecutionConfig(default_timeout=5.0, retry_backoff=0.0, max_retry_delay=0.0),
    )


@pytest.fixture
def registry() -> RecordingRegistry:
    return RecordingRegistry()


@pytest.fixture
def engine(registry: RecordingRegistry, fast_config: EngineConfig) -> RecipeEngine:
    return RecipeEngine(registry=registry, config=fast_config)


@pytest.fixture
def group_executor(engine: RecipeEngine) -> GroupExecutor:
    return GroupExecutor(engine)


# ---------------------------------------------------------------------------
# Tool contexts
# ---------------------------------------------------------------------------


@pytest.fixture
def recipe_dir(tmp_path: Path) -> Path:
    """Asset directory of the recipe used by ``step_context``."""
    directory = tmp_path / "recipe"
    directory.mkdir()
    return directory


@pytest.fixture
def step_context(recipe_dir: Path, project_root: Path) -> Callable[..., StepContext]:
    """Factory for a ``StepContext`` whose recipe lives in ``recipe_dir``."""

    def _context(variables: dict[str, Any] | None = None, *, force: bool = False, dry_run: bool = False) -> StepContext:
        recipe = RecipeDefinition(name="demo", source_path=recipe_dir / "recipe.yml")
        return StepContext(
            recipe=recipe,
            variables=MappingProxyType(dict(variables or {})),
            project_root=project_root,
            force=force,
            dry_run=dry_run,
        )

    return _context
