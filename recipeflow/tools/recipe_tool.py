"""Recipe composition.

A step can run another recipe as a unit::

    - name: auth
      recipe: ../auth-module          # directory or recipe.yml, relative to this recipe
      with:
        user_model: "{{ name | pascal_case }}"
      inherit: true                   # parent bindings seed the sub-recipe (default)
      cwd: services/api               # optional project sub-directory

The parent's bindings (inputs plus earlier exports) become the sub-recipe's
lowest-precedence values; ``with`` values override its defaults.  Whatever
the sub-recipe ``provides`` is exported to the parent's later steps.

Sub-recipes may nest.  The chain of recipe files currently executing is
tracked per task, so ``a -> b -> a`` is rejected instead of recursing.
"""

from __future__ import annotations

import contextvars
from pathlib import Path
from typing import TYPE_CHECKING

from recipeflow.config import EngineConfig
from recipeflow.errors import ConfigurationError, ToolExecutionError
from recipeflow.models import StepDefinition, ToolValidationResult
from recipeflow.rendering import resolve_path
from recipeflow.tools.base import StepContext, StepExecutionOptions, Tool, ToolOutcome

if TYPE_CHECKING:
    from recipeflow.tools.registry import ToolRegistry

_active_chain: contextvars.ContextVar[tuple[Path, ...]] = contextvars.ContextVar(
    "recipeflow_active_recipes", default=()
)


def _recipe_file(path: Path, recipe_filename: str) -> Path:
    return (path / recipe_filename if path.is_dir() else path).resolve()


class RecipeTool(Tool):
    """Executes a sub-recipe through a ``RecipeEngine`` sharing this tool's registry."""

    tool_type = "recipe"

    def __init__(self, registry: ToolRegistry, config: EngineConfig | None = None) -> None:
        super().__init__()
        self.registry = registry
        self.config = config or EngineConfig()

    def _target(self, step: StepDefinition, context: StepContext) -> Path:
        raw = context.render_str(step.config["recipe"])
        return _recipe_file(resolve_path(raw, context.recipe_dir), self.config.recipe_filename)

    async def validate(self, step: StepDefinition, context: StepContext) -> ToolValidationResult:
        errors: list[str] = []
        warnings: list[str] = []

        target = step.config.get("recipe")
        if not isinstance(target, str) or not target.strip():
            errors.append("Recipe step requires a 'recipe' path")
        elif "{{" not in target:
            path = self._target(step, context)
            if not path.is_file():
                errors.append(f"Sub-recipe not found: {path}")
            elif context.recipe.source_path is not None and path == context.recipe.source_path.resolve():
                errors.append(f"Recipe '{context.recipe.name}' cannot include itself")

        if not isinstance(step.config.get("with", {}), dict):
            errors.append("'with' must be a mapping of variable overrides")
        if not isinstance(step.config.get("inherit", True), bool):
            errors.append("'inherit' must be true or false")
        if step.config.get("inherit") is False and not step.config.get("with"):
            warnings.append("Variable inheritance is off and no 'with' values are given")

        return ToolValidationResult(is_valid=not errors, errors=errors, warnings=warnings, estimated_cost_seconds=5.0)

    async def execute(
        self,
        step: StepDefinition,
        context: StepContext,
        options: StepExecutionOptions,
    ) -> ToolOutcome:
        from recipeflow.engine import RecipeEngine

        target = self._target(step, context)
        chain = _active_chain.get()
        if not chain and context.recipe.source_path is not None:
            chain = (context.recipe.source_path.resolve(),)
        if target in chain:
            names = [p.parent.name for p in (*chain, target)]
            raise ToolExecutionError(f"Circular recipe composition: {' -> '.join(names)}")

        engine = RecipeEngine(registry=self.registry, config=self.config)
        try:
            recipe = engine.load(target)
        except ConfigurationError as exc:
            raise ToolExecutionError(f"Cannot load sub-recipe {target}: {exc}") from exc

        cwd = step.config.get("cwd")
        project_root = resolve_path(context.render_str(cwd), context.project_root) if cwd else context.project_root

        token = _active_chain.set((*chain, target))
        try:
            result = await engine.execute(
                recipe,
                base=dict(context.variables) if step.config.get("inherit", True) else {},
                overrides=context.render(step.config.get("with", {})),
                project_root=project_root,
                dry_run=options.dry_run or context.dry_run,
                force=options.force or context.force,
            )
        finally:
            _active_chain.reset(token)

        output = {
            "recipe": recipe.name,
            "completed_steps": result.completed_steps,
            "failed_steps": result.failed_steps,
            "skipped_steps": result.skipped_steps,
        }
        if not result.success:
            raise ToolExecutionError(
                f"Sub-recipe '{recipe.name}' failed: {'; '.join(result.errors) or 'unknown error'}",
                output=output,
            )
        return ToolOutcome(
            files_created=list(result.files_created),
            files_modified=list(result.files_modified),
            files_deleted=list(result.files_deleted),
            output=output,
            exports=dict(result.provided_values),
            warnings=[f"{recipe.name}: {w}" for w in result.warnings],
        )
