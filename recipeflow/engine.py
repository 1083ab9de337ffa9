"""Execution of a single recipe.

``RecipeEngine.execute`` resolves and freezes the recipe's bindings,
validates every step against its tool before any step runs, then executes
the steps one after another, threading step exports forward.  The result is
always a ``RecipeExecutionResult``: configuration problems, step failures
and unexpected exceptions all end up as ``success=False`` with errors.
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from pathlib import Path
from types import MappingProxyType
from typing import Any, Iterable, Mapping

from jinja2 import TemplateError
from rich.markup import escape

from recipeflow.config import EngineConfig
from recipeflow.errors import VariableValidationError
from recipeflow.executor import StepExecutor
from recipeflow.loader import RecipeLoader, order_steps
from recipeflow.models import (
    RecipeDefinition,
    RecipeExecutionResult,
    StepDefinition,
    StepError,
    StepErrorKind,
    StepResult,
    StepStatus,
)
from recipeflow.rendering import render_string, render_value
from recipeflow.tools.base import StepContext, StepExecutionOptions
from recipeflow.tools.registry import ToolRegistry, create_default_registry
from recipeflow.utils import console, format_duration, print_debug, print_error, print_success
from recipeflow.variables import resolve_variables


class RecipeEngine:
    """Loads and executes recipes against a project tree."""

    def __init__(
        self,
        registry: ToolRegistry | None = None,
        config: EngineConfig | None = None,
        loader: RecipeLoader | None = None,
    ) -> None:
        self.config = config or EngineConfig()
        self.registry = registry if registry is not None else create_default_registry(self.config)
        self.loader = loader or RecipeLoader(self.registry, self.config.recipe_filename)

    def load(self, path: str | Path) -> RecipeDefinition:
        return self.loader.load(path)

    async def run(self, path: str | Path, **kwargs: Any) -> RecipeExecutionResult:
        """Load the recipe at *path* and execute it.

        Load errors (``ConfigurationError``) are raised, not returned.
        """
        return await self.execute(self.load(path), **kwargs)

    async def execute(
        self,
        recipe: RecipeDefinition,
        *,
        base: Mapping[str, Any] | None = None,
        provided: Mapping[str, Any] | None = None,
        overrides: Mapping[str, Any] | None = None,
        allow_missing: Iterable[str] = (),
        project_root: Path | None = None,
        dry_run: bool | None = None,
        force: bool | None = None,
        continue_on_error: bool | None = None,
    ) -> RecipeExecutionResult:
        """Execute *recipe* and return its aggregated result.

        Args:
            recipe: The loaded recipe.
            base: Lowest-precedence bindings (the group pool).
            provided: Values provided by sibling recipes.
            overrides: Highest-precedence bindings.
            allow_missing: Required names allowed to stay unbound.
            project_root: Where outputs are written; defaults to
                ``config.working_dir``.
            dry_run: Validate and report without executing tools.
            force: Overwrite existing files.
            continue_on_error: Keep running steps after a failure.

        Never raises for recipe problems; unexpected exceptions are turned
        into a failed result.
        """
        exec_cfg = self.config.execution
        started = time.monotonic()
        try:
            return await self._execute(
                recipe,
                base=base,
                provided=provided,
                overrides=overrides,
                allow_missing=allow_missing,
                project_root=Path(project_root or self.config.working_dir),
                dry_run=exec_cfg.dry_run if dry_run is None else dry_run,
                force=exec_cfg.force if force is None else force,
                continue_on_error=exec_cfg.continue_on_error if continue_on_error is None else continue_on_error,
                started=started,
            )
        except Exception as exc:  # noqa: BLE001
            message = f"Unexpected error while executing recipe '{recipe.name}': {type(exc).__name__}: {exc}"
            print_error(message)
            return RecipeExecutionResult(
                name=recipe.name,
                success=False,
                errors=[message],
                duration_seconds=time.monotonic() - started,
            )

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _execute(
        self,
        recipe: RecipeDefinition,
        *,
        base: Mapping[str, Any] | None,
        provided: Mapping[str, Any] | None,
        overrides: Mapping[str, Any] | None,
        allow_missing: Iterable[str],
        project_root: Path,
        dry_run: bool,
        force: bool,
        continue_on_error: bool,
        started: float,
    ) -> RecipeExecutionResult:
        verbose = self.config.verbose
        console.print(
            f"[cyan]>[/cyan] Recipe [bold]{escape(recipe.name)}[/bold] "
            f"({len(recipe.steps)} steps{', dry run' if dry_run else ''})"
        )

        # 1. Resolve and freeze bindings
        try:
            bindings = resolve_variables(
                recipe, base=base, provided=provided, overrides=overrides, allow_missing=allow_missing
            )
        except VariableValidationError as exc:
            print_error(f"  {exc}")
            return RecipeExecutionResult(
                name=recipe.name,
                success=False,
                errors=[str(exc)],
                duration_seconds=time.monotonic() - started,
            )
        inputs = MappingProxyType(bindings)

        executor = StepExecutor(self.registry, self.config.execution, recipe_name=recipe.name)
        results: list[StepResult] = []
        errors: list[str] = []
        warnings: list[str] = []
        exports: dict[str, Any] = {}

        try:
            # 2. Preflight validation of every step
            preflight_warnings: list[str] = []
            for step in recipe.steps:
                context = self._context(recipe, step, inputs, {}, {}, project_root, dry_run, force, render=False)
                validation = await executor.validate(step, context)
                preflight_warnings.extend(f"Step '{step.name}': {w}" for w in validation.warnings)
                errors.extend(f"Step '{step.name}': {e}" for e in validation.errors)
            if errors:
                for err in errors:
                    print_error(f"  {err}")
                return RecipeExecutionResult(
                    name=recipe.name,
                    success=False,
                    errors=errors,
                    warnings=preflight_warnings,
                    variables=dict(inputs),
                    duration_seconds=time.monotonic() - started,
                )

            # 3-5. Sequential execution
            options = StepExecutionOptions(dry_run=dry_run, force=force)
            by_name: dict[str, StepResult] = {}
            blocked: set[str] = set()
            failed = False
            for step in order_steps(list(recipe.steps)):
                blocker = next(
                    (
                        dep
                        for dep in step.depends_on
                        if dep in blocked or (dep in by_name and by_name[dep].status == StepStatus.FAILED)
                    ),
                    None,
                )
                if blocker is not None:
                    blocked.add(step.name)
                    result = self._blocked_result(step, blocker)
                    warnings.append(f"Step '{step.name}' not run: dependency '{blocker}' did not complete")
                else:
                    try:
                        context = self._context(
                            recipe, step, inputs, exports, by_name, project_root, dry_run, force
                        )
                    except TemplateError as exc:
                        result = self._failed_render_result(step, exc)
                    else:
                        result = await executor.execute(step, context, options)

                results.append(result)
                by_name[step.name] = result
                warnings.extend(f"Step '{step.name}': {w}" for w in result.warnings)

                if result.status == StepStatus.COMPLETED:
                    exports.update(result.exports)
                elif result.status == StepStatus.FAILED:
                    failed = True
                    message = result.error.message if result.error else "failed"
                    errors.append(f"Step '{step.name}': {message}")
                    print_error(f"  x {step.name}: {message}")
                    if not (continue_on_error or step.continue_on_error):
                        remaining = len(recipe.steps) - len(results)
                        if remaining:
                            warnings.append(f"{remaining} remaining step(s) not run after '{step.name}' failed")
                        break
        finally:
            # 8. Release tool resources
            warnings.extend(await executor.cleanup())

        # 6. Provided values and aggregation
        success = not failed
        final_vars = {**bindings, **exports}
        provided_values: dict[str, Any] = {}
        if success:
            for name in recipe.provided_names():
                if name in final_vars:
                    provided_values[name] = final_vars[name]
                else:
                    warnings.append(f"Recipe promised '{name}' but did not produce it")

        result = RecipeExecutionResult(
            name=recipe.name,
            success=success,
            step_results=results,
            duration_seconds=time.monotonic() - started,
            files_created=_unique(f for r in results for f in r.files_created),
            files_modified=_unique(f for r in results for f in r.files_modified),
            files_deleted=_unique(f for r in results for f in r.files_deleted),
            errors=errors,
            warnings=warnings,
            variables=final_vars,
            provided_values=provided_values,
        )

        # 7. Completion message
        self._announce(recipe, result, final_vars)
        print_debug(
            f"  {recipe.name}: {result.completed_steps} completed, {result.failed_steps} failed, "
            f"{result.skipped_steps} skipped in {format_duration(result.duration_seconds)}",
            verbose,
        )
        return result

    def _context(
        self,
        recipe: RecipeDefinition,
        step: StepDefinition,
        inputs: Mapping[str, Any],
        exports: Mapping[str, Any],
        step_results: Mapping[str, StepResult],
        project_root: Path,
        dry_run: bool,
        force: bool,
        render: bool = True,
    ) -> StepContext:
        """Build the read-only context for *step*: inputs < exports < step variables."""
        scope = {**inputs, **exports}
        if step.variables:
            local = render_value(dict(step.variables), scope) if render else dict(step.variables)
            scope.update(local)
        return StepContext(
            recipe=recipe,
            variables=MappingProxyType(scope),
            project_root=project_root,
            dry_run=dry_run,
            force=force,
            step_results=MappingProxyType(dict(step_results)),
            verbose=self.config.verbose,
        )

    @staticmethod
    def _blocked_result(step: StepDefinition, blocker: str) -> StepResult:
        now = datetime.now(timezone.utc)
        return StepResult(
            step_name=step.name,
            tool=step.tool,
            status=StepStatus.SKIPPED,
            started_at=now,
            finished_at=now,
            output={"reason": f"dependency '{blocker}' did not complete"},
        )

    @staticmethod
    def _failed_render_result(step: StepDefinition, exc: Exception) -> StepResult:
        now = datetime.now(timezone.utc)
        return StepResult(
            step_name=step.name,
            tool=step.tool,
            status=StepStatus.FAILED,
            started_at=now,
            finished_at=now,
            error=StepError(
                message=f"Cannot render step variables: {exc}",
                kind=StepErrorKind.CONFIGURATION,
            ),
        )

    @staticmethod
    def _announce(recipe: RecipeDefinition, result: RecipeExecutionResult, variables: Mapping[str, Any]) -> None:
        template = recipe.on_success if result.success else recipe.on_error
        if template:
            try:
                message = render_string(template, {**variables, "errors": result.errors})
            except TemplateError as exc:
                result.warnings.append(f"Cannot render completion message: {exc}")
                return
            (print_success if result.success else print_error)(message)
        elif result.success:
            print_success(f"  {recipe.name} completed in {format_duration(result.duration_seconds)}")


def _unique(items: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(items))
