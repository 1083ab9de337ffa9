"""Registered Python actions.

Actions are plain (sync or async) callables registered on an
``ActionRegistry`` and invoked by name from a recipe::

    actions = ActionRegistry()

    @actions.action("add-dependency", description="Add a package to requirements.txt")
    def add_dependency(ctx: ActionContext) -> ActionResult:
        req = ctx.project_root / "requirements.txt"
        req.write_text(req.read_text() + ctx.params["package"] + "\\n")
        return ActionResult(files_modified=["requirements.txt"])

::

    - name: deps
      action: add-dependency
      params: {package: "{{ package }}"}

A callable may return an ``ActionResult``, a dict (treated as exports for
later steps) or ``None``.  Plain functions run in a worker thread, so a
blocking action still times out at the step boundary; the thread itself is
abandoned, not killed.
"""

from __future__ import annotations

import asyncio
import inspect
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Mapping

from recipeflow.errors import DuplicateToolError, ToolExecutionError
from recipeflow.models import StepDefinition, ToolValidationResult
from recipeflow.tools.base import StepContext, StepExecutionOptions, Tool, ToolOutcome


@dataclass(frozen=True)
class ActionContext:
    """What an action callable receives."""

    variables: Mapping[str, Any]
    project_root: Path
    params: dict[str, Any]
    recipe_name: str
    step_name: str
    dry_run: bool = False
    force: bool = False


@dataclass
class ActionResult:
    files_created: list[str] = field(default_factory=list)
    files_modified: list[str] = field(default_factory=list)
    files_deleted: list[str] = field(default_factory=list)
    exports: dict[str, Any] = field(default_factory=dict)
    output: dict[str, Any] = field(default_factory=dict)
    message: str = ""


ActionFunc = Callable[[ActionContext], Any]


@dataclass(frozen=True)
class ActionSpec:
    name: str
    func: ActionFunc
    description: str = ""


class ActionRegistry:
    """Name -> callable table consulted by ``ActionTool``."""

    def __init__(self) -> None:
        self._actions: dict[str, ActionSpec] = {}

    def register(self, name: str, func: ActionFunc, description: str = "", *, replace: bool = False) -> None:
        if name in self._actions and not replace:
            raise DuplicateToolError(f"action:{name}")
        self._actions[name] = ActionSpec(name=name, func=func, description=description)

    def action(self, name: str, description: str = "") -> Callable[[ActionFunc], ActionFunc]:
        """Decorator form of ``register``."""

        def decorator(func: ActionFunc) -> ActionFunc:
            self.register(name, func, description or (inspect.getdoc(func) or "").split("\n")[0])
            return func

        return decorator

    def get(self, name: str) -> ActionSpec | None:
        return self._actions.get(name)

    def names(self) -> list[str]:
        return sorted(self._actions)

    def __contains__(self, name: object) -> bool:
        return name in self._actions


class ActionTool(Tool):
    """Invokes callables from an ``ActionRegistry``."""

    tool_type = "action"

    def __init__(self, actions: ActionRegistry) -> None:
        super().__init__()
        self.actions = actions

    async def validate(self, step: StepDefinition, context: StepContext) -> ToolValidationResult:
        errors: list[str] = []
        suggestions: list[str] = []

        name = step.config.get("action")
        if not isinstance(name, str) or not name:
            errors.append("Action step requires an 'action' name")
        elif name not in self.actions:
            errors.append(f"Action '{name}' is not registered")
            if self.actions.names():
                suggestions.append(f"Registered actions: {', '.join(self.actions.names())}")

        params = step.config.get("params", {})
        if not isinstance(params, dict):
            errors.append("'params' must be a mapping")

        return ToolValidationResult(
            is_valid=not errors,
            errors=errors,
            suggestions=suggestions,
            estimated_cost_seconds=0.5,
        )

    async def execute(
        self,
        step: StepDefinition,
        context: StepContext,
        options: StepExecutionOptions,
    ) -> ToolOutcome:
        spec = self.actions.get(step.config["action"])
        if spec is None:
            raise ToolExecutionError(f"Action '{step.config['action']}' is not registered")

        action_context = ActionContext(
            variables=context.variables,
            project_root=context.project_root,
            params=context.render(step.config.get("params", {})),
            recipe_name=context.recipe.name,
            step_name=step.name,
            dry_run=options.dry_run or context.dry_run,
            force=options.force or context.force,
        )

        try:
            if inspect.iscoroutinefunction(spec.func):
                result = await spec.func(action_context)
            else:
                result = await asyncio.to_thread(spec.func, action_context)
            if inspect.isawaitable(result):
                result = await result
        except ToolExecutionError:
            raise
        except Exception as exc:
            raise ToolExecutionError(f"Action '{spec.name}' failed: {exc}") from exc

        return self._to_outcome(spec.name, result)

    @staticmethod
    def _to_outcome(name: str, result: Any) -> ToolOutcome:
        if result is None:
            return ToolOutcome(output={"action": name})
        if isinstance(result, dict):
            return ToolOutcome(output={"action": name}, exports=dict(result))
        if isinstance(result, ActionResult):
            output = {"action": name, **result.output}
            if result.message:
                output["message"] = result.message
            return ToolOutcome(
                files_created=list(result.files_created),
                files_modified=list(result.files_modified),
                files_deleted=list(result.files_deleted),
                output=output,
                exports=dict(result.exports),
            )
        raise ToolExecutionError(
            f"Action '{name}' returned {type(result).__name__}; expected ActionResult, dict or None"
        )
