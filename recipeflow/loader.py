"""Parsing and structural validation of ``recipe.yml`` files.

A recipe file looks like::

    name: api-endpoint
    description: Add a FastAPI endpoint
    version: 1.2.0
    variables:
      name: {type: string, required: true, pattern: "^[a-z][a-z0-9_]*$"}
      with_tests: {type: boolean, default: true}
    provides:
      - name: router_module
    steps:
      - name: route
        template: templates/route.py.j2
        to: app/routes/{{ name }}.py
      - name: format
        command: ruff format app/routes
        depends_on: [route]
        when: with_tests

Steps may omit ``tool`` when a shorthand key identifies it (``command``,
``template``, ``action``, ``codemod``, ``prompt``, ``recipe``).  Every structural problem
found in one file is reported together in a single ``RecipeLoadError``.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from recipeflow.errors import (
    RecipeLoadError,
    StepDependencyCycleError,
    UnknownToolError,
    VariableValidationError,
)
from recipeflow.models import (
    ProvidesEntry,
    RecipeDefinition,
    StepDefinition,
    VariableDefinition,
    VariableType,
)
from recipeflow.tools.registry import ToolRegistry
from recipeflow.utils import load_yaml
from recipeflow.variables import validate_value

# Shorthand key -> tool tag, checked in this order.
SHORTHAND_TOOLS: dict[str, str] = {
    "command": "shell",
    "template": "template",
    "action": "action",
    "codemod": "codemod",
    "prompt": "ai",
    "recipe": "recipe",
}

# Step keys that belong to the step itself; everything else is tool config.
_STEP_KEYS = {
    "name": "name",
    "tool": "tool",
    "description": "description",
    "when": "when",
    "condition": "when",
    "depends_on": "depends_on",
    "dependsOn": "depends_on",
    "continue_on_error": "continue_on_error",
    "continueOnError": "continue_on_error",
    "timeout": "timeout",
    "retries": "retries",
    "variables": "variables",
    "env": "env",
    "environment": "env",
}


class RecipeLoader:
    """Loads recipe files into frozen ``RecipeDefinition`` models.

    When a ``ToolRegistry`` is given, every step's tool tag is checked
    against it and an unknown tag raises ``UnknownToolError``.
    """

    def __init__(self, registry: ToolRegistry | None = None, recipe_filename: str = "recipe.yml") -> None:
        self.registry = registry
        self.recipe_filename = recipe_filename

    def load(self, path: str | Path) -> RecipeDefinition:
        """Load a recipe from a ``recipe.yml`` path or from the directory holding one."""
        source = Path(path)
        if source.is_dir():
            source = source / self.recipe_filename
        label = source.parent.name or str(source)
        if not source.exists():
            raise RecipeLoadError(label, [f"Recipe file not found: {source}"])
        try:
            data = load_yaml(source)
        except (yaml.YAMLError, ValueError) as exc:
            raise RecipeLoadError(label, [f"Cannot parse {source}: {exc}"]) from exc
        return self.parse(data, source_path=source.resolve())

    def load_string(self, text: str, source_path: Path | None = None) -> RecipeDefinition:
        try:
            data = yaml.safe_load(text) or {}
        except yaml.YAMLError as exc:
            raise RecipeLoadError("<string>", [f"Cannot parse recipe: {exc}"]) from exc
        if not isinstance(data, dict):
            raise RecipeLoadError("<string>", ["Recipe document must be a mapping"])
        return self.parse(data, source_path=source_path)

    # ------------------------------------------------------------------
    # Parsing
    # ------------------------------------------------------------------

    def parse(self, data: dict[str, Any], source_path: Path | None = None) -> RecipeDefinition:
        """Build a ``RecipeDefinition`` from an already parsed mapping.

        Raises:
            RecipeLoadError: Listing every structural problem found.
            UnknownToolError: For the first step whose tool is not registered.
            StepDependencyCycleError: If ``depends_on`` links form a cycle.
        """
        problems: list[str] = []

        name = data.get("name")
        if not isinstance(name, str) or not name.strip():
            problems.append("Recipe must have a non-empty 'name'")
            name = source_path.parent.name if source_path else "<unnamed>"

        variables = self._parse_variables(data.get("variables") or {}, problems)
        provides = self._parse_provides(data.get("provides") or [], problems)
        steps = self._parse_steps(data.get("steps"), problems)
        self._check_step_references(steps, problems)

        if problems:
            raise RecipeLoadError(name, problems)

        for step in steps:
            if self.registry is not None and not self.registry.has(step.tool):
                raise UnknownToolError(step.tool, step=step.name, recipe=name)

        cycle = find_step_cycle(steps)
        if cycle:
            raise StepDependencyCycleError(name, cycle)

        try:
            return RecipeDefinition(
                name=name,
                description=str(data.get("description") or ""),
                version=str(data.get("version") or "1.0.0"),
                variables=variables,
                provides=provides,
                steps=steps,
                on_success=data.get("on_success") or data.get("onSuccess"),
                on_error=data.get("on_error") or data.get("onError"),
                source_path=source_path,
            )
        except ValidationError as exc:
            raise RecipeLoadError(name, [str(exc)]) from exc

    @staticmethod
    def _parse_variables(raw: Any, problems: list[str]) -> dict[str, VariableDefinition]:
        if not isinstance(raw, dict):
            problems.append("'variables' must be a mapping of name to definition")
            return {}

        result: dict[str, VariableDefinition] = {}
        for var_name, spec in raw.items():
            if isinstance(spec, str):
                spec = {"type": spec}
            elif spec is None:
                spec = {}
            if not isinstance(spec, dict):
                problems.append(f"Variable '{var_name}' must be a mapping")
                continue

            type_name = spec.get("type", "string")
            try:
                var_type = VariableType(type_name)
            except ValueError:
                valid = ", ".join(t.value for t in VariableType)
                problems.append(f"Variable '{var_name}' has unknown type {type_name!r} (expected {valid})")
                continue

            if var_type == VariableType.ENUM and not spec.get("values"):
                problems.append(f"Enum variable '{var_name}' needs a non-empty 'values' list")
                continue
            pattern = spec.get("pattern")
            if pattern is not None:
                try:
                    re.compile(pattern)
                except (re.error, TypeError) as exc:
                    problems.append(f"Variable '{var_name}' has an invalid pattern: {exc}")
                    continue

            try:
                definition = VariableDefinition(
                    type=var_type,
                    required=bool(spec.get("required", False)),
                    default=spec.get("default"),
                    has_default="default" in spec,
                    description=str(spec.get("description") or ""),
                    pattern=pattern,
                    values=list(spec.get("values") or []),
                    min=spec.get("min"),
                    max=spec.get("max"),
                )
            except ValidationError as exc:
                problems.append(f"Variable '{var_name}' is invalid: {exc.errors()[0]['msg']}")
                continue

            if definition.min is not None and definition.max is not None and definition.min > definition.max:
                problems.append(f"Variable '{var_name}' has min greater than max")
                continue
            if definition.has_default and definition.default is not None:
                try:
                    validate_value(var_name, definition.default, definition)
                except VariableValidationError as exc:
                    problems.append(f"Default for {exc}")
                    continue
            result[var_name] = definition
        return result

    @staticmethod
    def _parse_provides(raw: Any, problems: list[str]) -> list[ProvidesEntry]:
        if not isinstance(raw, list):
            problems.append("'provides' must be a list")
            return []
        entries: list[ProvidesEntry] = []
        seen: set[str] = set()
        for item in raw:
            if isinstance(item, str):
                item = {"name": item}
            if not isinstance(item, dict) or not item.get("name"):
                problems.append(f"Provides entry {item!r} needs a 'name'")
                continue
            if item["name"] in seen:
                problems.append(f"Variable '{item['name']}' is listed twice in 'provides'")
                continue
            try:
                entries.append(
                    ProvidesEntry(
                        name=str(item["name"]),
                        type=item.get("type", "string"),
                        description=str(item.get("description") or ""),
                    )
                )
            except ValidationError:
                problems.append(f"Provides entry '{item['name']}' has unknown type {item.get('type')!r}")
                continue
            seen.add(item["name"])
        return entries

    def _parse_steps(self, raw: Any, problems: list[str]) -> list[StepDefinition]:
        if not isinstance(raw, list) or not raw:
            problems.append("Recipe must define at least one step")
            return []

        steps: list[StepDefinition] = []
        for index, item in enumerate(raw, start=1):
            if not isinstance(item, dict):
                problems.append(f"Step {index} must be a mapping")
                continue
            step = self._parse_step(index, item, problems)
            if step is not None:
                steps.append(step)
        return steps

    @staticmethod
    def _parse_step(index: int, item: dict[str, Any], problems: list[str]) -> StepDefinition | None:
        fields: dict[str, Any] = {}
        config: dict[str, Any] = {}
        for key, value in item.items():
            if key in _STEP_KEYS:
                fields[_STEP_KEYS[key]] = value
            else:
                config[key] = value

        step_name = fields.get("name")
        if not isinstance(step_name, str) or not step_name.strip():
            problems.append(f"Step {index} must have a 'name'")
            return None

        tool = fields.get("tool")
        if tool is None:
            inferred = [tag for key, tag in SHORTHAND_TOOLS.items() if key in config]
            if not inferred:
                problems.append(f"Step '{step_name}' has no 'tool' and no shorthand key to infer one from")
                return None
            if len(inferred) > 1:
                problems.append(f"Step '{step_name}' is ambiguous: matches tools {', '.join(inferred)}")
                return None
            tool = inferred[0]
            if tool == "codemod" and isinstance(config.get("codemod"), dict):
                config.update(config.pop("codemod"))
        fields["tool"] = str(tool)

        depends_on = fields.get("depends_on", [])
        if isinstance(depends_on, str):
            fields["depends_on"] = [depends_on]
        fields["config"] = config

        try:
            return StepDefinition(**fields)
        except ValidationError as exc:
            for err in exc.errors():
                loc = ".".join(str(part) for part in err["loc"])
                problems.append(f"Step '{step_name}': {loc}: {err['msg']}")
            return None

    @staticmethod
    def _check_step_references(steps: list[StepDefinition], problems: list[str]) -> None:
        names: set[str] = set()
        for step in steps:
            if step.name in names:
                problems.append(f"Duplicate step name '{step.name}'")
            names.add(step.name)
        for step in steps:
            for dep in step.depends_on:
                if dep not in names:
                    problems.append(f"Step '{step.name}' depends on unknown step '{dep}'")


# ---------------------------------------------------------------------------
# Step ordering
# ---------------------------------------------------------------------------


def find_step_cycle(steps: list[StepDefinition]) -> list[str] | None:
    """Return the first ``depends_on`` cycle as ``[a, b, ..., a]``, or ``None``."""
    deps = {step.name: list(step.depends_on) for step in steps}
    state: dict[str, int] = {}  # 1 = on stack, 2 = done
    stack: list[str] = []

    def visit(name: str) -> list[str] | None:
        state[name] = 1
        stack.append(name)
        for dep in deps.get(name, []):
            if state.get(dep) == 1:
                return stack[stack.index(dep):] + [dep]
            if dep not in state:
                found = visit(dep)
                if found:
                    return found
        stack.pop()
        state[name] = 2
        return None

    for step in steps:
        if step.name not in state:
            cycle = visit(step.name)
            if cycle:
                return cycle
    return None


def order_steps(steps: list[StepDefinition]) -> list[StepDefinition]:
    """Declared order, adjusted so every step follows its ``depends_on`` targets.

    The ordering is stable: among steps that are ready, the one declared
    first runs first.  Assumes the dependencies are acyclic.
    """
    remaining = list(steps)
    placed: set[str] = set()
    ordered: list[StepDefinition] = []
    while remaining:
        for step in remaining:
            if all(dep in placed for dep in step.depends_on):
                ordered.append(step)
                placed.add(step.name)
                remaining.remove(step)
                break
        else:
            ordered.extend(remaining)
            break
    return ordered
