"""Exception hierarchy for recipeflow.

Configuration problems (bad recipe files, unknown tools, dependency cycles)
are detected before anything runs and derive from ``ConfigurationError``.
Tool failures during execution raise ``ToolExecutionError`` which the step
executor captures into a failed ``StepResult``; they never cross the recipe
boundary.
"""

from __future__ import annotations


class RecipeFlowError(Exception):
    """Base class for every error raised by recipeflow."""


# ---------------------------------------------------------------------------
# Configuration errors
# ---------------------------------------------------------------------------


class ConfigurationError(RecipeFlowError):
    """Raised for problems that must be fixed before execution can start."""


class RecipeLoadError(ConfigurationError):
    """Raised when a recipe file cannot be parsed or fails structural checks."""

    def __init__(self, recipe: str, problems: list[str]) -> None:
        self.recipe = recipe
        self.problems = list(problems)
        joined = "; ".join(self.problems) if self.problems else "unknown problem"
        super().__init__(f"Recipe '{recipe}' is invalid: {joined}")


class UnknownToolError(ConfigurationError):
    """Raised when a step references a tool tag nobody registered."""

    def __init__(self, tag: str, step: str | None = None, recipe: str | None = None) -> None:
        self.tag = tag
        self.step = step
        self.recipe = recipe
        where = ""
        if step:
            where = f" (step '{step}'"
            where += f" in recipe '{recipe}')" if recipe else ")"
        super().__init__(f"Unknown tool '{tag}'{where}")


class DuplicateToolError(ConfigurationError):
    """Raised when a tool tag is registered twice without ``replace=True``."""

    def __init__(self, tag: str) -> None:
        self.tag = tag
        super().__init__(f"Tool '{tag}' is already registered")


class StepDependencyCycleError(ConfigurationError):
    """Raised when steps inside one recipe depend on each other circularly."""

    def __init__(self, recipe: str, cycle: list[str]) -> None:
        self.recipe = recipe
        self.cycle = list(cycle)
        super().__init__(
            f"Circular step dependency in recipe '{recipe}': {' -> '.join(self.cycle)}"
        )


class GroupConfigurationError(ConfigurationError):
    """Raised when a recipe group cannot be planned (collisions, cycles, ...)."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = list(errors)
        super().__init__("; ".join(self.errors))


# ---------------------------------------------------------------------------
# Variable errors
# ---------------------------------------------------------------------------


class VariableValidationError(RecipeFlowError):
    """Raised when a variable value is missing or violates its constraint."""

    def __init__(
        self,
        variable: str,
        constraint: str,
        message: str,
        recipe: str | None = None,
    ) -> None:
        self.variable = variable
        self.constraint = constraint
        self.recipe = recipe
        prefix = f"Recipe '{recipe}': " if recipe else ""
        super().__init__(f"{prefix}variable '{variable}' ({constraint}): {message}")


# ---------------------------------------------------------------------------
# Execution errors
# ---------------------------------------------------------------------------


class ToolExecutionError(RecipeFlowError):
    """Raised by a tool when its work fails.

    ``retryable`` marks transient failures (a flaky command, a backend that
    timed out) that the step executor may retry with identical inputs.
    """

    def __init__(self, message: str, *, retryable: bool = False, output: dict | None = None) -> None:
        self.retryable = retryable
        self.output = output or {}
        super().__init__(message)


class ConditionError(ConfigurationError):
    """Raised when a step's ``when`` expression cannot be evaluated."""

    def __init__(self, expression: str, reason: str) -> None:
        self.expression = expression
        super().__init__(f"Cannot evaluate condition {expression!r}: {reason}")
