"""Pydantic v2 models for recipes, steps and execution results.

Defines the recipe definition hierarchy (variables, provides, steps) loaded
from ``recipe.yml`` files, and the result models produced by the step
executor, the recipe engine and the group executor.  Definitions and step
results are frozen once built; aggregate results are assembled once by their
owner and treated as read-only by consumers.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class VariableType(str, Enum):
    """Value type of a declared recipe variable."""

    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    ENUM = "enum"
    ARRAY = "array"
    OBJECT = "object"
    FILE = "file"
    DIRECTORY = "directory"


class StepStatus(str, Enum):
    """Final status of a single step."""

    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class StepErrorKind(str, Enum):
    """Why a step failed.  Only execution and timeout failures are retried."""

    CONFIGURATION = "configuration"
    EXECUTION = "execution"
    TIMEOUT = "timeout"


# ---------------------------------------------------------------------------
# Recipe definition
# ---------------------------------------------------------------------------


class VariableDefinition(BaseModel):
    """A variable declared by a recipe."""

    model_config = ConfigDict(frozen=True)

    type: VariableType = Field(default=VariableType.STRING)
    required: bool = Field(default=False)
    default: Optional[Any] = Field(default=None)
    has_default: bool = Field(
        default=False, description="True when the recipe declared a default (even a null one)"
    )
    description: str = Field(default="")
    pattern: Optional[str] = Field(default=None, description="Regex a string value must match")
    values: list[Any] = Field(default_factory=list, description="Allowed values for enum variables")
    min: Optional[float] = Field(default=None)
    max: Optional[float] = Field(default=None)

    @property
    def is_required_input(self) -> bool:
        """Required and without a default: must be supplied or provided by a sibling."""
        return self.required and not self.has_default


class ProvidesEntry(BaseModel):
    """A variable a recipe promises to produce for its siblings."""

    model_config = ConfigDict(frozen=True)

    name: str
    type: VariableType = Field(default=VariableType.STRING)
    description: str = Field(default="")


class StepDefinition(BaseModel):
    """One unit of work inside a recipe, bound to exactly one tool."""

    model_config = ConfigDict(frozen=True)

    name: str
    tool: str
    description: str = Field(default="")
    when: Optional[str] = Field(default=None, description="Condition expression")
    depends_on: list[str] = Field(default_factory=list)
    continue_on_error: bool = Field(default=False)
    timeout: Optional[float] = Field(default=None, gt=0, description="Seconds")
    retries: Optional[int] = Field(default=None, ge=0)
    variables: dict[str, Any] = Field(default_factory=dict, description="Step-local bindings")
    env: dict[str, Any] = Field(default_factory=dict, description="Extra environment for subprocesses")
    config: dict[str, Any] = Field(default_factory=dict, description="Tool-specific settings")


class RecipeDefinition(BaseModel):
    """A parsed, validated ``recipe.yml``."""

    model_config = ConfigDict(frozen=True)

    name: str
    description: str = Field(default="")
    version: str = Field(default="1.0.0")
    variables: dict[str, VariableDefinition] = Field(default_factory=dict)
    provides: list[ProvidesEntry] = Field(default_factory=list)
    steps: list[StepDefinition] = Field(default_factory=list)
    on_success: Optional[str] = Field(default=None)
    on_error: Optional[str] = Field(default=None)
    source_path: Optional[Path] = Field(default=None)

    @property
    def base_dir(self) -> Path:
        """Directory holding the recipe file and its assets."""
        if self.source_path is None:
            return Path(".")
        return self.source_path.parent

    def provided_names(self) -> list[str]:
        return [p.name for p in self.provides]

    def required_variables(self) -> list[str]:
        """Names of variables that are required and have no default."""
        return [name for name, var in self.variables.items() if var.is_required_input]


# ---------------------------------------------------------------------------
# Tool validation
# ---------------------------------------------------------------------------


class ResourceEstimate(BaseModel):
    """What a tool expects to consume while executing a step."""

    memory_bytes: int = Field(default=0, ge=0)
    network: bool = Field(default=False)
    processes: int = Field(default=0, ge=0)


class ToolValidationResult(BaseModel):
    """Outcome of a side-effect-free ``Tool.validate`` call."""

    is_valid: bool = Field(default=True)
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)
    estimated_cost_seconds: float = Field(default=0.0, ge=0.0)
    resources: ResourceEstimate = Field(default_factory=ResourceEstimate)


# ---------------------------------------------------------------------------
# Step results
# ---------------------------------------------------------------------------


class StepError(BaseModel):
    """Diagnostic detail for a failed step."""

    model_config = ConfigDict(frozen=True)

    message: str
    kind: StepErrorKind = Field(default=StepErrorKind.EXECUTION)
    retryable: bool = Field(default=False)


class StepResult(BaseModel):
    """Result of executing (or skipping) one step.  Never mutated."""

    model_config = ConfigDict(frozen=True)

    step_name: str
    tool: str
    status: StepStatus
    started_at: datetime
    finished_at: datetime
    duration_seconds: float = Field(default=0.0, ge=0.0)
    attempts: int = Field(default=0, ge=0)
    files_created: list[str] = Field(default_factory=list)
    files_modified: list[str] = Field(default_factory=list)
    files_deleted: list[str] = Field(default_factory=list)
    output: dict[str, Any] = Field(default_factory=dict)
    exports: dict[str, Any] = Field(default_factory=dict)
    warnings: list[str] = Field(default_factory=list)
    error: Optional[StepError] = Field(default=None)
    condition_result: Optional[bool] = Field(default=None)


# ---------------------------------------------------------------------------
# Recipe and group results
# ---------------------------------------------------------------------------


class RecipeExecutionResult(BaseModel):
    """Aggregated outcome of running one recipe."""

    name: str
    success: bool
    step_results: list[StepResult] = Field(default_factory=list)
    duration_seconds: float = Field(default=0.0, ge=0.0)
    files_created: list[str] = Field(default_factory=list)
    files_modified: list[str] = Field(default_factory=list)
    files_deleted: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    variables: dict[str, Any] = Field(default_factory=dict, description="Resolved bindings")
    provided_values: dict[str, Any] = Field(default_factory=dict)

    @computed_field  # type: ignore[misc]
    @property
    def completed_steps(self) -> int:
        return sum(1 for r in self.step_results if r.status == StepStatus.COMPLETED)

    @computed_field  # type: ignore[misc]
    @property
    def failed_steps(self) -> int:
        return sum(1 for r in self.step_results if r.status == StepStatus.FAILED)

    @computed_field  # type: ignore[misc]
    @property
    def skipped_steps(self) -> int:
        return sum(1 for r in self.step_results if r.status == StepStatus.SKIPPED)


class GroupExecutionResult(BaseModel):
    """Aggregated outcome of running every recipe in a group."""

    success: bool
    recipe_results: list[RecipeExecutionResult] = Field(default_factory=list)
    provided_values: dict[str, Any] = Field(
        default_factory=dict, description="Final binding pool: seeded values plus provided ones"
    )
    batches: list[list[str]] = Field(default_factory=list)
    external_params: list[str] = Field(default_factory=list)
    skipped_recipes: list[str] = Field(
        default_factory=list, description="Recipes never dispatched because an earlier batch failed"
    )
    errors: list[str] = Field(default_factory=list)
    duration_seconds: float = Field(default=0.0, ge=0.0)

    def result_for(self, name: str) -> RecipeExecutionResult | None:
        """Return the result of recipe *name*, or ``None`` if it never ran."""
        for result in self.recipe_results:
            if result.name == name:
                return result
        return None
