"""The contract every step tool implements.

A tool is created per recipe execution by the ``ToolRegistry``.  The engine
calls ``setup`` once, ``validate`` for every step before any step runs, then
``execute`` step by step, and finally ``cleanup`` whether or not the recipe
succeeded.
"""

from __future__ import annotations

import inspect
import os
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Mapping

from recipeflow.models import RecipeDefinition, StepDefinition, StepResult, ToolValidationResult
from recipeflow.rendering import render_string, render_value
from recipeflow.utils import print_warning


# ---------------------------------------------------------------------------
# Execution context passed to tools
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StepContext:
    """Everything a tool may read while validating or executing a step.

    ``variables`` is a read-only view: the recipe inputs plus the exports of
    earlier steps plus the step's own ``variables`` block.
    """

    recipe: RecipeDefinition
    variables: Mapping[str, Any]
    project_root: Path
    dry_run: bool = False
    force: bool = False
    step_results: Mapping[str, StepResult] = field(default_factory=dict)
    verbose: bool = False

    @property
    def recipe_dir(self) -> Path:
        return self.recipe.base_dir

    def render(self, value: Any) -> Any:
        """Render ``{{ ... }}`` expressions inside *value* against the step variables."""
        return render_value(value, self.variables)

    def render_str(self, value: str) -> str:
        return render_string(value, self.variables)


@dataclass(frozen=True)
class StepExecutionOptions:
    """Per-call knobs shared by every step of a recipe run."""

    timeout: float | None = None
    retries: int | None = None
    dry_run: bool = False
    force: bool = False


@dataclass
class ToolOutcome:
    """What a tool reports back after successfully executing a step."""

    files_created: list[str] = field(default_factory=list)
    files_modified: list[str] = field(default_factory=list)
    files_deleted: list[str] = field(default_factory=list)
    output: dict[str, Any] = field(default_factory=dict)
    exports: dict[str, Any] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)


@dataclass
class ToolResource:
    """Something a tool acquired that must be released in ``cleanup``."""

    id: str
    kind: str  # "file", "process", "network", ...
    release: Callable[[], Any]
    metadata: dict[str, Any] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Tool base class
# ---------------------------------------------------------------------------


class Tool(ABC):
    """Base class for step tools.

    Subclasses set ``tool_type`` and implement ``validate`` and ``execute``.
    ``validate`` must not touch the filesystem beyond reading; anything that
    passes validation must not fail ``execute`` because of its shape.
    """

    tool_type: str = ""

    def __init__(self) -> None:
        self._resources: dict[str, ToolResource] = {}
        self._is_setup = False
        self._is_cleaned_up = False

    # -- Lifecycle -----------------------------------------------------------

    async def setup(self) -> None:
        if self._is_setup:
            return
        await self.on_setup()
        self._is_setup = True

    async def on_setup(self) -> None:
        """Hook for subclasses that need to acquire something up front."""

    @abstractmethod
    async def validate(self, step: StepDefinition, context: StepContext) -> ToolValidationResult:
        """Check the step configuration without side effects."""

    @abstractmethod
    async def execute(
        self,
        step: StepDefinition,
        context: StepContext,
        options: StepExecutionOptions,
    ) -> ToolOutcome:
        """Do the work.  Raise ``ToolExecutionError`` on tool-reported failure."""

    async def cleanup(self) -> list[str]:
        """Release every registered resource and return cleanup error messages.

        Cleanup problems are printed as warnings and never raised.
        """
        if self._is_cleaned_up:
            return []

        errors: list[str] = []
        for resource_id, resource in list(self._resources.items()):
            try:
                result = resource.release()
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:  # noqa: BLE001
                errors.append(f"Failed to release {resource.kind} resource '{resource_id}': {exc}")

        try:
            await self.on_cleanup()
        except Exception as exc:  # noqa: BLE001
            errors.append(f"Tool '{self.tool_type}' cleanup failed: {exc}")

        self._resources.clear()
        self._is_cleaned_up = True

        for err in errors:
            print_warning(f"  {err}")
        return errors

    async def on_cleanup(self) -> None:
        """Hook for subclasses with extra teardown."""

    # -- Resources -----------------------------------------------------------

    def register_resource(self, resource: ToolResource) -> None:
        self._resources[resource.id] = resource

    def unregister_resource(self, resource_id: str) -> None:
        self._resources.pop(resource_id, None)

    @property
    def resources(self) -> dict[str, ToolResource]:
        return dict(self._resources)

    # -- Helpers -------------------------------------------------------------

    def write_file(self, path: Path, content: str) -> None:
        """Write *content* to *path* through a temp file in the same directory.

        The temp file is tracked as a resource while it exists, so an
        interrupted write leaves no stray file once ``cleanup`` runs.
        """
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
        resource_id = f"tmp:{tmp_name}"
        self.register_resource(
            ToolResource(id=resource_id, kind="file", release=lambda: _remove_quietly(tmp_name))
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(content)
            os.replace(tmp_name, path)
        finally:
            if not os.path.exists(tmp_name):
                self.unregister_resource(resource_id)

    @staticmethod
    def relative(path: Path, root: Path) -> str:
        """Return *path* relative to *root* when possible, for reporting."""
        try:
            return str(path.resolve().relative_to(root.resolve()))
        except ValueError:
            return str(path)


def _remove_quietly(name: str) -> None:
    if os.path.exists(name):
        os.remove(name)
