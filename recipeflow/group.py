"""Orchestration of a group of sibling recipes.

A group is a directory tree of recipe directories.  Recipes declare the
variables they produce (``provides``) and, implicitly, the ones they need
(required variables without a default).  ``GroupExecutor`` turns those
declarations into a dependency graph, rejects collisions and cycles, sorts the
recipes into batches and runs the batches in order::

    Discover -> BuildGraph -> (fail fast) -> TopoSort -> ExecuteBatches -> Aggregate

Recipes in one batch are independent: they run concurrently and each sees
the same snapshot of the binding pool taken when the batch starts.  Values
provided by successful recipes are merged into the pool between batches.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping

from rich.markup import escape

from recipeflow.config import EngineConfig
from recipeflow.engine import RecipeEngine
from recipeflow.errors import ConfigurationError, GroupConfigurationError
from recipeflow.models import GroupExecutionResult, RecipeDefinition, RecipeExecutionResult
from recipeflow.utils import console, format_duration, print_debug, print_error, print_warning

SKIPPED_DIRS = frozenset({"node_modules", "__pycache__"})


# ---------------------------------------------------------------------------
# Group structures
# ---------------------------------------------------------------------------


@dataclass
class GroupRecipeEntry:
    """One discovered recipe.  ``name`` is the recipe directory's name."""

    name: str
    path: Path
    recipe: RecipeDefinition | None = None


@dataclass
class RecipeGroup:
    dir_path: Path
    recipes: list[GroupRecipeEntry] = field(default_factory=list)

    def names(self) -> list[str]:
        return [entry.name for entry in self.recipes]

    def get(self, name: str) -> GroupRecipeEntry | None:
        for entry in self.recipes:
            if entry.name == name:
                return entry
        return None


@dataclass
class DependencyGraph:
    """Recipe name -> names of the recipes it depends on."""

    dependencies: dict[str, set[str]] = field(default_factory=dict)
    provides_map: dict[str, str] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)
    cycles: list[list[str]] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors


@dataclass
class GroupPlan:
    """What ``execute_group`` would do, without doing it."""

    recipes: list[str]
    batches: list[list[str]]
    external_params: list[str]
    provides_map: dict[str, str]
    dependencies: dict[str, list[str]]
    errors: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors


# ---------------------------------------------------------------------------
# Graph algorithms
# ---------------------------------------------------------------------------


def build_dependency_graph(entries: list[GroupRecipeEntry]) -> DependencyGraph:
    """Build the provider/consumer graph and detect collisions and cycles.

    An edge ``consumer -> provider`` is added for every required variable
    without a default that another recipe provides.  A recipe that provides
    a name it also requires does not depend on itself.
    """
    graph = DependencyGraph()

    for entry in entries:
        graph.dependencies[entry.name] = set()
        if entry.recipe is None:
            continue
        for name in entry.recipe.provided_names():
            owner = graph.provides_map.get(name)
            if owner is not None and owner != entry.name:
                graph.errors.append(
                    f"Variable '{name}' is provided by both '{owner}' and '{entry.name}'"
                )
            else:
                graph.provides_map[name] = entry.name

    for entry in entries:
        if entry.recipe is None:
            continue
        for var_name in entry.recipe.required_variables():
            provider = graph.provides_map.get(var_name)
            if provider is not None and provider != entry.name:
                graph.dependencies[entry.name].add(provider)

    for members in _cyclic_components(graph.dependencies):
        path = _cycle_path(members[0], set(members), graph.dependencies)
        graph.cycles.append(path)
        message = f"Circular dependency detected: {' -> '.join(path)}"
        if len(set(path)) < len(members):
            message += f" (cycle group: {', '.join(members)})"
        graph.errors.append(message)
    return graph


def find_cycles(dependencies: Mapping[str, set[str]]) -> list[list[str]]:
    """Return one cycle path per strongly connected component with a cycle.

    Each path starts and ends at the component's lexicographically smallest
    recipe, e.g. ``["a", "b", "a"]``.  Components whose members do not all
    lie on that path are listed in full by ``build_dependency_graph``.
    """
    return [_cycle_path(members[0], set(members), dependencies) for members in _cyclic_components(dependencies)]


def _cyclic_components(dependencies: Mapping[str, set[str]]) -> list[list[str]]:
    """Tarjan's algorithm; sorted members of every component that contains a cycle."""
    index_of: dict[str, int] = {}
    lowlink: dict[str, int] = {}
    on_stack: set[str] = set()
    stack: list[str] = []
    components: list[list[str]] = []
    counter = 0

    def strongconnect(node: str) -> None:
        nonlocal counter
        index_of[node] = lowlink[node] = counter
        counter += 1
        stack.append(node)
        on_stack.add(node)
        for succ in sorted(dependencies.get(node, ())):
            if succ not in dependencies:
                continue
            if succ not in index_of:
                strongconnect(succ)
                lowlink[node] = min(lowlink[node], lowlink[succ])
            elif succ in on_stack:
                lowlink[node] = min(lowlink[node], index_of[succ])
        if lowlink[node] == index_of[node]:
            component: list[str] = []
            while True:
                member = stack.pop()
                on_stack.discard(member)
                component.append(member)
                if member == node:
                    break
            components.append(component)

    for node in sorted(dependencies):
        if node not in index_of:
            strongconnect(node)

    cyclic = [
        sorted(component)
        for component in components
        if len(component) > 1 or component[0] in dependencies.get(component[0], ())
    ]
    cyclic.sort()
    return cyclic


def _cycle_path(start: str, members: set[str], dependencies: Mapping[str, set[str]]) -> list[str]:
    """Find a path ``start -> ... -> start`` inside one strongly connected component."""
    path = [start]
    seen = {start}

    def walk(node: str) -> bool:
        for succ in sorted(dependencies.get(node, ())):
            if succ == start:
                path.append(start)
                return True
            if succ in members and succ not in seen:
                seen.add(succ)
                path.append(succ)
                if walk(succ):
                    return True
                path.pop()
        return False

    walk(start)
    return path


def topological_sort(dependencies: Mapping[str, set[str]], verbose: bool = False) -> list[list[str]]:
    """Group recipes into batches; every batch only depends on earlier ones.

    Each batch is sorted by name.  If no recipe can be placed (a cycle that
    slipped through), sorting stops and the rest are left out.
    """
    batches: list[list[str]] = []
    placed: set[str] = set()
    remaining = set(dependencies)

    while remaining:
        batch = sorted(name for name in remaining if dependencies[name] <= placed)
        if not batch:
            print_debug(f"Unresolvable dependencies for: {', '.join(sorted(remaining))}", verbose)
            break
        batches.append(batch)
        placed.update(batch)
        remaining.difference_update(batch)
    return batches


def compute_external_params(entries: list[GroupRecipeEntry], provides_map: Mapping[str, str]) -> list[str]:
    """Required-without-default names across the group that no recipe provides."""
    required: set[str] = set()
    for entry in entries:
        if entry.recipe is not None:
            required.update(entry.recipe.required_variables())
    return sorted(required - set(provides_map))


# ---------------------------------------------------------------------------
# Executor
# ---------------------------------------------------------------------------


class GroupExecutor:
    """Discovers, plans and executes recipe groups through a ``RecipeEngine``."""

    def __init__(self, engine: RecipeEngine | None = None, config: EngineConfig | None = None) -> None:
        self.engine = engine or RecipeEngine(config=config)
        self.config = config or self.engine.config

    # -- Discover ------------------------------------------------------------

    def discover(self, dir_path: str | Path) -> RecipeGroup:
        """Find every recipe below *dir_path*.

        A subdirectory holding a recipe file is a recipe (its subdirectories
        are its assets); one without is searched recursively.  Hidden
        directories and ``SKIPPED_DIRS`` are never entered.

        Raises:
            GroupConfigurationError: If two recipes share a directory name.
        """
        root = Path(dir_path)
        filename = self.config.recipe_filename
        entries: list[GroupRecipeEntry] = []

        def scan(directory: Path) -> None:
            for child in sorted(directory.iterdir()):
                if not child.is_dir() or child.name.startswith(".") or child.name in SKIPPED_DIRS:
                    continue
                recipe_file = child / filename
                if recipe_file.is_file():
                    entries.append(GroupRecipeEntry(name=child.name, path=recipe_file))
                else:
                    scan(child)

        if root.is_dir():
            scan(root)
        entries.sort(key=lambda e: e.name)

        seen: dict[str, Path] = {}
        duplicates: list[str] = []
        for entry in entries:
            if entry.name in seen:
                duplicates.append(
                    f"Recipe name '{entry.name}' is used by both {seen[entry.name].parent} and {entry.path.parent}"
                )
            else:
                seen[entry.name] = entry.path
        if duplicates:
            raise GroupConfigurationError(duplicates)

        print_debug(f"Discovered {len(entries)} recipes in {root}", self.config.verbose)
        return RecipeGroup(dir_path=root, recipes=entries)

    def load_group(self, group: RecipeGroup) -> list[str]:
        """Load every entry's recipe file; return one error per recipe that failed."""
        errors: list[str] = []
        for entry in group.recipes:
            if entry.recipe is not None:
                continue
            try:
                entry.recipe = self.engine.load(entry.path)
            except ConfigurationError as exc:
                errors.append(f"{entry.name}: {exc}")
        return errors

    # -- Plan ----------------------------------------------------------------

    def plan(self, target: str | Path | RecipeGroup) -> GroupPlan:
        """Discover, load and sort *target* without executing anything."""
        try:
            group = target if isinstance(target, RecipeGroup) else self.discover(target)
        except GroupConfigurationError as exc:
            return GroupPlan([], [], [], {}, {}, errors=list(exc.errors))

        errors = self.load_group(group)
        graph = build_dependency_graph(group.recipes)
        errors.extend(graph.errors)
        return GroupPlan(
            recipes=group.names(),
            batches=[] if errors else topological_sort(graph.dependencies),
            external_params=compute_external_params(group.recipes, graph.provides_map),
            provides_map=dict(graph.provides_map),
            dependencies={name: sorted(deps) for name, deps in graph.dependencies.items()},
            errors=errors,
        )

    # -- Execute -------------------------------------------------------------

    async def execute_group(
        self,
        target: str | Path | RecipeGroup,
        base_vars: Mapping[str, Any] | None = None,
        *,
        overrides: Mapping[str, Any] | None = None,
        continue_on_error: bool | None = None,
        dry_run: bool | None = None,
        force: bool | None = None,
        project_root: Path | None = None,
    ) -> GroupExecutionResult:
        """Run every recipe in *target* in dependency order.

        Args:
            target: A directory to discover or an already discovered group.
            base_vars: Values seeding the binding pool before the first batch.
            overrides: Values that beat recipe defaults in every recipe.
            continue_on_error: Start later batches even after a failure.
            dry_run: Passed to every recipe.
            force: Passed to every recipe.
            project_root: Where outputs are written.

        Configuration problems (load errors, provider collisions, cycles,
        missing external parameters) are returned as a failed result with
        no recipe executed.
        """
        started = time.monotonic()
        exec_cfg = self.config.execution
        keep_going = exec_cfg.continue_on_error if continue_on_error is None else continue_on_error
        is_dry_run = exec_cfg.dry_run if dry_run is None else dry_run
        seeded = dict(base_vars or {})
        explicit = dict(overrides or {})

        def failed(errors: list[str], **extra: Any) -> GroupExecutionResult:
            for err in errors:
                print_error(err)
            return GroupExecutionResult(
                success=False,
                errors=errors,
                provided_values=dict(seeded),
                duration_seconds=time.monotonic() - started,
                **extra,
            )

        # Discover + BuildGraph
        try:
            group = target if isinstance(target, RecipeGroup) else self.discover(target)
        except GroupConfigurationError as exc:
            return failed(list(exc.errors))

        errors = self.load_group(group)
        graph = build_dependency_graph(group.recipes)
        errors.extend(graph.errors)
        external = compute_external_params(group.recipes, graph.provides_map)
        if errors:
            return failed(errors, external_params=external)

        # TopoSort
        batches = topological_sort(graph.dependencies, self.config.verbose)
        missing = [name for name in external if name not in seeded and name not in explicit]
        if missing:
            return failed(
                [f"Missing external parameter(s): {', '.join(missing)}"],
                batches=batches,
                external_params=external,
            )

        # ExecuteBatches
        console.print(
            f"[bold cyan]Recipe group[/bold cyan] {escape(str(group.dir_path))}: "
            f"{len(group.recipes)} recipes in {len(batches)} batches"
        )
        entries = {entry.name: entry for entry in group.recipes}
        semaphore = asyncio.Semaphore(exec_cfg.max_parallel_recipes)
        provided_pool: dict[str, Any] = {}
        recipe_results: list[RecipeExecutionResult] = []
        skipped: list[str] = []
        run_errors: list[str] = []

        for index, batch in enumerate(batches, start=1):
            console.print(f"[bold]Batch {index}/{len(batches)}[/bold]: {escape(', '.join(batch))}")
            snapshot = MappingProxyType(dict(provided_pool))

            async def run_one(name: str) -> RecipeExecutionResult:
                entry = entries[name]
                async with semaphore:
                    return await self._run_recipe(
                        entry,
                        seeded=seeded,
                        provided=snapshot,
                        overrides=explicit,
                        allow_missing=set(graph.provides_map) if is_dry_run else set(entry.recipe.provided_names()),
                        dry_run=is_dry_run,
                        force=force,
                        project_root=project_root,
                    )

            outcomes = await asyncio.gather(*(run_one(name) for name in batch), return_exceptions=True)

            batch_failed = False
            for name, outcome in zip(batch, outcomes):
                if isinstance(outcome, BaseException):
                    if isinstance(outcome, asyncio.CancelledError):
                        raise outcome
                    outcome = RecipeExecutionResult(
                        name=name,
                        success=False,
                        errors=[f"Unexpected error: {type(outcome).__name__}: {outcome}"],
                    )
                recipe_results.append(outcome)
                if outcome.success:
                    provided_pool.update(outcome.provided_values)
                else:
                    batch_failed = True
                    run_errors.extend(f"{name}: {err}" for err in outcome.errors or ["failed"])

            if batch_failed and not keep_going:
                skipped = [name for later in batches[index:] for name in later]
                if skipped:
                    print_warning(f"Stopping after batch {index}; not run: {', '.join(skipped)}")
                break

        result = GroupExecutionResult(
            success=all(r.success for r in recipe_results),
            recipe_results=recipe_results,
            provided_values={**seeded, **provided_pool},
            batches=batches,
            external_params=external,
            skipped_recipes=skipped,
            errors=run_errors,
            duration_seconds=time.monotonic() - started,
        )
        print_debug(
            f"Group finished in {format_duration(result.duration_seconds)}: "
            f"{sum(r.success for r in recipe_results)}/{len(group.recipes)} recipes succeeded",
            self.config.verbose,
        )
        return result

    async def _run_recipe(
        self,
        entry: GroupRecipeEntry,
        *,
        seeded: Mapping[str, Any],
        provided: Mapping[str, Any],
        overrides: Mapping[str, Any],
        allow_missing: set[str],
        dry_run: bool,
        force: bool | None,
        project_root: Path | None,
    ) -> RecipeExecutionResult:
        result = await self.engine.execute(
            entry.recipe,  # type: ignore[arg-type]
            base=seeded,
            provided=provided,
            overrides=overrides,
            allow_missing=allow_missing,
            project_root=project_root,
            dry_run=dry_run,
            force=force,
        )
        if result.name != entry.name:
            result = result.model_copy(update={"name": entry.name})
        return result
