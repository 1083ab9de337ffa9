"""Rich summaries of recipe and group results.

Printed once a run is over; there is no live progress display.
"""

from __future__ import annotations

from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from recipeflow.group import GroupPlan
from recipeflow.models import GroupExecutionResult, RecipeExecutionResult, StepStatus
from recipeflow.utils import console, format_duration

_STATUS_STYLE = {
    StepStatus.COMPLETED: "green",
    StepStatus.FAILED: "red",
    StepStatus.SKIPPED: "yellow",
}


def build_step_table(result: RecipeExecutionResult) -> Table:
    table = Table(title=f"Recipe: {escape(result.name)}", show_lines=False)
    table.add_column("Step", style="bold", no_wrap=True)
    table.add_column("Tool", width=10)
    table.add_column("Status", width=10)
    table.add_column("Duration", justify="right", width=10)
    table.add_column("Detail")

    for step in result.step_results:
        style = _STATUS_STYLE[step.status]
        if step.error is not None:
            detail = step.error.message
        else:
            touched = len(step.files_created) + len(step.files_modified) + len(step.files_deleted)
            detail = f"{touched} file(s)" if touched else ""
        table.add_row(
            escape(step.step_name),
            step.tool,
            f"[{style}]{step.status.value}[/{style}]",
            format_duration(step.duration_seconds),
            escape(detail),
        )
    return table


def build_group_table(result: GroupExecutionResult) -> Table:
    table = Table(title="Recipe Group", show_lines=True)
    table.add_column("Batch", justify="right", width=6)
    table.add_column("Recipe", style="bold")
    table.add_column("Result", width=10)
    table.add_column("Steps", width=14)
    table.add_column("Files", justify="right", width=6)
    table.add_column("Duration", justify="right", width=10)

    batch_of = {name: index for index, batch in enumerate(result.batches, start=1) for name in batch}
    for recipe in result.recipe_results:
        status = "[green]ok[/green]" if recipe.success else "[red]failed[/red]"
        files = len(recipe.files_created) + len(recipe.files_modified) + len(recipe.files_deleted)
        table.add_row(
            str(batch_of.get(recipe.name, "-")),
            escape(recipe.name),
            status,
            f"{recipe.completed_steps}/{recipe.failed_steps}/{recipe.skipped_steps}",
            str(files),
            format_duration(recipe.duration_seconds),
        )
    for name in result.skipped_recipes:
        table.add_row(str(batch_of.get(name, "-")), escape(name), "[yellow]not run[/yellow]", "", "", "")
    return table


def render_recipe_summary(result: RecipeExecutionResult) -> None:
    """Print the step table and a closing panel for one recipe."""
    console.print()
    console.print(build_step_table(result))
    _print_panel(
        title="Recipe Complete" if result.success else "Recipe Failed",
        success=result.success,
        lines=[
            f"Recipe    : {result.name}",
            f"Duration  : {format_duration(result.duration_seconds)}",
            f"Steps     : {result.completed_steps} completed, {result.failed_steps} failed, "
            f"{result.skipped_steps} skipped",
            f"Files     : {len(result.files_created)} created, {len(result.files_modified)} modified, "
            f"{len(result.files_deleted)} deleted",
        ],
        errors=result.errors,
        warnings=result.warnings,
    )


def render_group_summary(result: GroupExecutionResult) -> None:
    """Print the per-recipe table and a closing panel for a group run."""
    console.print()
    if result.recipe_results or result.skipped_recipes:
        console.print(build_group_table(result))

    lines = [
        f"Duration  : {format_duration(result.duration_seconds)}",
        f"Batches   : {' | '.join(', '.join(b) for b in result.batches) or 'none'}",
        f"External  : {', '.join(result.external_params) or 'none'}",
    ]
    if result.provided_values:
        lines.append(f"Bindings  : {', '.join(sorted(result.provided_values))}")
    _print_panel(
        title="Group Complete" if result.success else "Group Failed",
        success=result.success,
        lines=lines,
        errors=result.errors,
        warnings=[w for r in result.recipe_results for w in r.warnings],
    )


def render_plan(plan: GroupPlan) -> None:
    """Print the batches and external parameters of a planned group."""
    table = Table(title="Execution Plan", show_lines=False)
    table.add_column("Batch", justify="right", width=6)
    table.add_column("Recipes")
    for index, batch in enumerate(plan.batches, start=1):
        table.add_row(str(index), escape(", ".join(batch)))
    console.print(table)

    lines = [
        f"Recipes   : {len(plan.recipes)}",
        f"External  : {', '.join(plan.external_params) or 'none'}",
    ]
    for name, provider in sorted(plan.provides_map.items()):
        lines.append(f"Provides  : {name} <- {provider}")
    _print_panel(
        title="Plan" if plan.is_valid else "Plan Invalid",
        success=plan.is_valid,
        lines=lines,
        errors=plan.errors,
        warnings=[],
    )


def _print_panel(title: str, success: bool, lines: list[str], errors: list[str], warnings: list[str]) -> None:
    body = [escape(line) for line in lines]
    if errors:
        body.append("")
        body.extend(f"[red]x[/red] {escape(err)}" for err in errors)
    if warnings:
        body.append("")
        body.extend(f"[yellow]![/yellow] {escape(w)}" for w in warnings)
    console.print(
        Panel(
            "\n".join(body),
            title=f"[bold]{title}[/bold]",
            border_style="green" if success else "red",
        )
    )
