"""Command line entry point.

Examples::

    recipeflow run recipes/ --var project=shop --var with_tests=true
    recipeflow run recipes/api-endpoint --single --var name=orders
    recipeflow run recipes/ --actions tools/actions.py --var project=shop
    recipeflow plan recipes/
"""

from __future__ import annotations

import argparse
import asyncio
import importlib
import importlib.util
import sys
from pathlib import Path

from recipeflow.config import EngineConfig
from recipeflow.engine import RecipeEngine
from recipeflow.errors import ConfigurationError
from recipeflow.group import GroupExecutor
from recipeflow.report import render_group_summary, render_plan, render_recipe_summary
from recipeflow.tools.action_tool import ActionRegistry
from recipeflow.tools.registry import create_default_registry
from recipeflow.utils import parse_assignments, print_error


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="recipeflow",
        description="recipeflow -- run code-generation recipes and recipe groups",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  recipeflow run recipes/ --var project=shop\n"
            "  recipeflow run recipes/api-endpoint --single --var name=orders\n"
            "  recipeflow run recipes/ --actions tools/actions.py --var project=shop\n"
            "  recipeflow plan recipes/\n"
        ),
    )
    parser.add_argument("--config", default=None, help="JSON config file (see EngineConfig.save)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Print step-level detail")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Execute a recipe group (or a single recipe with --single)")
    run.add_argument("path", help="Group directory, recipe directory or recipe.yml")
    run.add_argument("--var", action="append", default=[], metavar="NAME=VALUE", help="Input variable")
    run.add_argument("--project-root", default=None, help="Where generated files go (default: .)")
    run.add_argument("--dry-run", action="store_true", help="Validate and report without running tools")
    run.add_argument("--force", action="store_true", help="Overwrite existing files")
    run.add_argument("--continue-on-error", action="store_true", help="Keep going after failures")
    run.add_argument("--single", action="store_true", help="Treat PATH as one recipe, not a group")
    run.add_argument(
        "--actions",
        default=None,
        metavar="MODULE",
        help=(
            "Dotted module name or .py file defining an ActionRegistry named 'actions'; "
            "without it no actions are registered and every action step fails validation"
        ),
    )

    plan = sub.add_parser("plan", help="Show batches and external parameters without executing")
    plan.add_argument("path", help="Group directory")
    return parser


def _load_config(args: argparse.Namespace) -> EngineConfig:
    config = EngineConfig.load(Path(args.config)) if args.config else EngineConfig.from_env()
    updates: dict = {}
    if args.verbose:
        updates["verbose"] = True
    if getattr(args, "project_root", None):
        updates["working_dir"] = Path(args.project_root)
    return config.model_copy(update=updates) if updates else config


def _load_actions(target: str) -> ActionRegistry:
    """Import *target* and return its module-level ``actions`` registry.

    *target* is either a path to a ``.py`` file or a dotted module name
    importable from ``sys.path``.
    """
    path = Path(target)
    try:
        if path.suffix == ".py":
            if not path.is_file():
                raise ConfigurationError(f"Actions file not found: {path}")
            spec = importlib.util.spec_from_file_location(f"recipeflow_actions_{path.stem}", path)
            if spec is None or spec.loader is None:
                raise ConfigurationError(f"Cannot import actions from {path}")
            module = importlib.util.module_from_spec(spec)
            spec.loader.exec_module(module)
        else:
            module = importlib.import_module(target)
    except ConfigurationError:
        raise
    except Exception as exc:  # noqa: BLE001
        raise ConfigurationError(f"Cannot import actions from {target}: {type(exc).__name__}: {exc}") from exc

    actions = getattr(module, "actions", None)
    if not isinstance(actions, ActionRegistry):
        raise ConfigurationError(f"{target} does not define an ActionRegistry named 'actions'")
    return actions


def main(argv: list[str] | None = None) -> int:
    """CLI entry point.  Returns the process exit code."""
    args = build_parser().parse_args(argv)
    config = _load_config(args)
    actions = None
    if getattr(args, "actions", None):
        try:
            actions = _load_actions(args.actions)
        except ConfigurationError as exc:
            print_error(f"Error: {exc}")
            return 2
    engine = RecipeEngine(registry=create_default_registry(config, actions), config=config)
    group = GroupExecutor(engine, config)

    if args.command == "plan":
        plan = group.plan(Path(args.path))
        render_plan(plan)
        return 0 if plan.is_valid else 1

    try:
        variables = parse_assignments(args.var)
    except ValueError as exc:
        print_error(f"Error: {exc}")
        return 2

    flags = {
        "dry_run": args.dry_run or None,
        "force": args.force or None,
        "continue_on_error": args.continue_on_error or None,
    }

    if args.single:
        try:
            recipe = engine.load(Path(args.path))
        except ConfigurationError as exc:
            print_error(f"Error: {exc}")
            return 1
        result = asyncio.run(engine.execute(recipe, overrides=variables, **flags))
        render_recipe_summary(result)
        return 0 if result.success else 1

    group_result = asyncio.run(
        group.execute_group(Path(args.path), base_vars=variables, overrides=variables, **flags)
    )
    render_group_summary(group_result)
    return 0 if group_result.success else 1


if __name__ == "__main__":
    sys.exit(main())
