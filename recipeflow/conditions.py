"""Evaluation of step ``when`` expressions.

Conditions are Jinja2 expressions evaluated against the step's variables::

    when: use_auth and framework == "fastapi"
    when: "{{ not file_exists('pyproject.toml') }}"

A surrounding ``{{ ... }}`` is optional.  Names that are not bound evaluate
as undefined (falsy) rather than raising, so optional inputs can gate steps;
malformed expressions raise ``ConditionError``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Mapping

from jinja2 import TemplateError
from jinja2.sandbox import SandboxedEnvironment

from recipeflow.errors import ConditionError
from recipeflow.rendering import camel_case, kebab_case, pascal_case, slugify, snake_case

_env = SandboxedEnvironment()
_env.filters.update(
    slugify=slugify,
    pascal_case=pascal_case,
    snake_case=snake_case,
    camel_case=camel_case,
    kebab_case=kebab_case,
)


def _strip_delimiters(expression: str) -> str:
    expr = expression.strip()
    if expr.startswith("{{") and expr.endswith("}}"):
        expr = expr[2:-2].strip()
    return expr


def evaluate_condition(
    expression: str,
    variables: Mapping[str, Any],
    project_root: Path | None = None,
) -> bool:
    """Evaluate *expression* and return its truth value.

    ``file_exists(path)`` and ``dir_exists(path)`` are available and resolve
    relative paths against *project_root*.

    Raises:
        ConditionError: If the expression cannot be compiled or evaluated.
    """
    expr = _strip_delimiters(expression)
    if not expr:
        raise ConditionError(expression, "empty expression")

    root = project_root or Path(".")

    def _resolve(path: str) -> Path:
        candidate = Path(str(path))
        return candidate if candidate.is_absolute() else root / candidate

    scope: dict[str, Any] = dict(variables)
    scope["variables"] = dict(variables)
    scope["file_exists"] = lambda path: _resolve(path).is_file()
    scope["dir_exists"] = lambda path: _resolve(path).is_dir()

    try:
        compiled = _env.compile_expression(expr, undefined_to_none=False)
        return bool(compiled(**scope))
    except TemplateError as exc:
        raise ConditionError(expression, str(exc)) from exc
    except (TypeError, ValueError, ZeroDivisionError, AttributeError, KeyError) as exc:
        raise ConditionError(expression, str(exc)) from exc
