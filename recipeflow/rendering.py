"""Jinja2 environment shared by templates, inline strings and conditions.

Every place that turns ``{{ name }}`` into a value goes through the
environment built here so filters and undefined-variable behaviour are the
same for template files, shell commands, prompts and ``when`` expressions.
"""

from __future__ import annotations

import re
from functools import lru_cache
from pathlib import Path
from typing import Any, Mapping

from jinja2 import BaseLoader, Environment, StrictUndefined, select_autoescape


def create_environment(loader: BaseLoader | None = None) -> Environment:
    """Return a Jinja2 environment with the recipeflow filters registered.

    Undefined variables raise instead of rendering as empty strings so a
    missing binding is reported rather than silently producing broken code.
    """
    env = Environment(
        loader=loader,
        autoescape=select_autoescape([]),
        keep_trailing_newline=True,
        trim_blocks=True,
        lstrip_blocks=True,
        undefined=StrictUndefined,
    )
    env.filters["slugify"] = slugify
    env.filters["pascal_case"] = pascal_case
    env.filters["snake_case"] = snake_case
    env.filters["camel_case"] = camel_case
    env.filters["kebab_case"] = kebab_case
    return env


@lru_cache(maxsize=1)
def _inline_environment() -> Environment:
    return create_environment()


def render_string(template_string: str, variables: Mapping[str, Any]) -> str:
    """Render an inline template string against *variables*."""
    if "{{" not in template_string and "{%" not in template_string:
        return template_string
    return _inline_environment().from_string(template_string).render(**dict(variables))


def render_value(value: Any, variables: Mapping[str, Any]) -> Any:
    """Recursively render strings inside lists and dicts; other values pass through."""
    if isinstance(value, str):
        return render_string(value, variables)
    if isinstance(value, list):
        return [render_value(v, variables) for v in value]
    if isinstance(value, dict):
        return {k: render_value(v, variables) for k, v in value.items()}
    return value


def resolve_path(raw: str | Path, base: Path) -> Path:
    """Resolve *raw* against *base* unless it is already absolute."""
    path = Path(raw)
    return path if path.is_absolute() else base / path


# ---------------------------------------------------------------------------
# Case filters
# ---------------------------------------------------------------------------

def slugify(value: str) -> str:
    """Convert a string to a URL/filename-safe slug."""
    slug = re.sub(r"[^a-z0-9]+", "-", str(value).lower().strip())
    return slug.strip("-")


def pascal_case(value: str) -> str:
    """Convert ``some-thing`` or ``some_thing`` to ``SomeThing``."""
    parts = re.split(r"[-_\s]+", snake_case(value))
    return "".join(word.capitalize() for word in parts if word)


def snake_case(value: str) -> str:
    """Convert ``SomeThing`` or ``some-thing`` to ``some_thing``."""
    s1 = re.sub(r"(.)([A-Z][a-z]+)", r"\1_\2", str(value))
    s2 = re.sub(r"([a-z0-9])([A-Z])", r"\1_\2", s1)
    return re.sub(r"[-\s]+", "_", s2).lower()


def camel_case(value: str) -> str:
    """Convert ``some-thing`` or ``some_thing`` to ``someThing``."""
    pascal = pascal_case(value)
    if pascal:
        return pascal[0].lower() + pascal[1:]
    return ""


def kebab_case(value: str) -> str:
    """Convert ``SomeThing`` or ``some_thing`` to ``some-thing``."""
    return snake_case(value).replace("_", "-")
