"""Variable binding resolution and constraint checks.

Bindings are merged from four layers, later layers winning::

    base (group pool) < provided (sibling outputs) < recipe defaults < overrides

Every declared variable is then checked against its type and constraints.
Values are never coerced, with one exception: a string supplied for a
``number`` or ``boolean`` variable is converted when the conversion is
lossless (``"3"`` -> ``3``, ``"true"`` -> ``True``), since command line
values always arrive as strings.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any, Iterable, Mapping

from recipeflow.errors import VariableValidationError
from recipeflow.models import RecipeDefinition, VariableDefinition, VariableType

_TRUE_STRINGS = {"true", "yes", "on", "1"}
_FALSE_STRINGS = {"false", "no", "off", "0"}
_NUMBER_RE = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?$")


def resolve_variables(
    recipe: RecipeDefinition,
    *,
    base: Mapping[str, Any] | None = None,
    provided: Mapping[str, Any] | None = None,
    overrides: Mapping[str, Any] | None = None,
    allow_missing: Iterable[str] = (),
) -> dict[str, Any]:
    """Merge the binding layers for *recipe* and validate declared variables.

    Args:
        recipe: The recipe whose declared variables are checked.
        base: Group-seeded values.
        provided: Values produced by already executed sibling recipes.
        overrides: Explicit values that beat everything, defaults included.
        allow_missing: Required names that may stay unbound (a sibling is
            expected to provide them later).

    Returns:
        The merged bindings.  Undeclared supplied names pass through.

    Raises:
        VariableValidationError: For the first variable, in declaration
            order, that is missing or violates its constraint.
    """
    bindings: dict[str, Any] = {}
    bindings.update(base or {})
    bindings.update(provided or {})
    for name, definition in recipe.variables.items():
        if definition.has_default:
            bindings[name] = definition.default
    bindings.update(overrides or {})

    allowed = set(allow_missing)
    for name, definition in recipe.variables.items():
        if name not in bindings:
            if definition.required and name not in allowed:
                raise VariableValidationError(
                    name, "required", "no value supplied and no default declared", recipe.name
                )
            continue
        if bindings[name] is None:
            if definition.required and not definition.has_default:
                raise VariableValidationError(name, "required", "value is null", recipe.name)
            continue
        bindings[name] = validate_value(name, bindings[name], definition, recipe=recipe.name)
    return bindings


def validate_value(
    name: str,
    value: Any,
    definition: VariableDefinition,
    recipe: str | None = None,
) -> Any:
    """Check *value* against *definition* and return it (converted if lossless).

    Raises:
        VariableValidationError: Naming the variable and the failed constraint.
    """

    def fail(constraint: str, message: str) -> VariableValidationError:
        return VariableValidationError(name, constraint, message, recipe)

    kind = definition.type

    if kind == VariableType.NUMBER:
        value = _to_number(value)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise fail("type", f"expected a number, got {value!r}")
        if definition.min is not None and value < definition.min:
            raise fail("min", f"{value} is less than {definition.min:g}")
        if definition.max is not None and value > definition.max:
            raise fail("max", f"{value} is greater than {definition.max:g}")
        return value

    if kind == VariableType.BOOLEAN:
        value = _to_boolean(value)
        if not isinstance(value, bool):
            raise fail("type", f"expected a boolean, got {value!r}")
        return value

    if kind == VariableType.ENUM:
        if value not in definition.values:
            choices = ", ".join(repr(v) for v in definition.values)
            raise fail("enum", f"{value!r} is not one of {choices}")
        return value

    if kind == VariableType.ARRAY:
        if not isinstance(value, (list, tuple)):
            raise fail("type", f"expected an array, got {type(value).__name__}")
        _check_length(fail, len(value), definition, "items")
        return value

    if kind == VariableType.OBJECT:
        if not isinstance(value, Mapping):
            raise fail("type", f"expected an object, got {type(value).__name__}")
        return value

    if kind in (VariableType.FILE, VariableType.DIRECTORY):
        if not isinstance(value, (str, Path)):
            raise fail("type", f"expected a path, got {type(value).__name__}")
        return value

    # string
    if not isinstance(value, str):
        raise fail("type", f"expected a string, got {type(value).__name__}")
    if definition.pattern is not None and re.search(definition.pattern, value) is None:
        raise fail("pattern", f"{value!r} does not match /{definition.pattern}/")
    _check_length(fail, len(value), definition, "characters")
    return value


def _check_length(fail, length: int, definition: VariableDefinition, unit: str) -> None:
    if definition.min is not None and length < definition.min:
        raise fail("min", f"needs at least {definition.min:g} {unit}, got {length}")
    if definition.max is not None and length > definition.max:
        raise fail("max", f"allows at most {definition.max:g} {unit}, got {length}")


def _to_number(value: Any) -> Any:
    if not isinstance(value, str) or not _NUMBER_RE.match(value.strip()):
        return value
    text = value.strip()
    if re.fullmatch(r"[+-]?\d+", text):
        return int(text)
    return float(text)


def _to_boolean(value: Any) -> Any:
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
    return value
