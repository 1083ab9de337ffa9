"""Jinja2 template rendering tool.

Renders either a single template file or a whole directory of ``*.j2``
templates into the project tree.  Template paths are resolved against the
recipe directory; output paths against the project root, and may themselves
contain ``{{ ... }}`` expressions (``src/{{ name | snake_case }}.py.j2``).

Step configuration::

    - name: component
      tool: template
      template: templates/component.tsx.j2   # file or directory
      to: src/components/{{ name | pascal_case }}.tsx
      overwrite: false
      exclude: ["*.md.j2"]

Templates can hand values to later steps with ``{{ provide("key", value) }}``.
"""

from __future__ import annotations

import asyncio
import fnmatch
from pathlib import Path
from typing import Any

from jinja2 import FileSystemLoader, TemplateError

from recipeflow.errors import ToolExecutionError
from recipeflow.models import ResourceEstimate, StepDefinition, ToolValidationResult
from recipeflow.rendering import create_environment, render_string, resolve_path
from recipeflow.tools.base import StepContext, StepExecutionOptions, Tool, ToolOutcome

_TEMPLATE_SUFFIX = ".j2"


class TemplateTool(Tool):
    """Renders Jinja2 templates from a recipe's assets into the project."""

    tool_type = "template"

    # -- Validation ----------------------------------------------------------

    async def validate(self, step: StepDefinition, context: StepContext) -> ToolValidationResult:
        errors: list[str] = []
        warnings: list[str] = []

        template = step.config.get("template")
        if not isinstance(template, str) or not template.strip():
            errors.append("Template step requires a 'template' path")
            return ToolValidationResult(is_valid=False, errors=errors)

        to = step.config.get("to")
        if to is not None and not isinstance(to, str):
            errors.append("'to' must be a string path")

        exclude = step.config.get("exclude", [])
        if not isinstance(exclude, list) or not all(isinstance(p, str) for p in exclude):
            errors.append("'exclude' must be a list of glob patterns")
            exclude = []

        source = resolve_path(template, context.recipe_dir)
        sources: list[Path] = []
        if source.is_dir():
            sources = self._collect_sources(source, exclude)
            if not sources:
                warnings.append(f"Template directory {template} contains no *.j2 files")
        elif source.is_file():
            sources = [source]
        else:
            errors.append(f"Template not found: {source}")

        # Parse (not render) every template so syntax errors surface before execution.
        env = create_environment()
        for path in sources:
            try:
                env.parse(path.read_text(encoding="utf-8"))
            except TemplateError as exc:
                errors.append(f"Template syntax error in {path.name}: {exc}")

        return ToolValidationResult(
            is_valid=not errors,
            errors=errors,
            warnings=warnings,
            estimated_cost_seconds=0.05 * max(len(sources), 1),
            resources=ResourceEstimate(memory_bytes=5 * 1024 * 1024),
        )

    # -- Execution -----------------------------------------------------------

    async def execute(
        self,
        step: StepDefinition,
        context: StepContext,
        options: StepExecutionOptions,
    ) -> ToolOutcome:
        template = step.config["template"]
        source = resolve_path(template, context.recipe_dir)
        overwrite = bool(step.config.get("overwrite", False)) or options.force or context.force
        exclude = step.config.get("exclude", [])

        outcome = ToolOutcome()
        exports: dict[str, Any] = {}
        render_context = self._build_render_context(step, context, exports)

        try:
            if source.is_dir():
                out_base = resolve_path(context.render_str(step.config.get("to", ".")), context.project_root)
                env = create_environment(FileSystemLoader(str(source)))
                env.globals["provide"] = render_context["provide"]
                for template_file in self._collect_sources(source, exclude):
                    rel = template_file.relative_to(source).as_posix()
                    rel_out = render_string(rel[: -len(_TEMPLATE_SUFFIX)], render_context)
                    content = env.get_template(rel).render(**render_context)
                    await self._emit(out_base / rel_out, content, overwrite, context, outcome)
            else:
                default_to = source.name[: -len(_TEMPLATE_SUFFIX)] if source.name.endswith(_TEMPLATE_SUFFIX) else source.name
                target = resolve_path(context.render_str(step.config.get("to", default_to)), context.project_root)
                env = create_environment(FileSystemLoader(str(source.parent)))
                env.globals["provide"] = render_context["provide"]
                content = env.get_template(source.name).render(**render_context)
                await self._emit(target, content, overwrite, context, outcome)
        except TemplateError as exc:
            raise ToolExecutionError(f"Template rendering failed for {template}: {exc}") from exc

        outcome.exports = exports
        outcome.output = {
            "template": str(template),
            "rendered": len(outcome.files_created) + len(outcome.files_modified),
        }
        return outcome

    # -- Internal helpers ----------------------------------------------------

    @staticmethod
    def _collect_sources(directory: Path, exclude: list[str]) -> list[Path]:
        found = []
        for path in sorted(directory.rglob(f"*{_TEMPLATE_SUFFIX}")):
            rel = path.relative_to(directory).as_posix()
            if any(fnmatch.fnmatch(rel, pattern) or fnmatch.fnmatch(path.name, pattern) for pattern in exclude):
                continue
            found.append(path)
        return found

    @staticmethod
    def _build_render_context(
        step: StepDefinition,
        context: StepContext,
        exports: dict[str, Any],
    ) -> dict[str, Any]:
        def provide(key: str, value: Any) -> str:
            exports[key] = value
            return ""

        render_context = dict(context.variables)
        render_context.update(
            {
                "recipe": {"name": context.recipe.name, "version": context.recipe.version},
                "step": {"name": step.name, "description": step.description},
                "provide": provide,
            }
        )
        return render_context

    async def _emit(
        self,
        target: Path,
        content: str,
        overwrite: bool,
        context: StepContext,
        outcome: ToolOutcome,
    ) -> None:
        rel = self.relative(target, context.project_root)
        existed = target.exists()
        if existed and not overwrite:
            outcome.warnings.append(f"Skipped existing file {rel} (use force to overwrite)")
            return
        await asyncio.to_thread(self.write_file, target, content)
        if existed:
            outcome.files_modified.append(rel)
        else:
            outcome.files_created.append(rel)
