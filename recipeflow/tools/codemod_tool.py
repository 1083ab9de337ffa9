"""Text-level source transformations.

Step configuration::

    - name: register-route
      tool: codemod
      files: ["src/routes/*.py"]
      backup: false
      transforms:
        - replace: "VERSION = '.*'"
          with: "VERSION = '{{ version }}'"
        - insert_after: "^# routes$"
          content: "from .{{ name | snake_case }} import router"
        - append: "\n__all__ = ['router']\n"

Insertions are idempotent: if the content is already present in the file the
transform is a no-op.  Files whose text is unchanged are not reported.
With ``backup: true`` the original of every modified file is copied to
``<file>.bak`` first and the copy is reported as created.
"""

from __future__ import annotations

import asyncio
import re
import shutil
from pathlib import Path
from typing import Any

from recipeflow.errors import ToolExecutionError
from recipeflow.models import ResourceEstimate, StepDefinition, ToolValidationResult
from recipeflow.tools.base import StepContext, StepExecutionOptions, Tool, ToolOutcome

TRANSFORM_KINDS = ("replace", "insert_after", "insert_before", "append", "prepend")


class CodemodTool(Tool):
    """Applies regex and insertion transforms to existing project files."""

    tool_type = "codemod"

    async def validate(self, step: StepDefinition, context: StepContext) -> ToolValidationResult:
        errors: list[str] = []
        warnings: list[str] = []

        files = step.config.get("files")
        if isinstance(files, str):
            files = [files]
        if not isinstance(files, list) or not files or not all(isinstance(f, str) for f in files):
            errors.append("Codemod step requires 'files': a glob or list of globs")

        transforms = step.config.get("transforms")
        if not isinstance(transforms, list) or not transforms:
            errors.append("Codemod step requires a non-empty 'transforms' list")
            transforms = []

        for index, transform in enumerate(transforms, start=1):
            errors.extend(self._check_transform(index, transform))

        if not errors and not step.when and not any("{{" in f for f in files):
            if not self._match_files(files, context.project_root, context):
                warnings.append(f"No files currently match {', '.join(files)}")

        return ToolValidationResult(
            is_valid=not errors,
            errors=errors,
            warnings=warnings,
            estimated_cost_seconds=0.1,
            resources=ResourceEstimate(memory_bytes=10 * 1024 * 1024),
        )

    @staticmethod
    def _check_transform(index: int, transform: Any) -> list[str]:
        if not isinstance(transform, dict):
            return [f"Transform {index} must be a mapping"]
        kinds = [k for k in TRANSFORM_KINDS if k in transform]
        if len(kinds) != 1:
            return [f"Transform {index} must use exactly one of {', '.join(TRANSFORM_KINDS)}"]
        kind = kinds[0]
        problems: list[str] = []
        if kind in ("replace", "insert_after", "insert_before"):
            try:
                re.compile(str(transform[kind]), re.MULTILINE)
            except re.error as exc:
                problems.append(f"Transform {index}: invalid pattern {transform[kind]!r}: {exc}")
        if kind == "replace" and "with" not in transform:
            problems.append(f"Transform {index}: 'replace' needs a 'with' value")
        if kind in ("insert_after", "insert_before") and "content" not in transform:
            problems.append(f"Transform {index}: '{kind}' needs a 'content' value")
        return problems

    async def execute(
        self,
        step: StepDefinition,
        context: StepContext,
        options: StepExecutionOptions,
    ) -> ToolOutcome:
        files = step.config["files"]
        if isinstance(files, str):
            files = [files]
        transforms = [context.render(t) for t in step.config["transforms"]]
        backup = bool(step.config.get("backup", False))

        outcome = ToolOutcome()
        matched = self._match_files(files, context.project_root, context)
        if not matched:
            outcome.warnings.append(f"No files matched {', '.join(files)}")

        for path in matched:
            original = await asyncio.to_thread(path.read_text, encoding="utf-8")
            updated = original
            for transform in transforms:
                updated = self.apply_transform(updated, transform)
            if updated == original:
                continue
            if backup:
                backup_path = await asyncio.to_thread(self._write_backup, path)
                outcome.files_created.append(self.relative(backup_path, context.project_root))
            await asyncio.to_thread(self.write_file, path, updated)
            outcome.files_modified.append(self.relative(path, context.project_root))

        outcome.output = {"matched": len(matched), "modified": len(outcome.files_modified)}
        return outcome

    # -- Transforms ----------------------------------------------------------

    @staticmethod
    def apply_transform(text: str, transform: dict[str, Any]) -> str:
        """Apply one transform to *text* and return the new text."""
        if "replace" in transform:
            return re.sub(transform["replace"], str(transform["with"]), text, flags=re.MULTILINE)

        if "append" in transform:
            content = str(transform["append"])
            return text if content in text else text + content

        if "prepend" in transform:
            content = str(transform["prepend"])
            return text if content in text else content + text

        kind = "insert_after" if "insert_after" in transform else "insert_before"
        content = str(transform["content"])
        if content in text:
            return text
        match = re.search(transform[kind], text, flags=re.MULTILINE)
        if match is None:
            if transform.get("required", False):
                raise ToolExecutionError(f"Anchor {transform[kind]!r} not found")
            return text
        if kind == "insert_after":
            line_end = text.find("\n", match.end())
            at = len(text) if line_end == -1 else line_end + 1
            prefix = "" if line_end != -1 else "\n"
            return text[:at] + prefix + content + ("" if content.endswith("\n") else "\n") + text[at:]
        line_start = text.rfind("\n", 0, match.start()) + 1
        return text[:line_start] + content + ("" if content.endswith("\n") else "\n") + text[line_start:]

    # -- Helpers -------------------------------------------------------------

    @staticmethod
    def _match_files(patterns: list[str], root: Path, context: StepContext) -> list[Path]:
        found: dict[Path, None] = {}
        for pattern in patterns:
            rendered = context.render_str(pattern)
            for path in sorted(root.glob(rendered)):
                if path.is_file():
                    found.setdefault(path, None)
        return list(found)

    @staticmethod
    def _write_backup(path: Path) -> Path:
        backup_path = path.with_name(path.name + ".bak")
        shutil.copy2(path, backup_path)
        return backup_path
