"""AI generation through a local Ollama server.

Step configuration::

    - name: docstring
      tool: ai
      prompt: |
        Write a one-paragraph module docstring for {{ name }}.
      system: You are a senior Python developer.
      model: qwen2.5-coder:14b
      options: {temperature: 0.2}
      output:
        type: file            # variable | file | stdout
        to: docs/{{ name }}.md

Backend failures that look transient (connection refused, timeouts, 5xx)
are raised as retryable so the step's ``retries`` apply.
"""

from __future__ import annotations

import asyncio
import re
from typing import Any

from recipeflow.errors import ToolExecutionError
from recipeflow.models import ResourceEstimate, StepDefinition, ToolValidationResult
from recipeflow.ollama_client import OllamaClient
from recipeflow.rendering import resolve_path
from recipeflow.tools.base import StepContext, StepExecutionOptions, Tool, ToolOutcome
from recipeflow.utils import console

OUTPUT_TYPES = ("variable", "file", "stdout")

_FENCE_RE = re.compile(r"^```[\w+-]*\n(.*?)\n?```\s*$", re.DOTALL)


def strip_code_fences(text: str) -> str:
    """Remove a single surrounding Markdown code fence, if present."""
    match = _FENCE_RE.match(text.strip())
    return match.group(1) if match else text


class AiTool(Tool):
    """Generates text with an LLM and routes it to a variable, a file or stdout."""

    tool_type = "ai"

    def __init__(self, client: OllamaClient, default_model: str = "qwen2.5-coder:14b") -> None:
        super().__init__()
        self.client = client
        self.default_model = default_model

    async def validate(self, step: StepDefinition, context: StepContext) -> ToolValidationResult:
        errors: list[str] = []
        suggestions: list[str] = []

        prompt = step.config.get("prompt")
        if not isinstance(prompt, str) or not prompt.strip():
            errors.append("AI step requires a non-empty 'prompt'")

        output = step.config.get("output", {"type": "stdout"})
        if not isinstance(output, dict):
            errors.append("'output' must be a mapping with a 'type'")
        else:
            kind = output.get("type", "stdout")
            if kind not in OUTPUT_TYPES:
                errors.append(
                    f"Invalid output type {kind!r}. Must be one of: {', '.join(OUTPUT_TYPES)}"
                )
            elif kind == "variable" and not output.get("variable"):
                errors.append("Output type 'variable' requires a 'variable' name")
            elif kind == "file" and not output.get("to"):
                errors.append("Output type 'file' requires a 'to' path")
            if "output" not in step.config:
                suggestions.append("Set 'output' to store the generated text; it is only printed")

        options = step.config.get("options", {})
        if not isinstance(options, dict):
            errors.append("'options' must be a mapping")

        return ToolValidationResult(
            is_valid=not errors,
            errors=errors,
            suggestions=suggestions,
            estimated_cost_seconds=float(self.client.timeout) / 4,
            resources=ResourceEstimate(memory_bytes=20 * 1024 * 1024, network=True),
        )

    async def execute(
        self,
        step: StepDefinition,
        context: StepContext,
        options: StepExecutionOptions,
    ) -> ToolOutcome:
        prompt = context.render_str(step.config["prompt"])
        system = context.render_str(step.config.get("system", ""))
        model = step.config.get("model") or self.default_model

        response = await self.client.generate(
            prompt,
            model=model,
            system=system,
            options=step.config.get("options") or None,
        )
        if not response.success:
            raise ToolExecutionError(
                response.error or "AI generation failed",
                retryable=response.retryable,
                output={"model": model},
            )

        text = response.text
        if step.config.get("strip_fences", True):
            text = strip_code_fences(text)

        outcome = ToolOutcome(
            output={"model": response.model, "duration_ms": response.duration_ms, "text": text}
        )
        await self._route(step, context, text, outcome)
        return outcome

    async def _route(self, step: StepDefinition, context: StepContext, text: str, outcome: ToolOutcome) -> None:
        output: dict[str, Any] = step.config.get("output", {"type": "stdout"})
        kind = output.get("type", "stdout")

        if kind == "variable":
            outcome.exports[output["variable"]] = text
        elif kind == "file":
            target = resolve_path(context.render_str(output["to"]), context.project_root)
            existed = target.exists()
            rel = self.relative(target, context.project_root)
            if existed and not (context.force or output.get("overwrite", False)):
                outcome.warnings.append(f"Skipped existing file {rel} (use force to overwrite)")
                return
            await asyncio.to_thread(self.write_file, target, text)
            (outcome.files_modified if existed else outcome.files_created).append(rel)
        else:
            console.print(text, markup=False, highlight=False)
