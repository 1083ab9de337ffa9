"""Shell command tool.

Step configuration::

    - name: install
      tool: shell
      command: npm install {{ package }}
      cwd: "{{ app_dir }}"
      env: {CI: "1"}
      exports:
        npm_log: stdout
      allow_failure: false

``command`` may be a string (run through the shell) or a list of arguments
(executed directly).  A non-zero exit status is a transient failure and is
retried when the step allows retries.
"""

from __future__ import annotations

from typing import Any

from recipeflow.errors import ToolExecutionError
from recipeflow.models import ResourceEstimate, StepDefinition, ToolValidationResult
from recipeflow.rendering import resolve_path
from recipeflow.tools.base import StepContext, StepExecutionOptions, Tool, ToolOutcome
from recipeflow.utils import print_debug, run_command

EXPORT_SOURCES = ("stdout", "stderr", "exit_code")

# Fallback per-command limit when the executor passes no timeout.
_DEFAULT_COMMAND_TIMEOUT = 300.0


class ShellTool(Tool):
    """Runs shell commands in the project tree."""

    tool_type = "shell"

    async def validate(self, step: StepDefinition, context: StepContext) -> ToolValidationResult:
        errors: list[str] = []
        warnings: list[str] = []
        suggestions: list[str] = []

        command = step.config.get("command")
        if isinstance(command, list):
            if not command or not all(isinstance(part, str) for part in command):
                errors.append("'command' list must contain only strings")
        elif not isinstance(command, str) or not command.strip():
            errors.append("Shell step requires a 'command'")

        cwd = step.config.get("cwd")
        if cwd is not None and not isinstance(cwd, str):
            errors.append("Working directory (cwd) must be a string")

        exports = step.config.get("exports", {})
        if not isinstance(exports, dict):
            errors.append("'exports' must map variable names to stdout, stderr or exit_code")
        else:
            for name, source in exports.items():
                if source not in EXPORT_SOURCES:
                    errors.append(
                        f"Export '{name}' has unknown source {source!r}; "
                        f"expected one of {', '.join(EXPORT_SOURCES)}"
                    )

        if isinstance(command, str) and "rm -rf /" in command:
            warnings.append("Command looks destructive")
        if step.timeout is None:
            suggestions.append("Set a 'timeout' for long-running commands")

        return ToolValidationResult(
            is_valid=not errors,
            errors=errors,
            warnings=warnings,
            suggestions=suggestions,
            estimated_cost_seconds=5.0,
            resources=ResourceEstimate(memory_bytes=50 * 1024 * 1024, processes=1),
        )

    async def execute(
        self,
        step: StepDefinition,
        context: StepContext,
        options: StepExecutionOptions,
    ) -> ToolOutcome:
        command = context.render(step.config["command"])
        cwd = context.project_root
        if step.config.get("cwd"):
            cwd = resolve_path(context.render_str(step.config["cwd"]), context.project_root)

        env = {k: str(v) for k, v in context.render(dict(step.env)).items()}

        timeout = options.timeout or _DEFAULT_COMMAND_TIMEOUT
        print_debug(f"  $ {command if isinstance(command, str) else ' '.join(command)}", context.verbose)
        returncode, stdout, stderr = await run_command(command, cwd=cwd, timeout=timeout, env=env or None)

        captured: dict[str, Any] = {"exit_code": returncode, "stdout": stdout, "stderr": stderr}
        if returncode == -1:
            raise ToolExecutionError(stderr, retryable=True, output=captured)
        if returncode != 0 and not step.config.get("allow_failure", False):
            detail = stderr or stdout or "no output"
            raise ToolExecutionError(
                f"Command exited with status {returncode}: {detail[:500]}",
                retryable=True,
                output=captured,
            )

        outcome = ToolOutcome(output={"command": command, "cwd": str(cwd), **captured})
        for name, source in step.config.get("exports", {}).items():
            outcome.exports[name] = captured[source]
        return outcome
