"""Execution of a single step against its tool.

``StepExecutor`` owns the tool instances used by one recipe execution.  It
turns every outcome (condition false, invalid configuration, dry run,
timeout, tool failure, unexpected exception) into a frozen ``StepResult``;
nothing a tool raises escapes ``execute`` except task cancellation.
"""

from __future__ import annotations

import asyncio
import time
from datetime import datetime, timezone
from typing import Any

from recipeflow.conditions import evaluate_condition
from recipeflow.config import ExecutionConfig
from recipeflow.errors import ConditionError, ToolExecutionError, UnknownToolError
from recipeflow.models import (
    StepDefinition,
    StepError,
    StepErrorKind,
    StepResult,
    StepStatus,
    ToolValidationResult,
)
from recipeflow.tools.base import StepContext, StepExecutionOptions, Tool, ToolOutcome
from recipeflow.tools.registry import ToolRegistry
from recipeflow.utils import print_debug, print_warning


class StepExecutor:
    """Runs steps for one recipe execution.

    Tools are created lazily from the registry, one instance per tag, and
    released together by ``cleanup``.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        config: ExecutionConfig | None = None,
        recipe_name: str | None = None,
    ) -> None:
        self.registry = registry
        self.config = config or ExecutionConfig()
        self.recipe_name = recipe_name
        self._tools: dict[str, Tool] = {}

    # ------------------------------------------------------------------
    # Tool lifecycle
    # ------------------------------------------------------------------

    async def tool_for(self, step: StepDefinition) -> Tool:
        """Return the (set up) tool instance for *step*'s tag.

        Raises:
            UnknownToolError: If the tag is not registered.
        """
        tool = self._tools.get(step.tool)
        if tool is None:
            tool = self.registry.create(step.tool, step=step.name, recipe=self.recipe_name)
            self._tools[step.tool] = tool
        await tool.setup()
        return tool

    async def validate(self, step: StepDefinition, context: StepContext) -> ToolValidationResult:
        """Validate *step* without executing it.  Never raises for tool problems."""
        try:
            tool = await self.tool_for(step)
            return await tool.validate(step, context)
        except UnknownToolError as exc:
            return ToolValidationResult(is_valid=False, errors=[str(exc)])
        except Exception as exc:  # noqa: BLE001
            return ToolValidationResult(is_valid=False, errors=[f"Validation crashed: {exc}"])

    async def cleanup(self) -> list[str]:
        """Clean up every tool created so far; return the collected error messages."""
        errors: list[str] = []
        for tool in self._tools.values():
            errors.extend(await tool.cleanup())
        self._tools.clear()
        return errors

    @property
    def tools(self) -> dict[str, Tool]:
        return dict(self._tools)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute(
        self,
        step: StepDefinition,
        context: StepContext,
        options: StepExecutionOptions | None = None,
    ) -> StepResult:
        """Execute *step* and return its result.

        Order of checks: ``when`` condition, tool validation, dry run, then
        the real execution under a timeout with retries for transient
        failures.
        """
        options = options or StepExecutionOptions()
        started_at = datetime.now(timezone.utc)
        started = time.monotonic()

        def finish(status: StepStatus, **fields: Any) -> StepResult:
            return StepResult(
                step_name=step.name,
                tool=step.tool,
                status=status,
                started_at=started_at,
                finished_at=datetime.now(timezone.utc),
                duration_seconds=time.monotonic() - started,
                **fields,
            )

        # 1. Condition
        condition_result: bool | None = None
        if step.when:
            try:
                condition_result = evaluate_condition(step.when, context.variables, context.project_root)
            except ConditionError as exc:
                return finish(
                    StepStatus.FAILED,
                    error=StepError(message=str(exc), kind=StepErrorKind.CONFIGURATION),
                )
            if not condition_result:
                print_debug(f"  - {step.name}: skipped (condition false)", context.verbose)
                return finish(StepStatus.SKIPPED, condition_result=False)

        # 2. Validation
        validation = await self.validate(step, context)
        if not validation.is_valid:
            return finish(
                StepStatus.FAILED,
                condition_result=condition_result,
                warnings=list(validation.warnings),
                error=StepError(
                    message=f"Step '{step.name}' is invalid: {'; '.join(validation.errors)}",
                    kind=StepErrorKind.CONFIGURATION,
                ),
            )

        # 3. Dry run
        if options.dry_run or context.dry_run:
            print_debug(f"  - {step.name}: would run {step.tool} (dry run)", context.verbose)
            return finish(
                StepStatus.COMPLETED,
                condition_result=condition_result,
                warnings=list(validation.warnings),
                output={
                    "dry_run": True,
                    "tool": step.tool,
                    "estimated_cost_seconds": validation.estimated_cost_seconds,
                },
            )

        # 4/5. Execute with timeout and retries
        tool = await self.tool_for(step)
        timeout = step.timeout or options.timeout or self.config.default_timeout
        if step.retries is not None:
            retries = step.retries
        elif options.retries is not None:
            retries = options.retries
        else:
            retries = self.config.default_retries
        call_options = StepExecutionOptions(
            timeout=timeout, retries=retries, dry_run=False, force=options.force or context.force
        )

        attempt = 0
        error: StepError | None = None
        error_output: dict[str, Any] = {}
        while True:
            attempt += 1
            try:
                outcome: ToolOutcome = await asyncio.wait_for(
                    tool.execute(step, context, call_options), timeout=timeout
                )
            except asyncio.TimeoutError:
                error = StepError(
                    message=f"Step '{step.name}' timed out after {timeout:g}s",
                    kind=StepErrorKind.TIMEOUT,
                    retryable=True,
                )
            except ToolExecutionError as exc:
                error = StepError(message=str(exc), kind=StepErrorKind.EXECUTION, retryable=exc.retryable)
                error_output = exc.output
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # noqa: BLE001
                error = StepError(
                    message=f"Unexpected error in tool '{step.tool}': {type(exc).__name__}: {exc}",
                    kind=StepErrorKind.EXECUTION,
                )
            else:
                print_debug(f"  - {step.name}: completed ({step.tool})", context.verbose)
                return finish(
                    StepStatus.COMPLETED,
                    attempts=attempt,
                    condition_result=condition_result,
                    files_created=outcome.files_created,
                    files_modified=outcome.files_modified,
                    files_deleted=outcome.files_deleted,
                    output=outcome.output,
                    exports=outcome.exports,
                    warnings=list(validation.warnings) + list(outcome.warnings),
                )

            if not error.retryable or attempt > retries:
                break
            delay = min(self.config.retry_backoff * 2 ** (attempt - 1), self.config.max_retry_delay)
            print_warning(
                f"  Step '{step.name}' attempt {attempt} failed ({error.message}); retrying in {delay:g}s"
            )
            await asyncio.sleep(delay)

        return finish(
            StepStatus.FAILED,
            attempts=attempt,
            condition_result=condition_result,
            output=error_output,
            warnings=list(validation.warnings),
            error=error,
        )
