"""Unit tests for recipeflow.tools.shell_tool.ShellTool.

Uses real, portable POSIX commands (echo, printf, pwd, exit, sleep).
"""

from __future__ import annotations

from pathlib import Path

import pytest

from recipeflow.errors import ToolExecutionError
from recipeflow.models import StepDefinition
from recipeflow.tools.base import StepExecutionOptions
from recipeflow.tools.shell_tool import ShellTool


def _step(env=None, timeout=None, **config) -> StepDefinition:
    return StepDefinition(name="sh", tool="shell", env=env or {}, timeout=timeout, config=config)


class TestShellValidate:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_valid(self, step_context):
        result = await ShellTool().validate(_step(command="echo hi", timeout=10), step_context())
        assert result.is_valid
        assert result.suggestions == []

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_missing_command(self, step_context):
        result = await ShellTool().validate(_step(), step_context())
        assert not result.is_valid
        assert result.errors == ["Shell step requires a 'command'"]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_list_command_must_be_strings(self, step_context):
        result = await ShellTool().validate(_step(command=["echo", 1]), step_context())
        assert not result.is_valid

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unknown_export_source(self, step_context):
        result = await ShellTool().validate(_step(command="ls", exports={"x": "stdin"}), step_context())
        assert not result.is_valid
        assert "unknown source 'stdin'" in result.errors[0]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_warnings_and_suggestions(self, step_context):
        result = await ShellTool().validate(_step(command="rm -rf /tmp/x"), step_context())
        assert result.is_valid
        assert result.warnings == ["Command looks destructive"]
        assert result.suggestions


class TestShellExecute:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_rendered_command_and_exports(self, step_context):
        step = _step(command="echo {{ greeting }}", exports={"out": "stdout", "code": "exit_code"})

        outcome = await ShellTool().execute(step, step_context({"greeting": "hello"}), StepExecutionOptions())

        assert outcome.exports == {"out": "hello", "code": 0}
        assert outcome.output["command"] == "echo hello"
        assert outcome.output["exit_code"] == 0

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_list_command(self, step_context):
        step = _step(command=["printf", "%s", "{{ name }}"], exports={"out": "stdout"})

        outcome = await ShellTool().execute(step, step_context({"name": "orders"}), StepExecutionOptions())

        assert outcome.exports == {"out": "orders"}

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_cwd_relative_to_project(self, project_root: Path, step_context):
        (project_root / "sub").mkdir()
        step = _step(command="pwd", cwd="{{ folder }}", exports={"where": "stdout"})

        outcome = await ShellTool().execute(step, step_context({"folder": "sub"}), StepExecutionOptions())

        assert Path(outcome.exports["where"]).resolve() == (project_root / "sub").resolve()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_step_env_rendered(self, step_context):
        step = _step(command='echo "$GREETING"', env={"GREETING": "{{ word }}"}, exports={"out": "stdout"})

        outcome = await ShellTool().execute(step, step_context({"word": "bonjour"}), StepExecutionOptions())

        assert outcome.exports == {"out": "bonjour"}

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_nonzero_exit_is_retryable_failure(self, step_context):
        with pytest.raises(ToolExecutionError) as exc_info:
            await ShellTool().execute(_step(command="echo broken >&2; exit 3"), step_context(), StepExecutionOptions())

        exc = exc_info.value
        assert str(exc) == "Command exited with status 3: broken"
        assert exc.retryable
        assert exc.output["exit_code"] == 3

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_allow_failure(self, step_context):
        step = _step(command="exit 3", allow_failure=True, exports={"code": "exit_code"})

        outcome = await ShellTool().execute(step, step_context(), StepExecutionOptions())

        assert outcome.exports == {"code": 3}

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_timeout(self, step_context):
        with pytest.raises(ToolExecutionError) as exc_info:
            await ShellTool().execute(_step(command="sleep 5"), step_context(), StepExecutionOptions(timeout=0.2))

        assert "timed out" in str(exc_info.value)
        assert exc_info.value.retryable
