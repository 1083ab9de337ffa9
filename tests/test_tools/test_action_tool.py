"""Unit tests for recipeflow.tools.action_tool."""

from __future__ import annotations

import threading

import pytest

from recipeflow.errors import DuplicateToolError, ToolExecutionError
from recipeflow.models import StepDefinition
from recipeflow.tools.action_tool import ActionContext, ActionRegistry, ActionResult, ActionTool
from recipeflow.tools.base import StepExecutionOptions


def _step(**config) -> StepDefinition:
    return StepDefinition(name="act", tool="action", config=config)


@pytest.fixture
def actions() -> ActionRegistry:
    return ActionRegistry()


class TestActionRegistry:
    @pytest.mark.unit
    def test_register_and_get(self, actions):
        actions.register("noop", lambda ctx: None, "does nothing")
        spec = actions.get("noop")
        assert spec.name == "noop"
        assert spec.description == "does nothing"
        assert "noop" in actions
        assert actions.get("missing") is None

    @pytest.mark.unit
    def test_duplicate_rejected(self, actions):
        actions.register("noop", lambda ctx: None)
        with pytest.raises(DuplicateToolError):
            actions.register("noop", lambda ctx: None)
        actions.register("noop", lambda ctx: {"x": 1}, replace=True)

    @pytest.mark.unit
    def test_decorator_uses_docstring(self, actions):
        @actions.action("bump")
        def bump(ctx: ActionContext) -> None:
            """Bump the version.

            Longer text.
            """

        assert actions.get("bump").description == "Bump the version."
        assert actions.names() == ["bump"]


class TestActionValidate:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unregistered_action(self, actions, step_context):
        actions.register("known", lambda ctx: None)
        result = await ActionTool(actions).validate(_step(action="unknown"), step_context())

        assert not result.is_valid
        assert result.errors == ["Action 'unknown' is not registered"]
        assert result.suggestions == ["Registered actions: known"]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_params_must_be_mapping(self, actions, step_context):
        actions.register("known", lambda ctx: None)
        result = await ActionTool(actions).validate(_step(action="known", params=[1]), step_context())
        assert not result.is_valid


class TestActionExecute:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_context_and_dict_exports(self, actions, step_context, project_root):
        received: list[ActionContext] = []

        def capture(ctx: ActionContext) -> dict:
            received.append(ctx)
            return {"package": ctx.params["pkg"]}

        actions.register("capture", capture)
        step = _step(action="capture", params={"pkg": "{{ name }}-sdk"})

        outcome = await ActionTool(actions).execute(step, step_context({"name": "orders"}), StepExecutionOptions())

        ctx = received[0]
        assert ctx.params == {"pkg": "orders-sdk"}
        assert ctx.recipe_name == "demo"
        assert ctx.step_name == "act"
        assert ctx.project_root == project_root
        assert outcome.exports == {"package": "orders-sdk"}
        assert outcome.output == {"action": "capture"}

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_async_action_result(self, actions, step_context):
        async def generate(ctx: ActionContext) -> ActionResult:
            return ActionResult(files_created=["a.py"], exports={"k": "v"}, message="made a.py")

        actions.register("generate", generate)

        outcome = await ActionTool(actions).execute(_step(action="generate"), step_context(), StepExecutionOptions())

        assert outcome.files_created == ["a.py"]
        assert outcome.exports == {"k": "v"}
        assert outcome.output == {"action": "generate", "message": "made a.py"}

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_sync_action_runs_off_the_event_loop(self, actions, step_context):
        loop_thread = threading.get_ident()
        actions.register("where", lambda ctx: {"thread": threading.get_ident()})

        outcome = await ActionTool(actions).execute(_step(action="where"), step_context(), StepExecutionOptions())

        assert outcome.exports["thread"] != loop_thread

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_none_result(self, actions, step_context):
        actions.register("noop", lambda ctx: None)
        outcome = await ActionTool(actions).execute(_step(action="noop"), step_context(), StepExecutionOptions())
        assert outcome.exports == {}

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_exception_wrapped(self, actions, step_context):
        def boom(ctx):
            raise ValueError("bad package")

        actions.register("boom", boom)

        with pytest.raises(ToolExecutionError) as exc_info:
            await ActionTool(actions).execute(_step(action="boom"), step_context(), StepExecutionOptions())
        assert str(exc_info.value) == "Action 'boom' failed: bad package"
        assert not exc_info.value.retryable

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_tool_errors_pass_through(self, actions, step_context):
        def flaky(ctx):
            raise ToolExecutionError("registry busy", retryable=True)

        actions.register("flaky", flaky)

        with pytest.raises(ToolExecutionError) as exc_info:
            await ActionTool(actions).execute(_step(action="flaky"), step_context(), StepExecutionOptions())
        assert exc_info.value.retryable

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unexpected_return_type(self, actions, step_context):
        actions.register("number", lambda ctx: 42)

        with pytest.raises(ToolExecutionError) as exc_info:
            await ActionTool(actions).execute(_step(action="number"), step_context(), StepExecutionOptions())
        assert "returned int" in str(exc_info.value)
