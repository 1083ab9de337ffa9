"""Tag -> tool factory registry.

The registry is an ordinary object that callers construct and pass to the
engine; there is no module-level default instance, so independent runs (and
tests) never see each other's registrations.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Callable

from recipeflow.errors import DuplicateToolError, UnknownToolError
from recipeflow.tools.base import Tool

if TYPE_CHECKING:
    from recipeflow.config import EngineConfig
    from recipeflow.tools.action_tool import ActionRegistry

ToolFactory = Callable[[], Tool]


class ToolRegistry:
    """Maps tool tags (``"template"``, ``"shell"``, ...) to tool factories."""

    def __init__(self) -> None:
        self._factories: dict[str, ToolFactory] = {}

    def register(self, tag: str, factory: ToolFactory, *, replace: bool = False) -> None:
        """Register *factory* under *tag*.

        Raises:
            DuplicateToolError: If *tag* is taken and ``replace`` is false.
        """
        if not tag:
            raise ValueError("Tool tag must be a non-empty string")
        if tag in self._factories and not replace:
            raise DuplicateToolError(tag)
        self._factories[tag] = factory

    def unregister(self, tag: str) -> None:
        self._factories.pop(tag, None)

    def has(self, tag: str) -> bool:
        return tag in self._factories

    def tags(self) -> list[str]:
        return sorted(self._factories)

    def create(self, tag: str, *, step: str | None = None, recipe: str | None = None) -> Tool:
        """Instantiate the tool registered under *tag*.

        Raises:
            UnknownToolError: If nothing is registered under *tag*.
        """
        factory = self._factories.get(tag)
        if factory is None:
            raise UnknownToolError(tag, step=step, recipe=recipe)
        return factory()

    def __contains__(self, tag: object) -> bool:
        return tag in self._factories

    def __len__(self) -> int:
        return len(self._factories)


def create_default_registry(
    config: "EngineConfig | None" = None,
    actions: "ActionRegistry | None" = None,
) -> ToolRegistry:
    """Build a registry with the built-in tools.

    Args:
        config: Engine configuration; the ``ai`` tool reads its Ollama settings
            and ``recipe`` steps load sub-recipes with it.
        actions: Callables available to ``action`` steps.  An empty
            ``ActionRegistry`` is used when omitted.
    """
    from recipeflow.config import EngineConfig
    from recipeflow.ollama_client import OllamaClient
    from recipeflow.tools.action_tool import ActionRegistry, ActionTool
    from recipeflow.tools.ai_tool import AiTool
    from recipeflow.tools.codemod_tool import CodemodTool
    from recipeflow.tools.recipe_tool import RecipeTool
    from recipeflow.tools.shell_tool import ShellTool
    from recipeflow.tools.template_tool import TemplateTool

    cfg = config or EngineConfig()
    action_registry = actions or ActionRegistry()

    registry = ToolRegistry()
    registry.register(TemplateTool.tool_type, TemplateTool)
    registry.register(ShellTool.tool_type, ShellTool)
    registry.register(CodemodTool.tool_type, CodemodTool)
    registry.register(ActionTool.tool_type, lambda: ActionTool(action_registry))
    registry.register(
        AiTool.tool_type,
        lambda: AiTool(
            OllamaClient(base_url=cfg.ai.url, timeout=cfg.ai.timeout),
            default_model=cfg.ai.model,
        ),
    )
    registry.register(RecipeTool.tool_type, lambda: RecipeTool(registry, cfg))
    return registry
