"""recipeflow step tools.

Every step in a recipe is bound to exactly one tool.  Tools are looked up by
tag in an explicitly constructed ``ToolRegistry`` and created fresh for each
recipe execution.

Key classes:
    Tool            - Abstract validate/execute/cleanup contract
    ToolRegistry    - Tag -> tool factory table
    TemplateTool    - Jinja2 file and directory rendering
    ShellTool       - Subprocess execution with output capture
    CodemodTool     - Regex and insertion transforms on existing files
    ActionTool      - Invocation of registered Python callables
    AiTool          - Text generation through a local Ollama server
    RecipeTool      - Sub-recipe execution sharing the parent registry
"""

from .action_tool import ActionContext, ActionRegistry, ActionResult, ActionTool
from .ai_tool import AiTool
from .base import StepContext, StepExecutionOptions, Tool, ToolOutcome, ToolResource
from .codemod_tool import CodemodTool
from .recipe_tool import RecipeTool
from .registry import ToolRegistry, create_default_registry
from .shell_tool import ShellTool
from .template_tool import TemplateTool

__all__ = [
    # Contract
    "Tool",
    "ToolOutcome",
    "ToolResource",
    "StepContext",
    "StepExecutionOptions",
    # Registry
    "ToolRegistry",
    "create_default_registry",
    # Built-in tools
    "TemplateTool",
    "ShellTool",
    "CodemodTool",
    "ActionTool",
    "ActionRegistry",
    "ActionContext",
    "ActionResult",
    "AiTool",
    "RecipeTool",
]
