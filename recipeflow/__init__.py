"""recipeflow: orchestration of multi-step code-generation recipes.

A recipe is a ``recipe.yml`` plus its assets: typed input variables, the
variables it provides to sibling recipes, and an ordered list of steps, each
run by one pluggable tool.  A directory of recipes forms a group that is
executed in dependency order.

Key classes:
    RecipeLoader   - Parses and validates recipe files
    RecipeEngine   - Executes one recipe's steps
    GroupExecutor  - Plans and executes a group of sibling recipes
    ToolRegistry   - Tag -> tool table consulted by the engine
    EngineConfig   - Typed configuration
"""

from .config import AiConfig, EngineConfig, ExecutionConfig
from .engine import RecipeEngine
from .errors import (
    ConditionError,
    ConfigurationError,
    DuplicateToolError,
    GroupConfigurationError,
    RecipeFlowError,
    RecipeLoadError,
    StepDependencyCycleError,
    ToolExecutionError,
    UnknownToolError,
    VariableValidationError,
)
from .executor import StepExecutor
from .group import GroupExecutor, GroupPlan, RecipeGroup
from .loader import RecipeLoader
from .models import (
    GroupExecutionResult,
    RecipeDefinition,
    RecipeExecutionResult,
    StepDefinition,
    StepResult,
    StepStatus,
)
from .tools import ActionRegistry, Tool, ToolRegistry, create_default_registry
from .variables import resolve_variables

__version__ = "0.1.0"

__all__ = [
    # Configuration
    "EngineConfig",
    "ExecutionConfig",
    "AiConfig",
    # Core
    "RecipeLoader",
    "RecipeEngine",
    "StepExecutor",
    "GroupExecutor",
    "GroupPlan",
    "RecipeGroup",
    "resolve_variables",
    # Tools
    "Tool",
    "ToolRegistry",
    "ActionRegistry",
    "create_default_registry",
    # Models
    "RecipeDefinition",
    "StepDefinition",
    "StepResult",
    "StepStatus",
    "RecipeExecutionResult",
    "GroupExecutionResult",
    # Errors
    "RecipeFlowError",
    "ConfigurationError",
    "RecipeLoadError",
    "UnknownToolError",
    "DuplicateToolError",
    "StepDependencyCycleError",
    "GroupConfigurationError",
    "ConditionError",
    "VariableValidationError",
    "ToolExecutionError",
]
