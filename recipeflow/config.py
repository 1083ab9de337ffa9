"""recipeflow configuration.

Centralised, typed configuration for the recipe engine and group executor.
All settings use Pydantic v2 models so they can be validated at construction
time and serialised to/from JSON or environment variables without
boiler-plate.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field


class ExecutionConfig(BaseModel):
    """Tuning knobs for step and recipe execution."""

    default_timeout: float = Field(
        default=300.0, ge=1.0, description="Per-step timeout in seconds when a step sets none"
    )
    default_retries: int = Field(
        default=0, ge=0, description="Retries for transient tool failures when a step sets none"
    )
    retry_backoff: float = Field(
        default=1.0, ge=0.0, description="Base delay in seconds between retry attempts"
    )
    max_retry_delay: float = Field(default=30.0, ge=0.0)
    continue_on_error: bool = Field(
        default=False, description="Keep running steps/batches after a failure"
    )
    dry_run: bool = Field(default=False)
    force: bool = Field(default=False, description="Overwrite existing files")
    max_parallel_recipes: int = Field(
        default=4, ge=1, description="Maximum recipes running concurrently inside one batch"
    )


class AiConfig(BaseModel):
    """Configuration for the local Ollama server used by ``ai`` steps."""

    url: str = Field(default="http://localhost:11434")
    model: str = Field(default="qwen2.5-coder:14b")
    timeout: int = Field(default=120, ge=10, description="Per-request timeout in seconds")


class EngineConfig(BaseModel):
    """Global recipeflow configuration.

    Instances are typically created once by the CLI entry point (or by the
    caller embedding the engine) and then passed to ``RecipeEngine`` and
    ``GroupExecutor``.
    """

    working_dir: Path = Field(default=Path("."))
    recipe_filename: str = Field(default="recipe.yml")
    verbose: bool = Field(default=False)
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)
    ai: AiConfig = Field(default_factory=AiConfig)

    # ------------------------------------------------------------------
    # Serialisation helpers
    # ------------------------------------------------------------------

    def save(self, path: Path) -> Path:
        """Persist the configuration to a JSON file and return its path."""
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(self.model_dump_json(indent=2), encoding="utf-8")
        return target

    @classmethod
    def load(cls, path: Path) -> "EngineConfig":
        """Load a previously-saved configuration from JSON."""
        raw = Path(path).read_text(encoding="utf-8")
        return cls.model_validate_json(raw)

    @classmethod
    def from_env(cls) -> "EngineConfig":
        """Build an ``EngineConfig`` from environment variables.

        Recognised variables (all optional):
            RECIPEFLOW_WORKING_DIR, RECIPEFLOW_RECIPE_FILENAME, RECIPEFLOW_VERBOSE,
            RECIPEFLOW_TIMEOUT, RECIPEFLOW_RETRIES, RECIPEFLOW_RETRY_BACKOFF,
            RECIPEFLOW_CONTINUE_ON_ERROR, RECIPEFLOW_DRY_RUN, RECIPEFLOW_FORCE,
            RECIPEFLOW_MAX_PARALLEL, RECIPEFLOW_OLLAMA_URL, RECIPEFLOW_OLLAMA_MODEL,
            RECIPEFLOW_OLLAMA_TIMEOUT.
        """
        exec_kwargs: dict[str, Any] = {}
        if os.environ.get("RECIPEFLOW_TIMEOUT"):
            exec_kwargs["default_timeout"] = float(os.environ["RECIPEFLOW_TIMEOUT"])
        if os.environ.get("RECIPEFLOW_RETRIES"):
            exec_kwargs["default_retries"] = int(os.environ["RECIPEFLOW_RETRIES"])
        if os.environ.get("RECIPEFLOW_RETRY_BACKOFF"):
            exec_kwargs["retry_backoff"] = float(os.environ["RECIPEFLOW_RETRY_BACKOFF"])
        if os.environ.get("RECIPEFLOW_MAX_PARALLEL"):
            exec_kwargs["max_parallel_recipes"] = int(os.environ["RECIPEFLOW_MAX_PARALLEL"])
        for env_name, field_name in (
            ("RECIPEFLOW_CONTINUE_ON_ERROR", "continue_on_error"),
            ("RECIPEFLOW_DRY_RUN", "dry_run"),
            ("RECIPEFLOW_FORCE", "force"),
        ):
            if os.environ.get(env_name):
                exec_kwargs[field_name] = _env_flag(os.environ[env_name])

        ai_kwargs: dict[str, Any] = {}
        if os.environ.get("RECIPEFLOW_OLLAMA_URL"):
            ai_kwargs["url"] = os.environ["RECIPEFLOW_OLLAMA_URL"]
        if os.environ.get("RECIPEFLOW_OLLAMA_MODEL"):
            ai_kwargs["model"] = os.environ["RECIPEFLOW_OLLAMA_MODEL"]
        if os.environ.get("RECIPEFLOW_OLLAMA_TIMEOUT"):
            ai_kwargs["timeout"] = int(os.environ["RECIPEFLOW_OLLAMA_TIMEOUT"])

        return cls(
            working_dir=Path(os.environ.get("RECIPEFLOW_WORKING_DIR", ".")),
            recipe_filename=os.environ.get("RECIPEFLOW_RECIPE_FILENAME", "recipe.yml"),
            verbose=_env_flag(os.environ.get("RECIPEFLOW_VERBOSE", "")),
            execution=ExecutionConfig(**exec_kwargs),
            ai=AiConfig(**ai_kwargs),
        )


def _env_flag(value: str) -> bool:
    """Interpret common truthy spellings of an environment flag."""
    return value.strip().lower() in {"1", "true", "yes", "on"}
