"""HTTP access to a local Ollama server for ``ai`` steps.

recipeflow needs one-shot generation (``POST /api/generate`` with
``stream: false``) and the installed model list (``GET /api/tags``).
Generation never raises for transport problems: the outcome is an
``OllamaResponse`` whose ``retryable`` flag tells the step executor whether
another attempt can help.

Typical usage::

    client = OllamaClient("http://localhost:11434", timeout=60)
    resp = await client.generate("Write a pydantic model for a User", model="qwen2.5-coder:14b")
    if not resp.success:
        raise ToolExecutionError(resp.error, retryable=resp.retryable)
"""

from __future__ import annotations

from typing import Any

import httpx
from pydantic import BaseModel, Field

DEFAULT_MODEL = "qwen2.5-coder:14b"


class OllamaResponse(BaseModel):
    """Result of one generation request."""

    text: str = Field(default="", description="Generated text")
    model: str = Field(default="", description="Model tag that answered")
    duration_ms: float = Field(default=0.0, description="Server-side generation time in ms")
    success: bool = Field(default=True)
    error: str | None = Field(default=None)
    retryable: bool = Field(default=False, description="Connection problems, timeouts and 5xx responses")


class OllamaClient:
    """Thin async wrapper over the Ollama REST API.

    Each call opens its own ``httpx.AsyncClient``; instances hold only
    settings and are safe to share between concurrently running recipes.
    """

    def __init__(self, base_url: str = "http://localhost:11434", timeout: int = 120) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.base_url, timeout=httpx.Timeout(self.timeout, connect=10.0))

    @staticmethod
    def _extract_duration_ms(data: dict) -> float:
        # Ollama reports nanoseconds.
        return data.get("total_duration", 0) / 1_000_000.0

    def _describe_failure(self, exc: Exception) -> tuple[str, bool]:
        """Map a request exception to ``(message, retryable)``."""
        if isinstance(exc, httpx.ConnectError):
            return f"Cannot connect to Ollama at {self.base_url}; is `ollama serve` running?", True
        if isinstance(exc, httpx.TimeoutException):
            return f"Ollama request timed out after {self.timeout}s", True
        if isinstance(exc, httpx.HTTPStatusError):
            status = exc.response.status_code
            return f"Ollama returned HTTP {status}: {exc.response.text[:500]}", status >= 500
        return f"Unexpected error talking to Ollama: {type(exc).__name__}: {exc}", False

    async def generate(
        self,
        prompt: str,
        model: str = DEFAULT_MODEL,
        system: str = "",
        options: dict[str, Any] | None = None,
    ) -> OllamaResponse:
        """Run one non-streaming generation.

        Args:
            prompt: Rendered user prompt.
            model: Model tag.
            system: Optional system prompt; omitted from the payload when empty.
            options: Sampling options forwarded as-is (``temperature``, ``num_ctx``...).
        """
        payload: dict[str, Any] = {"model": model, "prompt": prompt, "stream": False}
        if system:
            payload["system"] = system
        if options:
            payload["options"] = dict(options)

        try:
            async with self._client() as client:
                response = await client.post("/api/generate", json=payload)
                response.raise_for_status()
                data = response.json()
        except Exception as exc:  # noqa: BLE001
            message, retryable = self._describe_failure(exc)
            return OllamaResponse(model=model, success=False, error=message, retryable=retryable)

        return OllamaResponse(
            text=data.get("response", ""),
            model=data.get("model", model),
            duration_ms=self._extract_duration_ms(data),
        )

    async def _tags(self) -> list[dict[str, Any]]:
        async with self._client() as client:
            response = await client.get("/api/tags")
            response.raise_for_status()
            return response.json().get("models", [])

    async def is_available(self) -> bool:
        try:
            await self._tags()
        except Exception:  # noqa: BLE001
            return False
        return True

    async def list_models(self) -> list[str]:
        """Installed model tags, sorted; empty when the server is unreachable."""
        try:
            models = await self._tags()
        except Exception:  # noqa: BLE001
            return []
        return sorted(m["name"] for m in models if m.get("name"))

    async def has_model(self, model: str) -> bool:
        return model in await self.list_models()
