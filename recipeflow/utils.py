"""Helpers shared across recipeflow.

Subprocess execution for the shell tool, YAML loading for recipe files,
small formatting helpers and the console every module prints through.
"""

from __future__ import annotations

import asyncio
import os
from pathlib import Path
from typing import Any

import yaml
from rich.console import Console
from rich.markup import escape
from rich.table import Table

console = Console()

# ---------------------------------------------------------------------------
# Subprocesses
# ---------------------------------------------------------------------------


async def _spawn(cmd: str | list[str], cwd: str | Path | None, env: dict[str, str] | None) -> asyncio.subprocess.Process:
    kwargs: dict[str, Any] = {
        "stdout": asyncio.subprocess.PIPE,
        "stderr": asyncio.subprocess.PIPE,
        "cwd": str(cwd) if cwd else None,
        "env": {**os.environ, **{k: str(v) for k, v in env.items()}} if env else None,
    }
    if isinstance(cmd, list):
        return await asyncio.create_subprocess_exec(*cmd, **kwargs)
    return await asyncio.create_subprocess_shell(cmd, **kwargs)


async def _kill(process: asyncio.subprocess.Process) -> None:
    if process.returncode is None:
        process.kill()
        await process.wait()


async def run_command(
    cmd: str | list[str],
    cwd: str | Path | None = None,
    timeout: float = 120,
    env: dict[str, str] | None = None,
) -> tuple[int, str, str]:
    """Run *cmd* and collect its output.

    A string goes through the shell; a list is executed directly. *env* is
    layered over the current environment.

    Returns:
        ``(returncode, stdout, stderr)`` with both streams decoded and
        stripped.  On timeout the child is killed and ``-1`` is returned.
        Cancelling the awaiting task also kills the child.
    """
    process = await _spawn(cmd, cwd, env)
    try:
        out, err = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        await _kill(process)
        shown = cmd if isinstance(cmd, str) else " ".join(cmd)
        return -1, "", f"Command timed out after {timeout}s: {shown}"
    except asyncio.CancelledError:
        await _kill(process)
        raise

    def decode(raw: bytes | None) -> str:
        return (raw or b"").decode("utf-8", errors="replace").strip()

    return process.returncode or 0, decode(out), decode(err)


# ---------------------------------------------------------------------------
# YAML I/O
# ---------------------------------------------------------------------------


def load_yaml(path: str | Path) -> dict[str, Any]:
    """Load and parse a YAML mapping.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the document is not a mapping.
        yaml.YAMLError: If the file is not valid YAML.
    """
    file_path = Path(path)
    data = yaml.safe_load(file_path.read_text(encoding="utf-8"))
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"{file_path} must contain a YAML mapping, got {type(data).__name__}")
    return data


# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------


def format_duration(seconds: float) -> str:
    """Human-readable duration: ``3.7s``, ``1m 5s``, ``1h 1m 1s``."""
    if seconds < 0:
        return "0.0s"
    minutes, secs = divmod(seconds, 60)
    hours, minutes = divmod(int(minutes), 60)
    if not hours and not minutes:
        return f"{secs:.1f}s"
    parts = [f"{hours}h"] if hours else []
    if minutes:
        parts.append(f"{minutes}m")
    parts.append(f"{int(secs)}s")
    return " ".join(parts)


def parse_assignments(pairs: list[str]) -> dict[str, str]:
    """Turn ``["name=value", ...]`` into a dict.

    Raises:
        ValueError: If an item has no ``=`` or an empty name.
    """
    result: dict[str, str] = {}
    for pair in pairs:
        name, sep, value = pair.partition("=")
        if not sep or not name.strip():
            raise ValueError(f"Expected NAME=VALUE, got {pair!r}")
        result[name.strip()] = value
    return result


# ---------------------------------------------------------------------------
# Console output
# ---------------------------------------------------------------------------


def _styled(style: str, message: str) -> None:
    console.print(f"[{style}]{escape(message)}[/{style}]")


def print_summary_table(data: dict[str, str], title: str = "Summary") -> None:
    """Print *data* as a two-column table."""
    table = Table(title=title, header_style="bold cyan")
    table.add_column("Item", style="dim", no_wrap=True)
    table.add_column("Value")
    for key, value in data.items():
        table.add_row(key, str(value))
    console.print(table)


def print_success(message: str) -> None:
    _styled("bold green", message)


def print_error(message: str) -> None:
    _styled("bold red", message)


def print_warning(message: str) -> None:
    _styled("bold yellow", message)


def print_debug(message: str, enabled: bool = True) -> None:
    """Dimmed diagnostic line, printed only when *enabled* (usually ``config.verbose``)."""
    if enabled:
        _styled("dim", message)
