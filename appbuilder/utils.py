"""Shared utility functions for appbuilder.

Provides async command execution, JSON I/O, name and diagram helpers, and
Rich-based progress reporting.  The progress sinks defined here are the
notification channel the stage handlers write to; they never influence
control flow.
"""

from __future__ import annotations

import asyncio
import json
import os
import re
from pathlib import Path
from typing import Any, Protocol

from rich.console import Console
from rich.markdown import Markdown
from rich.rule import Rule
from rich.table import Table

console = Console()

# ---------------------------------------------------------------------------
# Async command execution
# ---------------------------------------------------------------------------


async def run_command(
    cmd: str | list[str],
    cwd: str | Path | None = None,
    timeout: int = 120,
    env: dict[str, str] | None = None,
) -> tuple[int, str, str]:
    """Run a command asynchronously and capture its output.

    Args:
        cmd: Shell command string or list of arguments.
        cwd: Working directory for the child process.
        timeout: Maximum wall-clock seconds before the process is killed.
        env: Optional extra environment variables merged on top of ``os.environ``.

    Returns:
        A ``(returncode, stdout, stderr)`` tuple.  A missing executable is
        reported as return code 127 rather than raised.
    """
    merged_env: dict[str, str] | None = None
    if env:
        merged_env = {**os.environ, **env}

    try:
        if isinstance(cmd, list):
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(cwd) if cwd else None,
                env=merged_env,
            )
        else:
            process = await asyncio.create_subprocess_shell(
                cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(cwd) if cwd else None,
                env=merged_env,
            )
    except FileNotFoundError as exc:
        return (127, "", str(exc))

    try:
        stdout_bytes, stderr_bytes = await asyncio.wait_for(
            process.communicate(), timeout=timeout
        )
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        return (
            -1,
            "",
            f"Command timed out after {timeout}s: {cmd if isinstance(cmd, str) else ' '.join(cmd)}",
        )

    stdout_str = (stdout_bytes or b"").decode("utf-8", errors="replace").strip()
    stderr_str = (stderr_bytes or b"").decode("utf-8", errors="replace").strip()
    return (process.returncode or 0, stdout_str, stderr_str)


# ---------------------------------------------------------------------------
# String / name helpers
# ---------------------------------------------------------------------------


def sanitize_name(name: str) -> str:
    """Convert an arbitrary app name to a safe directory/package name.

    Examples::

        sanitize_name("Recipe Keeper") -> "recipe-keeper"
        sanitize_name("  Todo (v2)  ") -> "todo-v2"
    """
    result = re.sub(r"[^a-zA-Z0-9_-]", "-", name.strip().lower())
    result = re.sub(r"-+", "-", result)
    return result.strip("-")


def parse_version(text: str) -> tuple[int, ...]:
    """Parse a dotted version such as ``v18.17.1`` into a comparable tuple.

    Non-numeric suffixes are ignored; an unparseable string yields ``()``.
    """
    match = re.search(r"(\d+(?:\.\d+)*)", text)
    if not match:
        return ()
    return tuple(int(part) for part in match.group(1).split("."))


def is_mermaid_markdown(text: str) -> bool:
    """Return ``True`` if *text* is already a fenced mermaid block."""
    return text.strip().startswith("```mermaid")


def to_mermaid_markdown(diagram: str) -> str:
    """Wrap a bare mermaid diagram in a fenced block (idempotent)."""
    if is_mermaid_markdown(diagram):
        return diagram
    return "```mermaid\n" + diagram.strip() + "\n```"


# ---------------------------------------------------------------------------
# JSON I/O
# ---------------------------------------------------------------------------


def load_json(path: str | Path) -> Any:
    """Load and parse a JSON file.

    Raises:
        FileNotFoundError: If the file does not exist.
        json.JSONDecodeError: If the file is not valid JSON.
    """
    raw = Path(path).read_text(encoding="utf-8")
    return json.loads(raw)


async def save_json(data: dict[str, Any] | list[Any], path: str | Path) -> None:
    """Save data as pretty-printed JSON.

    Parent directories are created automatically.  The write itself is
    performed in a thread-pool executor to avoid blocking the event loop on
    large files.
    """
    file_path = Path(path)
    file_path.parent.mkdir(parents=True, exist_ok=True)
    content = json.dumps(data, indent=2, ensure_ascii=False, default=str)

    loop = asyncio.get_running_loop()
    await loop.run_in_executor(None, file_path.write_text, content, "utf-8")


# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------


def format_duration(seconds: float) -> str:
    """Format a duration in seconds to a human-readable string.

    Examples::

        format_duration(3.7)    -> "3.7s"
        format_duration(65.2)   -> "1m 5s"
        format_duration(3661.0) -> "1h 1m 1s"
    """
    if seconds < 0:
        return "0.0s"

    hours = int(seconds // 3600)
    minutes = int((seconds % 3600) // 60)
    secs = seconds % 60

    parts: list[str] = []
    if hours > 0:
        parts.append(f"{hours}h")
    if minutes > 0:
        parts.append(f"{minutes}m")

    if hours > 0 or minutes > 0:
        parts.append(f"{int(secs)}s")
    else:
        parts.append(f"{secs:.1f}s")

    return " ".join(parts)


# ---------------------------------------------------------------------------
# Rich output helpers
# ---------------------------------------------------------------------------

STAGE_COLORS: dict[str, str] = {
    "precheck": "bright_cyan",
    "initialize": "bright_green",
    "design": "bright_yellow",
    "generate_code": "bright_magenta",
    "build": "bright_red",
    "run": "bright_blue",
    "deploy": "bright_blue",
}


def print_stage_header(stage: str) -> None:
    """Print a full-width rule announcing a stage, coloured per stage."""
    color = STAGE_COLORS.get(stage, "white")
    label = stage.replace("_", " ").upper()
    console.print()
    console.print(Rule(f"[bold {color}] Stage: {label} [/bold {color}]", style=color))
    console.print()


def print_summary_table(data: dict[str, str], title: str = "Summary") -> None:
    """Print a two-column key/value summary table."""
    table = Table(title=title, show_header=True, header_style="bold cyan")
    table.add_column("Item", style="dim", no_wrap=True)
    table.add_column("Value")

    for key, value in data.items():
        table.add_row(key, str(value))

    console.print(table)
    console.print()


def print_success(message: str) -> None:
    """Print a green success message."""
    console.print(f"[bold green]{message}[/bold green]")


def print_error(message: str) -> None:
    """Print a red error message."""
    console.print(f"[bold red]{message}[/bold red]")


def print_warning(message: str) -> None:
    """Print a yellow warning message."""
    console.print(f"[bold yellow]{message}[/bold yellow]")


# ---------------------------------------------------------------------------
# Progress sinks
# ---------------------------------------------------------------------------


class ProgressSink(Protocol):
    """Fire-and-forget notification channel used by stage handlers."""

    def progress(self, text: str) -> None: ...

    def markdown(self, text: str) -> None: ...


class ConsoleProgressSink:
    """Renders progress lines and markdown through the shared Rich console."""

    def __init__(self, target: Console | None = None) -> None:
        self.console = target or console

    def progress(self, text: str) -> None:
        self.console.print(f"  [cyan]>[/cyan] {text}")

    def markdown(self, text: str) -> None:
        self.console.print(Markdown(text))


class NullProgressSink:
    """Discards every notification."""

    def progress(self, text: str) -> None:
        pass

    def markdown(self, text: str) -> None:
        pass
