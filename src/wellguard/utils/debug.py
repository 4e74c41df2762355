"""Debug utilities for verbose command tracing.

Thread-safe debug printing with rich formatting.
"""

import json
import threading
from typing import Any

from rich.console import Console
from rich.syntax import Syntax

# Thread-local storage for debug state
_debug_state = threading.local()


def set_debug_enabled(enabled: bool) -> None:
    """Set debug mode for the current thread."""
    _debug_state.enabled = enabled


def is_debug_enabled() -> bool:
    """Check if debug mode is enabled for the current thread."""
    return getattr(_debug_state, "enabled", False)


def debug_print(category: str, message: str, **data: Any) -> None:
    """Print debug information if debug mode is enabled.

    Args:
        category: Debug category (config, backup, scan, quality)
        message: Main message to display
        **data: Additional key-value pairs to display
    """
    if not is_debug_enabled():
        return
    console = Console(stderr=True)
    console.print(f"[DEBUG:{category}] {message}", style="bold cyan", markup=False)
    for key, value in data.items():
        if value is None:
            continue
        if isinstance(value, dict):
            try:
                json_str = json.dumps(value, indent=2, default=str)
                syntax = Syntax(json_str, "json", theme="monokai", line_numbers=False)
                console.print(f"  {key}:", style="dim", markup=False)
                console.print(syntax)
            except (TypeError, ValueError):
                console.print(f"  {key}: {value}", style="dim", markup=False)
        elif isinstance(value, list):
            joined = ", ".join(str(v) for v in value)
            console.print(f"  {key}: {joined}", style="dim", markup=False)
        elif isinstance(value, str) and len(value) > 100:
            # Truncate long strings
            shown = f"{value[:100]}... ({len(value)} chars)"
            console.print(f"  {key}: {shown}", style="dim", markup=False)
        else:
            console.print(f"  {key}: {value}", style="dim", markup=False)


SECRET_FLAGS = ("-a", "--password", "--passphrase")


def redact_command(command: list[str]) -> list[str]:
    """Mask the value following a secret-bearing flag."""
    shown = list(command)
    for i, part in enumerate(shown[:-1]):
        if part in SECRET_FLAGS:
            shown[i + 1] = "***"
    return shown


def debug_command(
    command: list[str],
    start: bool = True,
    elapsed: float | None = None,
    returncode: int | None = None,
    cwd: str | None = None,
) -> None:
    """Trace an external tool invocation in debug mode.

    Args:
        command: argv of the tool
        start: True for the start event, False for completion
        elapsed: Seconds taken (completion event)
        returncode: Exit status (completion event)
        cwd: Working directory of the child
    """
    if not is_debug_enabled():
        return
    tool = command[0] if command else "?"
    if start:
        debug_print("tool", f"exec {tool}", Args=redact_command(command)[1:], Cwd=cwd)
    else:
        suffix = f" +{elapsed:.1f}s" if elapsed else ""
        debug_print("tool", f"{tool} exited {returncode}{suffix}")
