"""Shared CLI app objects and project helpers."""

import asyncio
from collections.abc import Coroutine
from pathlib import Path
from typing import Any, TypeVar

import typer
from rich.console import Console

from wellguard.config import find_repo_root
from wellguard.runtime import MissingToolError
from wellguard.utils.debug import debug_print

T = TypeVar("T")

app = typer.Typer(
    name="wellguard",
    help="Backup, security and quality tooling for the WellFlow platform",
    no_args_is_help=True,
)
backup_app = typer.Typer(help="Back up and verify the WellFlow data stores", no_args_is_help=True)
scan_app = typer.Typer(help="Security scanners", no_args_is_help=True)
quality_app = typer.Typer(help="Accessibility and performance checks", no_args_is_help=True)

app.add_typer(backup_app, name="backup")
app.add_typer(scan_app, name="scan")
app.add_typer(quality_app, name="quality")

console = Console()

ProjectDirOption = typer.Option(
    None, "--project-dir", "-C", help="Repository to operate on (default: current directory)"
)


def get_project_dir(project_dir: Path | None = None) -> Path:
    """Resolve the repository root from ``project_dir`` or the working directory."""
    root = find_repo_root(project_dir)
    debug_print("config", "Resolved repository root", root=str(root))
    return root


def run_async(coro: Coroutine[Any, Any, T]) -> T:
    """Drive ``coro`` to completion, turning setup errors into exit code 1."""
    try:
        return asyncio.run(coro)
    except MissingToolError as exc:
        console.print(f"[red]Error: {exc.tool} is required but not installed[/red]")
        if exc.install_hint:
            console.print(f"  Install: {exc.install_hint}")
        raise typer.Exit(1)
    except (ValueError, PermissionError, RuntimeError) as exc:
        console.print(f"[red]Error: {exc}[/red]")
        raise typer.Exit(1)


def finish(failed: bool, success: str, failure: str) -> None:
    """Print the final verdict and exit 1 when ``failed``."""
    if failed:
        console.print(f"[red]✗[/red] {failure}")
        raise typer.Exit(1)
    console.print(f"[green]✓[/green] {success}")
