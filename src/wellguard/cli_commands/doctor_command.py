"""``wellguard doctor``: pre-flight health check command."""

from __future__ import annotations

from pathlib import Path

import typer

from .shared import ProjectDirOption, app, console, get_project_dir

STATUS_ICONS = {
    "pass": "[green]✓[/green]",
    "fail": "[red]✗[/red]",
    "warn": "[yellow]![/yellow]",
}


@app.command()
def doctor(project_dir: Path | None = ProjectDirOption) -> None:
    """Check system readiness for backups and scans."""
    from .doctor_checks import (
        CheckResult,
        check_alerting,
        check_disk_space,
        check_encryption_key,
        check_external_tools,
        check_python_version,
    )

    console.print("\n[bold]WellGuard Doctor[/bold]")
    console.print("─" * 36)
    console.print()

    root = get_project_dir(project_dir)
    results: list[CheckResult] = []

    results.append(check_python_version())
    results.extend(check_external_tools())
    results.append(check_encryption_key(root))
    results.append(check_alerting(root))
    results.append(check_disk_space(root))

    for r in results:
        icon = STATUS_ICONS.get(r.status, "?")
        console.print(f"  {icon} {r.message}")
        if r.fix and r.status in ("fail", "warn"):
            for line in r.fix.splitlines():
                console.print(f"    {line}")

    counts = {"pass": 0, "fail": 0, "warn": 0}
    for r in results:
        counts[r.status] = counts.get(r.status, 0) + 1

    console.print()
    console.print(
        f"  Summary: {counts['pass']} passed, {counts['warn']} warnings, {counts['fail']} failed"
    )
    console.print()

    if counts["fail"] > 0:
        raise typer.Exit(1)
