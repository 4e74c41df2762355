"""``wellguard scan`` commands."""

import shlex
from pathlib import Path

import typer

from wellguard.config import get_api_base_url
from wellguard.security import (
    ApiSecurityTester,
    InfrastructureScanner,
    LicenseChecker,
    OwaspComplianceTester,
)
from wellguard.security.api import REPORT_DIR as API_REPORT_DIR
from wellguard.utils.debug import debug_print

from .shared import ProjectDirOption, console, finish, get_project_dir, run_async, scan_app

SEVERITY_STYLES = {
    "critical": "bold red",
    "high": "red",
    "medium": "yellow",
    "low": "cyan",
    "info": "dim",
}


def _print_severities(summary: dict) -> None:
    parts = [
        f"[{style}]{summary.get(level, 0)} {level}[/{style}]"
        for level, style in SEVERITY_STYLES.items()
    ]
    console.print("  " + ", ".join(parts))


@scan_app.command("infrastructure")
def scan_infrastructure(
    external: bool = typer.Option(
        True, "--external/--no-external", help="Also run checkov and trivy when installed"
    ),
    project_dir: Path | None = ProjectDirOption,
) -> None:
    """Scan Dockerfiles, Kubernetes, Terraform, compose and workflow files."""
    root = get_project_dir(project_dir)
    report = run_async(InfrastructureScanner(root).run(external=external))
    summary = report["summary"]
    console.print(
        f"  Files scanned: {summary['total_files']}, issues: {summary['total_issues']}"
    )
    _print_severities(summary)
    for name, tool in report["external_tools"].items():
        console.print(f"  {name}: {tool['status']}")
    finish(
        report["failed"],
        "No critical or high infrastructure issues",
        "Critical or high infrastructure issues found",
    )


@scan_app.command("api")
def scan_api(
    base_url: str | None = typer.Option(
        None, "--base-url", help="API base URL (default: API_BASE_URL)"
    ),
    start_command: str | None = typer.Option(
        None, "--start-command", help="Command that starts the API when it is not running"
    ),
    project_dir: Path | None = ProjectDirOption,
) -> None:
    """Probe the API against the OWASP API Security Top 10."""
    root = get_project_dir(project_dir)
    url = base_url or get_api_base_url(root)
    command = shlex.split(start_command) if start_command else None
    debug_print("scan", "API security target", base_url=url, start_command=command or "")
    tester = ApiSecurityTester(url, root, start_command=command)
    report = run_async(tester.run())

    summary = report["summary"]
    if not report["api_available"]:
        console.print("[yellow]![/yellow] API unavailable; ran static checks only")
    console.print(
        f"  Tests: {summary['total']}, passed: {summary['passed']}, "
        f"failed: {summary['failed']}, warnings: {summary['warnings']}"
    )
    _print_severities(summary)
    console.print(f"  Reports: {root / API_REPORT_DIR}")
    finish(tester.failed, "API security checks passed", "API security issues require attention")


@scan_app.command("owasp")
def scan_owasp(project_dir: Path | None = ProjectDirOption) -> None:
    """Score OWASP API Top 10, ASVS and SAMM compliance."""
    root = get_project_dir(project_dir)
    tester = OwaspComplianceTester(root)
    try:
        report = tester.run()
    except OSError as exc:
        console.print(f"[red]Error: {exc}[/red]")
        raise typer.Exit(1)

    for key, label in (
        ("api_security", "API Security Top 10"),
        ("asvs", "ASVS 4.0"),
        ("samm", "SAMM 2.0"),
        ("ssrf_protection", "SSRF protection"),
    ):
        section = report["summary"][key]
        console.print(f"  {label}: {section['percentage']:.1f}%")
    overall = report["summary"]["overall"]
    console.print(f"  Report: {report['report_file']}")
    finish(
        tester.failed,
        f"OWASP 2023 compliance {overall['percentage']:.1f}%",
        f"OWASP 2023 compliance {overall['percentage']:.1f}% is below the required level",
    )


@scan_app.command("licenses")
def scan_licenses(project_dir: Path | None = ProjectDirOption) -> None:
    """Check dependency licenses of every workspace."""
    root = get_project_dir(project_dir)
    checker = LicenseChecker(root)
    results = run_async(checker.run())

    summary = results["summary"]
    console.print(
        f"  Packages: {summary['totalPackages']}, compliant: {summary['compliantPackages']}, "
        f"review: {summary['reviewPackages']}, unknown: {summary['unknownPackages']}"
    )
    for violation in results["violations"]:
        console.print(f"  [red]✗[/red] {violation['name']}: {violation['license']}")
    for review in results["reviewRequired"]:
        console.print(f"  [yellow]![/yellow] {review['name']}: {review['license']}")
    console.print(f"  Report: {results['report_file']}")
    finish(
        checker.failed,
        "All dependency licenses are compliant",
        f"{summary['violationPackages']} license violations found",
    )
