"""``wellguard quality`` commands."""

from pathlib import Path

import typer

from wellguard.config import get_api_base_url, get_web_base_url
from wellguard.quality import (
    AccessibilityAuditor,
    PerformanceAnalyzer,
    PerformanceTester,
    check_budget,
)
from wellguard.quality.accessibility import REPORT_DIR as ACCESSIBILITY_REPORT_DIR
from wellguard.quality.analysis import REPORT_DIR as ANALYSIS_REPORT_DIR
from wellguard.utils.debug import debug_print

from .shared import ProjectDirOption, console, finish, get_project_dir, quality_app, run_async

BaseUrlOption = typer.Option(
    None, "--base-url", help="Web application URL (default: LIGHTHOUSE_BASE_URL)"
)


@quality_app.command("accessibility")
def quality_accessibility(
    base_url: str | None = BaseUrlOption,
    project_dir: Path | None = ProjectDirOption,
) -> None:
    """Audit key pages with axe, pa11y and lighthouse against WCAG 2.1 AA."""
    root = get_project_dir(project_dir)
    url = base_url or get_web_base_url(root)
    debug_print("quality", "Accessibility target", base_url=url)
    auditor = AccessibilityAuditor(root, url)
    report = run_async(auditor.run())

    for name, tool in report["tools"].items():
        summary = tool["summary"]
        score = summary["averageScore"]
        console.print(
            f"  {name}: {'n/a' if score is None else f'{score}/100'} "
            f"({summary['completedPages']} completed, {summary['skippedPages']} skipped, "
            f"{summary['errorPages']} errors)"
        )
    console.print(f"  Overall score: {report['overall']['score']}/100")
    console.print(f"  Reports: {root / ACCESSIBILITY_REPORT_DIR}")
    finish(auditor.failed, "WCAG 2.1 AA compliant", "Not WCAG 2.1 AA compliant")


@quality_app.command("performance")
def quality_performance(
    base_url: str | None = BaseUrlOption,
    start_server: bool = typer.Option(
        True, "--start-server/--no-start-server", help="Start `pnpm dev` when the app is down"
    ),
    project_dir: Path | None = ProjectDirOption,
) -> None:
    """Run lighthouse performance audits over the discovered routes."""
    root = get_project_dir(project_dir)
    url = base_url or get_web_base_url(root)
    debug_print("quality", "Performance target", base_url=url, start_server=start_server)
    tester = PerformanceTester(root, url, start_server=start_server)
    report = run_async(tester.run())

    summary = report["summary"]
    console.print(
        f"  Routes: {summary['testedRoutes']}, completed: {summary['completedTests']}, "
        f"failed: {summary['failedTests']}"
    )
    console.print(f"  Average score: {summary['averageScore']}/100")
    console.print(f"  Budget violations: {summary['budgetViolations']}")
    console.print(f"  Report: {report['report_file']}")
    finish(tester.failed, "Performance budget met", "Performance budget or Core Web Vitals failed")


@quality_app.command("analysis")
def quality_analysis(
    api_base_url: str | None = typer.Option(
        None, "--api-base-url", help="API base URL (default: API_BASE_URL)"
    ),
    project_dir: Path | None = ProjectDirOption,
) -> None:
    """Analyze bundle sizes, API response times and Core Web Vitals."""
    root = get_project_dir(project_dir)
    analyzer = PerformanceAnalyzer(root, api_base_url or get_api_base_url(root))
    report = run_async(analyzer.run())

    bundles = report["bundles"]
    if bundles:
        total = bundles["total"]
        console.print(f"  Total bundle: {total['sizeKB']}KB of {total['budgetKB']}KB")
    else:
        console.print("[yellow]![/yellow] No build found; bundle analysis skipped")
    for name, data in report["api"]["endpoints"].items():
        timing = data.get("responseTimeMs")
        shown = "unavailable" if timing is None else f"{timing}ms"
        console.print(f"  API {name}: {shown} (budget {data['budgetMs']}ms)")
    console.print(f"  Reports: {root / ANALYSIS_REPORT_DIR}")
    finish(analyzer.failed, "Bundle sizes within budget", "Bundle size exceeds performance budget")


@quality_app.command("budget")
def quality_budget(project_dir: Path | None = ProjectDirOption) -> None:
    """Check the latest performance analysis against performance-budget.json."""
    root = get_project_dir(project_dir)
    try:
        report = check_budget(root)
    except ValueError as exc:
        console.print(f"[red]Error: {exc}[/red]")
        raise typer.Exit(1)
    if report is None:
        console.print(
            "[yellow]![/yellow] No performance analysis found; "
            "run `wellguard quality analysis` first"
        )
        return

    overall = report["overall"]
    for violation in report["violations"]:
        icon = "[red]✗[/red]" if violation["severity"] == "error" else "[yellow]![/yellow]"
        subject = violation.get("asset") or violation.get("endpoint") or violation.get("metric")
        console.print(
            f"  {icon} {subject}: {violation['actual']} (budget {violation['budget']})"
        )
    console.print(f"  Report: {report['report_file']}")
    finish(
        not overall["passed"],
        f"Performance budget passed ({overall['warningCount']} warnings)",
        f"Performance budget failed ({overall['errorCount']} errors)",
    )
