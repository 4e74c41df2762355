"""WCAG 2.1 AA accessibility audit across axe, pa11y and lighthouse."""

import logging
from collections.abc import Awaitable, Callable, Iterable
from pathlib import Path
from typing import Any

from wellguard.config import get_ci_metadata
from wellguard.reporting import (
    MarkdownBuilder,
    Recommendation,
    check_mark,
    utc_now_iso,
    write_json_report,
    write_markdown_report,
)
from wellguard.runtime import CommandRunner
from wellguard.tools.http import is_server_up

from .plugins import (
    AccessibilityPlugin,
    AxeAccessibilityPlugin,
    LighthouseAccessibilityPlugin,
    Pa11yAccessibilityPlugin,
    Page,
    PageResult,
)
from .plugins.base import COMPLETED, ERROR, SKIPPED

logger = logging.getLogger(__name__)

REPORT_DIR = "accessibility-reports"
PAGE_PATHS = (("home", ""), ("wells", "/wells"), ("dashboard", "/dashboard"), ("reports", "/reports"))
COMPLIANCE_SCORE = 90

TOOL_LABELS = {"axe": "Axe-Core", "pa11y": "Pa11y", "lighthouse": "Lighthouse"}
TOOL_STANDARDS = {"axe": "WCAG 2.1 AA", "pa11y": "WCAG 2.1 AA", "lighthouse": "Best Practices"}

WCAG_ACTIONS = [
    "Review and fix color contrast issues",
    "Add missing alt text for images",
    "Ensure all form elements have proper labels",
    "Fix keyboard navigation issues",
    "Add missing ARIA attributes",
]
CRITICAL_ACTIONS = [
    "Fix all Pa11y error-level issues immediately",
    "Review HTML semantic structure",
    "Validate ARIA implementation",
    "Test with screen readers",
]
INDUSTRY_ACTIONS = [
    "Test accessibility with field devices and tablets",
    "Verify high contrast mode for outdoor conditions",
    "Ensure touch targets are at least 44px for field operations",
    "Test keyboard navigation with industrial keyboards",
    "Validate emergency alert accessibility",
]


def default_pages(base_url: str) -> list[Page]:
    base = base_url.rstrip("/")
    return [Page(name, f"{base}{path}") for name, path in PAGE_PATHS]


def default_plugins(command_runner: CommandRunner | None = None) -> list[AccessibilityPlugin]:
    return [
        AxeAccessibilityPlugin(command_runner),
        Pa11yAccessibilityPlugin(command_runner),
        LighthouseAccessibilityPlugin(command_runner),
    ]


def summarize_tool(pages: list[PageResult]) -> dict[str, Any]:
    """Mean score and summed counters over the completed pages."""
    completed = [p for p in pages if p.status == COMPLETED]
    summary: dict[str, Any] = {
        "completedPages": len(completed),
        "skippedPages": sum(1 for p in pages if p.status == SKIPPED),
        "errorPages": sum(1 for p in pages if p.status == ERROR),
        "averageScore": (
            round(sum(p.score or 0 for p in completed) / len(completed)) if completed else None
        ),
    }
    for page in completed:
        for key, value in page.counts.items():
            summary[key] = summary.get(key, 0) + value
    return summary


def overall_score(tool_summaries: Iterable[dict[str, Any]]) -> int:
    scores = [s["averageScore"] for s in tool_summaries if s["completedPages"]]
    return round(sum(scores) / len(scores)) if scores else 0


class AccessibilityAuditor:
    """Runs accessibility plugins over the key pages of the web application."""

    def __init__(
        self,
        project_root: Path,
        base_url: str,
        plugins: list[AccessibilityPlugin] | None = None,
        command_runner: CommandRunner | None = None,
        server_check: Callable[[str], Awaitable[bool]] = is_server_up,
    ):
        self.project_root = Path(project_root)
        self.pages = default_pages(base_url)
        self.plugins = plugins if plugins is not None else default_plugins(command_runner)
        self._server_check = server_check
        self._server_status: dict[str, bool] = {}
        self.report: dict[str, Any] = {}

    async def _server_available(self, url: str) -> bool:
        if url not in self._server_status:
            self._server_status[url] = await self._server_check(url)
        return self._server_status[url]

    async def audit_with(self, plugin: AccessibilityPlugin) -> list[PageResult]:
        pages = self.pages[:1] if plugin.first_page_only else self.pages
        results = []
        for page in pages:
            if not await self._server_available(page.url):
                logger.warning("Server not available: %s", page.url)
                results.append(
                    PageResult(page.url, page.name, SKIPPED, reason="server_not_available")
                )
                continue
            try:
                result = await plugin.audit(page)
            except (RuntimeError, OSError) as exc:
                logger.error("%s failed on %s: %s", plugin.name, page.url, exc)
                result = PageResult(page.url, page.name, ERROR, error=str(exc))
            results.append(result)
        return results

    async def run(self) -> dict[str, Any]:
        tools: dict[str, Any] = {}
        for plugin in self.plugins:
            logger.info("Running %s accessibility audit", plugin.name)
            pages = await self.audit_with(plugin)
            tools[plugin.name] = {
                "tool": plugin.name,
                "timestamp": utc_now_iso(),
                "pages": [p.to_dict() for p in pages],
                "summary": summarize_tool(pages),
            }
        score = overall_score(t["summary"] for t in tools.values())
        compliant = score >= COMPLIANCE_SCORE
        self.report = {
            "timestamp": utc_now_iso(),
            **get_ci_metadata(self.project_root),
            "overall": {
                "score": score,
                "wcagCompliant": compliant,
                "industryCompliant": compliant,
                "pagesTestedCount": len(self.pages),
            },
            "tools": tools,
            "compliance": {
                "wcag21aa": compliant,
                "section508": compliant,
                "ada": compliant,
                "oilGasIndustry": compliant,
            },
            "recommendations": [r.to_dict() for r in self.recommendations(score, tools)],
        }
        output = self.project_root / REPORT_DIR
        write_json_report(output / "accessibility-analysis.json", self.report)
        write_markdown_report(output / "accessibility-summary.md", render_markdown(self.report))
        logger.info("Accessibility score %d/100 (reports in %s)", score, output)
        return self.report

    def recommendations(self, score: int, tools: dict[str, Any]) -> list[Recommendation]:
        found = []
        if score < COMPLIANCE_SCORE:
            found.append(Recommendation("WCAG Compliance", "high", WCAG_ACTIONS))
        if tools.get("pa11y", {}).get("summary", {}).get("errors", 0) > 0:
            found.append(Recommendation("Critical Accessibility Issues", "critical", CRITICAL_ACTIONS))
        found.append(Recommendation("Oil & Gas Industry Requirements", "medium", INDUSTRY_ACTIONS))
        return found

    @property
    def failed(self) -> bool:
        return not self.report.get("compliance", {}).get("wcag21aa", False)


def _tool_clean(name: str, summary: dict[str, Any]) -> bool:
    key = {"axe": "violations", "pa11y": "errors", "lighthouse": "failedAudits"}.get(name)
    return bool(summary["completedPages"]) and summary.get(key, 0) == 0


def render_markdown(report: dict[str, Any]) -> str:
    overall = report["overall"]
    compliance = report["compliance"]
    wcag = compliance["wcag21aa"]
    md = MarkdownBuilder()
    md.heading("WellFlow Accessibility Testing Report", 1)
    md.paragraph(
        f"**Generated:** {report['timestamp']}  \n"
        f"**Repository:** {report['repository']}  \n"
        f"**Branch:** {report['branch']}  \n"
        f"**Commit:** {report['commit']}"
    )
    md.heading("Executive Summary")
    md.bullets(
        [
            f"**Overall Accessibility Score:** {overall['score']}/100",
            f"**WCAG 2.1 AA Compliance:** {'✅ COMPLIANT' if wcag else '❌ NON-COMPLIANT'}",
            "**Oil & Gas Industry Standards:** "
            + ("✅ MEETS REQUIREMENTS" if compliance["oilGasIndustry"] else "❌ NEEDS IMPROVEMENT"),
            f"**Pages Tested:** {overall['pagesTestedCount']}",
        ]
    )
    md.heading("Accessibility Testing Results")
    rows = []
    for name, tool in report["tools"].items():
        summary = tool["summary"]
        score = summary["averageScore"]
        rows.append(
            (
                TOOL_LABELS.get(name, name),
                "n/a" if score is None else f"{score}/100",
                check_mark(_tool_clean(name, summary)),
                TOOL_STANDARDS.get(name, ""),
            )
        )
    md.table(["Tool", "Score", "Status", "Standard"], rows)
    md.heading("WCAG 2.1 AA Compliance")
    md.heading("Level A Requirements", 3)
    md.bullets(
        f"{check_mark(wcag)} **{item}**"
        for item in ("Keyboard Navigation", "Screen Reader Support", "Alternative Text", "Form Labels")
    )
    md.heading("Level AA Requirements", 3)
    md.bullets(
        f"{check_mark(wcag)} **{item}**"
        for item in ("Color Contrast", "Resize Text", "Focus Indicators", "Consistent Navigation")
    )
    md.heading("Detailed Results")
    for name, tool in report["tools"].items():
        md.heading(f"{TOOL_LABELS.get(name, name)} Analysis", 3)
        md.table(
            ["Page", "Status", "Score", "Notes"],
            [
                (
                    p["name"],
                    p["status"],
                    p.get("score", "-"),
                    p.get("reason") or p.get("error") or "",
                )
                for p in tool["pages"]
            ],
        )
    md.heading("Recommendations")
    for rec in report["recommendations"]:
        md.heading(f"{rec['category']} ({rec['priority']})", 3)
        md.bullets(rec["actions"])
    return md.render()
