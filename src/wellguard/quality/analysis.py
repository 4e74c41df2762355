"""Bundle, API response time and Core Web Vitals analysis."""

import logging
from pathlib import Path
from typing import Any

import httpx

from wellguard.config import get_ci_metadata
from wellguard.reporting import (
    MarkdownBuilder,
    check_mark,
    read_json_report,
    utc_now_iso,
    write_json_report,
    write_markdown_report,
)
from wellguard.tools.http import HTTPClient

from .performance import DEFAULT_BUDGETS, REPORT_DIR

logger = logging.getLogger(__name__)

BUILD_DIR = Path("apps") / "web" / ".next"
BUNDLE_BUDGETS_KB = {"javascript": 500, "css": 100, "total": 600}

# name -> (path, budget ms)
API_ENDPOINTS = {
    "health": ("/health", 100),
    "wells": ("/wells", 500),
    "production": ("/production-data", 800),
}

VITALS = (
    "largestContentfulPaint",
    "firstInputDelay",
    "cumulativeLayoutShift",
    "firstContentfulPaint",
    "timeToInteractive",
)
VITAL_LABELS = {
    "largestContentfulPaint": "Largest Contentful Paint",
    "firstInputDelay": "First Input Delay",
    "cumulativeLayoutShift": "Cumulative Layout Shift",
    "firstContentfulPaint": "First Contentful Paint",
    "timeToInteractive": "Time to Interactive",
}


def _sum_sizes(directory: Path, suffix: str) -> int:
    if not directory.is_dir():
        return 0
    return sum(p.stat().st_size for p in directory.iterdir() if p.is_file() and p.suffix == suffix)


def _budget_entry(size_kb: int, budget_kb: int) -> dict[str, Any]:
    return {
        "sizeKB": size_kb,
        "budgetKB": budget_kb,
        "overBudget": size_kb > budget_kb,
        "percentage": round(size_kb * 100 / budget_kb),
    }


def analyze_bundles(project_root: Path) -> dict[str, Any] | None:
    """Sizes of the built JS chunks and CSS, or None without a build."""
    build = Path(project_root) / BUILD_DIR
    if not build.is_dir():
        logger.warning("Web application build not found; run `pnpm run build` first")
        return None
    js_kb = round(_sum_sizes(build / "static" / "chunks", ".js") / 1024)
    css_kb = round(_sum_sizes(build / "static" / "css", ".css") / 1024)
    return {
        "javascript": _budget_entry(js_kb, BUNDLE_BUDGETS_KB["javascript"]),
        "css": _budget_entry(css_kb, BUNDLE_BUDGETS_KB["css"]),
        "total": _budget_entry(js_kb + css_kb, BUNDLE_BUDGETS_KB["total"]),
    }


async def analyze_api(base_url: str, timeout: float = 10.0) -> dict[str, Any]:
    """Measure real response times of the key API endpoints."""
    endpoints: dict[str, Any] = {}
    async with HTTPClient(timeout=timeout) as client:
        for name, (path, budget) in API_ENDPOINTS.items():
            url = f"{base_url.rstrip('/')}{path}"
            try:
                response = await client.get(url)
            except httpx.HTTPError as exc:
                logger.warning("API endpoint %s unavailable: %s", url, exc)
                endpoints[name] = {"url": url, "budgetMs": budget, "status": "unavailable"}
                continue
            elapsed = round(response.elapsed_ms)
            endpoints[name] = {
                "url": url,
                "responseTimeMs": elapsed,
                "statusCode": response.status_code,
                "budgetMs": budget,
                "status": "good" if elapsed <= budget else "slow",
            }
    return {"endpoints": endpoints}


def latest_performance_report(project_root: Path) -> Path | None:
    directory = Path(project_root) / REPORT_DIR
    if not directory.is_dir():
        return None
    reports = sorted(
        directory.glob("performance-report-*.json"), key=lambda p: p.stat().st_mtime
    )
    return reports[-1] if reports else None


def core_web_vitals(project_root: Path) -> dict[str, Any] | None:
    """Average vitals of the completed results in the newest performance report."""
    path = latest_performance_report(project_root)
    if path is None:
        return None
    report = read_json_report(path) or {}
    completed = [r for r in report.get("results", []) if r.get("status") == "completed"]
    if not completed:
        return None
    vitals: dict[str, Any] = {"source": path.name}
    scores = []
    for metric in VITALS:
        threshold = DEFAULT_BUDGETS[metric]
        measured = [float(r["metrics"][metric]) for r in completed if metric in r["metrics"]]
        if not measured:
            vitals[metric] = {"value": None, "threshold": threshold, "status": "unmeasured"}
            continue
        value = sum(measured) / len(measured)
        good = value <= threshold
        vitals[metric] = {
            "value": round(value, 3) if metric == "cumulativeLayoutShift" else round(value),
            "threshold": threshold,
            "status": "good" if good else "needs-improvement",
            "score": 100 if good else 50,
        }
        scores.append(vitals[metric]["score"])
    if not scores:
        return None
    vitals["overallScore"] = round(sum(scores) / len(scores))
    return vitals


class PerformanceAnalyzer:
    """Combines bundle, API and vitals analysis into one report."""

    def __init__(self, project_root: Path, api_base_url: str):
        self.project_root = Path(project_root)
        self.api_base_url = api_base_url
        self.report: dict[str, Any] = {}

    async def run(self) -> dict[str, Any]:
        bundles = analyze_bundles(self.project_root)
        api = await analyze_api(self.api_base_url)
        vitals = core_web_vitals(self.project_root)
        if vitals is None:
            logger.warning("No performance report found; Core Web Vitals not analyzed")
        self.report = {
            "timestamp": utc_now_iso(),
            **get_ci_metadata(self.project_root),
            "bundles": bundles,
            "api": api,
            "coreWebVitals": vitals,
            "compliance": {
                "budgetCompliant": not bundles["total"]["overBudget"] if bundles else True,
                "performanceScore": vitals["overallScore"] if vitals else None,
                "industryStandards": [
                    "Oil & Gas Critical Infrastructure",
                    "Mobile Field Operations",
                    "Emergency Response Optimization",
                ],
            },
        }
        output = self.project_root / REPORT_DIR
        write_json_report(output / "performance-analysis.json", self.report)
        write_markdown_report(output / "performance-summary.md", render_markdown(self.report))
        logger.info("Performance analysis written to %s", output)
        return self.report

    @property
    def failed(self) -> bool:
        return not self.report.get("compliance", {}).get("budgetCompliant", True)


def render_markdown(report: dict[str, Any]) -> str:
    bundles = report["bundles"]
    vitals = report["coreWebVitals"]
    compliance = report["compliance"]
    md = MarkdownBuilder()
    md.heading("WellFlow Performance Analysis Report", 1)
    md.paragraph(
        f"**Generated:** {report['timestamp']}  \n"
        f"**Repository:** {report['repository']}  \n"
        f"**Branch:** {report['branch']}  \n"
        f"**Commit:** {report['commit']}"
    )
    score = compliance["performanceScore"]
    md.heading("Executive Summary")
    md.bullets(
        [
            "**Budget Compliance:** "
            + ("✅ COMPLIANT" if compliance["budgetCompliant"] else "❌ OVER BUDGET"),
            f"**Performance Score:** {'n/a' if score is None else f'{score}/100'}",
            f"**Industry Standards:** {', '.join(compliance['industryStandards'])}",
        ]
    )
    md.heading("Bundle Size Analysis")
    if bundles:
        md.table(
            ["Asset Type", "Size", "Budget", "Status", "Usage"],
            [
                (
                    label,
                    f"{bundles[key]['sizeKB']}KB",
                    f"{bundles[key]['budgetKB']}KB",
                    check_mark(not bundles[key]["overBudget"]),
                    f"{bundles[key]['percentage']}%",
                )
                for key, label in (("javascript", "JavaScript"), ("css", "CSS"), ("total", "Total"))
            ],
        )
    else:
        md.paragraph("Bundle analysis not available - build required")
    md.heading("API Performance")
    rows = []
    for name, data in report["api"]["endpoints"].items():
        if data["status"] == "unavailable":
            rows.append((name, "unavailable", f"{data['budgetMs']}ms", "-"))
        else:
            rows.append(
                (
                    name,
                    f"{data['responseTimeMs']}ms",
                    f"{data['budgetMs']}ms",
                    check_mark(data["status"] == "good"),
                )
            )
    md.table(["Endpoint", "Response Time", "Budget", "Status"], rows)
    md.heading("Core Web Vitals")
    if vitals:
        md.table(
            ["Metric", "Value", "Threshold", "Status"],
            [
                (
                    VITAL_LABELS[m],
                    "n/a" if vitals[m]["value"] is None else vitals[m]["value"],
                    f"<{vitals[m]['threshold']}",
                    "unmeasured"
                    if vitals[m]["value"] is None
                    else check_mark(vitals[m]["status"] == "good"),
                )
                for m in VITALS
            ],
        )
        md.paragraph(f"**Overall Score:** {vitals['overallScore']}/100")
    else:
        md.paragraph("No performance report available - run `wellguard quality performance` first")
    md.heading("Recommendations")
    if bundles and bundles["total"]["overBudget"]:
        md.paragraph("⚠️ **Action Required:** Bundle size exceeds performance budget")
        md.bullets(
            [
                "Consider code splitting and lazy loading",
                "Optimize images and assets",
                "Review and remove unused dependencies",
            ]
        )
    else:
        md.paragraph("✅ Bundle sizes are within budget")
    return md.render()
