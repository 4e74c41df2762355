"""Lighthouse performance testing against the web performance budget."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from wellguard.reporting import utc_now_iso, write_json_report
from wellguard.runtime import CommandRunner, start_background, stop_background
from wellguard.tools.http import is_server_up

from .plugins.lighthouse import category_score, run_lighthouse
from .routes import Route, discover_routes

logger = logging.getLogger(__name__)

REPORT_DIR = "performance-reports"
LIGHTHOUSE_TIMEOUT = 60.0
SERVER_POLL_SECONDS = 2.0
SERVER_POLL_ATTEMPTS = 30
INDUSTRY_MIN_SCORE = 80

# metric -> lighthouse audit id
METRIC_AUDITS = {
    "firstContentfulPaint": "first-contentful-paint",
    "largestContentfulPaint": "largest-contentful-paint",
    "firstInputDelay": "max-potential-fid",
    "cumulativeLayoutShift": "cumulative-layout-shift",
    "speedIndex": "speed-index",
    "timeToInteractive": "interactive",
    "totalBlockingTime": "total-blocking-time",
}
DEFAULT_BUDGETS = {
    "totalBundleSize": 600 * 1024,
    "firstContentfulPaint": 1800,
    "largestContentfulPaint": 2500,
    "firstInputDelay": 100,
    "cumulativeLayoutShift": 0.1,
    "speedIndex": 3000,
    "timeToInteractive": 3800,
}
CORE_WEB_VITALS = ("largestContentfulPaint", "firstInputDelay", "cumulativeLayoutShift")

VIOLATION_ADVICE = {
    "largestContentfulPaint": (
        "high",
        "loading",
        "Optimize images, reduce server response time, eliminate render-blocking resources",
    ),
    "firstContentfulPaint": (
        "medium",
        "loading",
        "Reduce server response time, eliminate render-blocking resources",
    ),
    "cumulativeLayoutShift": (
        "high",
        "stability",
        "Add size attributes to images and videos, avoid inserting content above existing content",
    ),
    "firstInputDelay": ("high", "interactivity", "Split long tasks and defer non-critical JavaScript"),
}

METRIC_LABELS = {
    "largestContentfulPaint": "Largest Contentful Paint",
    "firstContentfulPaint": "First Contentful Paint",
    "cumulativeLayoutShift": "Cumulative Layout Shift",
    "firstInputDelay": "First Input Delay",
    "speedIndex": "Speed Index",
    "timeToInteractive": "Time to Interactive",
}


def extract_metrics(data: dict[str, Any]) -> dict[str, float]:
    """Numeric values of the tracked audits; audits lighthouse did not report are left out."""
    audits = data.get("audits", {})
    metrics = {}
    for metric, audit_id in METRIC_AUDITS.items():
        value = (audits.get(audit_id) or {}).get("numericValue")
        if value is not None:
            metrics[metric] = float(value)
    return metrics


def budget_status(metrics: dict[str, float], budgets: dict[str, float]) -> dict[str, bool]:
    return {
        metric: metrics[metric] <= budget
        for metric, budget in budgets.items()
        if metric in metrics
    }


def recommendations(violations: list[dict[str, Any]], average_score: int) -> list[dict[str, str]]:
    found = []
    if average_score < INDUSTRY_MIN_SCORE:
        found.append(
            {
                "priority": "high",
                "category": "overall",
                "issue": "Low overall performance score",
                "recommendation": "Focus on Core Web Vitals optimization and bundle size reduction",
            }
        )
    seen = set()
    for violation in violations:
        metric = violation["metric"]
        if metric not in VIOLATION_ADVICE or metric in seen:
            continue
        seen.add(metric)
        priority, category, advice = VIOLATION_ADVICE[metric]
        found.append(
            {
                "priority": priority,
                "category": category,
                "issue": f"{METRIC_LABELS[metric]} exceeds budget",
                "recommendation": advice,
            }
        )
    return found


class PerformanceTester:
    """Runs lighthouse over the discovered routes and checks the budgets."""

    def __init__(
        self,
        project_root: Path,
        base_url: str,
        budgets: dict[str, float] | None = None,
        start_server: bool = True,
        command_runner: CommandRunner | None = None,
        server_check: Callable[[str], Awaitable[bool]] = is_server_up,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.project_root = Path(project_root)
        self.base_url = base_url.rstrip("/")
        self.budgets = {**DEFAULT_BUDGETS, **(budgets or {})}
        self.start_server = start_server
        self._runner = command_runner
        self._server_check = server_check
        self._sleep = sleep
        self.report: dict[str, Any] = {}

    async def ensure_server(self):
        """Return the dev server process this call started, or None."""
        if await self._server_check(self.base_url):
            return None
        if not self.start_server:
            raise RuntimeError(f"Web server not reachable at {self.base_url}")
        logger.info("Starting development server (pnpm dev)")
        process = await start_background(["pnpm", "dev"], cwd=self.project_root)
        for _ in range(SERVER_POLL_ATTEMPTS):
            await self._sleep(SERVER_POLL_SECONDS)
            if await self._server_check(self.base_url):
                return process
        await stop_background(process)
        raise RuntimeError("Failed to start server within timeout period")

    async def test_route(self, route: Route) -> dict[str, Any]:
        entry: dict[str, Any] = {"url": route.url, "name": route.name, "path": route.path}
        try:
            data = await run_lighthouse(route.url, "performance", self._runner, LIGHTHOUSE_TIMEOUT)
        except RuntimeError as exc:
            logger.error("Lighthouse failed for %s: %s", route.url, exc)
            entry.update(status="failed", error=str(exc), score=0, metrics={}, budgetStatus={})
            return entry
        metrics = extract_metrics(data)
        score = category_score(data, "performance")
        logger.info("%s: performance score %d", route.path, score)
        unmeasured = [m for m in METRIC_AUDITS if m in self.budgets and m not in metrics]
        if unmeasured:
            logger.warning("%s: no value for %s", route.path, ", ".join(unmeasured))
        return {
            **entry,
            "status": "completed",
            "score": score,
            "metrics": metrics,
            "unmeasured": unmeasured,
            "budgetStatus": budget_status(metrics, self.budgets),
        }

    async def run(self) -> dict[str, Any]:
        process = await self.ensure_server()
        try:
            routes = discover_routes(self.project_root, self.base_url)
            logger.info("Testing %d routes", len(routes))
            results = [await self.test_route(route) for route in routes]
        finally:
            await stop_background(process)
        self.report = self.build_report(results, routes)
        stamp = int(datetime.now(UTC).timestamp() * 1000)
        path = self.project_root / REPORT_DIR / f"performance-report-{stamp}.json"
        write_json_report(path, self.report)
        self.report["report_file"] = str(path)
        logger.info("Performance report generated: %s", path)
        return self.report

    def build_report(self, results: list[dict[str, Any]], routes: list[Route]) -> dict[str, Any]:
        completed = [r for r in results if r["status"] == "completed"]
        average = round(sum(r["score"] for r in completed) / len(completed)) if completed else 0
        violations = [
            {
                "route": r["name"],
                "metric": metric,
                "actual": r["metrics"][metric],
                "budget": self.budgets[metric],
            }
            for r in completed
            for metric, ok in r["budgetStatus"].items()
            if not ok
        ]
        return {
            "timestamp": utc_now_iso(),
            "baseUrl": self.base_url,
            "summary": {
                "totalRoutes": len(routes),
                "testedRoutes": len(results),
                "completedTests": len(completed),
                "failedTests": sum(1 for r in results if r["status"] == "failed"),
                "averageScore": average,
                "budgetViolations": len(violations),
                "unmeasuredMetrics": sum(len(r.get("unmeasured", [])) for r in completed),
            },
            "compliance": {
                "coreWebVitals": not any(v["metric"] in CORE_WEB_VITALS for v in violations),
                "performanceBudget": not violations,
                "industryStandards": average >= INDUSTRY_MIN_SCORE,
            },
            "budgets": self.budgets,
            "results": results,
            "budgetViolations": violations,
            "recommendations": recommendations(violations, average),
        }

    @property
    def failed(self) -> bool:
        compliance = self.report.get("compliance", {})
        return not (compliance.get("performanceBudget") and compliance.get("coreWebVitals"))
