"""Checks the performance analysis against ``performance-budget.json``."""

import json
import logging
from pathlib import Path
from typing import Any

from wellguard.config import get_ci_metadata
from wellguard.reporting import Recommendation, read_json_report, utc_now_iso, write_json_report

from .performance import REPORT_DIR

logger = logging.getLogger(__name__)

BUDGET_FILE = "performance-budget.json"
ANALYSIS_FILE = Path(REPORT_DIR) / "performance-analysis.json"
REPORT_FILE = Path(REPORT_DIR) / "budget-compliance.json"

ERROR = "error"
WARNING = "warning"

# analysis asset -> (label, budget target)
BUNDLE_TARGETS = {
    "javascript": ("JavaScript", "javascript"),
    "css": ("CSS", "css"),
    "total": ("Total", "total_initial_load"),
}
API_TARGETS = {"health": "health_check", "wells": "wells_list", "production": "production_data"}
VITAL_TARGETS = {
    "largestContentfulPaint": ("Largest Contentful Paint", "largest_contentful_paint_ms"),
    "firstInputDelay": ("First Input Delay", "first_input_delay_ms"),
    "cumulativeLayoutShift": ("Cumulative Layout Shift", "cumulative_layout_shift"),
}

RECOMMENDATIONS = {
    "bundle_size": Recommendation(
        "Bundle Optimization",
        "high",
        [
            "Implement code splitting for large JavaScript bundles",
            "Enable tree shaking to remove unused code",
            "Optimize images and compress assets",
            "Consider lazy loading for non-critical components",
            "Review and remove unused dependencies",
        ],
    ),
    "api_performance": Recommendation(
        "API Performance",
        "high",
        [
            "Optimize database queries and add indexes",
            "Implement caching for frequently accessed data",
            "Consider API response compression",
            "Review and optimize business logic",
            "Add connection pooling for database connections",
        ],
    ),
    "core_web_vitals": Recommendation(
        "Core Web Vitals",
        "medium",
        [
            "Optimize largest content elements (images, text)",
            "Minimize JavaScript execution time",
            "Avoid layout shifts during page load",
            "Preload critical resources",
            "Optimize font loading strategies",
        ],
    ),
}


def load_budget(project_root: Path) -> dict[str, Any]:
    """Load the budget file; raises ValueError when it is missing or invalid."""
    path = Path(project_root) / BUDGET_FILE
    if not path.exists():
        raise ValueError(f"Performance budget configuration not found: {BUDGET_FILE}")
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid performance budget configuration: {exc}") from exc


def _result(violations: list[dict[str, Any]]) -> dict[str, Any]:
    return {"passed": not any(v["severity"] == ERROR for v in violations), "violations": violations}


def check_bundles(bundles: dict[str, Any] | None, budget: dict[str, Any]) -> dict[str, Any]:
    if not bundles:
        logger.warning("Bundle analysis not available")
        return _result([])
    web = budget["budgets"]["web_application"]
    targets = web["targets"]
    warning_percentage = web["thresholds"]["warning_percentage"]
    errors, warnings = [], []
    for key, (label, target) in BUNDLE_TARGETS.items():
        actual = bundles[key]
        entry = {
            "type": "bundle_size",
            "asset": label,
            "actual": actual["sizeKB"],
            "budget": targets[target]["budget_kb"],
            "percentage": actual["percentage"],
        }
        if actual["sizeKB"] > targets[target]["budget_kb"]:
            errors.append({**entry, "severity": ERROR})
        if warning_percentage <= actual["percentage"] < 100:
            warnings.append({**entry, "severity": WARNING})
    return _result(errors + warnings)


def check_api(api: dict[str, Any] | None, budget: dict[str, Any]) -> dict[str, Any]:
    if not api:
        logger.warning("API analysis not available")
        return _result([])
    limits = budget["budgets"]["api_application"]["targets"]["response_time_ms"]
    violations = []
    for endpoint, data in api.get("endpoints", {}).items():
        limit = limits.get(API_TARGETS.get(endpoint, ""))
        actual = data.get("responseTimeMs")
        if limit and actual is not None and actual > limit:
            violations.append(
                {
                    "type": "api_performance",
                    "endpoint": endpoint,
                    "actual": actual,
                    "budget": limit,
                    "severity": ERROR,
                }
            )
    return _result(violations)


def check_vitals(vitals: dict[str, Any] | None, budget: dict[str, Any]) -> dict[str, Any]:
    if not vitals:
        logger.warning("Core Web Vitals analysis not available")
        return _result([])
    targets = budget["budgets"]["core_web_vitals"]["targets"]
    violations = []
    for metric, (label, target) in VITAL_TARGETS.items():
        actual = vitals[metric]["value"]
        if actual is None:
            logger.warning("%s was not measured", label)
            continue
        good = targets[target]["good"]
        if actual > good:
            severity = ERROR if actual > targets[target]["needs_improvement"] else WARNING
            violations.append(
                {
                    "type": "core_web_vitals",
                    "metric": label,
                    "actual": actual,
                    "budget": good,
                    "severity": severity,
                }
            )
    return _result(violations)


def check_budget(project_root: Path) -> dict[str, Any] | None:
    """Write the budget compliance report; None when no analysis exists yet."""
    root = Path(project_root)
    budget = load_budget(root)
    analysis = read_json_report(root / ANALYSIS_FILE)
    if analysis is None:
        logger.warning("Performance analysis results not found; run performance analysis first")
        return None

    checks = {
        "bundleSizes": check_bundles(analysis.get("bundles"), budget),
        "apiPerformance": check_api(analysis.get("api"), budget),
        "coreWebVitals": check_vitals(analysis.get("coreWebVitals"), budget),
    }
    violations = [v for check in checks.values() for v in check["violations"]]
    types = {v["type"] for v in violations}
    report = {
        "timestamp": utc_now_iso(),
        **get_ci_metadata(root),
        "overall": {
            "passed": all(check["passed"] for check in checks.values()),
            "errorCount": sum(1 for v in violations if v["severity"] == ERROR),
            "warningCount": sum(1 for v in violations if v["severity"] == WARNING),
            "totalViolations": len(violations),
        },
        "checks": checks,
        "violations": violations,
        "recommendations": [r.to_dict() for t, r in RECOMMENDATIONS.items() if t in types],
        "compliance": {
            "industryStandards": budget.get("compliance", {}).get("standards", []),
            "oilGasRequirements": budget.get("industry_requirements", {}).get("oil_and_gas", {}),
        },
    }
    path = write_json_report(root / REPORT_FILE, report)
    report["report_file"] = str(path)
    logger.info("Budget compliance report generated: %s", path)
    return report
