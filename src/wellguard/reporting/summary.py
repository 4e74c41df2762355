"""Severity counters and summary builders."""

from collections.abc import Iterable
from typing import Any

from .models import FAILED, PASSED, SEVERITY_ORDER, WARNING, Finding, TestResult


def count_by_severity(severities: Iterable[str]) -> dict[str, int]:
    """Count severities into a dict keyed by every entry of ``SEVERITY_ORDER``."""
    counts = {severity: 0 for severity in SEVERITY_ORDER}
    for severity in severities:
        key = severity if severity in counts else "info"
        counts[key] += 1
    return counts


def summarize_results(results: list[TestResult]) -> dict[str, Any]:
    """Summarize test-style results.

    ``total`` always equals ``passed + failed + warnings`` and the sum of the
    severity counts; results with any other status are rejected.
    """
    status_counts = {PASSED: 0, FAILED: 0, WARNING: 0}
    for result in results:
        if result.status not in status_counts:
            raise ValueError(f"Uncounted status in results: {result.status}")
        status_counts[result.status] += 1

    summary: dict[str, Any] = {
        "total": len(results),
        "passed": status_counts[PASSED],
        "failed": status_counts[FAILED],
        "warnings": status_counts[WARNING],
    }
    summary.update(count_by_severity(r.severity for r in results))
    return summary


def summarize_findings(findings: list[Finding]) -> dict[str, int]:
    """Summarize finding-style reports (``total_issues`` plus severities)."""
    summary = {"total_issues": len(findings)}
    summary.update(count_by_severity(f.severity for f in findings))
    return summary


def exceeds_threshold(severities: Iterable[str], threshold: str) -> bool:
    """Return True when any severity is at or above ``threshold``."""
    limit = SEVERITY_ORDER.index(threshold)
    return any(
        severity in SEVERITY_ORDER and SEVERITY_ORDER.index(severity) <= limit
        for severity in severities
    )


def failing_severities(results: list[TestResult]) -> list[str]:
    """Severities of results that did not pass."""
    return [r.severity for r in results if r.status == FAILED]


def worst_status(statuses: Iterable[str]) -> str | None:
    """Collapse statuses into the worst one (FAILED > WARNING > PASSED)."""
    ranked = [FAILED, WARNING, PASSED]
    seen = set(statuses)
    for status in ranked:
        if status in seen:
            return status
    return None
