"""Shared reporting library: result models, counters and writers."""

from .markdown import MarkdownBuilder, check_mark
from .models import (
    COUNTED_STATUSES,
    FAILED,
    INFO,
    NOT_TESTED,
    PASSED,
    SEVERITY_ORDER,
    UNKNOWN,
    WARNING,
    Finding,
    Recommendation,
    TestResult,
    normalize_severity,
    timestamp_slug,
    utc_now_iso,
)
from .summary import (
    count_by_severity,
    exceeds_threshold,
    failing_severities,
    summarize_findings,
    summarize_results,
    worst_status,
)
from .writers import (
    append_jsonl,
    read_json_report,
    sha256_file,
    write_json_report,
    write_markdown_report,
)

__all__ = [
    # models
    "COUNTED_STATUSES",
    "FAILED",
    "INFO",
    "NOT_TESTED",
    "PASSED",
    "SEVERITY_ORDER",
    "UNKNOWN",
    "WARNING",
    "Finding",
    "Recommendation",
    "TestResult",
    "normalize_severity",
    "timestamp_slug",
    "utc_now_iso",
    # summary
    "count_by_severity",
    "exceeds_threshold",
    "failing_severities",
    "summarize_findings",
    "summarize_results",
    "worst_status",
    # writers
    "append_jsonl",
    "read_json_report",
    "sha256_file",
    "write_json_report",
    "write_markdown_report",
    # markdown
    "MarkdownBuilder",
    "check_mark",
]
