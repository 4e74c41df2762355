"""Tests for the shared reporting library."""

import json
import re

import pytest

from wellguard.reporting import (
    FAILED,
    PASSED,
    WARNING,
    Finding,
    MarkdownBuilder,
    TestResult,
    append_jsonl,
    count_by_severity,
    exceeds_threshold,
    normalize_severity,
    read_json_report,
    sha256_file,
    summarize_findings,
    summarize_results,
    timestamp_slug,
    utc_now_iso,
    worst_status,
    write_json_report,
)


class TestSeverities:
    """Severity normalization and thresholds."""

    def test_normalize_known_and_aliases(self):
        assert normalize_severity("HIGH") == "high"
        assert normalize_severity("serious") == "high"
        assert normalize_severity("moderate") == "medium"
        assert normalize_severity("minor") == "low"

    def test_normalize_unknown_is_info(self):
        assert normalize_severity("weird") == "info"
        assert normalize_severity("") == "info"

    def test_count_by_severity_has_every_level(self):
        counts = count_by_severity(["high", "high", "low"])
        assert counts == {"critical": 0, "high": 2, "medium": 0, "low": 1, "info": 0}

    def test_exceeds_threshold(self):
        assert exceeds_threshold(["low", "high"], "high")
        assert exceeds_threshold(["critical"], "high")
        assert not exceeds_threshold(["medium", "low", "info"], "high")
        assert not exceeds_threshold(["high"], "critical")
        assert not exceeds_threshold([], "high")

    def test_worst_status(self):
        assert worst_status([PASSED, WARNING]) == WARNING
        assert worst_status([PASSED, FAILED, WARNING]) == FAILED
        assert worst_status([]) is None


class TestSummaries:
    """Summary totals always add up."""

    def test_summarize_results_totals(self):
        results = [
            TestResult("a", PASSED, "info", "ok"),
            TestResult("b", FAILED, "high", "bad"),
            TestResult("c", WARNING, "medium", "meh"),
            TestResult("d", FAILED, "critical", "worse"),
        ]
        summary = summarize_results(results)
        assert summary["total"] == 4
        assert summary["total"] == summary["passed"] + summary["failed"] + summary["warnings"]
        severity_sum = sum(summary[s] for s in ("critical", "high", "medium", "low", "info"))
        assert severity_sum == summary["total"]
        assert summary["critical"] == 1
        assert summary["high"] == 1

    def test_summarize_results_rejects_uncounted_status(self):
        with pytest.raises(ValueError):
            summarize_results([TestResult("x", "INFO", "info", "note")])

    def test_summarize_findings_totals(self):
        findings = [
            Finding("R1", "high", "t", "f", 1, "docker", "fix"),
            Finding("R2", "low", "t", "f", 2, "docker", "fix"),
        ]
        summary = summarize_findings(findings)
        assert summary["total_issues"] == 2
        assert summary["high"] == 1
        assert summary["low"] == 1

    def test_test_result_normalizes_severity(self):
        assert TestResult("x", FAILED, "serious", "m").severity == "high"


class TestWriters:
    """JSON, JSONL and checksum helpers."""

    def test_write_and_read_json_report(self, temp_dir):
        path = write_json_report(temp_dir / "nested" / "report.json", {"a": 1})
        assert path.read_text().endswith("\n")
        assert read_json_report(path) == {"a": 1}

    def test_read_missing_report(self, temp_dir):
        assert read_json_report(temp_dir / "missing.json") is None

    def test_append_jsonl(self, temp_dir):
        path = temp_dir / "log.jsonl"
        append_jsonl(path, {"n": 1})
        append_jsonl(path, {"n": 2})
        lines = path.read_text().splitlines()
        assert [json.loads(line)["n"] for line in lines] == [1, 2]

    def test_sha256_file(self, temp_dir):
        path = temp_dir / "data.bin"
        path.write_bytes(b"abc")
        assert sha256_file(path) == (
            "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"
        )


class TestTimestamps:
    def test_utc_now_iso_format(self):
        assert re.fullmatch(r"\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{3}Z", utc_now_iso())

    def test_timestamp_slug_format(self):
        assert re.fullmatch(r"\d{8}_\d{6}", timestamp_slug())


class TestMarkdownBuilder:
    """Markdown rendering."""

    def test_render_blocks(self):
        md = MarkdownBuilder()
        md.heading("Title", 1).paragraph("Body").bullets(["one", "two"])
        md.table(["A", "B"], [(1, "x|y")])
        text = md.render()
        assert text.startswith("# Title\n\nBody\n\n- one\n- two")
        assert "| A | B |" in text
        assert "x\\|y" in text

    def test_empty_bullets_are_skipped(self):
        assert MarkdownBuilder().heading("H").bullets([]).render() == "## H\n"
