"""Tests for ``wellguard doctor`` health-check command."""

from __future__ import annotations

from collections import namedtuple
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import patch

from typer.testing import CliRunner

from wellguard.cli_commands.doctor_checks import (
    CheckResult,
    check_alerting,
    check_disk_space,
    check_encryption_key,
    check_external_tools,
    check_python_version,
)
from wellguard.cli import app
from wellguard.tools.registry import EXTERNAL_TOOLS

ALL_TOOLS_TRUE = {name: True for name in EXTERNAL_TOOLS}
GB = 1024**3
DiskUsage = namedtuple("DiskUsage", "total used free")


# ---------------------------------------------------------------------------
# CheckResult dataclass
# ---------------------------------------------------------------------------


class TestCheckResult:
    def test_defaults(self):
        r = CheckResult(name="t", status="pass", message="ok")
        assert r.fix == ""

    def test_with_fix(self):
        r = CheckResult(name="t", status="fail", message="bad", fix="do this")
        assert r.fix == "do this"


# ---------------------------------------------------------------------------
# check_python_version
# ---------------------------------------------------------------------------


class TestPythonVersion:
    def test_current_python_passes(self):
        result = check_python_version()
        assert result.status == "pass"
        assert "Python" in result.message

    def test_old_python_fails(self):
        fake_info = SimpleNamespace(major=3, minor=11, micro=0)
        with patch("wellguard.cli_commands.doctor_checks.sys") as mock_sys:
            mock_sys.version_info = fake_info
            result = check_python_version()
        assert result.status == "fail"
        assert "3.11" in result.message


# ---------------------------------------------------------------------------
# check_external_tools
# ---------------------------------------------------------------------------


class TestExternalTools:
    def test_all_installed(self):
        with patch(
            "wellguard.cli_commands.doctor_checks.check_tool_availability",
            return_value=ALL_TOOLS_TRUE,
        ):
            results = check_external_tools()
        assert [r.name for r in results] == ["Core tools", "Recommended tools", "Optional tools"]
        assert all(r.status == "pass" for r in results)
        assert "(+3 more)" in results[1].message

    def test_pg_dump_missing_is_fail(self):
        availability = {**ALL_TOOLS_TRUE, "pg_dump": False}
        with patch(
            "wellguard.cli_commands.doctor_checks.check_tool_availability",
            return_value=availability,
        ):
            results = check_external_tools()
        core = [r for r in results if "Core" in r.name]
        assert core[0].status == "fail"
        assert "postgresql-client" in core[0].fix

    def test_recommended_missing_is_warn(self):
        availability = {**ALL_TOOLS_TRUE, "gpg": False, "npx": False}
        with patch(
            "wellguard.cli_commands.doctor_checks.check_tool_availability",
            return_value=availability,
        ):
            results = check_external_tools()
        rec = [r for r in results if "Recommended" in r.name]
        assert rec[0].status == "warn"
        assert rec[0].message == "Recommended tools missing: gpg, npx"


# ---------------------------------------------------------------------------
# Configuration checks
# ---------------------------------------------------------------------------


class TestConfiguration:
    def test_encryption_key_missing(self, repo_dir: Path):
        result = check_encryption_key(repo_dir)
        assert result.status == "warn"
        assert "BACKUP_ENCRYPTION_KEY" in result.message

    def test_encryption_key_from_env_file(self, repo_dir: Path):
        (repo_dir / ".env").write_text("BACKUP_ENCRYPTION_KEY=s3cret\n")
        assert check_encryption_key(repo_dir).status == "pass"

    def test_alerting_channels(self, repo_dir: Path, monkeypatch):
        assert check_alerting(repo_dir).status == "warn"

        monkeypatch.setenv("SENTRY_DSN", "https://key@sentry.example/1")
        monkeypatch.setenv("ALERT_EMAIL", "ops@example.com")
        result = check_alerting(repo_dir)

        assert result.status == "pass"
        assert result.message == "Alerting: Sentry, email"


# ---------------------------------------------------------------------------
# check_disk_space
# ---------------------------------------------------------------------------


class TestDiskSpace:
    def test_enough_space(self, repo_dir: Path):
        with patch(
            "wellguard.cli_commands.doctor_checks.shutil.disk_usage",
            return_value=DiskUsage(100 * GB, 50 * GB, 50 * GB),
        ):
            result = check_disk_space(repo_dir)
        assert result.status == "pass"
        assert "50.0 GB free" in result.message

    def test_low_space_fails(self, repo_dir: Path):
        with patch(
            "wellguard.cli_commands.doctor_checks.shutil.disk_usage",
            return_value=DiskUsage(100 * GB, 100 * GB - GB // 2, GB // 2),
        ):
            result = check_disk_space(repo_dir)
        assert result.status == "fail"
        assert "0.50 GB" in result.message


# ---------------------------------------------------------------------------
# CLI integration
# ---------------------------------------------------------------------------


class TestDoctorCLI:
    def _invoke(self, repo_dir: Path, availability: dict):
        runner = CliRunner()
        with (
            patch(
                "wellguard.cli_commands.doctor_checks.check_tool_availability",
                return_value=availability,
            ),
            patch(
                "wellguard.cli_commands.doctor_checks.shutil.disk_usage",
                return_value=DiskUsage(100 * GB, 10 * GB, 90 * GB),
            ),
        ):
            return runner.invoke(app, ["doctor", "--project-dir", str(repo_dir)])

    def test_doctor_runs(self, repo_dir: Path):
        result = self._invoke(repo_dir, ALL_TOOLS_TRUE)

        assert result.exit_code == 0
        assert "WellGuard Doctor" in result.output
        assert "Summary: 5 passed, 2 warnings, 0 failed" in result.output

    def test_missing_core_tool_exits_nonzero(self, repo_dir: Path):
        result = self._invoke(repo_dir, {**ALL_TOOLS_TRUE, "redis-cli": False})

        assert result.exit_code == 1
        assert "Core tools missing: redis-cli" in result.output
        assert "redis-tools" in result.output
