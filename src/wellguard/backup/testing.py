"""Backup test suite: integrity, completeness, automation and retention checks."""

import gzip
import logging
import tarfile
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

from wellguard.reporting import (
    FAILED,
    INFO,
    PASSED,
    WARNING,
    TestResult,
    sha256_file,
    timestamp_slug,
    utc_now_iso,
    write_json_report,
)
from wellguard.runtime import CommandRunner, resolve_binary, run_command

from . import application, database, redis
from .common import gzip_is_valid, latest_file, read_checksum_file
from .database import DatabaseTarget

logger = logging.getLogger(__name__)

TEST_TYPES = ("database", "redis", "application", "all")
REPORT_SUBDIR = "backup-tests"
MIN_DATABASE_BYTES = 10 * 1024
MIN_REDIS_BYTES = 100
RDB_MAGIC = b"REDIS"
ENCRYPTED_SUFFIX = ".gpg"

# (label, directory, glob formatted with the environment, max files kept)
RETENTION_LIMITS = (
    ("Database", database.BACKUP_SUBDIR, "wellflow-full-{env}-*.dump", 30),
    ("Redis", str(redis.BACKUP_SUBDIR), "redis-*{env}-*.gz", 14),
    ("Application", str(application.BACKUP_SUBDIR), "wellflow-app-{env}-*.tar.gz", 30),
)
REQUIRED_TOOLS = ("pg_dump", "redis-cli")

RECOMMENDATIONS = {
    "exists": "Verify scheduled backups are running and writing to the expected directory",
    "size": "Investigate undersized backups; the source may be empty or the dump truncated",
    "structure": "Re-run the backup; the archive or dump could not be read back",
    "checksum": "Backup contents changed after creation; restore from an earlier copy",
    "compression": "Backup compression is corrupted; re-run the backup",
    "content": "Backup content does not match the expected format",
    "restore": "Restore test failed; validate dump compatibility with the target server",
    "retention": "Adjust retention so at least one and no more than the allowed backups remain",
    "executable": "Install the missing backup tooling on the backup host",
    "automation": "Schedule backups via cron or the CI scheduler",
}


def _latest_backup(directory: Path, pattern: str) -> Path | None:
    return latest_file(directory, pattern, pattern + ENCRYPTED_SUFFIX)


def _count_backups(directory: Path, pattern: str) -> int:
    if not directory.exists():
        return 0
    return sum(len(list(directory.glob(p))) for p in (pattern, pattern + ENCRYPTED_SUFFIX))


def _list_tar(path: Path) -> list[str] | None:
    try:
        with tarfile.open(path, "r:gz") as archive:
            return archive.getnames()
    except (tarfile.TarError, OSError):
        return None


class BackupTestSuite:
    """Validates the backups produced by the backup commands."""

    def __init__(
        self,
        root: Path,
        environment: str = "dev",
        test_type: str = "all",
        restore_test: bool = False,
        db_target: DatabaseTarget | None = None,
        command_runner: CommandRunner | None = None,
    ):
        if test_type not in TEST_TYPES:
            raise ValueError(f"Invalid test type: {test_type}. Use {', '.join(TEST_TYPES)}")
        self.root = Path(root)
        self.environment = environment
        self.test_type = test_type
        self.restore_test = restore_test
        self.db_target = db_target
        self._runner = command_runner or run_command
        self.results: list[TestResult] = []
        self.timestamp = timestamp_slug()

    def record(self, test: str, passed: bool, message: str = "", severity: str = "high") -> None:
        status = PASSED if passed else FAILED
        self.results.append(TestResult(test, status, "info" if passed else severity, message))
        log = logger.info if passed else logger.error
        log("%s %s%s", "PASS" if passed else "FAIL", test, f": {message}" if message else "")

    def warn(self, test: str, message: str, severity: str = "low") -> None:
        self.results.append(TestResult(test, WARNING, severity, message))
        logger.warning("WARN %s: %s", test, message)

    def note(self, test: str, message: str) -> None:
        self.results.append(TestResult(test, INFO, "info", message))
        logger.info("INFO %s: %s", test, message)

    def check_encrypted(self, label: str, backup: Path) -> None:
        """Encrypted backups can only be checked against their ``.sha256`` sidecar."""
        expected = read_checksum_file(backup)
        if expected is None:
            self.warn(f"{label} backup checksum", f"No .sha256 file next to {backup.name}")
        else:
            self.record(f"{label} backup checksum", sha256_file(backup) == expected)
        self.note(f"{label} backup content", "Encrypted backup; content checks skipped")

    async def run(self) -> dict[str, Any]:
        """Run the selected checks and write the report."""
        logger.info("Starting backup tests (type: %s)", self.test_type)
        if self.test_type in ("database", "all"):
            await self.test_database()
        if self.test_type in ("redis", "all"):
            self.test_redis()
        if self.test_type in ("application", "all"):
            self.test_application()
        if self.test_type == "all":
            await self.test_automation()
            self.test_retention()
        return self.write_report()

    # ------------------------------------------------------------------
    # Database
    # ------------------------------------------------------------------

    async def test_database(self) -> None:
        directory = self.root / database.BACKUP_SUBDIR
        backup = _latest_backup(directory, f"wellflow-full-{self.environment}-*.dump")
        if backup is None:
            self.record("Database backup exists", False, f"No dump found in {directory}")
            return
        self.record("Database backup exists", True, backup.name)

        size = backup.stat().st_size
        self.record(
            "Database backup file size",
            size > MIN_DATABASE_BYTES,
            f"{size} bytes",
            severity="medium",
        )
        if backup.name.endswith(ENCRYPTED_SUFFIX):
            self.check_encrypted("Database", backup)
            if self.restore_test:
                self.warn("Database restore test", "Backup is encrypted; decrypt it to restore")
            return

        if resolve_binary("pg_restore") is None:
            self.warn("Database backup structure", "pg_restore not available")
        else:
            try:
                await self._runner(["pg_restore", "--list", str(backup)], timeout=300)
                self.record("Database backup structure", True)
            except RuntimeError as exc:
                self.record("Database backup structure", False, str(exc))

        expected = read_checksum_file(backup)
        if expected is None:
            self.warn("Database backup checksum", "No .sha256 file next to the dump")
        else:
            self.record("Database backup checksum", sha256_file(backup) == expected)

        if self.restore_test and self.environment == "dev":
            await self._restore_test(backup)

    async def _restore_test(self, backup: Path) -> None:
        target = self.db_target or database.database_target("dev")
        test_db = f"wellflow_restore_test_{self.timestamp}"
        conn = target.connection_args()
        env = target.child_env()
        logger.info("Running restore test into %s", test_db)
        try:
            await self._runner(["createdb", *conn, test_db], timeout=60, env=env)
            await self._runner(
                ["pg_restore", *conn, "-d", test_db, "--no-owner", str(backup)],
                timeout=1800,
                env=env,
            )
            self.record("Database restore test", True)
            result = await self._runner(
                [
                    "psql",
                    *conn,
                    "-d",
                    test_db,
                    "-t",
                    "-A",
                    "-c",
                    "SELECT count(*) FROM information_schema.tables "
                    "WHERE table_schema = 'public'",
                ],
                timeout=60,
                env=env,
            )
            count = int(result.stdout.strip() or 0)
            self.record("Database restore table count", count > 0, f"{count} tables")
        except (RuntimeError, ValueError) as exc:
            self.record("Database restore test", False, str(exc))
        finally:
            try:
                await self._runner(["dropdb", *conn, "--if-exists", test_db], timeout=60, env=env)
            except RuntimeError:
                logger.warning("Failed to drop restore test database %s", test_db, exc_info=True)

    # ------------------------------------------------------------------
    # Redis
    # ------------------------------------------------------------------

    def test_redis(self) -> None:
        directory = self.root / redis.BACKUP_SUBDIR
        backup = _latest_backup(directory, f"redis-*{self.environment}-*.gz")
        if backup is None:
            self.record("Redis backup exists", False, f"No backup found in {directory}")
            return
        self.record("Redis backup exists", True, backup.name)

        size = backup.stat().st_size
        self.record("Redis backup file size", size > MIN_REDIS_BYTES, f"{size} bytes", "medium")
        if backup.name.endswith(ENCRYPTED_SUFFIX):
            self.check_encrypted("Redis", backup)
            return

        if not gzip_is_valid(backup):
            self.record("Redis backup compression", False, "gzip stream is corrupted")
            self.record("Redis backup content", False, "cannot read compressed content")
            return
        self.record("Redis backup compression", True)

        with gzip.open(backup, "rb") as f:
            head = f.read(4096)
        valid = head.startswith(RDB_MAGIC) or redis.DUMP_HEADER.encode() in head
        self.record("Redis backup content", valid, "" if valid else "unrecognized format")

    # ------------------------------------------------------------------
    # Application
    # ------------------------------------------------------------------

    def test_application(self) -> None:
        directory = self.root / application.BACKUP_SUBDIR
        app_archive = _latest_backup(directory, f"wellflow-app-{self.environment}-*.tar.gz")
        if app_archive is None:
            self.record("Application backup exists", False, f"No archive found in {directory}")
        elif app_archive.name.endswith(ENCRYPTED_SUFFIX):
            self.record("Application backup exists", True, app_archive.name)
            self.check_encrypted("Application", app_archive)
        else:
            self.record("Application backup exists", True, app_archive.name)
            names = _list_tar(app_archive)
            self.record("Application backup structure", names is not None)
            if names is not None:
                missing = [
                    entry
                    for entry in ("apps/", "packages/", "package.json")
                    if not any(n == entry.rstrip("/") or n.startswith(entry) for n in names)
                ]
                self.record(
                    "Application backup completeness",
                    not missing,
                    f"missing: {', '.join(missing)}" if missing else "",
                    severity="medium",
                )

        config_archive = _latest_backup(directory, f"wellflow-config-{self.environment}-*.tar.gz")
        if config_archive is None:
            self.record("Configuration backup exists", False, f"No archive found in {directory}")
        else:
            self.record("Configuration backup exists", True, config_archive.name)
            if config_archive.name.endswith(ENCRYPTED_SUFFIX):
                self.check_encrypted("Configuration", config_archive)
            else:
                self.record("Configuration backup structure", _list_tar(config_archive) is not None)

    # ------------------------------------------------------------------
    # Automation and retention
    # ------------------------------------------------------------------

    async def test_automation(self) -> None:
        for tool in REQUIRED_TOOLS:
            self.record(
                f"Backup tool {tool} executable",
                resolve_binary(tool) is not None,
                severity="medium",
            )
        if resolve_binary("crontab") is None:
            self.warn("Backup automation scheduled", "crontab not available")
            return
        try:
            result = await self._runner(["crontab", "-l"], timeout=15, allowed_exit_codes=(0, 1))
        except RuntimeError as exc:
            self.warn("Backup automation scheduled", str(exc))
            return
        if "backup" in result.stdout:
            self.record("Backup automation scheduled", True)
        else:
            self.warn("Backup automation scheduled", "No backup automation detected in crontab")

    def test_retention(self) -> None:
        for label, subdir, pattern, limit in RETENTION_LIMITS:
            count = _count_backups(self.root / subdir, pattern.format(env=self.environment))
            self.record(
                f"{label} backup retention",
                1 <= count <= limit,
                f"{count} backups (allowed 1-{limit})",
                severity="medium",
            )

    # ------------------------------------------------------------------
    # Report
    # ------------------------------------------------------------------

    def recommendations(self) -> list[str]:
        failed = [r.test.lower() for r in self.results if r.status == FAILED]
        found: list[str] = []
        for keyword, advice in RECOMMENDATIONS.items():
            if any(keyword in name for name in failed) and advice not in found:
                found.append(advice)
        return found

    def write_report(self) -> dict[str, Any]:
        passed = sum(1 for r in self.results if r.status == PASSED)
        failed = sum(1 for r in self.results if r.status == FAILED)
        warnings = sum(1 for r in self.results if r.status == WARNING)
        total = passed + failed + warnings
        report = {
            "test_id": f"backup-test-{self.timestamp}",
            "timestamp": utc_now_iso(),
            "environment": self.environment,
            "test_type": self.test_type,
            "restore_test": self.restore_test,
            "summary": {
                "total_tests": total,
                "tests_passed": passed,
                "tests_failed": failed,
                "tests_warned": warnings,
                "success_rate": round(passed * 100 / total, 1) if total else 0.0,
            },
            "results": [r.to_dict() for r in self.results],
            "failed_tests": [r.test for r in self.results if r.status == FAILED],
            "recommendations": self.recommendations(),
            "next_test_date": (datetime.now(UTC) + timedelta(days=30)).date().isoformat(),
        }
        path = self.root / REPORT_SUBDIR / f"backup-test-report-{self.timestamp}.json"
        write_json_report(path, report)
        report["report_file"] = str(path)
        logger.info("Backup test report generated: %s", path)
        return report

    @property
    def failed(self) -> bool:
        return any(r.status == FAILED for r in self.results)
