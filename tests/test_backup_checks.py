"""Tests for backup verification, monitoring and secure sessions."""

import gzip
import json
import os
import tarfile
import time
from collections import namedtuple
from pathlib import Path

import pytest

from wellguard.backup import BackupMonitor, BackupTestSuite, DatabaseTarget, SecureBackupSession
from wellguard.backup.common import write_checksum_file
from wellguard.backup.redis import DUMP_HEADER
from wellguard.runtime import CommandResult

DiskUsage = namedtuple("DiskUsage", "total used free")
GB = 1024**3
DB_TARGET = DatabaseTarget("localhost", 5433, "postgres", "password", "wellflow")


def _binaries(monkeypatch, module: str, available: bool = True):
    monkeypatch.setattr(
        f"wellguard.backup.{module}.resolve_binary",
        lambda name: f"/usr/bin/{name}" if available else None,
    )


def _tar(path: Path, root: Path, members: list[str]) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    with tarfile.open(path, "w:gz") as archive:
        for member in members:
            archive.add(root / member, arcname=member)
    return path


def _seed_backups(root: Path, environment: str = "dev") -> dict[str, Path]:
    """Lay out one healthy backup of each kind."""
    db_dir = root / "backups"
    db_dir.mkdir(parents=True, exist_ok=True)
    dump = db_dir / f"wellflow-full-{environment}-20260101_020000.sql.dump"
    dump.write_bytes(b"PGDMP" + os.urandom(20 * 1024))
    write_checksum_file(dump)

    redis_dir = root / "backups" / "redis"
    redis_dir.mkdir(parents=True)
    redis_file = redis_dir / f"redis-dump-{environment}-20260101_020000.txt.gz"
    body = DUMP_HEADER + "\n" + "".join(f'SET "k{i}" "{os.urandom(16).hex()}"\n' for i in range(50))
    redis_file.write_bytes(gzip.compress(body.encode()))

    app_dir = root / "backups" / "application"
    members = ["package.json", "apps/web/package.json", "packages/shared/package.json"]
    app = _tar(app_dir / f"wellflow-app-{environment}-20260101_020000.tar.gz", root, members)
    config_name = f"wellflow-config-{environment}-20260101_020000.tar.gz"
    config = _tar(app_dir / config_name, root, members[:1])
    return {"database": dump, "redis": redis_file, "application": app, "config": config}


def _encrypt_seeded(backups: dict[str, Path]) -> dict[str, Path]:
    """Swap each seeded backup for a ``.gpg`` stand-in with its own checksum."""
    encrypted = {}
    for kind, path in backups.items():
        target = path.with_name(path.name + ".gpg")
        target.write_bytes(os.urandom(20 * 1024))
        write_checksum_file(target)
        path.unlink()
        path.with_name(path.name + ".sha256").unlink(missing_ok=True)
        encrypted[kind] = target
    return encrypted


def _write_to_flag(flag: str, content: bytes):
    def respond(command, kwargs):
        Path(command[command.index(flag) + 1]).write_bytes(content)
        return CommandResult(command, 0, "", "")

    return respond


def _statuses(suite: BackupTestSuite) -> dict[str, str]:
    return {r.test: r.status for r in suite.results}


class TestBackupTestSuite:
    """BackupTestSuite against seeded backup directories."""

    async def test_all_checks_pass(self, repo_dir: Path, monkeypatch, fake_runner):
        _seed_backups(repo_dir)
        _binaries(monkeypatch, "testing")
        runner = fake_runner({("crontab", "-l"): "0 2 * * * wellguard backup database\n"})

        suite = BackupTestSuite(repo_dir, command_runner=runner)
        report = await suite.run()

        assert not suite.failed
        assert report["summary"]["tests_failed"] == 0
        assert report["summary"]["success_rate"] == 100.0
        assert report["summary"]["total_tests"] == len(report["results"])
        assert report["failed_tests"] == []
        assert report["recommendations"] == []
        statuses = _statuses(suite)
        assert statuses["Database backup checksum"] == "PASSED"
        assert statuses["Redis backup content"] == "PASSED"
        assert statuses["Application backup completeness"] == "PASSED"
        assert statuses["Backup automation scheduled"] == "PASSED"
        assert statuses["Redis backup retention"] == "PASSED"
        assert runner.called("pg_restore", "--list")
        saved = json.loads(Path(report["report_file"]).read_text())
        assert Path(report["report_file"]).parent == repo_dir / "backup-tests"
        assert saved["test_id"] == report["test_id"]

    async def test_missing_backups_fail(self, repo_dir: Path, monkeypatch, fake_runner):
        _binaries(monkeypatch, "testing", available=False)
        suite = BackupTestSuite(repo_dir, test_type="database", command_runner=fake_runner())

        report = await suite.run()

        assert suite.failed
        assert report["failed_tests"] == ["Database backup exists"]
        assert report["recommendations"] == [
            "Verify scheduled backups are running and writing to the expected directory"
        ]

    async def test_checksum_mismatch(self, repo_dir: Path, monkeypatch, fake_runner):
        dump = _seed_backups(repo_dir)["database"]
        with open(dump, "ab") as f:
            f.write(b"tampered")
        _binaries(monkeypatch, "testing", available=False)
        suite = BackupTestSuite(repo_dir, test_type="database", command_runner=fake_runner())

        await suite.run()

        statuses = _statuses(suite)
        assert statuses["Database backup checksum"] == "FAILED"
        assert statuses["Database backup structure"] == "WARNING"

    async def test_corrupted_redis_backup(self, repo_dir: Path, fake_runner):
        redis_file = _seed_backups(repo_dir)["redis"]
        redis_file.write_bytes(redis_file.read_bytes()[:-40])
        suite = BackupTestSuite(repo_dir, test_type="redis", command_runner=fake_runner())

        await suite.run()

        statuses = _statuses(suite)
        assert statuses["Redis backup compression"] == "FAILED"
        assert statuses["Redis backup content"] == "FAILED"

    async def test_restore_into_scratch_database(self, repo_dir: Path, monkeypatch, fake_runner):
        _seed_backups(repo_dir)
        _binaries(monkeypatch, "testing")
        runner = fake_runner({("psql",): "12\n"})
        suite = BackupTestSuite(
            repo_dir,
            test_type="database",
            restore_test=True,
            db_target=DB_TARGET,
            command_runner=runner,
        )

        await suite.run()

        statuses = _statuses(suite)
        assert statuses["Database restore test"] == "PASSED"
        assert statuses["Database restore table count"] == "PASSED"
        assert runner.called("createdb", "-h", "localhost")
        assert runner.called("dropdb", "-h", "localhost")

    async def test_failed_restore_still_drops_database(
        self, repo_dir: Path, monkeypatch, fake_runner
    ):
        _seed_backups(repo_dir)
        _binaries(monkeypatch, "testing")
        runner = fake_runner({("createdb",): RuntimeError("permission denied")})
        suite = BackupTestSuite(
            repo_dir,
            test_type="database",
            restore_test=True,
            db_target=DB_TARGET,
            command_runner=runner,
        )

        await suite.run()

        assert _statuses(suite)["Database restore test"] == "FAILED"
        assert runner.called("dropdb")
        assert any("permission denied" in r.message for r in suite.results)

    async def test_encrypted_backups_checked_by_checksum(
        self, repo_dir: Path, monkeypatch, fake_runner
    ):
        _encrypt_seeded(_seed_backups(repo_dir))
        _binaries(monkeypatch, "testing")
        runner = fake_runner({("crontab", "-l"): "0 2 * * * wellguard backup secure\n"})

        suite = BackupTestSuite(repo_dir, command_runner=runner)
        report = await suite.run()

        assert not suite.failed
        statuses = _statuses(suite)
        for label in ("Database", "Redis", "Application", "Configuration"):
            assert statuses[f"{label} backup exists"] == "PASSED"
            assert statuses[f"{label} backup checksum"] == "PASSED"
            assert statuses[f"{label} backup content"] == "INFO"
        assert statuses["Database backup retention"] == "PASSED"
        assert report["summary"]["success_rate"] == 100.0
        assert not runner.called("pg_restore")

    async def test_tampered_encrypted_backup(self, repo_dir: Path, fake_runner):
        encrypted = _encrypt_seeded(_seed_backups(repo_dir))["database"]
        with open(encrypted, "ab") as f:
            f.write(b"tampered")
        suite = BackupTestSuite(repo_dir, test_type="database", command_runner=fake_runner())

        await suite.run()

        assert _statuses(suite)["Database backup checksum"] == "FAILED"

    async def test_encrypted_dump_skips_restore(self, repo_dir: Path, monkeypatch, fake_runner):
        _encrypt_seeded(_seed_backups(repo_dir))
        _binaries(monkeypatch, "testing")
        runner = fake_runner()
        suite = BackupTestSuite(
            repo_dir, test_type="database", restore_test=True, command_runner=runner
        )

        await suite.run()

        assert _statuses(suite)["Database restore test"] == "WARNING"
        assert not runner.called("createdb")

    async def test_retention_counts_only_this_environment(
        self, repo_dir: Path, monkeypatch, fake_runner
    ):
        _seed_backups(repo_dir, "dev")
        redis_dir = repo_dir / "backups" / "redis"
        for day in range(1, 15):
            (redis_dir / f"redis-dump-prod-202601{day:02d}_020000.txt.gz").write_bytes(b"x")
        _binaries(monkeypatch, "testing", available=False)
        suite = BackupTestSuite(repo_dir, command_runner=fake_runner())

        await suite.run()

        retention = {r.test: r for r in suite.results}["Redis backup retention"]
        assert retention.status == "PASSED"
        assert retention.message == "1 backups (allowed 1-14)"

    def test_invalid_test_type(self, repo_dir: Path):
        with pytest.raises(ValueError, match="Invalid test type"):
            BackupTestSuite(repo_dir, test_type="everything")


def _monitor(root: Path, usage: DiskUsage | None = None, **kwargs) -> BackupMonitor:
    kwargs.setdefault("environments", ("dev",))
    return BackupMonitor(
        root,
        disk_usage=lambda path: usage or DiskUsage(100 * GB, 40 * GB, 60 * GB),
        **kwargs,
    )


def _messages(monitor: BackupMonitor, level: str) -> list[str]:
    return [a["message"] for a in monitor.alerts if a["level"] == level]


class TestBackupMonitor:
    """BackupMonitor checks with injected disk usage and clock."""

    def test_threshold_bounds(self, repo_dir: Path):
        with pytest.raises(ValueError):
            BackupMonitor(repo_dir, alert_threshold=0)
        with pytest.raises(ValueError):
            BackupMonitor(repo_dir, alert_threshold=101)

    @pytest.mark.parametrize(
        "used,level",
        [(50, "INFO"), (85, "WARNING"), (96, "CRITICAL")],
    )
    def test_storage_levels(self, repo_dir: Path, used, level):
        monitor = _monitor(repo_dir, DiskUsage(1000 * GB, used * 10 * GB, (100 - used) * 10 * GB))
        monitor.check_storage()
        assert monitor.alerts[0]["level"] == level
        assert f"{used}%" in monitor.alerts[0]["message"]

    def test_low_free_space(self, repo_dir: Path):
        monitor = _monitor(repo_dir, DiskUsage(100 * GB, 50 * GB, 4 * GB))
        monitor.check_storage()
        assert "Free space critical: 4.0 GB" in _messages(monitor, "CRITICAL")

    def test_missing_database_backup_is_critical(self, repo_dir: Path):
        monitor = _monitor(repo_dir)
        monitor.check_freshness()
        assert _messages(monitor, "CRITICAL") == ["No dev database backup found"]
        assert "No dev redis backup found" in _messages(monitor, "WARNING")
        assert monitor.has_critical

    def test_stale_backups(self, repo_dir: Path):
        _seed_backups(repo_dir)
        monitor = _monitor(repo_dir, clock=lambda: time.time() + 30 * 3600)
        monitor.check_freshness()
        warnings = _messages(monitor, "WARNING")
        assert len(warnings) == 3
        assert all("30 hours old" in w for w in warnings)
        assert not monitor.has_critical

    async def test_healthy_run_writes_report(self, repo_dir: Path, monkeypatch, fake_runner):
        _seed_backups(repo_dir)
        for subdir in ("backups", "backups/redis", "backups/application"):
            (repo_dir / subdir / "backup-20260101_020000.log").write_text("ok\n")
        _binaries(monkeypatch, "monitor")
        runner = fake_runner({("crontab", "-l"): "0 2 * * * wellguard backup database\n"})

        monitor = _monitor(repo_dir, check_all=True, command_runner=runner)
        report = await monitor.run()

        assert report["summary"]["overall_status"] == "healthy"
        assert report["summary"]["critical_alerts"] == 0
        assert report["checks_performed"] == [
            "storage_capacity",
            "backup_freshness",
            "backup_integrity",
            "retention_compliance",
            "automation_status",
        ]
        output_dir = repo_dir / "security-reports" / "backup-monitoring"
        assert Path(report["report_file"]).parent == output_dir
        assert list(output_dir.glob("backup-alerts-*.jsonl"))

    async def test_corrupted_archive_is_critical(self, repo_dir: Path, monkeypatch, fake_runner):
        app = _seed_backups(repo_dir)["application"]
        app.write_bytes(b"not a tarball")
        _binaries(monkeypatch, "monitor", available=False)

        monitor = _monitor(repo_dir, check_all=True, command_runner=fake_runner())
        report = await monitor.run()

        assert any(app.name in m for m in _messages(monitor, "CRITICAL"))
        assert "crontab not available; cannot verify schedule" in _messages(monitor, "WARNING")
        assert report["summary"]["overall_status"] == "issues_detected"

    def test_retention_violation(self, repo_dir: Path):
        _seed_backups(repo_dir)
        monitor = _monitor(repo_dir, retention_days=30, clock=lambda: time.time() + 40 * 86400)
        monitor.check_retention()
        assert "1 dev database backups exceed 30-day retention" in _messages(monitor, "WARNING")

    async def test_alerts_sent_by_email(self, repo_dir: Path, monkeypatch, fake_runner):
        monkeypatch.setenv("ALERT_EMAIL", "ops@wellflow.test")
        monkeypatch.setattr("wellguard.reporting.notify.resolve_binary", lambda name: "/bin/mail")
        runner = fake_runner()

        monitor = _monitor(repo_dir, send_alerts=True, command_runner=runner)
        await monitor.run()

        mail = [c for c in runner.calls if c[0] == "mail"]
        assert len(mail) == 1
        assert "1 critical" in mail[0][2]
        assert mail[0][-1] == "ops@wellflow.test"


@pytest.fixture
def plenty_of_disk(monkeypatch):
    monkeypatch.setattr(
        "wellguard.backup.secure.shutil.disk_usage",
        lambda path: DiskUsage(100 * GB, 10 * GB, 90 * GB),
    )


def _audit_operations(session: SecureBackupSession) -> list[tuple[str, str]]:
    lines = session.audit_log.read_text().splitlines()
    return [(e["operation"], e["status"]) for e in map(json.loads, lines)]


class TestSecureBackupSession:
    """SecureBackupSession with fake backup steps."""

    async def test_prod_requires_authorized_group(self, repo_dir: Path, plenty_of_disk):
        session = SecureBackupSession(repo_dir, environment="prod", user="intern", groups={"staff"})

        with pytest.raises(PermissionError, match="not authorized"):
            await session.run()

        assert ("authorization", "denied") in _audit_operations(session)

    async def test_insufficient_disk_space(self, repo_dir: Path, monkeypatch):
        monkeypatch.setattr(
            "wellguard.backup.secure.shutil.disk_usage", lambda path: DiskUsage(GB, GB, 1024)
        )
        session = SecureBackupSession(repo_dir, encrypt=False, user="ops", steps={})

        with pytest.raises(RuntimeError, match="Insufficient disk space"):
            await session.run()

    async def test_runs_steps_and_records_failures(
        self, repo_dir: Path, monkeypatch, plenty_of_disk, fake_runner
    ):
        _binaries(monkeypatch, "testing", available=False)
        seen = []

        async def database_step(settings):
            seen.append(settings)
            return repo_dir / "backups" / "backup-report.json"

        async def redis_step(settings):
            raise RuntimeError("Cannot connect to Redis: refused")

        session = SecureBackupSession(
            repo_dir,
            environment="prod",
            user="ops",
            groups={"devops"},
            steps={"database": database_step, "redis": redis_step},
            command_runner=fake_runner(),
        )
        report = await session.run()

        assert session.failed_components == ["redis"]
        assert report["backup_session"]["status"] == "completed_with_errors"
        assert report["security_measures"]["encryption_enabled"] is False
        assert report["security_measures"]["access_control"] is True
        assert [c["status"] for c in report["backup_components"]] == ["success", "failed"]
        assert "Investigate failed redis backup" in report["next_actions"]
        assert report["verification"]["tests_failed"] > 0
        assert seen[0].verify is True
        assert seen[0].environment == "prod"

        operations = _audit_operations(session)
        assert operations[0] == ("session_start", "started")
        assert ("authorization", "granted") in operations
        assert ("encryption_check", "warning") in operations
        assert ("redis_backup", "failed") in operations
        assert operations[-1] == ("session_end", "completed_with_errors")
        notifications = list(session.audit_dir.glob("backup-notifications-*.jsonl"))
        assert json.loads(notifications[0].read_text())["level"] == "error"

    async def test_encrypted_session_passes_verification(
        self, repo_dir: Path, monkeypatch, plenty_of_disk, fake_runner
    ):
        monkeypatch.setenv("BACKUP_ENCRYPTION_KEY", "k3y")
        for module in ("database", "redis", "common", "testing"):
            monkeypatch.setattr(
                f"wellguard.backup.{module}.resolve_binary",
                lambda name: None if name == "docker" else f"/usr/bin/{name}",
            )
        ping = ("redis-cli", "-h", "localhost", "-p", "6380", "-n", "0", "PING")
        runner = fake_runner(
            {
                ("pg_dump",): _write_to_flag("--file", b"PGDMP" + os.urandom(4096)),
                ("gpg",): _write_to_flag("--output", os.urandom(16 * 1024)),
                ping: "PONG\n",
                ("crontab", "-l"): "0 2 * * * wellguard backup secure\n",
            }
        )

        session = SecureBackupSession(repo_dir, user="ops", command_runner=runner)
        report = await session.run()

        assert session.failed_components == []
        assert report["security_measures"]["encryption_enabled"] is True
        assert report["verification"]["tests_failed"] == 0
        assert ("backup_verification", "success") in _audit_operations(session)
        backups = repo_dir / "backups"
        assert len(list(backups.glob("wellflow-full-dev-*.sql.dump.gpg"))) == 1
        assert not list(backups.glob("wellflow-full-dev-*.sql.dump"))
        assert len(list((backups / "redis").glob("redis-dump-dev-*.txt.gz.gpg"))) == 1

    async def test_encryption_key_passed_to_steps(
        self, repo_dir: Path, monkeypatch, plenty_of_disk, fake_runner
    ):
        monkeypatch.setenv("BACKUP_ENCRYPTION_KEY", "k3y")
        _binaries(monkeypatch, "testing", available=False)
        seen = []

        async def step(settings):
            seen.append(settings)
            return repo_dir / "report.json"

        session = SecureBackupSession(
            repo_dir, user="ops", steps={"database": step}, command_runner=fake_runner()
        )
        report = await session.run()

        assert seen[0].encrypt is True
        assert seen[0].encryption_key == "k3y"
        assert report["backup_session"]["status"] == "completed"
        assert report["security_measures"]["encryption_algorithm"] == "AES-256 (gpg symmetric)"
