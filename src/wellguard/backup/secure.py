"""Secure backup session: audited, encrypted, verified run of every backup."""

import getpass
import grp
import logging
import os
import shutil
import socket
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

from wellguard.config import get_encryption_key, get_sentry_dsn
from wellguard.reporting import append_jsonl, timestamp_slug, utc_now_iso, write_json_report
from wellguard.reporting.notify import send_sentry_event
from wellguard.runtime import CommandRunner
from wellguard.utils.logs import attach_run_log

from .application import ApplicationBackup
from .database import DatabaseBackup, database_target
from .models import BackupSettings
from .redis import DEFAULT_RETENTION_DAYS as REDIS_RETENTION_DAYS
from .redis import RedisBackup, redis_target
from .testing import BackupTestSuite

logger = logging.getLogger(__name__)

AUDIT_SUBDIR = Path("security-reports") / "backup-audit"
AUTHORIZED_GROUPS = ("backup-operator", "admin", "devops")
MIN_FREE_BYTES = 1024**3
SECURE_LOG_FORMAT = "[%(asctime)s] [%(levelname)s] [USER:{user}] [SESSION:{session}] %(message)s"

BackupStep = Callable[[BackupSettings], Awaitable[Path]]


def user_groups(user: str) -> set[str]:
    """Names of the groups ``user`` belongs to (primary and supplementary)."""
    names = {g.gr_name for g in grp.getgrall() if user in g.gr_mem}
    for gid in os.getgroups():
        try:
            names.add(grp.getgrgid(gid).gr_name)
        except KeyError:
            continue
    return names


def default_steps(command_runner: CommandRunner | None = None) -> dict[str, BackupStep]:
    """The database, redis and application backups wired to real tools."""

    async def database_step(settings: BackupSettings) -> Path:
        target = database_target(settings.environment, settings.root)
        return await DatabaseBackup(settings, target, command_runner).run()

    async def redis_step(settings: BackupSettings) -> Path:
        redis_settings = replace(settings, retention_days=REDIS_RETENTION_DAYS)
        target = redis_target(settings.environment, settings.root)
        return await RedisBackup(redis_settings, target, command_runner).run()

    async def application_step(settings: BackupSettings) -> Path:
        return await ApplicationBackup(settings, command_runner).run()

    return {"database": database_step, "redis": redis_step, "application": application_step}


@dataclass
class ComponentOutcome:
    name: str
    status: str  # "success" or "failed"
    report: str = ""
    error: str = ""


@dataclass
class SecureBackupSession:
    """Runs every backup with verification, encryption and an audit trail."""

    root: Path
    environment: str = "dev"
    encrypt: bool = True
    user: str = field(default_factory=lambda: os.environ.get("USER") or getpass.getuser())
    steps: dict[str, BackupStep] | None = None
    command_runner: CommandRunner | None = None
    groups: set[str] | None = None
    timestamp: str = field(default_factory=timestamp_slug)

    def __post_init__(self) -> None:
        self.root = Path(self.root)
        self.session_id = f"backup-{self.timestamp}"
        self.audit_dir = self.root / AUDIT_SUBDIR
        self.hostname = socket.gethostname()
        self.outcomes: list[ComponentOutcome] = []
        self.verification: dict[str, Any] = {}

    @property
    def audit_log(self) -> Path:
        return self.audit_dir / f"backup-audit-{self.timestamp[:8]}.jsonl"

    def audit(self, operation: str, status: str, details: str = "") -> None:
        append_jsonl(
            self.audit_log,
            {
                "timestamp": utc_now_iso(),
                "session_id": self.session_id,
                "user_id": self.user,
                "operation": operation,
                "environment": self.environment,
                "status": status,
                "details": details,
                "hostname": self.hostname,
            },
        )

    async def run(self) -> dict[str, Any]:
        """Execute the session and return the written report."""
        self.audit_dir.mkdir(parents=True, exist_ok=True)
        log_path = self.audit_dir / f"secure-backup-{self.timestamp}.log"
        fmt = SECURE_LOG_FORMAT.format(user=self.user, session=self.session_id)
        with attach_run_log(log_path, fmt=fmt):
            logger.info("Starting secure backup session %s", self.session_id)
            self.audit("session_start", "started", f"encrypt={self.encrypt}")
            self.check_prerequisites()

            key = get_encryption_key(self.root) if self.encrypt else None
            settings = BackupSettings(
                environment=self.environment,
                encrypt=self.encrypt,
                verify=True,
                root=self.root,
                encryption_key=key,
            )
            for name, step in (self.steps or default_steps(self.command_runner)).items():
                await self._run_step(name, step, settings)

            suite = BackupTestSuite(
                self.root, self.environment, "all", command_runner=self.command_runner
            )
            test_report = await suite.run()
            self.verification = {
                "tests_run": test_report["summary"]["total_tests"],
                "tests_passed": test_report["summary"]["tests_passed"],
                "tests_failed": test_report["summary"]["tests_failed"],
                "report": test_report["report_file"],
            }
            self.audit("backup_verification", "failed" if suite.failed else "success")

            report = self.write_report()
            self.notify(report)
            self.audit("session_end", report["backup_session"]["status"])
        return report

    def check_prerequisites(self) -> None:
        """Authorization, encryption key and disk space checks."""
        if self.environment == "prod":
            groups = self.groups if self.groups is not None else user_groups(self.user)
            if not groups.intersection(AUTHORIZED_GROUPS):
                self.audit("authorization", "denied", f"groups={sorted(groups)}")
                raise PermissionError(
                    f"User {self.user} is not authorized for production backups "
                    f"(requires one of: {', '.join(AUTHORIZED_GROUPS)})"
                )
            self.audit("authorization", "granted")

        if self.encrypt and not get_encryption_key(self.root):
            logger.warning("BACKUP_ENCRYPTION_KEY not set; encryption disabled for this session")
            self.audit("encryption_check", "warning", "no encryption key")
            self.encrypt = False

        free = shutil.disk_usage(self.root).free
        if free < MIN_FREE_BYTES:
            self.audit("disk_space_check", "failed", f"{free} bytes free")
            raise RuntimeError(f"Insufficient disk space: {free // 1024**2} MB free, 1 GB required")
        self.audit("prerequisites_check", "success")

    async def _run_step(self, name: str, step: BackupStep, settings: BackupSettings) -> None:
        logger.info("Running %s backup", name)
        self.audit(f"{name}_backup", "started")
        try:
            report_path = await step(settings)
        except (RuntimeError, OSError, ValueError) as exc:
            logger.error("%s backup failed: %s", name.capitalize(), exc)
            self.outcomes.append(ComponentOutcome(name, "failed", error=str(exc)))
            self.audit(f"{name}_backup", "failed", str(exc))
            return
        logger.info("%s backup completed", name.capitalize())
        self.outcomes.append(ComponentOutcome(name, "success", report=str(report_path)))
        self.audit(f"{name}_backup", "success", str(report_path))

    @property
    def failed_components(self) -> list[str]:
        return [o.name for o in self.outcomes if o.status == "failed"]

    def write_report(self) -> dict[str, Any]:
        failed = self.failed_components
        status = "completed" if not failed else "completed_with_errors"
        if len(failed) == len(self.outcomes) and self.outcomes:
            status = "failed"
        next_backup = datetime.now(UTC) + timedelta(days=1)
        report = {
            "backup_session": {
                "session_id": self.session_id,
                "timestamp": utc_now_iso(),
                "user": self.user,
                "hostname": self.hostname,
                "environment": self.environment,
                "status": status,
            },
            "security_measures": {
                "encryption_enabled": self.encrypt,
                "encryption_algorithm": "AES-256 (gpg symmetric)" if self.encrypt else None,
                "integrity_verification": True,
                "audit_logging": True,
                "access_control": self.environment == "prod",
            },
            "compliance": {
                "audit_trail": str(self.audit_log),
                "data_encrypted_at_rest": self.encrypt,
                "retention_policy_applied": True,
                "standards": ["SOC 2", "NIST CSF PR.IP-4", "IEC 62443-2-1"],
            },
            "backup_components": [
                {"component": o.name, "status": o.status, "report": o.report, "error": o.error}
                for o in self.outcomes
            ],
            "verification": self.verification,
            "next_actions": [
                f"Next scheduled backup: {next_backup.date().isoformat()}",
                *[f"Investigate failed {name} backup" for name in failed],
                "Review audit log for anomalies",
            ],
        }
        path = self.audit_dir / f"secure-backup-report-{self.timestamp}.json"
        write_json_report(path, report)
        report["report_file"] = str(path)
        logger.info("Secure backup report generated: %s", path)
        return report

    def notify(self, report: dict[str, Any]) -> None:
        """Record a notification line and forward it to Sentry when configured."""
        status = report["backup_session"]["status"]
        level = "info" if status == "completed" else "error"
        message = f"WellFlow secure backup {status} ({self.environment})"
        append_jsonl(
            self.audit_dir / f"backup-notifications-{self.timestamp[:8]}.jsonl",
            {
                "timestamp": utc_now_iso(),
                "session_id": self.session_id,
                "level": level,
                "message": message,
                "failed_components": self.failed_components,
            },
        )
        dsn = get_sentry_dsn(self.root)
        if dsn:
            send_sentry_event(dsn, message, level, {"session_id": self.session_id})
