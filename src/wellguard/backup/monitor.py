"""Backup monitoring: storage, freshness, integrity, retention and automation."""

import logging
import shutil
import tarfile
import time
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

from wellguard.config import get_alert_email, get_sentry_dsn
from wellguard.reporting import append_jsonl, timestamp_slug, utc_now_iso, write_json_report
from wellguard.reporting.notify import send_email_alert, send_sentry_event
from wellguard.runtime import CommandRunner, resolve_binary, run_command

from . import application, database, redis
from .common import SECONDS_PER_DAY, gzip_is_valid, latest_file

logger = logging.getLogger(__name__)

MONITOR_SUBDIR = Path("security-reports") / "backup-monitoring"
CRITICAL = "CRITICAL"
WARNING = "WARNING"
INFO = "INFO"

CRITICAL_USAGE_PERCENT = 95
CRITICAL_FREE_BYTES = 5 * 1024**3
WARNING_FREE_BYTES = 10 * 1024**3
MAX_BACKUP_AGE_HOURS = 25
MAX_LOG_AGE_HOURS = 48


def backup_sources(environment: str) -> list[tuple[str, str, str, str]]:
    """(component, directory, glob, severity when missing) for one environment."""
    return [
        ("database", database.BACKUP_SUBDIR, f"wellflow-full-{environment}-*.dump*", CRITICAL),
        ("redis", str(redis.BACKUP_SUBDIR), f"redis-*{environment}-*.gz*", WARNING),
        (
            "application",
            str(application.BACKUP_SUBDIR),
            f"wellflow-app-{environment}-*.tar.gz*",
            WARNING,
        ),
    ]


class BackupMonitor:
    """Raises alerts about the state of the backup storage."""

    def __init__(
        self,
        root: Path,
        check_all: bool = False,
        alert_threshold: int = 80,
        send_alerts: bool = False,
        retention_days: int = 30,
        environments: tuple[str, ...] = ("dev", "prod"),
        command_runner: CommandRunner | None = None,
        disk_usage: Callable[[Path], Any] = shutil.disk_usage,
        clock: Callable[[], float] = time.time,
    ):
        if not 1 <= alert_threshold <= 100:
            raise ValueError("Alert threshold must be between 1 and 100")
        self.root = Path(root)
        self.check_all = check_all
        self.alert_threshold = alert_threshold
        self.send_alerts = send_alerts
        self.retention_days = retention_days
        self.environments = environments
        self._runner = command_runner or run_command
        self._disk_usage = disk_usage
        self._clock = clock
        self.timestamp = timestamp_slug()
        self.output_dir = self.root / MONITOR_SUBDIR
        self.alerts: list[dict[str, str]] = []
        self.checks_performed: list[str] = []

    def alert(self, level: str, category: str, message: str) -> None:
        record = {
            "level": level,
            "category": category,
            "message": message,
            "timestamp": utc_now_iso(),
        }
        self.alerts.append(record)
        append_jsonl(self.output_dir / f"backup-alerts-{self.timestamp[:8]}.jsonl", record)
        log = {CRITICAL: logger.critical, WARNING: logger.warning}.get(level, logger.info)
        log("[%s] %s", category, message)

    def _backup_files(self, directory: Path, pattern: str) -> list[Path]:
        if not directory.exists():
            return []
        return [p for p in directory.glob(pattern) if p.is_file() and p.suffix != ".sha256"]

    async def run(self) -> dict[str, Any]:
        """Run the checks and write the monitoring report."""
        self.output_dir.mkdir(parents=True, exist_ok=True)
        logger.info("Starting backup monitoring (check_all=%s)", self.check_all)
        self.check_storage()
        self.check_freshness()
        if self.check_all:
            await self.check_integrity()
            self.check_retention()
            await self.check_automation()
        report = self.write_report()
        if self.send_alerts:
            await self.deliver_alerts(report)
        return report

    def check_storage(self) -> None:
        self.checks_performed.append("storage_capacity")
        target = self.root / database.BACKUP_SUBDIR
        usage = self._disk_usage(target if target.exists() else self.root)
        percent = round(usage.used * 100 / usage.total) if usage.total else 0
        if percent >= CRITICAL_USAGE_PERCENT:
            self.alert(CRITICAL, "storage", f"Disk usage critical: {percent}%")
        elif percent >= self.alert_threshold:
            self.alert(WARNING, "storage", f"Disk usage high: {percent}%")
        else:
            self.alert(INFO, "storage", f"Disk usage normal: {percent}%")

        free_gb = usage.free / 1024**3
        if usage.free < CRITICAL_FREE_BYTES:
            self.alert(CRITICAL, "storage", f"Free space critical: {free_gb:.1f} GB")
        elif usage.free < WARNING_FREE_BYTES:
            self.alert(WARNING, "storage", f"Free space low: {free_gb:.1f} GB")

    def check_freshness(self) -> None:
        self.checks_performed.append("backup_freshness")
        now = self._clock()
        for environment in self.environments:
            for component, subdir, pattern, missing_level in backup_sources(environment):
                files = self._backup_files(self.root / subdir, pattern)
                label = f"{environment} {component} backup"
                if not files:
                    self.alert(missing_level, "freshness", f"No {label} found")
                    continue
                newest = max(p.stat().st_mtime for p in files)
                age_hours = (now - newest) / 3600
                if age_hours > MAX_BACKUP_AGE_HOURS:
                    self.alert(WARNING, "freshness", f"{label} is {age_hours:.0f} hours old")
                else:
                    self.alert(INFO, "freshness", f"{label} is current ({age_hours:.1f} hours old)")

    async def check_integrity(self) -> None:
        self.checks_performed.append("backup_integrity")
        for environment in self.environments:
            for component, subdir, pattern, _ in backup_sources(environment):
                newest = latest_file(self.root / subdir, pattern.rstrip("*"))
                if newest is None:
                    continue
                problem = await self._integrity_problem(newest)
                if problem:
                    self.alert(CRITICAL, "integrity", f"{newest.name}: {problem}")
                else:
                    self.alert(INFO, "integrity", f"{newest.name} passed integrity check")

    async def _integrity_problem(self, path: Path) -> str | None:
        name = path.name
        if name.endswith(".dump"):
            if resolve_binary("pg_restore") is None:
                return None
            try:
                await self._runner(["pg_restore", "--list", str(path)], timeout=300)
            except RuntimeError as exc:
                return f"pg_restore cannot read dump ({exc})"
            return None
        if name.endswith(".tar.gz"):
            try:
                with tarfile.open(path, "r:gz") as archive:
                    archive.getnames()
            except (tarfile.TarError, OSError) as exc:
                return f"archive is corrupted ({exc})"
            return None
        if name.endswith(".gz") and not gzip_is_valid(path):
            return "gzip stream is corrupted"
        return None

    def check_retention(self) -> None:
        self.checks_performed.append("retention_compliance")
        cutoff = self._clock() - self.retention_days * SECONDS_PER_DAY
        for environment in self.environments:
            for component, subdir, pattern, _ in backup_sources(environment):
                expired = [
                    p for p in self._backup_files(self.root / subdir, pattern)
                    if p.stat().st_mtime < cutoff
                ]
                if expired:
                    self.alert(
                        WARNING,
                        "retention",
                        f"{len(expired)} {environment} {component} backups exceed "
                        f"{self.retention_days}-day retention",
                    )

    async def check_automation(self) -> None:
        self.checks_performed.append("automation_status")
        cutoff = self._clock() - MAX_LOG_AGE_HOURS * 3600
        logs = []
        for subdir in (database.BACKUP_SUBDIR, redis.BACKUP_SUBDIR, application.BACKUP_SUBDIR):
            directory = self.root / subdir
            if directory.exists():
                logs.extend(p for p in directory.glob("*backup-*.log") if p.is_file())
        if not any(p.stat().st_mtime >= cutoff for p in logs):
            self.alert(WARNING, "automation", f"No backup logs in the last {MAX_LOG_AGE_HOURS} hours")

        if resolve_binary("crontab") is None:
            self.alert(WARNING, "automation", "crontab not available; cannot verify schedule")
            return
        try:
            result = await self._runner(["crontab", "-l"], timeout=15, allowed_exit_codes=(0, 1))
        except RuntimeError:
            logger.warning("crontab -l failed", exc_info=True)
            return
        if "backup" not in result.stdout:
            self.alert(WARNING, "automation", "No backup jobs scheduled in crontab")

    def _by_level(self, level: str) -> list[dict[str, str]]:
        return [a for a in self.alerts if a["level"] == level]

    def recommendations(self) -> list[str]:
        categories = {a["category"] for a in self.alerts if a["level"] in (CRITICAL, WARNING)}
        advice = {
            "storage": "Free disk space or extend the backup volume",
            "freshness": "Check that scheduled backups are running for every environment",
            "integrity": "Re-run the affected backups and investigate storage corruption",
            "retention": "Run the backup commands so retention cleanup removes expired files",
            "automation": "Schedule the backup commands via cron or the CI scheduler",
        }
        return [advice[c] for c in advice if c in categories]

    def write_report(self) -> dict[str, Any]:
        critical = self._by_level(CRITICAL)
        warnings = self._by_level(WARNING)
        info = self._by_level(INFO)
        report = {
            "monitoring_session": {
                "session_id": f"monitor-{self.timestamp}",
                "timestamp": utc_now_iso(),
                "check_all": self.check_all,
                "alert_threshold": self.alert_threshold,
                "retention_days": self.retention_days,
            },
            "summary": {
                "critical_alerts": len(critical),
                "warnings": len(warnings),
                "info_messages": len(info),
                "overall_status": "healthy" if not critical and not warnings else "issues_detected",
            },
            "critical_alerts": critical,
            "warnings": warnings,
            "info_messages": info,
            "checks_performed": self.checks_performed,
            "recommendations": self.recommendations(),
            "next_check": (datetime.now(UTC) + timedelta(hours=24)).isoformat(),
        }
        path = self.output_dir / f"backup-monitoring-report-{self.timestamp}.json"
        write_json_report(path, report)
        report["report_file"] = str(path)
        logger.info("Monitoring report generated: %s", path)
        return report

    async def deliver_alerts(self, report: dict[str, Any]) -> None:
        actionable = report["critical_alerts"] + report["warnings"]
        if not actionable:
            return
        summary = report["summary"]
        subject = (
            f"WellFlow backup monitoring: {summary['critical_alerts']} critical, "
            f"{summary['warnings']} warnings"
        )
        body = "\n".join(f"[{a['level']}] {a['category']}: {a['message']}" for a in actionable)
        dsn = get_sentry_dsn(self.root)
        if dsn:
            level = "error" if report["critical_alerts"] else "warning"
            send_sentry_event(dsn, subject, level, {"alerts": actionable})
        email = get_alert_email(self.root)
        if email:
            await send_email_alert(email, subject, body, self._runner)

    @property
    def has_critical(self) -> bool:
        return bool(self._by_level(CRITICAL))
