"""``wellguard backup`` commands."""

from pathlib import Path

import typer

from wellguard.backup import (
    ApplicationBackup,
    BackupMonitor,
    BackupSettings,
    BackupTestSuite,
    DatabaseBackup,
    RedisBackup,
    SecureBackupSession,
    database_target,
    redis_target,
)
from wellguard.backup.redis import DEFAULT_RETENTION_DAYS as REDIS_RETENTION_DAYS
from wellguard.config import get_encryption_key
from wellguard.utils.debug import debug_print

from .shared import ProjectDirOption, backup_app, console, finish, get_project_dir, run_async

EnvironmentOption = typer.Option("dev", "--environment", "-e", help="dev or prod")
TypeOption = typer.Option("full", "--type", "-t", help="full or incremental")
EncryptOption = typer.Option(False, "--encrypt", help="Encrypt files with gpg")
VerifyOption = typer.Option(False, "--verify", help="Verify the produced files")


def _settings(
    root: Path,
    environment: str,
    backup_type: str,
    encrypt: bool,
    verify: bool,
    retention_days: int,
) -> BackupSettings:
    settings = BackupSettings(
        environment=environment,
        backup_type=backup_type,
        encrypt=encrypt,
        verify=verify,
        retention_days=retention_days,
        root=root,
        encryption_key=get_encryption_key(root) if encrypt else None,
    )
    if encrypt and not settings.encryption_key:
        console.print("[yellow]![/yellow] BACKUP_ENCRYPTION_KEY not set; files stay unencrypted")
    debug_print(
        "backup",
        "Backup settings",
        environment=environment,
        backup_type=backup_type,
        encrypt=bool(settings.encryption_key),
        verify=verify,
    )
    return settings


@backup_app.command("database")
def backup_database(
    environment: str = EnvironmentOption,
    backup_type: str = TypeOption,
    encrypt: bool = EncryptOption,
    verify: bool = VerifyOption,
    retention_days: int = typer.Option(30, "--retention-days", help="Days of backups to keep"),
    project_dir: Path | None = ProjectDirOption,
) -> None:
    """Dump the WellFlow PostgreSQL database."""
    root = get_project_dir(project_dir)

    async def _run() -> Path:
        settings = _settings(root, environment, backup_type, encrypt, verify, retention_days)
        return await DatabaseBackup(settings, database_target(environment, root)).run()

    report = run_async(_run())
    console.print(f"[green]✓[/green] Database backup completed: {report}")


@backup_app.command("redis")
def backup_redis(
    environment: str = EnvironmentOption,
    backup_type: str = TypeOption,
    encrypt: bool = EncryptOption,
    verify: bool = VerifyOption,
    retention_days: int = typer.Option(
        REDIS_RETENTION_DAYS, "--retention-days", help="Days of backups to keep"
    ),
    project_dir: Path | None = ProjectDirOption,
) -> None:
    """Snapshot or dump the WellFlow Redis instance."""
    root = get_project_dir(project_dir)

    async def _run() -> Path:
        settings = _settings(root, environment, backup_type, encrypt, verify, retention_days)
        return await RedisBackup(settings, redis_target(environment, root)).run()

    report = run_async(_run())
    console.print(f"[green]✓[/green] Redis backup completed: {report}")


@backup_app.command("application")
def backup_application(
    environment: str = EnvironmentOption,
    backup_type: str = TypeOption,
    encrypt: bool = EncryptOption,
    verify: bool = VerifyOption,
    retention_days: int = typer.Option(30, "--retention-days", help="Days of backups to keep"),
    project_dir: Path | None = ProjectDirOption,
) -> None:
    """Archive the monorepo code, configuration, docs and scripts."""
    root = get_project_dir(project_dir)

    async def _run() -> Path:
        settings = _settings(root, environment, backup_type, encrypt, verify, retention_days)
        return await ApplicationBackup(settings).run()

    report = run_async(_run())
    console.print(f"[green]✓[/green] Application backup completed: {report}")


@backup_app.command("secure")
def backup_secure(
    environment: str = EnvironmentOption,
    encrypt: bool = typer.Option(True, "--encrypt/--no-encrypt", help="Encrypt backup files"),
    project_dir: Path | None = ProjectDirOption,
) -> None:
    """Run every backup with verification, encryption and an audit trail."""
    root = get_project_dir(project_dir)
    if environment not in ("dev", "prod"):
        console.print(f"[red]Error: Invalid environment: {environment}. Use 'dev' or 'prod'[/red]")
        raise typer.Exit(1)
    session = SecureBackupSession(root, environment=environment, encrypt=encrypt)
    report = run_async(session.run())

    for component in report["backup_components"]:
        icon = "[green]✓[/green]" if component["status"] == "success" else "[red]✗[/red]"
        detail = component["report"] or component["error"]
        console.print(f"  {icon} {component['component']}: {detail}")
    console.print(f"  Report: {report['report_file']}")
    finish(
        bool(session.failed_components),
        f"Secure backup session {session.session_id} completed",
        f"Backup failed for: {', '.join(session.failed_components)}",
    )


@backup_app.command("test")
def backup_test(
    environment: str = EnvironmentOption,
    test_type: str = typer.Option(
        "all", "--type", "-t", help="database, redis, application or all"
    ),
    restore_test: bool = typer.Option(
        False, "--restore-test", help="Restore the latest database dump into a scratch database"
    ),
    project_dir: Path | None = ProjectDirOption,
) -> None:
    """Validate the latest backups."""
    root = get_project_dir(project_dir)

    async def _run() -> tuple[BackupTestSuite, dict]:
        suite = BackupTestSuite(
            root,
            environment=environment,
            test_type=test_type,
            restore_test=restore_test,
            db_target=database_target(environment, root) if restore_test else None,
        )
        return suite, await suite.run()

    suite, report = run_async(_run())
    summary = report["summary"]
    console.print(
        f"  Tests: {summary['total_tests']}, passed: {summary['tests_passed']}, "
        f"failed: {summary['tests_failed']} ({summary['success_rate']}%)"
    )
    for result in report["results"]:
        if result["status"] == "FAILED":
            console.print(f"  [red]✗[/red] {result['test']}: {result['message']}")
    console.print(f"  Report: {report['report_file']}")
    finish(suite.failed, "All backup tests passed", "Backup tests failed")


@backup_app.command("monitor")
def backup_monitor(
    check_all: bool = typer.Option(False, "--check-all", help="Also check integrity and automation"),
    alert_threshold: int = typer.Option(
        80, "--alert-threshold", help="Storage usage percentage that raises a warning"
    ),
    send_alerts: bool = typer.Option(False, "--send-alerts", help="Send alerts to Sentry and email"),
    retention_days: int = typer.Option(30, "--retention-days", help="Expected retention window"),
    project_dir: Path | None = ProjectDirOption,
) -> None:
    """Check backup storage, freshness and integrity."""
    root = get_project_dir(project_dir)

    async def _run() -> tuple[BackupMonitor, dict]:
        monitor = BackupMonitor(
            root,
            check_all=check_all,
            alert_threshold=alert_threshold,
            send_alerts=send_alerts,
            retention_days=retention_days,
        )
        return monitor, await monitor.run()

    monitor, report = run_async(_run())
    summary = report["summary"]
    console.print(
        f"  Status: {summary['overall_status']} ({summary['critical_alerts']} critical, "
        f"{summary['warnings']} warnings, {summary['info_messages']} info)"
    )
    console.print(f"  Report: {report['report_file']}")
    finish(monitor.has_critical, "No critical backup alerts", "Critical backup alerts raised")
