"""PostgreSQL backups via pg_dump."""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import unquote, urlparse

from wellguard.config import get_database_url
from wellguard.runtime import CommandRunner, MissingToolError, resolve_binary, run_command
from wellguard.tools.registry import install_hint
from wellguard.utils.logs import attach_run_log

from .common import (
    cleanup_old_backups,
    encrypt_run_files,
    gzip_file,
    verify_min_size,
    write_backup_report,
    write_checksum_file,
)
from .models import COMPRESSION_LEVEL, BackupRun, BackupSettings

logger = logging.getLogger(__name__)

BACKUP_SUBDIR = "backups"
MIN_DUMP_BYTES = 1024
RETENTION_PATTERNS = ("wellflow-*.sql*", "backup-report-*.json", "backup-*.log")


@dataclass
class DatabaseTarget:
    """Connection parameters for the database being backed up."""

    host: str
    port: int
    user: str
    password: str
    name: str

    def child_env(self) -> dict[str, str]:
        return {"PGPASSWORD": self.password} if self.password else {}

    def connection_args(self) -> list[str]:
        return ["-h", self.host, "-p", str(self.port), "-U", self.user]


def parse_database_url(url: str | None) -> DatabaseTarget:
    """Parse ``postgres[ql]://user:password@host:port/dbname``."""
    if not url:
        raise ValueError("DATABASE_URL environment variable is required for production backups")
    parsed = urlparse(url)
    if parsed.scheme not in ("postgres", "postgresql"):
        raise ValueError("Invalid DATABASE_URL format")
    name = parsed.path.lstrip("/")
    if not parsed.hostname or not parsed.username or not name:
        raise ValueError("Invalid DATABASE_URL format")
    try:
        port = parsed.port or 5432
    except ValueError:
        raise ValueError("Invalid DATABASE_URL format") from None
    return DatabaseTarget(
        host=parsed.hostname,
        port=port,
        user=unquote(parsed.username),
        password=unquote(parsed.password or ""),
        name=name.split("?", 1)[0],
    )


def database_target(environment: str, project_dir: Path | None = None) -> DatabaseTarget:
    """Resolve connection parameters for ``environment``."""
    if environment == "prod":
        return parse_database_url(get_database_url(project_dir))
    return DatabaseTarget(
        host=os.environ.get("DB_HOST", "localhost"),
        port=int(os.environ.get("DB_PORT", "5433")),
        user=os.environ.get("DB_USER", "postgres"),
        password=os.environ.get("DB_PASSWORD", "password"),
        name=os.environ.get("DB_NAME", "wellflow"),
    )


class DatabaseBackup:
    """Custom-format and plain SQL dumps of the WellFlow database."""

    def __init__(
        self,
        settings: BackupSettings,
        target: DatabaseTarget,
        command_runner: CommandRunner | None = None,
    ):
        self.settings = settings
        self.target = target
        self._runner = command_runner or run_command
        self.backup_dir = settings.root / BACKUP_SUBDIR

    async def run(self) -> Path:
        """Perform the backup and return the report path."""
        self.backup_dir.mkdir(parents=True, exist_ok=True)
        run = BackupRun(kind="database", settings=self.settings, backup_dir=self.backup_dir)
        with attach_run_log(run.log_file):
            logger.info("Starting WellFlow database backup")
            logger.info("Environment: %s", self.settings.environment)
            logger.info("Backup type: %s", self.settings.backup_type)
            logger.info("Database: %s@%s:%s", self.target.name, self.target.host, self.target.port)

            if resolve_binary("pg_dump") is None:
                raise MissingToolError("pg_dump", install_hint("pg_dump"))
            await self._check_connectivity()

            if self.settings.backup_type == "incremental":
                logger.warning("Incremental backup requested; performing a full dump")
            await self._full_backup(run)

            await encrypt_run_files(run, self._runner)
            if self.settings.verify:
                await self._verify(run)

            cleanup_old_backups(self.backup_dir, RETENTION_PATTERNS, self.settings.retention_days)
            report = write_backup_report(
                run,
                "backup-report",
                extra={
                    "database": {
                        "name": self.target.name,
                        "host": self.target.host,
                        "port": self.target.port,
                    }
                },
            )
            logger.info("Database backup completed successfully")
        return report

    async def _check_connectivity(self) -> None:
        if resolve_binary("pg_isready") is None:
            logger.warning("pg_isready not available, skipping connectivity check")
            return
        logger.info("Testing database connectivity...")
        try:
            await self._runner(
                ["pg_isready", *self.target.connection_args(), "-d", self.target.name],
                timeout=30,
                env=self.target.child_env(),
            )
        except RuntimeError as exc:
            raise RuntimeError(f"Cannot connect to database: {exc}") from exc
        logger.info("Database connectivity confirmed")

    async def _full_backup(self, run: BackupRun) -> None:
        stem = f"wellflow-full-{self.settings.environment}-{run.timestamp}"
        dump_file = self.backup_dir / f"{stem}.sql.dump"
        sql_file = self.backup_dir / f"{stem}.sql"
        common = [
            *self.target.connection_args(),
            "-d",
            self.target.name,
            "--verbose",
            "--no-owner",
            "--no-privileges",
        ]

        logger.info("Creating custom-format backup: %s", dump_file.name)
        await self._runner(
            [
                "pg_dump",
                *common,
                "--format=custom",
                f"--compress={COMPRESSION_LEVEL}",
                "--file",
                str(dump_file),
            ],
            timeout=3600,
            env=self.target.child_env(),
        )
        logger.info("Creating plain SQL backup: %s", sql_file.name)
        await self._runner(
            ["pg_dump", *common, "--format=plain", "--file", str(sql_file)],
            timeout=3600,
            env=self.target.child_env(),
        )
        sql_gz = gzip_file(sql_file)

        for path in (dump_file, sql_gz):
            run.files.append(path)
            run.files.append(write_checksum_file(path))
            logger.info("Backup created: %s (%d bytes)", path.name, path.stat().st_size)

    async def _verify(self, run: BackupRun) -> None:
        logger.info("Verifying backup integrity...")
        for path in run.files:
            if path.suffix == ".sha256":
                continue
            if not verify_min_size(path, MIN_DUMP_BYTES):
                raise RuntimeError(f"Backup verification failed: {path.name}")
            if path.name.endswith(".dump") and resolve_binary("pg_restore"):
                try:
                    await self._runner(["pg_restore", "--list", str(path)], timeout=300)
                except RuntimeError as exc:
                    raise RuntimeError(f"Backup verification failed: {path.name}: {exc}") from exc
            logger.info("Verified: %s", path.name)
        run.verified = True
