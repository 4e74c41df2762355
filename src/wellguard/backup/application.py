"""Application source, configuration and environment-shape backups."""

import fnmatch
import json
import logging
import os
import re
import tarfile
from collections.abc import Iterator
from pathlib import Path

from wellguard.reporting import utc_now_iso
from wellguard.runtime import CommandRunner, run_command
from wellguard.utils.logs import attach_run_log

from .common import (
    cleanup_old_backups,
    encrypt_run_files,
    verify_min_size,
    write_backup_report,
    write_checksum_file,
)
from .models import COMPRESSION_LEVEL, BackupRun, BackupSettings

logger = logging.getLogger(__name__)

BACKUP_SUBDIR = Path("backups") / "application"
MIN_ARCHIVE_BYTES = 1024
RETENTION_PATTERNS = ("wellflow-*", "app-backup-report-*.json", "app-backup-*.log")

CODE_DIRS = ("apps", "packages", "docs", "scripts")
CODE_ROOT_PATTERNS = (
    "*.json",
    "*.js",
    "*.ts",
    "*.md",
    "*.yml",
    "*.yaml",
    "*.config.*",
    "Dockerfile*",
    ".env.example",
)
EXCLUDED_DIRS = (
    "node_modules",
    ".next",
    "dist",
    "build",
    "coverage",
    ".git",
    "backups",
    "*-reports",
)
EXCLUDED_FILES = ("*.log", ".env", ".env.local", ".env.production", "*.tmp", "*.temp")

CONFIG_ROOT_FILES = (
    "package.json",
    "pnpm-workspace.yaml",
    "pnpm-lock.yaml",
    "turbo.json",
    "tsconfig.json",
    "docker-compose.yml",
    "docker-compose.yaml",
    ".eslintrc.js",
    ".eslintrc.json",
    "prettier.config.js",
    ".prettierrc",
    ".nvmrc",
    ".env.example",
)
CONFIG_NESTED_PATTERNS = ("tsconfig*", ".eslintrc*", "prettier.config.*")
CONFIG_MAX_DEPTH = 3

ENV_NAME_PATTERN = re.compile(r"^(DB_|REDIS_|NODE_|PORT|NEXT_|API_)")
REQUIRED_VARIABLES = ["DATABASE_URL", "REDIS_URL", "JWT_SECRET", "NODE_ENV"]
OPTIONAL_VARIABLES = ["SENTRY_DSN", "API_BASE_URL", "NEXT_PUBLIC_PORT", "BACKUP_ENCRYPTION_KEY"]


def _matches(name: str, patterns: tuple[str, ...]) -> bool:
    return any(fnmatch.fnmatch(name, pattern) for pattern in patterns)


def is_excluded(relative: Path) -> bool:
    """Return True when any path component is an excluded dir or the file is excluded."""
    if any(_matches(part, EXCLUDED_DIRS) for part in relative.parts[:-1]):
        return True
    return _matches(relative.name, EXCLUDED_FILES) or _matches(relative.name, EXCLUDED_DIRS)


def iter_tree(root: Path, directory: Path) -> Iterator[Path]:
    """Yield files under ``directory`` (relative to ``root``) skipping excluded entries."""
    for current, dirs, files in os.walk(directory):
        current_path = Path(current)
        dirs[:] = sorted(d for d in dirs if not _matches(d, EXCLUDED_DIRS))
        for name in sorted(files):
            relative = (current_path / name).relative_to(root)
            if not is_excluded(relative):
                yield relative


def code_members(root: Path) -> list[Path]:
    """Files that make up the application source archive."""
    members: list[Path] = []
    for name in CODE_DIRS:
        if (root / name).is_dir():
            members.extend(iter_tree(root, root / name))
    for entry in sorted(root.iterdir()):
        if entry.is_file() and _matches(entry.name, CODE_ROOT_PATTERNS):
            relative = entry.relative_to(root)
            if not is_excluded(relative):
                members.append(relative)
    return members


def config_members(root: Path) -> list[Path]:
    """Configuration files: root configs, workspace manifests and nested tool configs."""
    members = [Path(name) for name in CONFIG_ROOT_FILES if (root / name).is_file()]
    for workspace in ("apps", "packages"):
        members.extend(
            p.relative_to(root) for p in sorted((root / workspace).glob("*/package.json"))
        )
    for current, dirs, files in os.walk(root):
        relative_dir = Path(current).relative_to(root)
        depth = len(relative_dir.parts)
        dirs[:] = sorted(d for d in dirs if not _matches(d, EXCLUDED_DIRS))
        if depth >= CONFIG_MAX_DEPTH:
            dirs[:] = []
        if depth == 0:
            continue
        for name in sorted(files):
            if _matches(name, CONFIG_NESTED_PATTERNS):
                members.append(relative_dir / name)
    seen: set[Path] = set()
    unique = []
    for member in members:
        if member not in seen:
            seen.add(member)
            unique.append(member)
    return unique


def write_archive(root: Path, members: list[Path], target: Path) -> Path:
    """Write a gzip-compressed tarball of ``members`` relative to ``root``."""
    with tarfile.open(target, "w:gz", compresslevel=COMPRESSION_LEVEL) as archive:
        for member in members:
            archive.add(root / member, arcname=str(member), recursive=False)
    return target


def environment_snapshot(environment: str, timestamp: str, env: dict[str, str]) -> dict:
    """Describe which variables are configured without recording their values."""
    names = sorted(name for name in env if ENV_NAME_PATTERN.match(name))
    return {
        "backup_id": f"wellflow-env-{environment}-{timestamp}",
        "timestamp": utc_now_iso(),
        "environment": environment,
        "variables": {name: "[REDACTED]" for name in names},
        "required_variables": REQUIRED_VARIABLES,
        "optional_variables": OPTIONAL_VARIABLES,
        "note": "Values are redacted; restore secrets from the secret manager",
    }


class ApplicationBackup:
    """Archives the monorepo source, configuration, docs and scripts."""

    def __init__(
        self,
        settings: BackupSettings,
        command_runner: CommandRunner | None = None,
        env: dict[str, str] | None = None,
    ):
        self.settings = settings
        self.root = settings.root
        self._runner = command_runner or run_command
        self._env = env if env is not None else dict(os.environ)
        self.backup_dir = settings.root / BACKUP_SUBDIR
        self.components: list[str] = []

    async def run(self) -> Path:
        """Perform the backup and return the report path."""
        self.backup_dir.mkdir(parents=True, exist_ok=True)
        run = BackupRun(kind="application", settings=self.settings, backup_dir=self.backup_dir)
        with attach_run_log(run.log_file):
            logger.info("Starting WellFlow application backup")
            logger.info("Environment: %s", self.settings.environment)
            env = self.settings.environment
            ts = run.timestamp

            self._archive(run, "code", code_members(self.root), f"wellflow-app-{env}-{ts}.tar.gz")
            self._archive(
                run, "config", config_members(self.root), f"wellflow-config-{env}-{ts}.tar.gz"
            )

            env_file = self.backup_dir / f"wellflow-env-{env}-{ts}.json"
            env_file.write_text(
                json.dumps(environment_snapshot(env, ts, self._env), indent=2) + "\n",
                encoding="utf-8",
            )
            run.files.append(env_file)
            self.components.append("environment")
            logger.info("Environment snapshot created: %s", env_file.name)

            for name, directory in (("docs", "docs"), ("scripts", "scripts")):
                if not (self.root / directory).is_dir():
                    logger.warning("%s directory not found, skipping %s backup", directory, name)
                    continue
                members = list(iter_tree(self.root, self.root / directory))
                self._archive(run, name, members, f"wellflow-{name}-{env}-{ts}.tar.gz")

            run.files += [write_checksum_file(p) for p in list(run.files)]
            await encrypt_run_files(run, self._runner)
            if self.settings.verify:
                self._verify(run)

            cleanup_old_backups(self.backup_dir, RETENTION_PATTERNS, self.settings.retention_days)
            report = write_backup_report(
                run, "app-backup-report", extra={"components": list(self.components)}
            )
            logger.info("Application backup completed successfully")
        return report

    def _archive(self, run: BackupRun, component: str, members: list[Path], name: str) -> None:
        if not members:
            logger.warning("No files found for %s backup", component)
            return
        target = write_archive(self.root, members, self.backup_dir / name)
        run.files.append(target)
        self.components.append(component)
        logger.info(
            "%s backup created: %s (%d files, %d bytes)",
            component.capitalize(),
            target.name,
            len(members),
            target.stat().st_size,
        )

    def _verify(self, run: BackupRun) -> None:
        logger.info("Verifying backup integrity...")
        for path in run.files:
            if path.suffix == ".sha256":
                continue
            if ".json" in path.suffixes:
                continue
            if not verify_min_size(path, MIN_ARCHIVE_BYTES):
                raise RuntimeError(f"Backup verification failed: {path.name}")
            if path.name.endswith(".tar.gz"):
                try:
                    with tarfile.open(path, "r:gz") as archive:
                        archive.getnames()
                except (tarfile.TarError, OSError) as exc:
                    raise RuntimeError(f"Archive is corrupted: {path.name}: {exc}") from exc
            logger.info("Verified: %s", path.name)
        run.verified = True
