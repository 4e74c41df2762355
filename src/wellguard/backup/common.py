"""Helpers shared by the backup commands: compression, encryption, retention."""

import gzip
import logging
import shutil
import time
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from wellguard.reporting import sha256_file, utc_now_iso, write_json_report
from wellguard.runtime import CommandRunner, resolve_binary, run_command

from .models import COMPRESSION_LEVEL, BackupFile, BackupRun

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400


def gzip_file(path: Path, level: int = COMPRESSION_LEVEL) -> Path:
    """Compress ``path`` to ``path.gz`` and remove the original."""
    target = path.with_name(path.name + ".gz")
    with open(path, "rb") as src, gzip.open(target, "wb", compresslevel=level) as dst:
        shutil.copyfileobj(src, dst)
    path.unlink()
    return target


def gzip_is_valid(path: Path) -> bool:
    """Return True when the whole gzip stream decompresses cleanly."""
    try:
        with gzip.open(path, "rb") as f:
            while f.read(1 << 20):
                pass
    except (OSError, EOFError):
        return False
    return True


async def encrypt_file(
    path: Path,
    key: str | None,
    command_runner: CommandRunner | None = None,
) -> Path | None:
    """Symmetrically encrypt ``path`` with gpg, removing the plaintext.

    Returns the ``.gpg`` path, or None when encryption was skipped.
    """
    if not key:
        logger.warning("BACKUP_ENCRYPTION_KEY not set, skipping encryption")
        return None
    if resolve_binary("gpg") is None:
        logger.warning("GPG not available, skipping encryption")
        return None

    runner = command_runner or run_command
    target = path.with_name(path.name + ".gpg")
    logger.info("Encrypting backup: %s", path.name)
    await runner(
        [
            "gpg",
            "--batch",
            "--yes",
            "--pinentry-mode",
            "loopback",
            "--passphrase-fd",
            "0",
            "--cipher-algo",
            "AES256",
            "--compress-algo",
            "1",
            "--symmetric",
            "--output",
            str(target),
            str(path),
        ],
        timeout=600,
        stdin_data=key,
    )
    path.unlink(missing_ok=True)
    logger.info("Encrypted: %s", target.name)
    return target


def verify_min_size(path: Path, min_bytes: int) -> bool:
    """Return True when ``path`` exists and is larger than ``min_bytes``."""
    if not path.exists():
        logger.error("Backup file missing: %s", path)
        return False
    size = path.stat().st_size
    if size <= min_bytes:
        logger.error("Backup file too small: %s (%d bytes)", path.name, size)
        return False
    return True


def write_checksum_file(path: Path) -> Path:
    """Write ``<file>.sha256`` in ``sha256sum`` format."""
    checksum_path = path.with_name(path.name + ".sha256")
    checksum_path.write_text(f"{sha256_file(path)}  {path.name}\n", encoding="utf-8")
    return checksum_path


def read_checksum_file(path: Path) -> str | None:
    """Return the digest recorded next to ``path``, if any."""
    checksum_path = path.with_name(path.name + ".sha256")
    if not checksum_path.exists():
        return None
    content = checksum_path.read_text(encoding="utf-8").split()
    return content[0] if content else None


def cleanup_old_backups(
    directory: Path,
    patterns: Iterable[str],
    retention_days: int,
    now: float | None = None,
) -> list[Path]:
    """Delete files matching ``patterns`` whose mtime is past the retention window."""
    if not directory.exists():
        return []
    cutoff = (now if now is not None else time.time()) - retention_days * SECONDS_PER_DAY
    deleted: list[Path] = []
    for pattern in patterns:
        for candidate in directory.glob(pattern):
            if candidate.is_file() and candidate.stat().st_mtime < cutoff:
                candidate.unlink()
                deleted.append(candidate)
    if deleted:
        logger.info("Deleted %d backup files older than %d days", len(deleted), retention_days)
    else:
        logger.info("No old backups to clean up")
    return deleted


def latest_file(directory: Path, *patterns: str) -> Path | None:
    """Newest file (by mtime) matching any of ``patterns``."""
    if not directory.exists():
        return None
    matches = [p for pattern in patterns for p in directory.glob(pattern) if p.is_file()]
    if not matches:
        return None
    return max(matches, key=lambda p: p.stat().st_mtime)


async def encrypt_run_files(run: BackupRun, command_runner: CommandRunner | None = None) -> None:
    """Replace each produced file with its encrypted counterpart when enabled.

    Plaintext checksum sidecars are dropped and every ``.gpg`` output gets its own.
    """
    if not run.settings.encrypt:
        return
    encrypted: list[Path] = []
    stale = [p for p in run.files if p.suffix == ".sha256"]
    for path in run.files:
        if path.suffix == ".sha256":
            continue
        target = await encrypt_file(path, run.settings.encryption_key, command_runner)
        if target is None:
            return
        encrypted += [target, write_checksum_file(target)]
    for path in stale:
        path.unlink(missing_ok=True)
    run.files = encrypted
    run.encrypted = True


def write_backup_report(
    run: BackupRun,
    report_name: str,
    extra: dict[str, Any] | None = None,
) -> Path:
    """Write the JSON report describing a finished backup run."""
    report: dict[str, Any] = {
        "backup_id": run.backup_id,
        "timestamp": utc_now_iso(),
        "environment": run.settings.environment,
        "backup_type": run.settings.backup_type,
    }
    report.update(extra or {})
    report.update(
        {
            "configuration": {
                "encrypted": run.encrypted,
                "verified": run.verified,
                "compression_level": COMPRESSION_LEVEL,
                "retention_days": run.settings.retention_days,
            },
            "files": [
                BackupFile.from_path(p).to_dict()
                for p in run.files
                if p.exists() and p.suffix != ".sha256"
            ],
            "status": "completed",
            "log_file": str(run.log_file),
        }
    )
    report_path = run.backup_dir / f"{report_name}-{run.timestamp}.json"
    write_json_report(report_path, report)
    logger.info("Backup report generated: %s", report_path)
    return report_path
