"""Individual health-check functions for ``wellguard doctor``."""

from __future__ import annotations

import shutil
import sys
from dataclasses import dataclass
from pathlib import Path

from wellguard.config import get_alert_email, get_encryption_key, get_sentry_dsn
from wellguard.tools.registry import EXTERNAL_TOOLS, check_tool_availability

# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class CheckResult:
    """Outcome of a single diagnostic check."""

    name: str
    status: str  # "pass", "fail", "warn"
    message: str
    fix: str = ""


# ---------------------------------------------------------------------------
# Tool importance tiers
# ---------------------------------------------------------------------------

CORE_TOOLS: set[str] = {"pg_dump", "redis-cli", "gzip"}
RECOMMENDED_TOOLS: set[str] = {"pg_restore", "psql", "gpg", "docker", "npx", "pnpm"}
OPTIONAL_TOOLS: set[str] = {"checkov", "trivy", "mail"}

MIN_FREE_BYTES = 1024**3


# ---------------------------------------------------------------------------
# Checks
# ---------------------------------------------------------------------------


def check_python_version() -> CheckResult:
    """Verify Python >= 3.12."""
    v = sys.version_info
    ver = f"{v.major}.{v.minor}.{v.micro}"
    if (v.major, v.minor) >= (3, 12):
        return CheckResult("Python version", "pass", f"Python {ver}")
    return CheckResult(
        "Python version", "fail", f"Python {ver} (requires >= 3.12)", fix="Install Python 3.12+"
    )


def check_external_tools() -> list[CheckResult]:
    """Check external tool availability, grouped by importance tier."""
    status = check_tool_availability()
    results: list[CheckResult] = []

    for tier_name, tier_set, fail_level in [
        ("Core tools", CORE_TOOLS, "fail"),
        ("Recommended tools", RECOMMENDED_TOOLS, "warn"),
        ("Optional tools", OPTIONAL_TOOLS, "warn"),
    ]:
        known = [t for t in tier_set if t in EXTERNAL_TOOLS]
        installed = [t for t in known if status.get(t)]
        missing = [t for t in known if not status.get(t)]

        if not missing:
            label = ", ".join(sorted(installed))
            if len(installed) > 4:
                label = ", ".join(sorted(installed)[:3]) + f" (+{len(installed) - 3} more)"
            results.append(CheckResult(tier_name, "pass", f"{tier_name}: {label}"))
        else:
            fix = "\n".join(
                f"  Install: {EXTERNAL_TOOLS[t]['install']}" for t in sorted(missing)
            )
            results.append(
                CheckResult(
                    tier_name,
                    fail_level,
                    f"{tier_name} missing: {', '.join(sorted(missing))}",
                    fix=fix,
                )
            )
    return results


def check_encryption_key(project_dir: Path | None) -> CheckResult:
    if get_encryption_key(project_dir):
        return CheckResult("Encryption key", "pass", "Backup encryption key configured")
    return CheckResult(
        "Encryption key",
        "warn",
        "BACKUP_ENCRYPTION_KEY not set (backups will not be encrypted)",
        fix="export BACKUP_ENCRYPTION_KEY=... or add it to .env",
    )


def check_alerting(project_dir: Path | None) -> CheckResult:
    channels = []
    if get_sentry_dsn(project_dir):
        channels.append("Sentry")
    if get_alert_email(project_dir):
        channels.append("email")
    if channels:
        return CheckResult("Alerting", "pass", f"Alerting: {', '.join(channels)}")
    return CheckResult(
        "Alerting",
        "warn",
        "SENTRY_DSN not set (backup alerts are only written to disk)",
        fix="export SENTRY_DSN=... and/or ALERT_EMAIL=...",
    )


def check_disk_space(project_dir: Path | None) -> CheckResult:
    """At least 1 GB must be free where backups are written."""
    target = project_dir or Path.cwd()
    free = shutil.disk_usage(target).free
    free_gb = free / 1024**3
    if free >= MIN_FREE_BYTES:
        return CheckResult("Disk space", "pass", f"Disk space: {free_gb:.1f} GB free")
    return CheckResult(
        "Disk space",
        "fail",
        f"Only {free_gb:.2f} GB free in {target} (1 GB required)",
        fix="Free disk space or move backups to a larger volume",
    )
