"""External tool registry and availability checking."""

from __future__ import annotations

from wellguard.runtime import resolve_binary

# ---------------------------------------------------------------------------
# External tool registry (binary name + install instructions)
# ---------------------------------------------------------------------------

EXTERNAL_TOOLS: dict[str, dict[str, str]] = {
    "pg_dump": {"binary": "pg_dump", "install": "sudo apt install postgresql-client"},
    "pg_restore": {"binary": "pg_restore", "install": "sudo apt install postgresql-client"},
    "pg_isready": {"binary": "pg_isready", "install": "sudo apt install postgresql-client"},
    "psql": {"binary": "psql", "install": "sudo apt install postgresql-client"},
    "redis-cli": {"binary": "redis-cli", "install": "sudo apt install redis-tools"},
    "gzip": {"binary": "gzip", "install": "sudo apt install gzip"},
    "gpg": {"binary": "gpg", "install": "sudo apt install gnupg"},
    "docker": {"binary": "docker", "install": "https://docs.docker.com/engine/install/"},
    "npx": {"binary": "npx", "install": "install Node.js 20+ (ships npx)"},
    "pnpm": {"binary": "pnpm", "install": "npm install -g pnpm"},
    "checkov": {"binary": "checkov", "install": "pipx install checkov"},
    "trivy": {
        "binary": "trivy",
        "install": "sudo apt install trivy  # or: brew install trivy",
    },
    "mail": {"binary": "mail", "install": "sudo apt install mailutils"},
    "crontab": {"binary": "crontab", "install": "sudo apt install cron"},
}


def install_hint(name: str) -> str:
    """Return the install instructions for a tool, or an empty string."""
    info = EXTERNAL_TOOLS.get(name)
    return info["install"] if info else ""


def check_tool_availability() -> dict[str, bool]:
    """Return {tool_name: is_installed} for every known external tool."""
    return {
        name: resolve_binary(info["binary"]) is not None for name, info in EXTERNAL_TOOLS.items()
    }
