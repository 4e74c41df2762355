"""Configuration getter functions."""

import os
from pathlib import Path
from typing import Any

from .env_loader import load_global_config, load_project_config

DEFAULT_API_BASE_URL = "http://localhost:3001"
DEFAULT_WEB_PORT = "3000"


def get_config(key: str, project_dir: Path | None = None, default: Any = None) -> Any:
    """
    Get configuration value with priority:
    1. Environment variable
    2. Project .env file
    3. Global config file
    4. Default value

    Args:
        key: Configuration key
        project_dir: Optional project directory
        default: Default value if not found

    Returns:
        Configuration value or default
    """
    # 1. Check environment variable
    env_value = os.environ.get(key)
    if env_value:
        return env_value

    # 2. Check project .env file
    project_config = load_project_config(project_dir)
    if key in project_config and project_config[key] != "":
        return project_config[key]

    # 3. Check global config
    global_config = load_global_config()
    if key in global_config:
        return global_config[key]

    # 4. Return default
    return default


def get_database_url(project_dir: Path | None = None) -> str | None:
    return get_config("DATABASE_URL", project_dir)


def get_redis_url(project_dir: Path | None = None) -> str | None:
    return get_config("REDIS_URL", project_dir)


def get_encryption_key(project_dir: Path | None = None) -> str | None:
    """Get the symmetric passphrase used to encrypt backups."""
    return get_config("BACKUP_ENCRYPTION_KEY", project_dir)


def get_sentry_dsn(project_dir: Path | None = None) -> str | None:
    return get_config("SENTRY_DSN", project_dir)


def get_alert_email(project_dir: Path | None = None) -> str | None:
    return get_config("ALERT_EMAIL", project_dir)


def get_api_base_url(project_dir: Path | None = None) -> str:
    """Get the API base URL (default: http://localhost:3001)."""
    return str(get_config("API_BASE_URL", project_dir, default=DEFAULT_API_BASE_URL)).rstrip("/")


def get_web_base_url(project_dir: Path | None = None) -> str:
    """
    Get the web application base URL.

    ``LIGHTHOUSE_BASE_URL`` wins; otherwise ``NEXT_PUBLIC_PORT`` on localhost.
    """
    explicit = get_config("LIGHTHOUSE_BASE_URL", project_dir)
    if explicit:
        return str(explicit).rstrip("/")
    port = get_config("NEXT_PUBLIC_PORT", project_dir, default=DEFAULT_WEB_PORT)
    return f"http://localhost:{port}"


def get_ci_metadata(project_dir: Path | None = None) -> dict[str, str]:
    """Repository, branch and commit from CI variables."""
    return {
        "repository": get_config("GITHUB_REPOSITORY", project_dir, default="wellflow"),
        "branch": get_config("GITHUB_REF_NAME", project_dir, default="local"),
        "commit": get_config("GITHUB_SHA", project_dir, default="local"),
    }
