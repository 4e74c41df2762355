"""
Configuration management for wellguard.

Supports multiple configuration sources in order of priority:
1. Environment variables (highest priority)
2. Repository .env file
3. Global config file (~/.wellguard/config.yml)
4. Default values (lowest priority)
"""

from .env_loader import (
    find_repo_root,
    global_config_path,
    load_env_file,
    load_global_config,
    load_project_config,
)
from .getters import (
    DEFAULT_API_BASE_URL,
    get_alert_email,
    get_api_base_url,
    get_ci_metadata,
    get_config,
    get_database_url,
    get_encryption_key,
    get_redis_url,
    get_sentry_dsn,
    get_web_base_url,
)

__all__ = [
    # env_loader
    "find_repo_root",
    "global_config_path",
    "load_env_file",
    "load_global_config",
    "load_project_config",
    # getters
    "DEFAULT_API_BASE_URL",
    "get_alert_email",
    "get_api_base_url",
    "get_ci_metadata",
    "get_config",
    "get_database_url",
    "get_encryption_key",
    "get_redis_url",
    "get_sentry_dsn",
    "get_web_base_url",
]
