"""Environment variable and configuration file loading."""

from pathlib import Path
from typing import Any

import yaml

# workspace roots win over the package.json of a single workspace
ROOT_MARKERS = ("pnpm-workspace.yaml", ".git")
REPO_MARKERS = (*ROOT_MARKERS, "package.json")


def global_config_path() -> Path:
    return Path.home() / ".wellguard" / "config.yml"


def _nearest(origin: Path, markers: tuple[str, ...]) -> Path | None:
    current = origin
    while current != current.parent:
        if any((current / marker).exists() for marker in markers):
            return current
        current = current.parent
    return None


def find_repo_root(start: Path | None = None) -> Path:
    """Return the nearest workspace root, else the nearest package, else ``start``."""
    origin = (start or Path.cwd()).resolve()
    return _nearest(origin, ROOT_MARKERS) or _nearest(origin, REPO_MARKERS) or origin


def load_env_file(env_path: Path) -> dict[str, str]:
    """Load environment variables from .env file."""
    env_vars = {}
    if env_path.exists():
        with open(env_path) as f:
            for line in f:
                line = line.strip()
                if line.startswith("export "):
                    line = line[len("export ") :]
                if line and not line.startswith("#") and "=" in line:
                    key, value = line.split("=", 1)
                    # Remove quotes if present
                    value = value.strip().strip("\"'")
                    env_vars[key.strip()] = value
    return env_vars


def load_global_config() -> dict[str, Any]:
    """Load global configuration from ~/.wellguard/config.yml."""
    config_path = global_config_path()
    if config_path.exists():
        with open(config_path) as f:
            return yaml.safe_load(f) or {}
    return {}


def load_project_config(project_dir: Path | None = None) -> dict[str, str]:
    """Load project-specific configuration from the repository .env file."""
    root = find_repo_root(project_dir)
    return load_env_file(root / ".env")
