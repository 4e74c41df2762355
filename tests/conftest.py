"""Test configuration and fixtures for WellGuard."""

import json
import tempfile
from collections.abc import Generator
from pathlib import Path

import pytest

from wellguard.runtime import CommandResult

CONFIG_KEYS = (
    "DATABASE_URL",
    "REDIS_URL",
    "BACKUP_ENCRYPTION_KEY",
    "SENTRY_DSN",
    "ALERT_EMAIL",
    "API_BASE_URL",
    "LIGHTHOUSE_BASE_URL",
    "NEXT_PUBLIC_PORT",
    "GITHUB_REPOSITORY",
    "GITHUB_REF_NAME",
    "GITHUB_SHA",
    "DB_HOST",
    "DB_PORT",
    "DB_USER",
    "DB_PASSWORD",
    "DB_NAME",
)


class FakeRunner:
    """Async stand-in for ``run_command`` that answers by argv prefix."""

    def __init__(self, responses: dict | None = None):
        self.responses = responses or {}
        self.calls: list[list[str]] = []
        self.kwargs: list[dict] = []

    async def __call__(self, command, timeout=None, allowed_exit_codes=(0,), **kwargs):
        command = list(command)
        self.calls.append(command)
        self.kwargs.append({"timeout": timeout, "allowed_exit_codes": allowed_exit_codes, **kwargs})
        for prefix in sorted(self.responses, key=len, reverse=True):
            if tuple(command[: len(prefix)]) == tuple(prefix):
                outcome = self.responses[prefix]
                if callable(outcome) and not isinstance(outcome, CommandResult):
                    outcome = outcome(command, kwargs)
                if isinstance(outcome, Exception):
                    raise outcome
                if isinstance(outcome, str):
                    return CommandResult(command, 0, outcome, "")
                return outcome
        return CommandResult(command, 0, "", "")

    def called(self, *prefix: str) -> bool:
        return any(tuple(c[: len(prefix)]) == prefix for c in self.calls)


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch: pytest.MonkeyPatch, tmp_path_factory: pytest.TempPathFactory):
    """Keep the developer's environment and ~/.wellguard out of every test."""
    for key in CONFIG_KEYS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("HOME", str(tmp_path_factory.mktemp("home")))


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def repo_dir(temp_dir: Path) -> Path:
    """Create a minimal pnpm monorepo layout."""
    repo = temp_dir / "wellflow"
    repo.mkdir()
    (repo / "package.json").write_text(json.dumps({"name": "wellflow", "private": True}))
    (repo / "pnpm-workspace.yaml").write_text("packages:\n  - apps/*\n  - packages/*\n")
    for workspace in ("apps/web", "apps/api", "packages/shared"):
        (repo / workspace).mkdir(parents=True)
        (repo / workspace / "package.json").write_text(
            json.dumps({"name": workspace.split("/")[-1]})
        )
    return repo


@pytest.fixture
def fake_runner():
    """Factory for ``FakeRunner`` instances."""
    return FakeRunner
