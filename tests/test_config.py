"""Tests for configuration resolution."""

from pathlib import Path

import yaml

from wellguard.config import (
    DEFAULT_API_BASE_URL,
    find_repo_root,
    get_api_base_url,
    get_ci_metadata,
    get_config,
    get_database_url,
    get_web_base_url,
    global_config_path,
    load_env_file,
)


class TestEnvLoader:
    """Test .env parsing and repository discovery."""

    def test_load_env_file(self, temp_dir: Path):
        env = temp_dir / ".env"
        env.write_text(
            "# comment\n"
            "DATABASE_URL='postgresql://u:p@db:5432/wellflow'\n"
            'export REDIS_URL="redis://cache:6379/1"\n'
            "EMPTY=\n"
            "not a pair\n"
        )
        values = load_env_file(env)
        assert values["DATABASE_URL"] == "postgresql://u:p@db:5432/wellflow"
        assert values["REDIS_URL"] == "redis://cache:6379/1"
        assert values["EMPTY"] == ""
        assert "not a pair" not in values

    def test_load_missing_env_file(self, temp_dir: Path):
        assert load_env_file(temp_dir / ".env") == {}

    def test_find_repo_root_from_subdir(self, repo_dir: Path):
        nested = repo_dir / "apps"
        assert find_repo_root(nested) == repo_dir.resolve()

    def test_workspace_package_does_not_shadow_root(self, repo_dir: Path):
        assert find_repo_root(repo_dir / "apps" / "web") == repo_dir.resolve()

    def test_single_package_without_workspace(self, temp_dir: Path):
        package = temp_dir / "lib"
        (package / "src").mkdir(parents=True)
        (package / "package.json").write_text("{}")
        assert find_repo_root(package / "src") == package.resolve()

    def test_find_repo_root_without_marker(self, temp_dir: Path):
        bare = temp_dir / "bare"
        bare.mkdir()
        assert find_repo_root(bare) == bare.resolve()


class TestGetConfig:
    """Test resolution order: env, .env, global config, default."""

    def test_environment_wins(self, repo_dir: Path, monkeypatch):
        (repo_dir / ".env").write_text("DATABASE_URL=postgresql://from-file/db\n")
        monkeypatch.setenv("DATABASE_URL", "postgresql://from-env/db")
        assert get_database_url(repo_dir) == "postgresql://from-env/db"

    def test_project_env_file(self, repo_dir: Path):
        (repo_dir / ".env").write_text("DATABASE_URL=postgresql://from-file/db\n")
        assert get_database_url(repo_dir / "apps") == "postgresql://from-file/db"

    def test_global_config(self, repo_dir: Path):
        path = global_config_path()
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(yaml.safe_dump({"SENTRY_DSN": "https://sentry.test/1"}))
        assert get_config("SENTRY_DSN", repo_dir) == "https://sentry.test/1"

    def test_default(self, repo_dir: Path):
        assert get_config("MISSING_KEY", repo_dir, default="fallback") == "fallback"
        assert get_api_base_url(repo_dir) == DEFAULT_API_BASE_URL


class TestTypedGetters:
    def test_web_base_url_from_port(self, repo_dir: Path, monkeypatch):
        monkeypatch.setenv("NEXT_PUBLIC_PORT", "4000")
        assert get_web_base_url(repo_dir) == "http://localhost:4000"

    def test_web_base_url_explicit(self, repo_dir: Path, monkeypatch):
        monkeypatch.setenv("LIGHTHOUSE_BASE_URL", "https://staging.wellflow.test/")
        assert get_web_base_url(repo_dir) == "https://staging.wellflow.test"

    def test_ci_metadata_defaults(self, repo_dir: Path):
        assert get_ci_metadata(repo_dir) == {
            "repository": "wellflow",
            "branch": "local",
            "commit": "local",
        }

    def test_ci_metadata_from_github(self, repo_dir: Path, monkeypatch):
        monkeypatch.setenv("GITHUB_REPOSITORY", "org/wellflow")
        monkeypatch.setenv("GITHUB_SHA", "abc123")
        meta = get_ci_metadata(repo_dir)
        assert meta["repository"] == "org/wellflow"
        assert meta["commit"] == "abc123"
