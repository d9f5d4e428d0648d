"""Tests for settings loading."""

import pytest
from pathlib import Path
from pydantic import ValidationError

from pairagent.config import DEFAULT_MODEL, Settings, load_settings

ENV_VARS = [
    "HOST", "PORT", "AUTH_TOKEN", "BACKEND_TYPE", "ANTHROPIC_API_KEY", "CLAUDE_MODEL",
    "SESSION_STORAGE_DIR", "STORAGE_BACKEND", "MAX_ROUNDS", "ALLOWED_TOOLS", "DENIED_TOOLS",
    "ASK_USER_TOOLS", "ENABLE_THINKING", "BASH_TIMEOUT_SECONDS", "WORK_DIR",
]


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """Isolate from the developer's environment and .env files."""
    for name in ENV_VARS:
        # setenv first so values loaded from dotenv files are undone afterwards
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)
    monkeypatch.chdir(tmp_path)
    return monkeypatch


class TestLoadSettings:
    """Test environment and dotenv loading."""

    def test_defaults(self, clean_env):
        """Defaults apply without configuration."""
        settings = load_settings()
        assert settings.port == 3000
        assert settings.model == DEFAULT_MODEL
        assert settings.backend_type == "api"
        assert settings.storage_backend == "jsonl"
        assert settings.max_rounds == 50
        assert settings.allowed_tools == []

    def test_environment(self, clean_env):
        """Environment variables override defaults."""
        clean_env.setenv("PORT", "8080")
        clean_env.setenv("CLAUDE_MODEL", "claude-test")
        clean_env.setenv("STORAGE_BACKEND", "sqlite")
        clean_env.setenv("MAX_ROUNDS", "5")
        clean_env.setenv("DENIED_TOOLS", "bash_command, git_commit")
        clean_env.setenv("ENABLE_THINKING", "true")

        settings = load_settings()

        assert settings.port == 8080
        assert settings.model == "claude-test"
        assert settings.storage_backend == "sqlite"
        assert settings.max_rounds == 5
        assert settings.denied_tools == ["bash_command", "git_commit"]
        assert settings.enable_thinking is True

    def test_dotenv_file(self, clean_env, tmp_path):
        """Values are read from .env in the current directory."""
        (tmp_path / ".env").write_text("AUTH_TOKEN=from-dotenv\nBACKEND_TYPE=cli\n")

        settings = load_settings()

        assert settings.auth_token == "from-dotenv"
        assert settings.backend_type == "cli"

    def test_explicit_env_file(self, clean_env, tmp_path):
        """An explicit env file is honoured."""
        env_file = tmp_path / "custom.env"
        env_file.write_text("SESSION_STORAGE_DIR=/var/pairagent\n")

        settings = load_settings(env_file)

        assert settings.session_storage_dir == Path("/var/pairagent")

    def test_invalid_backend(self, clean_env):
        """Unknown backends fail validation."""
        clean_env.setenv("STORAGE_BACKEND", "redis")
        with pytest.raises(ValidationError):
            load_settings()

    def test_rounds_must_be_positive(self):
        """max_rounds must be at least one."""
        with pytest.raises(ValidationError):
            Settings(max_rounds=0)
