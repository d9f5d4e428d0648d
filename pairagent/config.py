"""Runtime configuration loaded from the environment and .env files."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Literal

from dotenv import load_dotenv
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "claude-sonnet-4-5-20250929"
DEFAULT_STORAGE_DIR = Path(".pairagent") / "sessions"


class Settings(BaseModel):
    """Process-wide settings. Read-only after startup."""

    host: str = "127.0.0.1"
    port: int = 3000
    auth_token: str | None = None

    # Model backend
    backend_type: Literal["api", "cli"] = "api"
    anthropic_api_key: str | None = None
    anthropic_base_url: str = "https://api.anthropic.com"
    model: str = DEFAULT_MODEL
    enable_thinking: bool = False
    thinking_budget: int = 4096
    max_tokens: int = 8192
    request_timeout: float = 300.0
    claude_path: str = "claude"

    # Sessions
    work_dir: Path = Field(default_factory=Path.cwd)
    session_storage_dir: Path = DEFAULT_STORAGE_DIR
    storage_backend: Literal["jsonl", "sqlite"] = "jsonl"
    max_rounds: int = Field(default=50, ge=1)
    max_worker_iterations: int = Field(default=20, ge=1)

    # Tools
    allowed_tools: list[str] = Field(default_factory=list)
    ask_user_tools: list[str] = Field(default_factory=list)
    denied_tools: list[str] = Field(default_factory=list)
    bash_timeout_seconds: int = Field(default=30, ge=1)
    bash_max_output_bytes: int = Field(default=10 * 1024, ge=1024)

    log_level: str = "INFO"


def _parse_list(value: str | None) -> list[str]:
    """Parse a comma-separated environment value."""
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def _parse_bool(value: str | None) -> bool:
    return (value or "").strip().lower() in ("1", "true", "yes", "on")


def load_settings(env_file: Path | str | None = None) -> Settings:
    """Build settings from the environment.

    Values from ``env_file`` (or ``.env`` / ``.env.local`` in the current
    directory) are loaded first; variables already set in the process win
    over ``.env`` but ``.env.local`` overrides both.

    Args:
        env_file: Optional explicit dotenv file

    Returns:
        Settings instance
    """
    if env_file:
        load_dotenv(env_file)
    else:
        load_dotenv(".env")
        if Path(".env.local").exists():
            load_dotenv(".env.local", override=True)

    env = os.environ
    values: dict[str, object] = {
        "allowed_tools": _parse_list(env.get("ALLOWED_TOOLS")),
        "ask_user_tools": _parse_list(env.get("ASK_USER_TOOLS")),
        "denied_tools": _parse_list(env.get("DENIED_TOOLS")),
        "enable_thinking": _parse_bool(env.get("ENABLE_THINKING")),
    }

    direct = {
        "HOST": "host",
        "PORT": "port",
        "AUTH_TOKEN": "auth_token",
        "BACKEND_TYPE": "backend_type",
        "ANTHROPIC_API_KEY": "anthropic_api_key",
        "ANTHROPIC_BASE_URL": "anthropic_base_url",
        "CLAUDE_MODEL": "model",
        "MAX_TOKENS": "max_tokens",
        "CLAUDE_PATH": "claude_path",
        "WORK_DIR": "work_dir",
        "SESSION_STORAGE_DIR": "session_storage_dir",
        "STORAGE_BACKEND": "storage_backend",
        "MAX_ROUNDS": "max_rounds",
        "MAX_WORKER_ITERATIONS": "max_worker_iterations",
        "BASH_TIMEOUT_SECONDS": "bash_timeout_seconds",
        "BASH_MAX_OUTPUT_BYTES": "bash_max_output_bytes",
        "LOG_LEVEL": "log_level",
    }
    for env_name, field_name in direct.items():
        value = env.get(env_name)
        if value:
            values[field_name] = value

    settings = Settings.model_validate(values)
    if settings.backend_type == "api" and not settings.anthropic_api_key:
        logger.warning("ANTHROPIC_API_KEY is not set; model calls will fail")
    return settings


# Global settings instance
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get or create the global settings instance."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging for entry points."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
