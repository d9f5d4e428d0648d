"""Model backends behind a single converse() contract."""

from __future__ import annotations

from typing import TYPE_CHECKING

from pairagent.agents.api_client import ApiAgentClient
from pairagent.agents.base import (
    AgentClient,
    AgentError,
    CancellationToken,
    RunAborted,
)
from pairagent.agents.cli_client import CliAgentClient
from pairagent.config import Settings

if TYPE_CHECKING:
    from pairagent.session.events import Session


def create_client(settings: Settings, session: Session) -> AgentClient:
    """Build the configured backend for a session.

    Args:
        settings: Process settings
        session: Session the client will serve

    Returns:
        An AgentClient
    """
    if settings.backend_type == "cli":
        return CliAgentClient(
            work_dir=session.work_dir,
            model=session.model,
            claude_path=settings.claude_path,
            resume_token=session.cli_session_id,
        )
    return ApiAgentClient(
        api_key=settings.anthropic_api_key,
        model=session.model,
        base_url=settings.anthropic_base_url,
        max_tokens=settings.max_tokens,
        enable_thinking=settings.enable_thinking,
        thinking_budget=settings.thinking_budget,
        timeout=settings.request_timeout,
    )


__all__ = [
    "AgentClient",
    "AgentError",
    "ApiAgentClient",
    "CancellationToken",
    "CliAgentClient",
    "RunAborted",
    "create_client",
]
