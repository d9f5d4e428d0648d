"""Wiring of registry, policy, orchestrator and sinks from settings."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from pairagent.agents import create_client
from pairagent.agents.base import AgentClient
from pairagent.config import Settings, get_settings
from pairagent.orchestrator import Orchestrator
from pairagent.policies import PermissionPolicy
from pairagent.session.events import Session
from pairagent.session.registry import SessionRegistry
from pairagent.session.store import create_store
from pairagent.sink import SessionBroadcaster
from pairagent.tools.executor import ConfirmCallback, ToolExecutor

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Process-wide collaborators shared by the broker and the CLI."""

    settings: Settings
    registry: SessionRegistry
    policy: PermissionPolicy
    broadcaster: SessionBroadcaster
    orchestrator: Orchestrator


def build_services(
    settings: Settings,
    client_factory=None,
    confirm: ConfirmCallback | None = None,
) -> Services:
    """Build the service graph.

    Args:
        settings: Process settings
        client_factory: Optional override of the model backend factory
        confirm: Optional confirmation hook for ask_user tools

    Returns:
        Services instance
    """
    store = create_store(settings.storage_backend, settings.session_storage_dir)
    registry = SessionRegistry(store, default_model=settings.model)
    policy = PermissionPolicy.from_lists(
        allowed=settings.allowed_tools,
        ask_user=settings.ask_user_tools,
        denied=settings.denied_tools,
    )
    broadcaster = SessionBroadcaster()

    def default_client_factory(session: Session) -> AgentClient:
        return create_client(settings, session)

    def executor_factory(session: Session) -> ToolExecutor:
        return ToolExecutor(
            work_dir=session.work_dir,
            policy=policy,
            bash_timeout_seconds=settings.bash_timeout_seconds,
            bash_max_output_bytes=settings.bash_max_output_bytes,
            confirm=confirm,
        )

    orchestrator = Orchestrator(
        registry=registry,
        client_factory=client_factory or default_client_factory,
        executor_factory=executor_factory,
        sink=broadcaster,
        max_rounds=settings.max_rounds,
        max_worker_iterations=settings.max_worker_iterations,
    )
    logger.info(
        f"Services ready (backend={settings.backend_type}, storage={settings.storage_backend} "
        f"at {settings.session_storage_dir})"
    )
    return Services(
        settings=settings,
        registry=registry,
        policy=policy,
        broadcaster=broadcaster,
        orchestrator=orchestrator,
    )


# Global services instance
_services: Services | None = None


def get_services() -> Services:
    """Get or create the global services instance."""
    global _services
    if _services is None:
        _services = build_services(get_settings())
    return _services


def set_services(services: Services | None) -> None:
    """Replace the global services instance (None resets it)."""
    global _services
    _services = services
