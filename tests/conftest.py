"""Pytest configuration and fixtures for PairAgent tests."""

import pytest
from pathlib import Path
from typing import Callable

from pairagent.agents.base import CancellationToken
from pairagent.orchestrator import Orchestrator
from pairagent.policies import PermissionPolicy
from pairagent.schemas import AgentResponse, Message, TextBlock, ToolUseBlock
from pairagent.session.registry import SessionRegistry
from pairagent.session.store import JsonlEventStore
from pairagent.sink import CollectingSink
from pairagent.tools.executor import ToolExecutor


@pytest.fixture
def tmp_workspace(tmp_path: Path) -> Path:
    """Create a temporary workspace directory for tests."""
    workspace = tmp_path / "workspace"
    workspace.mkdir()
    return workspace


@pytest.fixture
def sample_python_files(tmp_workspace: Path) -> Path:
    """Create sample Python files in the workspace."""
    (tmp_workspace / "main.py").write_text(
        '''"""Main module."""

def main():
    """Entry point."""
    print("Hello, PairAgent!")

if __name__ == "__main__":
    main()
'''
    )

    utils_dir = tmp_workspace / "utils"
    utils_dir.mkdir()
    (utils_dir / "__init__.py").write_text('"""Utils package."""\n')
    (utils_dir / "helpers.py").write_text(
        '''"""Helper functions."""

def add(a: int, b: int) -> int:
    """Add two numbers."""
    return a + b

def multiply(a: int, b: int) -> int:
    """Multiply two numbers."""
    return a * b
'''
    )
    (tmp_workspace / "README.md").write_text("# Sample project\n")

    return tmp_workspace


@pytest.fixture
def storage_dir(tmp_path: Path) -> Path:
    """Directory for session event logs."""
    return tmp_path / "sessions"


# --- Fake model backend ---


def text_turn(text: str, stop_reason: str = "end_turn") -> AgentResponse:
    return AgentResponse(content=[TextBlock(text=text)], stop_reason=stop_reason)


def tool_turn(name: str, tool_input: dict, tool_id: str = "toolu_1", text: str = "") -> AgentResponse:
    content = []
    if text:
        content.append(TextBlock(text=text))
    content.append(ToolUseBlock(id=tool_id, name=name, input=tool_input))
    return AgentResponse(content=content, stop_reason="tool_use")


class ScriptedClient:
    """AgentClient that replays canned responses.

    Each entry is an AgentResponse, an exception to raise, or a callable
    taking the CancellationToken and returning one of those.
    """

    supports_workers = True
    executes_tools = False

    def __init__(self, responses: list, repeat_last: bool = False):
        self.responses = list(responses)
        self.repeat_last = repeat_last
        self.calls: list[dict] = []

    async def converse(
        self,
        system: str,
        history: list[Message],
        tools: list[dict],
        signal: CancellationToken,
        on_stream=None,
    ) -> AgentResponse:
        self.calls.append({"system": system, "history": list(history), "tools": tools})
        if len(self.responses) > 1 or not self.repeat_last:
            item = self.responses.pop(0)
        else:
            item = self.responses[0]
        if callable(item) and not isinstance(item, AgentResponse):
            item = item(signal)
        if isinstance(item, Exception):
            raise item
        return item

    @property
    def tool_names_offered(self) -> list[set[str]]:
        return [{tool["name"] for tool in call["tools"]} for call in self.calls]


@pytest.fixture
def registry(storage_dir: Path) -> SessionRegistry:
    """Registry over a JSONL store in a temp dir."""
    return SessionRegistry(JsonlEventStore(storage_dir), default_model="test-model")


@pytest.fixture
def sink() -> CollectingSink:
    return CollectingSink()


@pytest.fixture
def make_orchestrator(registry: SessionRegistry, sink: CollectingSink) -> Callable[..., Orchestrator]:
    """Build an orchestrator around a given fake client."""

    def factory(client, max_rounds: int = 50, max_worker_iterations: int = 20, policy=None) -> Orchestrator:
        return Orchestrator(
            registry=registry,
            client_factory=lambda session: client,
            executor_factory=lambda session: ToolExecutor(session.work_dir, policy=policy or PermissionPolicy()),
            sink=sink,
            max_rounds=max_rounds,
            max_worker_iterations=max_worker_iterations,
        )

    return factory
