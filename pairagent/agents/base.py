"""Agent client contract, cancellation and error types."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Protocol, TypeVar

from pairagent.schemas import (
    AgentResponse,
    Message,
    StreamEvent,
    TextBlock,
    ToolResultBlock,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

StreamCallback = Callable[[StreamEvent], None]

INTERRUPTED_TOOL_RESULT = "Tool call was interrupted before it completed."


class RunAborted(Exception):
    """Raised when a run's cancellation token fires."""

    pass


class AgentError(Exception):
    """Raised when the model backend fails."""

    def __init__(
        self,
        message: str,
        error_type: str = "unknown",
        status: int | None = None,
        retry_after: float | None = None,
    ):
        super().__init__(message)
        self.error_type = error_type
        self.status = status
        self.retry_after = retry_after

    def details(self) -> dict[str, Any]:
        return {"type": self.error_type, "status": self.status, "retry_after": self.retry_after}


def classify_status(status: int) -> str:
    """Map an HTTP status code to an error type."""
    if status == 429:
        return "rate_limit"
    if status in (401, 403):
        return "authentication"
    if status == 400:
        return "invalid_request"
    if status >= 500:
        return "server_error"
    return "unknown"


class CancellationToken:
    """Cooperative cancellation flag for one run."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise RunAborted("Run was interrupted")

    async def wait(self) -> None:
        await self._event.wait()


async def run_cancellable(awaitable: Awaitable[T], signal: CancellationToken) -> T:
    """Await ``awaitable`` unless the token fires first.

    The in-flight task is cancelled when the token wins.

    Raises:
        RunAborted: If the token fired before completion
    """
    signal.raise_if_cancelled()
    task = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(signal.wait())
    try:
        done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        task.cancel()
        raise
    finally:
        waiter.cancel()

    if task in done:
        return task.result()

    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
    except Exception as e:
        logger.debug(f"Cancelled call finished with {e!r}")
    raise RunAborted("Run was interrupted")


class AgentClient(Protocol):
    """One conversational turn against a model backend."""

    supports_workers: bool
    executes_tools: bool

    async def converse(
        self,
        system: str,
        history: list[Message],
        tools: list[dict[str, Any]],
        signal: CancellationToken,
        on_stream: StreamCallback | None = None,
    ) -> AgentResponse: ...


def prepare_messages(history: list[Message]) -> list[dict[str, Any]]:
    """Convert history to API messages.

    Consecutive turns of the same role are merged, and tool_use blocks left
    without results (interrupted turns) get synthetic error results so the
    conversation stays valid.
    """
    messages: list[dict[str, Any]] = []

    for message in history:
        blocks = _as_blocks(message.content)
        if not blocks:
            continue

        previous = messages[-1] if messages else None
        if previous is not None and previous["role"] == "assistant":
            if message.role == "user":
                _answer_pending(previous, blocks)
            elif _pending_tool_uses(previous, []):
                messages.append({"role": "user", "content": []})
                _answer_pending(previous, messages[-1]["content"])

        if messages and messages[-1]["role"] == message.role:
            messages[-1]["content"].extend(blocks)
        else:
            messages.append({"role": message.role, "content": blocks})

    if messages and messages[-1]["role"] == "assistant" and _pending_tool_uses(messages[-1], []):
        messages.append({"role": "user", "content": []})
        _answer_pending(messages[-2], messages[-1]["content"])

    return messages


def _as_blocks(content: str | list[Any]) -> list[dict[str, Any]]:
    if isinstance(content, str):
        return [TextBlock(text=content).model_dump()] if content else []
    blocks = []
    for block in content:
        data = block.model_dump(exclude_none=True)
        # Thinking without a signature cannot be sent back
        if data.get("type") == "thinking" and not data.get("signature"):
            continue
        blocks.append(data)
    return blocks


def _pending_tool_uses(assistant: dict[str, Any], user_blocks: list[dict[str, Any]]) -> list[str]:
    answered = {block.get("tool_use_id") for block in user_blocks if block.get("type") == "tool_result"}
    return [
        block["id"]
        for block in assistant["content"]
        if block.get("type") == "tool_use" and block["id"] not in answered
    ]


def _answer_pending(assistant: dict[str, Any], user_blocks: list[dict[str, Any]]) -> None:
    """Insert interrupted results at the front of the next user turn."""
    missing = _pending_tool_uses(assistant, user_blocks)
    user_blocks[:0] = [
        ToolResultBlock(tool_use_id=tool_id, content=INTERRUPTED_TOOL_RESULT, is_error=True).model_dump()
        for tool_id in missing
    ]
