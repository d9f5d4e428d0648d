"""Agent client that streams turns from the Anthropic Messages API over httpx."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from pairagent.agents.base import (
    AgentError,
    CancellationToken,
    StreamCallback,
    classify_status,
    prepare_messages,
    run_cancellable,
)
from pairagent.schemas import (
    AgentResponse,
    ContentBlock,
    Message,
    StreamEvent,
    TextBlock,
    ThinkingBlock,
    ToolUseBlock,
)

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "2023-06-01"
MESSAGES_ENDPOINT = "/v1/messages"

# Stream "error" event types mapped to AgentError types
STREAM_ERROR_TYPES = {
    "rate_limit_error": "rate_limit",
    "overloaded_error": "server_error",
    "api_error": "server_error",
    "invalid_request_error": "invalid_request",
    "authentication_error": "authentication",
    "permission_error": "authentication",
}


@dataclass
class _PartialBlock:
    type: str
    text: str = ""
    signature: str = ""
    tool_id: str = ""
    tool_name: str = ""
    input_json: str = ""
    tool_input: dict[str, Any] = field(default_factory=dict)


class _TurnAccumulator:
    """Builds an AgentResponse from server-sent events."""

    def __init__(self, on_stream: StreamCallback | None):
        self.on_stream = on_stream
        self.blocks: dict[int, _PartialBlock] = {}
        self.stop_reason: str | None = None

    def _notify(self, event: StreamEvent) -> None:
        if self.on_stream is not None:
            self.on_stream(event)

    def handle(self, data: dict[str, Any]) -> None:
        kind = data.get("type")

        if kind == "content_block_start":
            block = data.get("content_block", {})
            partial = _PartialBlock(type=block.get("type", "text"))
            if partial.type == "text":
                partial.text = block.get("text", "")
            elif partial.type == "thinking":
                partial.text = block.get("thinking", "")
                partial.signature = block.get("signature", "")
            elif partial.type == "tool_use":
                partial.tool_id = block.get("id", "")
                partial.tool_name = block.get("name", "")
                partial.tool_input = block.get("input") or {}
            self.blocks[data.get("index", len(self.blocks))] = partial

        elif kind == "content_block_delta":
            partial = self.blocks.get(data.get("index", -1))
            delta = data.get("delta", {})
            if partial is None:
                return
            delta_type = delta.get("type")
            if delta_type == "text_delta":
                partial.text += delta.get("text", "")
                self._notify(StreamEvent(type="text", content=delta.get("text", "")))
            elif delta_type == "thinking_delta":
                partial.text += delta.get("thinking", "")
                self._notify(StreamEvent(type="thinking", content=delta.get("thinking", "")))
            elif delta_type == "signature_delta":
                partial.signature += delta.get("signature", "")
            elif delta_type == "input_json_delta":
                partial.input_json += delta.get("partial_json", "")

        elif kind == "content_block_stop":
            partial = self.blocks.get(data.get("index", -1))
            if partial is not None and partial.type == "tool_use":
                if partial.input_json:
                    try:
                        partial.tool_input = json.loads(partial.input_json)
                    except json.JSONDecodeError as e:
                        raise AgentError(f"Malformed tool input from model: {e}", "invalid_response") from e
                self._notify(StreamEvent(type="tool_use", tool_use=self._tool_block(partial)))

        elif kind == "message_delta":
            stop_reason = data.get("delta", {}).get("stop_reason")
            if stop_reason:
                self.stop_reason = stop_reason

        elif kind == "error":
            error = data.get("error", {})
            error_type = STREAM_ERROR_TYPES.get(error.get("type", ""), "unknown")
            raise AgentError(error.get("message", "Stream error"), error_type)

    def _tool_block(self, partial: _PartialBlock) -> ToolUseBlock:
        return ToolUseBlock(id=partial.tool_id, name=partial.tool_name, input=partial.tool_input)

    def result(self) -> AgentResponse:
        content: list[ContentBlock] = []
        for index in sorted(self.blocks):
            partial = self.blocks[index]
            if partial.type == "text":
                if partial.text:
                    content.append(TextBlock(text=partial.text))
            elif partial.type == "thinking":
                content.append(ThinkingBlock(thinking=partial.text, signature=partial.signature or None))
            elif partial.type == "tool_use":
                content.append(self._tool_block(partial))
        return AgentResponse(content=content, stop_reason=self.stop_reason)


class ApiAgentClient:
    """Streams one model turn per converse() call."""

    supports_workers = True
    executes_tools = False

    def __init__(
        self,
        api_key: str | None,
        model: str,
        base_url: str = "https://api.anthropic.com",
        max_tokens: int = 8192,
        enable_thinking: bool = False,
        thinking_budget: int = 4096,
        timeout: float = 300.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the client.

        Args:
            api_key: API key sent as x-api-key
            model: Model id
            base_url: API base URL
            max_tokens: Output token limit per turn
            enable_thinking: Request extended thinking
            thinking_budget: Thinking token budget when enabled
            timeout: Request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.max_tokens = max_tokens
        self.enable_thinking = enable_thinking
        self.thinking_budget = thinking_budget
        self.timeout = timeout
        self.transport = transport

    def build_request(
        self,
        system: str,
        history: list[Message],
        tools: list[dict[str, Any]],
    ) -> dict[str, Any]:
        body: dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "system": system,
            "messages": prepare_messages(history),
            "stream": True,
        }
        if tools:
            body["tools"] = tools
        if self.enable_thinking:
            body["thinking"] = {"type": "enabled", "budget_tokens": self.thinking_budget}
        return body

    def _headers(self) -> dict[str, str]:
        return {
            "x-api-key": self.api_key or "",
            "anthropic-version": ANTHROPIC_VERSION,
            "content-type": "application/json",
        }

    async def converse(
        self,
        system: str,
        history: list[Message],
        tools: list[dict[str, Any]],
        signal: CancellationToken,
        on_stream: StreamCallback | None = None,
    ) -> AgentResponse:
        """Run one streamed turn.

        Raises:
            AgentError: On HTTP, connection or stream errors
            RunAborted: If the token fires while the call is in flight
        """
        body = self.build_request(system, history, tools)
        return await run_cancellable(self._stream(body, on_stream), signal)

    async def _stream(self, body: dict[str, Any], on_stream: StreamCallback | None) -> AgentResponse:
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self.transport,
            ) as client:
                async with client.stream(
                    "POST",
                    MESSAGES_ENDPOINT,
                    json=body,
                    headers=self._headers(),
                ) as response:
                    if response.status_code >= 400:
                        await response.aread()
                        raise self._status_error(response)
                    return await self._consume(response, on_stream)

        except httpx.ConnectError as e:
            logger.error(f"Failed to connect to model API: {e}")
            raise AgentError("Model API unavailable", "connection") from e

        except httpx.TimeoutException as e:
            logger.warning(f"Model API request timed out: {e}")
            raise AgentError("Model API request timed out", "timeout") from e

        except httpx.HTTPError as e:
            logger.error(f"Model API HTTP error: {e}")
            raise AgentError(f"Model API error: {e}", "unknown") from e

    def _status_error(self, response: httpx.Response) -> AgentError:
        status = response.status_code
        message = f"Model API returned {status}"
        try:
            error = response.json().get("error", {})
            if error.get("message"):
                message = error["message"]
        except ValueError:
            pass

        retry_after = None
        header = response.headers.get("retry-after")
        if header:
            try:
                retry_after = float(header)
            except ValueError:
                pass

        logger.error(f"Model API HTTP error {status}: {message}")
        return AgentError(message, classify_status(status), status=status, retry_after=retry_after)

    async def _consume(self, response: httpx.Response, on_stream: StreamCallback | None) -> AgentResponse:
        """Parse the SSE body into an AgentResponse."""
        accumulator = _TurnAccumulator(on_stream)
        data_lines: list[str] = []

        async for line in response.aiter_lines():
            if not line:
                if data_lines:
                    self._dispatch(accumulator, "\n".join(data_lines))
                    data_lines = []
                continue
            if line.startswith(":"):
                continue
            name, _, value = line.partition(":")
            if name == "data":
                data_lines.append(value[1:] if value.startswith(" ") else value)

        if data_lines:
            self._dispatch(accumulator, "\n".join(data_lines))

        return accumulator.result()

    def _dispatch(self, accumulator: _TurnAccumulator, payload: str) -> None:
        try:
            data = json.loads(payload)
        except json.JSONDecodeError:
            logger.warning(f"Ignoring malformed stream payload: {payload[:100]}")
            return
        accumulator.handle(data)
