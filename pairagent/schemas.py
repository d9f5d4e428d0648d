"""Pydantic schemas for PairAgent sessions, tools and the message protocol."""

from __future__ import annotations

import time
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field


class ToolName(str, Enum):
    """Tools the assistant may call."""

    READ_FILE = "read_file"
    WRITE_FILE = "write_file"
    EDIT_FILE = "edit_file"
    GLOB = "glob"
    GREP = "grep"
    BASH_COMMAND = "bash_command"
    GIT_STATUS = "git_status"
    GIT_COMMIT = "git_commit"
    CALL_WORKER = "call_worker"
    TELL_WORKER = "tell_worker"


# Tools intercepted by the orchestrator instead of being executed.
COORDINATION_TOOLS = frozenset({ToolName.CALL_WORKER.value, ToolName.TELL_WORKER.value})


class PermissionLevel(str, Enum):
    """Permission levels for a tool."""

    ALWAYS_ALLOWED = "always_allowed"
    ASK_USER = "ask_user"
    DENIED = "denied"


class SessionStatus(str, Enum):
    """Session lifecycle status."""

    INITIALIZING = "initializing"
    ACTIVE = "active"
    THINKING = "thinking"
    EXECUTING = "executing"
    WAITING = "waiting"
    PAUSED = "paused"
    ENDED = "ended"


# --- Content Blocks ---


class TextBlock(BaseModel):
    """Plain text produced by the assistant."""

    type: Literal["text"] = "text"
    text: str


class ThinkingBlock(BaseModel):
    """Extended-thinking block; the signature is required to replay it."""

    type: Literal["thinking"] = "thinking"
    thinking: str
    signature: str | None = None


class ToolUseBlock(BaseModel):
    """A tool invocation requested by the assistant."""

    type: Literal["tool_use"] = "tool_use"
    id: str
    name: str
    input: dict[str, Any] = Field(default_factory=dict)


class ToolResultBlock(BaseModel):
    """The outcome of a tool invocation, sent back in a user turn."""

    type: Literal["tool_result"] = "tool_result"
    tool_use_id: str
    content: str
    is_error: bool = False


ContentBlock = Annotated[
    Union[TextBlock, ThinkingBlock, ToolUseBlock, ToolResultBlock],
    Field(discriminator="type"),
]


class Message(BaseModel):
    """One conversation turn."""

    role: Literal["user", "assistant"]
    content: str | list[ContentBlock]
    timestamp: float = Field(default_factory=time.time)

    @property
    def text(self) -> str:
        """Concatenated text of the turn."""
        return text_of(self.content)

    @property
    def tool_uses(self) -> list[ToolUseBlock]:
        if isinstance(self.content, str):
            return []
        return [block for block in self.content if isinstance(block, ToolUseBlock)]


def text_of(content: str | list[Any]) -> str:
    """Join the text blocks of a content value."""
    if isinstance(content, str):
        return content
    return "\n".join(block.text for block in content if isinstance(block, TextBlock) and block.text)


# --- Tool Calls ---


class ToolCall(BaseModel):
    """A tool invocation extracted from an assistant turn."""

    id: str
    name: str
    input: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_block(cls, block: ToolUseBlock) -> ToolCall:
        return cls(id=block.id, name=block.name, input=block.input)


class ToolResult(BaseModel):
    """Normalized outcome of a tool call."""

    tool_use_id: str
    content: str
    is_error: bool = False

    def to_block(self) -> ToolResultBlock:
        return ToolResultBlock(
            tool_use_id=self.tool_use_id,
            content=self.content,
            is_error=self.is_error,
        )


class ToolOutput(BaseModel):
    """Raw result of a built-in tool before normalization."""

    success: bool
    output: Any = None
    error: str | None = None


class BashResult(BaseModel):
    """Result from the bash runner."""

    stdout: str
    stderr: str
    exit_code: int
    command_executed: str
    timed_out: bool = False


# --- Agent Client ---


class AgentResponse(BaseModel):
    """A completed model turn."""

    content: list[ContentBlock] = Field(default_factory=list)
    stop_reason: str | None = None
    resume_token: str | None = None

    @property
    def text(self) -> str:
        return text_of(self.content)

    @property
    def tool_calls(self) -> list[ToolCall]:
        return [
            ToolCall.from_block(block)
            for block in self.content
            if isinstance(block, ToolUseBlock)
        ]


class StreamEvent(BaseModel):
    """Incremental output surfaced while a model turn is in flight."""

    type: Literal["thinking", "text", "tool_use"]
    content: str = ""
    tool_use: ToolUseBlock | None = None


# --- Sessions ---


class SessionInfo(BaseModel):
    """Summary of a session for listings."""

    session_id: str
    work_dir: str
    status: SessionStatus
    created_at: float
    last_activity: float
    round_count: int = Field(default=0, ge=0)
    model: str
    cli_session_id: str | None = None


class SessionDetail(SessionInfo):
    """Session summary plus the conversation history."""

    history: list[Message] = Field(default_factory=list)


# --- Sink Messages ---


class _SinkMessage(BaseModel):
    timestamp: float = Field(default_factory=time.time)


class StatusUpdateMessage(_SinkMessage):
    type: Literal["status_update"] = "status_update"
    session_id: str
    status: SessionStatus
    round: int
    model: str


class ThinkingMessage(_SinkMessage):
    type: Literal["thinking"] = "thinking"
    content: str


class InstructorMessage(_SinkMessage):
    type: Literal["instructor_message"] = "instructor_message"
    content: str


class WorkerMessage(_SinkMessage):
    type: Literal["worker_message"] = "worker_message"
    content: str


class ToolUseMessage(_SinkMessage):
    type: Literal["tool_use"] = "tool_use"
    tool: str
    input: dict[str, Any] = Field(default_factory=dict)


class ToolResultMessage(_SinkMessage):
    type: Literal["tool_result"] = "tool_result"
    tool: str
    output: str
    success: bool


class WaitingInputMessage(_SinkMessage):
    type: Literal["waiting_input"] = "waiting_input"
    prompt: str


class RoundCompleteMessage(_SinkMessage):
    type: Literal["round_complete"] = "round_complete"
    round: int


class DoneMessage(_SinkMessage):
    type: Literal["done"] = "done"


class SystemMessage(_SinkMessage):
    type: Literal["system_message"] = "system_message"
    content: str
    level: Literal["info", "warning", "error"] = "info"


class ErrorMessage(_SinkMessage):
    type: Literal["error"] = "error"
    message: str
    details: Any = None


ServerMessage = Annotated[
    Union[
        StatusUpdateMessage,
        ThinkingMessage,
        InstructorMessage,
        WorkerMessage,
        ToolUseMessage,
        ToolResultMessage,
        WaitingInputMessage,
        RoundCompleteMessage,
        DoneMessage,
        SystemMessage,
        ErrorMessage,
    ],
    Field(discriminator="type"),
]


# --- Broker Request/Response Schemas ---


class CreateSessionRequest(BaseModel):
    """Request to create a session."""

    work_dir: str | None = Field(default=None, description="Working directory (defaults to WORK_DIR)")
    model: str | None = None
    instruction: str | None = Field(default=None, description="Optional first message to run immediately")


class SendMessageRequest(BaseModel):
    """Request to send a user message and run the orchestrator."""

    content: str = Field(..., min_length=1)


class RunResponse(BaseModel):
    """Collected outcome of a synchronous run."""

    session_id: str
    outcome: str
    status: SessionStatus
    round_count: int
    response: str = ""
    tool_calls: list[dict[str, Any]] = Field(default_factory=list)
    messages: list[ServerMessage] = Field(default_factory=list)


class CreateSessionResponse(BaseModel):
    """Response for a newly created session."""

    session: SessionInfo
    run: RunResponse | None = None


class PermissionUpdateRequest(BaseModel):
    """Runtime permission change for one tool."""

    level: PermissionLevel


class ErrorResponse(BaseModel):
    """Error response for failed requests."""

    detail: str
    error_code: str | None = None


class HealthResponse(BaseModel):
    """Health check response."""

    broker: Literal["healthy", "unhealthy"] = "healthy"
    active_sessions: int = 0
    running_sessions: int = 0
    backend: str = "api"
