"""Persisted session events and the replay fold that rebuilds a session."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Annotated, Any, Iterable, Literal, Union

from pydantic import AliasChoices, BaseModel, Field, TypeAdapter, ValidationError

from pairagent.schemas import (
    ContentBlock,
    Message,
    SessionDetail,
    SessionInfo,
    SessionStatus,
    ToolResult,
)

logger = logging.getLogger(__name__)


class _Event(BaseModel):
    timestamp: float = Field(default_factory=time.time)


class SessionCreatedEvent(_Event):
    type: Literal["session_created"] = "session_created"
    session_id: str = Field(validation_alias=AliasChoices("session_id", "sessionId"))
    work_dir: str = Field(validation_alias=AliasChoices("work_dir", "workDir"))
    model: str


class UserMessageEvent(_Event):
    type: Literal["user_message"] = "user_message"
    content: str | list[ContentBlock]


class InstructorMessageEvent(_Event):
    type: Literal["instructor_message"] = "instructor_message"
    role: Literal["assistant"] = "assistant"
    content: str | list[ContentBlock]


class ToolResultsEvent(_Event):
    type: Literal["tool_results"] = "tool_results"
    results: list[ToolResult]


class RoundCompleteEvent(_Event):
    type: Literal["round_complete"] = "round_complete"
    round: int = Field(ge=0)


class StatusChangeEvent(_Event):
    type: Literal["status_change"] = "status_change"
    status: SessionStatus


class SessionEndedEvent(_Event):
    type: Literal["session_ended"] = "session_ended"
    reason: str = "user_requested"


class CliSessionLinkedEvent(_Event):
    type: Literal["cli_session_linked"] = "cli_session_linked"
    cli_session_id: str = Field(validation_alias=AliasChoices("cli_session_id", "cliSessionId"))


SessionEvent = Annotated[
    Union[
        SessionCreatedEvent,
        UserMessageEvent,
        InstructorMessageEvent,
        ToolResultsEvent,
        RoundCompleteEvent,
        StatusChangeEvent,
        SessionEndedEvent,
        CliSessionLinkedEvent,
    ],
    Field(discriminator="type"),
]

_event_adapter: TypeAdapter[Any] = TypeAdapter(SessionEvent)

KNOWN_EVENT_TYPES = frozenset({
    "session_created",
    "user_message",
    "instructor_message",
    "tool_results",
    "round_complete",
    "status_change",
    "session_ended",
    "cli_session_linked",
})


def parse_event(record: dict[str, Any]) -> SessionEvent | None:
    """Validate a raw record; unknown or malformed records yield None."""
    event_type = record.get("type")
    if event_type not in KNOWN_EVENT_TYPES:
        logger.debug(f"Ignoring unknown event type: {event_type}")
        return None
    try:
        return _event_adapter.validate_python(record)
    except ValidationError as e:
        logger.warning(f"Skipping malformed {event_type} event: {e}")
        return None


def dump_event(event: SessionEvent) -> dict[str, Any]:
    return event.model_dump(mode="json")


@dataclass
class Session:
    """In-memory session state, derived from the event log."""

    session_id: str
    work_dir: str
    model: str
    status: SessionStatus = SessionStatus.INITIALIZING
    created_at: float = field(default_factory=time.time)
    last_activity: float = field(default_factory=time.time)
    round_count: int = 0
    history: list[Message] = field(default_factory=list)
    cli_session_id: str | None = None

    def info(self) -> SessionInfo:
        return SessionInfo(
            session_id=self.session_id,
            work_dir=self.work_dir,
            status=self.status,
            created_at=self.created_at,
            last_activity=self.last_activity,
            round_count=self.round_count,
            model=self.model,
            cli_session_id=self.cli_session_id,
        )

    def detail(self) -> SessionDetail:
        return SessionDetail(**self.info().model_dump(), history=list(self.history))


def apply_event(session: Session | None, event: SessionEvent) -> Session | None:
    """Apply one event to a session.

    Mutates and returns ``session``; a session_created event starts a new
    one. Events arriving before session_created are ignored.
    """
    if isinstance(event, SessionCreatedEvent):
        return Session(
            session_id=event.session_id,
            work_dir=event.work_dir,
            model=event.model,
            status=SessionStatus.WAITING,
            created_at=event.timestamp,
            last_activity=event.timestamp,
            round_count=0,
        )

    if session is None:
        return None

    if isinstance(event, UserMessageEvent):
        session.history.append(Message(role="user", content=event.content, timestamp=event.timestamp))
        session.last_activity = event.timestamp
    elif isinstance(event, InstructorMessageEvent):
        session.history.append(Message(role="assistant", content=event.content, timestamp=event.timestamp))
        session.last_activity = event.timestamp
    elif isinstance(event, ToolResultsEvent):
        blocks = [result.to_block() for result in event.results]
        session.history.append(Message(role="user", content=blocks, timestamp=event.timestamp))
        session.last_activity = event.timestamp
    elif isinstance(event, RoundCompleteEvent):
        session.round_count = event.round
        session.last_activity = event.timestamp
    elif isinstance(event, StatusChangeEvent):
        session.status = event.status
        session.last_activity = event.timestamp
    elif isinstance(event, SessionEndedEvent):
        session.status = SessionStatus.ENDED
        session.last_activity = event.timestamp
    elif isinstance(event, CliSessionLinkedEvent):
        session.cli_session_id = event.cli_session_id

    return session


def replay(session_id: str, events: Iterable[SessionEvent | None]) -> Session | None:
    """Rebuild a session by folding its events in order.

    Args:
        session_id: Expected session id; a session_created for another id is ignored
        events: Parsed events (None entries are skipped)

    Returns:
        The reconstructed Session, or None if no session_created was seen
    """
    session: Session | None = None
    for event in events:
        if event is None:
            continue
        if isinstance(event, SessionCreatedEvent) and event.session_id != session_id:
            logger.warning(f"Ignoring session_created for {event.session_id} in log of {session_id}")
            continue
        session = apply_event(session, event)
    return session
