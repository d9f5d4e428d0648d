"""Session registry: in-memory sessions backed by the event store."""

from __future__ import annotations

import logging
import os
import uuid
from threading import Lock

from pairagent.schemas import ContentBlock, SessionInfo, SessionStatus, ToolResult
from pairagent.session.events import (
    CliSessionLinkedEvent,
    InstructorMessageEvent,
    RoundCompleteEvent,
    Session,
    SessionCreatedEvent,
    SessionEndedEvent,
    SessionEvent,
    StatusChangeEvent,
    ToolResultsEvent,
    UserMessageEvent,
    apply_event,
    replay,
)
from pairagent.session.store import EventStore

logger = logging.getLogger(__name__)


class SessionError(Exception):
    """Base class for session precondition failures."""

    def __init__(self, session_id: str, message: str):
        super().__init__(message)
        self.session_id = session_id


class SessionNotFoundError(SessionError):
    """Raised when a session id is unknown in memory and storage."""

    def __init__(self, session_id: str):
        super().__init__(session_id, f"Session not found: {session_id}")


class SessionEndedError(SessionError):
    """Raised when an operation needs a live session."""

    def __init__(self, session_id: str):
        super().__init__(session_id, f"Session has ended: {session_id}")


class SessionLockedError(SessionError):
    """Raised when another run holds the session lock."""

    def __init__(self, session_id: str):
        super().__init__(session_id, f"Session is locked: {session_id}")


def generate_session_id() -> str:
    """Opaque session id with 48 bits of entropy."""
    return uuid.uuid4().hex[:12]


class SessionRegistry:
    """Single writer of session state.

    Every mutation is appended to the store first; the in-memory session
    is updated with the same fold step only after the append succeeded.
    """

    def __init__(self, store: EventStore, default_model: str):
        self.store = store
        self.default_model = default_model
        self._sessions: dict[str, Session] = {}
        self._locks: set[str] = set()
        self._lock = Lock()

    # --- Lifecycle ---

    def create(self, work_dir: str, model: str | None = None) -> Session:
        """Create and persist a new session.

        Args:
            work_dir: Working directory the session's tools operate in
            model: Model id (defaults to the configured model)

        Returns:
            The new Session with status initializing
        """
        session_id = generate_session_id()
        work_dir = os.path.abspath(os.path.expanduser(work_dir))
        model = model or self.default_model

        event = SessionCreatedEvent(session_id=session_id, work_dir=work_dir, model=model)
        self.store.append(session_id, event)

        session = Session(
            session_id=session_id,
            work_dir=work_dir,
            model=model,
            status=SessionStatus.INITIALIZING,
            created_at=event.timestamp,
            last_activity=event.timestamp,
        )
        with self._lock:
            self._sessions[session_id] = session

        logger.info(f"Created session {session_id} in {work_dir} ({model})")
        return session

    def get(self, session_id: str) -> Session | None:
        """Get a session from memory only."""
        with self._lock:
            return self._sessions.get(session_id)

    def load(self, session_id: str) -> Session | None:
        """Get a session from memory, else replay it from storage and cache it."""
        session = self.get(session_id)
        if session is not None:
            return session

        session = replay(session_id, self.store.read_events(session_id))
        if session is None or session.status == SessionStatus.ENDED:
            # Ended sessions are served from storage but never cached again
            return session

        with self._lock:
            # Another caller may have loaded it meanwhile
            session = self._sessions.setdefault(session_id, session)
        logger.info(f"Loaded session {session_id} from storage ({len(session.history)} messages)")
        return session

    def require(self, session_id: str) -> Session:
        session = self.load(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def exists(self, session_id: str) -> bool:
        return self.get(session_id) is not None or self.store.exists(session_id)

    def list_sessions(self) -> list[SessionInfo]:
        """All sessions in memory or storage, most recently active first."""
        with self._lock:
            infos = {sid: session.info() for sid, session in self._sessions.items()}

        for session_id in self.store.list_session_ids():
            if session_id in infos:
                continue
            session = replay(session_id, self.store.read_events(session_id))
            if session is not None:
                infos[session_id] = session.info()

        return sorted(infos.values(), key=lambda info: info.last_activity, reverse=True)

    def end(self, session_id: str, reason: str = "user_requested") -> None:
        """Mark a session ended and drop it from memory.

        A held run lock stays with its run, which releases it on exit.
        """
        self.append(session_id, SessionEndedEvent(reason=reason))
        with self._lock:
            self._sessions.pop(session_id, None)
        logger.info(f"Ended session {session_id}: {reason}")

    def delete(self, session_id: str) -> None:
        """Remove a session from memory and storage. Irreversible."""
        with self._lock:
            self._sessions.pop(session_id, None)
        self.store.delete(session_id)
        logger.info(f"Deleted session {session_id}")

    # --- Locking ---

    def acquire_lock(self, session_id: str) -> bool:
        """Take the run lock without blocking."""
        with self._lock:
            if session_id in self._locks:
                return False
            self._locks.add(session_id)
            return True

    def release_lock(self, session_id: str) -> None:
        with self._lock:
            self._locks.discard(session_id)

    def is_locked(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._locks

    # --- Mutations ---

    def append(self, session_id: str, event: SessionEvent) -> Session:
        """Persist an event, then apply it to the in-memory session.

        Raises:
            SessionNotFoundError: If the session is unknown
            SessionEndedError: If the session has ended
            OSError / sqlite3.Error: If the store could not persist the event
        """
        session = self.require(session_id)
        if session.status == SessionStatus.ENDED:
            raise SessionEndedError(session_id)
        self.store.append(session_id, event)
        apply_event(session, event)
        return session

    def add_user_message(self, session_id: str, content: str) -> Session:
        return self.append(session_id, UserMessageEvent(content=content))

    def add_instructor_message(self, session_id: str, content: list[ContentBlock]) -> Session:
        return self.append(session_id, InstructorMessageEvent(content=content))

    def add_tool_results(self, session_id: str, results: list[ToolResult]) -> Session:
        return self.append(session_id, ToolResultsEvent(results=results))

    def complete_round(self, session_id: str) -> int:
        """Increment the round counter; returns the new round number."""
        session = self.require(session_id)
        next_round = session.round_count + 1
        self.append(session_id, RoundCompleteEvent(round=next_round))
        return next_round

    def update_status(self, session_id: str, status: SessionStatus) -> Session:
        return self.append(session_id, StatusChangeEvent(status=status))

    def link_cli_session(self, session_id: str, cli_session_id: str) -> Session:
        return self.append(session_id, CliSessionLinkedEvent(cli_session_id=cli_session_id))

    def active_count(self) -> int:
        with self._lock:
            return len(self._sessions)

    def running_count(self) -> int:
        with self._lock:
            return len(self._locks)
