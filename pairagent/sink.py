"""Message sinks: where orchestrator events go."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from threading import Lock
from typing import Protocol

from pairagent.schemas import ServerMessage

logger = logging.getLogger(__name__)

# Per-subscriber buffer; slow observers drop messages beyond this
SUBSCRIBER_QUEUE_SIZE = 1000


class MessageSink(Protocol):
    """Receives every message a run emits."""

    def emit(self, session_id: str, message: ServerMessage) -> None: ...


class NullSink:
    """Discards messages."""

    def emit(self, session_id: str, message: ServerMessage) -> None:
        pass


class CollectingSink:
    """Keeps emitted messages in memory, per session."""

    def __init__(self) -> None:
        self.messages: dict[str, list[ServerMessage]] = defaultdict(list)

    def emit(self, session_id: str, message: ServerMessage) -> None:
        self.messages[session_id].append(message)

    def for_session(self, session_id: str) -> list[ServerMessage]:
        return list(self.messages.get(session_id, []))

    def types(self, session_id: str) -> list[str]:
        return [message.type for message in self.messages.get(session_id, [])]


class SessionBroadcaster:
    """Fans messages out to the observers attached to a session.

    Observers that are not attached when a message is emitted never see it.
    """

    def __init__(self, queue_size: int = SUBSCRIBER_QUEUE_SIZE):
        self.queue_size = queue_size
        self._subscribers: dict[str, set[asyncio.Queue[ServerMessage]]] = defaultdict(set)
        self._lock = Lock()

    def subscribe(self, session_id: str) -> asyncio.Queue[ServerMessage]:
        queue: asyncio.Queue[ServerMessage] = asyncio.Queue(maxsize=self.queue_size)
        with self._lock:
            self._subscribers[session_id].add(queue)
        logger.debug(f"Observer attached to session {session_id}")
        return queue

    def unsubscribe(self, session_id: str, queue: asyncio.Queue[ServerMessage]) -> None:
        with self._lock:
            subscribers = self._subscribers.get(session_id)
            if subscribers is None:
                return
            subscribers.discard(queue)
            if not subscribers:
                del self._subscribers[session_id]
        logger.debug(f"Observer detached from session {session_id}")

    def subscriber_count(self, session_id: str) -> int:
        with self._lock:
            return len(self._subscribers.get(session_id, ()))

    def emit(self, session_id: str, message: ServerMessage) -> None:
        with self._lock:
            queues = list(self._subscribers.get(session_id, ()))
        for queue in queues:
            try:
                queue.put_nowait(message)
            except asyncio.QueueFull:
                logger.warning(f"Observer queue full for session {session_id}, dropping {message.type}")
