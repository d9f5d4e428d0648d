"""Session state: event log, replay and the in-memory registry."""

from pairagent.session.events import Session, replay
from pairagent.session.registry import (
    SessionEndedError,
    SessionError,
    SessionLockedError,
    SessionNotFoundError,
    SessionRegistry,
)
from pairagent.session.store import JsonlEventStore, SqliteEventStore, create_store

__all__ = [
    "Session",
    "replay",
    "SessionRegistry",
    "SessionError",
    "SessionNotFoundError",
    "SessionEndedError",
    "SessionLockedError",
    "JsonlEventStore",
    "SqliteEventStore",
    "create_store",
]
