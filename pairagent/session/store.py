"""Append-only event storage backends: JSONL files and SQLite."""

from __future__ import annotations

import json
import logging
import os
import re
import sqlite3
import threading
import time
from pathlib import Path
from typing import Protocol

from pairagent.session.events import SessionEvent, dump_event, parse_event

logger = logging.getLogger(__name__)

_SESSION_FILE = re.compile(r"^session-(?P<id>[A-Za-z0-9_-]+)\.jsonl$")


class EventStore(Protocol):
    """Durable, ordered, per-session event log."""

    def append(self, session_id: str, event: SessionEvent) -> None: ...

    def read_events(self, session_id: str) -> list[SessionEvent]: ...

    def exists(self, session_id: str) -> bool: ...

    def delete(self, session_id: str) -> None: ...

    def list_session_ids(self) -> list[str]: ...


class JsonlEventStore:
    """One JSON-lines file per session."""

    def __init__(self, storage_dir: Path | str):
        """Initialize the store.

        Args:
            storage_dir: Directory holding session-<id>.jsonl files
        """
        self.storage_dir = Path(storage_dir)
        self.storage_dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def _path(self, session_id: str) -> Path:
        return self.storage_dir / f"session-{session_id}.jsonl"

    def append(self, session_id: str, event: SessionEvent) -> None:
        """Append one event and fsync before returning."""
        line = json.dumps(dump_event(event), ensure_ascii=False)
        with self._lock:
            with open(self._path(session_id), "a", encoding="utf-8") as f:
                f.write(line + "\n")
                f.flush()
                os.fsync(f.fileno())

    def read_events(self, session_id: str) -> list[SessionEvent]:
        """Read all events; corrupt lines and unknown types are skipped."""
        path = self._path(session_id)
        if not path.exists():
            return []

        events: list[SessionEvent] = []
        with self._lock:
            lines = path.read_text(encoding="utf-8").splitlines()

        for line_number, line in enumerate(lines, 1):
            if not line.strip():
                continue
            try:
                record = json.loads(line)
            except json.JSONDecodeError as e:
                logger.warning(f"Skipping corrupt line {line_number} in {path.name}: {e}")
                continue
            if not isinstance(record, dict):
                logger.warning(f"Skipping non-object line {line_number} in {path.name}")
                continue
            event = parse_event(record)
            if event is not None:
                events.append(event)
        return events

    def exists(self, session_id: str) -> bool:
        return self._path(session_id).exists()

    def delete(self, session_id: str) -> None:
        with self._lock:
            path = self._path(session_id)
            if path.exists():
                path.unlink()
                logger.info(f"Deleted session log {path.name}")

    def list_session_ids(self) -> list[str]:
        ids = []
        for path in self.storage_dir.iterdir():
            match = _SESSION_FILE.match(path.name)
            if match:
                ids.append(match.group("id"))
        return sorted(ids)


class SqliteEventStore:
    """All sessions in one SQLite table, ordered by insertion sequence."""

    def __init__(self, db_path: Path | str):
        """Initialize the store.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path)
        self._lock = threading.Lock()

        # Ensure parent directory exists
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._init_db()

    def _init_db(self) -> None:
        """Initialize the database schema."""
        with self._lock:
            conn = self._get_connection()
            try:
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS events (
                        seq INTEGER PRIMARY KEY AUTOINCREMENT,
                        session_id TEXT NOT NULL,
                        type TEXT NOT NULL,
                        event_json TEXT NOT NULL,
                        created_at REAL NOT NULL
                    )
                """)
                conn.execute("""
                    CREATE INDEX IF NOT EXISTS idx_events_session
                    ON events (session_id, seq)
                """)
                conn.commit()
            finally:
                conn.close()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection."""
        conn = sqlite3.connect(str(self.db_path), timeout=10.0)
        conn.row_factory = sqlite3.Row
        return conn

    def append(self, session_id: str, event: SessionEvent) -> None:
        record = dump_event(event)
        with self._lock:
            conn = self._get_connection()
            try:
                conn.execute(
                    "INSERT INTO events (session_id, type, event_json, created_at) VALUES (?, ?, ?, ?)",
                    (session_id, record["type"], json.dumps(record), time.time()),
                )
                conn.commit()
            finally:
                conn.close()

    def read_events(self, session_id: str) -> list[SessionEvent]:
        with self._lock:
            conn = self._get_connection()
            try:
                rows = conn.execute(
                    "SELECT seq, event_json FROM events WHERE session_id = ? ORDER BY seq",
                    (session_id,),
                ).fetchall()
            finally:
                conn.close()

        events: list[SessionEvent] = []
        for row in rows:
            try:
                record = json.loads(row["event_json"])
            except json.JSONDecodeError as e:
                logger.warning(f"Skipping corrupt event {row['seq']} of {session_id}: {e}")
                continue
            event = parse_event(record)
            if event is not None:
                events.append(event)
        return events

    def exists(self, session_id: str) -> bool:
        with self._lock:
            conn = self._get_connection()
            try:
                row = conn.execute(
                    "SELECT 1 FROM events WHERE session_id = ? LIMIT 1",
                    (session_id,),
                ).fetchone()
            finally:
                conn.close()
        return row is not None

    def delete(self, session_id: str) -> None:
        with self._lock:
            conn = self._get_connection()
            try:
                conn.execute("DELETE FROM events WHERE session_id = ?", (session_id,))
                conn.commit()
            finally:
                conn.close()
        logger.info(f"Deleted events of session {session_id}")

    def list_session_ids(self) -> list[str]:
        with self._lock:
            conn = self._get_connection()
            try:
                rows = conn.execute("SELECT DISTINCT session_id FROM events ORDER BY session_id").fetchall()
            finally:
                conn.close()
        return [row["session_id"] for row in rows]


def create_store(backend: str, storage_dir: Path | str) -> EventStore:
    """Build the configured store backend.

    Args:
        backend: "jsonl" or "sqlite"
        storage_dir: Directory for session files or the database

    Returns:
        EventStore instance
    """
    if backend == "sqlite":
        return SqliteEventStore(Path(storage_dir) / "sessions.db")
    if backend == "jsonl":
        return JsonlEventStore(storage_dir)
    raise ValueError(f"Unknown storage backend: {backend}")
