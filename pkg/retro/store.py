"""
Retro board storage backend (SQLite key/value table).

Three keys hold JSON documents:
  retrospective-sessions  list of session objects
  retrospective-user      the current user's name
  user-sessions           {user name: [session ids]}

Reads degrade to a default and writes report False on failure; every
failure is logged. There are no transactions across keys (last write wins).
"""
import json
import logging
import random
import sqlite3
import string
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from .schema import RetroSession, StickyNote, utc_now

logger = logging.getLogger(__name__)

SESSIONS_KEY = "retrospective-sessions"
CURRENT_USER_KEY = "retrospective-user"
USER_SESSIONS_KEY = "user-sessions"

_BASE36 = string.digits + string.ascii_lowercase


def _random_base36(length: int) -> str:
    return "".join(random.choice(_BASE36) for _ in range(length))


def generate_session_id() -> str:
    """Short shareable session token, e.g. 'K3F9ZQ2AB'."""
    return _random_base36(9).upper()


def generate_note_id() -> str:
    return f"note-{int(time.time() * 1000)}-{_random_base36(9)}"


def _connect(db_path: str) -> sqlite3.Connection:
    """Open a connection in WAL mode."""
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode = WAL")
    return conn


class KeyValueStore:
    """String key/value pairs in a single SQLite table."""

    def __init__(self, db_path: str = None):
        if db_path is None:
            db_path = str(Path.home() / ".local" / "share" / "retro" / "retro.db")
        self.db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    def _init_schema(self):
        with _connect(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS kv_store (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            conn.commit()

    def get(self, key: str) -> Optional[str]:
        with _connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT value FROM kv_store WHERE key = ? LIMIT 1", (key,)
            ).fetchone()
        return row["value"] if row else None

    def set(self, key: str, value: str) -> None:
        now = datetime.now(timezone.utc).isoformat()
        with _connect(self.db_path) as conn:
            conn.execute("""
                INSERT INTO kv_store (key, value, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET value=excluded.value, updated_at=excluded.updated_at
            """, (key, value, now))
            conn.commit()

    def remove(self, key: str) -> None:
        with _connect(self.db_path) as conn:
            conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
            conn.commit()

    def clear(self) -> None:
        with _connect(self.db_path) as conn:
            conn.execute("DELETE FROM kv_store")
            conn.commit()

    def get_json(self, key: str, default: Any = None) -> Any:
        """Read and parse a JSON value; any failure yields `default`."""
        try:
            raw = self.get(key)
            if raw is None:
                return default
            return json.loads(raw)
        except Exception as e:
            logger.error(f"Error reading key {key!r}: {e}")
            return default

    def set_json(self, key: str, value: Any) -> bool:
        try:
            self.set(key, json.dumps(value))
            return True
        except Exception as e:
            logger.error(f"Error setting key {key!r}: {e}")
            return False


class RetroStore:
    """Session and user storage on top of a KeyValueStore."""

    def __init__(self, db_path: str = None, kv: KeyValueStore = None):
        self.kv = kv if kv is not None else KeyValueStore(db_path)

    # ── Sessions ─────────────────────────────────────────────────────────

    def _load_raw_sessions(self) -> List[Dict[str, Any]]:
        """Stored session dicts. Raises if the stored value cannot be read."""
        raw = self.kv.get(SESSIONS_KEY)
        if raw is None:
            return []
        data = json.loads(raw)
        if not isinstance(data, list):
            raise ValueError(f"malformed {SESSIONS_KEY} value ({type(data).__name__})")
        return data

    def get_all_sessions(self) -> List[RetroSession]:
        """All readable sessions. Unreadable records are logged and skipped."""
        try:
            raw_sessions = self._load_raw_sessions()
        except Exception as e:
            logger.error(f"Error loading sessions: {e}")
            return []
        sessions = []
        for raw in raw_sessions:
            try:
                sessions.append(RetroSession.from_dict(raw))
            except Exception as e:
                logger.error(f"Skipping unreadable session record: {e}")
        return sessions

    def get_session(self, session_id: str) -> Optional[RetroSession]:
        for session in self.get_all_sessions():
            if session.session_id == session_id:
                return session
        return None

    def session_exists(self, session_id: str) -> bool:
        try:
            raw_sessions = self._load_raw_sessions()
        except Exception as e:
            logger.error(f"Error loading sessions: {e}")
            return False
        return any(isinstance(s, dict) and s.get("id") == session_id for s in raw_sessions)

    def new_session_id(self) -> str:
        """Generate a session id not already present in storage."""
        while True:
            session_id = generate_session_id()
            if not self.session_exists(session_id):
                return session_id

    def save_session(self, session: RetroSession) -> bool:
        """Insert or replace a session by id. Other stored records are kept as-is."""
        try:
            raw_sessions = self._load_raw_sessions()
            record = session.to_dict()
            for i, existing in enumerate(raw_sessions):
                if isinstance(existing, dict) and existing.get("id") == session.session_id:
                    raw_sessions[i] = record
                    break
            else:
                raw_sessions.append(record)
            self.kv.set(SESSIONS_KEY, json.dumps(raw_sessions))
            return True
        except Exception as e:
            logger.error(f"Error saving session {session.session_id}: {e}")
            return False

    def delete_session(self, session_id: str) -> bool:
        try:
            raw_sessions = [
                s for s in self._load_raw_sessions()
                if not (isinstance(s, dict) and s.get("id") == session_id)
            ]
            self.kv.set(SESSIONS_KEY, json.dumps(raw_sessions))
            return True
        except Exception as e:
            logger.error(f"Error deleting session {session_id}: {e}")
            return False

    def update_session_notes(self, session_id: str, notes: List[StickyNote]) -> bool:
        session = self.get_session(session_id)
        if not session:
            return False
        session.notes = list(notes)
        return self.save_session(session)

    def add_note_to_session(self, session_id: str, note: StickyNote) -> bool:
        session = self.get_session(session_id)
        if not session:
            return False
        session.notes.append(note)
        return self.save_session(session)

    def update_note_in_session(self, session_id: str, note_id: str, **updates) -> bool:
        """Apply attribute updates to one note and refresh its updated_at."""
        session = self.get_session(session_id)
        if not session:
            return False
        note = session.get_note(note_id)
        if not note:
            return False
        for name, value in updates.items():
            if not hasattr(note, name):
                raise AttributeError(f"StickyNote has no field {name!r}")
            setattr(note, name, value)
        note.updated_at = utc_now()
        return self.save_session(session)

    def remove_note_from_session(self, session_id: str, note_id: str) -> bool:
        session = self.get_session(session_id)
        if not session:
            return False
        session.notes = [n for n in session.notes if n.note_id != note_id]
        return self.save_session(session)

    # ── Users ────────────────────────────────────────────────────────────

    def get_current_user(self) -> Optional[str]:
        try:
            return self.kv.get(CURRENT_USER_KEY)
        except Exception as e:
            logger.error(f"Error reading current user: {e}")
            return None

    def set_current_user(self, user_name: str) -> bool:
        try:
            self.kv.set(CURRENT_USER_KEY, user_name)
            return True
        except Exception as e:
            logger.error(f"Error setting current user: {e}")
            return False

    def clear_current_user(self) -> None:
        try:
            self.kv.remove(CURRENT_USER_KEY)
        except Exception as e:
            logger.error(f"Error clearing current user: {e}")

    def get_user_sessions(self, user_name: str) -> List[str]:
        data = self.kv.get_json(USER_SESSIONS_KEY, {})
        if not isinstance(data, dict):
            return []
        return list(data.get(user_name, []))

    def add_user_session(self, user_name: str, session_id: str) -> None:
        """Record that a user has joined a session (idempotent)."""
        try:
            raw = self.kv.get(USER_SESSIONS_KEY)
            user_sessions = json.loads(raw) if raw else {}
            ids = user_sessions.setdefault(user_name, [])
            if session_id not in ids:
                ids.append(session_id)
                self.kv.set(USER_SESSIONS_KEY, json.dumps(user_sessions))
        except Exception as e:
            logger.error(f"Error adding user session: {e}")
