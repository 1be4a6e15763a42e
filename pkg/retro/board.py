"""
Board service: every user action on a retrospective session.

Each operation loads the session from the store, mutates it and writes it
straight back, then notifies subscribers of the resulting BoardEvent.
"""
import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Tuple

from .schema import (
    ANONYMOUS_AUTHOR,
    MAX_NOTE_LENGTH,
    BoardEvent,
    BoardEventType,
    NoteCategory,
    RetroSession,
    SessionSettings,
    StickyNote,
    utc_now,
)
from .store import RetroStore, generate_note_id

logger = logging.getLogger(__name__)

DEFAULT_TIMER_MINUTES = 60


class BoardError(Exception):
    """Base class for rejected board operations."""
    pass


class InvalidInput(BoardError):
    pass


class SessionNotFound(BoardError):
    def __init__(self, session_id: str):
        super().__init__(f"Session {session_id} not found")
        self.session_id = session_id


class SessionInactive(BoardError):
    def __init__(self, session_id: str):
        super().__init__(f"Session {session_id} is no longer active")
        self.session_id = session_id


class NotJoined(BoardError):
    """No current user: the session must be joined first."""
    pass


class PermissionDenied(BoardError):
    pass


class NoteLimitReached(BoardError):
    def __init__(self, limit: int):
        super().__init__(f"You can only add up to {limit} notes")
        self.limit = limit


class NoteNotFound(BoardError):
    def __init__(self, note_id: str):
        super().__init__(f"Note {note_id} not found")
        self.note_id = note_id


class StorageFailure(BoardError):
    pass


def can_edit(session: RetroSession, note: StickyNote, user: Optional[str]) -> bool:
    """Authors may edit their own notes; the facilitator may edit any note."""
    if not user:
        return False
    return note.author == user or session.is_facilitator(user)


def timer_remaining(session: RetroSession, now: Optional[datetime] = None) -> int:
    """Seconds left on the session countdown (full duration when stopped)."""
    total = (session.timer_duration or DEFAULT_TIMER_MINUTES) * 60
    if session.timer_started is None:
        return total
    now = now or utc_now()
    elapsed = int((now - session.timer_started).total_seconds())
    return max(0, total - elapsed)


def format_countdown(seconds: int) -> str:
    """MM:SS"""
    mins, secs = divmod(max(0, seconds), 60)
    return f"{mins:02d}:{secs:02d}"


class RetroBoard:
    """Session lifecycle and note operations backed by a RetroStore."""

    def __init__(self, store: RetroStore, max_note_length: int = MAX_NOTE_LENGTH):
        self.store = store
        self.max_note_length = max_note_length
        self.subscribers: Dict[BoardEventType, List[Callable]] = {}

    # ── Events ───────────────────────────────────────────────────────────

    def subscribe(self, event_type: BoardEventType, callback: Callable[[BoardEvent], None]) -> None:
        self.subscribers.setdefault(event_type, []).append(callback)

    def _emit(self, event: BoardEvent) -> None:
        for callback in self.subscribers.get(event.type, []):
            try:
                callback(event)
            except Exception as e:
                logger.error(f"Error in {event.type.value} callback: {e}")

    # ── Helpers ──────────────────────────────────────────────────────────

    def _get(self, session_id: str) -> RetroSession:
        session = self.store.get_session(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return session

    def _get_active(self, session_id: str) -> RetroSession:
        session = self._get(session_id)
        if not session.is_active:
            raise SessionInactive(session_id)
        return session

    def _save(self, session: RetroSession) -> None:
        if not self.store.save_session(session):
            raise StorageFailure(f"Failed to save session {session.session_id}")

    def _get_note(self, session: RetroSession, note_id: str) -> StickyNote:
        note = session.get_note(note_id)
        if note is None:
            raise NoteNotFound(note_id)
        return note

    def _clean_content(self, content: str) -> str:
        content = (content or "").strip()
        if len(content) > self.max_note_length:
            raise InvalidInput(f"Note exceeds {self.max_note_length} characters")
        return content

    @staticmethod
    def _category(value) -> NoteCategory:
        if isinstance(value, NoteCategory):
            return value
        try:
            return NoteCategory(value)
        except ValueError:
            raise InvalidInput(f"Unknown category: {value}")

    # ── Sessions ─────────────────────────────────────────────────────────

    def create_session(
        self,
        title: str,
        facilitator_name: str,
        allow_voting: bool = True,
        allow_anonymous: bool = False,
        max_notes_per_person: int = 10,
        timer_duration: Optional[int] = DEFAULT_TIMER_MINUTES,
    ) -> RetroSession:
        """Create a session and make its facilitator the current user."""
        title = (title or "").strip()
        facilitator = (facilitator_name or "").strip()
        if not title or not facilitator:
            raise InvalidInput("Please fill in all required fields")
        if max_notes_per_person < 1:
            raise InvalidInput("Max notes per person must be at least 1")
        if timer_duration is not None and timer_duration < 1:
            raise InvalidInput("Timer duration must be at least 1 minute")

        session = RetroSession(
            session_id=self.store.new_session_id(),
            title=title,
            facilitator=facilitator,
            participants=[facilitator],
            timer_duration=timer_duration,
            settings=SessionSettings(
                allow_voting=allow_voting,
                allow_anonymous=allow_anonymous,
                max_notes_per_person=max_notes_per_person,
                show_author_names=True,
            ),
        )
        self._save(session)
        self.store.set_current_user(facilitator)
        self.store.add_user_session(facilitator, session.session_id)
        logger.info(f"Created session {session.session_id} ({title!r}) for {facilitator}")
        return session

    def join_session(self, session_id: str, participant_name: str) -> RetroSession:
        session_id = (session_id or "").strip().upper()
        name = (participant_name or "").strip()
        if not session_id or not name:
            raise InvalidInput("Please fill in all required fields")

        session = self._get_active(session_id)
        if session.add_participant(name):
            self._save(session)
        self.store.set_current_user(name)
        self.store.add_user_session(name, session.session_id)
        logger.info(f"{name} joined session {session.session_id}")
        return session

    def load_board(self, session_id: str) -> Tuple[RetroSession, str]:
        """Session plus current user, as needed to render the board."""
        session = self._get_active(session_id)
        user = self.store.get_current_user()
        if not user:
            raise NotJoined("Please join the session first")
        return session, user

    def end_session(self, session_id: str, user: str) -> RetroSession:
        session = self._get(session_id)
        if not session.is_facilitator(user):
            raise PermissionDenied("Only the facilitator can end the session")
        session.is_active = False
        session.timer_started = None
        self._save(session)
        self._emit(BoardEvent(BoardEventType.SESSION_ENDED, session.session_id, user))
        return session

    def delete_session(self, session_id: str) -> bool:
        self._get(session_id)
        return self.store.delete_session(session_id)

    def leave(self) -> None:
        self.store.clear_current_user()

    def list_sessions(self, user: Optional[str] = None) -> List[RetroSession]:
        """All sessions, or only those a user has created or joined."""
        sessions = self.store.get_all_sessions()
        if user is None:
            return sessions
        ids = set(self.store.get_user_sessions(user))
        return [s for s in sessions if s.session_id in ids]

    # ── Timer ────────────────────────────────────────────────────────────

    def toggle_timer(self, session_id: str, user: str) -> RetroSession:
        session = self._get_active(session_id)
        if not session.is_facilitator(user):
            raise PermissionDenied("Only the facilitator can control the timer")
        if session.timer_running:
            session.timer_started = None
            event_type = BoardEventType.TIMER_STOPPED
        else:
            session.timer_started = utc_now()
            event_type = BoardEventType.TIMER_STARTED
        self._save(session)
        self._emit(BoardEvent(event_type, session.session_id, user,
                              data={"remaining": timer_remaining(session)}))
        return session

    # ── Notes ────────────────────────────────────────────────────────────

    def add_note(
        self, session_id: str, user: str, category, content: str
    ) -> Optional[StickyNote]:
        """Add a note to a column. Blank content is ignored (returns None)."""
        content = self._clean_content(content)
        if not content:
            return None
        category = self._category(category)
        session = self._get_active(session_id)

        limit = session.settings.max_notes_per_person
        if len(session.notes_by(user)) >= limit:
            raise NoteLimitReached(limit)

        now = utc_now()
        note = StickyNote(
            note_id=generate_note_id(),
            content=content,
            author=ANONYMOUS_AUTHOR if session.settings.allow_anonymous else user,
            category=category,
            created_at=now,
            updated_at=now,
        )
        session.notes.append(note)
        self._save(session)
        self._emit(BoardEvent(BoardEventType.NOTE_ADDED, session.session_id, user,
                              note_id=note.note_id, data={"category": category.value}))
        return note

    def update_note(
        self, session_id: str, user: str, note_id: str, content: str
    ) -> Optional[StickyNote]:
        """Replace a note's text. Blank content deletes the note (returns None)."""
        content = self._clean_content(content)
        session = self._get_active(session_id)
        note = self._get_note(session, note_id)
        if not can_edit(session, note, user):
            raise PermissionDenied("You can only edit your own notes")
        if not content:
            self._remove(session, note, user)
            return None

        note.content = content
        note.updated_at = utc_now()
        self._save(session)
        self._emit(BoardEvent(BoardEventType.NOTE_UPDATED, session.session_id, user,
                              note_id=note_id))
        return note

    def delete_note(self, session_id: str, user: str, note_id: str) -> None:
        session = self._get_active(session_id)
        note = self._get_note(session, note_id)
        if not can_edit(session, note, user):
            raise PermissionDenied("You can only delete your own notes")
        self._remove(session, note, user)

    def _remove(self, session: RetroSession, note: StickyNote, user: str) -> None:
        session.notes = [n for n in session.notes if n.note_id != note.note_id]
        self._save(session)
        self._emit(BoardEvent(BoardEventType.NOTE_DELETED, session.session_id, user,
                              note_id=note.note_id))

    def move_note(
        self, session_id: str, note_id: str, category, user: str = ""
    ) -> StickyNote:
        category = self._category(category)
        session = self._get_active(session_id)
        note = self._get_note(session, note_id)
        if note.category == category:
            return note
        previous = note.category
        note.category = category
        note.updated_at = utc_now()
        self._save(session)
        self._emit(BoardEvent(BoardEventType.NOTE_MOVED, session.session_id, user,
                              note_id=note_id,
                              data={"from": previous.value, "to": category.value}))
        return note

    def vote_note(self, session_id: str, note_id: str, user: str = "") -> StickyNote:
        """Add one vote. No-op when the session has voting disabled."""
        session = self._get_active(session_id)
        note = self._get_note(session, note_id)
        if not session.settings.allow_voting:
            return note
        note.votes += 1
        self._save(session)
        self._emit(BoardEvent(BoardEventType.VOTE_ADDED, session.session_id, user,
                              note_id=note_id, data={"votes": note.votes}))
        return note

    def timer_ends_at(self, session: RetroSession) -> Optional[datetime]:
        if session.timer_started is None:
            return None
        minutes = session.timer_duration or DEFAULT_TIMER_MINUTES
        return session.timer_started + timedelta(minutes=minutes)
