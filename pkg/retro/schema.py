"""
Retrospective board schema.

A session holds a list of sticky notes, each filed under one of three
fixed columns:
  Went Well | Could be Better | Action Items

Sessions are stored as JSON with camelCase keys so the layout matches the
browser-era storage format.
"""
from enum import Enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any

MAX_NOTE_LENGTH = 500
ANONYMOUS_AUTHOR = "Anonymous"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_dt(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 string (or pass through a datetime)."""
    if value is None or value == "":
        return None
    if not isinstance(value, datetime):
        value = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if isinstance(value, datetime) else value


class NoteCategory(Enum):
    """The three board columns."""
    WENT_WELL = "went-well"
    COULD_BE_BETTER = "could-be-better"
    ACTION_ITEMS = "action-items"

    @classmethod
    def from_str(cls, value: str) -> "NoteCategory":
        try:
            return cls(value)
        except ValueError:
            return cls.WENT_WELL

    @classmethod
    def is_valid(cls, value: str) -> bool:
        return value in {c.value for c in cls}


class BoardEventType(Enum):
    """Interactions broadcast to board subscribers."""
    NOTE_ADDED = "note-added"
    NOTE_UPDATED = "note-updated"
    NOTE_DELETED = "note-deleted"
    NOTE_MOVED = "note-moved"
    VOTE_ADDED = "vote-added"
    TIMER_STARTED = "timer-started"
    TIMER_STOPPED = "timer-stopped"
    SESSION_ENDED = "session-ended"


@dataclass(frozen=True)
class ColumnConfig:
    category: NoteCategory
    title: str
    description: str
    color: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.category.value,
            "title": self.title,
            "description": self.description,
            "color": self.color,
        }


COLUMN_CONFIGS: Dict[NoteCategory, ColumnConfig] = {
    NoteCategory.WENT_WELL: ColumnConfig(
        NoteCategory.WENT_WELL, "Went Well",
        "What went well in this sprint?", "green",
    ),
    NoteCategory.COULD_BE_BETTER: ColumnConfig(
        NoteCategory.COULD_BE_BETTER, "Could be Better",
        "What could we improve?", "orange",
    ),
    NoteCategory.ACTION_ITEMS: ColumnConfig(
        NoteCategory.ACTION_ITEMS, "Action Items",
        "What actions should we take?", "blue",
    ),
}

# Display order of the board columns
COLUMNS: List[NoteCategory] = list(COLUMN_CONFIGS)


@dataclass
class BoardEvent:
    """One board interaction, handed to subscribers."""
    type: BoardEventType
    session_id: str
    user: str = ""
    note_id: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "sessionId": self.session_id,
            "userId": self.user,
            "noteId": self.note_id,
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class StickyNote:
    """A single note on the board."""

    note_id: str
    content: str
    author: str
    category: NoteCategory = NoteCategory.WENT_WELL
    votes: int = 0
    color: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def __post_init__(self):
        if self.votes < 0:
            self.votes = 0

    @property
    def was_edited(self) -> bool:
        return self.updated_at != self.created_at

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "id": self.note_id,
            "content": self.content,
            "author": self.author,
            "category": self.category.value,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
            "votes": self.votes,
        }
        if self.color:
            data["color"] = self.color
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StickyNote":
        """Deserialize from dict. Raises KeyError/ValueError on malformed input."""
        created_at = _parse_dt(data.get("createdAt")) or utc_now()
        return cls(
            note_id=data["id"],
            content=data.get("content", ""),
            author=data.get("author", ""),
            category=NoteCategory.from_str(data.get("category", "")),
            votes=max(0, int(data.get("votes", 0) or 0)),
            color=data.get("color"),
            created_at=created_at,
            updated_at=_parse_dt(data.get("updatedAt")) or created_at,
        )


@dataclass
class SessionSettings:
    allow_voting: bool = True
    allow_anonymous: bool = False
    max_notes_per_person: int = 10
    show_author_names: bool = True

    @property
    def authors_visible(self) -> bool:
        return self.show_author_names and not self.allow_anonymous

    def to_dict(self) -> Dict[str, Any]:
        return {
            "allowVoting": self.allow_voting,
            "allowAnonymous": self.allow_anonymous,
            "maxNotesPerPerson": self.max_notes_per_person,
            "showAuthorNames": self.show_author_names,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "SessionSettings":
        data = data or {}
        return cls(
            allow_voting=bool(data.get("allowVoting", True)),
            allow_anonymous=bool(data.get("allowAnonymous", False)),
            max_notes_per_person=int(data.get("maxNotesPerPerson", 10)),
            show_author_names=bool(data.get("showAuthorNames", True)),
        )


@dataclass
class RetroSession:
    """One retrospective board instance."""

    session_id: str
    title: str
    facilitator: str
    participants: List[str] = field(default_factory=list)
    notes: List[StickyNote] = field(default_factory=list)
    is_active: bool = True
    timer_duration: Optional[int] = None   # minutes
    timer_started: Optional[datetime] = None
    settings: SessionSettings = field(default_factory=SessionSettings)
    created_at: datetime = field(default_factory=utc_now)

    def __post_init__(self):
        # Facilitator is always a participant
        if self.facilitator and self.facilitator not in self.participants:
            self.participants.insert(0, self.facilitator)

    def add_participant(self, name: str) -> bool:
        """Append a participant. Returns False if already present."""
        if name in self.participants:
            return False
        self.participants.append(name)
        return True

    def is_facilitator(self, user: Optional[str]) -> bool:
        return bool(user) and user == self.facilitator

    def get_note(self, note_id: str) -> Optional[StickyNote]:
        for note in self.notes:
            if note.note_id == note_id:
                return note
        return None

    def notes_in(self, category: NoteCategory) -> List[StickyNote]:
        return [n for n in self.notes if n.category == category]

    def notes_by(self, author: str) -> List[StickyNote]:
        return [n for n in self.notes if n.author == author]

    @property
    def timer_running(self) -> bool:
        return self.timer_started is not None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "id": self.session_id,
            "title": self.title,
            "createdAt": _iso(self.created_at),
            "facilitator": self.facilitator,
            "participants": list(self.participants),
            "notes": [n.to_dict() for n in self.notes],
            "isActive": self.is_active,
            "settings": self.settings.to_dict(),
        }
        if self.timer_duration is not None:
            data["timerDuration"] = self.timer_duration
        if self.timer_started is not None:
            data["timerStarted"] = _iso(self.timer_started)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RetroSession":
        """Deserialize from dict. Raises KeyError/ValueError on malformed input."""
        participants = []
        for name in data.get("participants", []) or []:
            if name not in participants:
                participants.append(name)
        duration = data.get("timerDuration")
        return cls(
            session_id=data["id"],
            title=data.get("title", ""),
            facilitator=data.get("facilitator", ""),
            participants=participants,
            notes=[StickyNote.from_dict(n) for n in data.get("notes", []) or []],
            is_active=bool(data.get("isActive", True)),
            timer_duration=int(duration) if duration is not None else None,
            timer_started=_parse_dt(data.get("timerStarted")),
            settings=SessionSettings.from_dict(data.get("settings")),
            created_at=_parse_dt(data.get("createdAt")) or utc_now(),
        )
