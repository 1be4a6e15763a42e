"""
Session export and board summaries.

The export document is the stored session plus an export timestamp and a
computed summary (note counts per column, top voted notes).
"""
import json
from datetime import datetime
from typing import Any, Dict, List, Optional

from .schema import COLUMNS, NoteCategory, RetroSession, StickyNote, utc_now

TOP_VOTED_LIMIT = 10


def count_by_category(notes: List[StickyNote]) -> Dict[str, int]:
    counts = {category.value: 0 for category in COLUMNS}
    for note in notes:
        counts[note.category.value] += 1
    return counts


def top_voted(notes: List[StickyNote], limit: int = TOP_VOTED_LIMIT) -> List[StickyNote]:
    """Notes with at least one vote, most voted first (ties keep board order)."""
    voted = [n for n in notes if n.votes > 0]
    voted.sort(key=lambda n: n.votes, reverse=True)
    return voted[:limit]


def summarize(session: RetroSession) -> Dict[str, Any]:
    return {
        "totalNotes": len(session.notes),
        "notesByCategory": count_by_category(session.notes),
        "topVotedNotes": [n.to_dict() for n in top_voted(session.notes)],
    }


def build_export(session: RetroSession, now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or utc_now()
    return {
        "session": session.to_dict(),
        "exportedAt": now.isoformat(),
        "summary": summarize(session),
    }


def export_json(session: RetroSession, now: Optional[datetime] = None) -> str:
    return json.dumps(build_export(session, now), indent=2)


def export_filename(session: RetroSession, now: Optional[datetime] = None) -> str:
    now = now or utc_now()
    return f"retrospective-{session.title}-{now.date().isoformat()}.json"


def sort_column_notes(notes: List[StickyNote], allow_voting: bool) -> List[StickyNote]:
    """Most voted first when voting is on, then oldest first."""
    if allow_voting:
        return sorted(notes, key=lambda n: (-n.votes, n.created_at))
    return sorted(notes, key=lambda n: n.created_at)


def board_stats(session: RetroSession) -> Dict[str, Any]:
    columns = {}
    for category in COLUMNS:
        notes = session.notes_in(category)
        columns[category.value] = {
            "notes": len(notes),
            "votes": sum(n.votes for n in notes),
        }
    return {
        "total_notes": len(session.notes),
        "total_votes": sum(n.votes for n in session.notes),
        "participants": len(session.participants),
        "columns": columns,
    }


def column_view(session: RetroSession, category: NoteCategory) -> List[StickyNote]:
    return sort_column_notes(session.notes_in(category), session.settings.allow_voting)
