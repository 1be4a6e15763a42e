"""
Drag-and-drop tracking for moving notes between columns.

Phases:
  idle → dragging → hovering → dropped | cancelled

A drag carries the note as a JSON transfer payload; the drop side only
trusts the payload. Malformed payloads are logged and discarded, and the
tracker always returns to a resting phase after a drop.
"""
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Tuple

from .schema import NoteCategory, StickyNote

logger = logging.getLogger(__name__)

# (left, top, right, bottom)
Bounds = Tuple[float, float, float, float]
MoveCallback = Callable[[StickyNote, NoteCategory], None]


class DragPhase(Enum):
    IDLE = "idle"
    DRAGGING = "dragging"
    HOVERING = "hovering"
    DROPPED = "dropped"
    CANCELLED = "cancelled"


_RESTING = (DragPhase.IDLE, DragPhase.DROPPED, DragPhase.CANCELLED)

_ALLOWED_NEXT = {
    DragPhase.IDLE: [DragPhase.DRAGGING],
    DragPhase.DRAGGING: [DragPhase.HOVERING, DragPhase.DROPPED, DragPhase.CANCELLED],
    DragPhase.HOVERING: [DragPhase.HOVERING, DragPhase.DRAGGING,
                         DragPhase.DROPPED, DragPhase.CANCELLED],
    DragPhase.DROPPED: [DragPhase.DRAGGING],
    DragPhase.CANCELLED: [DragPhase.DRAGGING],
}


@dataclass
class DragState:
    phase: DragPhase = DragPhase.IDLE
    dragged_note: Optional[StickyNote] = None
    drop_zone: Optional[NoteCategory] = None

    @property
    def is_dragging(self) -> bool:
        return self.phase in (DragPhase.DRAGGING, DragPhase.HOVERING)


class DragAndDrop:
    """Tracks the note being dragged and the column under the pointer."""

    def __init__(self):
        self.state = DragState()

    def _transition(self, phase: DragPhase) -> bool:
        if phase not in _ALLOWED_NEXT[self.state.phase]:
            logger.debug(f"Ignoring drag transition {self.state.phase.value} → {phase.value}")
            return False
        self.state.phase = phase
        return True

    def _reset(self, phase: DragPhase) -> None:
        self.state = DragState(phase=phase)

    # ── Draggable side ───────────────────────────────────────────────────

    def start_drag(self, note: StickyNote) -> str:
        """Begin dragging a note. Returns the transfer payload."""
        if self.state.phase not in _RESTING:
            # A new drag supersedes one that never finished
            self._reset(DragPhase.CANCELLED)
        self._transition(DragPhase.DRAGGING)
        self.state.dragged_note = note
        self.state.drop_zone = None
        return json.dumps(note.to_dict())

    def end_drag(self) -> None:
        """Drag ended without a drop (released outside a column, Esc)."""
        if self.state.is_dragging:
            self._reset(DragPhase.CANCELLED)
        else:
            self.state.dragged_note = None
            self.state.drop_zone = None

    # ── Drop-zone side ───────────────────────────────────────────────────

    def drag_over(self, category: NoteCategory) -> None:
        if self._transition(DragPhase.HOVERING):
            self.state.drop_zone = category

    def drag_leave(self, x: float, y: float, bounds: Bounds) -> None:
        """Clear the drop zone only when the pointer has left the column bounds."""
        left, top, right, bottom = bounds
        if x < left or x > right or y < top or y > bottom:
            if self.state.phase == DragPhase.HOVERING:
                self._transition(DragPhase.DRAGGING)
            self.state.drop_zone = None

    def drop(self, category: NoteCategory, payload: str, on_moved: MoveCallback) -> bool:
        """
        Handle a drop on `category`.

        Calls on_moved(note, category) when the payload decodes to a note
        from a different column. Returns True if a move was requested.
        """
        try:
            note = parse_payload(payload)
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Discarding malformed drop payload: {e}")
            self._reset(DragPhase.DROPPED)
            return False

        try:
            if note.category == category:
                return False
            on_moved(note, category)
            return True
        finally:
            self._reset(DragPhase.DROPPED)

    # ── Queries ──────────────────────────────────────────────────────────

    @property
    def is_dragging(self) -> bool:
        return self.state.is_dragging

    @property
    def dragged_note(self) -> Optional[StickyNote]:
        return self.state.dragged_note

    @property
    def drop_zone(self) -> Optional[NoteCategory]:
        return self.state.drop_zone

    def is_drop_zone(self, category: NoteCategory) -> bool:
        return self.state.drop_zone == category


def parse_payload(payload: str) -> StickyNote:
    """Decode a transfer payload. Raises ValueError/KeyError/TypeError if malformed."""
    data = json.loads(payload)
    if not isinstance(data, dict):
        raise ValueError("payload is not an object")
    if not NoteCategory.is_valid(data.get("category")):
        raise ValueError(f"unknown category {data.get('category')!r}")
    return StickyNote.from_dict(data)
