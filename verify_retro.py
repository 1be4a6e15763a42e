#!/usr/bin/env python3
"""
Quick verification that the retro board works end-to-end.
"""
from pkg.retro.board import RetroBoard
from pkg.retro.drag import DragAndDrop
from pkg.retro.export import export_filename, summarize
from pkg.retro.schema import NoteCategory
from pkg.retro.store import RetroStore

DB_PATH = "/tmp/retro_test.db"


def main():
    print("=" * 60)
    print("Retro Board Verification")
    print("=" * 60)

    print("\n[1/6] Creating SQLite store...")
    store = RetroStore(DB_PATH)
    board = RetroBoard(store)
    print("✅ Store created")

    print("\n[2/6] Creating session...")
    session = board.create_session("Sprint 42", "Alice", timer_duration=30)
    print(f"✅ Session created: {session.session_id}")
    print(f"   Facilitator: {session.facilitator}")

    print("\n[3/6] Joining as Bob and adding notes...")
    board.join_session(session.session_id.lower(), "Bob")
    deploy = board.add_note(session.session_id, "Bob", NoteCategory.WENT_WELL, "Smooth deploy")
    flaky = board.add_note(session.session_id, "Bob", NoteCategory.WENT_WELL, "Flaky CI")
    board.add_note(session.session_id, "Bob", NoteCategory.ACTION_ITEMS, "Pin test deps")
    print(f"✅ Participants: {store.get_session(session.session_id).participants}")

    print("\n[4/6] Voting...")
    for _ in range(3):
        board.vote_note(session.session_id, deploy.note_id, "Alice")
    board.vote_note(session.session_id, flaky.note_id, "Alice")
    print("✅ Votes recorded")

    print("\n[5/6] Dragging 'Flaky CI' to Could be Better...")
    drag = DragAndDrop()
    payload = drag.start_drag(flaky)
    drag.drag_over(NoteCategory.COULD_BE_BETTER)
    moved = drag.drop(
        NoteCategory.COULD_BE_BETTER, payload,
        lambda note, category: board.move_note(session.session_id, note.note_id, category, "Bob"),
    )
    print(f"✅ Moved: {moved}, phase now {drag.state.phase.value}")

    print("\n[6/6] Exporting...")
    final = store.get_session(session.session_id)
    summary = summarize(final)
    print(f"   File: {export_filename(final)}")
    print(f"   Notes by category: {summary['notesByCategory']}")
    print(f"   Top voted: {[n['content'] for n in summary['topVotedNotes']]}")

    print("\n" + "=" * 60)
    print("✅ ALL CHECKS PASSED")
    print("=" * 60)
    print(f"Test database: {DB_PATH}")


if __name__ == "__main__":
    main()
