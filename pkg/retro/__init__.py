# Retrospective board: sessions, sticky notes, votes and local persistence
#
# Components:
#   schema.py  - Data model (RetroSession, StickyNote, SessionSettings, NoteCategory)
#   store.py   - SQLite key/value persistence (sessions, current user, user sessions)
#   board.py   - Board service: session lifecycle, note CRUD, votes, timer, events
#   drag.py    - Drag-and-drop state tracking for moving notes between columns
#   export.py  - JSON export and board summaries
#   config.py  - YAML-backed runtime configuration
