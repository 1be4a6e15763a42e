#!/usr/bin/env python3
"""
Retro Board Server
------------------
Serves the retrospective board views and a JSON API backed by the local
key/value store. The board is single-user: whoever uses this browser is
"the current user", exactly as with browser-local storage.

Usage:
    python retro_server.py
    python retro_server.py --port 8080 --db /tmp/retro.db

Views:
    GET  /                 → home: create / join forms
    POST /create           → create a session, redirect to its board
    POST /join             → join a session, redirect to its board
    GET  /board/<id>       → board view
    POST /leave            → forget the current user

API:
    GET  /api/sessions                          → { sessions }
    POST /api/sessions                          → create
    GET  /api/sessions/<id>                     → { session }
    DELETE /api/sessions/<id>
    POST /api/sessions/<id>/join                → { session, user }
    GET  /api/sessions/<id>/board               → columns, stats, timer
    POST /api/sessions/<id>/notes               → { note }
    PUT  /api/sessions/<id>/notes/<nid>         → { note } (blank content deletes)
    DELETE /api/sessions/<id>/notes/<nid>
    POST /api/sessions/<id>/notes/<nid>/vote    → { note }
    POST /api/sessions/<id>/notes/<nid>/move    → { note }
    POST /api/sessions/<id>/drag                → start dragging a note
    POST /api/sessions/<id>/drag/over           → hover a column
    POST /api/sessions/<id>/drag/leave          → pointer left a column
    POST /api/sessions/<id>/drag/end            → drag cancelled
    POST /api/sessions/<id>/drop                → drop a transfer payload on a column
    POST /api/sessions/<id>/end                 → facilitator ends the session
    POST /api/sessions/<id>/timer               → facilitator starts/stops the timer
    GET  /api/sessions/<id>/export              → JSON download
    GET/POST /api/user                          → current user
    GET  /api/config/columns                    → column titles and prompts
"""

import io
import logging
import os
import sys

from flask import (
    Flask, jsonify, redirect, render_template, request, send_file, url_for,
)

from pkg.retro.board import (
    BoardError,
    InvalidInput,
    NoteLimitReached,
    NoteNotFound,
    NotJoined,
    PermissionDenied,
    RetroBoard,
    SessionInactive,
    SessionNotFound,
    StorageFailure,
    can_edit,
    format_countdown,
    timer_remaining,
)
from pkg.retro.config import Config
from pkg.retro.drag import DragAndDrop
from pkg.retro.export import board_stats, column_view, export_filename, export_json
from pkg.retro.schema import COLUMN_CONFIGS, COLUMNS, NoteCategory
from pkg.retro.store import RetroStore

app = Flask(__name__)
app.config["RETRO"] = Config.load()

# One drag tracker: a single user drags one note at a time
_drag = DragAndDrop()

_STATUS = {
    SessionNotFound: 404,
    NoteNotFound: 404,
    SessionInactive: 409,
    NotJoined: 403,
    PermissionDenied: 403,
    NoteLimitReached: 409,
    InvalidInput: 400,
    StorageFailure: 500,
}


# ── Wiring ───────────────────────────────────────────────────────────────────

def get_config() -> Config:
    return app.config["RETRO"]


def get_board() -> RetroBoard:
    cfg = get_config()
    store = RetroStore(cfg.db_path)
    return RetroBoard(store, max_note_length=cfg.max_note_length)


def get_drag() -> DragAndDrop:
    return _drag


def current_user(board: RetroBoard) -> str:
    user = board.store.get_current_user()
    if not user:
        raise NotJoined("Please join the session first")
    return user


def _body() -> dict:
    data = request.get_json(force=True, silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise InvalidInput("Request body must be a JSON object")
    return data


def _text(data: dict, key: str) -> str:
    value = data.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise InvalidInput(f"{key} must be a string")
    return value


def _int(value, default):
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidInput(f"Expected a number, got {value!r}")


def _flag(value, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).lower() in ("1", "true", "on", "yes")


@app.errorhandler(BoardError)
def handle_board_error(e: BoardError):
    status = _STATUS.get(type(e), 400)
    if status >= 500:
        app.logger.error(f"{request.method} {request.path}: {e}")
    else:
        app.logger.info(f"{request.method} {request.path} rejected: {e}")
    return jsonify({"error": str(e)}), status


def board_payload(board: RetroBoard, session, user: str) -> dict:
    columns = []
    for category in COLUMNS:
        cfg = COLUMN_CONFIGS[category]
        notes = column_view(session, category)
        columns.append({
            **cfg.to_dict(),
            "notes": [
                {**n.to_dict(), "canEdit": can_edit(session, n, user)}
                for n in notes
            ],
            "noteCount": len(notes),
            "totalVotes": sum(n.votes for n in notes),
        })
    ends_at = board.timer_ends_at(session)
    return {
        "session": session.to_dict(),
        "user": user,
        "isFacilitator": session.is_facilitator(user),
        "userNoteCount": len(session.notes_by(user)),
        "columns": columns,
        "stats": board_stats(session),
        "timer": {
            "running": session.timer_running,
            "remaining": timer_remaining(session),
            "display": format_countdown(timer_remaining(session)),
            "endsAt": ends_at.isoformat() if ends_at else None,
        },
    }


# ── Views ────────────────────────────────────────────────────────────────────

@app.route("/")
def index():
    board = get_board()
    user = board.store.get_current_user()
    return render_template(
        "home.html",
        cfg=get_config(),
        user=user,
        sessions=board.list_sessions(user) if user else [],
        error=request.args.get("error"),
    )


@app.route("/create", methods=["POST"])
def view_create():
    cfg = get_config()
    form = request.form
    try:
        session = get_board().create_session(
            title=form.get("title", ""),
            facilitator_name=form.get("facilitator", ""),
            allow_voting=_flag(form.get("allow_voting"), False),
            allow_anonymous=_flag(form.get("allow_anonymous"), False),
            max_notes_per_person=_int(form.get("max_notes"), cfg.default_max_notes_per_person),
            timer_duration=_int(form.get("timer_minutes"), cfg.default_timer_minutes),
        )
    except BoardError as e:
        return redirect(url_for("index", error=str(e)))
    return redirect(url_for("view_board", session_id=session.session_id))


@app.route("/join", methods=["POST"])
def view_join():
    try:
        session = get_board().join_session(
            request.form.get("session_id", ""), request.form.get("name", "")
        )
    except BoardError as e:
        return redirect(url_for("index", error=str(e)))
    return redirect(url_for("view_board", session_id=session.session_id))


@app.route("/board/<session_id>")
def view_board(session_id):
    board = get_board()
    try:
        session, user = board.load_board(session_id)
    except BoardError as e:
        status = _STATUS.get(type(e), 400)
        return render_template("error.html", error=e, session_id=session_id), status
    return render_template(
        "board.html",
        cfg=get_config(),
        board=board_payload(board, session, user),
        session=session,
        user=user,
        columns=COLUMN_CONFIGS,
    )


@app.route("/leave", methods=["POST"])
def view_leave():
    get_board().leave()
    return redirect(url_for("index"))


# ── Sessions API ─────────────────────────────────────────────────────────────

@app.route("/api/sessions", methods=["GET"])
def api_sessions():
    board = get_board()
    user = request.args.get("user")
    sessions = board.list_sessions(user)
    return jsonify({"sessions": [s.to_dict() for s in sessions], "count": len(sessions)})


@app.route("/api/sessions", methods=["POST"])
def api_create_session():
    cfg = get_config()
    data = _body()
    session = get_board().create_session(
        title=_text(data, "title"),
        facilitator_name=_text(data, "facilitatorName"),
        allow_voting=_flag(data.get("allowVoting"), cfg.default_allow_voting),
        allow_anonymous=_flag(data.get("allowAnonymous"), cfg.default_allow_anonymous),
        max_notes_per_person=_int(data.get("maxNotesPerPerson"), cfg.default_max_notes_per_person),
        timer_duration=_int(data.get("timerDuration"), cfg.default_timer_minutes),
    )
    return jsonify({"session": session.to_dict(), "id": session.session_id}), 201


@app.route("/api/sessions/<session_id>", methods=["GET"])
def api_get_session(session_id):
    session = get_board().store.get_session(session_id)
    if session is None:
        raise SessionNotFound(session_id)
    return jsonify({"session": session.to_dict()})


@app.route("/api/sessions/<session_id>", methods=["DELETE"])
def api_delete_session(session_id):
    if not get_board().delete_session(session_id):
        raise StorageFailure(f"Failed to delete session {session_id}")
    return jsonify({"deleted": session_id})


@app.route("/api/sessions/<session_id>/join", methods=["POST"])
def api_join_session(session_id):
    data = _body()
    session = get_board().join_session(session_id, _text(data, "participantName"))
    return jsonify({"session": session.to_dict(), "user": _text(data, "participantName").strip()})


@app.route("/api/sessions/<session_id>/board", methods=["GET"])
def api_board(session_id):
    board = get_board()
    session, user = board.load_board(session_id)
    return jsonify(board_payload(board, session, user))


@app.route("/api/sessions/<session_id>/end", methods=["POST"])
def api_end_session(session_id):
    board = get_board()
    session = board.end_session(session_id, current_user(board))
    return jsonify({"session": session.to_dict()})


@app.route("/api/sessions/<session_id>/timer", methods=["POST"])
def api_toggle_timer(session_id):
    board = get_board()
    session = board.toggle_timer(session_id, current_user(board))
    remaining = timer_remaining(session)
    return jsonify({
        "running": session.timer_running,
        "remaining": remaining,
        "display": format_countdown(remaining),
    })


@app.route("/api/sessions/<session_id>/export", methods=["GET"])
def api_export(session_id):
    session = get_board().store.get_session(session_id)
    if session is None:
        raise SessionNotFound(session_id)
    return send_file(
        io.BytesIO(export_json(session).encode("utf-8")),
        mimetype="application/json",
        as_attachment=True,
        download_name=export_filename(session),
    )


# ── Notes API ────────────────────────────────────────────────────────────────

@app.route("/api/sessions/<session_id>/notes", methods=["POST"])
def api_add_note(session_id):
    board = get_board()
    data = _body()
    note = board.add_note(
        session_id, current_user(board), _text(data, "category"), _text(data, "content")
    )
    if note is None:
        raise InvalidInput("Note content is required")
    return jsonify({"note": note.to_dict()}), 201


@app.route("/api/sessions/<session_id>/notes/<note_id>", methods=["PUT"])
def api_update_note(session_id, note_id):
    board = get_board()
    note = board.update_note(session_id, current_user(board), note_id, _text(_body(), "content"))
    if note is None:
        return jsonify({"deleted": note_id})
    return jsonify({"note": note.to_dict()})


@app.route("/api/sessions/<session_id>/notes/<note_id>", methods=["DELETE"])
def api_delete_note(session_id, note_id):
    board = get_board()
    board.delete_note(session_id, current_user(board), note_id)
    return jsonify({"deleted": note_id})


@app.route("/api/sessions/<session_id>/notes/<note_id>/vote", methods=["POST"])
def api_vote_note(session_id, note_id):
    board = get_board()
    note = board.vote_note(session_id, note_id, current_user(board))
    return jsonify({"note": note.to_dict()})


@app.route("/api/sessions/<session_id>/notes/<note_id>/move", methods=["POST"])
def api_move_note(session_id, note_id):
    board = get_board()
    note = board.move_note(session_id, note_id, _text(_body(), "category"), current_user(board))
    return jsonify({"note": note.to_dict()})


# ── Drag and drop ────────────────────────────────────────────────────────────

def _drag_state() -> dict:
    drag = get_drag()
    return {
        "phase": drag.state.phase.value,
        "isDragging": drag.is_dragging,
        "noteId": drag.dragged_note.note_id if drag.dragged_note else None,
        "dropZone": drag.drop_zone.value if drag.drop_zone else None,
    }


@app.route("/api/sessions/<session_id>/drag", methods=["POST"])
def api_drag_start(session_id):
    board = get_board()
    session, _ = board.load_board(session_id)
    note = session.get_note(_text(_body(), "noteId"))
    if note is None:
        raise NoteNotFound(_text(_body(), "noteId"))
    payload = get_drag().start_drag(note)
    return jsonify({**_drag_state(), "payload": payload})


@app.route("/api/sessions/<session_id>/drag/over", methods=["POST"])
def api_drag_over(session_id):
    category = _text(_body(), "category")
    if not NoteCategory.is_valid(category):
        raise InvalidInput(f"Unknown category: {category}")
    get_drag().drag_over(NoteCategory(category))
    return jsonify(_drag_state())


@app.route("/api/sessions/<session_id>/drag/leave", methods=["POST"])
def api_drag_leave(session_id):
    data = _body()
    bounds = data.get("bounds")
    try:
        x, y = float(data["x"]), float(data["y"])
        left, top, right, bottom = (float(v) for v in bounds)
    except (KeyError, TypeError, ValueError):
        raise InvalidInput("x, y and bounds [left, top, right, bottom] are required")
    get_drag().drag_leave(x, y, (left, top, right, bottom))
    return jsonify(_drag_state())


@app.route("/api/sessions/<session_id>/drag/end", methods=["POST"])
def api_drag_end(session_id):
    get_drag().end_drag()
    return jsonify(_drag_state())


@app.route("/api/sessions/<session_id>/drop", methods=["POST"])
def api_drop(session_id):
    board = get_board()
    drag = get_drag()
    try:
        user = current_user(board)
        data = _body()
        category = _text(data, "category")
        if not NoteCategory.is_valid(category):
            raise InvalidInput(f"Unknown category: {category}")

        def on_moved(note, new_category):
            board.move_note(session_id, note.note_id, new_category, user)

        moved = drag.drop(NoteCategory(category), _text(data, "payload"), on_moved)
    finally:
        # A rejected drop still ends the drag
        if drag.is_dragging:
            drag.end_drag()
    return jsonify({"moved": moved, **_drag_state()})


# ── User & config ────────────────────────────────────────────────────────────

@app.route("/api/user", methods=["GET"])
def api_get_user():
    board = get_board()
    user = board.store.get_current_user()
    return jsonify({
        "user": user,
        "sessions": board.store.get_user_sessions(user) if user else [],
    })


@app.route("/api/user", methods=["POST"])
def api_set_user():
    name = _text(_body(), "name").strip()
    if not name:
        raise InvalidInput("name is required")
    if not get_board().store.set_current_user(name):
        raise StorageFailure("Failed to save current user")
    return jsonify({"user": name})


@app.route("/api/config/columns")
def api_columns():
    return jsonify({"columns": [COLUMN_CONFIGS[c].to_dict() for c in COLUMNS]})


@app.route("/health")
def health():
    return jsonify({"status": "ok", "db": get_config().db_path})


# ── Main ─────────────────────────────────────────────────────────────────────

if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Retro Board Server")
    parser.add_argument("--config", help="Path to config.yaml (overrides RETRO_CONFIG env var)")
    parser.add_argument("--host", help="Bind address (default from config: 127.0.0.1)")
    parser.add_argument("--port", type=int)
    parser.add_argument("--db", help="Path to retro.db (overrides RETRO_DB env var)")
    args = parser.parse_args()

    if args.db:
        os.environ["RETRO_DB"] = args.db
    cfg = Config.load(args.config)
    if args.host:
        cfg.host = args.host
    if args.port:
        cfg.port = args.port
    app.config["RETRO"] = cfg

    logging.basicConfig(
        level=getattr(logging, cfg.log_level.upper(), logging.INFO),
        format="%(asctime)s [retro] %(levelname)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    print(f"""
╔═══════════════════════════════════════╗
║  Retro Board Server                   ║
╠═══════════════════════════════════════╣
║  URL:  http://{cfg.host}:{cfg.port:<20}║
║  DB:   {cfg.db_path:<31}║
╚═══════════════════════════════════════╝
""")

    app.run(host=cfg.host, port=cfg.port, debug=False, threaded=True)
