"""
Tests for the Flask server: views and JSON API.
"""
import json

import pytest

import retro_server
from pkg.retro.config import Config
from pkg.retro.drag import DragAndDrop


@pytest.fixture
def client(db_path, monkeypatch):
    monkeypatch.setitem(retro_server.app.config, "RETRO", Config(db_path=db_path))
    monkeypatch.setattr(retro_server, "_drag", DragAndDrop())
    retro_server.app.config["TESTING"] = True
    with retro_server.app.test_client() as c:
        yield c


def _create(client, **overrides):
    body = {"title": "Sprint 42", "facilitatorName": "Alice", "maxNotesPerPerson": 5}
    body.update(overrides)
    r = client.post("/api/sessions", json=body)
    assert r.status_code == 201
    return r.get_json()["id"]


def _add(client, sid, content="Good demo", category="went-well"):
    r = client.post(f"/api/sessions/{sid}/notes", json={"category": category, "content": content})
    assert r.status_code == 201
    return r.get_json()["note"]


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Sessions
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_health(client):
    r = client.get("/health")
    assert r.get_json()["status"] == "ok"


def test_create_and_fetch_session(client):
    sid = _create(client, allowVoting=False, timerDuration=15)
    session = client.get(f"/api/sessions/{sid}").get_json()["session"]
    assert session["facilitator"] == "Alice"
    assert session["participants"] == ["Alice"]
    assert session["settings"]["allowVoting"] is False
    assert session["timerDuration"] == 15

    user = client.get("/api/user").get_json()
    assert user == {"user": "Alice", "sessions": [sid]}


def test_create_validation(client):
    r = client.post("/api/sessions", json={"title": "", "facilitatorName": "Alice"})
    assert r.status_code == 400
    assert "required" in r.get_json()["error"]

    r = client.post("/api/sessions", json={"title": "T", "facilitatorName": "A",
                                           "maxNotesPerPerson": "lots"})
    assert r.status_code == 400


def test_missing_session_is_404(client):
    assert client.get("/api/sessions/NOPE00000").status_code == 404
    assert client.get("/api/sessions/NOPE00000/export").status_code == 404
    r = client.post("/api/sessions/NOPE00000/join", json={"participantName": "Bob"})
    assert r.status_code == 404


def test_join_and_list(client):
    sid = _create(client)
    r = client.post(f"/api/sessions/{sid.lower()}/join", json={"participantName": "Bob"})
    assert r.status_code == 200
    assert r.get_json()["session"]["participants"] == ["Alice", "Bob"]

    listed = client.get("/api/sessions?user=Bob").get_json()
    assert listed["count"] == 1


def test_delete_session(client):
    sid = _create(client)
    assert client.delete(f"/api/sessions/{sid}").status_code == 200
    assert client.get(f"/api/sessions/{sid}").status_code == 404


def test_non_object_body_is_400(client):
    sid = _create(client)
    r = client.post(f"/api/sessions/{sid}/join", json=["Bob"])
    assert r.status_code == 400
    assert "JSON object" in r.get_json()["error"]

    r = client.post("/api/user", json=["Alice"])
    assert r.status_code == 400


def test_non_string_fields_are_400(client):
    sid = _create(client)
    r = client.post(f"/api/sessions/{sid}/join", json={"participantName": 42})
    assert r.status_code == 400
    r = client.post("/api/user", json={"name": {"first": "Alice"}})
    assert r.status_code == 400
    r = client.post(f"/api/sessions/{sid}/notes", json={"category": "went-well", "content": 7})
    assert r.status_code == 400


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Notes
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_note_crud_and_board(client):
    sid = _create(client)
    first = _add(client, sid, "Good demo")
    second = _add(client, sid, "Flaky CI")

    client.post(f"/api/sessions/{sid}/notes/{second['id']}/vote")
    r = client.put(f"/api/sessions/{sid}/notes/{first['id']}", json={"content": "Great demo"})
    assert r.get_json()["note"]["content"] == "Great demo"

    board = client.get(f"/api/sessions/{sid}/board").get_json()
    went_well = board["columns"][0]
    assert went_well["id"] == "went-well"
    # voted note sorts first
    assert [n["content"] for n in went_well["notes"]] == ["Flaky CI", "Great demo"]
    assert went_well["totalVotes"] == 1
    assert went_well["notes"][0]["canEdit"] is True
    assert board["isFacilitator"] is True
    assert board["userNoteCount"] == 2
    assert board["stats"]["total_notes"] == 2
    assert board["timer"]["display"] == "60:00"

    r = client.delete(f"/api/sessions/{sid}/notes/{first['id']}")
    assert r.get_json() == {"deleted": first["id"]}


def test_blank_update_deletes_note(client):
    sid = _create(client)
    note = _add(client, sid)
    r = client.put(f"/api/sessions/{sid}/notes/{note['id']}", json={"content": "   "})
    assert r.get_json() == {"deleted": note["id"]}


def test_blank_note_rejected(client):
    sid = _create(client)
    r = client.post(f"/api/sessions/{sid}/notes", json={"category": "went-well", "content": " "})
    assert r.status_code == 400


def test_note_limit_is_409(client):
    sid = _create(client, maxNotesPerPerson=1)
    _add(client, sid)
    r = client.post(f"/api/sessions/{sid}/notes", json={"category": "went-well", "content": "x"})
    assert r.status_code == 409


def test_other_participants_cannot_edit(client):
    sid = _create(client)
    note = _add(client, sid)
    client.post(f"/api/sessions/{sid}/join", json={"participantName": "Bob"})
    r = client.put(f"/api/sessions/{sid}/notes/{note['id']}", json={"content": "mine now"})
    assert r.status_code == 403


def test_move_note(client):
    sid = _create(client)
    note = _add(client, sid)
    r = client.post(f"/api/sessions/{sid}/notes/{note['id']}/move",
                    json={"category": "action-items"})
    assert r.get_json()["note"]["category"] == "action-items"
    r = client.post(f"/api/sessions/{sid}/notes/{note['id']}/move", json={"category": "x"})
    assert r.status_code == 400


def test_requires_current_user(client):
    sid = _create(client)
    client.post("/leave")
    r = client.post(f"/api/sessions/{sid}/notes", json={"category": "went-well", "content": "x"})
    assert r.status_code == 403


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Drag and drop
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_drag_and_drop_moves_note(client):
    sid = _create(client)
    note = _add(client, sid)

    started = client.post(f"/api/sessions/{sid}/drag", json={"noteId": note["id"]}).get_json()
    assert started["phase"] == "dragging"
    assert started["noteId"] == note["id"]

    over = client.post(f"/api/sessions/{sid}/drag/over", json={"category": "action-items"})
    assert over.get_json()["dropZone"] == "action-items"

    r = client.post(f"/api/sessions/{sid}/drop",
                    json={"category": "action-items", "payload": started["payload"]})
    body = r.get_json()
    assert body["moved"] is True
    assert body["phase"] == "dropped"
    assert body["isDragging"] is False

    session = client.get(f"/api/sessions/{sid}").get_json()["session"]
    assert session["notes"][0]["category"] == "action-items"


def test_malformed_drop_is_discarded(client):
    sid = _create(client)
    note = _add(client, sid)
    r = client.post(f"/api/sessions/{sid}/drop",
                    json={"category": "action-items", "payload": "{oops"})
    assert r.status_code == 200
    assert r.get_json()["moved"] is False
    session = client.get(f"/api/sessions/{sid}").get_json()["session"]
    assert session["notes"][0]["id"] == note["id"]
    assert session["notes"][0]["category"] == "went-well"


def test_drag_end_cancels(client):
    sid = _create(client)
    note = _add(client, sid)
    client.post(f"/api/sessions/{sid}/drag", json={"noteId": note["id"]})
    body = client.post(f"/api/sessions/{sid}/drag/end").get_json()
    assert body["phase"] == "cancelled"
    assert body["noteId"] is None


def test_rejected_drop_still_ends_drag(client):
    sid = _create(client)
    note = _add(client, sid)
    started = client.post(f"/api/sessions/{sid}/drag", json={"noteId": note["id"]}).get_json()

    r = client.post(f"/api/sessions/{sid}/drop",
                    json={"category": "bogus", "payload": started["payload"]})
    assert r.status_code == 400
    assert not retro_server._drag.is_dragging
    assert retro_server._drag.drop_zone is None


def test_drop_without_user_still_ends_drag(client):
    sid = _create(client)
    note = _add(client, sid)
    started = client.post(f"/api/sessions/{sid}/drag", json={"noteId": note["id"]}).get_json()
    client.post("/leave")

    r = client.post(f"/api/sessions/{sid}/drop",
                    json={"category": "action-items", "payload": started["payload"]})
    assert r.status_code == 403
    assert not retro_server._drag.is_dragging


def test_drag_leave(client):
    sid = _create(client)
    note = _add(client, sid)
    client.post(f"/api/sessions/{sid}/drag", json={"noteId": note["id"]})
    client.post(f"/api/sessions/{sid}/drag/over", json={"category": "action-items"})

    bounds = [0, 0, 300, 600]
    inside = client.post(f"/api/sessions/{sid}/drag/leave",
                         json={"x": 150, "y": 300, "bounds": bounds}).get_json()
    assert inside["dropZone"] == "action-items"

    outside = client.post(f"/api/sessions/{sid}/drag/leave",
                          json={"x": 301, "y": 300, "bounds": bounds}).get_json()
    assert outside["dropZone"] is None
    assert outside["phase"] == "dragging"

    r = client.post(f"/api/sessions/{sid}/drag/leave", json={"x": 1, "y": 1})
    assert r.status_code == 400


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Facilitator controls & export
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_timer_and_end(client):
    sid = _create(client)
    assert client.post(f"/api/sessions/{sid}/timer").get_json()["running"] is True
    assert client.post(f"/api/sessions/{sid}/timer").get_json()["running"] is False

    client.post(f"/api/sessions/{sid}/join", json={"participantName": "Bob"})
    assert client.post(f"/api/sessions/{sid}/end").status_code == 403

    client.post("/api/user", json={"name": "Alice"})
    r = client.post(f"/api/sessions/{sid}/end")
    assert r.get_json()["session"]["isActive"] is False
    assert client.get(f"/api/sessions/{sid}/board").status_code == 409


def test_export_download(client):
    sid = _create(client)
    note = _add(client, sid)
    client.post(f"/api/sessions/{sid}/notes/{note['id']}/vote")

    r = client.get(f"/api/sessions/{sid}/export")
    assert r.mimetype == "application/json"
    assert "attachment" in r.headers["Content-Disposition"]
    assert "retrospective-Sprint 42-" in r.headers["Content-Disposition"]

    doc = json.loads(r.data)
    assert doc["session"]["id"] == sid
    assert doc["summary"]["notesByCategory"]["went-well"] == 1
    assert doc["summary"]["topVotedNotes"][0]["id"] == note["id"]


def test_export_filename_with_quotes(client):
    sid = _create(client, title='Q3 "final"')
    disposition = client.get(f"/api/sessions/{sid}/export").headers["Content-Disposition"]
    assert disposition.startswith("attachment;")
    assert '\\"final\\"' in disposition
    assert disposition.count('"') - disposition.count('\\"') == 2


def test_export_filename_non_ascii(client):
    sid = _create(client, title="für Team 🚀")
    r = client.get(f"/api/sessions/{sid}/export")
    disposition = r.headers["Content-Disposition"]
    disposition.encode("latin-1")
    assert "filename*=UTF-8''retrospective-f%C3%BCr%20Team%20%F0%9F%9A%80-" in disposition
    assert json.loads(r.data)["session"]["title"] == "für Team 🚀"


def test_columns_config(client):
    columns = client.get("/api/config/columns").get_json()["columns"]
    assert [c["title"] for c in columns] == ["Went Well", "Could be Better", "Action Items"]


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Views
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_home_page(client):
    r = client.get("/")
    assert r.status_code == 200
    assert b"Create Session" in r.data
    assert b"Join Session" in r.data


def test_create_form_redirects_to_board(client):
    r = client.post("/create", data={"title": "Sprint 7", "facilitator": "Alice",
                                     "allow_voting": "on", "max_notes": "5",
                                     "timer_minutes": "30"})
    assert r.status_code == 302
    assert "/board/" in r.headers["Location"]

    page = client.get(r.headers["Location"])
    assert page.status_code == 200
    assert b"Sprint 7" in page.data
    assert b"Went Well" in page.data


def test_create_form_error_redirects_home(client):
    r = client.post("/create", data={"title": "", "facilitator": ""})
    assert r.status_code == 302
    assert "error=" in r.headers["Location"]


def test_join_form_and_board_errors(client):
    r = client.post("/join", data={"session_id": "NOPE00000", "name": "Bob"})
    assert "error=" in r.headers["Location"]

    assert client.get("/board/NOPE00000").status_code == 404

    sid = _create(client)
    r = client.post("/join", data={"session_id": sid, "name": "Bob"})
    assert r.headers["Location"].endswith(f"/board/{sid}")

    client.post("/leave")
    page = client.get(f"/board/{sid}")
    assert page.status_code == 403
    assert b"Please join the session first" in page.data


def test_board_textarea_uses_configured_note_length(client):
    retro_server.get_config().max_note_length = 120
    sid = _create(client)
    page = client.get(f"/board/{sid}")
    assert b'maxlength="120"' in page.data


def test_ended_session_note_cannot_be_deleted(client):
    sid = _create(client)
    note = _add(client, sid)
    client.post(f"/api/sessions/{sid}/end")
    r = client.delete(f"/api/sessions/{sid}/notes/{note['id']}")
    assert r.status_code == 409
