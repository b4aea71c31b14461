import logging
import re
from datetime import datetime, UTC

from fastapi.testclient import TestClient

import main
from main import app, configure_audit_log
from manager import EventStore

def test_ping(client):
    response = client.get("/ping")
    assert response.status_code == 200
    assert response.json() == {"status": "Healthy"}

def test_register_user(client):
    response = client.post("/register", json={"username": "alice", "password": "pass1234"})
    assert response.status_code == 200
    assert response.json()["status"] == "User registered successfully!"

def test_register_duplicate_username(client, test_db):
    client.post("/register", json={"username": "alice", "password": "pass1234"})
    original_hash = test_db.get_user_by_username("alice").password
    response = client.post("/register", json={"username": "alice", "password": "other1234"})
    assert response.status_code == 400
    assert response.json()["detail"] == "Username already taken"
    assert test_db.get_user_by_username("alice").password == original_hash

def test_register_validation(client):
    response = client.post("/register", json={"username": "al", "password": "pass1234"})
    assert response.status_code == 400
    assert response.json()["errors"]
    response = client.post("/register", json={"username": "alice", "password": "abc"})
    assert response.status_code == 400
    response = client.post("/register", json={"username": "alice", "password": "pass1234", "email": "nope"})
    assert response.status_code == 400

def test_register_duplicate_email(client):
    client.post("/register", json={"username": "alice", "password": "pass1234", "email": "a@example.com"})
    response = client.post("/register", json={"username": "bob", "password": "pass1234", "email": "a@example.com"})
    assert response.status_code == 400
    assert response.json()["detail"] == "Email already registered"

def test_login_success(client):
    client.post("/register", json={"username": "alice", "password": "pass1234"})
    response = client.post("/login", json={"username": "alice", "password": "pass1234"})
    assert response.status_code == 200
    assert response.json()["status"] == "Login successful!"
    assert response.json()["token"].count(".") == 2

def test_login_bad_credentials(client):
    client.post("/register", json={"username": "alice", "password": "pass1234"})
    response = client.post("/login", json={"username": "alice", "password": "wrong-pass"})
    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid username or password"
    response = client.post("/login", json={"username": "nobody", "password": "pass1234"})
    assert response.status_code == 401

def test_login_missing_field(client):
    response = client.post("/login", json={"username": "alice"})
    assert response.status_code == 400

def test_protected_with_token(client, auth_headers):
    response = client.get("/protected", headers=auth_headers)
    assert response.status_code == 200
    data = response.json()
    assert data["message"] == "This is a protected route"
    assert data["user"]["username"] == "alice"
    assert "exp" in data["user"]

def test_protected_without_token(client):
    response = client.get("/protected")
    assert response.status_code == 401
    assert response.json()["detail"] == "Missing bearer token"
    assert response.headers["WWW-Authenticate"] == "Bearer"

def test_protected_with_garbage_token(client):
    response = client.get("/protected", headers={"Authorization": "Bearer not-a-token"})
    assert response.status_code == 401
    assert response.json()["detail"] == "Malformed token"

def test_storage_failure_is_opaque(client, test_db):
    test_db.close()
    response = client.post("/register", json={"username": "alice", "password": "pass1234"})
    assert response.status_code == 500
    assert response.json() == {"detail": "Database error"}

def test_events_require_auth(client):
    assert client.get("/events").status_code == 401
    assert client.post("/events", json={"title": "x", "start": "2025-05-01T10:00:00", "end": "2025-05-01T11:00:00"}).status_code == 401

def test_create_and_get_event(client, auth_headers):
    response = client.post("/events", json={
        "title": "Project Meeting",
        "start": "2025-05-01T10:00:00",
        "end": "2025-05-01T11:00:00",
        "description": "Discuss project milestones"
    }, headers=auth_headers)
    assert response.status_code == 201
    created = response.json()["data"]
    assert created["id"] == 1

    response = client.get(f"/events/{created['id']}", headers=auth_headers)
    assert response.status_code == 200
    assert response.json()["data"] == created

def test_create_event_end_before_start(client, auth_headers, event_store):
    response = client.post("/events", json={
        "title": "Backwards",
        "start": "2025-05-01T11:00:00",
        "end": "2025-05-01T10:00:00"
    }, headers=auth_headers)
    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid event data"
    assert len(event_store) == 0

def test_update_and_delete_event(client, auth_headers):
    client.post("/events", json={
        "title": "Standup",
        "start": "2025-05-01T09:00:00",
        "end": "2025-05-01T09:15:00"
    }, headers=auth_headers)
    response = client.put("/events/1", json={"title": "Daily standup"}, headers=auth_headers)
    assert response.status_code == 200
    assert response.json()["data"]["title"] == "Daily standup"
    assert response.json()["data"]["start"] == "2025-05-01T09:00:00+00:00"

    response = client.put("/events/1", json={"end": "2025-05-01T08:00:00"}, headers=auth_headers)
    assert response.status_code == 400

    assert client.put("/events/99", json={"title": "x"}, headers=auth_headers).status_code == 404
    assert client.delete("/events/1", headers=auth_headers).status_code == 200
    assert client.delete("/events/1", headers=auth_headers).status_code == 404
    assert client.get("/events/1", headers=auth_headers).status_code == 404

def test_list_search_and_sort(client, auth_headers):
    for title, start in [("Review", "2025-05-03T10:00:00"), ("Lunch", "2025-05-01T12:00:00"), ("Code review", "2025-05-02T10:00:00")]:
        client.post("/events", json={"title": title, "start": start, "end": start[:-8] + "23:00:00"}, headers=auth_headers)

    response = client.get("/events", headers=auth_headers)
    assert [e["title"] for e in response.json()["data"]] == ["Review", "Lunch", "Code review"]

    response = client.get("/events", params={"q": "REVIEW"}, headers=auth_headers)
    assert [e["title"] for e in response.json()["data"]] == ["Review", "Code review"]

    response = client.get("/events", params={"sort": "start", "order": "desc"}, headers=auth_headers)
    assert [e["title"] for e in response.json()["data"]] == ["Review", "Code review", "Lunch"]

    response = client.get("/events", params={"q": "review", "sort": "start"}, headers=auth_headers)
    assert [e["title"] for e in response.json()["data"]] == ["Code review", "Review"]

def test_save_events(client, auth_headers, event_store):
    client.post("/events", json={
        "title": "Retro",
        "start": "2025-05-01T15:00:00",
        "end": "2025-05-01T16:00:00"
    }, headers=auth_headers)
    response = client.post("/events/save", headers=auth_headers)
    assert response.status_code == 200
    assert response.json() == {"status": "Events saved", "count": 1}

    reloaded = EventStore(event_store.file_path)
    reloaded.load_events_from_file()
    assert reloaded.list_events() == event_store.list_events()

def test_sort_events_with_mixed_timezones(client, auth_headers):
    client.post("/events", json={"title": "Local", "start": "2025-05-02T10:00:00", "end": "2025-05-02T11:00:00"}, headers=auth_headers)
    client.post("/events", json={"title": "Zulu", "start": "2025-05-01T10:00:00Z", "end": "2025-05-01T11:00:00Z"}, headers=auth_headers)
    response = client.get("/events", params={"sort": "start"}, headers=auth_headers)
    assert response.status_code == 200
    assert [e["title"] for e in response.json()["data"]] == ["Zulu", "Local"]
    assert response.json()["data"][1]["start"] == "2025-05-02T10:00:00+00:00"

def test_startup_loads_saved_events(tmp_path, monkeypatch, test_db):
    saved = EventStore(str(tmp_path / "events.json"))
    saved.add_event({"title": "Kickoff", "start": datetime(2025, 5, 1, 9, tzinfo=UTC), "end": datetime(2025, 5, 1, 10, tzinfo=UTC)})
    saved.save_events_to_file()
    log_path = tmp_path / "event.log"
    monkeypatch.setattr(main, "store", EventStore(saved.file_path))
    monkeypatch.setattr(main, "db", test_db)
    monkeypatch.setattr(main, "EVENT_LOG_FILE", str(log_path))

    with TestClient(app) as c:
        c.post("/register", json={"username": "alice", "password": "pass1234"})
        token = c.post("/login", json={"username": "alice", "password": "pass1234"}).json()["token"]
        headers = {"Authorization": f"Bearer {token}"}
        response = c.get("/events", headers=headers)
        assert [e["title"] for e in response.json()["data"]] == ["Kickoff"]
        response = c.post("/events", json={"title": "Demo", "start": "2025-05-02T09:00:00", "end": "2025-05-02T10:00:00"}, headers=headers)
        assert response.json()["data"]["id"] == 2

    assert "Action: add" in log_path.read_text()

def test_audit_log_file(tmp_path, event_store):
    log_path = tmp_path / "event.log"
    handler = configure_audit_log(str(log_path))
    try:
        event_store.add_event({"title": "Retro", "start": datetime(2025, 5, 1, 15, tzinfo=UTC), "end": datetime(2025, 5, 1, 16, tzinfo=UTC)})
        handler.flush()
    finally:
        logging.getLogger("event_audit").removeHandler(handler)
        handler.close()
    lines = log_path.read_text().splitlines()
    assert len(lines) == 1
    assert re.match(r"^\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2},\d{3} - Action: add, Event: \{", lines[0])
