import os

os.environ.setdefault("SECRET_KEY", "test-secret")
os.environ["DATABASE_PATH"] = ":memory:"
os.environ["EVENT_LOG_FILE"] = ""

import pytest
from fastapi.testclient import TestClient

from database import Database
from main import app, get_db, get_store
from manager import EventStore

@pytest.fixture
def test_db(tmp_path):
    database = Database(str(tmp_path / "test.db"))
    yield database
    database.close()

@pytest.fixture
def event_store(tmp_path):
    return EventStore(str(tmp_path / "events.json"))

@pytest.fixture
def client(test_db, event_store):
    app.dependency_overrides[get_db] = lambda: test_db
    app.dependency_overrides[get_store] = lambda: event_store
    yield TestClient(app)
    app.dependency_overrides.clear()

@pytest.fixture
def auth_headers(client):
    client.post("/register", json={"username": "alice", "password": "pass1234"})
    response = client.post("/login", json={"username": "alice", "password": "pass1234"})
    return {"Authorization": f"Bearer {response.json()['token']}"}
