import json
import logging
import os
import tempfile
import threading
from datetime import datetime, UTC
from models import Event
from errors import InvalidEvent
from utils import as_utc

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("event_audit")

MUTABLE_FIELDS = ("title", "start", "end", "description")

def normalize_times(data: dict) -> dict:
    """Return a copy of data with naive start/end timestamps read as UTC."""
    normalized = dict(data)
    for name in ("start", "end"):
        value = normalized.get(name)
        if isinstance(value, datetime):
            normalized[name] = as_utc(value)
    return normalized

def validate_event(data: dict) -> bool:
    """Return True if the data describes a well-formed event."""
    title = data.get("title")
    if not isinstance(title, str) or not title.strip():
        return False
    start, end = data.get("start"), data.get("end")
    if not isinstance(start, datetime) or not isinstance(end, datetime):
        return False
    try:
        if start >= end:
            return False
    except TypeError:
        # naive vs aware datetimes
        return False
    description = data.get("description")
    if description is not None and not isinstance(description, str):
        return False
    return True

class EventStore:
    def __init__(self, file_path: str | None = None):
        """Initialize an empty in-memory event store, optionally backed by a JSON file."""
        self.file_path = file_path
        self._events: list[Event] = []
        self._next_id = 1
        self._lock = threading.RLock()

    def __len__(self):
        return len(self._events)

    def _log_action(self, action: str, payload: dict):
        audit_logger.info(f"Action: {action}, Event: {json.dumps(payload)}")

    def add_event(self, data: dict) -> Event:
        """Validate and add a new event, assigning it the next sequential id."""
        data = normalize_times(data)
        if not validate_event(data):
            raise InvalidEvent()
        with self._lock:
            event = Event(
                id=self._next_id,
                title=data["title"],
                start=data["start"],
                end=data["end"],
                description=data.get("description"),
                created_at=datetime.now(UTC),
            )
            self._next_id += 1
            self._events.append(event)
        self._log_action("add", event.to_dict())
        return event

    def update_event(self, event_id: int, data: dict) -> Event | None:
        """Merge the provided fields into an existing event; None if the id is unknown."""
        with self._lock:
            event = self.get_event_by_id(event_id)
            if event is None:
                return None
            merged = {name: getattr(event, name) for name in MUTABLE_FIELDS}
            merged.update({k: v for k, v in normalize_times(data).items() if k in MUTABLE_FIELDS})
            if not validate_event(merged):
                raise InvalidEvent()
            for name, value in merged.items():
                setattr(event, name, value)
        self._log_action("update", event.to_dict())
        return event

    def delete_event(self, event_id: int) -> bool:
        """Remove an event by id, returning whether anything was removed."""
        with self._lock:
            remaining = [e for e in self._events if e.id != event_id]
            deleted = len(remaining) != len(self._events)
            self._events = remaining
        if deleted:
            self._log_action("delete", {"id": event_id})
        return deleted

    def get_event_by_id(self, event_id: int) -> Event | None:
        return next((e for e in self._events if e.id == event_id), None)

    def list_events(self) -> list[Event]:
        return list(self._events)

    def search_events_by_title(self, query: str) -> list[Event]:
        """Case-insensitive substring search on event titles."""
        needle = query.lower()
        return [e for e in self._events if needle in e.title.lower()]

    def sort_events_by_start_time(self, ascending: bool = True) -> list[Event]:
        return sorted(self._events, key=lambda e: e.start, reverse=not ascending)

    def sort_events_by_creation_time(self, ascending: bool = True) -> list[Event]:
        return sorted(self._events, key=lambda e: e.created_at, reverse=not ascending)

    def save_events_to_file(self):
        """Write all events to the backing file, replacing it atomically."""
        if not self.file_path:
            raise ValueError("No events file configured")
        target = os.path.abspath(self.file_path)
        with self._lock:
            payload = [e.to_dict() for e in self._events]
            fd, tmp_path = tempfile.mkstemp(dir=os.path.dirname(target), prefix=".events-", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(payload, f, indent=2)
                os.replace(tmp_path, target)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.remove(tmp_path)
                raise
        logger.info(f"Saved {len(payload)} events to {target}")

    def load_events_from_file(self):
        """Replace the collection with the backing file's contents; a missing file means no events."""
        if not self.file_path:
            raise ValueError("No events file configured")
        try:
            with open(self.file_path, encoding="utf-8") as f:
                raw = json.load(f)
        except FileNotFoundError:
            logger.info("No saved events file found. Starting with an empty list.")
            raw = []
        events = [Event.from_dict(item) for item in raw]
        with self._lock:
            self._events = events
            self._next_id = max((e.id for e in events), default=0) + 1
        logger.info(f"Loaded {len(events)} events from {self.file_path}")
