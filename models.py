from dataclasses import dataclass, field
from datetime import datetime, UTC
from typing import Optional

from utils import as_utc, parse_timestamp

@dataclass
class Event:
    id: int
    title: str
    start: datetime
    end: datetime
    description: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict:
        """Return a JSON-ready representation of the event."""
        return {
            "id": self.id,
            "title": self.title,
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "description": self.description,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Event":
        """Build an event from a dict produced by to_dict."""
        created_at = data.get("created_at")
        return cls(
            id=int(data["id"]),
            title=data["title"],
            start=as_utc(parse_timestamp(data["start"])),
            end=as_utc(parse_timestamp(data["end"])),
            description=data.get("description"),
            created_at=as_utc(parse_timestamp(created_at)) if created_at else datetime.fromtimestamp(0, UTC),
        )

@dataclass
class User:
    username: str
    password: str  # bcrypt hash, never the raw password
    email: Optional[str] = None
    id: Optional[int] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
