import html
import re
from datetime import datetime, UTC

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

def parse_timestamp(value: str) -> datetime:
    """Parse an ISO 8601 (or 'YYYY-MM-DD HH:MM') string into a datetime object."""
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return datetime.strptime(value, "%Y-%m-%d %H:%M")

def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC so every stored timestamp is comparable."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value

def is_valid_email(email: str) -> bool:
    return bool(EMAIL_RE.match(email))

def sanitize_input(value: str) -> str:
    """Trim and HTML-escape user supplied text."""
    return html.escape(value.strip(), quote=True)
