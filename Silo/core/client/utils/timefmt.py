"""
Relative time labels for message and conversation timestamps.
"""
import re
from datetime import datetime, timezone
from typing import Optional

_SHORT_OFFSET_RE = re.compile(r"T.*[+-]\d\d$")


def _plural(n: int, unit: str) -> str:
    return f"{n} {unit}{'' if n == 1 else 's'} ago"


def format_ago(ts: Optional[datetime], now: Optional[datetime] = None) -> str:
    """Format ``ts`` as "just now", "5 mins ago", "2 days ago" and so on.

    Future timestamps read as "just now". Months are counted as four weeks.
    """
    if ts is None:
        return ""
    now = now or datetime.now(timezone.utc)
    diff = max(0, int((now - ts).total_seconds()))

    if diff < 60:
        return "just now"
    minutes = diff // 60
    if minutes < 60:
        return _plural(minutes, "min")
    hours = minutes // 60
    if hours < 24:
        return _plural(hours, "hour")
    days = hours // 24
    if days < 7:
        return _plural(days, "day")
    weeks = days // 7
    if weeks < 4:
        return _plural(weeks, "week")
    months = weeks // 4
    if months < 12:
        return _plural(months, "month")
    return _plural(months // 12, "year")


def format_badge(count: int, cap: int = 99) -> str:
    """Render an unread count for a badge; empty when there is nothing unread."""
    if count <= 0:
        return ""
    return f"{cap}+" if count > cap else str(count)


def parse_timestamp(value) -> datetime:
    """Parse a backend timestamp into an aware UTC datetime.

    Raises:
        ValueError: value is not an ISO-8601 string or datetime
    """
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str) and value:
        text = value.strip().replace(" ", "T", 1)
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        elif _SHORT_OFFSET_RE.search(text):
            # Postgres text output: "+00" without minutes
            text += ":00"
        dt = datetime.fromisoformat(text)
    else:
        raise ValueError(f"not a timestamp: {value!r}")
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)
