"""
================================================================================
HELPERS - Common Utility Functions
================================================================================

FUNCTIONS:
  - generate_request_id: UUID v4 correlation id
  - utc_now: timezone-aware current time
  - parse_timestamp: lenient ISO-8601 / epoch parsing (python-dateutil)
  - to_epoch_ms: datetime → integer milliseconds
  - format_duration: seconds → human-readable
  - slugify: lowercase, non-alphanumerics collapsed to "-"

================================================================================
"""

import re
import uuid
from datetime import datetime, timezone
from typing import Any

from dateutil.parser import isoparse


def generate_request_id() -> str:
    """Generate unique request ID (UUID v4)."""
    return str(uuid.uuid4())


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> datetime:
    """
    Parse a timestamp into an aware UTC datetime.

    Accepts datetimes, ISO-8601 strings ("Z" suffix, offsets, fractional
    seconds) and epoch numbers (seconds, or milliseconds when > 1e11).

    Examples:
        >>> parse_timestamp("2024-03-01T10:00:00Z").isoformat()
        '2024-03-01T10:00:00+00:00'
        >>> parse_timestamp(1709287200000).year
        2024
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        seconds = value / 1000.0 if value > 1e11 else float(value)
        parsed = datetime.fromtimestamp(seconds, tz=timezone.utc)
    elif isinstance(value, str):
        parsed = isoparse(value.strip())
    else:
        raise ValueError(f"Unsupported timestamp: {value!r}")

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def to_epoch_ms(value: datetime) -> int:
    return int(round(value.timestamp() * 1000))


def format_duration(seconds: float) -> str:
    """
    Format seconds to human-readable duration.

    Examples:
        >>> format_duration(0.125)
        '125.0ms'
        >>> format_duration(65)
        '1m 5s'
        >>> format_duration(3725)
        '1h 2m 5s'
    """
    if seconds < 1:
        return f"{seconds * 1000:.1f}ms"
    if seconds < 60:
        return f"{seconds:.2f}s"

    minutes, secs = divmod(int(seconds), 60)
    if minutes < 60:
        return f"{minutes}m {secs}s"
    hours, minutes = divmod(minutes, 60)
    return f"{hours}h {minutes}m {secs}s"


def slugify(value: str) -> str:
    """
    Examples:
        >>> slugify("192.168.1.10")
        '192-168-1-10'
    """
    return re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")
