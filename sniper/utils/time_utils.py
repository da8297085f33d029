"""
Time utilities for trading operations.
"""

from datetime import datetime, timezone
from typing import Optional


def get_utc_datetime() -> datetime:
    """Get current UTC datetime"""
    return datetime.now(timezone.utc)


def timestamp_to_datetime(timestamp: float) -> datetime:
    """Convert timestamp to datetime"""
    return datetime.fromtimestamp(timestamp, tz=timezone.utc)


def utc_isoformat(timestamp: Optional[float] = None) -> str:
    """ISO8601 string with millisecond precision and a Z suffix"""
    dt = get_utc_datetime() if timestamp is None else timestamp_to_datetime(timestamp)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def format_duration(seconds: float) -> str:
    """Compact human duration, e.g. 2h05m"""
    seconds = max(0, int(seconds))
    hours, remainder = divmod(seconds, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours:
        return f"{hours}h{minutes:02d}m"
    if minutes:
        return f"{minutes}m{secs:02d}s"
    return f"{secs}s"
