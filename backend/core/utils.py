"""
Utility functions for the workflow execution engine.

Includes:
- UTC datetime helpers
- Execution id generation
- Template version bumping
"""

import secrets
import string
import time
from datetime import datetime, timezone
from typing import Optional

_BASE36 = string.digits + string.ascii_lowercase


def utc_now() -> datetime:
    """
    Get the current UTC datetime.

    Returns:
        Current datetime in UTC timezone
    """
    return datetime.now(timezone.utc)


def isoformat(value: Optional[datetime]) -> Optional[str]:
    """Serialize an optional datetime to ISO-8601."""
    return value.isoformat() if value else None


def parse_datetime(value) -> Optional[datetime]:
    """Parse an ISO-8601 string (or pass through a datetime)."""
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


def duration_ms(start: Optional[datetime], end: Optional[datetime]) -> int:
    """Milliseconds between two timestamps, 0 if either is missing."""
    if not start or not end:
        return 0
    return int((end - start).total_seconds() * 1000)


def generate_execution_id() -> str:
    """
    Generate a unique execution id.

    Format: ``exec_<epoch-ms>_<9 random base36 chars>``.
    """
    suffix = "".join(secrets.choice(_BASE36) for _ in range(9))
    return f"exec_{int(time.time() * 1000)}_{suffix}"


def bump_version(version: str) -> str:
    """Increment the patch component of a dotted version string.

    >>> bump_version("1.0.0")
    '1.0.1'
    """
    parts = version.split(".")
    try:
        parts[-1] = str(int(parts[-1]) + 1)
    except ValueError:
        parts.append("1")
    return ".".join(parts)
