"""
Time helpers.

Timestamps are stored as naive UTC datetimes (SQLite drops tzinfo), and
session ids embed epoch milliseconds.
"""
from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def epoch_ms(value: datetime) -> int:
    """Epoch milliseconds for a naive UTC datetime."""
    return int(value.replace(tzinfo=timezone.utc).timestamp() * 1000)
