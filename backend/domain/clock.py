"""Naive-UTC wall clock used for every persisted timestamp."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    # Stored naive so SQLite round-trips compare cleanly.
    return datetime.now(timezone.utc).replace(tzinfo=None)
