# backend/letlog/domain/clock.py
from __future__ import annotations

from datetime import datetime, timezone
from typing import Protocol

def utcnow() -> datetime:
    # Naive UTC, matching how DateTime columns are stored.
    return datetime.now(timezone.utc).replace(tzinfo=None)

class Clock(Protocol):
    def now(self) -> datetime: ...

class SystemClock:
    def now(self) -> datetime:
        return utcnow()

class FixedClock:
    """Clock for tests and replays."""

    def __init__(self, at: datetime):
        self._at = at

    def now(self) -> datetime:
        return self._at

    def set(self, at: datetime) -> None:
        self._at = at
