"""Time sources for the lending core.

Every rule that depends on "now" (due-date bounds, overdue detection,
``borrowed_at``/``returned_at`` stamps) asks a clock instead of calling
``datetime.now`` directly, so tests can pin and move time.
"""

from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone
from typing import Protocol


def ensure_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime; naive values are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Clock(Protocol):
    def now(self) -> datetime:
        ...


class SystemClock:
    """Wall clock in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock:
    """A clock that only moves when told to."""

    def __init__(self, instant: datetime | None = None) -> None:
        self._lock = threading.Lock()
        self._now = ensure_utc(instant) if instant else datetime.now(timezone.utc)

    def now(self) -> datetime:
        with self._lock:
            return self._now

    def set(self, instant: datetime) -> None:
        with self._lock:
            self._now = ensure_utc(instant)

    def advance(self, **kwargs: float) -> datetime:
        """Move forward by ``timedelta(**kwargs)`` and return the new instant."""
        with self._lock:
            self._now = self._now + timedelta(**kwargs)
            return self._now
