"""Injectable time source.

Services never call ``datetime.now()`` or ``date.today()`` directly; they
receive a ``Clock`` so expiry checks and due dates can be pinned in tests.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Protocol


class Clock(Protocol):
    def now(self) -> datetime: ...
    def today(self) -> date: ...


class SystemClock:
    def now(self) -> datetime:
        return datetime.now().replace(microsecond=0)

    def today(self) -> date:
        return self.now().date()


class FixedClock:
    """Test clock: returns the same instant until moved."""

    def __init__(self, fixed: datetime | None = None):
        self._now = fixed or datetime(2024, 1, 1, 12, 0, 0)

    def now(self) -> datetime:
        return self._now

    def today(self) -> date:
        return self._now.date()

    def set(self, value: datetime) -> None:
        self._now = value

    def advance(self, days: int = 0, seconds: int = 0) -> None:
        self._now = self._now + timedelta(days=days, seconds=seconds)
