"""Injectable clock. Ledger code never reads the system time directly."""

from datetime import date, datetime, time, timedelta, timezone
from typing import Protocol


class Clock(Protocol):
    """Source of "today" and of movement timestamps."""

    def now(self) -> date: ...

    def timestamp(self) -> datetime: ...


class SystemClock:
    """Clock backed by the system time in UTC."""

    def now(self) -> date:
        return datetime.now(timezone.utc).date()

    def timestamp(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock:
    """Clock pinned to a date, for tests and back-dated processing."""

    def __init__(self, current: date):
        self.current = current

    def now(self) -> date:
        return self.current

    def timestamp(self) -> datetime:
        return datetime.combine(self.current, time(0, 0), tzinfo=timezone.utc)

    def set(self, current: date) -> None:
        self.current = current

    def advance(self, days: int) -> date:
        self.current = self.current + timedelta(days=days)
        return self.current


__all__ = ["Clock", "SystemClock", "FixedClock"]
