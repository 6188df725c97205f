"""Shared test helpers for FocusLedger."""

from __future__ import annotations

from datetime import date, datetime, time, timedelta
from uuid import uuid4

from focusledger.database.models import FocusSession
from focusledger.presets import max_minutes


class SignalCollector:
    """Utility to capture pyqtSignal emissions into a list."""

    def __init__(self):
        self.items: list = []

    def slot(self, *args):
        self.items.append(args if len(args) > 1 else args[0] if args else None)

    def __call__(self, *args):
        self.slot(*args)

    def __len__(self):
        return len(self.items)

    def __getitem__(self, idx):
        return self.items[idx]

    @property
    def last(self):
        return self.items[-1] if self.items else None

    def clear(self):
        self.items.clear()


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = datetime(2024, 3, 1, 12, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


def make_session(
    day: date | datetime,
    *,
    preset: str = "standard",
    completed: bool = True,
    minutes: int | None = None,
    hour: int = 10,
    minute: int = 0,
    session_id: str | None = None,
) -> FocusSession:
    """Build an unsaved session starting on *day* at *hour*:*minute*."""
    start = day if isinstance(day, datetime) else datetime.combine(day, time(hour, minute))
    planned = max_minutes(preset)
    if minutes is None:
        minutes = planned if completed else planned // 3
    return FocusSession(
        id=session_id or uuid4().hex,
        preset=preset,
        started_at=start,
        ends_at=start + timedelta(minutes=planned),
        was_completed=completed,
        total_minutes=minutes,
    )


def days_from(first: date, count: int) -> list[date]:
    return [first + timedelta(days=i) for i in range(count)]
