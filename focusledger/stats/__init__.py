"""Daily aggregates and streak package."""

from .aggregates import (
    AggregateMaintainer,
    AggregateUpdate,
    StreakSnapshot,
    advance_streak,
    streak_runs,
    streak_from_days,
    days_between,
)

__all__ = [
    "AggregateMaintainer",
    "AggregateUpdate",
    "StreakSnapshot",
    "advance_streak",
    "streak_runs",
    "streak_from_days",
    "days_between",
]
