"""Database package."""

from .models import (
    Base,
    FocusSession,
    DailyStat,
    StreakState,
    AchievementDefinition,
    AchievementProgress,
    SchemaVersion,
    date_key_for,
    week_key_for,
    month_key_for,
)
from .db import FocusStore, DB_PATH

__all__ = [
    "Base",
    "FocusSession",
    "DailyStat",
    "StreakState",
    "AchievementDefinition",
    "AchievementProgress",
    "SchemaVersion",
    "date_key_for",
    "week_key_for",
    "month_key_for",
    "FocusStore",
    "DB_PATH",
]
