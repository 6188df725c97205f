"""SQLAlchemy ORM models for FocusLedger."""

from datetime import datetime, date
from uuid import uuid4

from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, Date, ForeignKey,
    CheckConstraint, Index, event,
)
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


# ── period keys ──────────────────────────────────────────────────────────


def date_key_for(moment: datetime | date) -> str:
    """``2024-03-05 08:15`` → ``'2024-03-05'``."""
    return moment.strftime("%Y-%m-%d")


def week_key_for(moment: datetime | date) -> str:
    """ISO year-week, e.g. ``'2024-W10'``.  Early-January days can
    belong to the previous ISO year."""
    iso_year, iso_week, _ = moment.isocalendar()
    return f"{iso_year}-W{iso_week:02d}"


def month_key_for(moment: datetime | date) -> str:
    """``2024-03-05`` → ``'2024-03'``."""
    return moment.strftime("%Y-%m")


# ── tables ───────────────────────────────────────────────────────────────


class FocusSession(Base):
    """One timed focus interval, completed or abandoned.

    ``date_key``, ``week_key`` and ``month_key`` are recomputed from
    ``started_at`` every time the row is flushed; whatever a caller
    assigns to them is overwritten.
    """

    __tablename__ = "focus_sessions"
    __table_args__ = (
        CheckConstraint(
            "preset IN ('quick', 'standard', 'deep')",
            name="ck_focus_sessions_preset",
        ),
        CheckConstraint("total_minutes >= 0", name="ck_focus_sessions_minutes"),
        Index("idx_sessions_completed", "was_completed", "date_key"),
        Index("idx_sessions_started", "started_at", "id"),
    )

    id = Column(String(64), primary_key=True, default=lambda: uuid4().hex)
    preset = Column(String(20), nullable=False, index=True)  # quick | standard | deep
    started_at = Column(DateTime, nullable=False)
    ends_at = Column(DateTime, nullable=False)
    completed_at = Column(DateTime, nullable=True)
    was_completed = Column(Boolean, nullable=False, default=False)
    total_minutes = Column(Integer, nullable=False, default=0)
    date_key = Column(String(10), nullable=False, index=True)
    week_key = Column(String(8), nullable=False, index=True)
    month_key = Column(String(7), nullable=False, index=True)

    def assign_period_keys(self) -> None:
        self.date_key = date_key_for(self.started_at)
        self.week_key = week_key_for(self.started_at)
        self.month_key = month_key_for(self.started_at)

    def __repr__(self) -> str:
        return (
            f"<FocusSession id={self.id} preset={self.preset} "
            f"date={self.date_key} completed={self.was_completed}>"
        )


@event.listens_for(FocusSession, "before_insert")
@event.listens_for(FocusSession, "before_update")
def _recompute_period_keys(mapper, connection, target: FocusSession) -> None:
    target.assign_period_keys()


class DailyStat(Base):
    """Per-day aggregate, rebuilt from ``focus_sessions`` on every write."""

    __tablename__ = "daily_stats"
    __table_args__ = (
        Index("idx_daily_stats_met_goal", "met_goal", "date_key"),
    )

    date_key = Column(String(10), primary_key=True)
    total_sessions = Column(Integer, nullable=False, default=0)
    completed_sessions = Column(Integer, nullable=False, default=0)
    total_minutes = Column(Integer, nullable=False, default=0)       # all sessions
    completed_minutes = Column(Integer, nullable=False, default=0)   # completed only
    quick_sessions = Column(Integer, nullable=False, default=0)
    standard_sessions = Column(Integer, nullable=False, default=0)
    deep_sessions = Column(Integer, nullable=False, default=0)
    met_goal = Column(Boolean, nullable=False, default=False)
    updated_at = Column(DateTime, nullable=False, default=datetime.now)

    @property
    def day(self) -> date:
        return date.fromisoformat(self.date_key)

    def __repr__(self) -> str:
        return (
            f"<DailyStat date={self.date_key} sessions={self.total_sessions} "
            f"completed={self.completed_sessions} goal={self.met_goal}>"
        )


class StreakState(Base):
    """Single-row table holding the current and best streak."""

    __tablename__ = "streak_state"
    __table_args__ = (
        CheckConstraint("id = 1", name="ck_streak_state_singleton"),
    )

    id = Column(Integer, primary_key=True, default=1)
    current_streak = Column(Integer, nullable=False, default=0)
    best_streak = Column(Integer, nullable=False, default=0)
    last_active_date = Column(Date, nullable=True)
    streak_start_date = Column(Date, nullable=True)
    updated_at = Column(DateTime, nullable=False, default=datetime.now)

    def __repr__(self) -> str:
        return (
            f"<StreakState current={self.current_streak} "
            f"best={self.best_streak} last={self.last_active_date}>"
        )


class AchievementDefinition(Base):
    """Seeded copy of the in-code achievement catalog."""

    __tablename__ = "achievement_definitions"

    id = Column(String(64), primary_key=True)
    category = Column(String(20), nullable=False)       # commitment | consistency | ...
    name = Column(String(64), nullable=False)
    description = Column(String(255), nullable=False)
    icon = Column(String(64), nullable=False)
    criteria_type = Column(String(20), nullable=False)  # threshold | pattern | streak | rate | cumulative
    criteria_value = Column(Integer, nullable=False)
    criteria_unit = Column(String(20), nullable=True)
    sort_order = Column(Integer, nullable=False, default=0)
    is_hidden = Column(Boolean, nullable=False, default=False)

    def __repr__(self) -> str:
        return (
            f"<AchievementDefinition id={self.id} type={self.criteria_type} "
            f"value={self.criteria_value}>"
        )


class AchievementProgress(Base):
    """Per-achievement progress.  ``is_unlocked`` only ever goes
    False → True, and ``unlocked_at`` is written exactly once."""

    __tablename__ = "achievement_progress"

    achievement_id = Column(
        String(64), ForeignKey("achievement_definitions.id"), primary_key=True,
    )
    current_progress = Column(Integer, nullable=False, default=0)
    target_value = Column(Integer, nullable=False)
    is_unlocked = Column(Boolean, nullable=False, default=False)
    unlocked_at = Column(DateTime, nullable=True)
    progress_updated_at = Column(DateTime, nullable=False, default=datetime.now)

    def __repr__(self) -> str:
        return (
            f"<AchievementProgress id={self.achievement_id} "
            f"progress={self.current_progress}/{self.target_value} "
            f"unlocked={self.is_unlocked}>"
        )


class SchemaVersion(Base):
    """Append-only history of applied schema versions."""

    __tablename__ = "schema_versions"

    version = Column(Integer, primary_key=True, autoincrement=False)
    applied_at = Column(DateTime, nullable=False, default=datetime.now)
    description = Column(String(255), nullable=True)

    def __repr__(self) -> str:
        return f"<SchemaVersion v{self.version} {self.description!r}>"
