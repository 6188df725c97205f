"""Read-only projections for UI collaborators.

Every method opens its own short session and returns detached values
(dataclasses / tuples), never live ORM rows, so callers can't mutate
store state through a query result.

Visibility
----------
Hidden achievements stay out of listings and totals until unlocked;
after that they behave like any other award.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import NamedTuple

from sqlalchemy import text

from .database.db import FocusStore
from .database.models import AchievementDefinition, AchievementProgress, DailyStat, StreakState, date_key_for
from .gamification.achievements import AchievementDef
from .gamification.engine import ProgressSnapshot
from .stats.aggregates import StreakSnapshot, days_between


class StatRow(NamedTuple):
    """One row of the weekly / monthly / preset statistics views."""

    key: str
    total_sessions: int
    completed_sessions: int
    total_minutes: int
    focus_minutes: int
    active_days: int
    completion_rate: float


@dataclass(frozen=True)
class DailyStatRow:
    date: date
    total_sessions: int = 0
    completed_sessions: int = 0
    total_minutes: int = 0
    completed_minutes: int = 0
    quick_sessions: int = 0
    standard_sessions: int = 0
    deep_sessions: int = 0
    met_goal: bool = False

    @classmethod
    def from_row(cls, row: DailyStat) -> "DailyStatRow":
        return cls(
            date=row.day,
            total_sessions=row.total_sessions,
            completed_sessions=row.completed_sessions,
            total_minutes=row.total_minutes,
            completed_minutes=row.completed_minutes,
            quick_sessions=row.quick_sessions,
            standard_sessions=row.standard_sessions,
            deep_sessions=row.deep_sessions,
            met_goal=bool(row.met_goal),
        )


class NextAward(NamedTuple):
    definition: AchievementDef
    progress: ProgressSnapshot
    percent: float


def _definition(row: AchievementDefinition) -> AchievementDef:
    return AchievementDef(
        id=row.id,
        category=row.category,
        name=row.name,
        description=row.description,
        icon=row.icon,
        criteria_type=row.criteria_type,
        criteria_value=row.criteria_value,
        criteria_unit=row.criteria_unit,
        sort_order=row.sort_order,
        is_hidden=bool(row.is_hidden),
    )


class QueryFacade:
    """Snapshot reads over a :class:`FocusStore`."""

    def __init__(self, store: FocusStore) -> None:
        self._store = store

    # ── period statistics ───────────────────────────────────────────────

    def get_daily_stats(
        self, start: date | None = None, end: date | None = None, *, fill: bool = False,
    ) -> list[DailyStatRow]:
        """Daily rows between *start* and *end* inclusive, oldest first.

        With ``fill=True`` (and both bounds given) days without sessions
        are included as zero rows, as a chart would want them.
        """
        with self._store.session() as db:
            query = db.query(DailyStat)
            if start is not None:
                query = query.filter(DailyStat.date_key >= date_key_for(start))
            if end is not None:
                query = query.filter(DailyStat.date_key <= date_key_for(end))
            rows = [DailyStatRow.from_row(r) for r in query.order_by(DailyStat.date_key)]

        if not (fill and start is not None and end is not None):
            return rows
        by_day = {r.date: r for r in rows}
        return [by_day.get(day, DailyStatRow(date=day)) for day in days_between(start, end)]

    def _period_rows(self, view: str) -> list[StatRow]:
        with self._store.session() as db:
            result = db.execute(text(
                "SELECT period_key, total_sessions, completed_sessions, total_minutes, "
                f"focus_minutes, active_days, completion_rate FROM {view} "
                "ORDER BY period_key"
            ))
            return [
                StatRow(
                    key=r[0],
                    total_sessions=int(r[1]),
                    completed_sessions=int(r[2] or 0),
                    total_minutes=int(r[3] or 0),
                    focus_minutes=int(r[4] or 0),
                    active_days=int(r[5] or 0),
                    completion_rate=float(r[6] or 0.0),
                )
                for r in result
            ]

    def get_weekly_stats(self) -> list[StatRow]:
        return self._period_rows("weekly_stats")

    def get_monthly_stats(self) -> list[StatRow]:
        return self._period_rows("monthly_stats")

    def get_preset_stats(self) -> list[StatRow]:
        return self._period_rows("preset_stats")

    # ── streak ──────────────────────────────────────────────────────────

    def get_streak(self, as_of: date | None = None) -> StreakSnapshot:
        """Stored streak.  With *as_of*, a streak whose last active day is
        before yesterday reads as broken (current 0)."""
        with self._store.session() as db:
            snap = StreakSnapshot.from_row(db.get(StreakState, 1))
        last = snap.last_active_date
        if as_of is not None and last is not None and (as_of - last).days > 1:
            return StreakSnapshot(
                current_streak=0,
                best_streak=snap.best_streak,
                last_active_date=last,
                streak_start_date=None,
            )
        return snap

    # ── achievements ────────────────────────────────────────────────────

    def _progress_pairs(
        self, category: str | None = None,
    ) -> list[tuple[AchievementDef, ProgressSnapshot]]:
        with self._store.session() as db:
            query = (
                db.query(AchievementDefinition, AchievementProgress)
                .join(
                    AchievementProgress,
                    AchievementProgress.achievement_id == AchievementDefinition.id,
                )
                .filter(
                    (AchievementDefinition.is_hidden.is_(False))
                    | (AchievementProgress.is_unlocked.is_(True))
                )
            )
            if category is not None:
                query = query.filter(AchievementDefinition.category == category)
            return [
                (_definition(d), ProgressSnapshot.from_row(p))
                for d, p in query.order_by(AchievementDefinition.sort_order)
            ]

    def get_achievement_progress(
        self, category: str | None = None,
    ) -> list[tuple[AchievementDef, ProgressSnapshot]]:
        """``(definition, progress)`` pairs by sort order, hidden-and-locked
        awards suppressed."""
        return self._progress_pairs(category)

    def get_next_achievable_award(self) -> NextAward | None:
        """The locked, visible award closest to unlocking.

        Highest ``progress / target`` wins; ties go to the lowest sort
        order.  ``None`` once everything visible is unlocked.
        """
        best: NextAward | None = None
        for defn, progress in self._progress_pairs():
            if progress.is_unlocked:
                continue
            target = defn.criteria_value
            percent = 100.0 * progress.current_progress / target if target > 0 else 0.0
            percent = min(max(percent, 0.0), 100.0)
            # Pairs arrive in sort order, so strict > keeps the earliest on ties
            if best is None or percent > best.percent:
                best = NextAward(defn, progress, percent)
        return best

    def count_unlocked(self) -> int:
        return sum(1 for _, p in self._progress_pairs() if p.is_unlocked)

    def count_visible_awards(self) -> int:
        """Awards a gallery would show: non-hidden ones plus unlocked hidden ones."""
        return len(self._progress_pairs())
