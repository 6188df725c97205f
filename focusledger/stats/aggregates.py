"""Daily aggregates and streak maintenance.

Daily stats
-----------
``daily_stats`` holds one row per calendar date.  Whenever a session is
written, the row for its ``date_key`` is recomputed from the session
rows of that date, so replays and retries land on the same numbers.
``met_goal`` is sticky: once a day has met the goal it stays met, even
if the goal is raised later, as long as it has a completed session.

Streak
------
A day *qualifies* the first time its ``met_goal`` flips to true.  On a
qualifying day:

    last active yesterday      current + 1
    last active today          unchanged
    gap of 2+ days / no data   current = 1, streak starts today
    earlier than last active   backfill: rebuild from ``daily_stats``

``best_streak`` is ``max(best, current)`` and never goes down.
``last_active_date`` never moves backward.

Weekly, monthly and preset statistics are not maintained here; they are
views over ``focus_sessions`` (see ``database/migrations.py``).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Callable, Iterable

from sqlalchemy import case, func
from sqlalchemy.orm import Session as OrmSession

from ..database.models import DailyStat, FocusSession, StreakState
from ..errors import ConsistencyError, ValidationError

logger = logging.getLogger(__name__)


# ── streak math ──────────────────────────────────────────────────────────


@dataclass(frozen=True)
class StreakSnapshot:
    current_streak: int = 0
    best_streak: int = 0
    last_active_date: date | None = None
    streak_start_date: date | None = None

    @classmethod
    def from_row(cls, row: StreakState | None) -> "StreakSnapshot":
        if row is None:
            return cls()
        return cls(
            current_streak=row.current_streak or 0,
            best_streak=row.best_streak or 0,
            last_active_date=row.last_active_date,
            streak_start_date=row.streak_start_date,
        )


def advance_streak(state: StreakSnapshot, day: date) -> StreakSnapshot | None:
    """Apply a newly qualifying *day* to *state*.

    Returns ``None`` when *day* is earlier than ``last_active_date``; an
    out-of-order day can close a gap in the middle of history, which only
    a full rebuild can account for.
    """
    last = state.last_active_date
    if last is None:
        current, start = 1, day
    else:
        gap = (day - last).days
        if gap < 0:
            return None
        if gap == 0:
            current = max(state.current_streak, 1)
            start = state.streak_start_date or day
        elif gap == 1:
            current = state.current_streak + 1
            start = state.streak_start_date or day
        else:
            current, start = 1, day

    return StreakSnapshot(
        current_streak=current,
        best_streak=max(state.best_streak, current),
        last_active_date=day if last is None else max(last, day),
        streak_start_date=start,
    )


def streak_runs(days: Iterable[date]) -> list[tuple[date, date, int]]:
    """Group dates into runs of consecutive days.

    Returns ``(first_day, last_day, length)`` tuples, oldest run first.
    Duplicates and ordering of the input don't matter.
    """
    runs: list[tuple[date, date, int]] = []
    for day in sorted(set(days)):
        if runs and (day - runs[-1][1]).days == 1:
            first, _, length = runs[-1]
            runs[-1] = (first, day, length + 1)
        else:
            runs.append((day, day, 1))
    return runs


def streak_from_days(days: Iterable[date], previous_best: int = 0) -> StreakSnapshot:
    """Full streak state for a set of qualifying days."""
    runs = streak_runs(days)
    if not runs:
        return StreakSnapshot(best_streak=previous_best)
    first, last, length = runs[-1]
    return StreakSnapshot(
        current_streak=length,
        best_streak=max(previous_best, max(r[2] for r in runs)),
        last_active_date=last,
        streak_start_date=first,
    )


# ── maintainer ───────────────────────────────────────────────────────────


@dataclass
class AggregateUpdate:
    """What :meth:`AggregateMaintainer.on_session_recorded` changed."""

    date_key: str
    daily: DailyStat
    newly_qualified: bool
    streak: StreakSnapshot
    streak_changed: bool
    out_of_order: bool = False


def _day_columns():
    completed = case((FocusSession.was_completed.is_(True), 1), else_=0)
    completed_minutes = case(
        (FocusSession.was_completed.is_(True), FocusSession.total_minutes), else_=0,
    )
    return (
        func.count(FocusSession.id),
        func.coalesce(func.sum(completed), 0),
        func.coalesce(func.sum(FocusSession.total_minutes), 0),
        func.coalesce(func.sum(completed_minutes), 0),
        func.coalesce(func.sum(case((FocusSession.preset == "quick", 1), else_=0)), 0),
        func.coalesce(func.sum(case((FocusSession.preset == "standard", 1), else_=0)), 0),
        func.coalesce(func.sum(case((FocusSession.preset == "deep", 1), else_=0)), 0),
    )


def _apply_counts(daily: DailyStat, counts) -> None:
    (
        daily.total_sessions,
        daily.completed_sessions,
        daily.total_minutes,
        daily.completed_minutes,
        daily.quick_sessions,
        daily.standard_sessions,
        daily.deep_sessions,
    ) = (int(v or 0) for v in counts)


def _met(was_met: bool, completed: int, daily_goal: int) -> bool:
    # Sticky only while the day still has a completed session behind it
    return (was_met and completed >= 1) or completed >= daily_goal


class AggregateMaintainer:
    """Keeps ``daily_stats`` and ``streak_state`` in step with sessions."""

    def __init__(self, clock: Callable[[], datetime] = datetime.now) -> None:
        self._clock = clock

    @staticmethod
    def _check_goal(daily_goal: int) -> None:
        if daily_goal is None or daily_goal < 1:
            raise ValidationError("daily_goal must be >= 1", field="daily_goal")

    @staticmethod
    def streak_row(db: OrmSession) -> StreakState:
        row = db.get(StreakState, 1)
        if row is None:
            row = StreakState(id=1, current_streak=0, best_streak=0)
            db.add(row)
        return row

    def _write_streak(self, row: StreakState, snap: StreakSnapshot) -> None:
        row.current_streak = snap.current_streak
        row.best_streak = max(row.best_streak or 0, snap.best_streak)
        row.last_active_date = snap.last_active_date
        row.streak_start_date = snap.streak_start_date
        row.updated_at = self._clock()

    # ── per-event update ────────────────────────────────────────────────

    def refresh_day(
        self, db: OrmSession, date_key: str, daily_goal: int,
    ) -> tuple[DailyStat, bool]:
        """Recompute the ``daily_stats`` row for *date_key*.

        Returns ``(row, newly_qualified)``.
        """
        self._check_goal(daily_goal)
        counts = (
            db.query(*_day_columns())
            .filter(FocusSession.date_key == date_key)
            .one()
        )
        daily = db.get(DailyStat, date_key)
        if daily is None:
            daily = DailyStat(date_key=date_key, met_goal=False)
            db.add(daily)
        was_met = bool(daily.met_goal)

        _apply_counts(daily, counts)
        daily.met_goal = _met(was_met, daily.completed_sessions, daily_goal)
        daily.updated_at = self._clock()
        return daily, daily.met_goal and not was_met

    def on_session_recorded(
        self, db: OrmSession, session: FocusSession, daily_goal: int,
    ) -> AggregateUpdate:
        """Update the session's day and, if it just qualified, the streak."""
        daily, qualified = self.refresh_day(db, session.date_key, daily_goal)
        row = self.streak_row(db)
        before = StreakSnapshot.from_row(row)

        if not qualified:
            return AggregateUpdate(session.date_key, daily, False, before, False)

        after = advance_streak(before, daily.day)
        if after is None:
            logger.warning(
                "Session %s qualifies %s, before last active day %s; rebuilding streak",
                session.id, daily.date_key, before.last_active_date,
            )
            db.flush()
            after = self.rebuild_streak(db)
            return AggregateUpdate(
                session.date_key, daily, True, after, after != before, out_of_order=True,
            )

        self._write_streak(row, after)
        return AggregateUpdate(session.date_key, daily, True, after, after != before)

    # ── full rebuilds ───────────────────────────────────────────────────

    def rebuild_daily_stats(self, db: OrmSession, daily_goal: int) -> int:
        """Recompute every ``daily_stats`` row from ``focus_sessions``.

        Days that already met the goal keep ``met_goal`` while they still
        have a completed session.  Returns the
        number of rows written.
        """
        self._check_goal(daily_goal)
        grouped = (
            db.query(FocusSession.date_key, *_day_columns())
            .group_by(FocusSession.date_key)
            .all()
        )
        existing = {d.date_key: d for d in db.query(DailyStat).all()}
        now = self._clock()
        seen: set[str] = set()

        for date_key, *counts in grouped:
            seen.add(date_key)
            daily = existing.get(date_key)
            if daily is None:
                daily = DailyStat(date_key=date_key, met_goal=False)
                db.add(daily)
            was_met = bool(daily.met_goal)
            _apply_counts(daily, counts)
            daily.met_goal = _met(was_met, daily.completed_sessions, daily_goal)
            daily.updated_at = now

        for date_key, daily in existing.items():
            if date_key not in seen:
                db.delete(daily)

        db.flush()
        return len(seen)

    def rebuild_streak(self, db: OrmSession) -> StreakSnapshot:
        """Recompute the streak from every qualifying day on record."""
        row = self.streak_row(db)
        days = [
            date.fromisoformat(k)
            for (k,) in db.query(DailyStat.date_key).filter(DailyStat.met_goal.is_(True))
        ]
        snap = streak_from_days(days, previous_best=row.best_streak or 0)
        self._write_streak(row, snap)
        logger.info(
            "Rebuilt streak: current=%d best=%d", snap.current_streak, snap.best_streak,
        )
        return StreakSnapshot.from_row(row)

    # ── invariants ──────────────────────────────────────────────────────

    def verify(self, db: OrmSession) -> None:
        """Raise :class:`ConsistencyError` if derived rows disagree with
        the session table or with their own invariants."""
        problems: list[str] = []

        grouped = {
            date_key: tuple(int(v or 0) for v in counts)
            for date_key, *counts in (
                db.query(FocusSession.date_key, *_day_columns())
                .group_by(FocusSession.date_key)
                .all()
            )
        }
        stored = {d.date_key: d for d in db.query(DailyStat).all()}

        for date_key, counts in grouped.items():
            daily = stored.get(date_key)
            if daily is None:
                problems.append(f"{date_key}: no daily_stats row")
                continue
            actual = (
                daily.total_sessions, daily.completed_sessions,
                daily.total_minutes, daily.completed_minutes,
                daily.quick_sessions, daily.standard_sessions, daily.deep_sessions,
            )
            if actual != counts:
                problems.append(f"{date_key}: stored {actual} != sessions {counts}")
        for date_key, daily in stored.items():
            if date_key not in grouped:
                problems.append(f"{date_key}: daily_stats row without sessions")
            if daily.completed_sessions > daily.total_sessions:
                problems.append(f"{date_key}: completed > total")
            if daily.met_goal and daily.completed_sessions == 0:
                problems.append(f"{date_key}: met_goal without a completed session")
            presets = daily.quick_sessions + daily.standard_sessions + daily.deep_sessions
            if presets != daily.total_sessions:
                problems.append(f"{date_key}: preset counts {presets} != total")

        row = db.get(StreakState, 1)
        if row is None:
            problems.append("streak_state: missing singleton row")
        else:
            days = [date.fromisoformat(k) for k, d in stored.items() if d.met_goal]
            expected = streak_from_days(days)
            if row.current_streak < 0 or row.best_streak < row.current_streak:
                problems.append(
                    f"streak_state: current={row.current_streak} best={row.best_streak}"
                )
            if (
                row.current_streak != expected.current_streak
                or row.last_active_date != expected.last_active_date
                or row.streak_start_date != expected.streak_start_date
            ):
                problems.append(
                    f"streak_state: stored current={row.current_streak} "
                    f"last={row.last_active_date}, expected "
                    f"current={expected.current_streak} last={expected.last_active_date}"
                )
            if row.best_streak < expected.best_streak:
                problems.append(
                    f"streak_state: best={row.best_streak} < {expected.best_streak}"
                )

        if problems:
            raise ConsistencyError(
                f"{len(problems)} aggregate problem(s) found", problems=problems,
            )


def days_between(first: date, last: date) -> list[date]:
    """Inclusive list of dates from *first* to *last*."""
    return [first + timedelta(days=i) for i in range((last - first).days + 1)]
