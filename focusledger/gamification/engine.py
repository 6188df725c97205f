"""Achievement evaluation: turns session history into progress rows.

Flow
----
1. :func:`compute_snapshot` reads the whole history once (sessions,
   daily stats, streak) into a :class:`StatsSnapshot`.
2. One pure evaluator per criteria type maps ``(definition, snapshot)``
   to an :class:`Evaluation` ``(progress, is_met)``.
3. :meth:`AchievementEngine.evaluate` writes the results.  Unlocked rows
   are terminal: they are skipped, so ``unlocked_at`` is set once and
   ``is_unlocked`` never reverts.

Everything is computed from full history rather than from the session
that triggered the call, so evaluating twice, or replaying the same
sessions into an empty database, gives the same progress and unlocks.
The only outside input is the clock used for timestamps.

Criteria
--------
threshold    named counter reaches the value; progress capped at value
cumulative   same shape, large values (sessions, deep sessions, minutes)
streak       progress is the current streak; met once the best streak
             reaches the value, so a later break can't undo it
rate         completion percentage over all sessions, with a minimum
             sample size per award (:data:`RATE_SAMPLE_FLOORS`)
pattern      bespoke rule per award id (:data:`PATTERN_RULES`)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, NamedTuple

from sqlalchemy import Integer, case, cast, func
from sqlalchemy.orm import Session as OrmSession

from ..database.models import (
    AchievementDefinition, AchievementProgress, DailyStat, FocusSession, StreakState,
)
from ..stats.aggregates import streak_runs

logger = logging.getLogger(__name__)


# ── tuning ───────────────────────────────────────────────────────────────

EARLY_HOUR = 9    # "before 9 AM"
LATE_HOUR = 22    # "after 10 PM"

RATE_SAMPLE_FLOORS: dict[str, int] = {
    "completion_rate_80": 10,
    "completion_rate_90": 25,
    "completion_rate_95": 50,
}
DEFAULT_RATE_SAMPLE_FLOOR = 10


# ── snapshot ─────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class StatsSnapshot:
    """Full-history counters every evaluator reads from."""

    total_sessions: int = 0
    completed_sessions: int = 0
    completed_minutes: int = 0
    deep_sessions: int = 0             # completed Deep sessions
    current_streak: int = 0
    best_streak: int = 0
    consecutive_goal_days: int = 0     # longest run of goal days
    best_perfect_day: int = 0          # most sessions on a day with none abandoned
    most_deep_in_day: int = 0
    has_early_session: bool = False
    has_late_session: bool = False

    @property
    def completion_rate(self) -> float:
        if self.total_sessions == 0:
            return 0.0
        return 100.0 * self.completed_sessions / self.total_sessions


def compute_snapshot(db: OrmSession) -> StatsSnapshot:
    """Read every counter the catalog needs in one pass over the tables."""
    done = FocusSession.was_completed.is_(True)
    total, completed, minutes, deep = (
        db.query(
            func.count(FocusSession.id),
            func.coalesce(func.sum(case((done, 1), else_=0)), 0),
            func.coalesce(func.sum(case((done, FocusSession.total_minutes), else_=0)), 0),
            func.coalesce(func.sum(
                case((done & (FocusSession.preset == "deep"), 1), else_=0)
            ), 0),
        ).one()
    )

    streak = db.get(StreakState, 1)

    goal_days = [
        d.day for d in db.query(DailyStat).filter(DailyStat.met_goal.is_(True))
    ]
    runs = streak_runs(goal_days)

    best_perfect_day = (
        db.query(func.max(DailyStat.completed_sessions))
        .filter(DailyStat.completed_sessions == DailyStat.total_sessions)
        .scalar()
    ) or 0

    deep_per_day = (
        db.query(func.count(FocusSession.id).label("n"))
        .filter(done, FocusSession.preset == "deep")
        .group_by(FocusSession.date_key)
        .subquery()
    )
    most_deep = db.query(func.max(deep_per_day.c.n)).scalar() or 0

    hour = cast(func.strftime("%H", FocusSession.started_at), Integer)
    early, late = (
        db.query(
            func.max(case((hour < EARLY_HOUR, 1), else_=0)),
            func.max(case((hour >= LATE_HOUR, 1), else_=0)),
        )
        .filter(done)
        .one()
    )

    return StatsSnapshot(
        total_sessions=int(total),
        completed_sessions=int(completed),
        completed_minutes=int(minutes),
        deep_sessions=int(deep),
        current_streak=streak.current_streak if streak else 0,
        best_streak=streak.best_streak if streak else 0,
        consecutive_goal_days=max((r[2] for r in runs), default=0),
        best_perfect_day=int(best_perfect_day),
        most_deep_in_day=int(most_deep),
        has_early_session=bool(early),
        has_late_session=bool(late),
    )


# ── evaluators ───────────────────────────────────────────────────────────


class Evaluation(NamedTuple):
    progress: int
    is_met: bool


def _counter(unit: str | None, snap: StatsSnapshot) -> int:
    if unit == "sessions":
        return snap.completed_sessions
    if unit == "deep_sessions":
        return snap.deep_sessions
    if unit == "minutes":
        return snap.completed_minutes
    return 0


def _capped(value: int, target: int) -> Evaluation:
    value = max(value, 0)
    return Evaluation(progress=min(value, target), is_met=value >= target)


def evaluate_threshold(defn, snap: StatsSnapshot) -> Evaluation:
    return _capped(_counter(defn.criteria_unit, snap), defn.criteria_value)


def evaluate_cumulative(defn, snap: StatsSnapshot) -> Evaluation:
    return _capped(_counter(defn.criteria_unit, snap), defn.criteria_value)


def evaluate_streak(defn, snap: StatsSnapshot) -> Evaluation:
    target = defn.criteria_value
    return Evaluation(
        progress=min(max(snap.current_streak, 0), target),
        is_met=max(snap.best_streak, snap.current_streak) >= target,
    )


def rate_sample_floor(achievement_id: str) -> int:
    return RATE_SAMPLE_FLOORS.get(achievement_id, DEFAULT_RATE_SAMPLE_FLOOR)


def evaluate_rate(defn, snap: StatsSnapshot) -> Evaluation:
    percent = min(max(int(snap.completion_rate), 0), 100)
    sample_ok = snap.completed_sessions >= rate_sample_floor(defn.id)
    # Integer comparison avoids float edge cases at exactly the threshold
    rate_ok = snap.completed_sessions * 100 >= defn.criteria_value * snap.total_sessions
    return Evaluation(progress=percent, is_met=sample_ok and rate_ok and snap.total_sessions > 0)


def _flag(hit: bool) -> Evaluation:
    return Evaluation(progress=1 if hit else 0, is_met=hit)


PATTERN_RULES: dict[str, Callable[[object, StatsSnapshot], Evaluation]] = {
    "morning_ritual": lambda d, s: _flag(s.has_early_session),
    "night_owl": lambda d, s: _flag(s.has_late_session),
    "perfect_day": lambda d, s: _capped(s.best_perfect_day, d.criteria_value),
    "perfect_week": lambda d, s: _capped(s.consecutive_goal_days, d.criteria_value),
    "deep_marathon": lambda d, s: _capped(s.most_deep_in_day, d.criteria_value),
}


def evaluate_pattern(defn, snap: StatsSnapshot) -> Evaluation:
    rule = PATTERN_RULES.get(defn.id)
    if rule is None:
        logger.warning("No pattern rule for achievement %s", defn.id)
        return Evaluation(0, False)
    return rule(defn, snap)


EVALUATORS: dict[str, Callable[[object, StatsSnapshot], Evaluation]] = {
    "threshold": evaluate_threshold,
    "cumulative": evaluate_cumulative,
    "streak": evaluate_streak,
    "rate": evaluate_rate,
    "pattern": evaluate_pattern,
}


def evaluate_definition(defn, snap: StatsSnapshot) -> Evaluation:
    """Dispatch on ``defn.criteria_type``.  Works on catalog entries and
    on ``AchievementDefinition`` rows alike."""
    evaluator = EVALUATORS.get(defn.criteria_type)
    if evaluator is None:
        logger.warning(
            "Unknown criteria type %r for achievement %s", defn.criteria_type, defn.id,
        )
        return Evaluation(0, False)
    return evaluator(defn, snap)


# ── engine ───────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ProgressSnapshot:
    """Detached copy of one ``achievement_progress`` row."""

    achievement_id: str
    current_progress: int
    target_value: int
    is_unlocked: bool
    unlocked_at: datetime | None
    progress_updated_at: datetime | None = None

    @classmethod
    def from_row(cls, row: AchievementProgress) -> "ProgressSnapshot":
        return cls(
            achievement_id=row.achievement_id,
            current_progress=row.current_progress,
            target_value=row.target_value,
            is_unlocked=bool(row.is_unlocked),
            unlocked_at=row.unlocked_at,
            progress_updated_at=row.progress_updated_at,
        )


@dataclass
class EvaluationResult:
    newly_unlocked: list[ProgressSnapshot] = field(default_factory=list)
    updated_progress: list[ProgressSnapshot] = field(default_factory=list)
    snapshot: StatsSnapshot = field(default_factory=StatsSnapshot)


class AchievementEngine:
    """Evaluates every seeded definition and persists progress.

    The only writer of ``achievement_progress``.
    """

    def __init__(self, clock: Callable[[], datetime] = datetime.now) -> None:
        self._clock = clock

    def evaluate(self, db: OrmSession) -> EvaluationResult:
        """Re-evaluate all locked achievements against full history."""
        db.flush()
        snap = compute_snapshot(db)
        now = self._clock()
        result = EvaluationResult(snapshot=snap)

        definitions = (
            db.query(AchievementDefinition)
            .order_by(AchievementDefinition.sort_order)
            .all()
        )
        rows = {p.achievement_id: p for p in db.query(AchievementProgress).all()}

        for defn in definitions:
            row = rows.get(defn.id)
            if row is None:
                row = AchievementProgress(
                    achievement_id=defn.id,
                    current_progress=0,
                    target_value=defn.criteria_value,
                    is_unlocked=False,
                    progress_updated_at=now,
                )
                db.add(row)
            if row.is_unlocked:
                continue

            outcome = evaluate_definition(defn, snap)
            changed = outcome.progress != row.current_progress
            if changed:
                row.current_progress = outcome.progress
                row.progress_updated_at = now

            if outcome.is_met:
                row.is_unlocked = True
                row.unlocked_at = now
                row.progress_updated_at = now
                result.newly_unlocked.append(ProgressSnapshot.from_row(row))
                logger.info("Unlocked achievement %s", defn.id)
            elif changed:
                result.updated_progress.append(ProgressSnapshot.from_row(row))

        db.flush()
        return result
