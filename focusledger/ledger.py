"""FocusLedger: the one entry point the app talks to.

One call = one transaction
--------------------------
``record_session`` stores the session, refreshes its day and the streak,
and re-evaluates every achievement inside a single SQLAlchemy session.
Any failure rolls the whole unit back; the caller sees one exception:

* :class:`ValidationError` — bad input, nothing was written.
* :class:`StorageIOError`  — the database failed, nothing was written.

Signals
-------
``FocusLedger`` is a :class:`QObject`.  Signals fire only after the
transaction commits, so slots always read committed state.

* **session_recorded(result)**        — :class:`ProcessResult`
* **streak_updated(current, best)**   — when the streak row changed
* **achievements_unlocked(progress)** — list of newly unlocked
  :class:`ProgressSnapshot`
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Callable, Iterable, Iterator

from PyQt6.QtCore import QObject, pyqtSignal
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session as OrmSession

from .database.db import FocusStore
from .database.models import FocusSession
from .errors import ConsistencyError, StorageIOError
from .gamification.engine import AchievementEngine, EvaluationResult, ProgressSnapshot
from .queries import DailyStatRow, NextAward, QueryFacade, StatRow
from .sessions.store import SessionFilter, SessionStore
from .settings import Settings, load_settings
from .stats.aggregates import AggregateMaintainer, StreakSnapshot

logger = logging.getLogger(__name__)


@dataclass
class ProcessResult:
    """Outcome of one write (record, complete, import or recompute)."""

    session_id: str | None
    streak: StreakSnapshot
    newly_unlocked: list[ProgressSnapshot] = field(default_factory=list)
    updated_progress: list[ProgressSnapshot] = field(default_factory=list)
    daily: DailyStatRow | None = None
    out_of_order: bool = False
    streak_changed: bool = False

    @property
    def unlocked_ids(self) -> list[str]:
        return [p.achievement_id for p in self.newly_unlocked]


class FocusLedger(QObject):
    """Session history, aggregates, streak and achievements over one store."""

    session_recorded = pyqtSignal(object)
    streak_updated = pyqtSignal(int, int)
    achievements_unlocked = pyqtSignal(object)

    def __init__(
        self,
        store: FocusStore,
        settings: Settings | None = None,
        *,
        clock: Callable[[], datetime] = datetime.now,
        parent: QObject | None = None,
    ) -> None:
        super().__init__(parent)
        self._store = store
        self.settings = settings or Settings()
        self.sessions = SessionStore(page_size=self.settings.page_size)
        self.aggregates = AggregateMaintainer(clock)
        self.achievements = AchievementEngine(clock)
        self.queries = QueryFacade(store)

    @classmethod
    def open(cls, settings: Settings | None = None, **kwargs) -> "FocusLedger":
        """Open (creating if needed) the on-disk database from settings.

        Derived state is verified once the schema is ready and rebuilt
        from the session table if it disagrees.
        """
        settings = settings or load_settings()
        ledger = cls(FocusStore.for_path(settings.database_path), settings, **kwargs)
        ledger.initialize()
        ledger.check_consistency()
        return ledger

    @property
    def store(self) -> FocusStore:
        return self._store

    # ── lifecycle ───────────────────────────────────────────────────────

    def initialize(self) -> int:
        version = self._store.initialize()
        logger.info("FocusLedger ready (schema v%d)", version)
        return version

    def reset(self) -> int:
        """Wipe everything.  Development and test flows only."""
        return self._store.reset()

    def close(self) -> None:
        self._store.close()

    # ── internals ───────────────────────────────────────────────────────

    @contextmanager
    def _transaction(self) -> Iterator[OrmSession]:
        try:
            with self._store.session() as db:
                yield db
        except SQLAlchemyError as exc:
            raise StorageIOError(f"database write failed: {exc}") from exc

    def _goal(self, daily_goal: int | None) -> int:
        return self.settings.daily_goal if daily_goal is None else daily_goal

    def _emit(self, result: ProcessResult) -> None:
        if result.session_id is not None:
            self.session_recorded.emit(result)
        if result.streak_changed:
            self.streak_updated.emit(
                result.streak.current_streak, result.streak.best_streak,
            )
        if result.newly_unlocked:
            self.achievements_unlocked.emit(list(result.newly_unlocked))

    def _after_write(self, db: OrmSession, session: FocusSession, goal: int) -> ProcessResult:
        update = self.aggregates.on_session_recorded(db, session, goal)
        evaluation: EvaluationResult = self.achievements.evaluate(db)
        return ProcessResult(
            session_id=session.id,
            streak=update.streak,
            newly_unlocked=evaluation.newly_unlocked,
            updated_progress=evaluation.updated_progress,
            daily=DailyStatRow.from_row(update.daily),
            out_of_order=update.out_of_order,
            streak_changed=update.streak_changed,
        )

    def _recompute(self, db: OrmSession, goal: int) -> ProcessResult:
        before = StreakSnapshot.from_row(self.aggregates.streak_row(db))
        days = self.aggregates.rebuild_daily_stats(db, goal)
        streak = self.aggregates.rebuild_streak(db)
        evaluation = self.achievements.evaluate(db)
        logger.info(
            "Recomputed %d day(s), streak %d, %d new unlock(s)",
            days, streak.current_streak, len(evaluation.newly_unlocked),
        )
        return ProcessResult(
            session_id=None,
            streak=streak,
            newly_unlocked=evaluation.newly_unlocked,
            updated_progress=evaluation.updated_progress,
            streak_changed=streak != before,
        )

    # ── writes ──────────────────────────────────────────────────────────

    def record_session(
        self,
        session: FocusSession,
        *,
        daily_goal: int | None = None,
        allow_overrun: bool = False,
    ) -> ProcessResult:
        """Persist a finished (completed or abandoned) session and update
        everything derived from it."""
        goal = self._goal(daily_goal)
        with self._transaction() as db:
            self.sessions.record(db, session, allow_overrun=allow_overrun)
            result = self._after_write(db, session, goal)
        self._emit(result)
        return result

    def complete_session(
        self,
        session_id: str,
        completed_at: datetime,
        total_minutes: int | None = None,
        *,
        daily_goal: int | None = None,
        allow_overrun: bool = False,
    ) -> ProcessResult:
        """Turn a previously abandoned session into a completed one."""
        goal = self._goal(daily_goal)
        with self._transaction() as db:
            row = self.sessions.complete(
                db, session_id, completed_at, total_minutes, allow_overrun=allow_overrun,
            )
            result = self._after_write(db, row, goal)
        self._emit(result)
        return result

    def import_sessions(
        self,
        sessions: Iterable[FocusSession],
        *,
        daily_goal: int | None = None,
        allow_overrun: bool = False,
    ) -> ProcessResult:
        """Backfill many sessions at once, then rebuild everything derived.

        All-or-nothing: one invalid session rejects the whole batch.
        """
        goal = self._goal(daily_goal)
        batch = list(sessions)
        with self._transaction() as db:
            before = SessionStore.count(db)
            for session in batch:
                self.sessions.record(db, session, allow_overrun=allow_overrun)
            after = SessionStore.count(db)
            if after - before != len(batch):
                raise ConsistencyError(
                    f"imported {len(batch)} sessions but the store grew by {after - before}"
                )
            result = self._recompute(db, goal)
        logger.info("Imported %d session(s)", len(batch))
        self._emit(result)
        return result

    def recompute_all(self, *, daily_goal: int | None = None) -> ProcessResult:
        """Rebuild daily stats, streak and achievement progress from the
        session table.  Existing unlocks are kept."""
        goal = self._goal(daily_goal)
        with self._transaction() as db:
            result = self._recompute(db, goal)
        self._emit(result)
        return result

    def check_consistency(self, *, daily_goal: int | None = None) -> bool:
        """Verify derived state; rebuild it if anything is off.

        Returns ``True`` when everything was consistent.
        """
        try:
            with self._transaction() as db:
                self.aggregates.verify(db)
        except ConsistencyError as exc:
            logger.warning(
                "Derived state inconsistent, rebuilding: %s", "; ".join(exc.problems),
            )
            self.recompute_all(daily_goal=daily_goal)
            return False
        return True

    # ── reads ───────────────────────────────────────────────────────────

    def list_sessions(self, flt: SessionFilter | None = None) -> Iterator[FocusSession]:
        """Lazily yield sessions matching *flt*, oldest first."""
        try:
            yield from self.sessions.iter_sessions(self._store.session, flt)
        except SQLAlchemyError as exc:
            raise StorageIOError(f"could not list sessions: {exc}") from exc

    def _read(self, fn, *args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except SQLAlchemyError as exc:
            raise StorageIOError(f"database read failed: {exc}") from exc

    def get_daily_stats(
        self, start: date | None = None, end: date | None = None, *, fill: bool = False,
    ) -> list[DailyStatRow]:
        return self._read(self.queries.get_daily_stats, start, end, fill=fill)

    def get_weekly_stats(self) -> list[StatRow]:
        return self._read(self.queries.get_weekly_stats)

    def get_monthly_stats(self) -> list[StatRow]:
        return self._read(self.queries.get_monthly_stats)

    def get_preset_stats(self) -> list[StatRow]:
        return self._read(self.queries.get_preset_stats)

    def get_streak(self, as_of: date | None = None) -> StreakSnapshot:
        return self._read(self.queries.get_streak, as_of)

    def get_achievement_progress(self, category: str | None = None):
        return self._read(self.queries.get_achievement_progress, category)

    def get_next_achievable_award(self) -> NextAward | None:
        return self._read(self.queries.get_next_achievable_award)

    def count_unlocked(self) -> int:
        return self._read(self.queries.count_unlocked)

    def count_visible_awards(self) -> int:
        return self._read(self.queries.count_visible_awards)
