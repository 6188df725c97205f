"""Append-only store of focus sessions, the source of truth.

Everything else (daily stats, streak, achievements) is derived from the
rows written here.  Sessions are never deleted; the only permitted edit
is the single abandoned → completed transition in :meth:`SessionStore.complete`.

Listing
-------
``iter_sessions`` is a generator ordered by ``(started_at, id)``.  Rows
are fetched in keyset pages of ``page_size``, each page in its own short
session, so large histories are never loaded in one go.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterator
from uuid import uuid4

from sqlalchemy import and_, func, or_
from sqlalchemy.orm import Session as OrmSession

from ..database.models import FocusSession, date_key_for
from ..errors import ValidationError
from ..presets import PRESET_IDS, Preset, max_minutes, parse_preset

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 200


@dataclass(frozen=True)
class SessionFilter:
    """Optional constraints for :meth:`SessionStore.iter_sessions`.

    ``start_date`` and ``end_date`` are inclusive calendar dates compared
    against each session's ``date_key``.
    """

    start_date: date | None = None
    end_date: date | None = None
    preset: str | None = None
    completed: bool | None = None
    limit: int | None = None


def _naive(moment: datetime) -> datetime:
    """Keep the wall-clock reading; SQLite stores no offsets."""
    return moment.replace(tzinfo=None) if moment.tzinfo is not None else moment


def _preset_or_error(value) -> Preset:
    try:
        return parse_preset(value)
    except ValueError:
        raise ValidationError(
            f"unknown preset {value!r}; expected one of {PRESET_IDS}", field="preset",
        ) from None


class SessionStore:
    """Validates and persists :class:`FocusSession` rows."""

    def __init__(self, page_size: int = DEFAULT_PAGE_SIZE) -> None:
        if page_size < 1:
            raise ValueError("page_size must be positive")
        self.page_size = page_size

    # ── validation ──────────────────────────────────────────────────────

    def validate(self, session: FocusSession, *, allow_overrun: bool = False) -> None:
        """Raise :class:`ValidationError` if *session* can't be recorded.

        Every check runs before anything is written back, so a rejected
        session is left as the caller built it.  An accepted one is
        normalised in place: preset enums become their string id,
        timezone-aware datetimes keep their wall-clock time, a session
        without an id gets a fresh one, and a completed session without
        ``completed_at`` gets ``ends_at``.
        """
        preset = _preset_or_error(session.preset)

        if session.started_at is None or session.ends_at is None:
            raise ValidationError("started_at and ends_at are required", field="started_at")
        started_at = _naive(session.started_at)
        ends_at = _naive(session.ends_at)
        if ends_at < started_at:
            raise ValidationError("ends_at is before started_at", field="ends_at")

        minutes = session.total_minutes
        if minutes is None or minutes < 0:
            raise ValidationError("total_minutes must be >= 0", field="total_minutes")
        if not allow_overrun and minutes > max_minutes(preset):
            raise ValidationError(
                f"total_minutes {minutes} exceeds the {preset.value} maximum "
                f"of {max_minutes(preset)}",
                field="total_minutes",
            )

        completed = bool(session.was_completed)
        completed_at = session.completed_at
        if completed:
            completed_at = _naive(completed_at or ends_at)
        elif completed_at is not None:
            raise ValidationError(
                "an abandoned session cannot have completed_at", field="completed_at",
            )

        if not session.id:
            session.id = uuid4().hex
        session.preset = preset.value
        session.started_at = started_at
        session.ends_at = ends_at
        session.was_completed = completed
        session.completed_at = completed_at

    # ── writes ──────────────────────────────────────────────────────────

    def record(
        self, db: OrmSession, session: FocusSession, *, allow_overrun: bool = False,
    ) -> FocusSession:
        """Validate and add *session*; the caller owns the transaction."""
        if session.id and db.get(FocusSession, session.id) is not None:
            raise ValidationError(
                f"session {session.id} is already recorded", field="id",
            )
        self.validate(session, allow_overrun=allow_overrun)
        session.assign_period_keys()
        db.add(session)
        db.flush()
        logger.debug("Recorded session %s on %s", session.id, session.date_key)
        return session

    def complete(
        self,
        db: OrmSession,
        session_id: str,
        completed_at: datetime,
        total_minutes: int | None = None,
        *,
        allow_overrun: bool = False,
    ) -> FocusSession:
        """Flip an abandoned session to completed.  Allowed exactly once."""
        row = db.get(FocusSession, session_id)
        if row is None:
            raise ValidationError(f"no session {session_id}", field="id")
        if row.was_completed:
            raise ValidationError(
                f"session {session_id} is already completed", field="was_completed",
            )

        completed_at = _naive(completed_at)
        if completed_at < row.started_at:
            raise ValidationError("completed_at is before started_at", field="completed_at")
        if total_minutes is not None:
            if total_minutes < 0:
                raise ValidationError("total_minutes must be >= 0", field="total_minutes")
            if not allow_overrun and total_minutes > max_minutes(row.preset):
                raise ValidationError(
                    f"total_minutes {total_minutes} exceeds the {row.preset} maximum",
                    field="total_minutes",
                )
            row.total_minutes = total_minutes

        row.was_completed = True
        row.completed_at = completed_at
        db.flush()
        logger.debug("Completed session %s", session_id)
        return row

    # ── reads ───────────────────────────────────────────────────────────

    @staticmethod
    def count(db: OrmSession) -> int:
        return db.query(func.count(FocusSession.id)).scalar() or 0

    @staticmethod
    def _filtered(db: OrmSession, flt: SessionFilter):
        query = db.query(FocusSession)
        if flt.start_date is not None:
            query = query.filter(FocusSession.date_key >= date_key_for(flt.start_date))
        if flt.end_date is not None:
            query = query.filter(FocusSession.date_key <= date_key_for(flt.end_date))
        if flt.preset is not None:
            query = query.filter(FocusSession.preset == _preset_or_error(flt.preset).value)
        if flt.completed is not None:
            query = query.filter(FocusSession.was_completed.is_(flt.completed))
        return query

    def iter_sessions(
        self, session_factory, flt: SessionFilter | None = None,
    ) -> Iterator[FocusSession]:
        """Yield matching sessions, oldest first, one page at a time.

        *session_factory* is a zero-argument callable returning a context
        manager that yields an ORM session (``FocusStore.session``).
        Yielded rows are detached snapshots.
        """
        flt = flt or SessionFilter()
        remaining = flt.limit
        cursor: tuple[datetime, str] | None = None

        while remaining is None or remaining > 0:
            size = self.page_size if remaining is None else min(self.page_size, remaining)
            with session_factory() as db:
                query = self._filtered(db, flt)
                if cursor is not None:
                    started, sid = cursor
                    query = query.filter(or_(
                        FocusSession.started_at > started,
                        and_(FocusSession.started_at == started, FocusSession.id > sid),
                    ))
                page = (
                    query.order_by(FocusSession.started_at, FocusSession.id)
                    .limit(size)
                    .all()
                )
                db.expunge_all()

            yield from page
            if len(page) < size:
                return
            if remaining is not None:
                remaining -= len(page)
            cursor = (page[-1].started_at, page[-1].id)
