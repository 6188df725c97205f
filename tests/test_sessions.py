"""Tests for the session store: validation, derived keys, listing.

Covers:
- Period keys derived from started_at (ISO weeks across year ends)
- Validation failures write nothing
- Normalisation (preset enums, tz-aware datetimes, completed_at)
- The single abandoned -> completed transition
- Paged, filtered listing
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import pytest

from focusledger.database.models import (
    FocusSession, date_key_for, month_key_for, week_key_for,
)
from focusledger.errors import ValidationError
from focusledger.ledger import FocusLedger
from focusledger.presets import PRESET_MINUTES, Preset, max_minutes, parse_preset
from focusledger.sessions.store import SessionFilter, SessionStore
from focusledger.settings import Settings

from helpers import make_session


def _stored(store, session_id: str) -> FocusSession:
    with store.session() as db:
        row = db.get(FocusSession, session_id)
        db.expunge(row)
        return row


def _count(store) -> int:
    with store.session() as db:
        return SessionStore.count(db)


# ═══════════════════════════════════════════════════════════════════════
#  PRESETS AND KEYS
# ═══════════════════════════════════════════════════════════════════════


class TestPresets:
    def test_canonical_durations(self):
        assert PRESET_MINUTES == {Preset.QUICK: 15, Preset.STANDARD: 25, Preset.DEEP: 50}

    def test_parse_accepts_enum_and_string(self):
        assert parse_preset(Preset.DEEP) is Preset.DEEP
        assert parse_preset("quick") is Preset.QUICK

    def test_parse_rejects_unknown(self):
        with pytest.raises(ValueError):
            parse_preset("marathon")

    def test_max_minutes(self):
        assert max_minutes("standard") == 25


class TestPeriodKeys:
    def test_plain_date(self):
        moment = datetime(2024, 3, 5, 8, 15)
        assert date_key_for(moment) == "2024-03-05"
        assert week_key_for(moment) == "2024-W10"
        assert month_key_for(moment) == "2024-03"

    def test_iso_week_belongs_to_next_year(self):
        assert week_key_for(date(2024, 12, 30)) == "2025-W01"

    def test_iso_week_belongs_to_previous_year(self):
        assert week_key_for(date(2021, 1, 1)) == "2020-W53"

    def test_keys_written_on_record(self, ledger, store):
        ledger.record_session(make_session(date(2024, 12, 30), session_id="s1"))
        row = _stored(store, "s1")
        assert row.date_key == "2024-12-30"
        assert row.week_key == "2025-W01"
        assert row.month_key == "2024-12"

    def test_caller_supplied_keys_are_overwritten(self, ledger, store):
        session = make_session(date(2024, 3, 5), session_id="s1")
        session.date_key = "1999-01-01"
        session.week_key = "1999-W01"
        session.month_key = "1999-01"
        ledger.record_session(session)

        row = _stored(store, "s1")
        assert (row.date_key, row.week_key, row.month_key) == ("2024-03-05", "2024-W10", "2024-03")


# ═══════════════════════════════════════════════════════════════════════
#  VALIDATION
# ═══════════════════════════════════════════════════════════════════════


class TestValidation:
    def _rejects(self, ledger, store, session, field, **kwargs):
        with pytest.raises(ValidationError) as info:
            ledger.record_session(session, **kwargs)
        assert info.value.field == field
        assert _count(store) == 0

    def test_unknown_preset(self, ledger, store):
        session = make_session(date(2024, 3, 5))
        session.preset = "marathon"
        self._rejects(ledger, store, session, "preset")

    def test_ends_before_start(self, ledger, store):
        session = make_session(date(2024, 3, 5))
        session.ends_at = session.started_at - timedelta(minutes=1)
        self._rejects(ledger, store, session, "ends_at")

    def test_negative_minutes(self, ledger, store):
        self._rejects(ledger, store, make_session(date(2024, 3, 5), minutes=-1), "total_minutes")

    def test_overrun_rejected_by_default(self, ledger, store):
        self._rejects(ledger, store, make_session(date(2024, 3, 5), minutes=26), "total_minutes")

    def test_overrun_allowed_on_request(self, ledger, store):
        ledger.record_session(make_session(date(2024, 3, 5), minutes=40), allow_overrun=True)
        assert _count(store) == 1

    def test_abandoned_with_completed_at(self, ledger, store):
        session = make_session(date(2024, 3, 5), completed=False)
        session.completed_at = session.ends_at
        self._rejects(ledger, store, session, "completed_at")

    def test_duplicate_id(self, ledger, store):
        ledger.record_session(make_session(date(2024, 3, 5), session_id="dup"))
        with pytest.raises(ValidationError) as info:
            ledger.record_session(make_session(date(2024, 3, 6), session_id="dup"))
        assert info.value.field == "id"
        assert _count(store) == 1

    def test_validation_error_is_a_value_error(self, ledger):
        with pytest.raises(ValueError):
            ledger.record_session(make_session(date(2024, 3, 5), minutes=-5))

    def test_rejected_session_left_untouched(self, ledger):
        tz = timezone(timedelta(hours=2))
        session = make_session(datetime(2024, 3, 5, 10, 0, tzinfo=tz), minutes=99)
        session.id = None
        session.preset = Preset.STANDARD

        with pytest.raises(ValidationError):
            ledger.record_session(session)

        assert session.id is None
        assert session.preset is Preset.STANDARD
        assert session.started_at.tzinfo is tz
        assert session.completed_at is None


class TestNormalisation:
    def test_enum_preset_stored_as_id(self, ledger, store):
        session = make_session(date(2024, 3, 5), preset="deep", session_id="s1")
        session.preset = Preset.DEEP
        ledger.record_session(session)
        assert _stored(store, "s1").preset == "deep"

    def test_tz_aware_keeps_wall_clock(self, ledger, store):
        tz = timezone(timedelta(hours=-8))
        start = datetime(2024, 3, 5, 23, 30, tzinfo=tz)
        session = make_session(start, session_id="s1")
        ledger.record_session(session)

        row = _stored(store, "s1")
        assert row.started_at == datetime(2024, 3, 5, 23, 30)
        assert row.date_key == "2024-03-05"

    def test_completed_at_defaults_to_ends_at(self, ledger, store):
        ledger.record_session(make_session(date(2024, 3, 5), session_id="s1"))
        row = _stored(store, "s1")
        assert row.completed_at == row.ends_at

    def test_missing_id_is_generated(self, ledger, store):
        session = make_session(date(2024, 3, 5))
        session.id = None
        result = ledger.record_session(session)
        assert result.session_id
        assert _stored(store, result.session_id).preset == "standard"


# ═══════════════════════════════════════════════════════════════════════
#  COMPLETION TRANSITION
# ═══════════════════════════════════════════════════════════════════════


class TestComplete:
    def test_abandoned_becomes_completed(self, ledger, store):
        session = make_session(date(2024, 3, 5), completed=False, session_id="s1")
        ledger.record_session(session)
        done_at = datetime(2024, 3, 5, 10, 25)

        ledger.complete_session("s1", done_at, total_minutes=25)

        row = _stored(store, "s1")
        assert row.was_completed
        assert row.completed_at == done_at
        assert row.total_minutes == 25

    def test_completion_updates_the_day(self, ledger):
        ledger.record_session(make_session(date(2024, 3, 5), completed=False, session_id="s1"))
        assert ledger.get_daily_stats()[0].completed_sessions == 0

        result = ledger.complete_session("s1", datetime(2024, 3, 5, 10, 25))

        assert result.daily.completed_sessions == 1
        assert result.daily.met_goal
        assert result.streak.current_streak == 1

    def test_only_once(self, ledger):
        ledger.record_session(make_session(date(2024, 3, 5), completed=False, session_id="s1"))
        ledger.complete_session("s1", datetime(2024, 3, 5, 10, 25))
        with pytest.raises(ValidationError):
            ledger.complete_session("s1", datetime(2024, 3, 5, 10, 30))

    def test_completed_session_cannot_be_completed(self, ledger):
        ledger.record_session(make_session(date(2024, 3, 5), session_id="s1"))
        with pytest.raises(ValidationError):
            ledger.complete_session("s1", datetime(2024, 3, 5, 10, 25))

    def test_unknown_session(self, ledger):
        with pytest.raises(ValidationError):
            ledger.complete_session("missing", datetime(2024, 3, 5, 10, 25))

    def test_completion_before_start_rejected(self, ledger):
        ledger.record_session(make_session(date(2024, 3, 5), completed=False, session_id="s1"))
        with pytest.raises(ValidationError):
            ledger.complete_session("s1", datetime(2024, 3, 5, 9, 0))

    def test_overrun_on_completion_rejected(self, ledger):
        ledger.record_session(make_session(date(2024, 3, 5), completed=False, session_id="s1"))
        with pytest.raises(ValidationError):
            ledger.complete_session("s1", datetime(2024, 3, 5, 10, 25), total_minutes=90)


# ═══════════════════════════════════════════════════════════════════════
#  LISTING
# ═══════════════════════════════════════════════════════════════════════


class TestListing:
    @pytest.fixture
    def paged(self, qapp, store, clock):
        ledger = FocusLedger(store, Settings(daily_goal=1, page_size=2), clock=clock)
        first = date(2024, 3, 4)
        specs = [
            (0, "standard", True),
            (0, "quick", False),
            (1, "deep", True),
            (2, "standard", True),
            (3, "quick", True),
        ]
        for i, (offset, preset, completed) in enumerate(specs):
            ledger.record_session(make_session(
                first + timedelta(days=offset), preset=preset, completed=completed,
                hour=9 + i, session_id=f"s{i}",
            ))
        return ledger

    def test_page_size_must_be_positive(self):
        with pytest.raises(ValueError):
            SessionStore(page_size=0)

    def test_lists_everything_oldest_first(self, paged):
        assert [s.id for s in paged.list_sessions()] == ["s0", "s1", "s2", "s3", "s4"]

    def test_listing_is_lazy(self, paged):
        it = paged.list_sessions()
        assert next(it).id == "s0"

    def test_limit(self, paged):
        assert [s.id for s in paged.list_sessions(SessionFilter(limit=3))] == ["s0", "s1", "s2"]

    def test_filter_preset(self, paged):
        ids = [s.id for s in paged.list_sessions(SessionFilter(preset="quick"))]
        assert ids == ["s1", "s4"]

    def test_filter_unknown_preset(self, paged):
        with pytest.raises(ValidationError) as info:
            list(paged.list_sessions(SessionFilter(preset="bogus")))
        assert info.value.field == "preset"

    def test_filter_completed(self, paged):
        ids = [s.id for s in paged.list_sessions(SessionFilter(completed=False))]
        assert ids == ["s1"]

    def test_filter_date_range_inclusive(self, paged):
        flt = SessionFilter(start_date=date(2024, 3, 5), end_date=date(2024, 3, 6))
        assert [s.id for s in paged.list_sessions(flt)] == ["s2", "s3"]

    def test_same_start_time_ordered_by_id(self, ledger):
        start = datetime(2024, 3, 5, 10, 0)
        for sid in ("b", "a", "c"):
            ledger.record_session(make_session(start, session_id=sid))
        assert [s.id for s in ledger.list_sessions()] == ["a", "b", "c"]

    def test_listed_rows_are_detached(self, paged):
        rows = list(paged.list_sessions())
        assert rows[2].preset == "deep"
        assert rows[2].total_minutes == 50
