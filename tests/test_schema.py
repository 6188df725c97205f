"""Tests for schema creation, seeding and migrations.

Covers:
- Fresh initialize (version, seeded catalog, streak row)
- Idempotent re-initialize and seed upserts that keep progress
- Forward migration from v1 and from untracked legacy databases
- Failed migration steps leave the previous version intact
- Newer-than-supported databases, reset, closed stores
"""

from __future__ import annotations

from datetime import date, datetime

import pytest
from sqlalchemy import func, inspect, text

from focusledger.database import migrations
from focusledger.database.db import FocusStore
from focusledger.database.migrations import Migration, SCHEMA_VERSION, drop_views
from focusledger.database.models import (
    AchievementDefinition, AchievementProgress, DailyStat, FocusSession,
    SchemaVersion, StreakState,
)
from focusledger.errors import SchemaError, StorageIOError
from focusledger.gamification.achievements import REGISTRY
from focusledger.ledger import FocusLedger
from focusledger.settings import Settings

from helpers import FakeClock, make_session


def _count(store, model) -> int:
    with store.session() as db:
        return db.query(func.count()).select_from(model).scalar()


def _views(store) -> set[str]:
    with store.engine.connect() as conn:
        return set(inspect(conn).get_view_names())


def _columns(store, table: str) -> set[str]:
    with store.engine.connect() as conn:
        return {c["name"] for c in inspect(conn).get_columns(table)}


def _downgrade_to_v1(store, *, keep_history: bool = True) -> None:
    """Rewind a current database to the v1 layout."""
    with store.engine.begin() as conn:
        drop_views(conn)
        conn.execute(text("ALTER TABLE daily_stats DROP COLUMN completed_minutes"))
        conn.execute(text("DELETE FROM schema_versions"))
        if keep_history:
            conn.execute(text(
                "INSERT INTO schema_versions (version, applied_at, description) "
                "VALUES (1, '2024-01-01 00:00:00.000000', 'Initial schema')"
            ))
        else:
            conn.execute(text("DROP TABLE schema_versions"))


# ═══════════════════════════════════════════════════════════════════════
#  FRESH DATABASE
# ═══════════════════════════════════════════════════════════════════════


class TestFreshSchema:
    def test_records_current_version(self, store):
        assert store.schema_version() == SCHEMA_VERSION

    def test_empty_store_reports_version_zero(self):
        empty = FocusStore.in_memory()
        try:
            assert empty.schema_version() == 0
        finally:
            empty.close()

    def test_catalog_seeded(self, store):
        assert _count(store, AchievementDefinition) == len(REGISTRY)
        assert _count(store, AchievementProgress) == len(REGISTRY)

    def test_progress_rows_start_locked(self, store):
        with store.session() as db:
            rows = db.query(AchievementProgress).all()
            assert all(not r.is_unlocked for r in rows)
            assert all(r.current_progress == 0 for r in rows)
            assert all(r.unlocked_at is None for r in rows)

    def test_target_matches_catalog(self, store):
        with store.session() as db:
            for row in db.query(AchievementProgress):
                assert row.target_value == REGISTRY.get(row.achievement_id).criteria_value

    def test_streak_singleton_seeded(self, store):
        with store.session() as db:
            row = db.get(StreakState, 1)
            assert row.current_streak == 0
            assert row.best_streak == 0
            assert row.last_active_date is None

    def test_views_created(self, store):
        assert {"weekly_stats", "monthly_stats", "preset_stats"} <= _views(store)


# ═══════════════════════════════════════════════════════════════════════
#  IDEMPOTENCE AND SEEDING
# ═══════════════════════════════════════════════════════════════════════


class TestReinitialize:
    def test_initialize_twice_is_a_no_op(self, store):
        versions_before = _count(store, SchemaVersion)
        assert store.initialize() == SCHEMA_VERSION
        assert _count(store, SchemaVersion) == versions_before
        assert _count(store, AchievementDefinition) == len(REGISTRY)
        assert _count(store, AchievementProgress) == len(REGISTRY)
        assert _count(store, StreakState) == 1

    def test_reseed_keeps_progress(self, store):
        unlocked = datetime(2024, 2, 2, 9, 30)
        with store.session() as db:
            row = db.get(AchievementProgress, "first_focus")
            row.current_progress = 1
            row.is_unlocked = True
            row.unlocked_at = unlocked

        store.initialize()

        with store.session() as db:
            row = db.get(AchievementProgress, "first_focus")
            assert row.is_unlocked
            assert row.unlocked_at == unlocked
            assert row.current_progress == 1

    def test_reseed_restores_catalog_text(self, store):
        with store.session() as db:
            db.get(AchievementDefinition, "streak_7").name = "Renamed"

        store.initialize()

        with store.session() as db:
            assert db.get(AchievementDefinition, "streak_7").name == "Week Warrior"

    def test_reseed_retargets_locked_rows_only(self, store):
        with store.session() as db:
            db.get(AchievementProgress, "sessions_10").target_value = 99
            done = db.get(AchievementProgress, "sessions_50")
            done.target_value = 42
            done.is_unlocked = True
            done.unlocked_at = datetime(2024, 1, 1)

        store.initialize()

        with store.session() as db:
            assert db.get(AchievementProgress, "sessions_10").target_value == 10
            assert db.get(AchievementProgress, "sessions_50").target_value == 42

    def test_missing_progress_row_restored(self, store):
        with store.session() as db:
            db.delete(db.get(AchievementProgress, "night_owl"))
        assert _count(store, AchievementProgress) == len(REGISTRY) - 1

        store.initialize()
        assert _count(store, AchievementProgress) == len(REGISTRY)


# ═══════════════════════════════════════════════════════════════════════
#  MIGRATIONS
# ═══════════════════════════════════════════════════════════════════════


class TestMigrations:
    def test_pending_migrations_sorted_above_current(self):
        steps = [
            Migration(3, "c", lambda conn: None),
            Migration(2, "b", lambda conn: None),
        ]
        assert [m.version for m in migrations.pending_migrations(1, steps)] == [2, 3]
        assert [m.version for m in migrations.pending_migrations(2, steps)] == [3]
        assert migrations.pending_migrations(3, steps) == []

    def test_latest_step_is_current_version(self):
        assert max(m.version for m in migrations.MIGRATIONS) == SCHEMA_VERSION

    def test_migrates_v1_database(self, qapp, store):
        ledger = FocusLedger(store, Settings(daily_goal=1), clock=FakeClock())
        ledger.record_session(make_session(date(2024, 3, 4), minutes=25))
        ledger.record_session(make_session(date(2024, 3, 4), preset="quick", completed=False))
        _downgrade_to_v1(store)
        assert store.schema_version() == 1
        assert "completed_minutes" not in _columns(store, "daily_stats")

        assert store.initialize() == SCHEMA_VERSION

        assert "completed_minutes" in _columns(store, "daily_stats")
        assert {"weekly_stats", "monthly_stats", "preset_stats"} <= _views(store)
        with store.session() as db:
            versions = [v for (v,) in db.query(SchemaVersion.version).order_by(SchemaVersion.version)]
            assert versions == [1, 2, 3]
            assert db.get(DailyStat, "2024-03-04").completed_minutes == 25
            assert db.query(func.count(FocusSession.id)).scalar() == 2

    def test_adopts_untracked_legacy_database(self, store):
        _downgrade_to_v1(store, keep_history=False)
        assert store.schema_version() == 1

        assert store.initialize() == SCHEMA_VERSION
        with store.session() as db:
            rows = db.query(SchemaVersion).order_by(SchemaVersion.version).all()
            assert [r.version for r in rows] == [1, 2, 3]
            assert rows[0].description == "Existing schema adopted"

    def test_failed_step_leaves_previous_version(self, store, monkeypatch):
        _downgrade_to_v1(store)

        def broken(conn):
            conn.execute(text(
                "ALTER TABLE daily_stats "
                "ADD COLUMN completed_minutes INTEGER NOT NULL DEFAULT 0"
            ))
            raise RuntimeError("disk full")

        monkeypatch.setattr(migrations, "MIGRATIONS", [Migration(2, "broken", broken)])
        with pytest.raises(SchemaError, match="v2"):
            store.initialize()

        assert store.schema_version() == 1
        assert "completed_minutes" not in _columns(store, "daily_stats")

        monkeypatch.undo()
        assert store.initialize() == SCHEMA_VERSION
        assert "completed_minutes" in _columns(store, "daily_stats")

    def test_newer_database_is_rejected(self, store):
        with store.engine.begin() as conn:
            conn.execute(text(
                "INSERT INTO schema_versions (version, applied_at, description) "
                "VALUES (99, '2030-01-01 00:00:00.000000', 'from the future')"
            ))
        with pytest.raises(SchemaError, match="newer"):
            store.initialize()


# ═══════════════════════════════════════════════════════════════════════
#  LIFECYCLE
# ═══════════════════════════════════════════════════════════════════════


class TestLifecycle:
    def test_reset_wipes_sessions_and_reseeds(self, qapp, store):
        ledger = FocusLedger(store, Settings(daily_goal=1), clock=FakeClock())
        ledger.record_session(make_session(date(2024, 3, 4)))
        assert _count(store, FocusSession) == 1

        assert store.reset() == SCHEMA_VERSION
        assert _count(store, FocusSession) == 0
        assert _count(store, DailyStat) == 0
        assert _count(store, AchievementProgress) == len(REGISTRY)
        with store.session() as db:
            assert db.get(AchievementProgress, "first_focus").is_unlocked is False

    def test_closed_store_refuses_sessions(self):
        store = FocusStore.in_memory()
        store.close()
        assert not store.is_open
        with pytest.raises(StorageIOError):
            with store.session():
                pass
        with pytest.raises(StorageIOError):
            store.engine

    def test_context_manager_closes(self):
        with FocusStore.in_memory() as store:
            store.initialize()
            assert store.is_open
        assert not store.is_open

    def test_file_database_persists(self, tmp_path):
        path = tmp_path / "nested" / "focus.db"
        store = FocusStore.for_path(path)
        store.initialize()
        store.close()
        assert path.exists()

        reopened = FocusStore.for_path(path)
        try:
            assert not reopened.is_memory
            assert reopened.schema_version() == SCHEMA_VERSION
            assert reopened.initialize() == SCHEMA_VERSION
            with reopened.engine.connect() as conn:
                mode = conn.exec_driver_sql("PRAGMA journal_mode").scalar()
            assert mode.lower() == "wal"
        finally:
            reopened.close()
