"""Database connection, schema management and session scopes."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator

from sqlalchemy import create_engine, event, func, inspect, select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker, Session as OrmSession
from sqlalchemy.pool import StaticPool

from . import migrations
from .models import (
    Base, AchievementDefinition, AchievementProgress, SchemaVersion, StreakState,
)
from ..errors import SchemaError, StorageIOError
from ..gamification.achievements import REGISTRY, AchievementDef

logger = logging.getLogger(__name__)

# ── paths ────────────────────────────────────────────────────────────────────

APP_SUPPORT_DIR = Path.home() / "Library" / "Application Support" / "FocusLedger"
DB_PATH = APP_SUPPORT_DIR / "focusledger.db"

_MEMORY_URLS = ("sqlite://", "sqlite:///:memory:")


def _install_sqlite_hooks(engine: Engine, *, wal: bool) -> None:
    """Make every transaction, DDL included, start with an explicit BEGIN.

    pysqlite only opens transactions implicitly before DML, which would
    let a half-applied migration step commit.  Handing transaction
    control to SQLAlchemy keeps ``ALTER TABLE`` inside the step.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_conn, connection_record):
        dbapi_conn.isolation_level = None
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        if wal:
            cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


class FocusStore:
    """Owns the SQLite engine and session factory for one database file.

    Construct one per database and pass it to whatever needs storage::

        store = FocusStore.for_path(DB_PATH)
        store.initialize()
        with store.session() as db:
            ...
        store.close()

    Tests use :meth:`in_memory` for an isolated throwaway database.
    """

    def __init__(self, url: str | None = None, *, echo: bool = False) -> None:
        self.url = url or f"sqlite:///{DB_PATH}"
        self._echo = echo
        self._engine: Engine | None = None
        self._factory: sessionmaker | None = None
        self.open()

    @classmethod
    def for_path(cls, path: str | Path, **kwargs) -> "FocusStore":
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        return cls(f"sqlite:///{path}", **kwargs)

    @classmethod
    def in_memory(cls, **kwargs) -> "FocusStore":
        return cls("sqlite://", **kwargs)

    # ── lifecycle ────────────────────────────────────────────────────────

    @property
    def is_memory(self) -> bool:
        return self.url in _MEMORY_URLS

    @property
    def is_open(self) -> bool:
        return self._engine is not None

    def open(self) -> None:
        if self._engine is not None:
            return
        kwargs: dict = {
            "connect_args": {"check_same_thread": False},
            "echo": self._echo,
        }
        if self.is_memory:
            # One shared connection, otherwise every checkout is a new empty db
            kwargs["poolclass"] = StaticPool
        self._engine = create_engine(self.url, **kwargs)
        _install_sqlite_hooks(self._engine, wal=not self.is_memory)
        self._factory = sessionmaker(bind=self._engine, expire_on_commit=False)

    def close(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
        self._engine = None
        self._factory = None

    def __enter__(self) -> "FocusStore":
        self.open()
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise StorageIOError(f"store for {self.url} is closed")
        return self._engine

    @contextmanager
    def session(self) -> Iterator[OrmSession]:
        """Yield a SQLAlchemy session; commit on success, rollback on error."""
        if self._factory is None:
            raise StorageIOError(f"store for {self.url} is closed")
        session: OrmSession = self._factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # ── schema ───────────────────────────────────────────────────────────

    def schema_version(self) -> int:
        """Highest recorded schema version, ``0`` for an empty database."""
        try:
            with self.engine.connect() as conn:
                return _recorded_version(conn)
        except SQLAlchemyError as exc:
            raise StorageIOError(f"could not read schema version: {exc}") from exc

    def initialize(self) -> int:
        """Create, migrate and seed the schema.  Safe on every start.

        Returns the schema version in effect afterwards.  Raises
        :class:`SchemaError` on any failure.
        """
        try:
            with self.engine.connect() as conn:
                current = _recorded_version(conn)
        except SQLAlchemyError as exc:
            raise SchemaError(f"could not inspect schema: {exc}") from exc

        if current > migrations.SCHEMA_VERSION:
            raise SchemaError(
                f"database schema v{current} is newer than supported "
                f"v{migrations.SCHEMA_VERSION}"
            )

        if current == 0:
            self._create_fresh()
        else:
            self._migrate(current)

        try:
            with self.session() as db:
                _seed_definitions(db, REGISTRY.all_items())
                _ensure_streak_row(db)
        except SQLAlchemyError as exc:
            raise SchemaError(f"could not seed definitions: {exc}") from exc

        return self.schema_version()

    def reset(self) -> int:
        """Drop every table and view and re-initialize from empty.

        Development and test flows only.
        """
        logger.warning("Resetting database at %s", self.url)
        try:
            with self.engine.begin() as conn:
                migrations.drop_views(conn)
                Base.metadata.drop_all(conn)
        except SQLAlchemyError as exc:
            raise SchemaError(f"could not reset schema: {exc}") from exc
        return self.initialize()

    def _create_fresh(self) -> None:
        logger.info("Creating schema v%d at %s", migrations.SCHEMA_VERSION, self.url)
        try:
            with self.engine.begin() as conn:
                Base.metadata.create_all(conn)
                migrations.create_views(conn)
                _record_version(
                    conn, migrations.SCHEMA_VERSION, migrations.INITIAL_DESCRIPTION,
                )
        except SQLAlchemyError as exc:
            raise SchemaError(f"could not create schema: {exc}") from exc

    def _migrate(self, current: int) -> None:
        try:
            with self.engine.begin() as conn:
                # Databases from before version tracking have no history table
                SchemaVersion.__table__.create(conn, checkfirst=True)
                if _recorded_version(conn, tracked_only=True) == 0:
                    _record_version(conn, current, "Existing schema adopted")
        except SQLAlchemyError as exc:
            raise SchemaError(f"could not prepare version history: {exc}") from exc

        for step in migrations.pending_migrations(current):
            logger.info(
                "Migrating schema v%d -> v%d: %s", current, step.version, step.description,
            )
            try:
                with self.engine.begin() as conn:
                    step.apply(conn)
                    _record_version(conn, step.version, step.description)
            except Exception as exc:
                raise SchemaError(
                    f"migration to v{step.version} failed: {exc}"
                ) from exc
            current = step.version

        try:
            with self.engine.begin() as conn:
                Base.metadata.create_all(conn)
        except SQLAlchemyError as exc:
            raise SchemaError(f"could not create missing tables: {exc}") from exc


# ── helpers ──────────────────────────────────────────────────────────────


def _recorded_version(conn: Connection, *, tracked_only: bool = False) -> int:
    tables = set(inspect(conn).get_table_names())
    legacy = 0 if tracked_only or "focus_sessions" not in tables else 1
    if "schema_versions" not in tables:
        return legacy
    recorded = conn.execute(select(func.max(SchemaVersion.version))).scalar()
    return recorded if recorded is not None else legacy


def _record_version(conn: Connection, version: int, description: str) -> None:
    conn.execute(
        sqlite_insert(SchemaVersion)
        .values(version=version, applied_at=datetime.now(), description=description)
        .on_conflict_do_nothing(index_elements=["version"])
    )


def _seed_definitions(db: OrmSession, catalog: list[AchievementDef]) -> None:
    """Upsert definitions by id; add progress rows only where missing."""
    rows = [a.as_row() for a in catalog]
    stmt = sqlite_insert(AchievementDefinition).values(rows)
    stmt = stmt.on_conflict_do_update(
        index_elements=["id"],
        set_={k: stmt.excluded[k] for k in rows[0] if k != "id"},
    )
    db.execute(stmt)

    now = datetime.now()
    db.execute(
        sqlite_insert(AchievementProgress)
        .values([
            {
                "achievement_id": a.id,
                "current_progress": 0,
                "target_value": a.criteria_value,
                "is_unlocked": False,
                "progress_updated_at": now,
            }
            for a in catalog
        ])
        .on_conflict_do_nothing(index_elements=["achievement_id"])
    )

    # Locked rows follow retuned targets; unlocked rows keep theirs
    targets = {a.id: a.criteria_value for a in catalog}
    locked = db.query(AchievementProgress).filter_by(is_unlocked=False).all()
    for row in locked:
        target = targets.get(row.achievement_id)
        if target is not None and row.target_value != target:
            row.target_value = target


def _ensure_streak_row(db: OrmSession) -> None:
    if db.get(StreakState, 1) is None:
        db.add(StreakState(id=1, current_streak=0, best_streak=0))
