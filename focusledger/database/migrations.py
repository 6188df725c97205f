"""Forward-only schema migrations.

Fresh databases are created directly at :data:`SCHEMA_VERSION` by
``create_all``.  Older databases replay every step whose version is above
the one recorded in ``schema_versions``, lowest first.  Each step runs in
its own transaction together with its version row, so a failed step
leaves the previous version intact.

History
-------
v1  Initial schema with achievements.
v2  ``daily_stats.completed_minutes``, backfilled from ``focus_sessions``.
v3  ``weekly_stats`` / ``monthly_stats`` / ``preset_stats`` views.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from sqlalchemy import inspect, text
from sqlalchemy.engine import Connection


SCHEMA_VERSION = 3
INITIAL_DESCRIPTION = "Initial schema with achievements and statistics views"


# ── views ────────────────────────────────────────────────────────────────

_PERIOD_COLUMNS = """
  COUNT(*) AS total_sessions,
  COALESCE(SUM(was_completed), 0) AS completed_sessions,
  COALESCE(SUM(total_minutes), 0) AS total_minutes,
  COALESCE(SUM(CASE WHEN was_completed = 1 THEN total_minutes ELSE 0 END), 0)
    AS focus_minutes,
  COUNT(DISTINCT date_key) AS active_days,
  ROUND(100.0 * SUM(was_completed) / NULLIF(COUNT(*), 0), 1) AS completion_rate
"""

VIEWS: dict[str, str] = {
    "weekly_stats": (
        f"SELECT week_key AS period_key, {_PERIOD_COLUMNS} "
        "FROM focus_sessions GROUP BY week_key"
    ),
    "monthly_stats": (
        f"SELECT month_key AS period_key, {_PERIOD_COLUMNS} "
        "FROM focus_sessions GROUP BY month_key"
    ),
    "preset_stats": (
        f"SELECT preset AS period_key, {_PERIOD_COLUMNS} "
        "FROM focus_sessions GROUP BY preset"
    ),
}


def create_views(conn: Connection) -> None:
    for name, select in VIEWS.items():
        conn.execute(text(f"CREATE VIEW IF NOT EXISTS {name} AS {select}"))


def drop_views(conn: Connection) -> None:
    for name in VIEWS:
        conn.execute(text(f"DROP VIEW IF EXISTS {name}"))


# ── steps ────────────────────────────────────────────────────────────────


def _add_completed_minutes(conn: Connection) -> None:
    columns = {c["name"] for c in inspect(conn).get_columns("daily_stats")}
    if "completed_minutes" not in columns:
        conn.execute(text(
            "ALTER TABLE daily_stats "
            "ADD COLUMN completed_minutes INTEGER NOT NULL DEFAULT 0"
        ))
    conn.execute(text(
        "UPDATE daily_stats SET completed_minutes = ("
        "  SELECT COALESCE(SUM(s.total_minutes), 0) FROM focus_sessions s"
        "  WHERE s.date_key = daily_stats.date_key AND s.was_completed = 1"
        ")"
    ))


@dataclass(frozen=True)
class Migration:
    version: int
    description: str
    apply: Callable[[Connection], None]


MIGRATIONS: list[Migration] = [
    Migration(2, "Track completed focus minutes per day", _add_completed_minutes),
    Migration(3, "Add weekly, monthly and preset statistics views", create_views),
]


def pending_migrations(
    current_version: int, migrations: list[Migration] | None = None,
) -> list[Migration]:
    """Steps above *current_version*, in ascending version order."""
    steps = MIGRATIONS if migrations is None else migrations
    return sorted(
        (m for m in steps if m.version > current_version),
        key=lambda m: m.version,
    )
