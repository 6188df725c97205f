"""Achievement catalog for FocusLedger.

Catalog
-------
**Commitment** — honoring the ritual:

    first_focus      First Focus         1 session             threshold
    morning_ritual   Morning Ritual      session before 9 AM   pattern   (hidden)
    night_owl        Night Owl           session after 10 PM   pattern   (hidden)

**Consistency** — showing up day after day:

    streak_3 / 7 / 14 / 30 / 100 / 365                          streak
    (streak_365 "Year of Focus" is hidden)

**Completion** — finishing what you start:

    completion_rate_80 / 90 / 95   (min 10 / 25 / 50 sessions)   rate
    perfect_day      4+ sessions in one day, all finished        pattern
    perfect_week     daily goal met 7 days running               pattern

**Depth** — embracing deep work:

    first_deep                                                   threshold
    deep_10 / 50 / 100                                           cumulative
    deep_marathon    3 Deep sessions in one day                  pattern   (hidden)

**Milestone** — cumulative journey markers:

    sessions_10 / 50 / 100 / 500 / 1000                          cumulative
    hours_10 / 50 / 100   (stored as minutes)                    cumulative

Persistence
-----------
The catalog lives here, in code.  ``FocusStore.initialize`` upserts every
entry into ``achievement_definitions`` on each boot, so renamed or added
awards reach existing installs without touching their progress rows.

Registry
--------
``REGISTRY`` is a module-level singleton that wraps the catalog and
exposes ``all_items`` (seeded in sort order) and ``get``.
"""

from __future__ import annotations

from dataclasses import dataclass


CATEGORIES = ("commitment", "consistency", "completion", "depth", "milestone")
CRITERIA_TYPES = ("threshold", "pattern", "streak", "rate", "cumulative")


@dataclass(frozen=True)
class AchievementDef:
    id: str
    category: str
    name: str
    description: str
    icon: str                  # opaque symbol name for the presentation layer
    criteria_type: str
    criteria_value: int
    criteria_unit: str | None
    sort_order: int
    is_hidden: bool = False

    def as_row(self) -> dict:
        """Column values for ``achievement_definitions``."""
        return {
            "id": self.id,
            "category": self.category,
            "name": self.name,
            "description": self.description,
            "icon": self.icon,
            "criteria_type": self.criteria_type,
            "criteria_value": self.criteria_value,
            "criteria_unit": self.criteria_unit,
            "sort_order": self.sort_order,
            "is_hidden": self.is_hidden,
        }


ACHIEVEMENTS: list[AchievementDef] = [
    # ── commitment ──────────────────────────────────────────────────────
    AchievementDef(
        "first_focus", "commitment", "First Focus",
        "Complete your first focus session",
        "sparkle", "threshold", 1, "sessions", 100,
    ),
    AchievementDef(
        "morning_ritual", "commitment", "Morning Ritual",
        "Complete a session before 9 AM",
        "sunrise.fill", "pattern", 1, "sessions", 110, is_hidden=True,
    ),
    AchievementDef(
        "night_owl", "commitment", "Night Owl",
        "Complete a session after 10 PM",
        "moon.stars.fill", "pattern", 1, "sessions", 111, is_hidden=True,
    ),

    # ── consistency ─────────────────────────────────────────────────────
    AchievementDef(
        "streak_3", "consistency", "Getting Started",
        "3-day streak", "flame", "streak", 3, "days", 200,
    ),
    AchievementDef(
        "streak_7", "consistency", "Week Warrior",
        "7-day streak", "flame.fill", "streak", 7, "days", 210,
    ),
    AchievementDef(
        "streak_14", "consistency", "Fortnight Focus",
        "14-day streak", "flame.circle", "streak", 14, "days", 220,
    ),
    AchievementDef(
        "streak_30", "consistency", "Month Master",
        "30-day streak", "flame.circle.fill", "streak", 30, "days", 230,
    ),
    AchievementDef(
        "streak_100", "consistency", "Centurion",
        "100-day streak", "trophy.fill", "streak", 100, "days", 240,
    ),
    AchievementDef(
        "streak_365", "consistency", "Year of Focus",
        "365-day streak", "crown.fill", "streak", 365, "days", 250,
        is_hidden=True,
    ),

    # ── completion ──────────────────────────────────────────────────────
    AchievementDef(
        "completion_rate_80", "completion", "Reliable",
        "Maintain 80% completion rate (min 10 sessions)",
        "checkmark.seal", "rate", 80, "percent", 300,
    ),
    AchievementDef(
        "completion_rate_90", "completion", "Dedicated",
        "Maintain 90% completion rate (min 25 sessions)",
        "checkmark.seal.fill", "rate", 90, "percent", 310,
    ),
    AchievementDef(
        "completion_rate_95", "completion", "Perfectionist",
        "Maintain 95% completion rate (min 50 sessions)",
        "star.circle.fill", "rate", 95, "percent", 320,
    ),
    AchievementDef(
        "perfect_day", "completion", "Perfect Day",
        "Complete 4+ sessions in one day, all finished",
        "sun.max.fill", "pattern", 4, "sessions", 330,
    ),
    AchievementDef(
        "perfect_week", "completion", "Perfect Week",
        "Meet daily goal for 7 consecutive days",
        "calendar.badge.checkmark", "pattern", 7, "days", 340,
    ),

    # ── depth ───────────────────────────────────────────────────────────
    AchievementDef(
        "first_deep", "depth", "Deep Dive",
        "Complete your first 50-minute Deep session",
        "drop", "threshold", 1, "deep_sessions", 400,
    ),
    AchievementDef(
        "deep_10", "depth", "Deep Explorer",
        "Complete 10 Deep sessions",
        "drop.fill", "cumulative", 10, "deep_sessions", 410,
    ),
    AchievementDef(
        "deep_50", "depth", "Deep Diver",
        "Complete 50 Deep sessions",
        "drop.circle", "cumulative", 50, "deep_sessions", 420,
    ),
    AchievementDef(
        "deep_100", "depth", "Deep Master",
        "Complete 100 Deep sessions",
        "drop.circle.fill", "cumulative", 100, "deep_sessions", 430,
    ),
    AchievementDef(
        "deep_marathon", "depth", "Deep Marathon",
        "Complete 3 Deep sessions in one day",
        "figure.run", "pattern", 3, "deep_sessions", 440, is_hidden=True,
    ),

    # ── milestone ───────────────────────────────────────────────────────
    AchievementDef(
        "sessions_10", "milestone", "Getting Serious",
        "Complete 10 focus sessions",
        "leaf", "cumulative", 10, "sessions", 500,
    ),
    AchievementDef(
        "sessions_50", "milestone", "Building Momentum",
        "Complete 50 focus sessions",
        "leaf.fill", "cumulative", 50, "sessions", 510,
    ),
    AchievementDef(
        "sessions_100", "milestone", "Century Club",
        "Complete 100 focus sessions",
        "laurel.leading", "cumulative", 100, "sessions", 520,
    ),
    AchievementDef(
        "sessions_500", "milestone", "Focus Veteran",
        "Complete 500 focus sessions",
        "laurel.trailing", "cumulative", 500, "sessions", 530,
    ),
    AchievementDef(
        "sessions_1000", "milestone", "Focus Legend",
        "Complete 1,000 focus sessions",
        "medal.fill", "cumulative", 1000, "sessions", 540,
    ),
    AchievementDef(
        "hours_10", "milestone", "Ten Hours",
        "Accumulate 10 hours of focus time",
        "clock", "cumulative", 10 * 60, "minutes", 550,
    ),
    AchievementDef(
        "hours_50", "milestone", "Fifty Hours",
        "Accumulate 50 hours of focus time",
        "clock.fill", "cumulative", 50 * 60, "minutes", 560,
    ),
    AchievementDef(
        "hours_100", "milestone", "Century Hours",
        "Accumulate 100 hours of focus time",
        "clock.badge.checkmark", "cumulative", 100 * 60, "minutes", 570,
    ),
]


# ── registry ────────────────────────────────────────────────────────────


class AchievementRegistry:
    """Look-ups over the achievement catalog."""

    def __init__(self, catalog: list[AchievementDef] | None = None) -> None:
        self._items: dict[str, AchievementDef] = {
            a.id: a for a in (catalog if catalog is not None else ACHIEVEMENTS)
        }

    def all_items(self) -> list[AchievementDef]:
        return sorted(self._items.values(), key=lambda a: a.sort_order)

    def get(self, achievement_id: str) -> AchievementDef | None:
        return self._items.get(achievement_id)

    def __len__(self) -> int:
        return len(self._items)


# Module-level singleton
REGISTRY = AchievementRegistry()
