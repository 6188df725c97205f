"""Gamification package."""

from .achievements import (
    AchievementDef,
    AchievementRegistry,
    ACHIEVEMENTS,
    REGISTRY,
    CATEGORIES,
    CRITERIA_TYPES,
)
from .engine import (
    AchievementEngine,
    EvaluationResult,
    ProgressSnapshot,
    StatsSnapshot,
    compute_snapshot,
    evaluate_definition,
)

__all__ = [
    "AchievementDef",
    "AchievementRegistry",
    "ACHIEVEMENTS",
    "REGISTRY",
    "CATEGORIES",
    "CRITERIA_TYPES",
    "AchievementEngine",
    "EvaluationResult",
    "ProgressSnapshot",
    "StatsSnapshot",
    "compute_snapshot",
    "evaluate_definition",
]
