"""Focus presets and their canonical durations."""

from __future__ import annotations

from enum import Enum


class Preset(Enum):
    QUICK = "quick"
    STANDARD = "standard"
    DEEP = "deep"


# ── constants ─────────────────────────────────────────────────────────────

PRESET_MINUTES: dict[Preset, int] = {
    Preset.QUICK: 15,
    Preset.STANDARD: 25,
    Preset.DEEP: 50,
}

PRESET_IDS: tuple[str, ...] = tuple(p.value for p in Preset)


def parse_preset(value: Preset | str) -> Preset:
    """Return the :class:`Preset` for *value*; raises ``ValueError``."""
    if isinstance(value, Preset):
        return value
    return Preset(value)


def max_minutes(preset: Preset | str) -> int:
    """Longest planned duration for *preset*, in minutes."""
    return PRESET_MINUTES[parse_preset(preset)]
