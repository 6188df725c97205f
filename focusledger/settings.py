"""Ledger settings with JSON persistence.

Settings are stored at:
    ~/Library/Application Support/FocusLedger/settings.json

The daily goal is owned by the app's settings screen; the ledger only
reads it when aggregating a day.

Usage::

    settings = load_settings()
    settings.daily_goal = 6
    save_settings(settings)
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, asdict, fields
from pathlib import Path

logger = logging.getLogger(__name__)

# Same app-support directory as database/db.py
APP_SUPPORT_DIR = Path.home() / "Library" / "Application Support" / "FocusLedger"
SETTINGS_PATH = APP_SUPPORT_DIR / "settings.json"


@dataclass
class Settings:
    """Preferences the ledger consumes."""

    # ── goals ─────────────────────────────────────────────────────────
    daily_goal: int = 4                    # completed sessions per day

    # ── storage ───────────────────────────────────────────────────────
    database_path: str = str(APP_SUPPORT_DIR / "focusledger.db")
    page_size: int = 200                   # rows per listing page


def load_settings(path: Path | None = None) -> Settings:
    """Load settings from disk, falling back to defaults."""
    path = path or SETTINGS_PATH
    if not path.exists():
        return Settings()
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        logger.warning("Ignoring unreadable settings file %s: %s", path, exc)
        return Settings()
    if not isinstance(data, dict):
        logger.warning("Ignoring malformed settings file %s", path)
        return Settings()

    # Only use keys that exist in the dataclass
    valid_keys = {f.name for f in fields(Settings)}
    filtered = {k: v for k, v in data.items() if k in valid_keys}
    settings = Settings(**filtered)
    if not isinstance(settings.daily_goal, int) or settings.daily_goal < 1:
        logger.warning("Invalid daily_goal %r, using default", settings.daily_goal)
        settings.daily_goal = Settings.daily_goal
    return settings


def save_settings(settings: Settings, path: Path | None = None) -> None:
    """Write settings to disk as JSON."""
    path = path or SETTINGS_PATH
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        json.dumps(asdict(settings), indent=2) + "\n",
        encoding="utf-8",
    )
