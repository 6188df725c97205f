"""FocusLedger — local persistence, statistics and achievements for a
focus timer."""

from .errors import (
    FocusLedgerError,
    ValidationError,
    SchemaError,
    ConsistencyError,
    StorageIOError,
)
from .presets import Preset, PRESET_MINUTES
from .database import FocusStore, FocusSession
from .sessions import SessionFilter
from .queries import QueryFacade, DailyStatRow, StatRow, NextAward
from .settings import Settings, load_settings, save_settings
from .ledger import FocusLedger, ProcessResult

__version__ = "0.1.0"

__all__ = [
    "FocusLedgerError",
    "ValidationError",
    "SchemaError",
    "ConsistencyError",
    "StorageIOError",
    "Preset",
    "PRESET_MINUTES",
    "FocusStore",
    "FocusSession",
    "SessionFilter",
    "QueryFacade",
    "DailyStatRow",
    "StatRow",
    "NextAward",
    "Settings",
    "load_settings",
    "save_settings",
    "FocusLedger",
    "ProcessResult",
]
