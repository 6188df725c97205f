"""Shared pytest fixtures for FocusLedger tests."""

import sys
import pytest

from PyQt6.QtCore import QCoreApplication

from focusledger.database.db import FocusStore
from focusledger.ledger import FocusLedger
from focusledger.settings import Settings

from helpers import FakeClock


@pytest.fixture(scope="session")
def qapp():
    """A single QCoreApplication instance shared across the entire test run."""
    app = QCoreApplication.instance() or QCoreApplication(sys.argv)
    yield app


@pytest.fixture
def store():
    """A fresh, initialized in-memory database."""
    store = FocusStore.in_memory()
    store.initialize()
    yield store
    store.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def ledger(qapp, store, clock):
    """FocusLedger over the in-memory store, daily goal of one session."""
    return FocusLedger(store, Settings(daily_goal=1), clock=clock)
