"""
Shared test fixtures.

- In-memory SQLite database with the full schema
- Deterministic clock starting at START_TIME
- Recording renderer / transport fakes
"""

import pytest

from core.clock import MockClock
from storage.database import Database, DatabaseConfig

from factories import START_TIME, RecordingRenderer, RecordingTransport


@pytest.fixture
def database():
    """Fresh in-memory database per test."""
    db = Database(DatabaseConfig(url="sqlite://"))
    db.create_all_tables()
    yield db
    db.dispose()


@pytest.fixture
def clock():
    return MockClock(START_TIME)


@pytest.fixture
def renderer():
    return RecordingRenderer()


@pytest.fixture
def transport():
    return RecordingTransport()
