"""
Pytest configuration and shared fixtures for identity service tests.

Test Categories:
- unit: Fast tests with no external dependencies (< 100ms each)
- slow: Tests that spin up threads against a real SQLite file
- requires_db: Tests that open a SQLite database on disk

Run categories:
- pytest -m unit              # Fast unit tests only
- pytest -m "not slow"        # Skip slow tests
- pytest                      # All tests
"""
import os
import tempfile
from datetime import datetime, timedelta, timezone

import pytest

from tests.reset_singletons import reset_all_singletons


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: Fast unit tests")
    config.addinivalue_line("markers", "slow: Slow tests (threads, file locks)")
    config.addinivalue_line("markers", "requires_db: Requires a SQLite database on disk")


@pytest.fixture(autouse=True)
def reset_singletons_after_test():
    """Keep store / resolver singletons from leaking between tests."""
    yield
    reset_all_singletons()


@pytest.fixture
def temp_db():
    """Create a temporary database file for testing."""
    fd, path = tempfile.mkstemp(suffix=".db")
    os.close(fd)
    yield path
    if os.path.exists(path):
        os.unlink(path)


@pytest.fixture
def clock():
    """
    Deterministic clock: each call is one second after the previous one.

    Keeps created_at ordering stable for the in-memory store.
    """
    state = {"now": datetime(2024, 1, 1, tzinfo=timezone.utc)}

    def tick():
        state["now"] += timedelta(seconds=1)
        return state["now"]

    return tick


@pytest.fixture
def memory_store(clock):
    """Empty in-memory contact store."""
    from api.services.contact_store import InMemoryContactStore
    return InMemoryContactStore(clock=clock)


@pytest.fixture
def sqlite_store(temp_db):
    """ContactStore backed by a temporary SQLite file."""
    from api.services.contact_store import ContactStore
    store = ContactStore(db_path=temp_db, timeout=10.0)
    yield store
    store.close()


@pytest.fixture
def resolver(memory_store):
    """IdentityResolver over the in-memory store, exact matching."""
    from api.services.identity_resolver import IdentityResolver
    return IdentityResolver(store=memory_store, normalize=False)


@pytest.fixture
def mock_settings(temp_db, monkeypatch):
    """
    Mock settings for testing.

    Points the SQLite store at a temporary file to avoid touching real data.
    """
    from config.settings import Settings

    mock = Settings(db_path=temp_db, _env_file=None)

    monkeypatch.setattr("config.settings.settings", mock)
    monkeypatch.setattr("api.services.contact_store.settings", mock)
    monkeypatch.setattr("api.services.identity_resolver.settings", mock)
    return mock
