"""
Pytest configuration and fixtures.

This file provides pytest-specific configuration and fixtures.
For standard test utilities, see tests/__init__.py
"""

import pytest

from core.config_loader import MatchingConfig, TransitionConfig
from tests import SQLITE_URL


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers", "db: marks tests as requiring a database engine (deselect with '-m \"not db\"')"
    )


@pytest.fixture
def sqlite_engine():
    """Fresh in-memory SQLite engine with all tables created."""
    from database.database import make_engine
    from database.init_db import init_db

    engine = make_engine(SQLITE_URL)
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(sqlite_engine):
    from database.database import make_session_factory
    return make_session_factory(sqlite_engine)


@pytest.fixture
def sql_repo(session_factory):
    from database.repository import SqlCircleRepository
    return SqlCircleRepository(session_factory)


@pytest.fixture
def memory_repo():
    from tests.mocks.in_memory_repository import InMemoryCircleRepository
    return InMemoryCircleRepository()


@pytest.fixture
def matching_config():
    return MatchingConfig(read_workers=1)


@pytest.fixture
def transition_config():
    return TransitionConfig()
