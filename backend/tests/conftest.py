# backend/tests/conftest.py
"""
Pytest configuration for the availability and pricing engine.

Every test gets a fresh sqlite in-memory database (StaticPool so the single
connection is shared), with all model tables created. Services commit for
real, so nothing leaks between tests because the engine is thrown away.
"""

import os
import sys

os.environ.setdefault("CI", "true")
os.environ.setdefault("REDIS_URL", "")

# Add the backend directory to Python path so imports work
backend_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if backend_dir not in sys.path:
    sys.path.insert(0, backend_dir)

from unittest.mock import Mock

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.database import Base

# Import models so Base.metadata is populated for create_all.
import app.models  # noqa: F401
from app.services.cache_service import CacheService


@pytest.fixture(scope="function")
def engine():
    test_engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        future=True,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(test_engine)
    yield test_engine
    Base.metadata.drop_all(test_engine)
    test_engine.dispose()


@pytest.fixture(scope="function")
def db(engine) -> Session:
    """Session bound to the per-test in-memory database."""
    TestSessionLocal = sessionmaker(bind=engine, autoflush=True, expire_on_commit=False, future=True)
    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def cache_service() -> CacheService:
    """Cache that never touches Redis."""
    return CacheService.in_memory()


@pytest.fixture
def mock_cache():
    """Mock cache service for testing."""
    mock = Mock()
    mock.get = Mock(return_value=None)
    mock.set = Mock(return_value=True)
    mock.delete = Mock(return_value=True)
    mock.delete_pattern = Mock(return_value=0)
    mock.mget = Mock(return_value={})
    return mock
