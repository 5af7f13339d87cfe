"""
Pytest fixtures for testing
"""
from decimal import Decimal

import pytest
from sqlalchemy import create_engine, JSON
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.dialects.postgresql import JSONB

from reward.config import Settings
from reward.infrastructure.db.session import Base
from reward.infrastructure.db import models  # noqa: F401  (registers tables)


@pytest.fixture
def db_engine():
    """Create in-memory SQLite engine for tests, with JSONB→JSON mapping."""
    engine = create_engine("sqlite:///:memory:")
    # SQLite doesn't support JSONB, remap to JSON for tests
    for table in Base.metadata.tables.values():
        for col in table.columns:
            if isinstance(col.type, JSONB):
                col.type = JSON()
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(bind=db_engine, autoflush=False)


@pytest.fixture
def db_session(session_factory) -> Session:
    """Create database session for tests"""
    session = session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def settings():
    """Goal 20 km, 10 points/km, delta rounding"""
    return Settings(
        DATABASE_URL="sqlite:///:memory:",
        DAILY_GOAL_KM=Decimal("20"),
        POINTS_PER_KM=Decimal("10"),
        _env_file=None,
    )


@pytest.fixture
def sample_user_id():
    return "user-1"
