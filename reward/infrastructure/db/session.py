"""
Database session management (SQLAlchemy)
"""
import logging
import time

import psycopg
from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from reward.config import get_settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """
    SQLAlchemy declarative base for all ORM models
    """
    pass


# Singleton engine and session factory
_engine = None
_SessionLocal = None


def get_engine():
    """Get or create SQLAlchemy engine (singleton)"""
    global _engine
    if _engine is None:
        settings = get_settings()
        url = settings.get_sqlalchemy_url()
        _engine = create_engine(url, pool_pre_ping=True)
    return _engine


def get_session_factory():
    """Get or create session factory (singleton)"""
    global _SessionLocal
    if _SessionLocal is None:
        engine = get_engine()
        _SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)
    return _SessionLocal


def check_db_connection() -> None:
    """
    Health check - PostgreSQL availability (raw psycopg)

    Raises:
        psycopg.OperationalError: if the database is unreachable
    """
    settings = get_settings()
    with psycopg.connect(settings.get_psycopg_url(), connect_timeout=3) as conn:
        with conn.cursor() as cur:
            cur.execute("SELECT 1;")
            cur.fetchone()


def wait_for_db(retries: int, interval_seconds: float, check=check_db_connection) -> bool:
    """
    Poll the database until it answers or retries run out.

    Returns:
        True once the database answered, False after `retries` failed attempts.
    """
    for attempt in range(1, retries + 1):
        try:
            check()
            logger.info("Database is ready (attempt %d/%d)", attempt, retries)
            return True
        except psycopg.OperationalError as e:
            logger.warning("Database not ready (attempt %d/%d): %s", attempt, retries, e)
        time.sleep(interval_seconds)
    return False
