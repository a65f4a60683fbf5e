"""
Database Connection Module for the Compliance Readiness Engine

Features:
- Connection pooling for Postgres (pool_size=5, max_overflow=10)
- SQLite support for local development
- Retry logic with exponential backoff for table creation and health checks
- Context manager support for sessions
"""

import logging
import os
import time
from contextlib import contextmanager
from typing import Generator

from dotenv import load_dotenv
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlmodel import Session, SQLModel, create_engine

# Load environment variables from .env
load_dotenv()

logger = logging.getLogger(__name__)

# Get database URL from environment
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./fsms.db")
DB_ECHO = os.getenv("DB_ECHO", "false").lower() == "true"


def build_engine(database_url: str = DATABASE_URL):
    """
    Create an engine for the given URL.

    Postgres gets a connection pool tuned for Neon; SQLite gets
    check_same_thread disabled so sessions can be used from worker threads.
    """
    if database_url.startswith("sqlite"):
        return create_engine(
            database_url,
            echo=DB_ECHO,
            connect_args={"check_same_thread": False},
        )

    return create_engine(
        database_url,
        echo=DB_ECHO,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,  # Verify connections before use
        pool_recycle=300,    # Recycle connections after 5 minutes
        connect_args={
            "sslmode": "require",
            "connect_timeout": 10,
        }
    )


engine = build_engine()


def retry_with_backoff(func, max_retries: int = 3, base_delay: float = 1.0):
    """
    Retry a function with exponential backoff.

    Args:
        func: Function to retry
        max_retries: Maximum number of retry attempts
        base_delay: Base delay in seconds (doubles each retry)

    Returns:
        Result of the function

    Raises:
        Last exception if all retries fail
    """
    last_exception = None

    for attempt in range(max_retries):
        try:
            return func()
        except OperationalError as e:
            last_exception = e
            if attempt < max_retries - 1:
                delay = base_delay * (2 ** attempt)
                logger.warning(
                    "Database connection failed (attempt %d/%d). Retrying in %ss...",
                    attempt + 1, max_retries, delay,
                )
                time.sleep(delay)
            else:
                logger.error("Database connection failed after %d attempts.", max_retries)

    raise last_exception


@contextmanager
def get_session() -> Generator[Session, None, None]:
    """
    Context manager for database sessions with automatic cleanup.

    Usage:
        with get_session() as session:
            SnapshotStore(session).capture(facility_id, readiness)
    """
    session = Session(engine)
    try:
        yield session
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency yielding one session per request."""
    with get_session() as session:
        yield session


def create_tables(bind=None):
    """
    Create all tables defined in SQLModel models.
    Safe to call multiple times - only creates tables that don't exist.
    """
    import models  # noqa: F401  (registers tables on SQLModel.metadata)

    def _create():
        SQLModel.metadata.create_all(bind or engine)
        return True

    return retry_with_backoff(_create)


def health_check(bind=None) -> dict:
    """
    Verify database connectivity and return status.

    Returns:
        dict with keys:
            - connected: bool
            - dialect: str (database dialect name)
            - error: str (if not connected)
    """
    target = bind or engine

    def _check():
        with Session(target) as session:
            session.execute(text("SELECT 1"))
            return {
                "connected": True,
                "dialect": target.dialect.name,
                "error": None
            }

    try:
        return retry_with_backoff(_check, max_retries=1)
    except Exception as e:
        logger.error("Database health check failed: %s", e)
        return {
            "connected": False,
            "dialect": target.dialect.name,
            "error": str(e)
        }
