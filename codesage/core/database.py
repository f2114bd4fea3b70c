"""
Database configuration and connection management.

This module provides:
- SQLAlchemy engine and session management
- Connection pooling with sane defaults
- Test database support (SQLite in-memory via StaticPool)
- Table definitions for limiter profiles, security logs and snapshots
"""
from typing import Optional
from contextlib import contextmanager
import logging
from sqlalchemy import create_engine, MetaData, Table, Column, Integer, String, DateTime, Text, Index, text
from sqlalchemy.pool import QueuePool, StaticPool
from sqlalchemy.orm import sessionmaker
from sqlalchemy.sql import func
import os

from codesage.core.config import settings

logger = logging.getLogger(__name__)

# SQLAlchemy metadata for table definitions
metadata = MetaData()

# Connection pooling configuration
POOL_SIZE = 10
MAX_OVERFLOW = 20
POOL_TIMEOUT = 30
POOL_RECYCLE = 3600  # Recycle connections after 1 hour

# Global engine and session factory
_engine = None
_SessionLocal = None


def get_database_url() -> Optional[str]:
    """
    Get the database URL from settings or environment.

    For testing, use TEST_DATABASE_URL if available.
    """
    test_url = os.getenv("TEST_DATABASE_URL") or settings.TEST_DATABASE_URL
    if test_url:
        return test_url

    return os.getenv("DATABASE_URL") or settings.DATABASE_URL


def init_engine(database_url: Optional[str] = None):
    """
    Initialize the SQLAlchemy engine.

    Args:
        database_url: Optional override for DATABASE_URL
    """
    global _engine, _SessionLocal

    url = database_url or get_database_url()

    if not url:
        raise ValueError(
            "DATABASE_URL is not configured. "
            "Set DATABASE_URL in environment or .env file."
        )

    if url.startswith("sqlite"):
        # Single shared connection so in-memory databases survive across sessions
        _engine = create_engine(
            url,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
            echo=False,
        )
    else:
        _engine = create_engine(
            url,
            poolclass=QueuePool,
            pool_size=POOL_SIZE,
            max_overflow=MAX_OVERFLOW,
            pool_timeout=POOL_TIMEOUT,
            pool_recycle=POOL_RECYCLE,
            echo=False,  # Set to True for SQL query logging
        )

    # Create session factory
    _SessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=_engine
    )

    return _engine


def dispose_engine() -> None:
    """Dispose the current engine and forget the session factory."""
    global _engine, _SessionLocal
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionLocal = None


def get_engine():
    """Get the current SQLAlchemy engine."""
    global _engine
    if _engine is None:
        init_engine()
    return _engine


def get_session_factory():
    """Get the session factory."""
    global _SessionLocal
    if _SessionLocal is None:
        init_engine()
    return _SessionLocal


@contextmanager
def get_db_session():
    """
    Context manager for database sessions.

    Usage:
        with get_db_session() as session:
            session.execute(...)
    """
    SessionLocal = get_session_factory()
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def create_all_tables():
    """
    Create all tables defined in metadata.

    This is idempotent - tables that already exist will not be recreated.
    """
    engine = get_engine()
    metadata.create_all(bind=engine)


def check_connection() -> bool:
    """
    Check if database connection is available.

    Returns:
        True if connection successful, False otherwise
    """
    try:
        engine = get_engine()
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.warning(f"Database connection check failed: {e}")
        return False


# User profiles: authoritative limiter counters and subscription mirror
user_profiles = Table(
    'user_profiles',
    metadata,
    Column('id', String(100), primary_key=True),
    Column('email', String(320), nullable=True),
    Column('role', String(50), nullable=False, server_default='free_user'),
    Column('subscription_status', String(50), nullable=False, server_default='free'),
    Column('subscription_plan', String(50), nullable=True),
    Column('subscription_expires_at', DateTime(timezone=True), nullable=True),
    Column('daily_code_analysis_count', Integer, nullable=False, server_default='0'),
    Column('daily_problem_solving_count', Integer, nullable=False, server_default='0'),
    Column('daily_video_generation_count', Integer, nullable=False, server_default='0'),
    Column('total_analyses', Integer, nullable=False, server_default='0'),
    Column('total_problems_solved', Integer, nullable=False, server_default='0'),
    Column('total_videos_generated', Integer, nullable=False, server_default='0'),
    Column('last_active_at', DateTime(timezone=True), nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False),
    Index('idx_user_profiles_email', 'email'),
    Index('idx_user_profiles_role', 'role'),
    Index('idx_user_profiles_subscription_status', 'subscription_status'),
)

# Security audit trail (append-only)
user_security_logs = Table(
    'user_security_logs',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('user_id', String(100), nullable=False),
    Column('event_type', String(50), nullable=False),
    Column('event_description', Text, nullable=True),
    Column('ip_address', String(64), nullable=True),
    Column('user_agent', Text, nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Index('idx_user_security_logs_user_id', 'user_id'),
    Index('idx_user_security_logs_event_type', 'event_type'),
    Index('idx_user_security_logs_created_at', 'created_at'),
)

# Key-value store backing persisted subscription snapshots
local_snapshots = Table(
    'local_snapshots',
    metadata,
    Column('key', String(255), primary_key=True),
    Column('value', Text, nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False),
)
