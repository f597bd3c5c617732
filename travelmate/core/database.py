"""
Database configuration and connection management.

This module provides:
- SQLAlchemy engine and session management
- Connection pooling with sane defaults
- Test database support
- Table definitions for users, travel plans and match requests
"""
from typing import Optional
from contextlib import contextmanager
from sqlalchemy import create_engine, MetaData, Table, Column, Integer, String, DateTime, Date, Boolean, JSON, Text, Index, ForeignKey, CheckConstraint, text
from sqlalchemy.pool import QueuePool
from sqlalchemy.orm import sessionmaker
from sqlalchemy.sql import func
import logging
import os

from travelmate.core.config import settings


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

logger = logging.getLogger("travelmate")


def get_database_url() -> Optional[str]:
    """
    Get the database URL from settings or environment.
    
    For testing, use TEST_DATABASE_URL if available.
    """
    test_url = os.getenv("TEST_DATABASE_URL")
    if test_url:
        return test_url
    
    return settings.DATABASE_URL


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
        # SQLite manages its own pool; QueuePool sizing does not apply
        _engine = create_engine(url, echo=False, connect_args={"check_same_thread": False})
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
def get_db_session(session_factory=None):
    """
    Context manager for database sessions.
    
    Usage:
        with get_db_session() as session:
            session.execute(...)

    Commits on clean exit, rolls back on any exception.
    """
    SessionLocal = session_factory or get_session_factory()
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def create_all_tables(engine=None):
    """
    Create all tables defined in metadata.
    
    This is idempotent - tables that already exist will not be recreated.
    """
    metadata.create_all(bind=engine or get_engine())


def drop_all_tables(engine=None):
    """
    Drop all tables defined in metadata.
    
    WARNING: This is destructive! Only use in tests or development.
    """
    metadata.drop_all(bind=engine or get_engine())


def reset_database(engine=None):
    """
    Reset the database by dropping and recreating all tables.
    
    WARNING: This is destructive! Only use in tests.
    """
    drop_all_tables(engine)
    create_all_tables(engine)


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


# Users table (read by the user directory; owned by the profile service)
users = Table(
    'app_users',
    metadata,
    Column('user_id', String(100), primary_key=True),
    Column('display_name', Text, nullable=True),
    Column('email', String(320), nullable=True),
    Column('role', String(20), nullable=False, server_default='user'),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Index('idx_users_created_at', 'created_at'),
)

# Travel plans table. Only current_size / recruiting / version are written by matching.
travel_plans = Table(
    'travel_plans',
    metadata,
    Column('plan_id', String(100), primary_key=True),
    Column('owner_id', String(100), ForeignKey('app_users.user_id'), nullable=False, index=True),
    Column('destination', Text, nullable=False),
    Column('start_date', Date, nullable=False),
    Column('end_date', Date, nullable=False),
    Column('target_size', Integer, nullable=False),
    Column('current_size', Integer, nullable=False, server_default='1'),
    Column('recruiting', Boolean, nullable=False, server_default=text('true')),
    Column('style_tags', JSON, nullable=True),
    Column('description', Text, nullable=True),
    Column('version', Integer, nullable=False, server_default='0'),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    CheckConstraint('start_date <= end_date', name='ck_travel_plans_date_range'),
    CheckConstraint('target_size > 0', name='ck_travel_plans_target_positive'),
    CheckConstraint('current_size >= 0 AND current_size <= target_size', name='ck_travel_plans_current_bounds'),
    CheckConstraint('NOT (recruiting AND current_size >= target_size)', name='ck_travel_plans_full_not_recruiting'),
    # Composite index for latest-plan-of-user lookups
    Index('idx_travel_plans_owner_start', 'owner_id', 'start_date'),
    Index('idx_travel_plans_recruiting', 'recruiting'),
)

# Match requests table
match_requests = Table(
    'match_requests',
    metadata,
    Column('request_id', String(100), primary_key=True),
    Column('requester_id', String(100), ForeignKey('app_users.user_id'), nullable=False, index=True),
    Column('receiver_id', String(100), ForeignKey('app_users.user_id'), nullable=False, index=True),
    Column('plan_id', String(100), ForeignKey('travel_plans.plan_id'), nullable=False, index=True),
    Column('status', String(20), nullable=False, index=True),  # pending, accepted, rejected, cancelled
    Column('message', Text, nullable=True),
    Column('created_at', DateTime(timezone=True), nullable=False),
    Column('responded_at', DateTime(timezone=True), nullable=True),
    Column('version', Integer, nullable=False, server_default='0'),
    # Capacity merge record, set when accepted
    Column('requester_plan_id', String(100), nullable=True),
    Column('receiver_plan_id', String(100), nullable=True),
    Column('merged_headcount', Integer, nullable=True),
    Column('requester_was_recruiting', Boolean, nullable=True),
    Column('receiver_was_recruiting', Boolean, nullable=True),
    CheckConstraint('requester_id <> receiver_id', name='ck_match_requests_not_self'),
    CheckConstraint(
        "(status = 'pending' AND responded_at IS NULL) OR (status <> 'pending' AND responded_at IS NOT NULL)",
        name='ck_match_requests_responded_at',
    ),
    # At most one pending request per (requester, receiver)
    Index(
        'uq_match_requests_pending_pair',
        'requester_id',
        'receiver_id',
        unique=True,
        postgresql_where=text("status = 'pending'"),
        sqlite_where=text("status = 'pending'"),
    ),
    Index('idx_match_requests_receiver_status', 'receiver_id', 'status'),
    Index('idx_match_requests_requester_created', 'requester_id', 'created_at'),
)
