"""
Datastore engine and table definitions for the SQL insight store.

The engine is created lazily from DATABASE_URL (TEST_DATABASE_URL wins when
set). SQLite URLs get one shared connection so an in-memory database lives
as long as the engine does.
"""
import os
from contextlib import contextmanager
from typing import Optional

from sqlalchemy import create_engine, MetaData, Table, Column, Integer, String, DateTime, Boolean, JSON, Text, Float, Index, true
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool
from sqlalchemy.sql import func

from opsight.core.config import settings


metadata = MetaData()

POOL_SIZE = 10
MAX_OVERFLOW = 20
POOL_TIMEOUT = 30
POOL_RECYCLE = 3600

_engine: Optional[Engine] = None
_SessionLocal = None


def init_engine(database_url: Optional[str] = None) -> Engine:
    global _engine, _SessionLocal

    url = database_url or os.getenv("TEST_DATABASE_URL") or settings.DATABASE_URL
    if not url:
        raise ValueError("DATABASE_URL is not configured")

    if url.startswith("sqlite"):
        _engine = create_engine(url, poolclass=StaticPool, connect_args={"check_same_thread": False})
    else:
        _engine = create_engine(
            url,
            poolclass=QueuePool,
            pool_size=POOL_SIZE,
            max_overflow=MAX_OVERFLOW,
            pool_timeout=POOL_TIMEOUT,
            pool_recycle=POOL_RECYCLE,
            pool_pre_ping=True,
        )
    _SessionLocal = sessionmaker(autoflush=False, bind=_engine)
    return _engine


def dispose_engine() -> None:
    """Drop the cached engine (tests switch databases between modules)."""
    global _engine, _SessionLocal
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionLocal = None


def get_engine() -> Engine:
    if _engine is None:
        init_engine()
    return _engine


@contextmanager
def get_db_session():
    """One unit of work: commit on clean exit, roll back on any exception."""
    if _SessionLocal is None:
        init_engine()
    session = _SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def create_all_tables() -> None:
    """Idempotent; existing tables are left alone."""
    metadata.create_all(bind=get_engine())


def check_connection() -> bool:
    try:
        with get_engine().connect() as conn:
            conn.exec_driver_sql("SELECT 1")
        return True
    except Exception:
        return False


# ============================================================================
# Table definitions
# ============================================================================

users = Table(
    'app_users',
    metadata,
    Column('id', String(100), primary_key=True),
    Column('organization_id', String(100), nullable=False, index=True),
    Column('name', String(200), nullable=False),
    Column('email', String(320), nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
)

projects = Table(
    'projects',
    metadata,
    Column('id', String(100), primary_key=True),
    Column('organization_id', String(100), nullable=False),
    Column('name', String(200), nullable=False),
    Column('key', String(20), nullable=False),
    Column('description', Text, nullable=True),
    Column('status', String(20), nullable=False, server_default='active'),
    Column('start_date', DateTime(timezone=True), nullable=True),
    Column('target_date', DateTime(timezone=True), nullable=True),
    Column('created_at', DateTime(timezone=True), nullable=False),
    # Composite index for "first active project" lookups
    Index('idx_projects_org_status_created', 'organization_id', 'status', 'created_at'),
)

tasks = Table(
    'tasks',
    metadata,
    Column('id', String(100), primary_key=True),
    Column('organization_id', String(100), nullable=False),
    Column('project_id', String(100), nullable=True, index=True),
    Column('title', Text, nullable=False),
    Column('description', Text, nullable=True),
    Column('status', String(20), nullable=False),
    Column('priority', String(20), nullable=False),
    Column('assignee_id', String(100), nullable=True, index=True),
    Column('labels', JSON, nullable=False),
    Column('blocked_by_ids', JSON, nullable=False),
    Column('created_at', DateTime(timezone=True), nullable=False),
    Column('updated_at', DateTime(timezone=True), nullable=False),
    Column('completed_at', DateTime(timezone=True), nullable=True),
    Index('idx_tasks_org_status', 'organization_id', 'status'),
)

pull_requests = Table(
    'pull_requests',
    metadata,
    Column('id', String(100), primary_key=True),
    Column('organization_id', String(100), nullable=False, index=True),
    Column('project_id', String(100), nullable=True),
    Column('number', Integer, nullable=False),
    Column('title', Text, nullable=False),
    Column('status', String(20), nullable=False),
    Column('ci_status', String(20), nullable=False),
    Column('unresolved_comments', Integer, nullable=False, server_default='0'),
    Column('author_id', String(100), nullable=True),
    Column('last_activity_at', DateTime(timezone=True), nullable=True),
    Column('created_at', DateTime(timezone=True), nullable=False),
)

bottlenecks = Table(
    'bottlenecks',
    metadata,
    Column('id', String(100), primary_key=True),
    Column('organization_id', String(100), nullable=False),
    Column('project_id', String(100), nullable=True, index=True),
    Column('type', String(30), nullable=False),
    Column('severity', String(20), nullable=False),
    Column('status', String(20), nullable=False, server_default='active'),
    Column('title', Text, nullable=False),
    Column('description', Text, nullable=True),
    Column('impact', Text, nullable=True),
    Column('task_id', String(100), nullable=True),
    Column('pull_request_id', String(100), nullable=True),
    Column('created_at', DateTime(timezone=True), nullable=False),
    Column('resolved_at', DateTime(timezone=True), nullable=True),
    Index('idx_bottlenecks_org_status', 'organization_id', 'status'),
)

predictions = Table(
    'predictions',
    metadata,
    Column('id', String(100), primary_key=True),
    Column('organization_id', String(100), nullable=False),
    Column('project_id', String(100), nullable=True, index=True),
    Column('type', String(30), nullable=False),
    Column('confidence', Float, nullable=False),
    Column('value', JSON, nullable=False),
    Column('reasoning', Text, nullable=True),
    Column('reasoning_source', String(20), nullable=False),
    Column('is_active', Boolean, nullable=False, default=True),
    Column('scope_key', String(200), nullable=True),
    Column('valid_until', DateTime(timezone=True), nullable=True),
    Column('created_at', DateTime(timezone=True), nullable=False),
    Index('idx_predictions_org_type_active', 'organization_id', 'type', 'is_active'),
)

# At most one active prediction per (type, scope_key); NULL scopes are never equal
Index(
    'uq_predictions_active_scope',
    predictions.c.type,
    predictions.c.scope_key,
    unique=True,
    postgresql_where=predictions.c.is_active == true(),
    sqlite_where=predictions.c.is_active == true(),
)

behavioral_metrics = Table(
    'behavioral_metrics',
    metadata,
    Column('id', String(100), primary_key=True),
    Column('organization_id', String(100), nullable=False),
    Column('user_id', String(100), nullable=False),
    Column('date', DateTime(timezone=True), nullable=False),
    Column('message_count', Integer, nullable=False, server_default='0'),
    Column('active_hours_start', Integer, nullable=True),
    Column('active_hours_end', Integer, nullable=True),
    Column('weekend_activity', Boolean, nullable=False, default=False),
    Column('collaboration_score', Float, nullable=True),
    # Composite index for the 14-day window read per user
    Index('idx_behavioral_metrics_user_date', 'user_id', 'date'),
)
