"""
Database schema and connection management.

SQLAlchemy models for legislative sessions, bills and sync jobs.  SQLite by
default; any SQLAlchemy URL works.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
    create_engine,
)
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, declarative_base, relationship, sessionmaker

from .config import DATABASE_URL
from .models import JobStatus

LOGGER = logging.getLogger(__name__)

Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp (SQLite drops tzinfo anyway)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class LegislativeSession(Base):
    """One legislative session, e.g. 89R."""

    __tablename__ = "legislative_sessions"

    id = Column(Integer, primary_key=True)
    code = Column(String(16), nullable=False, unique=True)  # 89R
    name = Column(String(128), nullable=False)
    start_date = Column(Date, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    bills = relationship("Bill", back_populates="legislative_session")


class Bill(Base):
    """Stored bill, keyed by its natural identifier."""

    __tablename__ = "bills"

    id = Column(Integer, primary_key=True)
    bill_id = Column(String(16), nullable=False, unique=True)  # "HB 1"
    bill_type = Column(String(8), nullable=False, index=True)
    bill_number = Column(Integer, nullable=False)
    session_id = Column(Integer, ForeignKey("legislative_sessions.id"), nullable=False)
    filename = Column(String(32), nullable=False)  # hb1.txt
    description = Column(Text, nullable=False)
    content = Column(Text, nullable=True)
    authors = Column(JSON, nullable=False, default=list)
    coauthors = Column(JSON, nullable=False, default=list)
    sponsors = Column(JSON, nullable=False, default=list)
    cosponsors = Column(JSON, nullable=False, default=list)
    subjects = Column(JSON, nullable=False, default=list)
    committees = Column(JSON, nullable=False, default=list)
    actions = Column(JSON, nullable=False, default=list)
    status = Column(String(32), nullable=False)
    last_action = Column(Text, nullable=True)
    last_action_date = Column(Date, nullable=True)
    last_update_remote = Column(DateTime, nullable=True)
    text_url = Column(String(512), nullable=True)
    committee_name = Column(String(256), nullable=True)
    committee_status = Column(String(64), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)

    legislative_session = relationship("LegislativeSession", back_populates="bills")


class SyncJob(Base):
    """Persistent state of one sync pass; the only source of truth between calls."""

    __tablename__ = "sync_jobs"

    id = Column(String(36), primary_key=True)  # uuid4
    status = Column(
        Enum(JobStatus, name="sync_job_status", native_enum=False, length=16),
        nullable=False,
    )
    session_code = Column(String(16), nullable=False)
    session_name = Column(String(128), nullable=False)
    bill_types = Column(JSON, nullable=False)  # ["HB", "SB"]

    # Cursor: next identifier to attempt
    current_type = Column(String(8), nullable=True)
    next_number = Column(Integer, nullable=False, default=1)
    type_starts = Column(JSON, nullable=False, default=dict)  # {"HB": 1}
    type_bounds = Column(JSON, nullable=False, default=dict)  # {"HB": 4732}; resolved lazily
    completed_types = Column(JSON, nullable=False, default=list)

    processed = Column(Integer, nullable=False, default=0)
    created = Column(Integer, nullable=False, default=0)
    updated = Column(Integer, nullable=False, default=0)
    skipped_not_found = Column(Integer, nullable=False, default=0)
    errors = Column(Integer, nullable=False, default=0)
    recent_failures = Column(JSON, nullable=False, default=list)
    last_error = Column(Text, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    started_at = Column(DateTime, nullable=True)
    paused_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    last_activity_at = Column(DateTime, nullable=True)

    # 1 while non-terminal, NULL once terminal.  The unique index lets the
    # database itself reject a second active job.
    active_slot = Column(Integer, nullable=True, unique=True)


# ── Connection management ────────────────────────────────────────────────────


def create_db_engine(url: str = DATABASE_URL) -> Engine:
    """Create an engine, making the parent directory of a SQLite file if needed."""
    parsed = make_url(url)
    connect_args: dict = {}
    if parsed.drivername.startswith("sqlite"):
        # The FastAPI app serves requests from a threadpool.
        connect_args["check_same_thread"] = False
        if parsed.database and parsed.database != ":memory:":
            Path(parsed.database).parent.mkdir(parents=True, exist_ok=True)
    return create_engine(url, connect_args=connect_args)


def init_database(url_or_engine: str | Engine = DATABASE_URL) -> Engine:
    """
    Initialize database and create tables.

    Args:
        url_or_engine: SQLAlchemy URL or an existing engine

    Returns:
        The engine the tables were created on
    """
    engine = (
        create_db_engine(url_or_engine) if isinstance(url_or_engine, str) else url_or_engine
    )
    Base.metadata.create_all(engine)
    LOGGER.debug("Database ready at %s", engine.url.render_as_string(hide_password=True))
    return engine


def get_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, expire_on_commit=False)


@contextmanager
def session_scope(factory: sessionmaker) -> Iterator[Session]:
    """Transactional scope: commit on success, roll back on any exception."""
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
