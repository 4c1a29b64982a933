"""
Engine and session lifecycle for the budgee store.

Production runs on PostgreSQL. A ``sqlite://`` URL is accepted so tests and
local runs can use an in-memory database.
"""
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool
from contextlib import contextmanager
from typing import Generator
import logging

from budgee.database.models import Base

logger = logging.getLogger(__name__)

# Set by init_db, cleared by close_db
engine = None
SessionLocal = None
_is_initialized = False


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _build_engine(database_url: str) -> Engine:
    if not database_url.startswith("sqlite"):
        # pre_ping drops connections PostgreSQL closed while idle
        return create_engine(database_url, pool_pre_ping=True)

    # In-memory sqlite lives as long as its connection, so every session shares one
    sqlite_engine = create_engine(
        database_url,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    event.listen(sqlite_engine, "connect", _enable_sqlite_foreign_keys)
    return sqlite_engine


def init_db(database_url: str):
    """
    Bind the module-level engine and session factory to ``database_url``
    and create any missing tables.
    """
    global engine, SessionLocal, _is_initialized

    logger.info(f"Connecting to {database_url.split('://', 1)[0]} store")
    engine = _build_engine(database_url)
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    Base.metadata.create_all(bind=engine)
    logger.info("Store schema is ready")
    _is_initialized = True


def ensure_db_initialized():
    """Call init_db from settings on first use."""
    if _is_initialized and SessionLocal is not None:
        return
    from budgee.config import settings
    if not settings.DATABASE_URL:
        raise RuntimeError("DATABASE_URL is not configured")
    init_db(settings.DATABASE_URL)


def get_db() -> Generator[Session, None, None]:
    """Per-request session for route dependencies; callers commit explicitly."""
    ensure_db_initialized()
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def get_db_context():
    """
    Unit-of-work session for jobs and background steps.

    The block's writes are committed when it exits normally and rolled back
    when it raises, so a sync run either lands its whole delta or none of it.
    """
    ensure_db_initialized()
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def close_db():
    global engine, SessionLocal, _is_initialized
    if engine:
        engine.dispose()
        logger.info("Store connections released")
    engine = None
    SessionLocal = None
    _is_initialized = False
