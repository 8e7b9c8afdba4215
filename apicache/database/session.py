"""
Database Session Management

Handles engine creation, session lifecycle and table initialization.
Works against PostgreSQL, MySQL or SQLite (the local development default).
"""

import logging
from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool

from apicache.utils.config import Settings, get_settings
from .models import Base

logger = logging.getLogger(__name__)

# =============================================================================
# DATABASE URL CONFIGURATION
# =============================================================================

def get_database_url(settings: Optional[Settings] = None) -> str:
    """
    Get database URL from settings.

    Priority:
    1. API_CACHE_DATABASE_URL / DATABASE_URL
    2. SQLite fallback for local development
    """
    settings = settings or get_settings()
    url = settings.database_url

    if url:
        # Some hosts hand out postgres:// but SQLAlchemy needs postgresql://
        if url.startswith("postgres://"):
            url = url.replace("postgres://", "postgresql://", 1)
        return url

    logger.warning(f"No DATABASE_URL found, using SQLite: {settings.sqlite_path}")
    return f"sqlite:///{settings.sqlite_path}"


# =============================================================================
# ENGINE CONFIGURATION
# =============================================================================

def create_db_engine(url: Optional[str] = None, settings: Optional[Settings] = None) -> Engine:
    """
    Create database engine with appropriate settings.

    PostgreSQL/MySQL: Connection pooling
    SQLite: Simpler settings, foreign key support
    """
    settings = settings or get_settings()
    url = url or get_database_url(settings)

    if url.startswith("sqlite"):
        engine = create_engine(
            url,
            connect_args={"check_same_thread": False},  # Allow multi-thread access
            echo=settings.sql_debug,
        )

        @event.listens_for(engine, "connect")
        def set_sqlite_pragma(dbapi_conn, connection_record):
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        logger.info("Created SQLite engine")
    else:
        engine = create_engine(
            url,
            poolclass=QueuePool,
            pool_size=5,
            max_overflow=10,
            pool_timeout=30,
            pool_recycle=1800,
            pool_pre_ping=True,
            echo=settings.sql_debug,
        )
        logger.info(f"Created {engine.dialect.name} engine with connection pooling")

    return engine


# Global engine (lazy initialization)
_engine = None


def get_engine() -> Engine:
    """Get or create the database engine."""
    global _engine
    if _engine is None:
        _engine = create_db_engine()
    return _engine


# =============================================================================
# SESSION MANAGEMENT
# =============================================================================

_SessionLocal = None


def _build_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(
        bind=engine,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,  # Don't expire objects after commit
    )


def get_session_factory(engine: Optional[Engine] = None) -> sessionmaker:
    """
    Get a session factory.

    The factory for the global engine is created once. An explicit engine
    gets a new factory that holds no module level reference to it.
    """
    global _SessionLocal
    if engine is not None:
        return _build_session_factory(engine)
    if _SessionLocal is None:
        _SessionLocal = _build_session_factory(get_engine())
    return _SessionLocal


@contextmanager
def get_db_context(engine: Optional[Engine] = None) -> Generator[Session, None, None]:
    """
    Context manager for database sessions.

    Usage:
        with get_db_context(engine) as db:
            db.add(item)
    """
    SessionLocal = get_session_factory(engine)
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


# =============================================================================
# DATABASE INITIALIZATION
# =============================================================================

def init_db(engine: Optional[Engine] = None, drop_all: bool = False) -> None:
    """
    Create the bookkeeping and processor item tables.

    Per-client response tables are created by
    CacheRepository.create_response_table().

    Args:
        drop_all: If True, drop all tables first (USE WITH CAUTION!)
    """
    engine = engine or get_engine()

    if drop_all:
        logger.warning("Dropping all database tables!")
        Base.metadata.drop_all(bind=engine)

    logger.info("Creating database tables...")
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables created successfully")


def check_db_connection(engine: Optional[Engine] = None) -> bool:
    """
    Check if database connection is working.

    Returns:
        True if connection successful, False otherwise
    """
    try:
        engine = engine or get_engine()
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        logger.info("Database connection verified")
        return True
    except Exception as e:
        logger.error(f"Database connection failed: {e}")
        return False
