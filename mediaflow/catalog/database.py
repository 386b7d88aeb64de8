"""
Database connection and session management.

The engine is built lazily from settings so that tests and workers can
bind their own session factory.
"""

import logging
from contextlib import contextmanager
from typing import Callable, Generator, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker, Session

from mediaflow.config.settings import get_settings
from mediaflow.catalog.models import Base

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], Session]

_engine: Optional[Engine] = None
_session_factory: Optional[sessionmaker] = None


def build_engine(database_url: Optional[str] = None) -> Engine:
    """
    Create an engine with pooling suited to the configured database.

    SQLite URLs get no pool sizing; the pool options only apply to
    server databases.
    """
    settings = get_settings()
    url = database_url or settings.database_url
    if url.startswith("sqlite"):
        return create_engine(url, echo=settings.debug, future=True,
                             connect_args={"check_same_thread": False})
    return create_engine(
        url,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_pre_ping=True,
        pool_recycle=3600,
        echo=settings.debug,
        future=True,
    )


def get_engine() -> Engine:
    global _engine
    if _engine is None:
        _engine = build_engine()
    return _engine


def get_session_factory() -> sessionmaker:
    global _session_factory
    if _session_factory is None:
        _session_factory = sessionmaker(
            autocommit=False, autoflush=False, bind=get_engine(), future=True)
    return _session_factory


def init_db(engine: Optional[Engine] = None) -> None:
    """
    Create all tables.

    Production deployments run the alembic migrations instead.
    """
    Base.metadata.create_all(bind=engine or get_engine())


@contextmanager
def get_db_session(session_factory: Optional[SessionFactory] = None) -> Generator[Session, None, None]:
    """
    Context manager for one transaction.

    Commits on normal exit, rolls back and re-raises on any exception.

    Usage:
        with get_db_session() as db:
            db.query(MediaAsset).all()
    """
    db = (session_factory or get_session_factory())()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def check_database_connection(engine: Optional[Engine] = None) -> bool:
    """
    Check if database connection is healthy.

    Returns:
        True if connection is successful, False otherwise
    """
    try:
        with (engine or get_engine()).connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except SQLAlchemyError as e:
        logger.warning(f"Database health check failed: {e}")
        return False
