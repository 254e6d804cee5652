"""Database session management."""

from collections.abc import Callable, Generator
from contextlib import contextmanager
from typing import Any

import structlog
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from agentflow.config import get_settings

logger = structlog.get_logger(__name__)

# Cache for engines to avoid recreating them
_engines: dict[str, Engine] = {}
_session_factories: dict[str, sessionmaker] = {}


def get_db_url(db_url: str | None = None) -> str:
    """Resolve the database URL, falling back to settings."""
    return db_url or get_settings().database_url


def _engine_kwargs(db_url: str) -> dict[str, Any]:
    if db_url.startswith("sqlite"):
        kwargs: dict[str, Any] = {"connect_args": {"check_same_thread": False}}
        # An in-memory database lives in a single connection
        if db_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return kwargs
    return {"pool_size": 5, "max_overflow": 10, "pool_pre_ping": True}


def get_engine(db_url: str | None = None) -> Engine:
    """Get or create database engine for a specific URL."""
    url = get_db_url(db_url)

    if url not in _engines:
        logger.debug("creating_db_engine", url=url)
        _engines[url] = create_engine(url, echo=False, **_engine_kwargs(url))
    return _engines[url]


def get_session_factory(db_url: str | None = None) -> sessionmaker:
    """Get or create session factory for a specific URL."""
    url = get_db_url(db_url)

    if url not in _session_factories:
        engine = get_engine(url)
        _session_factories[url] = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    return _session_factories[url]


def init_db(db_url: str | None = None) -> None:
    """Initialize database tables (idempotent)."""
    from agentflow.database.models import Base

    engine = get_engine(db_url)
    Base.metadata.create_all(engine)
    logger.info("database_initialized", url=get_db_url(db_url))


@contextmanager
def get_db_session(
    db_url: str | None = None, session_factory: Callable[[], Session] | None = None
) -> Generator[Session, None, None]:
    """Context manager for database sessions.

    Commits on success, rolls back on any error and always closes.

    Usage:
        with get_db_session() as session:
            ...
    """
    factory = session_factory or get_session_factory(db_url)
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def cleanup_db_connections() -> None:
    """Clean up all database connections."""
    global _engines, _session_factories

    logger.info("cleaning_up_database_connections")

    try:
        for url, engine in _engines.items():
            logger.debug("disposing_database_engine", url=url)
            engine.dispose()

        _engines.clear()
        _session_factories.clear()

        logger.info("database_connections_cleaned_up")

    except Exception as e:
        logger.error("database_cleanup_failed", error=str(e), exc_info=True)
        raise
