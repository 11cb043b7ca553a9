"""Database connection and session management."""

import logging

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from app.config import settings

logger = logging.getLogger(__name__)

# Resolve to absolute path to ensure consistency across different working directories
_db_path = settings.database_path.resolve()
DATABASE_URL = f"sqlite:///{_db_path}"

# Create engine with SQLite-specific configuration
engine = create_engine(
    DATABASE_URL,
    connect_args={"check_same_thread": False},  # Needed for SQLite multi-threading
    echo=False,
)

# Base class for all database models
Base = declarative_base()


def make_session_factory(bind: Engine) -> sessionmaker:
    """
    Build a session factory for an engine.

    Services receive a factory rather than a session so that work running on
    background threads opens its own sessions. Objects stay readable after
    commit so snapshots can be handed to other threads.

    Args:
        bind: Engine the sessions should use

    Returns:
        Configured sessionmaker
    """
    return sessionmaker(
        autocommit=False, autoflush=False, expire_on_commit=False, bind=bind
    )


# Session factory for the application engine
SessionLocal = make_session_factory(engine)


def init_db(bind: Engine = engine) -> None:
    """
    Initialize database by creating all tables.
    Should be called on application startup.

    Args:
        bind: Engine to create tables on (defaults to the application engine)
    """
    # Import models so they register with Base.metadata
    from app.db import models  # noqa: F401

    if bind is engine:
        _db_path.parent.mkdir(parents=True, exist_ok=True)

    Base.metadata.create_all(bind=bind)
    logger.info(f"Database tables ensured at {bind.url}")


__all__ = [
    "init_db",
    "make_session_factory",
    "Base",
    "SessionLocal",
    "engine",
]
