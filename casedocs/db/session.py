"""
Database Session Management
===========================

Connection handling with SQLAlchemy. PostgreSQL in production via
DATABASE_URL, SQLite for development and tests.
"""

import os
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import QueuePool

from .models import Base

_engine = None
_engine_url = None

# Session factory is configured lazily (important for tests that set DATABASE_URL at runtime).
SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False)


def _current_database_url() -> str:
    return os.environ.get("DATABASE_URL", "sqlite:///./dev.db")


def _create_engine_for_url(database_url: str):
    if database_url.startswith("sqlite"):
        # Store calls run in worker threads (asyncio.to_thread)
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            echo=os.environ.get("SQL_ECHO", "false").lower() == "true",
        )

    return create_engine(
        database_url,
        poolclass=QueuePool,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,
        connect_args={
            "connect_timeout": int(os.environ.get("DB_CONNECT_TIMEOUT", "5")),
        },
        echo=os.environ.get("SQL_ECHO", "false").lower() == "true",
    )


def get_engine():
    """Get the SQLAlchemy engine"""
    global _engine, _engine_url
    database_url = _current_database_url()
    if _engine is None or _engine_url != database_url:
        _engine = _create_engine_for_url(database_url)
        _engine_url = database_url
        SessionLocal.configure(bind=_engine)
    return _engine


def reset_engine():
    """Reset engine/sessionmaker (primarily for tests)."""
    global _engine, _engine_url
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _engine_url = None
    SessionLocal.configure(bind=None)


def init_db():
    """Initialize database tables"""
    engine = get_engine()
    Base.metadata.create_all(bind=engine)


@contextmanager
def get_db_session() -> Generator[Session, None, None]:
    """
    Context manager for database session. Commits on success, rolls back on
    any exception.

    Usage:
        with get_db_session() as db:
            db.query(RequiredDocument).all()
    """
    get_engine()
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
