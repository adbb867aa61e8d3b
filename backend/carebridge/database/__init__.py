"""
Database engine, session factory, and metadata shared across the application.
"""

from __future__ import annotations

from contextlib import contextmanager
import logging
from typing import Any, Callable, Generator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeMeta, Session, declarative_base, sessionmaker

from carebridge.core.config import settings

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], Session]

_POSTGRES_POOL_KWARGS: dict[str, Any] = {
    "pool_size": 5,
    "max_overflow": 10,
    # Fail fast when the pool is exhausted instead of queueing requests
    "pool_timeout": 5,
    "pool_recycle": 300,
    "pool_pre_ping": True,
}

# SQLite serializes writers; the busy timeout makes concurrent writers wait
# for the lock instead of failing with "database is locked".
_SQLITE_CONNECT_ARGS: dict[str, Any] = {
    "check_same_thread": False,
    "timeout": 30,
}


def is_sqlite_url(url: str) -> bool:
    return url.lower().startswith("sqlite")


def build_engine(db_url: str, *, echo: bool = False) -> Engine:
    """Create an engine with dialect-appropriate pooling and connect args."""
    if is_sqlite_url(db_url):
        return create_engine(db_url, echo=echo, connect_args=dict(_SQLITE_CONNECT_ARGS))
    return create_engine(db_url, echo=echo, **_POSTGRES_POOL_KWARGS)


def build_session_factory(bind: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=bind, expire_on_commit=False)


engine: Engine = build_engine(settings.database_url, echo=settings.database_echo)


SessionLocal = build_session_factory(engine)

Base: DeclarativeMeta = declarative_base()


def get_db() -> Generator[Session, None, None]:
    """Get database session with proper cleanup."""
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@contextmanager
def get_db_session(
    session_factory: Optional[SessionFactory] = None,
) -> Generator[Session, None, None]:
    """Context manager for short-lived DB operations outside the caller's transaction."""
    db = (session_factory or SessionLocal)()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


__all__ = [
    "Base",
    "SessionFactory",
    "SessionLocal",
    "build_engine",
    "build_session_factory",
    "engine",
    "get_db",
    "get_db_session",
    "is_sqlite_url",
]
