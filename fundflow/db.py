"""Engine and session lifecycle for the FundFlow database.

The engine is created lazily from ``DATABASE_URL`` so tests and Alembic can
point it elsewhere before first use. Services own their commits: a session
handed out here is closed, never committed, by the code that opened it.
"""
from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from fundflow.config import get_settings
from fundflow.models.base import Base

engine: Engine | None = None
SessionLocal: sessionmaker[Session] | None = None


def _build_engine(url: str) -> Engine:
    if url.startswith("sqlite"):
        # Request handlers and background notifications share the file across threads.
        return create_engine(url, future=True, connect_args={"check_same_thread": False})
    return create_engine(url, future=True, pool_pre_ping=True)


def init_engine() -> Engine:
    global engine, SessionLocal
    if engine is not None:
        return engine
    engine = _build_engine(get_settings().database_url)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return engine


def get_engine() -> Engine:
    return engine or init_engine()


def get_sessionmaker() -> sessionmaker[Session]:
    init_engine()
    assert SessionLocal is not None  # for type-checkers
    return SessionLocal


@event.listens_for(Engine, "connect")
def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:  # pragma: no cover
    if not type(dbapi_connection).__module__.startswith("sqlite3"):
        return
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_all() -> None:
    """Create the schema directly; only used for throwaway dev databases."""

    Base.metadata.create_all(bind=get_engine())


def close_engine() -> None:
    global engine, SessionLocal
    if engine is None:
        return
    engine.dispose()
    engine, SessionLocal = None, None


@contextmanager
def session_scope() -> Iterator[Session]:
    """Session for work running outside a request, such as background tasks.

    Uncommitted changes are rolled back when the block raises.
    """

    session = get_sessionmaker()()
    try:
        yield session
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def get_db() -> Iterator[Session]:
    """FastAPI dependency yielding one session per request."""

    with get_sessionmaker()() as session:
        yield session


__all__ = [
    "Base",
    "SessionLocal",
    "close_engine",
    "create_all",
    "engine",
    "get_db",
    "get_engine",
    "get_sessionmaker",
    "init_engine",
    "session_scope",
]
