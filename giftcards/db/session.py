"""
Database Session Management - SQLAlchemy engine and session factory.

The state document is small and written synchronously on every mutation,
so a plain (sync) engine is used.
"""

from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from giftcards.config import settings
from giftcards.db.models import Base

# Global engine instance
_engine: Engine | None = None
_session_factory: sessionmaker[Session] | None = None


def build_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Create an engine for database_url.

    SQLite connections are shared across threads; in-memory SQLite uses a
    single static connection so every session sees the same database.
    """
    if database_url.startswith("sqlite"):
        kwargs: dict[str, object] = {"connect_args": {"check_same_thread": False}}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, echo=echo, **kwargs)
    return create_engine(database_url, echo=echo, pool_pre_ping=True)


def init_schema(engine: Engine) -> None:
    """Create tables that do not exist yet."""
    Base.metadata.create_all(engine)


def get_engine() -> Engine:
    """Get or create the application engine."""
    global _engine
    if _engine is None:
        _engine = build_engine(settings.database_url, echo=settings.log_level == "DEBUG")
        init_schema(_engine)
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    """Get or create the session factory."""
    global _session_factory
    if _session_factory is None:
        _session_factory = sessionmaker(get_engine(), expire_on_commit=False)
    return _session_factory


@contextmanager
def get_session() -> Iterator[Session]:
    """
    Get a database session.

    Usage:
        with get_session() as session:
            session.execute(...)
            session.commit()
    """
    factory = get_session_factory()
    with factory() as session:
        yield session


def close_engine() -> None:
    """Dispose the engine (for graceful shutdown)."""
    global _engine, _session_factory

    if _engine:
        _engine.dispose()
        _engine = None
        _session_factory = None
