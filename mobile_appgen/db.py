"""Database engine and session management for mobile_appgen.

Job records are written concurrently by the scheduler's worker threads
and read by the API, so SQLite databases are opened shareable across
threads, in WAL mode, with a busy timeout.
"""

from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from mobile_appgen.config import get_settings

SQLITE_BUSY_TIMEOUT = 30


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def _sqlite_file(db_url: str) -> Path | None:
    """Database file of a sqlite URL, or None for in-memory databases."""
    path = db_url.split(":///", 1)[1] if ":///" in db_url else ""
    if not path or path == ":memory:":
        return None
    return Path(path)


def _enable_wal(dbapi_connection: Any, connection_record: Any) -> None:
    cursor = dbapi_connection.cursor()
    try:
        cursor.execute("PRAGMA journal_mode=WAL")
    finally:
        cursor.close()


def get_engine(db_url: str | None = None) -> Engine:
    """Create and return a SQLAlchemy engine.

    Args:
        db_url: Database URL. If not provided, uses settings default.

    Returns:
        SQLAlchemy Engine instance.
    """
    if db_url is None:
        db_url = get_settings().db_url

    if not db_url.startswith("sqlite"):
        return create_engine(db_url, pool_pre_ping=True)

    db_file = _sqlite_file(db_url)
    if db_file is not None:
        db_file.parent.mkdir(parents=True, exist_ok=True)

    engine = create_engine(
        db_url,
        connect_args={"check_same_thread": False, "timeout": SQLITE_BUSY_TIMEOUT},
    )
    if db_file is not None:
        event.listen(engine, "connect", _enable_wal)
    return engine


def get_session_factory(engine: Engine | None = None) -> sessionmaker[Session]:
    """Session factory whose objects stay readable after commit."""
    if engine is None:
        engine = get_engine()
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@contextmanager
def get_session(
    session_factory: sessionmaker[Session] | None = None,
) -> Generator[Session, None, None]:
    """Provide a transactional scope around a series of operations.

    Commits on success, rolls back and re-raises on error.

    Args:
        session_factory: Optional session factory. Creates one if not provided.

    Yields:
        SQLAlchemy Session instance.
    """
    factory = session_factory or get_session_factory()
    with factory() as session:
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise


def create_all_tables(engine: Engine | None = None) -> None:
    """Create the job, log and artifact tables if they do not exist."""
    # Registers the models with the mapper
    from mobile_appgen.jobs import models as jobs_models  # noqa: F401

    Base.metadata.create_all(bind=engine or get_engine())


__all__ = [
    "Base",
    "create_all_tables",
    "get_engine",
    "get_session",
    "get_session_factory",
]
