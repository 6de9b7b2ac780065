from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlmodel import Session, create_engine

from .config import settings
from ..models.base import SQLModel  # Import to access all models


def build_engine(url: str) -> Engine:
    """Create an engine; SQLite connections get WAL mode and a busy timeout."""
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    engine = create_engine(url, echo=False, connect_args=connect_args)
    if url.startswith("sqlite"):
        @event.listens_for(engine, "connect")
        def _sqlite_pragmas(dbapi_connection, _record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA busy_timeout = 5000")
            if url not in ("sqlite://", "sqlite:///:memory:"):
                cursor.execute("PRAGMA journal_mode=WAL")
            cursor.close()
    return engine


# Single engine instance (avoid recreating per request)
sync_engine = build_engine(settings.DATABASE_URL)


@contextmanager
def get_session(engine: Engine = None) -> Iterator[Session]:
    """Yield a database session and always close it."""
    session = Session(engine or sync_engine, expire_on_commit=False)
    try:
        yield session
    finally:
        session.close()


def create_db_and_tables(engine: Engine = None) -> None:
    """
    Create tables if they do not exist.
    Non-destructive: avoids dropping existing data.
    """
    SQLModel.metadata.create_all(engine or sync_engine)
