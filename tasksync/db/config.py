"""Database engine and session dependency."""
from typing import Generator

from sqlalchemy import event
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, create_engine

from tasksync.config import SETTINGS
from tasksync.utils.logger import get_logger

logger = get_logger("tasksync.db")

DATABASE_URL = SETTINGS.database_url


def build_engine(url: str):
    """Create an engine, applying the SQLite tweaks when needed."""
    if not url.startswith("sqlite"):
        logger.info("Using PostgreSQL database")
        return create_engine(url, echo=False, pool_pre_ping=True)

    connect_args = {"check_same_thread": False}
    in_memory = url in ("sqlite://", "sqlite:///:memory:")
    if in_memory:
        # Every session must see the same in-memory database.
        sqlite_engine = create_engine(
            url, echo=False, connect_args=connect_args, poolclass=StaticPool
        )
    else:
        sqlite_engine = create_engine(url, echo=False, connect_args=connect_args)

    @event.listens_for(sqlite_engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        if not in_memory:
            cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    logger.info("Using SQLite database", url=url)
    return sqlite_engine


engine = build_engine(DATABASE_URL)


def get_session() -> Generator[Session, None, None]:
    """Dependency for getting database sessions."""
    with Session(engine) as session:
        yield session
