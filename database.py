"""
Database engine and session handling for CareAdherence

Every service call either receives a Session from its caller (FastAPI
dependency, tests, batch scripts) or opens one with get_db_context().
"""

import logging
from sqlalchemy import create_engine, event, text, func, select
from sqlalchemy.engine import make_url
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool
from contextlib import contextmanager
from typing import Dict, Generator

from config import settings


logger = logging.getLogger(__name__)

# Seconds a SQLite writer waits on a lock held by the sweeper or another request
SQLITE_BUSY_TIMEOUT = 15


def _is_memory_sqlite(url: str) -> bool:
    database = make_url(url).database
    return database in (None, "", ":memory:") or "mode=memory" in url


def _build_engine(url: str):
    if url.startswith("sqlite"):
        if _is_memory_sqlite(url):
            # One shared connection, or every session would see its own empty database
            pool_args = {"poolclass": StaticPool}
        else:
            # File databases: a connection per session, writers serialize on the file lock
            pool_args = {"pool_pre_ping": True}

        sqlite_engine = create_engine(
            url,
            connect_args={"check_same_thread": False, "timeout": SQLITE_BUSY_TIMEOUT},
            echo=settings.DATABASE_ECHO,
            **pool_args
        )

        @event.listens_for(sqlite_engine, "connect")
        def set_sqlite_pragma(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return sqlite_engine

    # PostgreSQL: pooled, connections checked before reuse
    return create_engine(
        url,
        echo=settings.DATABASE_ECHO,
        pool_size=10,
        max_overflow=20,
        pool_pre_ping=True
    )


engine = _build_engine(settings.DATABASE_URL)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine
)

# Base class for ORM models
Base = declarative_base()


def get_db() -> Generator[Session, None, None]:
    """
    FastAPI dependency yielding a request-scoped session.

    Services commit their own work; the session is only closed here.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def get_db_context() -> Generator[Session, None, None]:
    """
    Session for work outside a request: the expiry sweeper, nightly
    materialization, scripts. Commits on success, rolls back on error.

    Usage:
        with get_db_context() as db:
            expiry_service._sweep(db, utcnow())
    """
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def init_db() -> None:
    """Create the template, event and vital type tables if missing"""
    # Registers the mapped classes on Base
    import models  # noqa: F401

    Base.metadata.create_all(bind=engine)
    logger.info(f"Database initialized at: {settings.DATABASE_URL}")


def drop_db() -> None:
    """
    Drop all engine tables.
    WARNING: events are never deleted otherwise; this removes all history.
    """
    Base.metadata.drop_all(bind=engine)
    logger.warning("All database tables dropped")


def reset_db() -> None:
    """Drop and recreate all tables (demo seeding only)"""
    drop_db()
    init_db()


class DatabaseHealthCheck:
    """Database health check utilities"""

    @staticmethod
    def is_connected() -> bool:
        """True when a trivial query succeeds"""
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError:
            logger.exception("Database connectivity check failed")
            return False

    @staticmethod
    def get_table_counts() -> Dict[str, int]:
        """Row counts for the engine's own tables"""
        import models  # noqa: F401

        counts = {}
        with get_db_context() as db:
            for table in Base.metadata.sorted_tables:
                counts[table.name] = db.execute(
                    select(func.count()).select_from(table)
                ).scalar_one()

        return counts


__all__ = [
    "engine",
    "SessionLocal",
    "Base",
    "get_db",
    "get_db_context",
    "init_db",
    "drop_db",
    "reset_db",
    "DatabaseHealthCheck"
]
