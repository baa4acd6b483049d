"""
Database Configuration Module
=============================

Provides the SQLAlchemy engine and session management for AccessHub.
SQLite is the default store; any SQLAlchemy URL (e.g. PostgreSQL) can be
configured through ``ACCESSHUB_DATABASE_URL``.

Every unit of work runs inside ``get_session()``: the state change and its
audit row are flushed into the same session and committed together, or the
whole transaction is rolled back.
"""

from contextlib import contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool

from core.config import settings

# Base class for declarative models
Base = declarative_base()

engine = None
SessionLocal = sessionmaker(autocommit=False, autoflush=False)


def _on_sqlite_connect(dbapi_connection, connection_record):
    # Let SQLAlchemy emit BEGIN itself so SAVEPOINTs nest inside the transaction
    dbapi_connection.isolation_level = None
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _on_sqlite_begin(connection):
    # Take the write lock up front so concurrent writers queue on BEGIN
    # instead of deadlocking between their read and their UPDATE
    connection.exec_driver_sql("BEGIN IMMEDIATE")


def configure_engine(database_url: str = None, echo: bool = None):
    """
    (Re)create the engine and bind the session factory to it.

    In-memory SQLite URLs share one connection so every session sees the
    same database.

    Args:
        database_url: SQLAlchemy URL, defaults to settings.database_url
        echo: Log SQL statements, defaults to settings.sql_echo

    Returns:
        The new engine
    """
    global engine

    url = database_url or settings.database_url
    kwargs = {"echo": settings.sql_echo if echo is None else echo}

    if url.startswith("sqlite"):
        kwargs["connect_args"] = {
            "check_same_thread": False,  # Required for SQLite
            "timeout": settings.sqlite_busy_timeout_seconds,
        }
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool

    if engine is not None:
        engine.dispose()

    engine = create_engine(url, **kwargs)
    if url.startswith("sqlite"):
        event.listen(engine, "connect", _on_sqlite_connect)
        event.listen(engine, "begin", _on_sqlite_begin)

    SessionLocal.configure(bind=engine)
    return engine


configure_engine()


@contextmanager
def get_session():
    """
    Context manager for database sessions.

    Ensures proper session lifecycle management with automatic
    commit on success and rollback on failure.

    Usage:
        with get_session() as session:
            user = session.query(User).first()
    """
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_db():
    """
    Initialize the database schema and seed the built-in roles,
    permissions and privilege levels.

    Safe to call multiple times.
    """
    from . import entities  # noqa: F401 - Ensure models are loaded
    from .seed import seed_defaults

    Base.metadata.create_all(bind=engine)
    with get_session() as session:
        seed_defaults(session)


def reset_db():
    """
    Reset the database by dropping and recreating all tables.

    WARNING: This destroys all data. Use only for development/testing.
    """
    from . import entities  # noqa: F401

    Base.metadata.drop_all(bind=engine)
    init_db()
