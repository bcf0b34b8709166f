# database/session.py
"""
Database Session Management
===========================

Synchronous engine and session factory with lazy initialization.
The engine is created on first access, not at import time, so modules can be
imported without a database.
"""
import logging
from typing import Optional

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import Session, sessionmaker

from .models import Base

_engine: Optional[Engine] = None
_session_maker: Optional[sessionmaker] = None

_db_config: dict = {}


def _enable_sqlite_write_locks(engine: Engine) -> None:
    """
    SQLite has no row locks and ignores SELECT ... FOR UPDATE. Taking the
    database write lock when the transaction opens gives the same
    serialization for the locked read-validate-write sections.
    """

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def configure_database(database_url: str, echo: bool = False) -> Engine:
    """Configures and (re)creates the engine. Called once by the adapter factory or the CLI."""
    global _db_config, _engine, _session_maker
    _db_config = {"database_url": database_url, "echo": echo}

    if _engine is not None:
        _engine.dispose()

    is_sqlite = database_url.startswith("sqlite")
    connect_args = {"check_same_thread": False, "timeout": 30} if is_sqlite else {}
    _engine = create_engine(
        database_url, echo=echo, pool_pre_ping=not is_sqlite, connect_args=connect_args
    )
    if is_sqlite:
        _enable_sqlite_write_locks(_engine)

    _session_maker = sessionmaker(_engine, class_=Session, expire_on_commit=False)
    logging.info(f"Database configured: {_engine.url.render_as_string(hide_password=True)}")
    return _engine


def get_engine() -> Engine:
    if _engine is None:
        if not _db_config:
            raise RuntimeError("Database not configured. Call configure_database() first.")
        configure_database(**_db_config)
    return _engine


def get_session_maker() -> sessionmaker:
    """
    Get the session factory, creating the engine on first access.

    Returns:
        sessionmaker: Factory for creating database sessions.
    """
    if _session_maker is None:
        get_engine()
    return _session_maker


def create_schema() -> None:
    Base.metadata.create_all(get_engine())


def reset_engine() -> None:
    """Disposes the engine and forgets the configuration. Used by tests."""
    global _db_config, _engine, _session_maker
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _session_maker = None
    _db_config = {}
