"""
Database engine and session factory.

One SQLAlchemy engine per process, shared by every repository in the
resolution engine. Each unit of work opens its own short-lived session so
rows can be processed from worker threads.

SQLite notes:
- pysqlite's deferred transactions fail immediately (no busy wait) when a
  reader tries to upgrade to a writer while another writer holds the lock.
  Transactions are therefore started with BEGIN IMMEDIATE so concurrent
  writers queue on the busy timeout instead.
- Foreign keys are off by default in SQLite and are enabled per connection
  so entity deletes cascade to mentions and connections.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.engine import make_url
from sqlalchemy.orm import Session, sessionmaker

from app.kg.models import Base

logger = logging.getLogger(__name__)


def _enable_sqlite_locking(engine: Engine) -> None:
    """Install connect/begin hooks for safe concurrent SQLite writes."""

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection: Any, connection_record: Any) -> None:
        # Hand transaction control to SQLAlchemy's "begin" hook below
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn: Any) -> None:
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_db_engine(database_url: str, busy_timeout: float = 30.0) -> Engine:
    """
    Create the SQLAlchemy engine for a database URL.

    Args:
        database_url: SQLAlchemy URL (e.g. "sqlite:///data/podcast_graph.db")
        busy_timeout: Seconds a SQLite writer waits for the lock

    Returns:
        Configured Engine

    Raises:
        ValueError: If an in-memory SQLite URL is given (each pooled
            connection would see a different empty database)
    """
    url = make_url(database_url)

    if url.get_backend_name() == "sqlite":
        if not url.database or url.database == ":memory:":
            raise ValueError("In-memory SQLite is not supported; use a file path")
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)
        engine = create_engine(
            url,
            connect_args={"check_same_thread": False, "timeout": busy_timeout},
        )
        _enable_sqlite_locking(engine)
    else:
        engine = create_engine(url, pool_pre_ping=True)

    logger.info(f"Database engine created for backend={url.get_backend_name()}")
    return engine


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Create the session factory used by all repositories."""
    return sessionmaker(bind=engine, expire_on_commit=False)


def init_schema(engine: Engine) -> None:
    """Create all tables that do not exist yet."""
    Base.metadata.create_all(engine)
