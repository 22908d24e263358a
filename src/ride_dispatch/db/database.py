"""Database engine initialization and connection management."""

import logging
from pathlib import Path
from typing import Any

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from .schema import Base, DispatchMetadata

logger = logging.getLogger(__name__)

SCHEMA_VERSION = "1.0.0"


def _enable_immediate_transactions(engine: Engine) -> None:
    """Make every SQLite transaction take the write lock at BEGIN.

    pysqlite defers BEGIN until the first write, so a read-then-update
    sequence could otherwise observe a row another writer is about to change.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection: Any, connection_record: Any) -> None:
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn: Any) -> None:
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_db_engine(url: str, echo: bool = False, busy_timeout_seconds: float = 30.0) -> Engine:
    if url.startswith("sqlite"):
        db_path = url.split("///", 1)[-1]
        pool_args: dict[str, Any] = {}
        if db_path and db_path != ":memory:":
            # Ensure parent directory exists
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
            pool_args = {"pool_size": 20, "max_overflow": 10}

        engine = create_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False, "timeout": busy_timeout_seconds},
            **pool_args,
        )
        _enable_immediate_transactions(engine)
        return engine

    return create_engine(url, echo=echo, pool_pre_ping=True)


def init_database(
    url: str, echo: bool = False, busy_timeout_seconds: float = 30.0
) -> sessionmaker[Any]:
    """Initialize database and return session factory."""
    engine = create_db_engine(url, echo=echo, busy_timeout_seconds=busy_timeout_seconds)
    Base.metadata.create_all(engine)

    session_maker = sessionmaker(bind=engine, expire_on_commit=False)

    with session_maker() as session:
        schema_version = session.get(DispatchMetadata, "schema_version")
        if not schema_version:
            session.add(DispatchMetadata(key="schema_version", value=SCHEMA_VERSION))
            session.commit()

    logger.info(f"Database ready (schema {SCHEMA_VERSION})")
    return session_maker
