import logging
import sqlite3
from typing import Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.pool import StaticPool

from supply_ledger.config import Settings

logger = logging.getLogger(__name__)


def _is_sqlite_memory(url) -> bool:
    database = url.database
    if database in (None, "", ":memory:"):
        return True
    return url.query.get("mode") == "memory"


def _install_sqlite_hooks(engine: Engine, *, lock_timeout_ms: int, in_memory: bool) -> None:
    @event.listens_for(engine, "connect")
    def _set_sqlite_pragmas(dbapi_connection, _connection_record):
        # Let SQLAlchemy emit BEGIN itself (see _begin_immediate).
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        try:
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.execute(f"PRAGMA busy_timeout={lock_timeout_ms}")
            if not in_memory:
                try:
                    cursor.execute("PRAGMA journal_mode=WAL")
                    cursor.execute("PRAGMA synchronous=NORMAL")
                except sqlite3.DatabaseError:
                    logger.warning("Could not enable WAL journal mode.")
        finally:
            cursor.close()

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        # Writers queue on the database lock from the first statement.
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def _install_postgres_hooks(engine: Engine, *, lock_timeout_ms: int, statement_timeout_ms: int) -> None:
    @event.listens_for(engine, "connect")
    def _set_session_timeouts(dbapi_connection, _connection_record):
        cursor = dbapi_connection.cursor()
        try:
            cursor.execute(f"SET lock_timeout = {lock_timeout_ms}")
            cursor.execute(f"SET statement_timeout = {statement_timeout_ms}")
        finally:
            cursor.close()
        dbapi_connection.commit()


def build_engine(settings: Settings, url: Optional[str] = None) -> Engine:
    """Create the pooled engine for ``url`` (defaults to ``DATABASE_URL``)."""
    db_url = make_url(url or settings.DATABASE_URL)
    backend = db_url.get_backend_name()
    lock_timeout_ms = int(settings.DB_LOCK_TIMEOUT_SECONDS * 1000)
    statement_timeout_ms = int(settings.DB_STATEMENT_TIMEOUT_SECONDS * 1000)

    engine_kwargs: dict[str, object] = dict(pool_pre_ping=True)
    connect_args: dict[str, object] = {}
    in_memory = False

    if backend == "sqlite":
        in_memory = _is_sqlite_memory(db_url)
        connect_args = {
            "check_same_thread": False,
            "timeout": settings.DB_LOCK_TIMEOUT_SECONDS,
        }
    if in_memory:
        engine_kwargs.update(poolclass=StaticPool)
    else:
        engine_kwargs.update(
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
            pool_timeout=settings.DB_POOL_TIMEOUT,
            pool_recycle=settings.DB_POOL_RECYCLE,
        )

    engine = create_engine(db_url, connect_args=connect_args, **engine_kwargs)

    if backend == "sqlite":
        _install_sqlite_hooks(engine, lock_timeout_ms=lock_timeout_ms, in_memory=in_memory)
    elif backend == "postgresql":
        _install_postgres_hooks(
            engine,
            lock_timeout_ms=lock_timeout_ms,
            statement_timeout_ms=statement_timeout_ms,
        )

    logger.info(
        "Database engine ready (backend=%s, pool=%s).",
        backend,
        type(engine.pool).__name__,
    )
    return engine


__all__ = ["build_engine"]
