"""
Durable store adapter.

One ``DurableStore`` is built per process (see ``supply_ledger.main``) and
handed to the services that need it. It owns the engine and its connection
pool, and is the only place transactions are opened:

- ``run_in_transaction(body)`` commits when ``body`` returns and rolls back on
  every other exit path. Transient failures re-run the whole body on a fresh
  session, with exponential backoff, up to ``RetryPolicy.max_attempts``.
- ``read_session()`` is for committed-state reads; nothing it does is kept.
"""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from typing import Callable, Iterator, Optional, TypeVar

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError, TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session, sessionmaker

from supply_ledger.config import Settings
from supply_ledger.core.errors import LedgerError, Unavailable
from supply_ledger.core.retry import RetryPolicy
from supply_ledger.database.base import Base
from supply_ledger.database.engine import build_engine

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _rollback_quietly(session: Session) -> None:
    try:
        session.rollback()
    except SQLAlchemyError:
        logger.exception("Rollback failed; the connection will be discarded.")


class DurableStore:
    def __init__(
        self,
        engine: Engine,
        retry_policy: Optional[RetryPolicy] = None,
        *,
        slow_transaction_ms: int = 1000,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.engine = engine
        self.retry_policy = retry_policy or RetryPolicy()
        self.slow_transaction_ms = slow_transaction_ms
        self._sleep = sleep
        self._session_factory = sessionmaker(
            bind=engine,
            autoflush=False,
            expire_on_commit=False,
        )

    def run_in_transaction(self, body: Callable[[Session], T], *, label: str = "transaction") -> T:
        policy = self.retry_policy
        attempt = 0
        while True:
            attempt += 1
            started = time.monotonic()
            session = self._session_factory()
            try:
                result = body(session)
                session.commit()
            except PoolTimeoutError as exc:
                _rollback_quietly(session)
                logger.error("%s could not acquire a database connection.", label, extra={"transaction": label})
                raise Unavailable("Database connection pool exhausted. Please try again.") from exc
            except LedgerError:
                _rollback_quietly(session)
                raise
            except SQLAlchemyError as exc:
                _rollback_quietly(session)
                if not policy.is_retryable(exc):
                    raise
                if attempt >= policy.max_attempts:
                    logger.error(
                        "%s failed after %d attempt(s): %s",
                        label,
                        attempt,
                        exc,
                        extra={"transaction": label, "attempt": attempt},
                    )
                    raise Unavailable(
                        "Database is temporarily unavailable. Please try again.",
                        attempts=attempt,
                    ) from exc
                delay = policy.delay_for(attempt)
                logger.warning(
                    "%s attempt %d failed (%s); retrying in %.2fs.",
                    label,
                    attempt,
                    exc.__class__.__name__,
                    delay,
                    extra={"transaction": label, "attempt": attempt},
                )
                self._sleep(delay)
                continue
            except BaseException:
                _rollback_quietly(session)
                raise
            finally:
                session.close()

            elapsed_ms = (time.monotonic() - started) * 1000
            if elapsed_ms > self.slow_transaction_ms:
                logger.warning("Slow %s detected (%dms).", label, elapsed_ms, extra={"transaction": label})
            return result

    @contextmanager
    def read_session(self) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
        except PoolTimeoutError as exc:
            raise Unavailable("Database connection pool exhausted. Please try again.") from exc
        except SQLAlchemyError as exc:
            if self.retry_policy.is_retryable(exc):
                raise Unavailable("Database is temporarily unavailable. Please try again.") from exc
            raise
        finally:
            _rollback_quietly(session)
            session.close()

    def create_schema(self) -> None:
        from supply_ledger.models import import_all_models

        import_all_models()
        Base.metadata.create_all(bind=self.engine)

    def ping(self) -> bool:
        try:
            with self.engine.connect() as conn:
                conn.exec_driver_sql("SELECT 1")
        except SQLAlchemyError:
            logger.warning("Database health check failed.", exc_info=True)
            return False
        return True

    def pool_status(self) -> dict:
        pool = self.engine.pool
        status = {"pool": type(pool).__name__}
        for name in ("size", "checkedin", "checkedout", "overflow"):
            getter = getattr(pool, name, None)
            if callable(getter):
                status[name] = getter()
        return status

    def dispose(self) -> None:
        self.engine.dispose()
        logger.info("Database pool closed.")


def create_store(settings: Settings, url: Optional[str] = None, **kwargs) -> DurableStore:
    return DurableStore(
        build_engine(settings, url=url),
        RetryPolicy.from_settings(settings),
        slow_transaction_ms=settings.DB_SLOW_TRANSACTION_MS,
        **kwargs,
    )


__all__ = ["DurableStore", "create_store"]
