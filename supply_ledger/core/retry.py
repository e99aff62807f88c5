from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable

from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError, ProgrammingError

from supply_ledger.config import Settings

# unique, foreign key, not null, check, undefined table, undefined column
_PERMANENT_PG_CODES = {"23505", "23503", "23502", "23514", "42P01", "42703"}
_PERMANENT_SQLITE_MARKERS = (
    "no such table",
    "no such column",
    "constraint failed",
    "not null",
    "syntax error",
)


def _driver_message(exc: DBAPIError) -> str:
    return str(exc.orig if exc.orig is not None else exc).lower()


def is_transient_error(exc: BaseException) -> bool:
    """True when retrying the whole transaction may succeed.

    Connectivity loss, lock-wait timeouts and busy databases are transient.
    Constraint violations and missing schema objects never are.
    """
    if isinstance(exc, (IntegrityError, ProgrammingError)):
        return False
    if not isinstance(exc, DBAPIError):
        return False
    if exc.connection_invalidated:
        return True
    pgcode = getattr(exc.orig, "pgcode", None)
    if pgcode in _PERMANENT_PG_CODES:
        return False
    if isinstance(exc, OperationalError):
        message = _driver_message(exc)
        return not any(marker in message for marker in _PERMANENT_SQLITE_MARKERS)
    return False


def is_unique_violation(exc: IntegrityError) -> bool:
    if getattr(exc.orig, "pgcode", None) == "23505":
        return True
    message = _driver_message(exc)
    return "unique constraint" in message or "duplicate key" in message


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 5.0
    is_retryable: Callable[[BaseException], bool] = field(default=is_transient_error)

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(
            max_attempts=max(1, int(settings.TX_MAX_ATTEMPTS)),
            base_delay=max(0.0, float(settings.TX_RETRY_BASE_DELAY)),
            max_delay=max(0.0, float(settings.TX_RETRY_MAX_DELAY)),
        )

    def delay_for(self, attempt: int) -> float:
        """Backoff before retry number ``attempt`` (1-based)."""
        return min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)


__all__ = ["RetryPolicy", "is_transient_error", "is_unique_violation"]
