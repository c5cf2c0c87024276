"""
Transaction helpers -- database error translation and bounded retry.

Responsibility:
    ``ledger_transaction`` is the single transaction boundary used by every
    public AllocationManager operation: it opens a session, commits on
    success, rolls back on any failure, and translates driver-level lock
    failures into ``ConcurrencyConflictError``.  ``run_with_retry`` re-runs an
    operation only when it failed with that retryable error.

Failure modes:
    - ConcurrencyConflictError: lock wait timeout, deadlock, serialization
      failure, or SQLite "database is locked".
    - ValidationError: CHECK / UNIQUE / NOT NULL violation reaching the
      database (a rule the service layer should have caught first).
    - ImmutabilityViolationError: a PostgreSQL immutability trigger refused
      the statement.
    - Every LedgerError raised inside the block propagates unchanged.
"""

from __future__ import annotations

import re
import time
from contextlib import contextmanager
from typing import Callable, Generator, TypeVar

from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.orm import Session, sessionmaker

from rental_ledger.exceptions import (
    ConcurrencyConflictError,
    ImmutabilityViolationError,
    ValidationError,
)
from rental_ledger.logging_config import get_logger

logger = get_logger("services.transaction")

T = TypeVar("T")

# Substrings identifying retryable lock failures across PostgreSQL and SQLite.
_CONFLICT_MARKERS = (
    "database is locked",
    "database table is locked",
    "lock timeout",
    "lock_timeout",
    "canceling statement due to lock timeout",
    "could not obtain lock",
    "deadlock detected",
    "could not serialize access",
)

# PostgreSQL SQLSTATEs: serialization_failure, deadlock_detected, lock_not_available.
_CONFLICT_SQLSTATES = frozenset({"40001", "40P01", "55P03"})

# Raised by the triggers in db/sql/, e.g.
#   IMMUTABILITY_VIOLATION: inventory movement <id> cannot be modified (UPDATE)
_TRIGGER_VIOLATION = re.compile(
    r"IMMUTABILITY_VIOLATION: (?P<entity>inventory \w+) (?P<id>\S+) (?P<reason>[^\n]*)"
)


def is_conflict(exc: BaseException) -> bool:
    """True if ``exc`` is a driver error caused by lock contention."""
    if not isinstance(exc, (OperationalError, DBAPIError)):
        return False
    sqlstate = getattr(getattr(exc, "orig", None), "pgcode", None)
    if sqlstate in _CONFLICT_SQLSTATES:
        return True
    message = str(exc).lower()
    return any(marker in message for marker in _CONFLICT_MARKERS)


def translate_db_error(exc: DBAPIError, operation: str) -> Exception:
    """Map a SQLAlchemy driver error onto the ledger taxonomy."""
    if is_conflict(exc):
        return ConcurrencyConflictError(operation, str(getattr(exc, "orig", exc)))
    violation = _TRIGGER_VIOLATION.search(str(getattr(exc, "orig", exc)))
    if violation is not None:
        return ImmutabilityViolationError(
            violation["entity"], violation["id"], violation["reason"].strip()
        )
    if isinstance(exc, IntegrityError):
        return ValidationError(
            f"Database constraint rejected {operation}: {getattr(exc, 'orig', exc)}"
        )
    return exc


@contextmanager
def ledger_transaction(
    session_factory: sessionmaker[Session],
    operation: str,
) -> Generator[Session, None, None]:
    """
    One atomic unit of work.

    Everything flushed inside the block becomes visible together on commit;
    any exception (including one raised by commit itself) rolls it all back.
    """
    session = session_factory()
    try:
        yield session
        session.commit()
        logger.debug("transaction_committed", extra={"operation": operation})
    except DBAPIError as exc:
        session.rollback()
        translated = translate_db_error(exc, operation)
        logger.warning(
            "transaction_rolled_back",
            extra={
                "operation": operation,
                "error_code": getattr(translated, "code", type(exc).__name__),
            },
        )
        if translated is exc:
            raise
        raise translated from exc
    except Exception as exc:
        session.rollback()
        logger.debug(
            "transaction_rolled_back",
            extra={
                "operation": operation,
                "error_code": getattr(exc, "code", type(exc).__name__),
            },
        )
        raise
    finally:
        session.close()


def run_with_retry(
    fn: Callable[[], T],
    attempts: int = 3,
    backoff_seconds: float = 0.05,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Call ``fn`` until it succeeds or fails with a non-retryable error.

    Only ``ConcurrencyConflictError`` is retried; each retry waits
    ``backoff_seconds * attempt``.  The last conflict is re-raised once
    ``attempts`` is exhausted.
    """
    if attempts < 1:
        raise ValueError("attempts must be >= 1")

    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except ConcurrencyConflictError as exc:
            if attempt == attempts:
                logger.warning(
                    "retry_exhausted",
                    extra={"operation": exc.operation, "attempts": attempts},
                )
                raise
            logger.info(
                "retrying_after_conflict",
                extra={"operation": exc.operation, "attempt": attempt},
            )
            sleep(backoff_seconds * attempt)
    raise AssertionError("unreachable")
