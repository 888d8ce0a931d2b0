"""
loyalty_services.transactions -- unit-of-work boundary with bounded retry.

Responsibility:
    Runs a callable inside one committed-or-rolled-back session and retries
    the whole unit of work when storage reports a transient failure
    (deadlock, serialization failure, lock/statement timeout, lost
    connection).  Raw SQLAlchemy errors of that class never leave this
    module; they are translated to TransientStorageError.

Architecture position:
    Services -- the only layer that commits.  Kernel services flush only.

Failure modes:
    - TransientStorageError after ``attempts`` transient failures.
    - Any other exception (typed kernel errors, IntegrityError) propagates
      on the first occurrence after the session has been rolled back.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import TypeVar

from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.orm import Session, sessionmaker

from loyalty_kernel.db.engine import session_scope
from loyalty_kernel.exceptions import TransientStorageError
from loyalty_kernel.logging_config import get_logger

logger = get_logger("services.transactions")

T = TypeVar("T")


def is_transient(exc: BaseException) -> bool:
    """True for storage errors worth retrying as a whole unit of work."""
    if isinstance(exc, OperationalError):
        return True
    return isinstance(exc, DBAPIError) and bool(exc.connection_invalidated)


def to_transient(operation: str, exc: BaseException) -> TransientStorageError:
    cause = getattr(exc, "orig", None) or exc
    return TransientStorageError(operation, f"{type(cause).__name__}: {cause}")


def run_unit_of_work(
    work: Callable[[Session], T],
    *,
    operation: str,
    factory: sessionmaker[Session] | None = None,
    attempts: int = 3,
    backoff_ms: int = 50,
) -> T:
    """
    Run ``work(session)`` in its own transaction, retrying transient failures.

    Back-off is linear: ``backoff_ms * attempt`` between attempts.

    Raises:
        TransientStorageError: every attempt failed transiently.
    """
    if attempts < 1:
        raise ValueError("attempts must be at least 1")

    for attempt in range(1, attempts + 1):
        try:
            with session_scope(factory) as session:
                return work(session)
        except DBAPIError as exc:
            if not is_transient(exc):
                raise
            if attempt == attempts:
                logger.error(
                    "unit_of_work_retries_exhausted",
                    extra={"operation": operation, "attempts": attempts},
                )
                raise to_transient(operation, exc) from exc
            logger.warning(
                "unit_of_work_transient_retry",
                extra={
                    "operation": operation,
                    "attempt": attempt,
                    "max_attempts": attempts,
                    "error_type": type(getattr(exc, "orig", exc)).__name__,
                },
            )
            time.sleep(backoff_ms * attempt / 1000.0)

    raise AssertionError("unreachable")  # pragma: no cover
