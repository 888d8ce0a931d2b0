"""
BaseService -- abstract base for all kernel services.

Responsibility:
    Provides the common constructor and session-handling contract for
    every write-side service in the kernel.  Services receive a SQLAlchemy
    ``Session`` and use ``session.flush()`` -- never ``session.commit()``.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    Transaction boundaries: services flush within the caller's transaction
    and never commit or roll back the outer transaction themselves.  They
    may open and close SAVEPOINTs (``begin_nested``) around single inserts
    that can lose a uniqueness race.  The caller (loyalty_services or a
    test harness) owns commit/rollback.
"""

from abc import ABC
from typing import Any, Generic, TypeVar

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from loyalty_kernel.db.base import Base
from loyalty_kernel.domain.clock import Clock, SystemClock

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for all kernel services.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
        - Does NOT provide read-only reporting queries; those belong in
          ``loyalty_kernel/selectors/``.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self.clock = clock or SystemClock()

    def _lock_or_create(
        self,
        model: type[ModelType],
        keys: dict[str, Any],
        defaults: dict[str, Any],
    ) -> tuple[ModelType, bool]:
        """
        Return the row matching ``keys`` locked FOR UPDATE, inserting it first
        if absent.

        Preconditions:
            ``keys`` covers a unique constraint on ``model``.
        Postconditions:
            The returned row is locked until the caller's transaction ends.
            ``created`` is True only if this call inserted the row.

        A concurrent insert of the same key surfaces as IntegrityError inside
        a SAVEPOINT; the savepoint is rolled back and the winner's row is
        locked instead, so the outer transaction survives the race.
        """
        stmt = (
            select(model)
            .filter_by(**keys)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        row = self.session.execute(stmt).scalar_one_or_none()
        if row is not None:
            return row, False

        savepoint = self.session.begin_nested()
        try:
            row = model(**keys, **defaults)
            self.session.add(row)
            self.session.flush()
            savepoint.commit()
            return row, True
        except IntegrityError:
            savepoint.rollback()
            return self.session.execute(stmt).scalar_one(), False
