"""
loyalty_services.enrollment_engine -- public facade of the enrollment engine.

Responsibility:
    Exposes the engine's operations as units of work.  Each call opens its
    own session, runs kernel services built by EnrollmentOrchestrator,
    commits or rolls back, and returns plain result objects.

Architecture position:
    Services -- the outermost layer callers (HTTP handlers, CLI, jobs) use.
    Owns the commit boundary, identifier parsing at the API edge and the
    mapping of typed kernel errors to structured results.

Invariants enforced:
    - ``resolve_enrollment_request`` never raises a domain or storage
      error; it always returns a ResolutionResult with a machine-readable
      code.
    - Transient storage failures are retried as a whole unit of work a
      bounded number of times before being reported as retryable.
    - ORM immutability listeners are registered before the first unit of
      work runs.

Usage:
    engine = EnrollmentEngine.from_settings(get_settings())
    request_id = engine.create_enrollment_request(10, 3, 5)
    result = engine.resolve_enrollment_request(request_id, approved=True)
    if result.is_success:
        print(result.card_id)
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from loyalty_config.schema import EngineSettings
from loyalty_kernel.db.engine import (
    create_tables,
    get_session_factory,
    init_engine_from_url,
)
from loyalty_kernel.db.immutability import register_immutability_listeners
from loyalty_kernel.domain.card_numbers import SuffixFactory
from loyalty_kernel.domain.clock import Clock, SystemClock
from loyalty_kernel.domain.enrollment import (
    ApprovalRequestView,
    ApprovalStatus,
    EnrollmentStatistics,
    IntegrityIssue,
    ReconciliationSummary,
)
from loyalty_kernel.domain.identifiers import BusinessId, CustomerId, ProgramId
from loyalty_kernel.exceptions import (
    InvalidDecisionError,
    InvalidIdentifierError,
    LoyaltyKernelError,
)
from loyalty_kernel.logging_config import LogContext, configure_logging, get_logger
from loyalty_services.enrollment_orchestrator import EnrollmentOrchestrator
from loyalty_services.reconciliation_job import ReconciliationJob
from loyalty_services.transactions import run_unit_of_work

logger = get_logger("services.enrollment_engine")


class ResolutionStatus(str, Enum):
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    ALREADY_RESOLVED = "ALREADY_RESOLVED"
    FAILED = "FAILED"


@dataclass(frozen=True)
class ResolutionResult:
    """Outcome of ``resolve_enrollment_request``.

    ``error_code`` and ``message`` are set only when ``status`` is FAILED.
    ``retryable`` is True only for transient storage failures.
    """

    status: ResolutionStatus
    request_id: UUID | None
    card_id: UUID | None = None
    error_code: str | None = None
    message: str | None = None
    retryable: bool = False

    @property
    def is_success(self) -> bool:
        return self.status != ResolutionStatus.FAILED

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "request_id": str(self.request_id) if self.request_id else None,
            "card_id": str(self.card_id) if self.card_id else None,
            "error_code": self.error_code,
            "message": self.message,
            "retryable": self.retryable,
        }


@dataclass(frozen=True)
class MaintenanceReport:
    """Reconciliation summary, pruned notification count and remaining issues."""

    reconciliation: ReconciliationSummary
    pruned_notifications: int
    issues: tuple[IntegrityIssue, ...]

    @property
    def is_consistent(self) -> bool:
        return not self.issues

    def to_dict(self) -> dict[str, Any]:
        return {
            "reconciliation": self.reconciliation.to_dict(),
            "pruned_notifications": self.pruned_notifications,
            "issues": [issue.to_dict() for issue in self.issues],
        }


def parse_request_id(raw: object) -> UUID:
    if isinstance(raw, UUID):
        return raw
    if isinstance(raw, str):
        try:
            return UUID(raw)
        except ValueError:
            pass
    raise InvalidIdentifierError("request_id", raw)


class EnrollmentEngine:
    """Facade over the enrollment kernel; one unit of work per call."""

    def __init__(
        self,
        settings: EngineSettings | None = None,
        session_factory: sessionmaker[Session] | None = None,
        clock: Clock | None = None,
        suffix_factory: SuffixFactory | None = None,
    ):
        self.settings = settings or EngineSettings()
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._suffix_factory = suffix_factory
        register_immutability_listeners()

    @classmethod
    def from_settings(
        cls,
        settings: EngineSettings,
        *,
        create_schema: bool = False,
        clock: Clock | None = None,
    ) -> EnrollmentEngine:
        """Initialize the process-wide engine from settings and build a facade on it."""
        configure_logging(level=settings.logging.level.upper())
        db = settings.database
        init_engine_from_url(
            db.url,
            echo=db.echo,
            pool_size=db.pool_size,
            max_overflow=db.max_overflow,
            statement_timeout_ms=settings.transactions.statement_timeout_ms,
            lock_timeout_ms=settings.transactions.lock_timeout_ms,
        )
        if create_schema:
            create_tables()
        return cls(settings, get_session_factory(), clock)

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    def _orchestrator(self, session: Session) -> EnrollmentOrchestrator:
        return EnrollmentOrchestrator(
            session, self.settings, self._clock, self._suffix_factory,
        )

    def _run(self, operation: str, work):
        tx = self.settings.transactions
        with LogContext.bind(operation=operation):
            return run_unit_of_work(
                lambda session: work(self._orchestrator(session)),
                operation=operation,
                factory=self._session_factory,
                attempts=tx.transient_retry_attempts,
                backoff_ms=tx.retry_backoff_ms,
            )

    # ------------------------------------------------------------------
    # Approval requests
    # ------------------------------------------------------------------

    def create_enrollment_request(
        self,
        customer_id: object,
        business_id: object,
        program_id: object,
        data: dict[str, Any] | None = None,
        expires_at: datetime | None = None,
    ) -> UUID:
        """
        Record a PENDING enrollment request and its customer notification.

        Raises:
            InvalidIdentifierError: an id is not a canonical positive integer.
            DuplicatePendingRequestError: an unexpired request is already pending.
            InvalidExpiryError: ``expires_at`` is not after now.
            TransientStorageError: storage kept failing transiently.
        """
        customer = CustomerId.parse(customer_id)
        business = BusinessId.parse(business_id)
        program = ProgramId.parse(program_id)

        with LogContext.for_request(
            customer_id=customer, program_id=program, correlation_id=uuid4(),
        ):
            view = self._run(
                "create_enrollment_request",
                lambda orch: orch.processor.create_request(
                    customer, business, program, data=data, expires_at=expires_at,
                ),
            )
        return view.request_id

    def resolve_enrollment_request(self, request_id: object, approved: bool) -> ResolutionResult:
        """Apply the customer's decision (True or False).  Never raises; see ResolutionResult."""
        try:
            rid = parse_request_id(request_id)
        except InvalidIdentifierError as exc:
            return ResolutionResult(
                status=ResolutionStatus.FAILED,
                request_id=None,
                error_code=exc.code,
                message=str(exc),
            )
        # "false" or 0 must never be read as a decision.
        if not isinstance(approved, bool):
            exc = InvalidDecisionError(approved)
            return ResolutionResult(
                status=ResolutionStatus.FAILED,
                request_id=rid,
                error_code=exc.code,
                message=str(exc),
            )

        with LogContext.for_request(rid, correlation_id=uuid4()):
            try:
                outcome = self._run(
                    "resolve_enrollment_request",
                    lambda orch: orch.processor.resolve(rid, approved),
                )
            except LoyaltyKernelError as exc:
                logger.info(
                    "enrollment_resolution_failed",
                    extra={"error_code": exc.code, "retryable": exc.retryable},
                )
                return ResolutionResult(
                    status=ResolutionStatus.FAILED,
                    request_id=rid,
                    error_code=exc.code,
                    message=str(exc),
                    retryable=exc.retryable,
                )
            except SQLAlchemyError as exc:
                logger.error(
                    "enrollment_resolution_storage_error",
                    extra={"error_type": type(exc).__name__},
                    exc_info=True,
                )
                return ResolutionResult(
                    status=ResolutionStatus.FAILED,
                    request_id=rid,
                    error_code="STORAGE_ERROR",
                    message=str(exc),
                )

        if outcome.replayed:
            status = ResolutionStatus.ALREADY_RESOLVED
        elif outcome.status == ApprovalStatus.APPROVED:
            status = ResolutionStatus.APPROVED
        else:
            status = ResolutionStatus.REJECTED
        return ResolutionResult(status=status, request_id=rid, card_id=outcome.card_id)

    def list_pending_requests(self, customer_id: object) -> list[ApprovalRequestView]:
        customer = CustomerId.parse(customer_id)
        return self._run(
            "list_pending_requests",
            lambda orch: orch.approvals.list_pending(customer),
        )

    def deactivate_enrollment(self, customer_id: object, program_id: object) -> bool:
        """Set the pair's enrollment and card INACTIVE together.  False if not enrolled."""
        customer = CustomerId.parse(customer_id)
        program = ProgramId.parse(program_id)
        return self._run(
            "deactivate_enrollment",
            lambda orch: orch.activator.deactivate(customer, program),
        )

    # ------------------------------------------------------------------
    # Consistency
    # ------------------------------------------------------------------

    def run_reconciliation(self, batch_size: int | None = None) -> ReconciliationSummary:
        job = ReconciliationJob(self.settings, self._orchestrator, self._session_factory)
        return job.run(batch_size)

    def get_integrity_report(self) -> list[IntegrityIssue]:
        return self._run("get_integrity_report", lambda orch: orch.validator.validate())

    def get_enrollment_statistics(self) -> EnrollmentStatistics:
        return self._run(
            "get_enrollment_statistics", lambda orch: orch.validator.statistics(),
        )

    def run_maintenance(self, batch_size: int | None = None) -> MaintenanceReport:
        """Reconcile, prune stale notifications, then validate what is left."""
        with LogContext.for_reconciliation(uuid4()):
            summary = self.run_reconciliation(batch_size)
            pruned = self._run(
                "prune_notifications",
                lambda orch: orch.notifications.prune_stale(
                    self.settings.notifications.retention_days,
                ),
            )
            issues = self.get_integrity_report()
            logger.info(
                "maintenance_completed",
                extra={
                    "repaired": summary.repaired,
                    "failed": summary.failed,
                    "pruned_notifications": pruned,
                    "remaining_issues": len(issues),
                },
            )
        return MaintenanceReport(
            reconciliation=summary,
            pruned_notifications=pruned,
            issues=tuple(issues),
        )
