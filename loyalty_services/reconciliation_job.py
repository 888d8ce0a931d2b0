"""
loyalty_services.reconciliation_job -- batched scan-and-repair across all phases.

Responsibility:
    Drives ReconciliationService over every phase, one keyset page at a
    time.  Each page is its own transaction (retried on transient storage
    errors); each item inside it already runs in its own SAVEPOINT.

Architecture position:
    Services -- owns the commit boundary for reconciliation.

Invariants enforced:
    - No lock is held across batches.
    - Never raises for data problems: item failures are recorded in the
      summary, and a batch that fails as a whole is logged, recorded once,
      and ends its phase so the remaining phases still run.
"""

from __future__ import annotations

from collections.abc import Callable
from uuid import UUID, uuid4

from sqlalchemy.orm import Session, sessionmaker

from loyalty_config.schema import EngineSettings
from loyalty_kernel.domain.enrollment import ItemFailure, ReconciliationSummary
from loyalty_kernel.logging_config import LogContext, get_logger
from loyalty_kernel.services.reconciliation_service import (
    ALL_PHASES,
    ReconciliationBatch,
    ReconciliationPhase,
)
from loyalty_services.enrollment_orchestrator import EnrollmentOrchestrator
from loyalty_services.transactions import run_unit_of_work

logger = get_logger("services.reconciliation_job")

OrchestratorFactory = Callable[[Session], EnrollmentOrchestrator]


class ReconciliationJob:
    """Run every reconciliation phase to completion in bounded batches."""

    def __init__(
        self,
        settings: EngineSettings,
        orchestrator_factory: OrchestratorFactory,
        session_factory: sessionmaker[Session] | None = None,
        phases: tuple[ReconciliationPhase, ...] = ALL_PHASES,
    ):
        self._settings = settings
        self._orchestrator_factory = orchestrator_factory
        self._session_factory = session_factory
        self._phases = phases

    def run(self, batch_size: int | None = None) -> ReconciliationSummary:
        limit = batch_size or self._settings.reconciliation.batch_size
        if limit < 1:
            raise ValueError("batch size must be at least 1")

        # Maintenance binds its own job id first; reuse it so both share one.
        job_id = LogContext.get_all().get("job_id") or str(uuid4())
        total = ReconciliationSummary()
        with LogContext.for_reconciliation(job_id):
            logger.info(
                "reconciliation_started",
                extra={"batch_size": limit, "phases": [p.value for p in self._phases]},
            )
            for phase in self._phases:
                with LogContext.for_reconciliation(phase=phase):
                    total = total.merge(self._run_phase(phase, limit))
            logger.info(
                "reconciliation_completed",
                extra={
                    "scanned": total.scanned,
                    "repaired": total.repaired,
                    "failed": total.failed,
                    "expired_found": total.expired_found,
                    "expired_marked": total.expired_marked,
                },
            )
        return total

    def _run_phase(self, phase: ReconciliationPhase, limit: int) -> ReconciliationSummary:
        summary = ReconciliationSummary()
        cursor: UUID | None = None
        batches = 0

        while True:
            try:
                batch = self._run_batch(phase, cursor, limit)
            except Exception as exc:
                logger.error(
                    "reconciliation_batch_failed",
                    extra={
                        "cursor": str(cursor) if cursor else None,
                        "error_code": getattr(exc, "code", type(exc).__name__),
                    },
                    exc_info=True,
                )
                failure = ItemFailure(
                    issue_kind=None,
                    reference_id=cursor,
                    error_code=getattr(exc, "code", type(exc).__name__),
                    message=f"{phase.value} batch failed: {exc}",
                )
                return summary.merge(ReconciliationSummary(failed=1, failures=(failure,)))

            batches += 1
            summary = summary.merge(batch.summary)
            if batch.next_cursor is None:
                break
            cursor = batch.next_cursor

        logger.info(
            "reconciliation_phase_completed",
            extra={
                "batches": batches,
                "scanned": summary.scanned,
                "repaired": summary.repaired,
                "failed": summary.failed,
            },
        )
        return summary

    def _run_batch(
        self,
        phase: ReconciliationPhase,
        cursor: UUID | None,
        limit: int,
    ) -> ReconciliationBatch:
        tx = self._settings.transactions
        return run_unit_of_work(
            lambda session: self._orchestrator_factory(session).reconciliation.run_batch(
                phase, cursor, limit,
            ),
            operation=f"reconcile.{phase.value}",
            factory=self._session_factory,
            attempts=tx.transient_retry_attempts,
            backoff_ms=tx.retry_backoff_ms,
        )
