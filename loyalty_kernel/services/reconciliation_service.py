"""
ReconciliationService -- repairs invariant violations one batch at a time.

Responsibility:
    For one phase and one keyset page, find violating rows and repair each
    inside its own SAVEPOINT.  Repairs go through the same EnrollmentActivator
    the live approval path uses, so a racing live write and a repair converge
    on the same state.

Architecture position:
    Kernel > Services.  Flush-only; each page runs in a transaction owned by
    loyalty_services.ReconciliationJob.

Invariants enforced:
    - Per-item isolation: a failing item rolls back only its own SAVEPOINT.
      It is counted and logged, never raised.
    - Fixed point: repairing only rows that currently violate an invariant
      means a second run with no intervening writes repairs nothing.
    - Expired PENDING requests are reported always, and moved to EXPIRED
      only when ``auto_expire`` is set.
"""

from dataclasses import dataclass
from enum import Enum
from uuid import UUID

from sqlalchemy.orm import Session

from loyalty_kernel.domain.clock import Clock
from loyalty_kernel.domain.enrollment import (
    ApprovalStatus,
    IssueKind,
    ItemFailure,
    ReconciliationSummary,
)
from loyalty_kernel.domain.identifiers import BusinessId, CustomerId, ProgramId
from loyalty_kernel.logging_config import get_logger
from loyalty_kernel.selectors.integrity_selector import IntegrityValidator
from loyalty_kernel.services.approval_processor import ApprovalRequestProcessor
from loyalty_kernel.services.base import BaseService
from loyalty_kernel.services.enrollment_activator import EnrollmentActivator
from loyalty_kernel.services.notification_sink import NotificationSink

logger = get_logger("services.reconciliation")


class ReconciliationPhase(str, Enum):
    """Phases in the order a full run executes them."""

    MISSING_CARDS = "missing_cards"
    MISSING_ENROLLMENTS = "missing_enrollments"
    UNSYNCED_NOTIFICATIONS = "unsynced_notifications"
    EXPIRED_REQUESTS = "expired_requests"


ALL_PHASES: tuple[ReconciliationPhase, ...] = tuple(ReconciliationPhase)

_PHASE_ISSUE = {
    ReconciliationPhase.MISSING_CARDS: IssueKind.MISSING_CARD,
    ReconciliationPhase.MISSING_ENROLLMENTS: IssueKind.MISSING_ENROLLMENT,
    ReconciliationPhase.UNSYNCED_NOTIFICATIONS: IssueKind.UNSYNCED_NOTIFICATION,
    ReconciliationPhase.EXPIRED_REQUESTS: None,
}


@dataclass(frozen=True)
class ReconciliationBatch:
    """One page of one phase.  ``next_cursor`` is None on the last page."""

    phase: ReconciliationPhase
    summary: ReconciliationSummary
    next_cursor: UUID | None


class ReconciliationService(BaseService):
    """Scan-and-repair for one keyset page at a time."""

    def __init__(
        self,
        session: Session,
        activator: EnrollmentActivator,
        processor: ApprovalRequestProcessor,
        notifications: NotificationSink,
        validator: IntegrityValidator,
        clock: Clock | None = None,
        *,
        auto_expire: bool = False,
    ):
        super().__init__(session, clock)
        self._activator = activator
        self._processor = processor
        self._notifications = notifications
        self._validator = validator
        self._auto_expire = auto_expire

    def run_batch(
        self,
        phase: ReconciliationPhase,
        after: UUID | None,
        limit: int,
    ) -> ReconciliationBatch:
        if limit < 1:
            raise ValueError("batch size must be at least 1")

        if phase == ReconciliationPhase.MISSING_CARDS:
            items = self._validator.enrollments_missing_card(after=after, limit=limit)
            keys = [e.id for e in items]
            summary = self._repair_each(phase, items, keys, self._repair_missing_card)
        elif phase == ReconciliationPhase.MISSING_ENROLLMENTS:
            items = self._validator.cards_missing_enrollment(after=after, limit=limit)
            keys = [c.id for c in items]
            summary = self._repair_each(
                phase, items, keys,
                lambda card: self._activator.restore_enrollment(card).changed,
            )
        elif phase == ReconciliationPhase.UNSYNCED_NOTIFICATIONS:
            items = self._validator.unsynced_notifications(after=after, limit=limit)
            keys = [request.id for request, _ in items]
            summary = self._repair_each(phase, items, keys, self._repair_notification)
        else:
            items = self._validator.expired_pending_requests(after=after, limit=limit)
            keys = [r.id for r in items]
            summary = self._sweep_expired(items)

        next_cursor = keys[-1] if len(keys) == limit else None
        logger.info(
            "reconciliation_batch_completed",
            extra={
                "phase": phase.value,
                "scanned": summary.scanned,
                "repaired": summary.repaired,
                "failed": summary.failed,
                "expired_found": summary.expired_found,
                "expired_marked": summary.expired_marked,
                "has_more": next_cursor is not None,
            },
        )
        return ReconciliationBatch(phase=phase, summary=summary, next_cursor=next_cursor)

    # ------------------------------------------------------------------
    # Item repairs
    # ------------------------------------------------------------------

    def _repair_missing_card(self, enrollment) -> bool:
        result = self._activator.activate(
            CustomerId(enrollment.customer_id),
            ProgramId(enrollment.program_id),
            BusinessId(enrollment.business_id),
        )
        return result.changed

    def _repair_notification(self, item) -> bool:
        request, notification = item
        resolved = request.status != ApprovalStatus.PENDING.value
        return self._notifications.set_action_taken(notification.id, resolved)

    def _repair_each(self, phase, items, keys, repair) -> ReconciliationSummary:
        repaired = 0
        failures: list[ItemFailure] = []

        for item, key in zip(items, keys):
            savepoint = self.session.begin_nested()
            try:
                changed = repair(item)
                savepoint.commit()
            except Exception as exc:
                savepoint.rollback()
                failure = ItemFailure(
                    issue_kind=_PHASE_ISSUE[phase],
                    reference_id=key,
                    error_code=getattr(exc, "code", type(exc).__name__),
                    message=str(exc),
                )
                failures.append(failure)
                logger.warning(
                    "reconciliation_item_failed",
                    extra={
                        "phase": phase.value,
                        "reference_id": str(key),
                        "error_code": failure.error_code,
                    },
                    exc_info=True,
                )
                continue
            if changed:
                repaired += 1

        return ReconciliationSummary(
            scanned=len(keys),
            repaired=repaired,
            failed=len(failures),
            failures=tuple(failures),
        )

    def _sweep_expired(self, requests) -> ReconciliationSummary:
        found = len(requests)
        if found:
            logger.info(
                "expired_pending_requests_found",
                extra={
                    "count": found,
                    "auto_expire": self._auto_expire,
                    "request_ids": [str(r.id) for r in requests],
                },
            )
        if not self._auto_expire:
            return ReconciliationSummary(expired_found=found)

        marked = 0
        failures: list[ItemFailure] = []
        for request in requests:
            savepoint = self.session.begin_nested()
            try:
                expired = self._processor.expire_request(request.id)
                savepoint.commit()
            except Exception as exc:
                savepoint.rollback()
                failures.append(ItemFailure(
                    issue_kind=None,
                    reference_id=request.id,
                    error_code=getattr(exc, "code", type(exc).__name__),
                    message=str(exc),
                ))
                logger.warning(
                    "reconciliation_expiry_failed",
                    extra={"reference_id": str(request.id)},
                    exc_info=True,
                )
                continue
            if expired:
                marked += 1

        return ReconciliationSummary(
            failed=len(failures),
            expired_found=found,
            expired_marked=marked,
            failures=tuple(failures),
        )
