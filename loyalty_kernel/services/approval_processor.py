"""
ApprovalRequestProcessor -- owns the PENDING -> APPROVED | REJECTED transition.

Responsibility:
    Creates approval requests and resolves them.  Resolution, the linked
    notification update, the relationship upsert, the business-facing notice
    and (on approval) Enrollment Activation all happen inside the caller's
    single transaction: either every record changes or none does.

Architecture position:
    Kernel > Services.  Flush-only; loyalty_services owns commit/rollback.

Invariants enforced:
    - Single resolution: the request row is locked (SELECT ... FOR UPDATE)
      before its status is read, so concurrent resolves serialize.  The
      first one writes; the rest observe the resolved row and either replay
      (same decision) or raise ResolutionConflictError (opposite decision).
    - Notification sync: the request's notification is actioned in the same
      flush that resolves the request.
    - Expiry: a PENDING request at or past expires_at cannot be resolved.
      Replay and conflict detection take precedence over expiry, so a
      request resolved before its deadline keeps replaying after it.

Failure modes:
    - ApprovalRequestNotFoundError, UnsupportedRequestKindError (validation).
    - ApprovalRequestExpiredError.
    - ResolutionConflictError.
    - DuplicatePendingRequestError, InvalidExpiryError on creation.
    - Anything raised by activation (CardNumberGenerationError, storage
      errors) propagates; the caller rolls back.
"""

from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from loyalty_kernel.domain.clock import Clock, ensure_utc
from loyalty_kernel.domain.enrollment import (
    ApprovalRequestView,
    ApprovalStatus,
    NotificationAudience,
    NotificationType,
    RelationshipStatus,
    RequestKind,
    ResolutionOutcome,
    decision_status,
    is_valid_transition,
)
from loyalty_kernel.domain.identifiers import BusinessId, CustomerId, ProgramId
from loyalty_kernel.exceptions import (
    ApprovalRequestExpiredError,
    ApprovalRequestNotFoundError,
    DuplicatePendingRequestError,
    InvalidExpiryError,
    ResolutionConflictError,
)
from loyalty_kernel.logging_config import get_logger
from loyalty_kernel.models.approval_request import ApprovalRequestModel
from loyalty_kernel.services.base import BaseService
from loyalty_kernel.services.notification_sink import NotificationSink
from loyalty_kernel.services.relationship_ledger import RelationshipLedger
from loyalty_kernel.services.request_kinds import RequestKindRegistry

logger = get_logger("services.approval_processor")

DEFAULT_REQUEST_TTL = timedelta(days=7)


class ApprovalRequestProcessor(BaseService[ApprovalRequestModel]):
    """Create and resolve customer approval requests."""

    def __init__(
        self,
        session: Session,
        registry: RequestKindRegistry,
        relationships: RelationshipLedger,
        notifications: NotificationSink,
        clock: Clock | None = None,
        *,
        request_ttl: timedelta = DEFAULT_REQUEST_TTL,
    ):
        super().__init__(session, clock)
        self._registry = registry
        self._relationships = relationships
        self._notifications = notifications
        self._request_ttl = request_ttl

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_request(
        self,
        customer_id: CustomerId,
        business_id: BusinessId,
        program_id: ProgramId,
        *,
        kind: RequestKind = RequestKind.ENROLLMENT,
        data: dict[str, Any] | None = None,
        expires_at: datetime | None = None,
    ) -> ApprovalRequestView:
        """
        Record a PENDING request and the requires-action notification for it.

        A PENDING request for the same (customer, program, kind) that has
        already passed its deadline is superseded (moved to EXPIRED); an
        unexpired one raises DuplicatePendingRequestError.
        """
        self._registry.get(kind)

        now = self.clock.now_utc()
        expires = ensure_utc(expires_at) if expires_at is not None else now + self._request_ttl
        if expires <= now:
            raise InvalidExpiryError(now.isoformat(), expires.isoformat())

        existing = self._find_pending(customer_id, program_id, kind, lock=True)
        if existing is not None:
            if ensure_utc(existing.expires_at) > now:
                raise DuplicatePendingRequestError(
                    int(customer_id), int(program_id), str(existing.id),
                )
            self._expire(existing, reason="superseded")

        savepoint = self.session.begin_nested()
        try:
            notification = self._notifications.emit(
                customer_id=int(customer_id),
                business_id=int(business_id),
                audience=NotificationAudience.CUSTOMER,
                notification_type=NotificationType.ENROLLMENT_REQUEST,
                title="Program Enrollment Request",
                message="A business would like to enroll you in their loyalty program",
                data={"programId": int(program_id), **(data or {})},
                requires_action=True,
            )
            request = ApprovalRequestModel(
                customer_id=int(customer_id),
                business_id=int(business_id),
                program_id=int(program_id),
                kind=kind.value,
                status=ApprovalStatus.PENDING.value,
                notification_id=notification.id,
                data=data,
                requested_at=now,
                expires_at=expires,
            )
            self.session.add(request)
            self.session.flush()
            savepoint.commit()
        except IntegrityError:
            savepoint.rollback()
            winner = self._find_pending(customer_id, program_id, kind)
            raise DuplicatePendingRequestError(
                int(customer_id), int(program_id),
                str(winner.id) if winner is not None else "unknown",
            ) from None

        logger.info(
            "approval_request_created",
            extra={
                "request_id": str(request.id),
                "request_kind": kind.value,
                "customer_id": int(customer_id),
                "business_id": int(business_id),
                "program_id": int(program_id),
                "notification_id": str(notification.id),
                "expires_at": expires,
            },
        )
        return request.to_view()

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def resolve(self, request_id: UUID, approve: bool) -> ResolutionOutcome:
        """
        Resolve a request with the customer's decision.

        Preconditions:
            Called inside an open transaction.
        Postconditions:
            On a fresh resolution every dependent record has been flushed in
            the caller's transaction.  On a replay nothing was written.
        """
        request = self._load_for_update(request_id)
        handler = self._registry.get(request.kind)
        target = decision_status(approve)
        current = ApprovalStatus(request.status)

        if current == ApprovalStatus.EXPIRED:
            raise ApprovalRequestExpiredError(str(request.id), ensure_utc(request.expires_at).isoformat())

        if current != ApprovalStatus.PENDING:
            if current != target:
                logger.warning(
                    "approval_resolution_conflict",
                    extra={
                        "request_id": str(request.id),
                        "recorded_status": current.value,
                        "attempted_status": target.value,
                    },
                )
                raise ResolutionConflictError(str(request.id), current.value, target.value)
            card_id = handler.replay_card_id(request) if approve else None
            logger.info(
                "approval_resolution_replayed",
                extra={"request_id": str(request.id), "status": current.value},
            )
            return ResolutionOutcome(
                request_id=request.id, status=current, card_id=card_id, replayed=True,
            )

        now = self.clock.now_utc()
        if now >= ensure_utc(request.expires_at):
            logger.info(
                "approval_resolution_expired",
                extra={"request_id": str(request.id), "expires_at": request.expires_at},
            )
            raise ApprovalRequestExpiredError(str(request.id), ensure_utc(request.expires_at).isoformat())

        if not is_valid_transition(current, target):
            raise ResolutionConflictError(str(request.id), current.value, target.value)

        request.status = target.value
        request.responded_at = now
        self._notifications.set_action_taken(request.notification_id)
        self._relationships.upsert(
            request.customer_id,
            request.business_id,
            RelationshipStatus.ACTIVE if approve else RelationshipStatus.DECLINED,
        )
        notice_type, title, message = handler.business_notice(approve)
        self._notifications.emit(
            customer_id=request.customer_id,
            business_id=request.business_id,
            audience=NotificationAudience.BUSINESS,
            notification_type=notice_type,
            title=title,
            message=message,
            data={
                "programId": request.program_id,
                "customerId": request.customer_id,
                "requestId": str(request.id),
                "approved": approve,
            },
        )
        self.session.flush()

        if approve:
            card_id = handler.on_approved(request)
        else:
            handler.on_rejected(request)
            card_id = None

        logger.info(
            "approval_request_resolved",
            extra={
                "request_id": str(request.id),
                "request_kind": request.kind,
                "status": target.value,
                "customer_id": request.customer_id,
                "program_id": request.program_id,
                "card_id": str(card_id) if card_id else None,
            },
        )
        return ResolutionOutcome(request_id=request.id, status=target, card_id=card_id)

    # ------------------------------------------------------------------
    # Expiry
    # ------------------------------------------------------------------

    def expire_request(self, request_id: UUID) -> bool:
        """
        Move a PENDING request that is past its deadline to EXPIRED.

        Returns:
            False if the request was no longer PENDING or not yet expired
            by the time the row lock was acquired.
        """
        request = self._load_for_update(request_id)
        if request.status != ApprovalStatus.PENDING.value:
            return False
        if self.clock.now_utc() < ensure_utc(request.expires_at):
            return False
        self._expire(request, reason="deadline_passed")
        return True

    def _expire(self, request: ApprovalRequestModel, *, reason: str) -> None:
        request.status = ApprovalStatus.EXPIRED.value
        request.responded_at = self.clock.now_utc()
        self._notifications.set_action_taken(request.notification_id)
        self._notifications.emit(
            customer_id=request.customer_id,
            business_id=request.business_id,
            audience=NotificationAudience.BUSINESS,
            notification_type=NotificationType.ENROLLMENT_EXPIRED,
            title="Enrollment Request Expired",
            message="A customer did not respond to your loyalty program invitation",
            data={
                "programId": request.program_id,
                "customerId": request.customer_id,
                "requestId": str(request.id),
            },
        )
        self.session.flush()
        logger.info(
            "approval_request_expired",
            extra={"request_id": str(request.id), "reason": reason},
        )

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def _load_for_update(self, request_id: UUID) -> ApprovalRequestModel:
        request = self.session.execute(
            select(ApprovalRequestModel)
            .where(ApprovalRequestModel.id == request_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if request is None:
            raise ApprovalRequestNotFoundError(str(request_id))
        return request

    def _find_pending(
        self,
        customer_id: CustomerId,
        program_id: ProgramId,
        kind: RequestKind,
        *,
        lock: bool = False,
    ) -> ApprovalRequestModel | None:
        stmt = select(ApprovalRequestModel).where(
            ApprovalRequestModel.customer_id == int(customer_id),
            ApprovalRequestModel.program_id == int(program_id),
            ApprovalRequestModel.kind == kind.value,
            ApprovalRequestModel.status == ApprovalStatus.PENDING.value,
        )
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return self.session.execute(stmt).scalar_one_or_none()
