"""
Module: loyalty_kernel.selectors.integrity_selector
Responsibility: Read-only detection of cross-record invariant violations,
    plus the keyset-paged finder queries the reconciliation job repairs from.
Architecture position: Kernel > Selectors.  Never writes.

Issue kinds:
    MISSING_CARD               ACTIVE enrollment without an ACTIVE card
    MISSING_ENROLLMENT         ACTIVE card without an ACTIVE enrollment
    ORPHANED_APPROVAL_REQUEST  request with no notification id, or whose
                               notification row is gone
    UNSYNCED_NOTIFICATION      request's notification action_taken flag
                               disagrees with the request being resolved

Paging:
    Every finder is ``WHERE id > :after ORDER BY id LIMIT :limit`` so a
    batch can be repaired and committed before the next one is read,
    without OFFSET drift when repaired rows leave the result set.
"""

from collections.abc import Iterator
from uuid import UUID

from sqlalchemy import and_, exists, func, or_, select

from loyalty_kernel.domain.enrollment import (
    ApprovalStatus,
    CardStatus,
    EnrollmentStatistics,
    EnrollmentStatus,
    IntegrityIssue,
    IssueKind,
)
from loyalty_kernel.exceptions import IntegrityViolationsFoundError
from loyalty_kernel.models.approval_request import ApprovalRequestModel
from loyalty_kernel.models.enrollment import EnrollmentModel, LoyaltyCardModel
from loyalty_kernel.models.notification import NotificationModel
from loyalty_kernel.selectors.base import BaseSelector

DEFAULT_PAGE_SIZE = 500

_ACTIVE_CARD_FOR_ENROLLMENT = exists().where(
    LoyaltyCardModel.customer_id == EnrollmentModel.customer_id,
    LoyaltyCardModel.program_id == EnrollmentModel.program_id,
    LoyaltyCardModel.status == CardStatus.ACTIVE.value,
)

_ACTIVE_ENROLLMENT_FOR_CARD = exists().where(
    EnrollmentModel.customer_id == LoyaltyCardModel.customer_id,
    EnrollmentModel.program_id == LoyaltyCardModel.program_id,
    EnrollmentModel.status == EnrollmentStatus.ACTIVE.value,
)

_NOTIFICATION_FOR_REQUEST = exists().where(
    NotificationModel.id == ApprovalRequestModel.notification_id,
)


def _keyset(stmt, id_column, after: UUID | None, limit: int):
    if after is not None:
        stmt = stmt.where(id_column > after)
    return stmt.order_by(id_column).limit(limit)


class IntegrityValidator(BaseSelector[EnrollmentModel]):
    """Enumerate invariant violations without modifying anything."""

    # ------------------------------------------------------------------
    # Keyset-paged finders (shared with reconciliation)
    # ------------------------------------------------------------------

    def enrollments_missing_card(
        self, after: UUID | None = None, limit: int = DEFAULT_PAGE_SIZE,
    ) -> list[EnrollmentModel]:
        stmt = select(EnrollmentModel).where(
            EnrollmentModel.status == EnrollmentStatus.ACTIVE.value,
            ~_ACTIVE_CARD_FOR_ENROLLMENT,
        )
        return list(self.session.execute(_keyset(stmt, EnrollmentModel.id, after, limit)).scalars())

    def cards_missing_enrollment(
        self, after: UUID | None = None, limit: int = DEFAULT_PAGE_SIZE,
    ) -> list[LoyaltyCardModel]:
        stmt = select(LoyaltyCardModel).where(
            LoyaltyCardModel.status == CardStatus.ACTIVE.value,
            ~_ACTIVE_ENROLLMENT_FOR_CARD,
        )
        return list(self.session.execute(_keyset(stmt, LoyaltyCardModel.id, after, limit)).scalars())

    def orphaned_requests(
        self, after: UUID | None = None, limit: int = DEFAULT_PAGE_SIZE,
    ) -> list[ApprovalRequestModel]:
        stmt = select(ApprovalRequestModel).where(
            or_(
                ApprovalRequestModel.notification_id.is_(None),
                ~_NOTIFICATION_FOR_REQUEST,
            )
        )
        return list(
            self.session.execute(_keyset(stmt, ApprovalRequestModel.id, after, limit)).scalars()
        )

    def unsynced_notifications(
        self, after: UUID | None = None, limit: int = DEFAULT_PAGE_SIZE,
    ) -> list[tuple[ApprovalRequestModel, NotificationModel]]:
        pending = ApprovalRequestModel.status == ApprovalStatus.PENDING.value
        stmt = (
            select(ApprovalRequestModel, NotificationModel)
            .join(NotificationModel, NotificationModel.id == ApprovalRequestModel.notification_id)
            .where(
                or_(
                    and_(~pending, NotificationModel.action_taken.is_(False)),
                    and_(pending, NotificationModel.action_taken.is_(True)),
                )
            )
        )
        rows = self.session.execute(_keyset(stmt, ApprovalRequestModel.id, after, limit))
        return [(row[0], row[1]) for row in rows]

    def expired_pending_requests(
        self, after: UUID | None = None, limit: int = DEFAULT_PAGE_SIZE,
    ) -> list[ApprovalRequestModel]:
        stmt = select(ApprovalRequestModel).where(
            ApprovalRequestModel.status == ApprovalStatus.PENDING.value,
            ApprovalRequestModel.expires_at <= self.clock.now_utc(),
        )
        return list(
            self.session.execute(_keyset(stmt, ApprovalRequestModel.id, after, limit)).scalars()
        )

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _all_pages(self, finder) -> Iterator:
        after = None
        while True:
            page = finder(after=after, limit=DEFAULT_PAGE_SIZE)
            yield from page
            if len(page) < DEFAULT_PAGE_SIZE:
                return
            last = page[-1]
            after = (last[0] if isinstance(last, tuple) else last).id

    def validate(self) -> list[IntegrityIssue]:
        """Return every current invariant violation.  Empty means consistent."""
        issues: list[IntegrityIssue] = []

        for enrollment in self._all_pages(self.enrollments_missing_card):
            issues.append(IntegrityIssue(
                kind=IssueKind.MISSING_CARD,
                reference_id=enrollment.id,
                customer_id=enrollment.customer_id,
                program_id=enrollment.program_id,
                business_id=enrollment.business_id,
                detail="Active enrollment has no active loyalty card",
            ))

        for card in self._all_pages(self.cards_missing_enrollment):
            issues.append(IntegrityIssue(
                kind=IssueKind.MISSING_ENROLLMENT,
                reference_id=card.id,
                customer_id=card.customer_id,
                program_id=card.program_id,
                business_id=card.business_id,
                detail=f"Active card {card.card_number} has no active enrollment",
            ))

        for request in self._all_pages(self.orphaned_requests):
            issues.append(IntegrityIssue(
                kind=IssueKind.ORPHANED_APPROVAL_REQUEST,
                reference_id=request.id,
                customer_id=request.customer_id,
                program_id=request.program_id,
                business_id=request.business_id,
                detail="Approval request has no notification",
            ))

        for request, notification in self._all_pages(self.unsynced_notifications):
            issues.append(IntegrityIssue(
                kind=IssueKind.UNSYNCED_NOTIFICATION,
                reference_id=request.id,
                customer_id=request.customer_id,
                program_id=request.program_id,
                business_id=request.business_id,
                detail=(
                    f"Request is {request.status} but notification "
                    f"{notification.id} action_taken={notification.action_taken}"
                ),
            ))

        return issues

    def assert_consistent(self) -> None:
        """
        Raises:
            IntegrityViolationsFoundError: if validate() found any issue.
        """
        issues = self.validate()
        if issues:
            raise IntegrityViolationsFoundError(issues)

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def _count(self, stmt) -> int:
        return int(self.session.execute(stmt).scalar_one())

    def statistics(self) -> EnrollmentStatistics:
        return EnrollmentStatistics(
            active_enrollments=self._count(
                select(func.count()).select_from(EnrollmentModel).where(
                    EnrollmentModel.status == EnrollmentStatus.ACTIVE.value,
                )
            ),
            active_cards=self._count(
                select(func.count()).select_from(LoyaltyCardModel).where(
                    LoyaltyCardModel.status == CardStatus.ACTIVE.value,
                )
            ),
            missing_cards=self._count(
                select(func.count()).select_from(EnrollmentModel).where(
                    EnrollmentModel.status == EnrollmentStatus.ACTIVE.value,
                    ~_ACTIVE_CARD_FOR_ENROLLMENT,
                )
            ),
            missing_enrollments=self._count(
                select(func.count()).select_from(LoyaltyCardModel).where(
                    LoyaltyCardModel.status == CardStatus.ACTIVE.value,
                    ~_ACTIVE_ENROLLMENT_FOR_CARD,
                )
            ),
            pending_approvals=self._count(
                select(func.count()).select_from(ApprovalRequestModel).where(
                    ApprovalRequestModel.status == ApprovalStatus.PENDING.value,
                )
            ),
            expired_pending=self._count(
                select(func.count()).select_from(ApprovalRequestModel).where(
                    ApprovalRequestModel.status == ApprovalStatus.PENDING.value,
                    ApprovalRequestModel.expires_at <= self.clock.now_utc(),
                )
            ),
        )
