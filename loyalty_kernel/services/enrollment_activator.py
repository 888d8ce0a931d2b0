"""
EnrollmentActivator -- the single writer of enrollment/card pairs.

Responsibility:
    Makes (customer, program) enrolled-and-carded as one atomic step inside
    the caller's transaction.  The live approval path and the reconciliation
    job both go through here, so there is exactly one implementation of
    "what an active enrollment looks like".

Architecture position:
    Kernel > Services.  Never opens or commits a transaction of its own.

Invariants enforced:
    - One ACTIVE card per ACTIVE enrollment: the enrollment row is locked
      (SELECT ... FOR UPDATE, inserting it first if absent) before the card
      existence check, so concurrent activations for a pair serialize and
      the second one finds the first one's card.
    - At most one card per pair, ever: an existing card in any status is
      reactivated rather than minting a second one.

Failure modes:
    - CardNumberGenerationError from CardIssuer; the caller's transaction
      must roll back.
"""

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from loyalty_kernel.domain.clock import Clock
from loyalty_kernel.domain.enrollment import (
    CardStatus,
    EnrollmentStatus,
    NotificationAudience,
    NotificationType,
)
from loyalty_kernel.domain.identifiers import BusinessId, CustomerId, ProgramId
from loyalty_kernel.logging_config import get_logger
from loyalty_kernel.models.enrollment import EnrollmentModel, LoyaltyCardModel
from loyalty_kernel.services.base import BaseService
from loyalty_kernel.services.card_issuer import CardIssuer
from loyalty_kernel.services.notification_sink import NotificationSink

logger = get_logger("services.enrollment_activator")


@dataclass(frozen=True)
class ActivationResult:
    """What activation changed.  ``changed`` is False for a no-op."""

    card_id: UUID
    enrollment_id: UUID
    enrollment_created: bool = False
    enrollment_reactivated: bool = False
    card_minted: bool = False
    card_reactivated: bool = False

    @property
    def changed(self) -> bool:
        return (
            self.enrollment_created
            or self.enrollment_reactivated
            or self.card_minted
            or self.card_reactivated
        )


class EnrollmentActivator(BaseService[EnrollmentModel]):
    """Activate, restore and deactivate enrollment/card pairs."""

    def __init__(
        self,
        session: Session,
        card_issuer: CardIssuer,
        notifications: NotificationSink,
        clock: Clock | None = None,
    ):
        super().__init__(session, clock)
        self._card_issuer = card_issuer
        self._notifications = notifications

    def _lock_enrollment(
        self,
        customer_id: CustomerId,
        program_id: ProgramId,
        business_id: BusinessId,
        *,
        initial_points: int = 0,
    ) -> tuple[EnrollmentModel, bool]:
        now = self.clock.now_utc()
        return self._lock_or_create(
            EnrollmentModel,
            keys={"customer_id": int(customer_id), "program_id": int(program_id)},
            defaults={
                "business_id": int(business_id),
                "status": EnrollmentStatus.ACTIVE.value,
                "current_points": initial_points,
                "enrolled_at": now,
                "created_at": now,
                "updated_at": now,
            },
        )

    def activate(
        self,
        customer_id: CustomerId,
        program_id: ProgramId,
        business_id: BusinessId,
    ) -> ActivationResult:
        """
        Ensure the pair has an ACTIVE enrollment and exactly one ACTIVE card.

        Preconditions:
            Called inside an open transaction.
        Postconditions:
            Enrollment and card for the pair are ACTIVE.  A CARD_CREATED
            notification is written only when a card was minted.
        """
        now = self.clock.now_utc()
        enrollment, created = self._lock_enrollment(customer_id, program_id, business_id)

        reactivated = False
        if not enrollment.is_active:
            enrollment.status = EnrollmentStatus.ACTIVE.value
            enrollment.updated_at = now
            reactivated = True

        card = self._card_issuer.find_card(customer_id, program_id, lock=True)
        minted = False
        card_reactivated = False
        if card is None:
            card = self._card_issuer.mint(customer_id, program_id, business_id)
            minted = True
            self._notifications.emit(
                customer_id=int(customer_id),
                business_id=int(business_id),
                audience=NotificationAudience.CUSTOMER,
                notification_type=NotificationType.CARD_CREATED,
                title="Loyalty Card Created",
                message="Your loyalty card is ready!",
                data={
                    "programId": int(program_id),
                    "cardId": str(card.id),
                    "cardNumber": card.card_number,
                },
            )
        elif not card.is_active:
            card.status = CardStatus.ACTIVE.value
            card.updated_at = now
            card_reactivated = True

        self.session.flush()

        result = ActivationResult(
            card_id=card.id,
            enrollment_id=enrollment.id,
            enrollment_created=created,
            enrollment_reactivated=reactivated,
            card_minted=minted,
            card_reactivated=card_reactivated,
        )
        logger.info(
            "enrollment_activated",
            extra={
                "customer_id": int(customer_id),
                "program_id": int(program_id),
                "business_id": int(business_id),
                "card_id": str(card.id),
                "enrollment_created": created,
                "enrollment_reactivated": reactivated,
                "card_minted": minted,
                "card_reactivated": card_reactivated,
            },
        )
        return result

    def restore_enrollment(self, card: LoyaltyCardModel) -> ActivationResult:
        """
        Bring the enrollment for an ACTIVE card back to ACTIVE.

        The restored enrollment carries the card's point balance.  Used by
        reconciliation only; the live path always goes through activate().
        """
        customer_id = CustomerId(card.customer_id)
        program_id = ProgramId(card.program_id)
        business_id = BusinessId(card.business_id)
        now = self.clock.now_utc()

        enrollment, created = self._lock_enrollment(
            customer_id, program_id, business_id, initial_points=card.points,
        )
        reactivated = False
        if not enrollment.is_active:
            enrollment.status = EnrollmentStatus.ACTIVE.value
            enrollment.current_points = card.points
            enrollment.updated_at = now
            reactivated = True
        self.session.flush()

        logger.info(
            "enrollment_restored",
            extra={
                "customer_id": card.customer_id,
                "program_id": card.program_id,
                "card_id": str(card.id),
                "enrollment_created": created,
                "enrollment_reactivated": reactivated,
                "points": card.points,
            },
        )
        return ActivationResult(
            card_id=card.id,
            enrollment_id=enrollment.id,
            enrollment_created=created,
            enrollment_reactivated=reactivated,
        )

    def deactivate(self, customer_id: CustomerId, program_id: ProgramId) -> bool:
        """
        Set the pair's enrollment and card INACTIVE together.

        Returns:
            True if anything changed, False if the pair was not enrolled or
            already inactive.
        """
        now = self.clock.now_utc()
        enrollment = self.session.execute(
            select(EnrollmentModel)
            .where(
                EnrollmentModel.customer_id == int(customer_id),
                EnrollmentModel.program_id == int(program_id),
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

        changed = False
        if enrollment is not None and enrollment.is_active:
            enrollment.status = EnrollmentStatus.INACTIVE.value
            enrollment.updated_at = now
            changed = True

        card = self._card_issuer.find_card(customer_id, program_id, lock=True)
        if card is not None and card.is_active:
            card.status = CardStatus.INACTIVE.value
            card.updated_at = now
            changed = True

        self.session.flush()
        if changed:
            logger.info(
                "enrollment_deactivated",
                extra={"customer_id": int(customer_id), "program_id": int(program_id)},
            )
        return changed
