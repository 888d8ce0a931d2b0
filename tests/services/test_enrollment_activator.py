"""
Tests for EnrollmentActivator -- the single writer of enrollment/card pairs.

Covers:
- activate(): creates enrollment + card + CARD_CREATED notification
- activate() twice: no-op the second time, same card, no second notification
- deactivate() then activate(): same card reactivated, never a second card
- restore_enrollment(): enrollment recreated with the card's points
- deactivate(): unknown pair returns False
"""

from sqlalchemy import func, select

from loyalty_kernel.domain.enrollment import (
    CardStatus,
    EnrollmentStatus,
    NotificationAudience,
    NotificationType,
)
from loyalty_kernel.domain.identifiers import BusinessId, CustomerId, ProgramId
from loyalty_kernel.models.enrollment import EnrollmentModel, LoyaltyCardModel
from loyalty_kernel.models.notification import NotificationModel

CUSTOMER = CustomerId(10)
PROGRAM = ProgramId(5)
BUSINESS = BusinessId(3)


def _count(session, model, **filters) -> int:
    stmt = select(func.count()).select_from(model).filter_by(**filters)
    return session.execute(stmt).scalar_one()


def _card_notifications(session) -> list[NotificationModel]:
    return list(session.execute(
        select(NotificationModel).where(
            NotificationModel.type == NotificationType.CARD_CREATED.value,
        )
    ).scalars())


class TestActivate:

    def test_first_activation_creates_pair(self, session, activator):
        result = activator.activate(CUSTOMER, PROGRAM, BUSINESS)

        assert result.enrollment_created
        assert result.card_minted
        assert result.changed

        enrollment = session.get(EnrollmentModel, result.enrollment_id)
        card = session.get(LoyaltyCardModel, result.card_id)
        assert enrollment.status == EnrollmentStatus.ACTIVE.value
        assert enrollment.business_id == 3
        assert card.status == CardStatus.ACTIVE.value

        notices = _card_notifications(session)
        assert len(notices) == 1
        assert notices[0].audience == NotificationAudience.CUSTOMER.value
        assert notices[0].customer_id == 10
        assert notices[0].data["cardId"] == str(card.id)
        assert notices[0].data["programId"] == 5

    def test_second_activation_is_a_no_op(self, session, activator, captured_logs):
        first = activator.activate(CUSTOMER, PROGRAM, BUSINESS)
        second = activator.activate(CUSTOMER, PROGRAM, BUSINESS)

        assert second.card_id == first.card_id
        assert second.enrollment_id == first.enrollment_id
        assert not second.changed
        assert _count(session, LoyaltyCardModel) == 1
        assert _count(session, EnrollmentModel) == 1
        assert len(_card_notifications(session)) == 1

        activated = [r for r in captured_logs() if r["message"] == "enrollment_activated"]
        assert len(activated) == 2

    def test_reactivation_reuses_the_card(self, session, activator):
        first = activator.activate(CUSTOMER, PROGRAM, BUSINESS)
        assert activator.deactivate(CUSTOMER, PROGRAM)

        again = activator.activate(CUSTOMER, PROGRAM, BUSINESS)

        assert again.card_id == first.card_id
        assert again.enrollment_reactivated
        assert again.card_reactivated
        assert not again.card_minted
        assert _count(session, LoyaltyCardModel) == 1
        assert len(_card_notifications(session)) == 1

    def test_pairs_are_independent(self, session, activator):
        a = activator.activate(CUSTOMER, PROGRAM, BUSINESS)
        b = activator.activate(CUSTOMER, ProgramId(6), BUSINESS)
        c = activator.activate(CustomerId(11), PROGRAM, BUSINESS)
        assert len({a.card_id, b.card_id, c.card_id}) == 3
        assert _count(session, LoyaltyCardModel, status="ACTIVE") == 3


class TestDeactivate:

    def test_sets_both_inactive(self, session, activator):
        result = activator.activate(CUSTOMER, PROGRAM, BUSINESS)
        assert activator.deactivate(CUSTOMER, PROGRAM)

        assert session.get(EnrollmentModel, result.enrollment_id).status == "INACTIVE"
        assert session.get(LoyaltyCardModel, result.card_id).status == "INACTIVE"

    def test_already_inactive_returns_false(self, activator):
        activator.activate(CUSTOMER, PROGRAM, BUSINESS)
        assert activator.deactivate(CUSTOMER, PROGRAM)
        assert not activator.deactivate(CUSTOMER, PROGRAM)

    def test_unknown_pair_returns_false(self, activator):
        assert not activator.deactivate(CustomerId(404), PROGRAM)


class TestRestoreEnrollment:

    def test_restores_inactive_enrollment_with_card_points(self, session, activator):
        result = activator.activate(CUSTOMER, PROGRAM, BUSINESS)
        enrollment = session.get(EnrollmentModel, result.enrollment_id)
        card = session.get(LoyaltyCardModel, result.card_id)
        enrollment.status = EnrollmentStatus.INACTIVE.value
        card.points = 120
        session.flush()

        restored = activator.restore_enrollment(card)

        assert restored.enrollment_reactivated
        assert restored.enrollment_id == enrollment.id
        assert enrollment.status == EnrollmentStatus.ACTIVE.value
        assert enrollment.current_points == 120

    def test_creates_enrollment_when_absent(self, session, card_issuer, activator):
        card = card_issuer.mint(CUSTOMER, PROGRAM, BUSINESS)
        card.points = 40
        session.flush()

        restored = activator.restore_enrollment(card)

        assert restored.enrollment_created
        enrollment = session.get(EnrollmentModel, restored.enrollment_id)
        assert enrollment.current_points == 40
        assert enrollment.business_id == 3
