"""
Module: loyalty_kernel.models.enrollment
Responsibility: ORM persistence for program enrollments and loyalty cards.

Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ value types only.

Invariants enforced:
    - One enrollment row per (customer, program): unique constraint.
      Status toggles between ACTIVE and INACTIVE; rows are never deleted.
    - One card row per (customer, program): unique constraint.
    - Card numbers are globally unique: unique constraint.
    - Neither table permits DELETE (listeners in db/immutability.py).

Failure modes:
    - IntegrityError on a concurrent duplicate pair insert or card number
      collision.  EnrollmentActivator and CardIssuer handle both.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from loyalty_kernel.db.base import TimestampedBase
from loyalty_kernel.domain.enrollment import CardStatus, CardView, EnrollmentStatus


class EnrollmentModel(TimestampedBase):
    """A customer's membership in one loyalty program."""

    __tablename__ = "program_enrollments"

    __table_args__ = (
        UniqueConstraint(
            "customer_id", "program_id",
            name="uq_program_enrollments_customer_program",
        ),
        CheckConstraint(
            "status IN ('ACTIVE', 'INACTIVE')",
            name="ck_program_enrollments_valid_status",
        ),
        CheckConstraint(
            "current_points >= 0",
            name="ck_program_enrollments_points_non_negative",
        ),
        Index("ix_program_enrollments_status", "status"),
    )

    customer_id: Mapped[int] = mapped_column(nullable=False)
    program_id: Mapped[int] = mapped_column(nullable=False)
    business_id: Mapped[int] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=EnrollmentStatus.ACTIVE.value,
    )
    current_points: Mapped[int] = mapped_column(nullable=False, default=0)
    enrolled_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False,
    )

    @property
    def is_active(self) -> bool:
        return self.status == EnrollmentStatus.ACTIVE.value

    def __repr__(self) -> str:
        return (
            f"<Enrollment customer={self.customer_id} "
            f"program={self.program_id} status={self.status}>"
        )


class LoyaltyCardModel(TimestampedBase):
    """The card a customer presents for one loyalty program."""

    __tablename__ = "loyalty_cards"

    __table_args__ = (
        UniqueConstraint(
            "customer_id", "program_id",
            name="uq_loyalty_cards_customer_program",
        ),
        UniqueConstraint("card_number", name="uq_loyalty_cards_card_number"),
        CheckConstraint(
            "status IN ('ACTIVE', 'INACTIVE')",
            name="ck_loyalty_cards_valid_status",
        ),
        CheckConstraint("points >= 0", name="ck_loyalty_cards_points_non_negative"),
        Index("ix_loyalty_cards_status", "status"),
    )

    customer_id: Mapped[int] = mapped_column(nullable=False)
    program_id: Mapped[int] = mapped_column(nullable=False)
    business_id: Mapped[int] = mapped_column(nullable=False)
    card_number: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=CardStatus.ACTIVE.value,
    )
    points: Mapped[int] = mapped_column(nullable=False, default=0)

    @property
    def is_active(self) -> bool:
        return self.status == CardStatus.ACTIVE.value

    def __repr__(self) -> str:
        return (
            f"<LoyaltyCard {self.card_number} customer={self.customer_id} "
            f"program={self.program_id} status={self.status}>"
        )

    def to_view(self) -> CardView:
        return CardView(
            card_id=self.id,
            customer_id=self.customer_id,
            program_id=self.program_id,
            business_id=self.business_id,
            card_number=self.card_number,
            status=CardStatus(self.status),
            points=self.points,
        )
