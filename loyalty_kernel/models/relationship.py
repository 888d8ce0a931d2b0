"""
Module: loyalty_kernel.models.relationship
Responsibility: Customer <-> business relationship status.

One row per (customer, business); last write wins.
"""

from __future__ import annotations

from sqlalchemy import CheckConstraint, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from loyalty_kernel.db.base import TimestampedBase


class CustomerBusinessRelationshipModel(TimestampedBase):
    __tablename__ = "customer_business_relationships"

    __table_args__ = (
        UniqueConstraint(
            "customer_id", "business_id",
            name="uq_customer_business_relationships_pair",
        ),
        CheckConstraint(
            "status IN ('ACTIVE', 'DECLINED')",
            name="ck_customer_business_relationships_valid_status",
        ),
    )

    customer_id: Mapped[int] = mapped_column(nullable=False)
    business_id: Mapped[int] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)

    def __repr__(self) -> str:
        return (
            f"<Relationship customer={self.customer_id} "
            f"business={self.business_id} status={self.status}>"
        )
