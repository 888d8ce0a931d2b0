"""
Module: loyalty_kernel.models.notification
Responsibility: Durable record of customer- and business-facing messages.

Architecture position: Kernel > Models.  May import from db/base.py only.

Notes:
    Delivery transport is out of scope; a row here is the message.  The
    notification linked from an approval request carries requires_action
    and has action_taken set in the same transaction that resolves the
    request.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import Boolean, CheckConstraint, DateTime, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from loyalty_kernel.db.base import JSONPayload, TimestampedBase


class NotificationModel(TimestampedBase):
    """Persistent notification."""

    __tablename__ = "notifications"

    __table_args__ = (
        CheckConstraint(
            "audience IN ('CUSTOMER', 'BUSINESS')",
            name="ck_notifications_valid_audience",
        ),
        Index("ix_notifications_customer_created", "customer_id", "created_at"),
        Index("ix_notifications_business_created", "business_id", "created_at"),
        Index(
            "ix_notifications_retention",
            "action_taken", "is_read", "created_at",
        ),
    )

    customer_id: Mapped[int] = mapped_column(nullable=False)
    business_id: Mapped[int] = mapped_column(nullable=False)
    audience: Mapped[str] = mapped_column(String(16), nullable=False)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False, default="")
    data: Mapped[dict[str, Any] | None] = mapped_column(JSONPayload, nullable=True)
    requires_action: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False,
    )
    action_taken: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False,
    )
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    read_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    def __repr__(self) -> str:
        return (
            f"<Notification {self.id} {self.type} to={self.audience} "
            f"customer={self.customer_id} business={self.business_id}>"
        )
