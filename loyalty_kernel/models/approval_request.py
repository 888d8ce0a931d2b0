"""
Module: loyalty_kernel.models.approval_request
Responsibility: ORM persistence for customer approval requests.

Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ value types only.

Invariants enforced:
    - Status values limited by a check constraint; transitions enforced by
      ApprovalRequestProcessor and the before_update listener in
      db/immutability.py (terminal states never change).
    - At most one PENDING request per (customer, program, kind): partial
      unique index.

Failure modes:
    - IntegrityError on a concurrent duplicate PENDING insert.
    - ImmutabilityViolationError when a terminal status is rewritten.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import CheckConstraint, DateTime, Index, String, text
from sqlalchemy.orm import Mapped, mapped_column

from loyalty_kernel.db.base import Base, JSONPayload, UUIDString
from loyalty_kernel.domain.enrollment import (
    ApprovalRequestView,
    ApprovalStatus,
    RequestKind,
)


class ApprovalRequestModel(Base):
    """Persistent approval request.

    Contract:
        PENDING -> APPROVED | REJECTED exactly once (or PENDING -> EXPIRED
        when auto-expiry is configured).  Never reverses.
    """

    __tablename__ = "approval_requests"

    __table_args__ = (
        CheckConstraint(
            "status IN ('PENDING', 'APPROVED', 'REJECTED', 'EXPIRED')",
            name="ck_approval_requests_valid_status",
        ),
        CheckConstraint(
            "kind IN ('ENROLLMENT', 'POINTS_DEDUCTION')",
            name="ck_approval_requests_valid_kind",
        ),
        Index(
            "ix_approval_requests_pending_unique",
            "customer_id", "program_id", "kind",
            unique=True,
            postgresql_where=text("status = 'PENDING'"),
            sqlite_where=text("status = 'PENDING'"),
        ),
        Index("ix_approval_requests_status_expiry", "status", "expires_at"),
        Index("ix_approval_requests_customer", "customer_id", "status"),
        Index("ix_approval_requests_notification", "notification_id"),
    )

    customer_id: Mapped[int] = mapped_column(nullable=False)
    business_id: Mapped[int] = mapped_column(nullable=False)
    program_id: Mapped[int] = mapped_column(nullable=False)
    kind: Mapped[str] = mapped_column(
        String(32), nullable=False, default=RequestKind.ENROLLMENT.value,
    )
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=ApprovalStatus.PENDING.value,
    )
    notification_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), nullable=True,
    )
    data: Mapped[dict[str, Any] | None] = mapped_column(JSONPayload, nullable=True)
    requested_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False,
    )
    responded_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False,
    )

    def __repr__(self) -> str:
        return (
            f"<ApprovalRequest {self.id} {self.kind} "
            f"customer={self.customer_id} program={self.program_id} "
            f"status={self.status}>"
        )

    def to_view(self) -> ApprovalRequestView:
        """Convert ORM model to frozen domain view."""
        return ApprovalRequestView(
            request_id=self.id,
            customer_id=self.customer_id,
            business_id=self.business_id,
            program_id=self.program_id,
            kind=RequestKind(self.kind),
            status=ApprovalStatus(self.status),
            notification_id=self.notification_id,
            requested_at=self.requested_at,
            expires_at=self.expires_at,
            responded_at=self.responded_at,
        )
