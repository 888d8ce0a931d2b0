"""Read access to approval requests."""

from uuid import UUID

from sqlalchemy import select

from loyalty_kernel.domain.enrollment import ApprovalRequestView, ApprovalStatus
from loyalty_kernel.domain.identifiers import CustomerId
from loyalty_kernel.models.approval_request import ApprovalRequestModel
from loyalty_kernel.selectors.base import BaseSelector


class ApprovalRequestSelector(BaseSelector[ApprovalRequestModel]):

    def get(self, request_id: UUID) -> ApprovalRequestView | None:
        request = self.session.get(ApprovalRequestModel, request_id)
        return request.to_view() if request is not None else None

    def list_pending(self, customer_id: CustomerId) -> list[ApprovalRequestView]:
        """Unexpired PENDING requests for a customer, newest first."""
        rows = self.session.execute(
            select(ApprovalRequestModel)
            .where(
                ApprovalRequestModel.customer_id == int(customer_id),
                ApprovalRequestModel.status == ApprovalStatus.PENDING.value,
                ApprovalRequestModel.expires_at > self.clock.now_utc(),
            )
            .order_by(ApprovalRequestModel.requested_at.desc(), ApprovalRequestModel.id)
        ).scalars()
        return [row.to_view() for row in rows]
