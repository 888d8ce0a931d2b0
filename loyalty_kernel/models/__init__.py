"""ORM models for the loyalty kernel."""

from loyalty_kernel.models.approval_request import ApprovalRequestModel
from loyalty_kernel.models.enrollment import EnrollmentModel, LoyaltyCardModel
from loyalty_kernel.models.notification import NotificationModel
from loyalty_kernel.models.relationship import CustomerBusinessRelationshipModel

__all__ = [
    "ApprovalRequestModel",
    "CustomerBusinessRelationshipModel",
    "EnrollmentModel",
    "LoyaltyCardModel",
    "NotificationModel",
]
