"""Services for the loyalty kernel (write side)."""

from loyalty_kernel.services.approval_processor import ApprovalRequestProcessor
from loyalty_kernel.services.card_issuer import CardIssuer
from loyalty_kernel.services.enrollment_activator import (
    ActivationResult,
    EnrollmentActivator,
)
from loyalty_kernel.services.notification_sink import NotificationSink
from loyalty_kernel.services.reconciliation_service import (
    ALL_PHASES,
    ReconciliationBatch,
    ReconciliationPhase,
    ReconciliationService,
)
from loyalty_kernel.services.relationship_ledger import RelationshipLedger
from loyalty_kernel.services.request_kinds import (
    EnrollmentRequestHandler,
    RequestKindHandler,
    RequestKindRegistry,
)

__all__ = [
    "ALL_PHASES",
    "ActivationResult",
    "ApprovalRequestProcessor",
    "CardIssuer",
    "EnrollmentActivator",
    "EnrollmentRequestHandler",
    "NotificationSink",
    "ReconciliationBatch",
    "ReconciliationPhase",
    "ReconciliationService",
    "RelationshipLedger",
    "RequestKindHandler",
    "RequestKindRegistry",
]
