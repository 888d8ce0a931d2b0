"""Pure domain types for the loyalty kernel (no I/O)."""

from loyalty_kernel.domain.clock import (
    Clock,
    DeterministicClock,
    SystemClock,
    ensure_utc,
)
from loyalty_kernel.domain.enrollment import (
    APPROVAL_TRANSITIONS,
    TERMINAL_APPROVAL_STATUSES,
    ApprovalRequestView,
    ApprovalStatus,
    CardStatus,
    CardView,
    EnrollmentStatistics,
    EnrollmentStatus,
    IntegrityIssue,
    IssueKind,
    ItemFailure,
    NotificationAudience,
    NotificationType,
    ReconciliationSummary,
    RelationshipStatus,
    RequestKind,
    ResolutionOutcome,
)
from loyalty_kernel.domain.identifiers import BusinessId, CustomerId, ProgramId

__all__ = [
    "APPROVAL_TRANSITIONS",
    "TERMINAL_APPROVAL_STATUSES",
    "ApprovalRequestView",
    "ApprovalStatus",
    "BusinessId",
    "CardStatus",
    "CardView",
    "Clock",
    "CustomerId",
    "DeterministicClock",
    "EnrollmentStatistics",
    "EnrollmentStatus",
    "IntegrityIssue",
    "IssueKind",
    "ItemFailure",
    "NotificationAudience",
    "NotificationType",
    "ProgramId",
    "ReconciliationSummary",
    "RelationshipStatus",
    "RequestKind",
    "ResolutionOutcome",
    "SystemClock",
    "ensure_utc",
]
