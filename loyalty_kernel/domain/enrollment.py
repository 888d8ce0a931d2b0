"""
Enrollment domain types (``loyalty_kernel.domain.enrollment``).

Responsibility
--------------
Pure value objects for the enrollment consistency engine: the approval
request lifecycle, record statuses, notification types, integrity issue
kinds, and the frozen results returned by services and selectors.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``services/``, ``selectors/``, or outer layers.

Invariants enforced
-------------------
* ``APPROVAL_TRANSITIONS`` defines the only valid request status changes.
  Terminal states have no outgoing edges.
* ``EXPIRED`` is reachable only through the auto-expire sweep; ``resolve``
  writes APPROVED or REJECTED only.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from uuid import UUID


# =========================================================================
# Approval request lifecycle
# =========================================================================


class RequestKind(str, Enum):
    """Closed set of approval request kinds."""

    ENROLLMENT = "ENROLLMENT"
    POINTS_DEDUCTION = "POINTS_DEDUCTION"


class ApprovalStatus(str, Enum):
    """Approval request lifecycle states."""

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"


APPROVAL_TRANSITIONS: dict[ApprovalStatus, frozenset[ApprovalStatus]] = {
    ApprovalStatus.PENDING: frozenset({
        ApprovalStatus.APPROVED,
        ApprovalStatus.REJECTED,
        ApprovalStatus.EXPIRED,
    }),
    ApprovalStatus.APPROVED: frozenset(),
    ApprovalStatus.REJECTED: frozenset(),
    ApprovalStatus.EXPIRED: frozenset(),
}

TERMINAL_APPROVAL_STATUSES: frozenset[ApprovalStatus] = frozenset({
    ApprovalStatus.APPROVED,
    ApprovalStatus.REJECTED,
    ApprovalStatus.EXPIRED,
})


def decision_status(approve: bool) -> ApprovalStatus:
    """Map a customer decision onto the status it writes."""
    return ApprovalStatus.APPROVED if approve else ApprovalStatus.REJECTED


def is_valid_transition(current: ApprovalStatus, target: ApprovalStatus) -> bool:
    return target in APPROVAL_TRANSITIONS[current]


# =========================================================================
# Record statuses
# =========================================================================


class EnrollmentStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class CardStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class RelationshipStatus(str, Enum):
    ACTIVE = "ACTIVE"
    DECLINED = "DECLINED"


class NotificationType(str, Enum):
    """Customer- and business-facing notification types."""

    ENROLLMENT_REQUEST = "ENROLLMENT_REQUEST"
    ENROLLMENT_ACCEPTED = "ENROLLMENT_ACCEPTED"
    ENROLLMENT_REJECTED = "ENROLLMENT_REJECTED"
    ENROLLMENT_EXPIRED = "ENROLLMENT_EXPIRED"
    CARD_CREATED = "CARD_CREATED"


class NotificationAudience(str, Enum):
    """Who a notification is addressed to."""

    CUSTOMER = "CUSTOMER"
    BUSINESS = "BUSINESS"


# =========================================================================
# Read models
# =========================================================================


@dataclass(frozen=True)
class ApprovalRequestView:
    """Read-only projection of an approval request row."""

    request_id: UUID
    customer_id: int
    business_id: int
    program_id: int
    kind: RequestKind
    status: ApprovalStatus
    notification_id: UUID | None
    requested_at: datetime
    expires_at: datetime
    responded_at: datetime | None = None

    @property
    def is_resolved(self) -> bool:
        return self.status in TERMINAL_APPROVAL_STATUSES


@dataclass(frozen=True)
class ResolutionOutcome:
    """Result of ``ApprovalRequestProcessor.resolve``.

    ``replayed`` is True when the request had already been resolved with
    the same decision and nothing was written.
    """

    request_id: UUID
    status: ApprovalStatus
    card_id: UUID | None = None
    replayed: bool = False

    @property
    def approved(self) -> bool:
        return self.status == ApprovalStatus.APPROVED


@dataclass(frozen=True)
class CardView:
    """Read-only projection of a loyalty card row."""

    card_id: UUID
    customer_id: int
    program_id: int
    business_id: int
    card_number: str
    status: CardStatus
    points: int


# =========================================================================
# Integrity
# =========================================================================


class IssueKind(str, Enum):
    """Kinds of cross-record invariant violations."""

    MISSING_CARD = "MISSING_CARD"
    MISSING_ENROLLMENT = "MISSING_ENROLLMENT"
    ORPHANED_APPROVAL_REQUEST = "ORPHANED_APPROVAL_REQUEST"
    UNSYNCED_NOTIFICATION = "UNSYNCED_NOTIFICATION"


@dataclass(frozen=True)
class IntegrityIssue:
    """One violation found by the integrity validator.

    ``reference_id`` is the id of the row the issue was detected on: the
    enrollment, card or approval request.
    """

    kind: IssueKind
    reference_id: UUID
    customer_id: int
    program_id: int | None
    business_id: int | None
    detail: str = ""

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "reference_id": str(self.reference_id) if self.reference_id else None,
            "customer_id": self.customer_id,
            "program_id": self.program_id,
            "business_id": self.business_id,
            "detail": self.detail,
        }


@dataclass(frozen=True)
class EnrollmentStatistics:
    """Point-in-time counters for monitoring."""

    active_enrollments: int
    active_cards: int
    missing_cards: int
    missing_enrollments: int
    pending_approvals: int
    expired_pending: int

    @property
    def is_consistent(self) -> bool:
        return self.missing_cards == 0 and self.missing_enrollments == 0

    def to_dict(self) -> dict:
        return {
            "active_enrollments": self.active_enrollments,
            "active_cards": self.active_cards,
            "missing_cards": self.missing_cards,
            "missing_enrollments": self.missing_enrollments,
            "pending_approvals": self.pending_approvals,
            "expired_pending": self.expired_pending,
            "is_consistent": self.is_consistent,
        }


# =========================================================================
# Reconciliation
# =========================================================================


@dataclass(frozen=True)
class ItemFailure:
    """A reconciliation item that could not be repaired."""

    issue_kind: IssueKind | None
    reference_id: UUID | None
    error_code: str
    message: str

    def to_dict(self) -> dict:
        return {
            "issue_kind": self.issue_kind.value if self.issue_kind else None,
            "reference_id": str(self.reference_id) if self.reference_id else None,
            "error_code": self.error_code,
            "message": self.message,
        }


@dataclass(frozen=True)
class ReconciliationSummary:
    """Counters for a reconciliation run (or one batch of it).

    ``expired_found`` counts PENDING requests past their expiry;
    ``expired_marked`` counts those moved to EXPIRED (auto-expire only).
    """

    scanned: int = 0
    repaired: int = 0
    failed: int = 0
    expired_found: int = 0
    expired_marked: int = 0
    failures: tuple[ItemFailure, ...] = field(default_factory=tuple)

    def merge(self, other: ReconciliationSummary) -> ReconciliationSummary:
        return ReconciliationSummary(
            scanned=self.scanned + other.scanned,
            repaired=self.repaired + other.repaired,
            failed=self.failed + other.failed,
            expired_found=self.expired_found + other.expired_found,
            expired_marked=self.expired_marked + other.expired_marked,
            failures=self.failures + other.failures,
        )

    def to_dict(self) -> dict:
        return {
            "scanned": self.scanned,
            "repaired": self.repaired,
            "failed": self.failed,
            "expired_found": self.expired_found,
            "expired_marked": self.expired_marked,
            "failures": [f.to_dict() for f in self.failures],
        }
