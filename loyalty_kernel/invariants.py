"""
Kernel Invariants Contract.

These invariants are structural law.  They are enforced by unique indexes,
row locks, ORM listeners and the single activation code path.  No setting
in loyalty_config may switch them off.
"""

from enum import Enum, unique


@unique
class EnrollmentInvariant(str, Enum):
    """Non-configurable invariants enforced by the kernel."""

    ONE_CARD_PER_ENROLLMENT = "one_card_per_enrollment"
    """Every ACTIVE enrollment has exactly one ACTIVE card for the same
    (customer, program) pair and vice versa.  Enforced by EnrollmentActivator
    and the unique indexes on enrollments and loyalty_cards."""

    SINGLE_RESOLUTION = "single_resolution"
    """An approval request leaves PENDING at most once and never returns.
    Enforced by the row lock in ApprovalRequestProcessor and the
    before_update listener in db.immutability."""

    NOTIFICATION_SYNC = "notification_sync"
    """The notification tied to a request is actioned iff the request is
    resolved.  Written in the same transaction as the resolution."""

    UNIQUE_CARD_NUMBER = "unique_card_number"
    """Card numbers are globally unique.  Enforced by a unique index;
    CardIssuer retries a bounded number of times on collision."""

    NO_DELETION = "no_deletion"
    """Enrollments and cards are never deleted, only deactivated.
    Enforced by before_delete listeners."""


ALL_ENROLLMENT_INVARIANTS: frozenset[EnrollmentInvariant] = frozenset(EnrollmentInvariant)

# The kernel package may not import from these packages.
# This is enforced by tests/architecture/test_kernel_boundary.py.
FORBIDDEN_KERNEL_IMPORTS: tuple[str, ...] = (
    "loyalty_services",
    "loyalty_config",
    "loyalty_scripts",
)
