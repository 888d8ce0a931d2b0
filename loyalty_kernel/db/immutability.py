"""
ORM-Level Protection of Enrollment Records.

===============================================================================
WHAT IS PROTECTED
===============================================================================

SQLAlchemy fires events before UPDATE/DELETE statements reach the database.
The listeners below intercept those events and raise
ImmutabilityViolationError, aborting the flush:

Entity              | Rule
--------------------|-------------------------------------------------------
ApprovalRequest     | Terminal status (APPROVED/REJECTED/EXPIRED) never changes;
                    | customer/business/program/kind never change
Enrollment          | Never deleted; customer/program never change
LoyaltyCard         | Never deleted; customer/program/business/card_number
                    | never change
Notification        | customer/business/audience/type never change

Bulk UPDATE/DELETE statements bypass ORM events; the kernel issues none
against these tables.

===============================================================================
USAGE
===============================================================================

    from loyalty_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # once at startup (idempotent)

Tests that need to corrupt data on purpose:

    unregister_immutability_listeners()
    # ... forbidden operation ...
    register_immutability_listeners()
"""

from sqlalchemy import event, inspect
from sqlalchemy.orm.attributes import get_history

from loyalty_kernel.exceptions import ImmutabilityViolationError
from loyalty_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_TERMINAL_REQUEST_STATUSES = frozenset({"APPROVED", "REJECTED", "EXPIRED"})


def _block(entity_type: str, target, operation: str, reason: str, field: str | None = None):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": operation,
            "field": field,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=reason,
    )


def _check_frozen_fields(entity_type: str, target, fields: tuple[str, ...]) -> None:
    insp = inspect(target)
    for key in fields:
        if insp.attrs[key].history.deleted:
            _block(
                entity_type, target, "UPDATE",
                f"Cannot modify field '{key}'", field=key,
            )


def _check_approval_request_update(mapper, connection, target):
    """
    Block changes to a request that was already resolved.

    PENDING -> terminal is the resolution itself and is allowed.  Anything
    after that, including a second status change, is blocked.
    """
    _check_frozen_fields(
        "ApprovalRequest", target,
        ("customer_id", "business_id", "program_id", "kind"),
    )

    status_history = get_history(target, "status")
    if status_history.deleted:
        previous = status_history.deleted[0]
    elif not status_history.added:
        previous = target.status
    else:
        previous = None

    if previous not in _TERMINAL_REQUEST_STATUSES:
        return

    insp = inspect(target)
    for attr in insp.attrs:
        if attr.history.deleted:
            _block(
                "ApprovalRequest", target, "UPDATE",
                f"Cannot modify field '{attr.key}' on {previous} request",
                field=attr.key,
            )


def _check_enrollment_update(mapper, connection, target):
    _check_frozen_fields("Enrollment", target, ("customer_id", "program_id"))


def _check_enrollment_delete(mapper, connection, target):
    _block("Enrollment", target, "DELETE", "Enrollments are deactivated, never deleted")


def _check_card_update(mapper, connection, target):
    _check_frozen_fields(
        "LoyaltyCard", target,
        ("customer_id", "program_id", "business_id", "card_number"),
    )


def _check_card_delete(mapper, connection, target):
    _block("LoyaltyCard", target, "DELETE", "Loyalty cards are deactivated, never deleted")


def _check_notification_update(mapper, connection, target):
    _check_frozen_fields(
        "Notification", target,
        ("customer_id", "business_id", "audience", "type"),
    )


def _listeners():
    # Inline import: models import db.base, so db cannot import models at module load.
    from loyalty_kernel.models import (
        ApprovalRequestModel,
        EnrollmentModel,
        LoyaltyCardModel,
        NotificationModel,
    )

    return (
        (ApprovalRequestModel, "before_update", _check_approval_request_update),
        (EnrollmentModel, "before_update", _check_enrollment_update),
        (EnrollmentModel, "before_delete", _check_enrollment_delete),
        (LoyaltyCardModel, "before_update", _check_card_update),
        (LoyaltyCardModel, "before_delete", _check_card_delete),
        (NotificationModel, "before_update", _check_notification_update),
    )


def register_immutability_listeners() -> None:
    """Register all protection listeners.  Safe to call more than once."""
    for target, event_name, fn in _listeners():
        if not event.contains(target, event_name, fn):
            event.listen(target, event_name, fn)


def unregister_immutability_listeners() -> None:
    """
    Remove protection listeners.

    WARNING: Only use this in tests that corrupt data on purpose.
    """
    for target, event_name, fn in _listeners():
        if event.contains(target, event_name, fn):
            event.remove(target, event_name, fn)
