"""
Request kind handlers.

Each ``RequestKind`` that can be resolved has one handler that knows what
approval or rejection means for that kind.  Registration is explicit and
closed: a kind without a handler is rejected with
UnsupportedRequestKindError instead of falling through a string switch.
"""

from __future__ import annotations

from typing import Protocol
from uuid import UUID

from loyalty_kernel.domain.enrollment import NotificationType, RequestKind
from loyalty_kernel.domain.identifiers import BusinessId, CustomerId, ProgramId
from loyalty_kernel.exceptions import UnsupportedRequestKindError
from loyalty_kernel.models.approval_request import ApprovalRequestModel
from loyalty_kernel.services.card_issuer import CardIssuer
from loyalty_kernel.services.enrollment_activator import EnrollmentActivator


class RequestKindHandler(Protocol):
    """Kind-specific side effects of resolving an approval request."""

    kind: RequestKind

    def on_approved(self, request: ApprovalRequestModel) -> UUID | None:
        """Apply approval; return the card id the customer now holds, if any."""
        ...

    def on_rejected(self, request: ApprovalRequestModel) -> None:
        ...

    def replay_card_id(self, request: ApprovalRequestModel) -> UUID | None:
        """Card id to report when an already-approved request is replayed."""
        ...

    def business_notice(self, approved: bool) -> tuple[NotificationType, str, str]:
        """(type, title, message) for the business-facing notification."""
        ...


class EnrollmentRequestHandler:
    """Approval of an ENROLLMENT request runs Enrollment Activation."""

    kind = RequestKind.ENROLLMENT

    def __init__(self, activator: EnrollmentActivator, card_issuer: CardIssuer):
        self._activator = activator
        self._card_issuer = card_issuer

    def on_approved(self, request: ApprovalRequestModel) -> UUID | None:
        result = self._activator.activate(
            CustomerId(request.customer_id),
            ProgramId(request.program_id),
            BusinessId(request.business_id),
        )
        return result.card_id

    def on_rejected(self, request: ApprovalRequestModel) -> None:
        return None

    def replay_card_id(self, request: ApprovalRequestModel) -> UUID | None:
        card = self._card_issuer.find_card(
            CustomerId(request.customer_id), ProgramId(request.program_id),
        )
        return card.id if card is not None else None

    def business_notice(self, approved: bool) -> tuple[NotificationType, str, str]:
        if approved:
            return (
                NotificationType.ENROLLMENT_ACCEPTED,
                "Customer Joined Program",
                "A customer has joined your loyalty program",
            )
        return (
            NotificationType.ENROLLMENT_REJECTED,
            "Enrollment Declined",
            "A customer has declined to join your loyalty program",
        )


class RequestKindRegistry:
    """Closed mapping from request kind to handler."""

    def __init__(self, handlers: list[RequestKindHandler] | None = None):
        self._handlers: dict[RequestKind, RequestKindHandler] = {}
        for handler in handlers or []:
            self.register(handler)

    def register(self, handler: RequestKindHandler) -> None:
        if handler.kind in self._handlers:
            raise ValueError(f"Handler already registered for {handler.kind.value}")
        self._handlers[handler.kind] = handler

    def get(self, kind: RequestKind | str) -> RequestKindHandler:
        try:
            return self._handlers[RequestKind(kind)]
        except (KeyError, ValueError):
            raise UnsupportedRequestKindError(str(getattr(kind, "value", kind))) from None

    @property
    def kinds(self) -> frozenset[RequestKind]:
        return frozenset(self._handlers)
