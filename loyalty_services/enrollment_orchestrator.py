"""
loyalty_services.enrollment_orchestrator -- Central DI container for kernel services.

Responsibility:
    Creates every kernel service exactly once for a session and wires them
    together.  No kernel service creates another service internally; this
    module is the single point where configuration values become
    constructor arguments.

Architecture position:
    Services -- sits above loyalty_kernel and loyalty_config.  The kernel
    never reads configuration; the orchestrator passes plain values in.

Invariants enforced:
    - Single-instance lifecycle: one NotificationSink, one CardIssuer and
      one EnrollmentActivator per session, shared by the live approval path
      and the reconciliation path.
    - All services share the same Session and Clock instances.

Usage:
    orchestrator = EnrollmentOrchestrator(session, settings, clock=clock)
    orchestrator.processor.resolve(request_id, approve=True)
    orchestrator.validator.validate()
"""

from __future__ import annotations

from datetime import timedelta

from sqlalchemy.orm import Session

from loyalty_config.schema import EngineSettings
from loyalty_kernel.domain.card_numbers import SuffixFactory
from loyalty_kernel.domain.clock import Clock, SystemClock
from loyalty_kernel.selectors.approval_selector import ApprovalRequestSelector
from loyalty_kernel.selectors.integrity_selector import IntegrityValidator
from loyalty_kernel.services.approval_processor import ApprovalRequestProcessor
from loyalty_kernel.services.card_issuer import CardIssuer
from loyalty_kernel.services.enrollment_activator import EnrollmentActivator
from loyalty_kernel.services.notification_sink import NotificationSink
from loyalty_kernel.services.reconciliation_service import ReconciliationService
from loyalty_kernel.services.relationship_ledger import RelationshipLedger
from loyalty_kernel.services.request_kinds import (
    EnrollmentRequestHandler,
    RequestKindRegistry,
)


class EnrollmentOrchestrator:
    """Central factory for kernel services bound to one session.

    Contract:
        Receives a Session and EngineSettings plus an optional Clock and
        card-number suffix factory.  Constructs every kernel service in
        dependency order and exposes them as public attributes.

    Non-goals:
        - Does NOT manage transaction boundaries (caller's responsibility).
        - Does NOT own the Session lifecycle (no commit/rollback).
    """

    def __init__(
        self,
        session: Session,
        settings: EngineSettings | None = None,
        clock: Clock | None = None,
        suffix_factory: SuffixFactory | None = None,
    ) -> None:
        self._session = session
        self._clock = clock or SystemClock()
        self.settings = settings or EngineSettings()

        # Leaf services (no kernel dependencies)
        self.notifications = NotificationSink(session, self._clock)
        self.relationships = RelationshipLedger(session, self._clock)
        self.card_issuer = CardIssuer(
            session,
            self._clock,
            prefix=self.settings.cards.number_prefix,
            max_attempts=self.settings.cards.max_attempts,
            suffix_digits=self.settings.cards.suffix_digits,
            suffix_factory=suffix_factory,
        )

        # Activation is the only writer of enrollment/card pairs
        self.activator = EnrollmentActivator(
            session, self.card_issuer, self.notifications, self._clock,
        )

        self.registry = RequestKindRegistry([
            EnrollmentRequestHandler(self.activator, self.card_issuer),
        ])
        self.processor = ApprovalRequestProcessor(
            session,
            self.registry,
            self.relationships,
            self.notifications,
            self._clock,
            request_ttl=timedelta(days=self.settings.approval.request_ttl_days),
        )

        # Read side
        self.validator = IntegrityValidator(session, self._clock)
        self.approvals = ApprovalRequestSelector(session, self._clock)

        self.reconciliation = ReconciliationService(
            session,
            self.activator,
            self.processor,
            self.notifications,
            self.validator,
            self._clock,
            auto_expire=self.settings.approval.auto_expire,
        )

    @property
    def session(self) -> Session:
        return self._session

    @property
    def clock(self) -> Clock:
        return self._clock


def build_enrollment_orchestrator(
    session: Session,
    settings: EngineSettings | None = None,
    clock: Clock | None = None,
    suffix_factory: SuffixFactory | None = None,
) -> EnrollmentOrchestrator:
    """Build an orchestrator, loading settings from defaults when none are given."""
    if settings is None:
        from loyalty_config import get_settings

        settings = get_settings()
    return EnrollmentOrchestrator(session, settings, clock, suffix_factory)
