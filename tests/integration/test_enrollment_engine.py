"""
End-to-end tests for the EnrollmentEngine facade.

Every facade call is its own committed unit of work, so these tests use
``committed_session_factory`` and inspect state through a fresh session.

Covers:
- create/resolve round trip with committed state
- ResolutionResult statuses and error codes (never raises)
- Atomic rollback when activation fails mid-resolution
- Transient storage errors: retried, then reported as retryable
- list_pending_requests, deactivate_enrollment, statistics
- run_maintenance: reconcile, prune, validate
"""

from uuid import uuid4

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, OperationalError

from loyalty_config.schema import EngineSettings, TransactionSettings
from loyalty_kernel.domain.enrollment import NotificationType
from loyalty_kernel.exceptions import (
    DuplicatePendingRequestError,
    InvalidIdentifierError,
)
from loyalty_kernel.models.approval_request import ApprovalRequestModel
from loyalty_kernel.models.enrollment import EnrollmentModel, LoyaltyCardModel
from loyalty_kernel.models.notification import NotificationModel
from loyalty_kernel.models.relationship import CustomerBusinessRelationshipModel
from loyalty_kernel.services.approval_processor import ApprovalRequestProcessor
from loyalty_services.enrollment_engine import EnrollmentEngine, ResolutionStatus


@pytest.fixture
def inspect_session(committed_session_factory):
    """Fresh session for reading committed state."""
    sessions = []

    def _open():
        s = committed_session_factory()
        sessions.append(s)
        return s

    yield _open
    for s in sessions:
        s.close()


def _one(session, model, **filters):
    return session.execute(select(model).filter_by(**filters)).scalar_one_or_none()


def _operational_error():
    return OperationalError("UPDATE approval_requests", {}, Exception("deadlock detected"))


class TestRoundTrip:

    def test_approve_commits_every_record(self, enrollment_engine, inspect_session):
        request_id = enrollment_engine.create_enrollment_request(10, 3, 5)

        result = enrollment_engine.resolve_enrollment_request(request_id, approved=True)

        assert result.status == ResolutionStatus.APPROVED
        assert result.is_success
        assert result.card_id is not None

        s = inspect_session()
        assert s.get(ApprovalRequestModel, request_id).status == "APPROVED"
        assert s.get(LoyaltyCardModel, result.card_id).status == "ACTIVE"
        assert _one(s, EnrollmentModel, customer_id=10, program_id=5).status == "ACTIVE"
        assert _one(s, CustomerBusinessRelationshipModel, customer_id=10, business_id=3).status == "ACTIVE"

    def test_reject(self, enrollment_engine, inspect_session):
        request_id = enrollment_engine.create_enrollment_request("10", "3", "5")

        result = enrollment_engine.resolve_enrollment_request(str(request_id), approved=False)

        assert result.status == ResolutionStatus.REJECTED
        assert result.card_id is None
        s = inspect_session()
        assert _one(s, EnrollmentModel, customer_id=10, program_id=5) is None

    def test_replay_reports_already_resolved(self, enrollment_engine):
        request_id = enrollment_engine.create_enrollment_request(10, 3, 5)
        first = enrollment_engine.resolve_enrollment_request(request_id, approved=True)

        second = enrollment_engine.resolve_enrollment_request(request_id, approved=True)

        assert second.status == ResolutionStatus.ALREADY_RESOLVED
        assert second.is_success
        assert second.card_id == first.card_id

    def test_result_to_dict(self, enrollment_engine):
        request_id = enrollment_engine.create_enrollment_request(10, 3, 5)
        payload = enrollment_engine.resolve_enrollment_request(request_id, True).to_dict()
        assert payload["status"] == "APPROVED"
        assert payload["request_id"] == str(request_id)
        assert payload["error_code"] is None


class TestResolutionFailures:

    @pytest.mark.parametrize("raw", ["not-a-uuid", 42, None, ""])
    def test_invalid_request_id(self, enrollment_engine, raw):
        result = enrollment_engine.resolve_enrollment_request(raw, approved=True)
        assert result.status == ResolutionStatus.FAILED
        assert result.error_code == "INVALID_IDENTIFIER"
        assert result.request_id is None
        assert not result.retryable

    @pytest.mark.parametrize("decision", ["false", "0", "no", "true", 1, 0, None])
    def test_non_bool_decision_is_rejected(self, enrollment_engine, inspect_session, decision):
        request_id = enrollment_engine.create_enrollment_request(10, 3, 5)

        result = enrollment_engine.resolve_enrollment_request(request_id, decision)

        assert result.status == ResolutionStatus.FAILED
        assert result.error_code == "INVALID_DECISION"
        assert result.request_id == request_id
        assert not result.retryable
        s = inspect_session()
        assert s.get(ApprovalRequestModel, request_id).status == "PENDING"
        assert _one(s, LoyaltyCardModel, customer_id=10, program_id=5) is None

    def test_request_still_resolvable_after_bad_decision(self, enrollment_engine):
        request_id = enrollment_engine.create_enrollment_request(10, 3, 5)
        enrollment_engine.resolve_enrollment_request(request_id, "false")

        result = enrollment_engine.resolve_enrollment_request(request_id, False)

        assert result.status == ResolutionStatus.REJECTED

    def test_unknown_request(self, enrollment_engine):
        result = enrollment_engine.resolve_enrollment_request(uuid4(), approved=True)
        assert result.status == ResolutionStatus.FAILED
        assert result.error_code == "REQUEST_NOT_FOUND"

    def test_conflict(self, enrollment_engine):
        request_id = enrollment_engine.create_enrollment_request(10, 3, 5)
        enrollment_engine.resolve_enrollment_request(request_id, approved=True)

        result = enrollment_engine.resolve_enrollment_request(request_id, approved=False)

        assert result.status == ResolutionStatus.FAILED
        assert result.error_code == "RESOLUTION_CONFLICT"

    def test_expired(self, enrollment_engine, deterministic_clock):
        request_id = enrollment_engine.create_enrollment_request(10, 3, 5)
        deterministic_clock.advance_days(8)

        result = enrollment_engine.resolve_enrollment_request(request_id, approved=True)

        assert result.error_code == "REQUEST_EXPIRED"

    def test_activation_failure_rolls_back_everything(
        self, committed_session_factory, settings, deterministic_clock, inspect_session,
    ):
        engine = EnrollmentEngine(
            settings, committed_session_factory, deterministic_clock,
            suffix_factory=lambda digits: "0000",
        )
        request_id = engine.create_enrollment_request(10, 3, 5)

        # Occupy the only card number the suffix factory will ever produce.
        seed = committed_session_factory()
        now = deterministic_clock.now_utc()
        seed.add(LoyaltyCardModel(
            customer_id=99, program_id=5, business_id=3,
            card_number="GC-3-5-10-240101120000-0000",
            status="ACTIVE", points=0, created_at=now, updated_at=now,
        ))
        seed.commit()
        seed.close()

        result = engine.resolve_enrollment_request(request_id, approved=True)

        assert result.status == ResolutionStatus.FAILED
        assert result.error_code == "CARD_NUMBER_EXHAUSTED"

        s = inspect_session()
        request = s.get(ApprovalRequestModel, request_id)
        assert request.status == "PENDING"
        assert s.get(NotificationModel, request.notification_id).action_taken is False
        assert _one(s, EnrollmentModel, customer_id=10, program_id=5) is None
        assert _one(s, CustomerBusinessRelationshipModel, customer_id=10, business_id=3) is None
        accepted = s.execute(
            select(NotificationModel).where(
                NotificationModel.type == NotificationType.ENROLLMENT_ACCEPTED.value,
            )
        ).scalars().all()
        assert accepted == []


class TestTransientFailures:

    @pytest.fixture
    def fast_retry_engine(self, committed_session_factory, deterministic_clock):
        settings = EngineSettings(transactions=TransactionSettings(retry_backoff_ms=0))
        return EnrollmentEngine(settings, committed_session_factory, deterministic_clock)

    def test_transient_error_retried(self, fast_retry_engine, monkeypatch, captured_logs):
        request_id = fast_retry_engine.create_enrollment_request(10, 3, 5)
        original = ApprovalRequestProcessor.resolve
        calls = []

        def flaky(self, rid, approve):
            calls.append(rid)
            if len(calls) < 3:
                raise _operational_error()
            return original(self, rid, approve)

        monkeypatch.setattr(ApprovalRequestProcessor, "resolve", flaky)

        result = fast_retry_engine.resolve_enrollment_request(request_id, approved=True)

        assert result.status == ResolutionStatus.APPROVED
        assert len(calls) == 3
        retries = [r for r in captured_logs() if r["message"] == "unit_of_work_transient_retry"]
        assert [r["attempt"] for r in retries] == [1, 2]

    def test_exhausted_retries_are_retryable_failure(self, fast_retry_engine, monkeypatch):
        request_id = fast_retry_engine.create_enrollment_request(10, 3, 5)

        def always_fails(self, rid, approve):
            raise _operational_error()

        monkeypatch.setattr(ApprovalRequestProcessor, "resolve", always_fails)

        result = fast_retry_engine.resolve_enrollment_request(request_id, approved=True)

        assert result.status == ResolutionStatus.FAILED
        assert result.error_code == "TRANSIENT_STORAGE_ERROR"
        assert result.retryable

    def test_non_transient_storage_error(self, fast_retry_engine, monkeypatch):
        request_id = fast_retry_engine.create_enrollment_request(10, 3, 5)
        calls = []

        def broken(self, rid, approve):
            calls.append(rid)
            raise IntegrityError("INSERT", {}, Exception("constraint failed"))

        monkeypatch.setattr(ApprovalRequestProcessor, "resolve", broken)

        result = fast_retry_engine.resolve_enrollment_request(request_id, approved=True)

        assert result.error_code == "STORAGE_ERROR"
        assert not result.retryable
        assert len(calls) == 1


class TestOtherOperations:

    def test_create_rejects_bad_identifiers(self, enrollment_engine):
        with pytest.raises(InvalidIdentifierError):
            enrollment_engine.create_enrollment_request(0, 3, 5)
        with pytest.raises(InvalidIdentifierError):
            enrollment_engine.create_enrollment_request(10, "3a", 5)

    def test_create_duplicate_raises(self, enrollment_engine):
        enrollment_engine.create_enrollment_request(10, 3, 5)
        with pytest.raises(DuplicatePendingRequestError):
            enrollment_engine.create_enrollment_request(10, 3, 5)

    def test_list_pending(self, enrollment_engine):
        first = enrollment_engine.create_enrollment_request(10, 3, 5)
        second = enrollment_engine.create_enrollment_request(10, 3, 6)
        enrollment_engine.resolve_enrollment_request(second, approved=False)

        pending = enrollment_engine.list_pending_requests(10)

        assert [v.request_id for v in pending] == [first]

    def test_deactivate(self, enrollment_engine, inspect_session):
        request_id = enrollment_engine.create_enrollment_request(10, 3, 5)
        card_id = enrollment_engine.resolve_enrollment_request(request_id, True).card_id

        assert enrollment_engine.deactivate_enrollment(10, 5)
        assert not enrollment_engine.deactivate_enrollment(10, 5)

        s = inspect_session()
        assert s.get(LoyaltyCardModel, card_id).status == "INACTIVE"
        assert enrollment_engine.get_integrity_report() == []

    def test_statistics(self, enrollment_engine):
        request_id = enrollment_engine.create_enrollment_request(10, 3, 5)
        enrollment_engine.resolve_enrollment_request(request_id, True)
        enrollment_engine.create_enrollment_request(11, 3, 5)

        stats = enrollment_engine.get_enrollment_statistics()

        assert stats.active_enrollments == 1
        assert stats.active_cards == 1
        assert stats.pending_approvals == 1
        assert stats.is_consistent


class TestMaintenance:

    def test_reconciles_prunes_and_validates(
        self, enrollment_engine, committed_session_factory, deterministic_clock,
    ):
        request_id = enrollment_engine.create_enrollment_request(10, 3, 5)
        card_id = enrollment_engine.resolve_enrollment_request(request_id, True).card_id

        s = committed_session_factory()
        s.get(LoyaltyCardModel, card_id).status = "INACTIVE"
        card_notice = s.execute(
            select(NotificationModel).where(
                NotificationModel.type == NotificationType.CARD_CREATED.value,
            )
        ).scalar_one()
        card_notice.is_read = True
        s.commit()
        s.close()
        assert len(enrollment_engine.get_integrity_report()) == 1

        deterministic_clock.advance_days(31)
        report = enrollment_engine.run_maintenance(batch_size=2)

        assert report.reconciliation.repaired == 1
        assert report.pruned_notifications == 1
        assert report.is_consistent
        assert report.to_dict()["issues"] == []

    def test_reconciliation_fixed_point(self, enrollment_engine):
        request_id = enrollment_engine.create_enrollment_request(10, 3, 5)
        enrollment_engine.resolve_enrollment_request(request_id, True)

        first = enrollment_engine.run_reconciliation()
        second = enrollment_engine.run_reconciliation()

        assert first.repaired == 0
        assert second.repaired == 0
        assert second.failed == 0

    def test_invalid_batch_size(self, enrollment_engine):
        with pytest.raises(ValueError):
            enrollment_engine.run_reconciliation(batch_size=-1)
