"""Tests for the structured logging system (loyalty_kernel/logging_config.py)."""

import json
import logging
from datetime import datetime, timezone
from io import StringIO
from uuid import uuid4

import pytest

from loyalty_kernel.domain.enrollment import ApprovalStatus
from loyalty_kernel.domain.identifiers import CustomerId, ProgramId
from loyalty_kernel.exceptions import ResolutionConflictError, TransientStorageError
from loyalty_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)
from loyalty_kernel.services.reconciliation_service import ReconciliationPhase
from loyalty_services.enrollment_orchestrator import EnrollmentOrchestrator
from loyalty_services.reconciliation_job import ReconciliationJob


@pytest.fixture(autouse=True)
def _clean_logging():
    """Reset logging state between tests, then restore the suite default."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()
    configure_logging(level=logging.DEBUG, stream=StringIO())


@pytest.fixture
def stream() -> StringIO:
    out = StringIO()
    handler = logging.StreamHandler(out)
    handler.setFormatter(StructuredFormatter())
    configure_logging(handler=handler)
    return out


def _parse_all_logs(stream: StringIO) -> list[dict]:
    lines = stream.getvalue().strip().split("\n")
    return [json.loads(line) for line in lines if line]


def _parse_log(stream: StringIO) -> dict:
    return _parse_all_logs(stream)[0]


class TestStructuredFormatter:

    def test_basic_json_output(self, stream):
        get_logger("test").info("hello")

        record = _parse_log(stream)
        assert record["level"] == "INFO"
        assert record["message"] == "hello"
        assert record["logger"] == "loyalty_kernel.test"
        assert "ts" in record
        assert "scope" not in record

    def test_extra_fields_included(self, stream):
        get_logger("test").info("card_minted", extra={"attempt": 2, "card_number": "GC-1"})

        record = _parse_log(stream)
        assert record["attempt"] == 2
        assert record["card_number"] == "GC-1"

    def test_uuid_datetime_and_enum_serialized(self, stream):
        uid = uuid4()
        when = datetime(2024, 1, 8, 12, 0, tzinfo=timezone.utc)
        get_logger("test").info(
            "typed", extra={"request_id": uid, "expires_at": when, "status": ApprovalStatus.PENDING},
        )

        record = _parse_log(stream)
        assert record["request_id"] == str(uid)
        assert record["expires_at"] == "2024-01-08T12:00:00+00:00"
        assert record["status"] == "PENDING"

    def test_unknown_objects_fall_back_to_str(self, stream):
        get_logger("test").info("odd", extra={"payload": frozenset({7})})
        assert _parse_log(stream)["payload"] == "frozenset({7})"

    def test_debug_suppressed_at_info(self, stream):
        logger = get_logger("test")
        logger.info("first")
        logger.debug("second")
        logger.warning("third")

        assert [r["message"] for r in _parse_all_logs(stream)] == ["first", "third"]

    def test_configure_is_idempotent(self, stream):
        configure_logging(handler=logging.StreamHandler(StringIO()))
        get_logger("test").info("once")

        assert len(_parse_all_logs(stream)) == 1


class TestKernelErrors:

    def test_kernel_error_flattened_without_traceback_below_error(self, stream):
        try:
            raise ResolutionConflictError("req-1", "APPROVED", "REJECTED")
        except ResolutionConflictError:
            get_logger("test").warning("conflict", exc_info=True)

        record = _parse_log(stream)
        assert record["error_code"] == "RESOLUTION_CONFLICT"
        assert record["retryable"] is False
        assert record["exc_type"] == "ResolutionConflictError"
        assert record["exc_request_id"] == "req-1"
        assert record["exc_recorded_status"] == "APPROVED"
        assert "traceback" not in record

    def test_kernel_error_at_error_level_keeps_traceback(self, stream):
        try:
            raise TransientStorageError("resolve", "deadlock detected")
        except TransientStorageError:
            get_logger("test").error("gave_up", exc_info=True)

        record = _parse_log(stream)
        assert record["error_code"] == "TRANSIENT_STORAGE_ERROR"
        assert record["retryable"] is True
        assert "traceback" in record

    def test_foreign_error_has_traceback_and_no_code(self, stream):
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            get_logger("test").warning("unexpected", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_type"] == "RuntimeError"
        assert "error_code" not in record
        assert "traceback" in record


class TestScopes:

    def test_enrollment_scope(self, stream):
        rid = uuid4()
        with LogContext.for_request(rid, customer_id=CustomerId(10), program_id=ProgramId(5)):
            get_logger("test").info("resolving")

        record = _parse_log(stream)
        assert record["scope"] == "enrollment"
        assert record["request_id"] == str(rid)
        assert record["customer_id"] == 10
        assert record["program_id"] == 5

    def test_creation_scope_before_request_exists(self, stream):
        with LogContext.for_request(customer_id=10, program_id=5):
            get_logger("test").info("creating")

        record = _parse_log(stream)
        assert record["scope"] == "enrollment"
        assert "request_id" not in record

    def test_phase_nests_inside_job(self, stream):
        with LogContext.for_reconciliation("job-1"):
            with LogContext.for_reconciliation(phase=ReconciliationPhase.MISSING_CARDS):
                get_logger("test").info("inside")
            get_logger("test").info("between")

        inside, between = _parse_all_logs(stream)
        assert inside["scope"] == "reconciliation"
        assert inside["job_id"] == "job-1"
        assert inside["phase"] == ReconciliationPhase.MISSING_CARDS.value
        assert between["job_id"] == "job-1"
        assert "phase" not in between

    def test_explicit_extra_wins_over_bound_value(self, stream):
        with LogContext.bind(operation="outer"):
            get_logger("test").info("x", extra={"operation": "inner"})
        assert _parse_log(stream)["operation"] == "inner"

    def test_reconciliation_job_lines_carry_job_and_phase(
        self, stream, settings, committed_session_factory,
    ):
        job = ReconciliationJob(
            settings,
            lambda s: EnrollmentOrchestrator(s, settings),
            committed_session_factory,
            phases=(ReconciliationPhase.MISSING_CARDS,),
        )
        with LogContext.for_reconciliation("maint-1"):
            job.run(batch_size=10)

        records = _parse_all_logs(stream)
        assert records
        assert {r["job_id"] for r in records} == {"maint-1"}
        phase_done = next(r for r in records if r["message"] == "reconciliation_phase_completed")
        assert phase_done["phase"] == ReconciliationPhase.MISSING_CARDS.value
        assert phase_done["scope"] == "reconciliation"


class TestLogContext:

    def test_bind_restores_previous_value(self):
        with LogContext.bind(correlation_id="outer"):
            with LogContext.bind(correlation_id="inner"):
                assert LogContext.get_all()["correlation_id"] == "inner"
            assert LogContext.get_all()["correlation_id"] == "outer"
        assert LogContext.get_all() == {}

    def test_none_values_are_not_bound(self):
        with LogContext.for_request(None, customer_id=10):
            assert LogContext.get_all() == {"customer_id": 10}

    def test_unknown_field_rejected(self):
        with pytest.raises(ValueError):
            with LogContext.bind(actor_id="x"):
                pass

    def test_clear(self):
        with LogContext.bind(correlation_id="x", request_id="y"):
            LogContext.clear()
            assert LogContext.get_all() == {}
