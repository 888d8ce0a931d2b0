"""Transaction-owning services: the EnrollmentEngine facade and reconciliation job."""

from loyalty_services.enrollment_engine import (
    EnrollmentEngine,
    MaintenanceReport,
    ResolutionResult,
    ResolutionStatus,
)
from loyalty_services.enrollment_orchestrator import (
    EnrollmentOrchestrator,
    build_enrollment_orchestrator,
)
from loyalty_services.reconciliation_job import ReconciliationJob
from loyalty_services.transactions import run_unit_of_work

__all__ = [
    "EnrollmentEngine",
    "EnrollmentOrchestrator",
    "MaintenanceReport",
    "ReconciliationJob",
    "ResolutionResult",
    "ResolutionStatus",
    "build_enrollment_orchestrator",
    "run_unit_of_work",
]
