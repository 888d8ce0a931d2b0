"""Read-only selectors for the loyalty kernel."""

from loyalty_kernel.selectors.approval_selector import ApprovalRequestSelector
from loyalty_kernel.selectors.integrity_selector import IntegrityValidator

__all__ = [
    "ApprovalRequestSelector",
    "IntegrityValidator",
]
