"""
Loyalty Kernel - Enrollment Consistency Engine

Turns a customer's approval of a loyalty-program invitation into a
consistent set of records:
- Exactly one active card per active enrollment
- Idempotent, first-writer-wins approval resolution
- Transactional activation shared by the live and repair paths
- Read-only integrity validation
"""

__version__ = "0.1.0"
