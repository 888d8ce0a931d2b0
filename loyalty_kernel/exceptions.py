"""
Typed Exception Hierarchy for the Loyalty Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the enrollment engine (HTTP handlers, the reconciliation job,
the CLI) must decide what to do with a failure without parsing messages:
retry it, surface it to the customer, or alert an operator.  Therefore:
  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Every exception has a RETRYABLE flag
  4. Exceptions carry structured DATA as attributes

Example - RIGHT way:
    try:
        processor.resolve(request_id, approve=True)
    except ResolutionConflictError as e:
        api_response(code=e.code, recorded=e.recorded_status)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    LoyaltyKernelError (base)
    |
    +-- ValidationError
    |   +-- ApprovalRequestNotFoundError
    |   +-- InvalidIdentifierError
    |   +-- UnsupportedRequestKindError
    |   +-- DuplicatePendingRequestError
    |   +-- InvalidExpiryError
    |   +-- InvalidDecisionError
    |
    +-- ExpiredError
    |   +-- ApprovalRequestExpiredError
    |
    +-- ConflictError
    |   +-- ResolutionConflictError
    |   +-- CardNumberGenerationError
    |
    +-- TransientError                      (retryable)
    |   +-- TransientStorageError
    |
    +-- DataIntegrityError
        +-- IntegrityViolationsFoundError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Validation      | REQUEST_NOT_FOUND           | Approval request id does not exist
                | INVALID_IDENTIFIER          | Non-canonical customer/business/program id
                | UNSUPPORTED_REQUEST_KIND    | No handler registered for request kind
                | DUPLICATE_PENDING_REQUEST   | Pair already has a PENDING request
                | INVALID_EXPIRY              | expires_at not after requested_at
                | INVALID_DECISION            | Resolution decision is not a bool
----------------|-----------------------------|-----------------------------------------
Expired         | REQUEST_EXPIRED             | Resolve after expires_at
----------------|-----------------------------|-----------------------------------------
Conflict        | RESOLUTION_CONFLICT         | Opposite decision on a resolved request
                | CARD_NUMBER_EXHAUSTED       | Card number retries exhausted
----------------|-----------------------------|-----------------------------------------
Transient       | TRANSIENT_STORAGE_ERROR     | Deadlock, lock/statement timeout,
                |                             | serialization failure, lost connection
----------------|-----------------------------|-----------------------------------------
Integrity       | DATA_INTEGRITY_VIOLATION    | Strict integrity check found issues
                | IMMUTABILITY_VIOLATION      | Delete of enrollment/card, or reversal
                |                             | of a resolved request

===============================================================================
HANDLING PATTERNS
===============================================================================

1. IDEMPOTENT REPLAY IS NOT AN ERROR:
   Resolving an already-resolved request with the SAME decision returns the
   recorded outcome.  Only the opposite decision raises ResolutionConflictError.

2. TRANSIENT ERRORS ARE RETRIED BY THE UNIT-OF-WORK OWNER:
   The kernel never retries a storage failure itself; the facade in
   loyalty_services retries the whole transaction a bounded number of times.

3. RECONCILIATION NEVER RAISES PER ITEM:
   Per-item failures are counted and logged; the job always returns a summary.

===============================================================================
"""


class LoyaltyKernelError(Exception):
    """
    Base exception for all loyalty kernel errors.

    All subclasses must have a ``code`` class attribute for machine-readable
    error identification.
    """

    code: str = "LOYALTY_KERNEL_ERROR"
    retryable: bool = False


# Validation


class ValidationError(LoyaltyKernelError):
    """Base exception for malformed or unknown input."""

    code: str = "VALIDATION_ERROR"


class ApprovalRequestNotFoundError(ValidationError):
    """Approval request with the given id does not exist."""

    code: str = "REQUEST_NOT_FOUND"

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(f"Approval request not found: {request_id}")


class InvalidIdentifierError(ValidationError):
    """Identifier is not a canonical positive integer."""

    code: str = "INVALID_IDENTIFIER"

    def __init__(self, kind: str, value: object):
        self.kind = kind
        self.value = repr(value)
        super().__init__(f"Invalid {kind} identifier: {value!r}")


class UnsupportedRequestKindError(ValidationError):
    """No resolution handler is registered for this request kind."""

    code: str = "UNSUPPORTED_REQUEST_KIND"

    def __init__(self, request_kind: str):
        self.request_kind = request_kind
        super().__init__(f"Unsupported approval request kind: {request_kind}")


class DuplicatePendingRequestError(ValidationError):
    """A PENDING request already exists for this customer/program/kind."""

    code: str = "DUPLICATE_PENDING_REQUEST"

    def __init__(self, customer_id: int, program_id: int, existing_request_id: str):
        self.customer_id = customer_id
        self.program_id = program_id
        self.existing_request_id = existing_request_id
        super().__init__(
            f"Customer {customer_id} already has pending request "
            f"{existing_request_id} for program {program_id}"
        )


class InvalidExpiryError(ValidationError):
    """Request expiry is not after its request time."""

    code: str = "INVALID_EXPIRY"

    def __init__(self, requested_at: str, expires_at: str):
        self.requested_at = requested_at
        self.expires_at = expires_at
        super().__init__(
            f"expires_at {expires_at} must be after requested_at {requested_at}"
        )


class InvalidDecisionError(ValidationError):
    """Resolution decision is not a real bool."""

    code: str = "INVALID_DECISION"

    def __init__(self, value: object):
        self.value = repr(value)
        super().__init__(f"Decision must be True or False, got {value!r}")


# Expiry


class ExpiredError(LoyaltyKernelError):
    """Base exception for actions attempted after a deadline."""

    code: str = "EXPIRED"


class ApprovalRequestExpiredError(ExpiredError):
    """Approval request can no longer be resolved."""

    code: str = "REQUEST_EXPIRED"

    def __init__(self, request_id: str, expires_at: str):
        self.request_id = request_id
        self.expires_at = expires_at
        super().__init__(f"Approval request {request_id} expired at {expires_at}")


# Conflicts


class ConflictError(LoyaltyKernelError):
    """Base exception for requests that contradict recorded state."""

    code: str = "CONFLICT"


class ResolutionConflictError(ConflictError):
    """Request was already resolved with the opposite decision."""

    code: str = "RESOLUTION_CONFLICT"

    def __init__(self, request_id: str, recorded_status: str, attempted_status: str):
        self.request_id = request_id
        self.recorded_status = recorded_status
        self.attempted_status = attempted_status
        super().__init__(
            f"Approval request {request_id} already {recorded_status}; "
            f"cannot change to {attempted_status}"
        )


class CardNumberGenerationError(ConflictError):
    """Could not find a free card number within the attempt bound."""

    code: str = "CARD_NUMBER_EXHAUSTED"

    def __init__(self, customer_id: int, program_id: int, attempts: int):
        self.customer_id = customer_id
        self.program_id = program_id
        self.attempts = attempts
        super().__init__(
            f"Card number generation for customer {customer_id} program "
            f"{program_id} collided {attempts} times"
        )


# Transient


class TransientError(LoyaltyKernelError):
    """Base exception for failures that may succeed on retry."""

    code: str = "TRANSIENT_ERROR"
    retryable: bool = True


class TransientStorageError(TransientError):
    """Storage failure such as a deadlock, timeout or dropped connection."""

    code: str = "TRANSIENT_STORAGE_ERROR"

    def __init__(self, operation: str, cause: str):
        self.operation = operation
        self.cause = cause
        super().__init__(f"Transient storage failure during {operation}: {cause}")


# Data integrity


class DataIntegrityError(LoyaltyKernelError):
    """Base exception for violated cross-record invariants."""

    code: str = "DATA_INTEGRITY_ERROR"


class IntegrityViolationsFoundError(DataIntegrityError):
    """A strict integrity check found one or more issues."""

    code: str = "DATA_INTEGRITY_VIOLATION"

    def __init__(self, issues: list):
        self.issues = list(issues)
        kinds = sorted({issue.kind.value for issue in self.issues})
        super().__init__(
            f"{len(self.issues)} integrity issue(s) found: {', '.join(kinds)}"
        )


class ImmutabilityViolationError(DataIntegrityError):
    """Attempted to delete or rewrite a protected record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
