"""
Typed Exception Hierarchy for the Approval Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the workflow engine (the UI layer, domain collaborators, the
escalation scheduler) must react differently to a bad payload, a missing
permission, a request that was already resolved, and a lost race.  Parsing
message strings for that is fragile, so:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example:
    try:
        engine.reject(request_id, approver, comment)
    except MissingRejectionCommentError as e:
        api_response(code=e.code, field="comment")
    except ApprovalAlreadyResolvedError as e:
        api_response(code=e.code, status=e.status)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from ApprovalKernelError:

    ApprovalKernelError (base)
    |
    +-- ApprovalValidationError
    |   +-- RequestDataValidationError
    |   +-- MissingRejectionCommentError
    |
    +-- ApprovalForbiddenError
    |   +-- MissingPermissionError
    |   +-- NotEligibleApproverError
    |   +-- DuplicateApproverActionError
    |   +-- NotRequesterError
    |
    +-- InvalidApprovalStateError
    |   +-- ApprovalAlreadyResolvedError
    |       +-- ApprovalExpiredError
    |
    +-- ApprovalConflictError
    |   +-- ApprovalLockTimeoutError
    |
    +-- ApprovalNotFoundError
    |
    +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category   | Code                       | When Raised
-----------|----------------------------|----------------------------------------
Validation | VALIDATION_ERROR           | Malformed create/reject input
           | INVALID_REQUEST_DATA       | Payload fails its per-type schema
           | REJECTION_COMMENT_REQUIRED | reject() with a blank comment
-----------|----------------------------|----------------------------------------
Forbidden  | FORBIDDEN                  | Generic authorization failure
           | PERMISSION_DENIED          | Subject lacks a permission string
           | NOT_ELIGIBLE_APPROVER      | Approver not in the eligible set
           | APPROVER_ALREADY_ACTED     | Approver already recorded a decision
           | NOT_REQUESTER              | cancel() by someone else
-----------|----------------------------|----------------------------------------
State      | INVALID_STATE              | Operation invalid for current status
           | APPROVAL_ALREADY_RESOLVED  | Mutation of a terminal request
           | APPROVAL_EXPIRED           | Mutation of an SLA-expired request
-----------|----------------------------|----------------------------------------
Conflict   | CONFLICT                   | Concurrent modification detected
           | LOCK_TIMEOUT               | Per-request lock not acquired in time
-----------|----------------------------|----------------------------------------
Lookup     | APPROVAL_NOT_FOUND         | Unknown request id
-----------|----------------------------|----------------------------------------
Integrity  | IMMUTABILITY_VIOLATION     | Audit row / decided action modified

Categories let middleware map errors wholesale: ValidationError -> 400,
ForbiddenError -> 403, NotFound -> 404, InvalidState/Conflict -> 409.
"""


class ApprovalKernelError(Exception):
    """
    Base exception for all approval kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "APPROVAL_KERNEL_ERROR"


# Validation


class ApprovalValidationError(ApprovalKernelError):
    """Input to a workflow operation is malformed."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class RequestDataValidationError(ApprovalValidationError):
    """Request payload does not satisfy its approval type's schema."""

    code: str = "INVALID_REQUEST_DATA"

    def __init__(self, approval_type: str, errors: dict[str, str]):
        self.approval_type = approval_type
        self.errors = dict(errors)
        details = "; ".join(f"{k}: {v}" for k, v in sorted(self.errors.items()))
        super().__init__(
            f"Invalid request data for {approval_type}: {details}",
            field=next(iter(sorted(self.errors)), None),
        )


class MissingRejectionCommentError(ApprovalValidationError):
    """Rejections must always carry a non-blank reason."""

    code: str = "REJECTION_COMMENT_REQUIRED"

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(
            f"A rejection reason is required for approval request {request_id}",
            field="comment",
        )


# Authorization


class ApprovalForbiddenError(ApprovalKernelError):
    """Actor is not allowed to perform the operation."""

    code: str = "FORBIDDEN"


class MissingPermissionError(ApprovalForbiddenError):
    """Subject lacks a required permission string."""

    code: str = "PERMISSION_DENIED"

    def __init__(self, actor_id: str, permission: str):
        self.actor_id = actor_id
        self.permission = permission
        super().__init__(f"Actor {actor_id} lacks permission '{permission}'")


class NotEligibleApproverError(ApprovalForbiddenError):
    """Actor is not part of the request's eligible approver set."""

    code: str = "NOT_ELIGIBLE_APPROVER"

    def __init__(self, request_id: str, actor_id: str):
        self.request_id = request_id
        self.actor_id = actor_id
        super().__init__(
            f"Actor {actor_id} is not an eligible approver for request {request_id}"
        )


class DuplicateApproverActionError(ApprovalForbiddenError):
    """Approver already recorded a decision on this request."""

    code: str = "APPROVER_ALREADY_ACTED"

    def __init__(self, request_id: str, actor_id: str, action: str):
        self.request_id = request_id
        self.actor_id = actor_id
        self.action = action
        super().__init__(
            f"Actor {actor_id} already recorded '{action}' on request {request_id}"
        )


class NotRequesterError(ApprovalForbiddenError):
    """Only the original requester may cancel a request."""

    code: str = "NOT_REQUESTER"

    def __init__(self, request_id: str, actor_id: str):
        self.request_id = request_id
        self.actor_id = actor_id
        super().__init__(
            f"Actor {actor_id} did not raise request {request_id} and cannot cancel it"
        )


# State


class InvalidApprovalStateError(ApprovalKernelError):
    """Operation is not valid for the request's current status."""

    code: str = "INVALID_STATE"

    def __init__(self, request_id: str, status: str, operation: str):
        self.request_id = request_id
        self.status = status
        self.operation = operation
        super().__init__(
            f"Cannot {operation} approval request {request_id} in status '{status}'"
        )


class ApprovalAlreadyResolvedError(InvalidApprovalStateError):
    """Request reached a terminal status and is immutable."""

    code: str = "APPROVAL_ALREADY_RESOLVED"


class ApprovalExpiredError(ApprovalAlreadyResolvedError):
    """Request was terminated by SLA exhaustion, not by a human decision."""

    code: str = "APPROVAL_EXPIRED"


# Concurrency


class ApprovalConflictError(ApprovalKernelError):
    """Concurrent modification detected on an approval request."""

    code: str = "CONFLICT"

    def __init__(self, request_id: str, reason: str = "modified concurrently"):
        self.request_id = request_id
        self.reason = reason
        super().__init__(f"Conflict on approval request {request_id}: {reason}")


class ApprovalLockTimeoutError(ApprovalConflictError):
    """Per-request lock could not be acquired within the bounded wait."""

    code: str = "LOCK_TIMEOUT"

    def __init__(self, request_id: str, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__(
            request_id,
            f"lock not acquired within {timeout_seconds}s",
        )


# Lookup


class ApprovalNotFoundError(ApprovalKernelError):
    """Approval request id does not exist."""

    code: str = "APPROVAL_NOT_FOUND"

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(f"Approval request {request_id} not found")


# Integrity


class ImmutabilityViolationError(ApprovalKernelError):
    """
    Attempted to modify or delete an immutable record.

    Audit trail entries are immutable after creation; approver actions are
    immutable once decided.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
