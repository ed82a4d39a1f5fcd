"""
Pure domain layer.

Value objects and the approval lifecycle state machine, with NO
dependencies on the ORM, the database, or I/O.  Time comes only from an
injected Clock.
"""

from approval_kernel.domain.approval import (
    ACTION_TRANSITIONS,
    APPROVAL_TRANSITIONS,
    TERMINAL_APPROVAL_STATUSES,
    ApprovalEvent,
    ApprovalEventKind,
    ApprovalRequest,
    ApprovalStatus,
    ApprovalType,
    ApproverAction,
    ApproverActionState,
    ApproverDirectory,
    AuditAction,
    AuditEntry,
    EntityRef,
    EscalationOutcome,
    EscalationRecord,
    NotificationSink,
    Priority,
    RequestFilter,
    ResolutionHandler,
    Role,
    Subject,
)
from approval_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from approval_kernel.domain.request_data import (
    REQUEST_DATA_TYPES,
    CommissionPayoutData,
    DiscountApprovalData,
    InstallmentModificationData,
    InvoiceApprovalData,
    PriceOverrideData,
    RefundApprovalData,
    RequestData,
    SaleCancellationData,
    parse_request_data,
)

__all__ = [
    "ACTION_TRANSITIONS",
    "APPROVAL_TRANSITIONS",
    "REQUEST_DATA_TYPES",
    "TERMINAL_APPROVAL_STATUSES",
    "ApprovalEvent",
    "ApprovalEventKind",
    "ApprovalRequest",
    "ApprovalStatus",
    "ApprovalType",
    "ApproverAction",
    "ApproverActionState",
    "ApproverDirectory",
    "AuditAction",
    "AuditEntry",
    "Clock",
    "CommissionPayoutData",
    "DeterministicClock",
    "DiscountApprovalData",
    "EntityRef",
    "EscalationOutcome",
    "EscalationRecord",
    "InstallmentModificationData",
    "InvoiceApprovalData",
    "NotificationSink",
    "PriceOverrideData",
    "Priority",
    "RefundApprovalData",
    "RequestData",
    "RequestFilter",
    "ResolutionHandler",
    "Role",
    "SaleCancellationData",
    "Subject",
    "SystemClock",
    "parse_request_data",
]
