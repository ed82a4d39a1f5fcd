"""
Approval domain types (``approval_kernel.domain.approval``).

Responsibility
--------------
Pure value objects for the approval workflow.  Defines the approval
lifecycle state machine, caller identity, the request snapshot with its
approver actions, escalation history and audit trail, and the event and
filter records exchanged with collaborators.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``services/``, ``selectors/``, or outer layers.  May
import only from ``domain/request_data``.

Invariants enforced
-------------------
* Lifecycle state machine -- ``APPROVAL_TRANSITIONS`` defines the only
  valid status transitions.  Terminal states have no outgoing edges.
* Approver action state machine -- ``pending -> approved|rejected``
  exactly once (``ACTION_TRANSITIONS``).
* Priority ordering -- ``Priority.raised()`` moves one step toward
  Critical and saturates there.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Protocol
from uuid import UUID

if TYPE_CHECKING:
    from approval_kernel.domain.request_data import RequestData


# =========================================================================
# Enumerations
# =========================================================================


class ApprovalType(str, Enum):
    """Domain actions that require elevated sign-off."""

    DISCOUNT_APPROVAL = "DISCOUNT_APPROVAL"
    SALE_CANCELLATION = "SALE_CANCELLATION"
    PRICE_OVERRIDE = "PRICE_OVERRIDE"
    REFUND_APPROVAL = "REFUND_APPROVAL"
    INSTALLMENT_MODIFICATION = "INSTALLMENT_MODIFICATION"
    COMMISSION_PAYOUT = "COMMISSION_PAYOUT"
    INVOICE_APPROVAL = "INVOICE_APPROVAL"


class ApprovalStatus(str, Enum):
    """Approval request lifecycle states."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


APPROVAL_TRANSITIONS: dict[ApprovalStatus, frozenset[ApprovalStatus]] = {
    ApprovalStatus.PENDING: frozenset({
        ApprovalStatus.APPROVED,
        ApprovalStatus.REJECTED,
        ApprovalStatus.CANCELLED,
        ApprovalStatus.EXPIRED,
    }),
    ApprovalStatus.APPROVED: frozenset(),
    ApprovalStatus.REJECTED: frozenset(),
    ApprovalStatus.CANCELLED: frozenset(),
    ApprovalStatus.EXPIRED: frozenset(),
}

TERMINAL_APPROVAL_STATUSES: frozenset[ApprovalStatus] = frozenset({
    ApprovalStatus.APPROVED,
    ApprovalStatus.REJECTED,
    ApprovalStatus.CANCELLED,
    ApprovalStatus.EXPIRED,
})


class Priority(str, Enum):
    """Request urgency; drives the SLA deadline."""

    CRITICAL = "Critical"
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"

    def raised(self) -> Priority:
        """One step more urgent; Critical stays Critical."""
        index = _PRIORITY_ORDER.index(self)
        return _PRIORITY_ORDER[max(index - 1, 0)]


_PRIORITY_ORDER: tuple[Priority, ...] = (
    Priority.CRITICAL,
    Priority.HIGH,
    Priority.MEDIUM,
    Priority.LOW,
)


class ApproverActionState(str, Enum):
    """Per-approver decision state."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


ACTION_TRANSITIONS: dict[ApproverActionState, frozenset[ApproverActionState]] = {
    ApproverActionState.PENDING: frozenset({
        ApproverActionState.APPROVED,
        ApproverActionState.REJECTED,
    }),
    ApproverActionState.APPROVED: frozenset(),
    ApproverActionState.REJECTED: frozenset(),
}


class AuditAction(str, Enum):
    """One member per state-changing workflow operation."""

    CREATED = "created"
    APPROVAL_RECORDED = "approval_recorded"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    ESCALATED = "escalated"
    EXPIRED = "expired"


class ApprovalEventKind(str, Enum):
    """Notification events emitted after a committed transition."""

    CREATED = "created"
    ESCALATED = "escalated"
    RESOLVED = "resolved"


class EscalationOutcome(str, Enum):
    """What a single ``escalate`` call did."""

    ESCALATED = "escalated"
    EXPIRED = "expired"
    SKIPPED = "skipped"


# =========================================================================
# Identity
# =========================================================================


@dataclass(frozen=True)
class Role:
    """A named role.  Lower ``level`` means more authority."""

    name: str
    level: int
    permissions: frozenset[str] = frozenset()
    is_owner_role: bool = False


@dataclass(frozen=True)
class Subject:
    """Caller identity as supplied by the identity/session provider."""

    user_id: UUID
    role_level: int
    permissions: frozenset[str] = frozenset()
    is_owner: bool = False
    role_name: str | None = None


# =========================================================================
# Request records
# =========================================================================


@dataclass(frozen=True)
class EntityRef:
    """Polymorphic reference to the domain object awaiting the decision."""

    entity_type: str
    entity_id: UUID
    project_id: UUID | None = None


@dataclass(frozen=True)
class ApproverAction:
    """One eligible approver's slot on a request."""

    approver_id: UUID
    approver_level: int
    action: ApproverActionState = ApproverActionState.PENDING
    comment: str | None = None
    action_at: datetime | None = None


@dataclass(frozen=True)
class EscalationRecord:
    """One escalation step.

    ``breached_deadline_at`` is the deadline whose breach triggered the
    escalation; it identifies the overdue window.
    """

    level: int
    escalated_to: UUID | None
    escalated_at: datetime
    reason: str
    breached_deadline_at: datetime


@dataclass(frozen=True)
class AuditEntry:
    """Immutable audit trail entry."""

    sequence: int
    action: AuditAction
    performed_by: UUID
    performed_at: datetime
    comment: str | None = None
    payload: dict | None = None
    prev_hash: str | None = None
    hash: str | None = None


@dataclass(frozen=True)
class ApprovalRequest:
    """Immutable snapshot of an approval request."""

    request_id: UUID
    request_number: str
    approval_type: ApprovalType
    request_data: RequestData
    requested_by: UUID
    entity: EntityRef
    status: ApprovalStatus
    priority: Priority
    required_approvals: int
    created_at: datetime
    deadline_at: datetime
    title: str | None = None
    description: str | None = None
    approver_actions: tuple[ApproverAction, ...] = ()
    resolved_by: UUID | None = None
    resolved_at: datetime | None = None
    resolution_comment: str | None = None
    escalation_history: tuple[EscalationRecord, ...] = ()
    audit_trail: tuple[AuditEntry, ...] = ()
    version: int = 1

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_APPROVAL_STATUSES

    @property
    def approved_count(self) -> int:
        return sum(
            1 for a in self.approver_actions
            if a.action == ApproverActionState.APPROVED
        )

    @property
    def approver_ids(self) -> frozenset[UUID]:
        return frozenset(a.approver_id for a in self.approver_actions)

    def action_for(self, approver_id: UUID) -> ApproverAction | None:
        """Return the approver's slot, or None if not eligible."""
        for a in self.approver_actions:
            if a.approver_id == approver_id:
                return a
        return None

    def is_overdue(self, now: datetime) -> bool:
        """Pending and past its SLA deadline."""
        return self.status == ApprovalStatus.PENDING and now > self.deadline_at

    def hours_until_deadline(self, now: datetime) -> float | None:
        """Signed hours left on the SLA (negative when overdue)."""
        if self.status != ApprovalStatus.PENDING:
            return None
        return (self.deadline_at - now).total_seconds() / 3600


# =========================================================================
# Read-side records
# =========================================================================


@dataclass(frozen=True)
class RequestFilter:
    """Filter for ``list_requests``.  ``None`` fields do not constrain."""

    status: ApprovalStatus | None = None
    approval_type: ApprovalType | None = None
    priority: Priority | None = None
    requested_by: UUID | None = None
    approver_id: UUID | None = None
    project_id: UUID | None = None
    entity_type: str | None = None
    entity_id: UUID | None = None
    created_from: datetime | None = None
    created_to: datetime | None = None
    limit: int | None = None
    offset: int = 0


@dataclass(frozen=True)
class ApprovalEvent:
    """Best-effort notification payload."""

    kind: ApprovalEventKind
    request_id: UUID
    request_number: str
    approval_type: ApprovalType
    status: ApprovalStatus
    priority: Priority
    recipients: tuple[UUID, ...]
    occurred_at: datetime
    details: dict = field(default_factory=dict)


# =========================================================================
# Collaborator protocols
# =========================================================================


class ApproverDirectory(Protocol):
    """Pluggable source of escalation candidates."""

    def escalation_candidates(self) -> tuple[Subject, ...]:
        """Return every subject that may be escalated to."""
        ...


class NotificationSink(Protocol):
    """Receives workflow events.  Delivery is best-effort."""

    def deliver(self, event: ApprovalEvent) -> None:
        ...


class ResolutionHandler(Protocol):
    """Domain callback invoked once a request reaches a terminal state."""

    def __call__(self, request: ApprovalRequest) -> None:
        ...
