"""
Module: approval_kernel.models.approval
Responsibility: ORM persistence for approval requests, approver actions and
    escalation history.

Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ (for DTO conversion) only.

Invariants enforced:
    - Lifecycle: DB check constraint limits status values; the workflow
      engine enforces transition rules.
    - Optimistic concurrency: ``version`` is SQLAlchemy's version_id_col;
      every UPDATE is a compare-and-swap on it, and a stale writer gets
      ``StaleDataError``.
    - Approver uniqueness: UNIQUE(request_id, approver_id).
    - Decided approver actions are immutable (ORM listener).
    - Escalation history is append-only, levels unique per request, and at
      most one escalation per breached deadline (the overdue window).

Failure modes:
    - IntegrityError on a duplicate approver or a duplicate escalation for
      the same window.
    - ImmutabilityViolationError on edits to decided actions or escalation
      records.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import (
    JSON,
    CheckConstraint,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    event,
    inspect,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from approval_kernel.db.base import Base, UUIDString
from approval_kernel.domain.approval import (
    ApprovalRequest,
    ApprovalStatus,
    ApprovalType,
    ApproverAction,
    ApproverActionState,
    EntityRef,
    EscalationRecord,
    Priority,
)
from approval_kernel.domain.request_data import REQUEST_DATA_TYPES
from approval_kernel.exceptions import ImmutabilityViolationError
from approval_kernel.models.audit_trail import AuditTrailEntryModel


class ApprovalRequestModel(Base):
    """Persistent approval request.

    Contract:
        Status transitions are lifecycle-constrained.  Terminal statuses
        (approved, rejected, cancelled, expired) cannot be changed once set.
        Rows are never deleted.
    """

    __tablename__ = "approval_requests"

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected', 'cancelled', 'expired')",
            name="ck_approval_requests_valid_status",
        ),
        CheckConstraint(
            "priority IN ('Critical', 'High', 'Medium', 'Low')",
            name="ck_approval_requests_valid_priority",
        ),
        CheckConstraint(
            "required_approvals >= 1",
            name="ck_approval_requests_quorum_positive",
        ),
        # Escalation scan: pending requests ordered by deadline
        Index("ix_approval_requests_status_deadline", "status", "deadline_at"),
        Index("ix_approval_requests_requested_by", "requested_by", "created_at"),
        Index("ix_approval_requests_entity", "entity_type", "entity_id"),
    )

    request_number: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    approval_type: Mapped[str] = mapped_column(String(50), nullable=False)
    request_data: Mapped[dict] = mapped_column(JSON, nullable=False)
    requested_by: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    project_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    entity_type: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    title: Mapped[str | None] = mapped_column(String(200), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    priority: Mapped[str] = mapped_column(String(20), nullable=False)
    required_approvals: Mapped[int] = mapped_column(nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    updated_at: Mapped[datetime] = mapped_column(nullable=False)
    deadline_at: Mapped[datetime] = mapped_column(nullable=False)
    resolved_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    resolution_comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    version: Mapped[int] = mapped_column(nullable=False)

    __mapper_args__ = {"version_id_col": version}

    approver_actions: Mapped[list[ApproverActionModel]] = relationship(
        "ApproverActionModel",
        back_populates="request",
        order_by="ApproverActionModel.position",
        lazy="selectin",
    )
    escalations: Mapped[list[EscalationRecordModel]] = relationship(
        "EscalationRecordModel",
        back_populates="request",
        order_by="EscalationRecordModel.level",
        lazy="selectin",
    )
    audit_entries: Mapped[list[AuditTrailEntryModel]] = relationship(
        "AuditTrailEntryModel",
        order_by="AuditTrailEntryModel.seq",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return (
            f"<ApprovalRequest {self.request_number} "
            f"{self.approval_type} status={self.status}>"
        )

    def to_dto(self) -> ApprovalRequest:
        """Convert ORM model to frozen domain DTO."""
        approval_type = ApprovalType(self.approval_type)
        return ApprovalRequest(
            request_id=self.id,
            request_number=self.request_number,
            approval_type=approval_type,
            request_data=REQUEST_DATA_TYPES[approval_type].from_mapping(self.request_data),
            requested_by=self.requested_by,
            entity=EntityRef(
                entity_type=self.entity_type,
                entity_id=self.entity_id,
                project_id=self.project_id,
            ),
            status=ApprovalStatus(self.status),
            priority=Priority(self.priority),
            required_approvals=self.required_approvals,
            created_at=self.created_at,
            deadline_at=self.deadline_at,
            title=self.title,
            description=self.description,
            approver_actions=tuple(a.to_dto() for a in self.approver_actions),
            resolved_by=self.resolved_by,
            resolved_at=self.resolved_at,
            resolution_comment=self.resolution_comment,
            escalation_history=tuple(e.to_dto() for e in self.escalations),
            audit_trail=tuple(e.to_dto() for e in self.audit_entries),
            version=self.version,
        )


class ApproverActionModel(Base):
    """One eligible approver's decision slot.

    Contract:
        ``action`` moves from 'pending' to 'approved' or 'rejected' exactly
        once; after that the row is frozen.
    """

    __tablename__ = "approval_approver_actions"

    __table_args__ = (
        UniqueConstraint("request_id", "approver_id", name="uq_approver_actions_approver"),
        UniqueConstraint("request_id", "position", name="uq_approver_actions_position"),
        CheckConstraint(
            "action IN ('pending', 'approved', 'rejected')",
            name="ck_approver_actions_valid_action",
        ),
        Index("ix_approver_actions_approver", "approver_id", "action"),
    )

    request_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("approval_requests.id"), nullable=False,
    )
    position: Mapped[int] = mapped_column(nullable=False)
    approver_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    approver_level: Mapped[int] = mapped_column(nullable=False)
    action: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    action_at: Mapped[datetime | None] = mapped_column(nullable=True)

    request: Mapped[ApprovalRequestModel] = relationship(
        "ApprovalRequestModel", back_populates="approver_actions",
    )

    def to_dto(self) -> ApproverAction:
        return ApproverAction(
            approver_id=self.approver_id,
            approver_level=self.approver_level,
            action=ApproverActionState(self.action),
            comment=self.comment,
            action_at=self.action_at,
        )


class EscalationRecordModel(Base):
    """Append-only escalation step."""

    __tablename__ = "approval_escalations"

    __table_args__ = (
        UniqueConstraint("request_id", "level", name="uq_escalations_level"),
        # One escalation per overdue window
        UniqueConstraint(
            "request_id", "breached_deadline_at", name="uq_escalations_window",
        ),
    )

    request_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("approval_requests.id"), nullable=False,
    )
    level: Mapped[int] = mapped_column(nullable=False)
    escalated_to: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    escalated_at: Mapped[datetime] = mapped_column(nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    breached_deadline_at: Mapped[datetime] = mapped_column(nullable=False)

    request: Mapped[ApprovalRequestModel] = relationship(
        "ApprovalRequestModel", back_populates="escalations",
    )

    def to_dto(self) -> EscalationRecord:
        return EscalationRecord(
            level=self.level,
            escalated_to=self.escalated_to,
            escalated_at=self.escalated_at,
            reason=self.reason,
            breached_deadline_at=self.breached_deadline_at,
        )


# =============================================================================
# ORM-Level Immutability
# =============================================================================


@event.listens_for(ApproverActionModel, "before_update")
def prevent_decided_action_update(mapper, connection, target):
    """A decided approver action can never change again."""
    history = inspect(target).attrs.action.history
    previous = history.deleted[0] if history.deleted else target.action
    if previous != ApproverActionState.PENDING.value:
        raise ImmutabilityViolationError(
            entity_type="ApproverAction",
            entity_id=str(target.id),
            reason=f"Approver action already '{previous}' -- cannot modify",
        )


@event.listens_for(ApproverActionModel, "before_delete")
def prevent_action_delete(mapper, connection, target):
    raise ImmutabilityViolationError(
        entity_type="ApproverAction",
        entity_id=str(target.id),
        reason="Approver actions cannot be deleted",
    )


@event.listens_for(EscalationRecordModel, "before_update")
def prevent_escalation_update(mapper, connection, target):
    raise ImmutabilityViolationError(
        entity_type="EscalationRecord",
        entity_id=str(target.id),
        reason="Escalation history is append-only -- cannot modify",
    )


@event.listens_for(EscalationRecordModel, "before_delete")
def prevent_escalation_delete(mapper, connection, target):
    raise ImmutabilityViolationError(
        entity_type="EscalationRecord",
        entity_id=str(target.id),
        reason="Escalation history is append-only -- cannot delete",
    )
