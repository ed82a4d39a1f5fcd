"""
Module: approval_kernel.models.audit_trail
Responsibility: ORM persistence for the per-request, tamper-evident audit trail.
Architecture position: Kernel > Models.  May import from db/base.py only
    (plus domain/ for DTO conversion).

Invariants enforced:
    - Audit records are append-only; no UPDATE or DELETE (ORM listeners).
    - seq is 1, 2, 3, ... per request (UNIQUE(request_id, seq)).
    - Hash chain: hash = H(request_id | seq | action | performed_by |
      performed_at | comment | payload | prev_hash).  Validated by AuditLog.

Failure modes:
    - ImmutabilityViolationError on any UPDATE/DELETE attempt.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import JSON, ForeignKey, Index, String, Text, UniqueConstraint, event
from sqlalchemy.orm import Mapped, mapped_column

from approval_kernel.db.base import Base, UUIDString
from approval_kernel.domain.approval import AuditAction, AuditEntry
from approval_kernel.exceptions import ImmutabilityViolationError


class AuditTrailEntryModel(Base):
    """
    One audit trail entry.

    Contract:
        Rows are append-only, never updated or deleted.  Each row's hash
        includes the previous row's hash for the same request.
    """

    __tablename__ = "approval_audit_trail"

    __table_args__ = (
        UniqueConstraint("request_id", "seq", name="uq_audit_trail_seq"),
        Index("ix_audit_trail_action", "action"),
        Index("ix_audit_trail_performed_by", "performed_by"),
    )

    request_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("approval_requests.id"), nullable=False,
    )
    seq: Mapped[int] = mapped_column(nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    performed_by: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    performed_at: Mapped[datetime] = mapped_column(nullable=False)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    prev_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    hash: Mapped[str] = mapped_column(String(64), nullable=False)

    def __repr__(self) -> str:
        return f"<AuditTrailEntry {self.request_id}#{self.seq} {self.action}>"

    def to_dto(self) -> AuditEntry:
        return AuditEntry(
            sequence=self.seq,
            action=AuditAction(self.action),
            performed_by=self.performed_by,
            performed_at=self.performed_at,
            comment=self.comment,
            payload=dict(self.payload) if self.payload is not None else None,
            prev_hash=self.prev_hash,
            hash=self.hash,
        )


@event.listens_for(AuditTrailEntryModel, "before_update")
def prevent_audit_update(mapper, connection, target):
    """Prevent updates to audit trail records."""
    raise ImmutabilityViolationError(
        entity_type="AuditTrailEntry",
        entity_id=str(target.id),
        reason="Audit trail entries are immutable -- cannot modify",
    )


@event.listens_for(AuditTrailEntryModel, "before_delete")
def prevent_audit_delete(mapper, connection, target):
    """Prevent deletion of audit trail records."""
    raise ImmutabilityViolationError(
        entity_type="AuditTrailEntry",
        entity_id=str(target.id),
        reason="Audit trail entries are immutable -- cannot delete",
    )
