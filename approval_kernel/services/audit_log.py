"""
AuditLog -- append-only, hash-chained history per approval request.

Responsibility:
    Appends one entry per state-changing workflow operation (created,
    approval_recorded, approved, rejected, cancelled, escalated, expired)
    and exposes the trail read-only as frozen ``AuditEntry`` tuples.

Architecture position:
    Kernel > Services.  ``record`` is called only by the workflow engine,
    inside the engine's transaction; ``entries`` and ``verify_chain`` are
    open to any reader.

Invariants enforced:
    - Append-only: entries are never edited or removed (ORM listeners on
      AuditTrailEntryModel back this up).
    - Sequence is 1, 2, 3, ... per request.
    - Hash chain: each entry's hash covers its content and the previous
      entry's hash, so any retroactive edit is detectable.

Failure modes:
    - ApprovalNotFoundError from ``entries``/``verify_chain`` on unknown ids.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from approval_kernel.domain.approval import AuditAction, AuditEntry
from approval_kernel.exceptions import ApprovalNotFoundError
from approval_kernel.logging_config import get_logger
from approval_kernel.models.approval import ApprovalRequestModel
from approval_kernel.models.audit_trail import AuditTrailEntryModel
from approval_kernel.utils.hashing import hash_payload

logger = get_logger("services.audit_log")


def compute_entry_hash(
    *,
    request_id: UUID,
    seq: int,
    action: str,
    performed_by: UUID,
    performed_at: datetime,
    comment: str | None,
    payload: dict | None,
    prev_hash: str | None,
) -> str:
    """Hash one audit entry together with its predecessor's hash."""
    return hash_payload({
        "request_id": str(request_id),
        "seq": seq,
        "action": action,
        "performed_by": str(performed_by),
        "performed_at": performed_at.astimezone(timezone.utc).isoformat(),
        "comment": comment,
        "payload": payload,
        "prev_hash": prev_hash,
    })


class AuditLog:
    """Per-request audit trail writer and reader."""

    def record(
        self,
        request: ApprovalRequestModel,
        action: AuditAction,
        performed_by: UUID,
        performed_at: datetime,
        comment: str | None = None,
        payload: dict[str, Any] | None = None,
    ) -> AuditTrailEntryModel:
        """Append an entry to ``request``'s trail (caller flushes/commits)."""
        previous = request.audit_entries[-1] if request.audit_entries else None
        seq = previous.seq + 1 if previous is not None else 1
        prev_hash = previous.hash if previous is not None else None

        entry = AuditTrailEntryModel(
            request_id=request.id,
            seq=seq,
            action=action.value,
            performed_by=performed_by,
            performed_at=performed_at,
            comment=comment,
            payload=payload,
            prev_hash=prev_hash,
            hash=compute_entry_hash(
                request_id=request.id,
                seq=seq,
                action=action.value,
                performed_by=performed_by,
                performed_at=performed_at,
                comment=comment,
                payload=payload,
                prev_hash=prev_hash,
            ),
        )
        request.audit_entries.append(entry)

        logger.debug(
            "audit_entry_recorded",
            extra={
                "request_id": str(request.id),
                "seq": seq,
                "action": action.value,
                "performed_by": str(performed_by),
            },
        )
        return entry

    def entries(self, session: Session, request_id: UUID) -> tuple[AuditEntry, ...]:
        """Read-only view of a request's trail, oldest first."""
        self._require_request(session, request_id)
        rows = session.execute(
            select(AuditTrailEntryModel)
            .where(AuditTrailEntryModel.request_id == request_id)
            .order_by(AuditTrailEntryModel.seq)
        ).scalars().all()
        return tuple(row.to_dto() for row in rows)

    def verify_chain(self, session: Session, request_id: UUID) -> bool:
        """Recompute the hash chain; False if any entry was tampered with."""
        prev_hash: str | None = None
        for expected_seq, entry in enumerate(self.entries(session, request_id), start=1):
            if entry.sequence != expected_seq or entry.prev_hash != prev_hash:
                return self._chain_broken(request_id, entry.sequence)
            computed = compute_entry_hash(
                request_id=request_id,
                seq=entry.sequence,
                action=entry.action.value,
                performed_by=entry.performed_by,
                performed_at=entry.performed_at,
                comment=entry.comment,
                payload=entry.payload,
                prev_hash=entry.prev_hash,
            )
            if computed != entry.hash:
                return self._chain_broken(request_id, entry.sequence)
            prev_hash = entry.hash
        return True

    def _chain_broken(self, request_id: UUID, seq: int) -> bool:
        logger.warning(
            "audit_chain_broken",
            extra={"request_id": str(request_id), "seq": seq},
        )
        return False

    def _require_request(self, session: Session, request_id: UUID) -> None:
        found = session.execute(
            select(ApprovalRequestModel.id).where(ApprovalRequestModel.id == request_id)
        ).scalar_one_or_none()
        if found is None:
            raise ApprovalNotFoundError(str(request_id))
