"""
Module: approval_kernel.selectors.approval_selector
Responsibility: Read-side queries over approval requests -- single lookups,
    filtered listings, the approvals dashboard (pending for me, my requests,
    recently resolved, status counts), overdue scans and audit trails.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Read-only; returns frozen ``ApprovalRequest`` / ``AuditEntry`` DTOs.
    - Listings are deterministic: newest first, ties broken by request
      number.  Overdue scans are oldest deadline first.

Failure modes:
    - ApprovalNotFoundError from ``get_request`` / ``get_audit_trail``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy import func, select

from approval_kernel.domain.approval import (
    ApprovalRequest,
    ApprovalStatus,
    ApproverActionState,
    AuditEntry,
    RequestFilter,
)
from approval_kernel.exceptions import ApprovalNotFoundError
from approval_kernel.models.approval import ApprovalRequestModel, ApproverActionModel
from approval_kernel.models.audit_trail import AuditTrailEntryModel
from approval_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class ApprovalDashboard:
    """What the approvals page shows one user."""

    pending_for_me: tuple[ApprovalRequest, ...]
    my_requests: tuple[ApprovalRequest, ...]
    recently_resolved: tuple[ApprovalRequest, ...]
    status_counts: dict[ApprovalStatus, int]
    overdue_count: int


class ApprovalSelector(BaseSelector[ApprovalRequestModel]):
    """Queries for approval requests."""

    def get_request(self, request_id: UUID) -> ApprovalRequest:
        model = self.session.get(ApprovalRequestModel, request_id)
        if model is None:
            raise ApprovalNotFoundError(str(request_id))
        return model.to_dto()

    def get_by_number(self, request_number: str) -> ApprovalRequest | None:
        model = self.session.execute(
            select(ApprovalRequestModel)
            .where(ApprovalRequestModel.request_number == request_number)
        ).scalar_one_or_none()
        return model.to_dto() if model is not None else None

    def list_requests(self, flt: RequestFilter | None = None) -> list[ApprovalRequest]:
        """Requests matching every non-None field of ``flt``."""
        flt = flt or RequestFilter()
        stmt = select(ApprovalRequestModel)

        if flt.status is not None:
            stmt = stmt.where(ApprovalRequestModel.status == flt.status.value)
        if flt.approval_type is not None:
            stmt = stmt.where(ApprovalRequestModel.approval_type == flt.approval_type.value)
        if flt.priority is not None:
            stmt = stmt.where(ApprovalRequestModel.priority == flt.priority.value)
        if flt.requested_by is not None:
            stmt = stmt.where(ApprovalRequestModel.requested_by == flt.requested_by)
        if flt.approver_id is not None:
            stmt = stmt.where(ApprovalRequestModel.approver_actions.any(
                ApproverActionModel.approver_id == flt.approver_id
            ))
        if flt.project_id is not None:
            stmt = stmt.where(ApprovalRequestModel.project_id == flt.project_id)
        if flt.entity_type is not None:
            stmt = stmt.where(ApprovalRequestModel.entity_type == flt.entity_type)
        if flt.entity_id is not None:
            stmt = stmt.where(ApprovalRequestModel.entity_id == flt.entity_id)
        if flt.created_from is not None:
            stmt = stmt.where(ApprovalRequestModel.created_at >= flt.created_from)
        if flt.created_to is not None:
            stmt = stmt.where(ApprovalRequestModel.created_at < flt.created_to)

        stmt = stmt.order_by(
            ApprovalRequestModel.created_at.desc(),
            ApprovalRequestModel.request_number.desc(),
        ).offset(flt.offset)
        if flt.limit is not None:
            stmt = stmt.limit(flt.limit)

        return [m.to_dto() for m in self.session.execute(stmt).scalars()]

    def pending_for(self, user_id: UUID) -> list[ApprovalRequest]:
        """Pending requests on which ``user_id`` still has to decide."""
        stmt = (
            select(ApprovalRequestModel)
            .where(ApprovalRequestModel.status == ApprovalStatus.PENDING.value)
            .where(ApprovalRequestModel.approver_actions.any(
                (ApproverActionModel.approver_id == user_id)
                & (ApproverActionModel.action == ApproverActionState.PENDING.value)
            ))
            .order_by(ApprovalRequestModel.deadline_at, ApprovalRequestModel.request_number)
        )
        return [m.to_dto() for m in self.session.execute(stmt).scalars()]

    def requested_by(self, user_id: UUID, limit: int | None = None) -> list[ApprovalRequest]:
        return self.list_requests(RequestFilter(requested_by=user_id, limit=limit))

    def recently_resolved(
        self,
        since: datetime,
        limit: int | None = None,
    ) -> list[ApprovalRequest]:
        """Requests resolved at or after ``since``, newest first."""
        stmt = (
            select(ApprovalRequestModel)
            .where(ApprovalRequestModel.resolved_at.is_not(None))
            .where(ApprovalRequestModel.resolved_at >= since)
            .order_by(
                ApprovalRequestModel.resolved_at.desc(),
                ApprovalRequestModel.request_number.desc(),
            )
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return [m.to_dto() for m in self.session.execute(stmt).scalars()]

    def status_counts(self) -> dict[ApprovalStatus, int]:
        """Request count per status; every status is present."""
        counts = {status: 0 for status in ApprovalStatus}
        rows = self.session.execute(
            select(ApprovalRequestModel.status, func.count())
            .group_by(ApprovalRequestModel.status)
        ).all()
        for status, count in rows:
            counts[ApprovalStatus(status)] = count
        return counts

    def overdue(self, now: datetime, limit: int | None = None) -> list[ApprovalRequest]:
        """Pending requests past their deadline, oldest deadline first."""
        stmt = self._overdue_stmt(select(ApprovalRequestModel), now)
        if limit is not None:
            stmt = stmt.limit(limit)
        return [m.to_dto() for m in self.session.execute(stmt).scalars()]

    def overdue_ids(self, now: datetime, limit: int | None = None) -> list[UUID]:
        """Ids of overdue pending requests (the scheduler's scan)."""
        stmt = self._overdue_stmt(select(ApprovalRequestModel.id), now)
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(self.session.execute(stmt).scalars())

    def get_audit_trail(self, request_id: UUID) -> tuple[AuditEntry, ...]:
        self.get_request(request_id)
        rows = self.session.execute(
            select(AuditTrailEntryModel)
            .where(AuditTrailEntryModel.request_id == request_id)
            .order_by(AuditTrailEntryModel.seq)
        ).scalars()
        return tuple(row.to_dto() for row in rows)

    def dashboard(
        self,
        user_id: UUID,
        now: datetime,
        resolved_since: datetime,
        limit: int = 20,
    ) -> ApprovalDashboard:
        return ApprovalDashboard(
            pending_for_me=tuple(self.pending_for(user_id)),
            my_requests=tuple(self.requested_by(user_id, limit=limit)),
            recently_resolved=tuple(self.recently_resolved(resolved_since, limit=limit)),
            status_counts=self.status_counts(),
            overdue_count=len(self.overdue_ids(now)),
        )

    @staticmethod
    def _overdue_stmt(stmt, now: datetime):
        return (
            stmt.where(ApprovalRequestModel.status == ApprovalStatus.PENDING.value)
            .where(ApprovalRequestModel.deadline_at < now)
            .order_by(ApprovalRequestModel.deadline_at, ApprovalRequestModel.request_number)
        )
