"""ORM models for the approval kernel."""

from approval_kernel.models.audit_trail import AuditTrailEntryModel
from approval_kernel.models.approval import (
    ApprovalRequestModel,
    ApproverActionModel,
    EscalationRecordModel,
)

__all__ = [
    "ApprovalRequestModel",
    "ApproverActionModel",
    "AuditTrailEntryModel",
    "EscalationRecordModel",
]
