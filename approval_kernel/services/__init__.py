"""Kernel services: audit trail, request numbering and per-request locks."""

from approval_kernel.services.audit_log import AuditLog, compute_entry_hash
from approval_kernel.services.request_locks import RequestLockRegistry
from approval_kernel.services.sequence_service import SequenceCounter, SequenceService

__all__ = [
    "AuditLog",
    "RequestLockRegistry",
    "SequenceCounter",
    "SequenceService",
    "compute_entry_hash",
]
