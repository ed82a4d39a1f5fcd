"""Batch services."""

from approval_batch.services.escalation_scheduler import EscalationScheduler, ScanResult

__all__ = ["EscalationScheduler", "ScanResult"]
