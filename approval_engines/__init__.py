"""
Module: approval_engines
Responsibility:
    Package entrypoint re-exporting the pure approval evaluation functions.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import approval_kernel/domain.
    MUST NOT import approval_services or approval_batch.

Invariants enforced:
    - Purity: engines NEVER call ``datetime.now()``.  Times are passed in.
    - Decimal-only arithmetic for amounts and percentages.
"""

from approval_engines.approval import (
    DUAL_CONTROL_APPROVALS,
    QuorumEvaluation,
    RequirementEvaluation,
    compute_deadline,
    evaluate_approval_requirement,
    evaluate_approval_status,
    required_approvals_for,
    select_escalation_target,
)

__all__ = [
    "DUAL_CONTROL_APPROVALS",
    "QuorumEvaluation",
    "RequirementEvaluation",
    "compute_deadline",
    "evaluate_approval_requirement",
    "evaluate_approval_status",
    "required_approvals_for",
    "select_escalation_target",
]
