"""
approval_engines.approval -- Pure approval evaluation engine.

Responsibility:
    Evaluate quorum and veto over recorded approver actions, derive the
    required approval count from policy and payload, compute SLA deadlines,
    pick the next escalation target, and decide whether a proposed domain
    action needs approval at all.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import approval_kernel/domain/ types.  Policy objects from
    ``approval_config`` are accepted duck-typed.

Invariants enforced:
    - Single-reject veto: any rejected action makes the outcome REJECTED,
      regardless of how many approvals exist.
    - Quorum: APPROVED only when approved count >= required approvals.
    - Deterministic escalation: candidates are ordered by role level
      (closest above the engaged set first), then by user id.
    - Purity: no clock access, no I/O, no database.

Failure modes:
    - ValueError from ``compute_deadline`` on non-positive SLA hours.
    - ValueError from ``required_approvals_for`` on an override below 1.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING, Callable, Iterable

from approval_kernel.domain.approval import (
    ApprovalStatus,
    ApprovalType,
    ApproverAction,
    ApproverActionState,
    Subject,
)
from approval_kernel.domain.request_data import (
    DiscountApprovalData,
    PriceOverrideData,
    RefundApprovalData,
    RequestData,
)

if TYPE_CHECKING:
    from approval_config.schema import ApprovalPolicy

DUAL_CONTROL_APPROVALS = 2


@dataclass(frozen=True)
class QuorumEvaluation:
    """Outcome of evaluating approver actions against the quorum."""

    status: ApprovalStatus
    approved_count: int
    required_approvals: int
    reason: str

    @property
    def is_resolved(self) -> bool:
        return self.status != ApprovalStatus.PENDING


@dataclass(frozen=True)
class RequirementEvaluation:
    """Whether a proposed domain action needs an approval request."""

    needs_approval: bool
    reason: str
    limit: Decimal | None = None
    approver_role: str | None = None


def evaluate_approval_status(
    actions: Iterable[ApproverAction],
    required_approvals: int,
) -> QuorumEvaluation:
    """Given current approver actions, determine the request outcome.

    A single rejection vetoes the request; otherwise the request is
    approved once ``required_approvals`` approvals are recorded.
    """
    actions = tuple(actions)

    # Check for any rejection first -- a single rejection blocks
    for a in actions:
        if a.action == ApproverActionState.REJECTED:
            return QuorumEvaluation(
                status=ApprovalStatus.REJECTED,
                approved_count=0,
                required_approvals=required_approvals,
                reason=f"Rejected by {a.approver_id}",
            )

    approved = sum(1 for a in actions if a.action == ApproverActionState.APPROVED)
    if approved >= required_approvals:
        return QuorumEvaluation(
            status=ApprovalStatus.APPROVED,
            approved_count=approved,
            required_approvals=required_approvals,
            reason="Approved",
        )
    return QuorumEvaluation(
        status=ApprovalStatus.PENDING,
        approved_count=approved,
        required_approvals=required_approvals,
        reason=f"{approved}/{required_approvals} approvals",
    )


def required_approvals_for(
    policy: ApprovalPolicy,
    request_data: RequestData,
    override: int | None = None,
) -> int:
    """Quorum for a new request.

    Starts from the policy count, rises to dual control when the payload's
    financial amount reaches the policy threshold, and can only be raised
    further by ``override``.
    """
    if override is not None and override < 1:
        raise ValueError(f"required_approvals must be >= 1, got {override}")

    required = policy.required_approvals
    amount = request_data.financial_amount
    if (
        policy.dual_control_threshold is not None
        and amount is not None
        and amount >= policy.dual_control_threshold
    ):
        required = max(required, DUAL_CONTROL_APPROVALS)
    if override is not None:
        required = max(required, override)
    return required


def compute_deadline(start: datetime, sla_hours: int) -> datetime:
    """SLA deadline for a request created (or escalated) at ``start``."""
    if sla_hours <= 0:
        raise ValueError(f"SLA hours must be positive, got {sla_hours}")
    return start + timedelta(hours=sla_hours)


def select_escalation_target(
    candidates: Iterable[Subject],
    actions: Iterable[ApproverAction],
    is_eligible: Callable[[Subject, int], bool],
) -> Subject | None:
    """Pick the next approver above the engaged set.

    Args:
        candidates: Subjects the directory offers for escalation.
        actions: Approver actions already on the request.
        is_eligible: ``(candidate, min_engaged_level) -> bool``; the caller
            supplies the permission and level checks.

    Returns:
        The eligible, not-yet-engaged candidate with the highest numeric
        role level (the closest authority above the engaged approvers),
        ties broken by user id; or None when no one is left.
    """
    actions = tuple(actions)
    engaged = {a.approver_id for a in actions}
    min_level = min((a.approver_level for a in actions), default=None)
    if min_level is None:
        return None

    eligible = [
        c for c in candidates
        if c.user_id not in engaged and is_eligible(c, min_level)
    ]
    if not eligible:
        return None
    eligible.sort(key=lambda c: (-c.role_level, str(c.user_id)))
    return eligible[0]


def evaluate_approval_requirement(
    policy: ApprovalPolicy,
    request_data: RequestData,
    subject: Subject,
) -> RequirementEvaluation:
    """Decide whether ``subject`` needs approval to perform the action.

    Rules by approval type:
        - Disabled policy: never needs approval.
        - Owners: never need approval.
        - DISCOUNT_APPROVAL: needed when the discount percentage exceeds the
          limit configured for the subject's role level.  The applicable
          limit is the entry with the smallest level at or below the
          subject's authority; a subject below every listed level has a
          limit of zero.
        - PRICE_OVERRIDE: needed when the absolute deviation exceeds the
          policy's threshold percent (always needed when unset).
        - REFUND_APPROVAL: always needed; the matching amount bracket names
          the approving role.
        - Everything else: always needed.
    """
    if not policy.enabled:
        return RequirementEvaluation(needs_approval=False, reason="Policy disabled")
    if subject.is_owner:
        return RequirementEvaluation(needs_approval=False, reason="Owner")

    if isinstance(request_data, DiscountApprovalData):
        limit = _discount_limit(policy, subject.role_level)
        if request_data.discount_percentage > limit:
            return RequirementEvaluation(
                needs_approval=True,
                reason=f"Discount {request_data.discount_percentage}% exceeds limit {limit}%",
                limit=limit,
            )
        return RequirementEvaluation(
            needs_approval=False,
            reason=f"Discount {request_data.discount_percentage}% within limit {limit}%",
            limit=limit,
        )

    if isinstance(request_data, PriceOverrideData):
        threshold = policy.price_override_threshold_percent
        deviation = abs(request_data.deviation_percentage)
        if threshold is not None and deviation <= threshold:
            return RequirementEvaluation(
                needs_approval=False,
                reason=f"Deviation {deviation}% within threshold {threshold}%",
                limit=threshold,
            )
        return RequirementEvaluation(
            needs_approval=True,
            reason=f"Deviation {deviation}% exceeds threshold {threshold}%",
            limit=threshold,
        )

    if isinstance(request_data, RefundApprovalData):
        for bracket in policy.amount_brackets:
            if bracket.contains(request_data.refund_amount):
                return RequirementEvaluation(
                    needs_approval=True,
                    reason=f"Refund {request_data.refund_amount} approved by {bracket.approver_role}",
                    approver_role=bracket.approver_role,
                )

    return RequirementEvaluation(
        needs_approval=True,
        reason=f"{_display(policy.approval_type)} always requires approval",
    )


def _discount_limit(policy: ApprovalPolicy, role_level: int) -> Decimal:
    applicable = [
        lim for lim in policy.discount_limits if lim.role_level >= role_level
    ]
    if not applicable:
        return Decimal("0")
    return min(applicable, key=lambda lim: lim.role_level).max_discount_percentage


def _display(approval_type: ApprovalType) -> str:
    return approval_type.value.replace("_", " ").title()
