"""
Configuration Schema (``approval_config.schema``).

Responsibility
--------------
Frozen dataclasses for the workflow configuration: SLA hours per priority,
escalation policy, per-type approval policies, the role table and the
legacy capability map.  A ``WorkflowConfig`` is built once at startup and
injected into the permission model, the engine and the scheduler; nothing
reads role or policy tables from module globals.

Architecture position
---------------------
**Config layer** -- pure data.  May import kernel domain types.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal
from types import MappingProxyType
from typing import Mapping
from uuid import UUID

from approval_kernel.domain.approval import ApprovalType, Priority, Role


@dataclass(frozen=True)
class EscalationPolicy:
    """How overdue requests are escalated and, eventually, expired.

    ``grace_hours`` extends the deadline after each escalation.  Once
    ``max_levels`` escalations have happened (or no higher-authority
    approver is left), the request expires when it is more than
    ``expire_after_hours`` past its deadline.
    """

    enabled: bool = True
    grace_hours: int = 4
    max_levels: int = 3
    raise_priority: bool = True
    expire_after_hours: int = 24


@dataclass(frozen=True)
class DiscountLimit:
    """Largest discount a role level may grant without approval."""

    role_level: int
    max_discount_percentage: Decimal


@dataclass(frozen=True)
class AmountBracket:
    """Refund amount bracket mapped to the approving role."""

    min_amount: Decimal
    max_amount: Decimal | None
    approver_role: str

    def contains(self, amount: Decimal) -> bool:
        if amount < self.min_amount:
            return False
        return self.max_amount is None or amount < self.max_amount


@dataclass(frozen=True)
class ApprovalPolicy:
    """Per-approval-type policy."""

    approval_type: ApprovalType
    display_name: str = ""
    enabled: bool = True
    required_approvals: int = 1
    dual_control_threshold: Decimal | None = None
    escalation: EscalationPolicy = field(default_factory=EscalationPolicy)
    discount_limits: tuple[DiscountLimit, ...] = ()
    price_override_threshold_percent: Decimal | None = None
    amount_brackets: tuple[AmountBracket, ...] = ()


@dataclass(frozen=True)
class WorkflowConfig:
    """The immutable, injected configuration object."""

    version: str
    sla_hours: Mapping[Priority, int]
    escalation: EscalationPolicy
    policies: Mapping[ApprovalType, ApprovalPolicy]
    roles: tuple[Role, ...]
    legacy_capabilities: Mapping[str, tuple[str, ...]]
    lock_timeout_seconds: float = 5.0
    scan_interval_seconds: int = 300
    system_actor_id: UUID = UUID(int=0)
    checksum: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "sla_hours", MappingProxyType(dict(self.sla_hours)))
        object.__setattr__(self, "policies", MappingProxyType(dict(self.policies)))
        object.__setattr__(
            self, "legacy_capabilities", MappingProxyType(dict(self.legacy_capabilities)),
        )

    def sla_for(self, priority: Priority) -> timedelta:
        return timedelta(hours=self.sla_hours[priority])

    def policy_for(self, approval_type: ApprovalType) -> ApprovalPolicy:
        """Configured policy, or a default one inheriting global escalation."""
        policy = self.policies.get(approval_type)
        if policy is None:
            return ApprovalPolicy(
                approval_type=approval_type,
                display_name=approval_type.value.replace("_", " ").title(),
                escalation=self.escalation,
            )
        return policy

    def role(self, name: str) -> Role:
        for role in self.roles:
            if role.name == name:
                return role
        raise KeyError(f"Unknown role '{name}'")
