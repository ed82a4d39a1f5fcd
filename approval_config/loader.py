"""
Configuration Loader (``approval_config.loader``).

Responsibility
--------------
Loads the workflow YAML file and parses it into the frozen
``approval_config.schema`` dataclasses.  The single public entry point for
runtime config is ``approval_config.get_active_config()``.

Invariants enforced
-------------------
* Parse errors raise ``ConfigurationError`` naming the offending key; there
  are no silent defaults for required sections.
* Every priority has a positive SLA.
* Permission strings are ``module:action``.
* ``compute_checksum`` produces a deterministic SHA-256 hash for
  configuration identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Structurally invalid content -> ``ConfigurationError``.
"""

from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any
from uuid import UUID

import yaml

from approval_config.schema import (
    AmountBracket,
    ApprovalPolicy,
    DiscountLimit,
    EscalationPolicy,
    WorkflowConfig,
)
from approval_kernel.domain.approval import ApprovalType, Priority, Role
from approval_kernel.exceptions import ApprovalKernelError
from approval_kernel.utils.hashing import hash_payload

_PERMISSION_RE = re.compile(r"^[a-z][a-z0-9_]*:[a-z][a-z0-9_]*$")


class ConfigurationError(ApprovalKernelError):
    """Workflow configuration is structurally invalid."""

    code: str = "CONFIGURATION_ERROR"

    def __init__(self, key: str, reason: str):
        self.key = key
        self.reason = reason
        super().__init__(f"Invalid configuration at '{key}': {reason}")


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def compute_checksum(data: dict[str, Any]) -> str:
    """Deterministic SHA-256 of the raw configuration mapping."""
    return hash_payload(data)


# ---------------------------------------------------------------------------
# Scalar helpers
# ---------------------------------------------------------------------------


def _decimal(value: Any, key: str) -> Decimal:
    try:
        result = Decimal(str(value))
    except InvalidOperation:
        raise ConfigurationError(key, f"expected a number, got {value!r}") from None
    if result < 0:
        raise ConfigurationError(key, "must not be negative")
    return result


def _non_negative_int(value: Any, key: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ConfigurationError(key, f"expected a non-negative integer, got {value!r}")
    return value


def _permissions(values: Any, key: str) -> tuple[str, ...]:
    if not isinstance(values, (list, tuple)):
        raise ConfigurationError(key, "expected a list of permission strings")
    for perm in values:
        if not isinstance(perm, str) or not _PERMISSION_RE.match(perm):
            raise ConfigurationError(key, f"'{perm}' is not a module:action permission")
    return tuple(values)


# ---------------------------------------------------------------------------
# Section parsers
# ---------------------------------------------------------------------------


def parse_sla_hours(data: dict[str, Any]) -> dict[Priority, int]:
    """Parse ``sla_hours``; every priority must be present and positive."""
    result: dict[Priority, int] = {}
    for priority in Priority:
        key = f"sla_hours.{priority.value}"
        if priority.value not in data:
            raise ConfigurationError(key, "missing SLA for priority")
        hours = _non_negative_int(data[priority.value], key)
        if hours == 0:
            raise ConfigurationError(key, "SLA must be positive")
        result[priority] = hours
    unknown = set(data) - {p.value for p in Priority}
    if unknown:
        raise ConfigurationError("sla_hours", f"unknown priorities {sorted(unknown)}")
    return result


def parse_escalation(
    data: dict[str, Any],
    defaults: EscalationPolicy | None = None,
    key: str = "escalation",
) -> EscalationPolicy:
    """Parse an escalation block, falling back to ``defaults`` per field."""
    base = defaults or EscalationPolicy()
    return EscalationPolicy(
        enabled=bool(data.get("enabled", base.enabled)),
        grace_hours=_non_negative_int(data.get("grace_hours", base.grace_hours), f"{key}.grace_hours"),
        max_levels=_non_negative_int(data.get("max_levels", base.max_levels), f"{key}.max_levels"),
        raise_priority=bool(data.get("raise_priority", base.raise_priority)),
        expire_after_hours=_non_negative_int(
            data.get("expire_after_hours", base.expire_after_hours),
            f"{key}.expire_after_hours",
        ),
    )


def parse_policy(
    type_name: str,
    data: dict[str, Any],
    default_escalation: EscalationPolicy,
) -> ApprovalPolicy:
    """Parse one entry of the ``policies`` mapping."""
    key = f"policies.{type_name}"
    try:
        approval_type = ApprovalType(type_name)
    except ValueError:
        raise ConfigurationError(key, "unknown approval type") from None

    required = _non_negative_int(data.get("required_approvals", 1), f"{key}.required_approvals")
    if required < 1:
        raise ConfigurationError(f"{key}.required_approvals", "must be at least 1")

    threshold = data.get("dual_control_threshold")
    override_pct = data.get("price_override_threshold_percent")

    return ApprovalPolicy(
        approval_type=approval_type,
        display_name=data.get("display_name", type_name.replace("_", " ").title()),
        enabled=bool(data.get("enabled", True)),
        required_approvals=required,
        dual_control_threshold=(
            _decimal(threshold, f"{key}.dual_control_threshold") if threshold is not None else None
        ),
        escalation=parse_escalation(
            data.get("escalation") or {}, default_escalation, f"{key}.escalation",
        ),
        discount_limits=tuple(
            DiscountLimit(
                role_level=_non_negative_int(item["role_level"], f"{key}.discount_limits.role_level"),
                max_discount_percentage=_decimal(
                    item["max_discount_percentage"], f"{key}.discount_limits.max_discount_percentage",
                ),
            )
            for item in data.get("discount_limits", ())
        ),
        price_override_threshold_percent=(
            _decimal(override_pct, f"{key}.price_override_threshold_percent")
            if override_pct is not None else None
        ),
        amount_brackets=tuple(
            AmountBracket(
                min_amount=_decimal(item.get("min_amount", 0), f"{key}.amount_brackets.min_amount"),
                max_amount=(
                    _decimal(item["max_amount"], f"{key}.amount_brackets.max_amount")
                    if item.get("max_amount") is not None else None
                ),
                approver_role=str(item["approver_role"]),
            )
            for item in data.get("amount_brackets", ())
        ),
    )


def parse_role(data: dict[str, Any]) -> Role:
    """Parse one entry of the ``roles`` list."""
    name = data.get("name")
    if not name:
        raise ConfigurationError("roles", "role without a name")
    level = data.get("level")
    if isinstance(level, bool) or not isinstance(level, int):
        raise ConfigurationError(f"roles.{name}.level", "expected an integer")
    return Role(
        name=name,
        level=level,
        permissions=frozenset(_permissions(data.get("permissions", []), f"roles.{name}.permissions")),
        is_owner_role=bool(data.get("is_owner", False)),
    )


def parse_workflow_config(data: dict[str, Any]) -> WorkflowConfig:
    """Parse a full configuration mapping into a ``WorkflowConfig``."""
    for section in ("sla_hours", "roles"):
        if section not in data:
            raise ConfigurationError(section, "required section missing")

    escalation = parse_escalation(data.get("escalation") or {})

    roles = tuple(parse_role(r) for r in data["roles"])
    names = [r.name for r in roles]
    duplicates = {n for n in names if names.count(n) > 1}
    if duplicates:
        raise ConfigurationError("roles", f"duplicate role names {sorted(duplicates)}")

    policies = {
        policy.approval_type: policy
        for policy in (
            parse_policy(type_name, body or {}, escalation)
            for type_name, body in (data.get("policies") or {}).items()
        )
    }
    for policy in policies.values():
        for bracket in policy.amount_brackets:
            if bracket.approver_role not in names:
                raise ConfigurationError(
                    f"policies.{policy.approval_type.value}.amount_brackets",
                    f"unknown role '{bracket.approver_role}'",
                )

    legacy = {
        name: _permissions(perms, f"legacy_capabilities.{name}")
        for name, perms in (data.get("legacy_capabilities") or {}).items()
    }

    lock_timeout = data.get("lock_timeout_seconds", 5)
    if isinstance(lock_timeout, bool) or not isinstance(lock_timeout, (int, float)) or lock_timeout <= 0:
        raise ConfigurationError("lock_timeout_seconds", "must be a positive number")

    scheduler = data.get("scheduler") or {}
    interval = _non_negative_int(scheduler.get("interval_seconds", 300), "scheduler.interval_seconds")
    if interval == 0:
        raise ConfigurationError("scheduler.interval_seconds", "must be positive")

    try:
        system_actor_id = UUID(str(data.get("system_actor_id", UUID(int=0))))
    except ValueError:
        raise ConfigurationError("system_actor_id", "not a UUID") from None

    return WorkflowConfig(
        version=str(data.get("version", "1")),
        sla_hours=parse_sla_hours(data["sla_hours"]),
        escalation=escalation,
        policies=policies,
        roles=roles,
        legacy_capabilities=legacy,
        lock_timeout_seconds=float(lock_timeout),
        scan_interval_seconds=interval,
        system_actor_id=system_actor_id,
        checksum=compute_checksum(data),
    )


def load_workflow_config(path: Path) -> WorkflowConfig:
    """Load and parse a YAML configuration file."""
    return parse_workflow_config(load_yaml_file(path))
