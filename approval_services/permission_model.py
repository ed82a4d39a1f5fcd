"""
approval_services.permission_model -- Role/permission checks for the CRM.

Responsibility:
    Answer "may this subject do X" questions over the ``module:action``
    permission vocabulary.  Owner subjects bypass every permission check.
    Role levels order authority (lower number = more authority), and a
    static legacy capability map resolves coarse capability names to
    fine-grained permissions.

Architecture position:
    Services layer.  Consumes the injected ``WorkflowConfig`` (role table
    and legacy capability map); holds no module-global mutable state.
    Called by the workflow engine and by presentation code.

Invariants:
    - Pure functions of (subject, argument).  No I/O.
    - A missing subject (``None``) is never authorized.
    - The engine never computes subjects itself; ``subject_for_role`` is a
      convenience for identity providers and tests.
"""

from __future__ import annotations

from typing import Mapping
from uuid import UUID

from approval_config.schema import WorkflowConfig
from approval_kernel.domain.approval import Subject

APPROVALS_VIEW = "approvals:view"
APPROVALS_APPROVE = "approvals:approve"
APPROVALS_REQUEST = "approvals:request"
APPROVALS_MANAGE_POLICIES = "approvals:manage_policies"

# Subjects without a role level have no authority over anyone.
DEFAULT_ROLE_LEVEL = 100


class PermissionModel:
    """Permission and role-level queries backed by an immutable config."""

    def __init__(self, config: WorkflowConfig):
        self._config = config

    @property
    def legacy_capabilities(self) -> Mapping[str, tuple[str, ...]]:
        return self._config.legacy_capabilities

    def check_permission(self, subject: Subject | None, permission: str) -> bool:
        """Owner bypass, otherwise permission membership."""
        if subject is None:
            return False
        if subject.is_owner:
            return True
        return permission in subject.permissions

    def check_all_permissions(self, subject: Subject | None, *permissions: str) -> bool:
        if subject is None:
            return False
        if subject.is_owner:
            return True
        return all(p in subject.permissions for p in permissions)

    def check_any_permission(self, subject: Subject | None, *permissions: str) -> bool:
        if subject is None:
            return False
        if subject.is_owner:
            return True
        return any(p in subject.permissions for p in permissions)

    def can_manage_level(self, subject: Subject | None, target_level: int) -> bool:
        """True when ``subject`` has strictly more authority than ``target_level``."""
        if subject is None:
            return False
        if subject.is_owner:
            return True
        level = subject.role_level if subject.role_level is not None else DEFAULT_ROLE_LEVEL
        return level < target_level

    def can_access(self, subject: Subject | None, capability: str) -> bool:
        """Resolve a legacy capability name through ``check_any_permission``.

        Unknown capability names resolve to False (owners excepted).
        """
        permissions = self._config.legacy_capabilities.get(capability)
        if permissions is None:
            return subject is not None and subject.is_owner
        return self.check_any_permission(subject, *permissions)

    def build_capability_map(self, subject: Subject | None) -> dict[str, bool]:
        """Every legacy capability resolved for ``subject``."""
        return {
            name: self.check_any_permission(subject, *permissions)
            for name, permissions in self._config.legacy_capabilities.items()
        }

    def subject_for_role(self, user_id: UUID, role_name: str) -> Subject:
        """Build a Subject from the configured role table.

        Raises:
            KeyError: if ``role_name`` is not configured.
        """
        role = self._config.role(role_name)
        return Subject(
            user_id=user_id,
            role_level=role.level,
            permissions=role.permissions,
            is_owner=role.is_owner_role,
            role_name=role.name,
        )
