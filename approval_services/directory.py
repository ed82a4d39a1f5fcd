"""
approval_services.directory -- In-memory approver directory.

Supplies escalation candidates to the workflow engine.  Deployments with a
user service plug in their own ``ApproverDirectory``; this one serves
wiring, the CLI and tests.
"""

from __future__ import annotations

import threading
from typing import Iterable, Mapping
from uuid import UUID

from approval_kernel.domain.approval import Subject
from approval_services.permission_model import PermissionModel


class StaticApproverDirectory:
    """A fixed, thread-safe set of subjects."""

    def __init__(self, subjects: Iterable[Subject] = ()):
        self._lock = threading.Lock()
        self._subjects: dict[UUID, Subject] = {s.user_id: s for s in subjects}

    @classmethod
    def from_roles(
        cls,
        permissions: PermissionModel,
        assignments: Mapping[UUID, str],
    ) -> StaticApproverDirectory:
        """Build from ``{user_id: role_name}`` using the configured roles."""
        return cls(
            permissions.subject_for_role(user_id, role_name)
            for user_id, role_name in assignments.items()
        )

    def add(self, subject: Subject) -> None:
        with self._lock:
            self._subjects[subject.user_id] = subject

    def remove(self, user_id: UUID) -> None:
        with self._lock:
            self._subjects.pop(user_id, None)

    def escalation_candidates(self) -> tuple[Subject, ...]:
        with self._lock:
            return tuple(self._subjects.values())
