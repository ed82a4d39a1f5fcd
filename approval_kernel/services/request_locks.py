"""
RequestLockRegistry -- per-request mutual exclusion within one process.

Responsibility:
    Serializes workflow mutations on the same approval request.  User
    operations (approve/reject/cancel) and the escalation scheduler contend
    on the same lock, so at most one mutation per request is in flight in
    this process at a time.

Architecture position:
    Kernel > Services.  Used only by ApprovalWorkflowEngine.  Cross-process
    safety comes from the row lock and the version column; this registry
    just keeps in-process contenders from racing into the database.

Invariants enforced:
    - Bounded wait: acquisition gives up after ``timeout`` seconds.
    - Entries are reference counted and removed when the last holder or
      waiter leaves, so the registry does not grow with the request table.

Failure modes:
    - ApprovalLockTimeoutError when the lock is not acquired in time.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager
from uuid import UUID

from approval_kernel.exceptions import ApprovalLockTimeoutError
from approval_kernel.logging_config import get_logger

logger = get_logger("services.request_locks")


class _Entry:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.users = 0


class RequestLockRegistry:
    """Keyed locks, one per approval request id."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._entries: dict[UUID, _Entry] = {}

    @contextmanager
    def hold(self, request_id: UUID, timeout: float) -> Iterator[None]:
        """Hold the request's lock for the duration of the block."""
        with self._guard:
            entry = self._entries.setdefault(request_id, _Entry())
            entry.users += 1
        try:
            if not entry.lock.acquire(timeout=timeout):
                logger.warning(
                    "request_lock_timeout",
                    extra={"request_id": str(request_id), "timeout_seconds": timeout},
                )
                raise ApprovalLockTimeoutError(str(request_id), timeout)
            try:
                yield
            finally:
                entry.lock.release()
        finally:
            with self._guard:
                entry.users -= 1
                if entry.users == 0:
                    del self._entries[request_id]

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)
