"""
EscalationScheduler -- In-process polling scheduler for SLA escalation.

Contract:
    Polls on a configurable interval for pending approval requests whose
    deadline has passed and calls ``ApprovalWorkflowEngine.escalate`` for
    each.  The engine decides whether to escalate, expire or skip.

Architecture: approval_batch/services.  Reads overdue ids through
    ``ApprovalSelector`` and mutates only through the workflow engine, which
    owns locking and transactions.

Invariants enforced:
    - All timestamps from the injected Clock.
    - Per-request isolation: errors are logged with the request id and
      counted; the scan continues.
    - Idempotency: a rerun inside the same overdue window is a no-op,
      because the engine records the breached deadline per escalation.
    - Graceful shutdown: the stop signal is checked between requests.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Callable
from uuid import UUID

from sqlalchemy.orm import Session

from approval_kernel.domain.approval import EscalationOutcome
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.exceptions import ApprovalConflictError, InvalidApprovalStateError
from approval_kernel.logging_config import get_logger
from approval_kernel.selectors.approval_selector import ApprovalSelector
from approval_services.approval_workflow import ApprovalWorkflowEngine

logger = get_logger("batch.escalation_scheduler")


@dataclass(frozen=True)
class ScanResult:
    """Counts from one ``tick``."""

    scanned: int = 0
    escalated: tuple[UUID, ...] = ()
    expired: tuple[UUID, ...] = ()
    skipped: tuple[UUID, ...] = ()
    failed: tuple[UUID, ...] = ()

    @property
    def changed(self) -> int:
        return len(self.escalated) + len(self.expired)


class EscalationScheduler:
    """Polling escalation scanner.

    Contract:
        - ``tick()`` scans once and returns a ``ScanResult``.
        - ``start()`` / ``stop()`` for background thread operation.

    Non-goals:
        - NOT a distributed scheduler (no leader election).  Running two
          schedulers against one database is safe but wasteful.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        engine: ApprovalWorkflowEngine,
        clock: Clock | None = None,
        interval_seconds: int | None = None,
        batch_size: int | None = None,
    ):
        self._session_factory = session_factory
        self._engine = engine
        self._clock = clock if clock is not None else SystemClock()
        self._interval = (
            interval_seconds
            if interval_seconds is not None
            else engine.config.scan_interval_seconds
        )
        self._batch_size = batch_size
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def tick(self) -> ScanResult:
        """Scan overdue requests once (public for testing and the CLI)."""
        now = self._clock.now()
        session = self._session_factory()
        try:
            request_ids = ApprovalSelector(session).overdue_ids(now, limit=self._batch_size)
        finally:
            session.close()

        escalated: list[UUID] = []
        expired: list[UUID] = []
        skipped: list[UUID] = []
        failed: list[UUID] = []

        for request_id in request_ids:
            if self._stop_event.is_set():
                break
            try:
                outcome = self._engine.escalate(request_id)
            except (InvalidApprovalStateError, ApprovalConflictError) as exc:
                # Resolved or locked by a user since the scan query ran.
                logger.info(
                    "escalation_skipped_contended",
                    extra={"request_id": str(request_id), "reason": exc.code},
                )
                skipped.append(request_id)
                continue
            except Exception:
                logger.exception(
                    "escalation_failed",
                    extra={"request_id": str(request_id)},
                )
                failed.append(request_id)
                continue

            if outcome == EscalationOutcome.ESCALATED:
                escalated.append(request_id)
            elif outcome == EscalationOutcome.EXPIRED:
                expired.append(request_id)
            else:
                skipped.append(request_id)

        result = ScanResult(
            scanned=len(request_ids),
            escalated=tuple(escalated),
            expired=tuple(expired),
            skipped=tuple(skipped),
            failed=tuple(failed),
        )
        logger.info(
            "escalation_scan_completed",
            extra={
                "scanned": result.scanned,
                "escalated": len(result.escalated),
                "expired": len(result.expired),
                "skipped": len(result.skipped),
                "failed": len(result.failed),
            },
        )
        return result

    def start(self) -> None:
        """Start the scheduler in a background thread."""
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="approval-escalation-scheduler",
            daemon=True,
        )
        self._thread.start()
        logger.info("scheduler_started", extra={"tick_interval": self._interval})

    def stop(self, timeout: float = 30.0) -> None:
        """Signal stop and wait for the current scan to finish.

        Args:
            timeout: Max seconds to wait for the thread to finish.
        """
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("scheduler_stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _run_loop(self) -> None:
        """Background polling loop. Exits when stop_event is set."""
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception:
                logger.exception("scheduler_tick_exception")
            self._stop_event.wait(timeout=self._interval)
