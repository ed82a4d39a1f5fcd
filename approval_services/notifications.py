"""
approval_services.notifications -- Best-effort workflow event delivery.

Responsibility:
    Fans ``ApprovalEvent`` records out to notification sinks on a small
    worker pool.  The workflow engine calls ``deliver`` after its
    transaction commits; delivery never blocks or fails the caller.

Architecture position:
    Services layer.  Implements the kernel's ``NotificationSink`` protocol
    so the engine sees a single sink.

Invariants:
    - Fire-and-forget: ``deliver`` only submits work.
    - A failing sink is logged and never affects other sinks or the
      workflow transition that produced the event.
"""

from __future__ import annotations

import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Iterable

from approval_kernel.domain.approval import ApprovalEvent, NotificationSink
from approval_kernel.logging_config import get_logger

logger = get_logger("services.notifications")


class NotificationDispatcher:
    """Delivers each event to every registered sink on a thread pool."""

    def __init__(self, sinks: Iterable[NotificationSink] = (), max_workers: int = 4):
        self._sinks: list[NotificationSink] = list(sinks)
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="approval-notify",
        )
        self._lock = threading.Lock()
        self._pending: set[Future] = set()

    def add_sink(self, sink: NotificationSink) -> None:
        with self._lock:
            self._sinks.append(sink)

    def deliver(self, event: ApprovalEvent) -> None:
        with self._lock:
            sinks = list(self._sinks)
        for sink in sinks:
            future = self._executor.submit(self._deliver_one, sink, event)
            with self._lock:
                self._pending.add(future)
            future.add_done_callback(self._forget)

    def flush(self, timeout: float | None = None) -> bool:
        """Wait for submitted deliveries; True if all finished in time."""
        with self._lock:
            pending = set(self._pending)
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    def shutdown(self, wait_for_pending: bool = True) -> None:
        self._executor.shutdown(wait=wait_for_pending)

    def _forget(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)

    @staticmethod
    def _deliver_one(sink: NotificationSink, event: ApprovalEvent) -> None:
        try:
            sink.deliver(event)
        except Exception:
            logger.exception(
                "notification_delivery_failed",
                extra={
                    "request_id": str(event.request_id),
                    "event_kind": event.kind.value,
                    "sink": type(sink).__name__,
                },
            )


class LoggingNotificationSink:
    """Writes each event to the structured log."""

    def deliver(self, event: ApprovalEvent) -> None:
        logger.info(
            "approval_event",
            extra={
                "event_kind": event.kind.value,
                "request_id": str(event.request_id),
                "request_number": event.request_number,
                "approval_type": event.approval_type.value,
                "status": event.status.value,
                "priority": event.priority.value,
                "recipients": [str(r) for r in event.recipients],
                "details": event.details,
            },
        )
