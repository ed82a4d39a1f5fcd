"""
Pytest fixtures for the approval workflow test suite.

Provides:
- A fresh file-backed SQLite database per test (FOR UPDATE is a no-op
  there; per-request serialization comes from the engine's lock registry
  and the version column)
- A deterministic clock, the bundled workflow config and a permission model
- Subjects for every configured role
- A workflow engine wired to a recording notification sink
"""

import json
import logging
import threading
from decimal import Decimal
from io import StringIO
from uuid import UUID, uuid4

import pytest

from approval_config import get_active_config
from approval_kernel.db.engine import (
    create_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from approval_kernel.domain.approval import (
    ApprovalEvent,
    ApprovalType,
    EntityRef,
    Priority,
)
from approval_kernel.domain.clock import DeterministicClock
from approval_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from approval_services.approval_workflow import ApprovalWorkflowEngine
from approval_services.directory import StaticApproverDirectory
from approval_services.notifications import NotificationDispatcher
from approval_services.permission_model import PermissionModel


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture approval_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, engine):
            engine.create_request(...)
            logs = captured_logs()
            assert any(r["message"] == "approval_request_created" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("approval_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow_locks: mark test as potentially waiting for request locks"
    )
    config.addinivalue_line(
        "markers", "integration: end-to-end workflow scenarios"
    )


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
def session_factory(tmp_path):
    """Session factory bound to a fresh SQLite database."""
    init_engine_from_url(f"sqlite:///{tmp_path / 'approvals.db'}")
    create_tables()
    yield get_session_factory()
    reset_engine()


@pytest.fixture
def session(session_factory):
    s = session_factory()
    yield s
    s.close()


# =============================================================================
# Config, clock, permissions, subjects
# =============================================================================


@pytest.fixture(scope="session")
def workflow_config():
    """The bundled default workflow configuration."""
    return get_active_config()


@pytest.fixture
def deterministic_clock():
    """Provide a deterministic clock for testing."""
    return DeterministicClock()


@pytest.fixture
def permission_model(workflow_config):
    return PermissionModel(workflow_config)


@pytest.fixture
def make_subject(permission_model):
    """Factory: ``make_subject("sales-manager")`` -> Subject with a fresh id."""

    def _make(role_name: str, user_id: UUID | None = None):
        return permission_model.subject_for_role(user_id or uuid4(), role_name)

    return _make


@pytest.fixture
def requester(make_subject):
    return make_subject("sales-executive")


@pytest.fixture
def manager(make_subject):
    return make_subject("sales-manager")


@pytest.fixture
def second_manager(make_subject):
    return make_subject("sales-manager")


@pytest.fixture
def business_head(make_subject):
    return make_subject("business-head")


@pytest.fixture
def owner(make_subject):
    return make_subject("owner")


@pytest.fixture
def directory(business_head, owner):
    """Escalation candidates: one business head and one owner."""
    return StaticApproverDirectory([business_head, owner])


# =============================================================================
# Notifications
# =============================================================================


class RecordingSink:
    """Collects delivered events (thread-safe)."""

    def __init__(self):
        self._lock = threading.Lock()
        self.events: list[ApprovalEvent] = []

    def deliver(self, event: ApprovalEvent) -> None:
        with self._lock:
            self.events.append(event)

    def kinds(self) -> list[str]:
        with self._lock:
            return [e.kind.value for e in self.events]


@pytest.fixture
def recording_sink():
    return RecordingSink()


@pytest.fixture
def notifier(recording_sink):
    dispatcher = NotificationDispatcher([recording_sink], max_workers=2)
    yield dispatcher
    dispatcher.shutdown()


# =============================================================================
# Engine
# =============================================================================


@pytest.fixture
def engine(session_factory, workflow_config, permission_model, deterministic_clock,
           directory, notifier):
    return ApprovalWorkflowEngine(
        session_factory=session_factory,
        config=workflow_config,
        permissions=permission_model,
        clock=deterministic_clock,
        directory=directory,
        notifier=notifier,
    )


def discount_payload(
    original: str = "1000000",
    percentage: str = "3",
    amount: str = "30000",
    sale: str = "970000",
) -> dict:
    return {
        "originalPrice": original,
        "discountPercentage": percentage,
        "discountAmount": amount,
        "salePrice": sale,
    }


@pytest.fixture
def entity():
    return EntityRef(entity_type="Sale", entity_id=uuid4(), project_id=uuid4())


@pytest.fixture
def create_discount_request(engine, requester, manager, entity):
    """Factory for a pending DISCOUNT_APPROVAL request.

    Defaults: requester is a sales executive, the only approver is a sales
    manager, priority Medium, quorum from policy (1 below the dual-control
    threshold).
    """

    def _create(
        approvers=None,
        priority=Priority.MEDIUM,
        payload=None,
        requested_by=None,
        **kwargs,
    ):
        return engine.create_request(
            ApprovalType.DISCOUNT_APPROVAL,
            payload or discount_payload(),
            (requested_by or requester).user_id,
            entity,
            priority,
            approvers if approvers is not None else [manager],
            **kwargs,
        )

    return _create


@pytest.fixture
def large_discount():
    """A discount above the dual-control threshold."""
    return discount_payload(
        original="10000000", percentage="6", amount="600000", sale="9400000",
    )


__all__ = ["Decimal", "RecordingSink", "discount_payload"]
