"""
Composition root and escalation-scan script.

Verifies:
- build_approval_system needs a database URL or a session factory
- A wired system shares one config, clock and notifier with its engine
- scripts/escalation_scan.py scans, escalates via a YAML directory and
  reports a summary
"""

import importlib.util
from pathlib import Path
from uuid import uuid4

import pytest
import yaml

from approval_kernel.db.engine import reset_engine
from approval_kernel.domain.approval import (
    ApprovalType,
    EntityRef,
    Priority,
)
from approval_kernel.domain.clock import DeterministicClock
from approval_services.wiring import build_approval_system
from tests.conftest import RecordingSink, discount_payload

pytestmark = pytest.mark.integration

SCRIPT = Path(__file__).resolve().parents[2] / "scripts" / "escalation_scan.py"


def load_script():
    spec = importlib.util.spec_from_file_location("escalation_scan", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


@pytest.fixture
def db_url(tmp_path):
    yield f"sqlite:///{tmp_path / 'scan.db'}"
    reset_engine()


class TestWiring:

    def test_requires_database(self):
        with pytest.raises(ValueError, match="database_url or session_factory"):
            build_approval_system()

    def test_wires_from_session_factory(self, session_factory, deterministic_clock, captured_logs):
        sink = RecordingSink()
        system = build_approval_system(
            session_factory=session_factory, clock=deterministic_clock, sinks=[sink],
        )
        try:
            requester = system.permissions.subject_for_role(uuid4(), "sales-executive")
            manager = system.permissions.subject_for_role(uuid4(), "sales-manager")

            request = system.engine.create_request(
                ApprovalType.DISCOUNT_APPROVAL,
                discount_payload(),
                requester.user_id,
                EntityRef(entity_type="Sale", entity_id=uuid4()),
                Priority.HIGH,
                [manager],
            )

            assert system.engine.config is system.config
            assert request.created_at == deterministic_clock.now()
            assert system.notifier.flush(timeout=5)
            assert sink.kinds() == ["created"]
        finally:
            system.close()

        wired = [r for r in captured_logs() if r["message"] == "approval_system_wired"]
        assert wired[0]["checksum"] == system.config.checksum


class TestEscalationScanScript:

    def test_empty_database(self, db_url, capsys):
        exit_code = load_script().main(["--db-url", db_url, "--create-schema"])

        assert exit_code == 0
        assert "Scanned:   0" in capsys.readouterr().out

    def test_escalates_with_directory(self, db_url, tmp_path, capsys):
        seed = build_approval_system(
            db_url, create_schema=True, clock=DeterministicClock(), sinks=[],
        )
        try:
            requester = seed.permissions.subject_for_role(uuid4(), "sales-executive")
            manager = seed.permissions.subject_for_role(uuid4(), "sales-manager")
            request = seed.engine.create_request(
                ApprovalType.DISCOUNT_APPROVAL,
                discount_payload(),
                requester.user_id,
                EntityRef(entity_type="Sale", entity_id=uuid4()),
                Priority.CRITICAL,
                [manager],
            )
        finally:
            seed.close()

        head_id = uuid4()
        directory_file = tmp_path / "directory.yaml"
        directory_file.write_text(yaml.safe_dump({str(head_id): "business-head"}))

        exit_code = load_script().main([
            "--db-url", db_url, "--directory", str(directory_file),
        ])

        out = capsys.readouterr().out
        assert exit_code == 0
        assert "Scanned:   1" in out
        assert "Escalated: 1" in out

        system = build_approval_system(db_url, sinks=[])
        try:
            escalated = system.engine.get_request(request.request_id)
        finally:
            system.close()
        assert escalated.escalation_history[0].escalated_to == head_id
