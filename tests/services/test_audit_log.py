"""
Tests for AuditLog -- append-only, hash-chained audit trail.

Covers:
- entries(): ordered read-only view; unknown request -> ApprovalNotFoundError
- verify_chain(): detects tampered content, reordered or missing entries
- compute_entry_hash(): deterministic, sensitive to every field
- ORM immutability: audit rows, decided approver actions and escalation
  records cannot be updated or deleted
"""

from datetime import datetime, timezone
from uuid import uuid4

import pytest
from sqlalchemy import select, text

from approval_kernel.domain.approval import AuditAction
from approval_kernel.exceptions import ApprovalNotFoundError, ImmutabilityViolationError
from approval_kernel.models.approval import ApproverActionModel
from approval_kernel.models.audit_trail import AuditTrailEntryModel
from approval_kernel.services.audit_log import AuditLog, compute_entry_hash


@pytest.fixture
def resolved_request(engine, create_discount_request, manager):
    request = create_discount_request()
    return engine.approve(request.request_id, manager, comment="ok")


class TestEntries:

    def test_entries_in_sequence(self, session, resolved_request):
        entries = AuditLog().entries(session, resolved_request.request_id)

        assert [e.sequence for e in entries] == [1, 2]
        assert [e.action for e in entries] == [AuditAction.CREATED, AuditAction.APPROVED]
        assert entries[1].prev_hash == entries[0].hash
        assert entries == resolved_request.audit_trail

    def test_unknown_request(self, session):
        with pytest.raises(ApprovalNotFoundError):
            AuditLog().entries(session, uuid4())


class TestVerifyChain:

    def test_intact_chain(self, session, resolved_request):
        assert AuditLog().verify_chain(session, resolved_request.request_id) is True

    def test_tampered_comment_detected(self, session, resolved_request, captured_logs):
        # Bypass the ORM listeners the way a direct SQL edit would.
        session.execute(
            text("UPDATE approval_audit_trail SET comment = :c WHERE request_id = :r AND seq = 2"),
            {"c": "forged", "r": str(resolved_request.request_id)},
        )
        session.commit()

        assert AuditLog().verify_chain(session, resolved_request.request_id) is False
        broken = [r for r in captured_logs() if r["message"] == "audit_chain_broken"]
        assert broken and broken[0]["seq"] == 2

    def test_deleted_entry_detected(self, session, resolved_request):
        session.execute(
            text("DELETE FROM approval_audit_trail WHERE request_id = :r AND seq = 1"),
            {"r": str(resolved_request.request_id)},
        )
        session.commit()

        assert AuditLog().verify_chain(session, resolved_request.request_id) is False


class TestComputeEntryHash:

    BASE = dict(
        request_id=uuid4(),
        seq=1,
        action="created",
        performed_by=uuid4(),
        performed_at=datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc),
        comment=None,
        payload={"priority": "High"},
        prev_hash=None,
    )

    def test_deterministic(self):
        assert compute_entry_hash(**self.BASE) == compute_entry_hash(**self.BASE)
        assert len(compute_entry_hash(**self.BASE)) == 64

    @pytest.mark.parametrize(
        "field, value",
        [
            ("seq", 2),
            ("action", "approved"),
            ("comment", "x"),
            ("payload", {"priority": "Low"}),
            ("prev_hash", "0" * 64),
        ],
    )
    def test_every_field_covered(self, field, value):
        changed = dict(self.BASE, **{field: value})
        assert compute_entry_hash(**changed) != compute_entry_hash(**self.BASE)


class TestImmutability:

    def test_audit_entry_update_blocked(self, session, resolved_request):
        entry = session.execute(
            select(AuditTrailEntryModel)
            .where(AuditTrailEntryModel.request_id == resolved_request.request_id)
            .where(AuditTrailEntryModel.seq == 1)
        ).scalar_one()
        entry.comment = "rewritten"

        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()

    def test_audit_entry_delete_blocked(self, session, resolved_request):
        entry = session.execute(
            select(AuditTrailEntryModel)
            .where(AuditTrailEntryModel.request_id == resolved_request.request_id)
        ).scalars().first()
        session.delete(entry)

        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()

    def test_decided_action_update_blocked(self, session, resolved_request):
        action = session.execute(
            select(ApproverActionModel)
            .where(ApproverActionModel.request_id == resolved_request.request_id)
        ).scalar_one()
        action.action = "rejected"

        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()
        assert exc_info.value.entity_type == "ApproverAction"
        session.rollback()
