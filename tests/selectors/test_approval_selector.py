"""
ApprovalSelector read-side query tests.

Verifies:
- get_request / get_by_number / get_audit_trail lookups
- list_requests filters and deterministic newest-first ordering
- pending_for: only requests still awaiting the user's decision
- recently_resolved, status_counts, overdue and overdue_ids
- dashboard composition
"""

from datetime import timedelta
from uuid import uuid4

import pytest

from approval_kernel.domain.approval import (
    ApprovalStatus,
    ApprovalType,
    AuditAction,
    EntityRef,
    Priority,
    RequestFilter,
)
from approval_kernel.exceptions import ApprovalNotFoundError
from approval_kernel.selectors.approval_selector import ApprovalSelector
from tests.conftest import discount_payload


@pytest.fixture
def selector(session):
    return ApprovalSelector(session)


@pytest.fixture
def open_request(engine, requester, manager, deterministic_clock):
    """Create a request; the clock advances a minute between calls."""

    def _open(
        approval_type=ApprovalType.DISCOUNT_APPROVAL,
        payload=None,
        priority=Priority.MEDIUM,
        approvers=None,
        project_id=None,
        entity_type="Sale",
    ):
        request = engine.create_request(
            approval_type,
            payload or discount_payload(),
            requester.user_id,
            EntityRef(entity_type=entity_type, entity_id=uuid4(), project_id=project_id),
            priority,
            approvers or [manager],
        )
        deterministic_clock.advance(minutes=1)
        return request

    return _open


class TestLookups:

    def test_get_request(self, selector, open_request):
        request = open_request()
        assert selector.get_request(request.request_id) == request

    def test_get_request_unknown(self, selector):
        with pytest.raises(ApprovalNotFoundError):
            selector.get_request(uuid4())

    def test_get_by_number(self, selector, open_request):
        open_request()
        second = open_request()

        assert selector.get_by_number("APR-000002").request_id == second.request_id
        assert selector.get_by_number("APR-999999") is None

    def test_get_audit_trail(self, selector, engine, open_request, manager):
        request = open_request()
        engine.reject(request.request_id, manager, "No")

        trail = selector.get_audit_trail(request.request_id)

        assert [e.action for e in trail] == [AuditAction.CREATED, AuditAction.REJECTED]

    def test_get_audit_trail_unknown(self, selector):
        with pytest.raises(ApprovalNotFoundError):
            selector.get_audit_trail(uuid4())


class TestListRequests:

    def test_newest_first(self, selector, open_request):
        first, second, third = open_request(), open_request(), open_request()

        listed = selector.list_requests()

        assert [r.request_id for r in listed] == [
            third.request_id, second.request_id, first.request_id,
        ]

    def test_limit_and_offset(self, selector, open_request):
        for _ in range(5):
            open_request()

        page = selector.list_requests(RequestFilter(limit=2, offset=1))

        assert [r.request_number for r in page] == ["APR-000004", "APR-000003"]

    def test_filter_by_status_and_type(self, selector, engine, open_request, manager):
        approved = open_request()
        open_request()
        refund = open_request(
            approval_type=ApprovalType.REFUND_APPROVAL,
            payload={"refundAmount": "100", "originalPaymentAmount": "100", "reason": "dup"},
        )
        engine.approve(approved.request_id, manager)

        by_status = selector.list_requests(RequestFilter(status=ApprovalStatus.APPROVED))
        by_type = selector.list_requests(
            RequestFilter(approval_type=ApprovalType.REFUND_APPROVAL),
        )

        assert [r.request_id for r in by_status] == [approved.request_id]
        assert [r.request_id for r in by_type] == [refund.request_id]

    def test_filter_by_priority_project_and_entity(self, selector, open_request):
        project = uuid4()
        wanted = open_request(priority=Priority.HIGH, project_id=project, entity_type="Booking")
        open_request(priority=Priority.HIGH)
        open_request(project_id=project)

        result = selector.list_requests(RequestFilter(
            priority=Priority.HIGH, project_id=project, entity_type="Booking",
        ))

        assert [r.request_id for r in result] == [wanted.request_id]
        assert selector.list_requests(RequestFilter(entity_id=wanted.entity.entity_id)) == [wanted]

    def test_filter_by_people(self, selector, open_request, requester, second_manager):
        mine = open_request(approvers=[second_manager])
        open_request()

        assert [r.request_id for r in selector.list_requests(
            RequestFilter(approver_id=second_manager.user_id),
        )] == [mine.request_id]
        assert len(selector.list_requests(RequestFilter(requested_by=requester.user_id))) == 2
        assert selector.list_requests(RequestFilter(requested_by=uuid4())) == []

    def test_filter_by_created_range(self, selector, open_request):
        first = open_request()
        second = open_request()
        open_request()

        result = selector.list_requests(RequestFilter(
            created_from=first.created_at + timedelta(seconds=1),
            created_to=second.created_at + timedelta(seconds=1),
        ))

        assert [r.request_id for r in result] == [second.request_id]


class TestPendingFor:

    def test_ordered_by_deadline(self, selector, open_request, manager):
        low = open_request(priority=Priority.LOW)
        critical = open_request(priority=Priority.CRITICAL)

        pending = selector.pending_for(manager.user_id)

        assert [r.request_id for r in pending] == [critical.request_id, low.request_id]

    def test_excludes_decided_and_resolved(
        self, selector, engine, open_request, large_discount, manager, second_manager,
    ):
        dual = open_request(payload=large_discount, approvers=[manager, second_manager])
        single = open_request()
        engine.approve(dual.request_id, manager)
        engine.reject(single.request_id, manager, "no")

        assert selector.pending_for(manager.user_id) == []
        assert [r.request_id for r in selector.pending_for(second_manager.user_id)] == [
            dual.request_id,
        ]


class TestAggregates:

    def test_status_counts_include_every_status(
        self, selector, engine, open_request, requester, manager,
    ):
        open_request()
        cancelled = open_request()
        engine.cancel(cancelled.request_id, requester)

        counts = selector.status_counts()

        assert set(counts) == set(ApprovalStatus)
        assert counts[ApprovalStatus.PENDING] == 1
        assert counts[ApprovalStatus.CANCELLED] == 1
        assert counts[ApprovalStatus.EXPIRED] == 0

    def test_recently_resolved(self, selector, engine, open_request, requester, manager,
                               deterministic_clock):
        old = open_request()
        engine.approve(old.request_id, manager)
        since = deterministic_clock.advance(hours=1)
        recent = open_request()
        engine.cancel(recent.request_id, requester)

        assert [r.request_id for r in selector.recently_resolved(since)] == [recent.request_id]

    def test_overdue(self, selector, open_request, deterministic_clock):
        critical = open_request(priority=Priority.CRITICAL)
        open_request(priority=Priority.LOW)
        now = deterministic_clock.advance(hours=5)

        assert [r.request_id for r in selector.overdue(now)] == [critical.request_id]
        assert selector.overdue_ids(now) == [critical.request_id]
        assert selector.overdue_ids(now, limit=0) == []

    def test_overdue_excludes_resolved(
        self, selector, engine, open_request, manager, deterministic_clock,
    ):
        request = open_request(priority=Priority.CRITICAL)
        engine.approve(request.request_id, manager)

        assert selector.overdue_ids(deterministic_clock.advance(hours=5)) == []


class TestDashboard:

    def test_dashboard(self, selector, engine, open_request, manager, requester,
                       deterministic_clock):
        start = deterministic_clock.now()
        awaiting = open_request(priority=Priority.CRITICAL)
        done = open_request()
        engine.approve(done.request_id, manager)
        now = deterministic_clock.advance(hours=5)

        mgr_view = selector.dashboard(manager.user_id, now, resolved_since=start)
        req_view = selector.dashboard(requester.user_id, now, resolved_since=start)

        assert [r.request_id for r in mgr_view.pending_for_me] == [awaiting.request_id]
        assert mgr_view.my_requests == ()
        assert [r.request_id for r in mgr_view.recently_resolved] == [done.request_id]
        assert mgr_view.overdue_count == 1
        assert mgr_view.status_counts[ApprovalStatus.APPROVED] == 1
        assert len(req_view.my_requests) == 2
        assert req_view.pending_for_me == ()
