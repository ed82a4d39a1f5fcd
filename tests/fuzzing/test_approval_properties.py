"""
Hypothesis-based properties of the pure approval rules.

Properties checked:
- Veto: any rejection resolves to rejected regardless of approvals
- Quorum: approved iff approvals >= required and no rejection
- required_approvals_for never drops below the policy count, reaches dual
  control at the threshold and honours larger overrides
- Escalation target is always eligible, never engaged, and of maximal level
- Payload parsing: valid discounts round-trip, negative amounts never parse
- Priority.raised is monotone and idempotent at Critical
"""

from decimal import Decimal
from uuid import uuid4

from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from approval_config.schema import ApprovalPolicy
from approval_engines.approval import (
    DUAL_CONTROL_APPROVALS,
    evaluate_approval_status,
    required_approvals_for,
    select_escalation_target,
)
from approval_kernel.domain.approval import (
    ApprovalStatus,
    ApprovalType,
    ApproverAction,
    ApproverActionState,
    Priority,
    Subject,
)
from approval_kernel.domain.request_data import parse_request_data
from approval_kernel.exceptions import RequestDataValidationError

FUZZ_SETTINGS = settings(
    max_examples=200,
    deadline=None,
    suppress_health_check=[HealthCheck.too_slow],
)

amounts = st.decimals(min_value=0, max_value=Decimal("999999999"), places=2)
states = st.sampled_from(list(ApproverActionState))
levels = st.integers(min_value=0, max_value=4)


@st.composite
def action_lists(draw, min_size=0, max_size=8):
    return [
        ApproverAction(approver_id=uuid4(), approver_level=draw(levels), action=draw(states))
        for _ in range(draw(st.integers(min_value=min_size, max_value=max_size)))
    ]


@st.composite
def discount_payloads(draw):
    original = draw(st.decimals(min_value=1, max_value=Decimal("999999999"), places=2))
    discount_amount = draw(st.decimals(min_value=0, max_value=original, places=2))
    pct = draw(st.decimals(min_value=0, max_value=100, places=2))
    return {
        "originalPrice": str(original),
        "discountPercentage": str(pct),
        "discountAmount": str(discount_amount),
        "salePrice": str(original - discount_amount),
    }


class TestQuorumProperties:

    @FUZZ_SETTINGS
    @given(actions=action_lists(), required=st.integers(min_value=1, max_value=5))
    def test_rejection_always_vetoes(self, actions, required):
        vetoed = actions + [
            ApproverAction(approver_id=uuid4(), approver_level=2, action=ApproverActionState.REJECTED),
        ]

        assert evaluate_approval_status(vetoed, required).status == ApprovalStatus.REJECTED

    @FUZZ_SETTINGS
    @given(actions=action_lists(), required=st.integers(min_value=1, max_value=5))
    def test_status_matches_counts(self, actions, required):
        approvals = sum(1 for a in actions if a.action == ApproverActionState.APPROVED)
        rejected = any(a.action == ApproverActionState.REJECTED for a in actions)

        result = evaluate_approval_status(actions, required)

        if rejected:
            assert result.status == ApprovalStatus.REJECTED
        elif approvals >= required:
            assert result.status == ApprovalStatus.APPROVED
            assert result.approved_count == approvals
        else:
            assert result.status == ApprovalStatus.PENDING
            assert result.is_resolved is False


class TestRequiredApprovalsProperties:

    @FUZZ_SETTINGS
    @given(
        payload=discount_payloads(),
        base=st.integers(min_value=1, max_value=3),
        threshold=st.one_of(st.none(), amounts),
        override=st.one_of(st.none(), st.integers(min_value=1, max_value=5)),
    )
    def test_quorum_bounds(self, payload, base, threshold, override):
        policy = ApprovalPolicy(
            approval_type=ApprovalType.DISCOUNT_APPROVAL,
            required_approvals=base,
            dual_control_threshold=threshold,
        )
        data = parse_request_data(ApprovalType.DISCOUNT_APPROVAL, payload)

        required = required_approvals_for(policy, data, override)

        assert required >= base
        if override is not None:
            assert required >= override
        if threshold is not None and data.financial_amount >= threshold:
            assert required >= DUAL_CONTROL_APPROVALS
        if override is None and (threshold is None or data.financial_amount < threshold):
            assert required == base


class TestEscalationTargetProperties:

    @FUZZ_SETTINGS
    @given(
        actions=action_lists(min_size=1),
        candidate_levels=st.lists(levels, max_size=6),
    )
    def test_target_is_eligible_and_maximal(self, actions, candidate_levels):
        candidates = [Subject(user_id=uuid4(), role_level=lvl) for lvl in candidate_levels]
        candidates.append(Subject(user_id=actions[0].approver_id, role_level=0))

        def is_eligible(candidate, min_level):
            return candidate.role_level < min_level

        target = select_escalation_target(candidates, actions, is_eligible)

        engaged = {a.approver_id for a in actions}
        min_level = min(a.approver_level for a in actions)
        eligible = [
            c for c in candidates if c.user_id not in engaged and is_eligible(c, min_level)
        ]
        if not eligible:
            assert target is None
        else:
            assert target in eligible
            assert target.role_level == max(c.role_level for c in eligible)


class TestPayloadProperties:

    @FUZZ_SETTINGS
    @given(payload=discount_payloads())
    def test_valid_discount_round_trips(self, payload):
        data = parse_request_data(ApprovalType.DISCOUNT_APPROVAL, payload)

        assert data.discount_amount <= data.original_price
        assert parse_request_data(ApprovalType.DISCOUNT_APPROVAL, data.to_dict()) == data

    @FUZZ_SETTINGS
    @given(
        payload=discount_payloads(),
        field=st.sampled_from(["originalPrice", "discountAmount", "salePrice"]),
        negative=st.decimals(max_value=Decimal("-0.01"), allow_nan=False, allow_infinity=False),
    )
    def test_negative_amounts_rejected(self, payload, field, negative):
        payload[field] = str(negative)

        try:
            parse_request_data(ApprovalType.DISCOUNT_APPROVAL, payload)
        except RequestDataValidationError as exc:
            assert field in exc.errors
        else:
            raise AssertionError(f"{field}={negative} parsed")

    @FUZZ_SETTINGS
    @given(text=st.text(max_size=20))
    def test_garbage_amount_never_parses_silently(self, text):
        payload = {
            "refundAmount": text,
            "originalPaymentAmount": "100",
            "reason": "dup",
        }
        try:
            data = parse_request_data(ApprovalType.REFUND_APPROVAL, payload)
        except RequestDataValidationError:
            return
        assert data.refund_amount >= 0
        assert data.refund_amount.is_finite()


class TestPriorityProperties:

    @given(priority=st.sampled_from(list(Priority)))
    def test_raised_never_lowers(self, priority):
        order = list(Priority)
        raised = priority.raised()

        assert order.index(raised) <= order.index(priority)
        assert order.index(priority) - order.index(raised) <= 1
        if priority == Priority.CRITICAL:
            assert raised == Priority.CRITICAL
