"""
approval_services.approval_workflow -- Approval request lifecycle.

Responsibility:
    Creates approval requests, records approver decisions, cancels and
    escalates requests, and answers the authorization questions the UI
    asks ("may this subject act on / cancel this request").  Delegates
    quorum, SLA and escalation-target arithmetic to ``approval_engines``
    and permission checks to the injected permission model.

Architecture position:
    Services layer.  Orchestrates kernel persistence (models, AuditLog,
    SequenceService), the pure approval engine and the injected config.
    Owns the transaction boundary for each mutation:
    every call opens its own session from ``session_factory`` and commits
    before returning.  Notifications and resolution handlers run after
    commit.

Invariants enforced:
    - Lifecycle: only ``pending -> approved|rejected|cancelled|expired``;
      terminal requests are immutable.
    - Approver actions move ``pending -> approved|rejected`` once; the set
      is fixed at creation except that escalation appends one pending
      slot for the escalated-to approver.
    - Veto: one rejection resolves the request as rejected.
    - Quorum: approved only when approvals >= required_approvals.
    - Cancellation only by the requester, only while pending.
    - Escalation at most once per overdue window (the deadline that was
      breached); levels strictly increase.
    - Every state change appends exactly one audit entry, except an
      expiry, which appends one ``expired`` entry.
    - Mutual exclusion: one mutation per request at a time (per-request
      lock with bounded wait, row lock, version compare-and-swap).

Failure modes:
    - ApprovalValidationError (and subclasses) for bad input.
    - ApprovalForbiddenError (and subclasses) for permission, eligibility,
      duplicate-decision and non-requester failures.
    - InvalidApprovalStateError / ApprovalAlreadyResolvedError /
      ApprovalExpiredError when the request is not pending.
    - ApprovalConflictError on lock timeout or a stale concurrent write.
    - ApprovalNotFoundError for unknown ids.
"""

from __future__ import annotations

import threading
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Mapping, Sequence, TypeVar
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from approval_config.schema import EscalationPolicy, WorkflowConfig
from approval_engines.approval import (
    RequirementEvaluation,
    compute_deadline,
    evaluate_approval_requirement,
    evaluate_approval_status,
    required_approvals_for,
    select_escalation_target,
)
from approval_kernel.domain.approval import (
    APPROVAL_TRANSITIONS,
    ApprovalEvent,
    ApprovalEventKind,
    ApprovalRequest,
    ApprovalStatus,
    ApprovalType,
    ApproverActionState,
    ApproverDirectory,
    AuditAction,
    EntityRef,
    EscalationOutcome,
    NotificationSink,
    Priority,
    ResolutionHandler,
    Subject,
)
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.request_data import RequestData, parse_request_data
from approval_kernel.exceptions import (
    ApprovalAlreadyResolvedError,
    ApprovalConflictError,
    ApprovalExpiredError,
    ApprovalNotFoundError,
    ApprovalValidationError,
    DuplicateApproverActionError,
    InvalidApprovalStateError,
    MissingPermissionError,
    MissingRejectionCommentError,
    NotEligibleApproverError,
    NotRequesterError,
)
from approval_kernel.logging_config import LogContext, get_logger
from approval_kernel.models.approval import (
    ApprovalRequestModel,
    ApproverActionModel,
    EscalationRecordModel,
)
from approval_kernel.services.audit_log import AuditLog
from approval_kernel.services.request_locks import RequestLockRegistry
from approval_kernel.services.sequence_service import SequenceService
from approval_services.permission_model import APPROVALS_APPROVE, PermissionModel

logger = get_logger("services.approval_workflow")

T = TypeVar("T")


@dataclass(frozen=True)
class _Notice:
    """An event to emit once the transaction has committed."""

    kind: ApprovalEventKind
    recipients: tuple[UUID, ...]
    details: dict[str, Any] = field(default_factory=dict)


class _NoCandidates:
    def escalation_candidates(self) -> tuple[Subject, ...]:
        return ()


class ApprovalWorkflowEngine:
    """Approval request state machine over a SQLAlchemy session factory."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        config: WorkflowConfig,
        permissions: PermissionModel,
        clock: Clock | None = None,
        directory: ApproverDirectory | None = None,
        notifier: NotificationSink | None = None,
        audit_log: AuditLog | None = None,
        locks: RequestLockRegistry | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._config = config
        self._permissions = permissions
        self._clock = clock if clock is not None else SystemClock()
        self._directory = directory if directory is not None else _NoCandidates()
        self._notifier = notifier
        self._audit = audit_log if audit_log is not None else AuditLog()
        self._locks = locks if locks is not None else RequestLockRegistry()
        self._handlers: dict[ApprovalType, list[ResolutionHandler]] = defaultdict(list)
        self._handlers_lock = threading.Lock()

    @property
    def config(self) -> WorkflowConfig:
        return self._config

    # =====================================================================
    # Commands
    # =====================================================================

    def create_request(
        self,
        approval_type: ApprovalType | str,
        request_data: RequestData | Mapping[str, Any],
        requested_by: UUID,
        entity: EntityRef,
        priority: Priority | str,
        eligible_approvers: Sequence[Subject],
        *,
        title: str | None = None,
        description: str | None = None,
        required_approvals: int | None = None,
    ) -> ApprovalRequest:
        """Open a new pending approval request.

        Validates the payload for ``approval_type``, derives the SLA
        deadline from ``priority`` and the quorum from the type's policy
        (dual control above the policy's threshold), and creates one
        pending approver slot per eligible approver.

        Raises:
            ApprovalValidationError: bad type/priority, empty or invalid
                approver set, requester listed as approver, or a quorum
                larger than the approver set.
            RequestDataValidationError: payload fails validation.
        """
        approval_type = _coerce(ApprovalType, approval_type, "approval_type")
        priority = _coerce(Priority, priority, "priority")
        payload = parse_request_data(approval_type, request_data)
        approvers = self._validate_approvers(requested_by, eligible_approvers)

        policy = self._config.policy_for(approval_type)
        try:
            quorum = required_approvals_for(policy, payload, required_approvals)
        except ValueError as exc:
            raise ApprovalValidationError(str(exc), field="required_approvals") from None
        if quorum > len(approvers):
            raise ApprovalValidationError(
                f"required_approvals ({quorum}) exceeds the number of "
                f"eligible approvers ({len(approvers)})",
                field="required_approvals",
            )

        request_id = uuid4()
        with LogContext.bind(request_id=str(request_id), actor_id=str(requested_by)):
            now = self._clock.now()
            deadline = compute_deadline(now, self._config.sla_hours[priority])

            session = self._session_factory()
            try:
                with session.begin():
                    model = ApprovalRequestModel(
                        id=request_id,
                        request_number=SequenceService(session).next_request_number(),
                        approval_type=approval_type.value,
                        request_data=payload.to_dict(),
                        requested_by=requested_by,
                        project_id=entity.project_id,
                        entity_type=entity.entity_type,
                        entity_id=entity.entity_id,
                        title=title,
                        description=description,
                        status=ApprovalStatus.PENDING.value,
                        priority=priority.value,
                        required_approvals=quorum,
                        created_at=now,
                        updated_at=now,
                        deadline_at=deadline,
                    )
                    model.approver_actions = [
                        ApproverActionModel(
                            request_id=request_id,
                            position=position,
                            approver_id=subject.user_id,
                            approver_level=subject.role_level,
                            action=ApproverActionState.PENDING.value,
                        )
                        for position, subject in enumerate(approvers, start=1)
                    ]
                    session.add(model)
                    self._audit.record(
                        model,
                        AuditAction.CREATED,
                        performed_by=requested_by,
                        performed_at=now,
                        payload={
                            "approval_type": approval_type.value,
                            "priority": priority.value,
                            "required_approvals": quorum,
                            "approvers": [str(s.user_id) for s in approvers],
                            "deadline_at": deadline.isoformat(),
                        },
                    )
                    session.flush()
                    request = model.to_dto()
            finally:
                session.close()

            logger.info(
                "approval_request_created",
                extra={
                    "request_number": request.request_number,
                    "approval_type": approval_type.value,
                    "priority": priority.value,
                    "required_approvals": quorum,
                    "approver_count": len(approvers),
                    "deadline_at": deadline.isoformat(),
                },
            )

        self._after_commit(
            request,
            [_Notice(ApprovalEventKind.CREATED, tuple(s.user_id for s in approvers))],
            resolved=False,
        )
        return request

    def approve(
        self,
        request_id: UUID,
        approver: Subject,
        comment: str | None = None,
    ) -> ApprovalRequest:
        """Record an approval; resolve the request once quorum is met."""

        def mutate(session: Session, model: ApprovalRequestModel, now: datetime):
            slot = self._authorize_decision(model, approver, "approve")
            slot.action = ApproverActionState.APPROVED.value
            slot.comment = comment
            slot.action_at = now
            _touch(model, now)

            evaluation = evaluate_approval_status(
                (a.to_dto() for a in model.approver_actions), model.required_approvals,
            )
            if evaluation.status == ApprovalStatus.APPROVED:
                self._resolve(model, ApprovalStatus.APPROVED, approver.user_id, now, comment)
                self._audit.record(
                    model, AuditAction.APPROVED, approver.user_id, now, comment,
                    payload={"approved_count": evaluation.approved_count,
                             "required_approvals": evaluation.required_approvals},
                )
                return True, [self._resolved_notice(model, approver.user_id)]

            self._audit.record(
                model, AuditAction.APPROVAL_RECORDED, approver.user_id, now, comment,
                payload={"approved_count": evaluation.approved_count,
                         "required_approvals": evaluation.required_approvals},
            )
            return False, []

        resolved, request = self._run_locked(request_id, approver.user_id, "approve", mutate)
        logger.info(
            "approval_recorded",
            extra={
                "request_number": request.request_number,
                "status": request.status.value,
                "approved_count": request.approved_count,
                "required_approvals": request.required_approvals,
                "resolved": resolved,
            },
        )
        return request

    def reject(
        self,
        request_id: UUID,
        approver: Subject,
        comment: str,
    ) -> ApprovalRequest:
        """Veto the request.  ``comment`` is mandatory."""
        if comment is None or not comment.strip():
            raise MissingRejectionCommentError(str(request_id))
        comment = comment.strip()

        def mutate(session: Session, model: ApprovalRequestModel, now: datetime):
            slot = self._authorize_decision(model, approver, "reject")
            slot.action = ApproverActionState.REJECTED.value
            slot.comment = comment
            slot.action_at = now
            _touch(model, now)

            evaluation = evaluate_approval_status(
                (a.to_dto() for a in model.approver_actions), model.required_approvals,
            )
            self._resolve(model, evaluation.status, approver.user_id, now, comment)
            self._audit.record(model, AuditAction.REJECTED, approver.user_id, now, comment)
            return None, [self._resolved_notice(model, approver.user_id)]

        _, request = self._run_locked(request_id, approver.user_id, "reject", mutate)
        logger.info(
            "approval_rejected",
            extra={"request_number": request.request_number},
        )
        return request

    def cancel(
        self,
        request_id: UUID,
        requester: Subject,
        reason: str | None = None,
    ) -> ApprovalRequest:
        """Withdraw a pending request.  Only its requester may cancel."""

        def mutate(session: Session, model: ApprovalRequestModel, now: datetime):
            if requester.user_id != model.requested_by:
                raise NotRequesterError(str(model.id), str(requester.user_id))
            self._require_pending(model, "cancel")
            _touch(model, now)
            self._resolve(model, ApprovalStatus.CANCELLED, requester.user_id, now, reason)
            self._audit.record(model, AuditAction.CANCELLED, requester.user_id, now, reason)
            return None, [self._resolved_notice(model, requester.user_id)]

        _, request = self._run_locked(request_id, requester.user_id, "cancel", mutate)
        logger.info(
            "approval_cancelled",
            extra={"request_number": request.request_number},
        )
        return request

    def escalate(
        self,
        request_id: UUID,
        *,
        actor_id: UUID | None = None,
    ) -> EscalationOutcome:
        """Escalate an overdue request, or expire it once escalation is spent.

        Called by the escalation scheduler.  Returns SKIPPED when the
        request is not overdue, or when escalation is exhausted but the
        request is still inside its expiry window.

        Raises:
            ApprovalAlreadyResolvedError: the request is no longer pending
                (ApprovalExpiredError if it already expired).
        """
        actor = actor_id or self._config.system_actor_id

        def mutate(session: Session, model: ApprovalRequestModel, now: datetime):
            self._require_pending(model, "escalate")
            if now <= model.deadline_at:
                return EscalationOutcome.SKIPPED, []

            policy = self._config.policy_for(ApprovalType(model.approval_type)).escalation
            window_escalated = any(
                e.breached_deadline_at == model.deadline_at for e in model.escalations
            )

            target = None
            if (
                policy.enabled
                and not window_escalated
                and len(model.escalations) < policy.max_levels
            ):
                candidates = [
                    c for c in self._directory.escalation_candidates()
                    if c.user_id != model.requested_by
                ]
                target = select_escalation_target(
                    candidates,
                    (a.to_dto() for a in model.approver_actions),
                    self._is_escalation_candidate,
                )

            if target is not None:
                notices = self._apply_escalation(model, target, policy, actor, now)
                return EscalationOutcome.ESCALATED, notices

            expires_at = model.deadline_at + timedelta(hours=policy.expire_after_hours)
            if now > expires_at:
                _touch(model, now)
                self._resolve(
                    model, ApprovalStatus.EXPIRED, actor, now,
                    "Escalation exhausted; SLA expired",
                )
                self._audit.record(
                    model, AuditAction.EXPIRED, actor, now,
                    comment="Escalation exhausted; SLA expired",
                    payload={
                        "escalation_levels": len(model.escalations),
                        "deadline_at": model.deadline_at.isoformat(),
                    },
                )
                return EscalationOutcome.EXPIRED, [self._resolved_notice(model, actor)]

            logger.info(
                "approval_escalation_exhausted",
                extra={
                    "escalation_levels": len(model.escalations),
                    "expires_at": expires_at.isoformat(),
                },
            )
            return EscalationOutcome.SKIPPED, []

        outcome, request = self._run_locked(request_id, actor, "escalate", mutate)
        if outcome != EscalationOutcome.SKIPPED:
            logger.info(
                "approval_escalated" if outcome == EscalationOutcome.ESCALATED else "approval_expired",
                extra={
                    "request_number": request.request_number,
                    "outcome": outcome.value,
                    "escalation_levels": len(request.escalation_history),
                    "deadline_at": request.deadline_at.isoformat(),
                    "priority": request.priority.value,
                },
            )
        return outcome

    # =====================================================================
    # Queries
    # =====================================================================

    def get_request(self, request_id: UUID) -> ApprovalRequest:
        """Current snapshot of a request.

        Raises:
            ApprovalNotFoundError: unknown id.
        """
        with self._session_factory() as session:
            model = session.get(ApprovalRequestModel, request_id)
            if model is None:
                raise ApprovalNotFoundError(str(request_id))
            return model.to_dto()

    def is_actionable(self, request: ApprovalRequest, subject: Subject) -> bool:
        """True iff ``subject`` may approve or reject ``request`` right now."""
        if request.status != ApprovalStatus.PENDING:
            return False
        if not self._permissions.check_permission(subject, APPROVALS_APPROVE):
            return False
        slot = request.action_for(subject.user_id)
        return slot is not None and slot.action == ApproverActionState.PENDING

    def can_cancel(self, request: ApprovalRequest, subject: Subject) -> bool:
        return (
            request.status == ApprovalStatus.PENDING
            and subject.user_id == request.requested_by
        )

    def requires_approval(
        self,
        approval_type: ApprovalType | str,
        request_data: RequestData | Mapping[str, Any],
        subject: Subject,
    ) -> RequirementEvaluation:
        """Whether ``subject`` needs an approval request for this action."""
        approval_type = _coerce(ApprovalType, approval_type, "approval_type")
        payload = parse_request_data(approval_type, request_data)
        return evaluate_approval_requirement(
            self._config.policy_for(approval_type), payload, subject,
        )

    def register_resolution_handler(
        self,
        approval_type: ApprovalType | str,
        handler: ResolutionHandler,
    ) -> None:
        """Call ``handler`` after commit whenever a request of this type
        reaches a terminal state."""
        approval_type = _coerce(ApprovalType, approval_type, "approval_type")
        with self._handlers_lock:
            self._handlers[approval_type].append(handler)

    # =====================================================================
    # Internals
    # =====================================================================

    def _run_locked(
        self,
        request_id: UUID,
        actor_id: UUID,
        operation: str,
        mutate: Callable[[Session, ApprovalRequestModel, datetime], tuple[T, list[_Notice]]],
    ) -> tuple[T, ApprovalRequest]:
        """Run ``mutate`` on the locked request row inside one transaction."""
        with LogContext.bind(request_id=str(request_id), actor_id=str(actor_id)):
            with self._locks.hold(request_id, self._config.lock_timeout_seconds):
                session = self._session_factory()
                try:
                    with session.begin():
                        model = session.execute(
                            select(ApprovalRequestModel)
                            .where(ApprovalRequestModel.id == request_id)
                            .with_for_update()
                        ).scalar_one_or_none()
                        if model is None:
                            raise ApprovalNotFoundError(str(request_id))
                        value, notices = mutate(session, model, self._clock.now())
                        session.flush()
                        request = model.to_dto()
                except (StaleDataError, IntegrityError) as exc:
                    logger.warning(
                        "approval_concurrent_modification",
                        extra={"operation": operation, "error": str(exc)},
                    )
                    raise ApprovalConflictError(str(request_id)) from exc
                finally:
                    session.close()

        # Only pending requests can be mutated, so terminal here means
        # this call resolved it.
        self._after_commit(request, notices, resolved=request.is_terminal)
        return value, request

    def _after_commit(
        self,
        request: ApprovalRequest,
        notices: list[_Notice],
        resolved: bool,
    ) -> None:
        now = self._clock.now()
        for notice in notices:
            self._notify(ApprovalEvent(
                kind=notice.kind,
                request_id=request.request_id,
                request_number=request.request_number,
                approval_type=request.approval_type,
                status=request.status,
                priority=request.priority,
                recipients=notice.recipients,
                occurred_at=now,
                details=notice.details,
            ))
        if resolved:
            self._run_resolution_handlers(request)

    def _notify(self, event: ApprovalEvent) -> None:
        if self._notifier is None:
            return
        try:
            self._notifier.deliver(event)
        except Exception:
            logger.exception(
                "approval_notification_failed",
                extra={"request_id": str(event.request_id), "event_kind": event.kind.value},
            )

    def _run_resolution_handlers(self, request: ApprovalRequest) -> None:
        with self._handlers_lock:
            handlers = list(self._handlers.get(request.approval_type, ()))
        for handler in handlers:
            try:
                handler(request)
            except Exception:
                logger.exception(
                    "resolution_handler_failed",
                    extra={
                        "request_id": str(request.request_id),
                        "request_number": request.request_number,
                        "status": request.status.value,
                        "handler": getattr(handler, "__name__", repr(handler)),
                    },
                )

    def _validate_approvers(
        self,
        requested_by: UUID,
        eligible_approvers: Sequence[Subject],
    ) -> list[Subject]:
        approvers: list[Subject] = []
        seen: set[UUID] = set()
        for subject in eligible_approvers:
            if subject.user_id in seen:
                continue
            seen.add(subject.user_id)
            approvers.append(subject)
        if not approvers:
            raise ApprovalValidationError(
                "At least one eligible approver is required",
                field="eligible_approvers",
            )
        if requested_by in seen:
            raise ApprovalValidationError(
                "The requester cannot approve their own request",
                field="eligible_approvers",
            )
        return approvers

    def _authorize_decision(
        self,
        model: ApprovalRequestModel,
        approver: Subject,
        operation: str,
    ) -> ApproverActionModel:
        """Permission, eligibility, state, then duplicate-decision checks."""
        if not self._permissions.check_permission(approver, APPROVALS_APPROVE):
            raise MissingPermissionError(str(approver.user_id), APPROVALS_APPROVE)
        slot = next(
            (a for a in model.approver_actions if a.approver_id == approver.user_id),
            None,
        )
        if slot is None:
            raise NotEligibleApproverError(str(model.id), str(approver.user_id))
        self._require_pending(model, operation)
        if slot.action != ApproverActionState.PENDING.value:
            raise DuplicateApproverActionError(str(model.id), str(approver.user_id), slot.action)
        return slot

    def _require_pending(self, model: ApprovalRequestModel, operation: str) -> None:
        status = ApprovalStatus(model.status)
        if status == ApprovalStatus.PENDING:
            return
        if status == ApprovalStatus.EXPIRED:
            raise ApprovalExpiredError(str(model.id), status.value, operation)
        raise ApprovalAlreadyResolvedError(str(model.id), status.value, operation)

    def _resolve(
        self,
        model: ApprovalRequestModel,
        status: ApprovalStatus,
        resolved_by: UUID,
        now: datetime,
        comment: str | None,
    ) -> None:
        current = ApprovalStatus(model.status)
        if status not in APPROVAL_TRANSITIONS[current]:
            raise InvalidApprovalStateError(str(model.id), current.value, status.value)
        model.status = status.value
        model.resolved_by = resolved_by
        model.resolved_at = now
        model.resolution_comment = comment

    def _is_escalation_candidate(self, candidate: Subject, min_engaged_level: int) -> bool:
        return (
            self._permissions.check_permission(candidate, APPROVALS_APPROVE)
            and self._permissions.can_manage_level(candidate, min_engaged_level)
        )

    def _apply_escalation(
        self,
        model: ApprovalRequestModel,
        target: Subject,
        policy: EscalationPolicy,
        actor: UUID,
        now: datetime,
    ) -> list[_Notice]:
        level = len(model.escalations) + 1
        breached = model.deadline_at
        previous_priority = Priority(model.priority)
        reason = (
            f"SLA deadline {breached.isoformat()} breached; "
            f"escalated to level {level}"
        )

        model.escalations.append(EscalationRecordModel(
            request_id=model.id,
            level=level,
            escalated_to=target.user_id,
            escalated_at=now,
            reason=reason,
            breached_deadline_at=breached,
        ))
        model.approver_actions.append(ApproverActionModel(
            request_id=model.id,
            position=max(a.position for a in model.approver_actions) + 1,
            approver_id=target.user_id,
            approver_level=target.role_level,
            action=ApproverActionState.PENDING.value,
        ))
        # A late scan must still leave the new window in the future.
        grace = timedelta(hours=policy.grace_hours)
        model.deadline_at = breached + grace if breached + grace > now else now + grace
        if policy.raise_priority:
            model.priority = previous_priority.raised().value
        _touch(model, now)

        self._audit.record(
            model, AuditAction.ESCALATED, actor, now, reason,
            payload={
                "level": level,
                "escalated_to": str(target.user_id),
                "breached_deadline_at": breached.isoformat(),
                "deadline_at": model.deadline_at.isoformat(),
                "previous_priority": previous_priority.value,
                "priority": model.priority,
            },
        )
        return [_Notice(
            ApprovalEventKind.ESCALATED,
            (target.user_id, model.requested_by),
            {"level": level, "escalated_to": str(target.user_id)},
        )]

    def _resolved_notice(self, model: ApprovalRequestModel, actor: UUID) -> _Notice:
        recipients = [model.requested_by]
        recipients.extend(
            a.approver_id for a in model.approver_actions
            if a.approver_id not in recipients
        )
        return _Notice(
            ApprovalEventKind.RESOLVED,
            tuple(recipients),
            {"resolved_by": str(actor), "status": model.status},
        )


def _touch(model: ApprovalRequestModel, now: datetime) -> None:
    # Always dirty the row so the version column bumps.
    model.updated_at = now


def _coerce(enum_cls: type[T], value: Any, field_name: str) -> T:
    try:
        return enum_cls(value)
    except ValueError:
        raise ApprovalValidationError(
            f"Invalid {field_name}: {value!r}", field=field_name,
        ) from None
