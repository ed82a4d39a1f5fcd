"""
approval_services.wiring -- Composition root for the approval workflow.

Responsibility:
    Builds the configuration, permission model, notification dispatcher
    and workflow engine once, in dependency order, and hands them back as
    one ``ApprovalSystem``.  Nothing else constructs these objects from
    globals; the escalation scheduler (``approval_batch``) is built from
    the returned system by its caller.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from sqlalchemy.orm import Session, sessionmaker

from approval_config import WorkflowConfig, get_active_config
from approval_kernel.db.engine import create_tables, get_session_factory, init_engine_from_url
from approval_kernel.domain.approval import ApproverDirectory, NotificationSink
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.logging_config import get_logger
from approval_services.approval_workflow import ApprovalWorkflowEngine
from approval_services.directory import StaticApproverDirectory
from approval_services.notifications import LoggingNotificationSink, NotificationDispatcher
from approval_services.permission_model import PermissionModel

logger = get_logger("services.wiring")


@dataclass(frozen=True)
class ApprovalSystem:
    config: WorkflowConfig
    session_factory: sessionmaker[Session]
    clock: Clock
    permissions: PermissionModel
    directory: ApproverDirectory
    notifier: NotificationDispatcher
    engine: ApprovalWorkflowEngine

    def close(self) -> None:
        self.notifier.shutdown()


def build_approval_system(
    database_url: str | None = None,
    *,
    session_factory: sessionmaker[Session] | None = None,
    config: WorkflowConfig | None = None,
    config_path: Path | str | None = None,
    clock: Clock | None = None,
    directory: ApproverDirectory | None = None,
    sinks: Iterable[NotificationSink] | None = None,
    create_schema: bool = False,
) -> ApprovalSystem:
    """Wire the approval workflow.

    Pass either ``database_url`` (initializes the module-level engine) or
    an existing ``session_factory``.  ``sinks`` defaults to a single
    ``LoggingNotificationSink``.
    """
    if session_factory is None:
        if database_url is None:
            raise ValueError("database_url or session_factory is required")
        init_engine_from_url(database_url)
        session_factory = get_session_factory()
    if create_schema:
        create_tables()

    config = config or get_active_config(config_path)
    clock = clock if clock is not None else SystemClock()
    permissions = PermissionModel(config)
    directory = directory if directory is not None else StaticApproverDirectory()
    notifier = NotificationDispatcher(
        sinks if sinks is not None else (LoggingNotificationSink(),),
    )
    engine = ApprovalWorkflowEngine(
        session_factory=session_factory,
        config=config,
        permissions=permissions,
        clock=clock,
        directory=directory,
        notifier=notifier,
    )

    logger.info(
        "approval_system_wired",
        extra={"config_version": config.version, "checksum": config.checksum},
    )
    return ApprovalSystem(
        config=config,
        session_factory=session_factory,
        clock=clock,
        permissions=permissions,
        directory=directory,
        notifier=notifier,
        engine=engine,
    )
