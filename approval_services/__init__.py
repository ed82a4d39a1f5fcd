"""
approval_services -- Orchestration over the approval kernel.

The workflow engine, the permission model, notification dispatch, the
approver directory and the composition root live here.  Services may import
the kernel, the engines and the config package; nothing below them imports
services.
"""

from approval_services.approval_workflow import ApprovalWorkflowEngine
from approval_services.directory import StaticApproverDirectory
from approval_services.notifications import LoggingNotificationSink, NotificationDispatcher
from approval_services.permission_model import (
    APPROVALS_APPROVE,
    APPROVALS_MANAGE_POLICIES,
    APPROVALS_REQUEST,
    APPROVALS_VIEW,
    PermissionModel,
)
from approval_services.wiring import ApprovalSystem, build_approval_system

__all__ = [
    "APPROVALS_APPROVE",
    "APPROVALS_MANAGE_POLICIES",
    "APPROVALS_REQUEST",
    "APPROVALS_VIEW",
    "ApprovalSystem",
    "ApprovalWorkflowEngine",
    "LoggingNotificationSink",
    "NotificationDispatcher",
    "PermissionModel",
    "StaticApproverDirectory",
    "build_approval_system",
]
