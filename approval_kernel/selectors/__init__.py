"""Read-only selectors over approval requests and their audit trails."""

from approval_kernel.selectors.approval_selector import (
    ApprovalDashboard,
    ApprovalSelector,
)
from approval_kernel.selectors.base import BaseSelector

__all__ = [
    "ApprovalDashboard",
    "ApprovalSelector",
    "BaseSelector",
]
