"""
Approval Kernel

The approval-request workflow behind the real-estate CRM:
- Typed, validated request payloads per approval type
- Quorum approval with single-reject veto
- Per-request locking plus optimistic versioning
- SLA deadlines with time-based escalation and expiry
- Append-only, hash-chained audit trail per request
"""

__version__ = "0.1.0"
