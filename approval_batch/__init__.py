"""
approval_batch -- Background SLA/escalation scanning.

Provides an in-process polling scheduler that finds overdue pending
approval requests and asks the workflow engine to escalate (or expire)
each one.

Architecture:
    approval_batch/ is a top-level package.  Nothing in kernel/, engines/,
    config/ or services/ imports from approval_batch.

Invariants:
    - Clock injection (no datetime.now() calls).
    - Per-request isolation: one failing request never aborts a scan.
    - Idempotent across runs: the engine escalates at most once per
      overdue window.
    - Graceful shutdown.
"""
