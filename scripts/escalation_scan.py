#!/usr/bin/env python3
"""
Run the approval SLA escalation scan.

Usage:
    python scripts/escalation_scan.py [--db-url URL] [--config FILE]
                                      [--directory FILE] [--loop]

By default runs one scan and prints a summary.  ``--loop`` keeps running
every ``scheduler.interval_seconds`` until interrupted.

``--directory`` points at a YAML mapping of user id to role name; those
users are the escalation candidates.  Without it, overdue requests can
only expire, never escalate.
"""

import argparse
import logging
import os
import sys
import time
from pathlib import Path
from uuid import UUID

import yaml

# Add project root to path
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from approval_batch.services.escalation_scheduler import EscalationScheduler
from approval_kernel.logging_config import configure_logging
from approval_services.directory import StaticApproverDirectory
from approval_services.wiring import build_approval_system

DB_URL = os.environ.get("DATABASE_URL", "sqlite:///approvals.db")


def load_assignments(path: Path) -> dict[UUID, str]:
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    return {UUID(str(user_id)): str(role) for user_id, role in data.items()}


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Escalate or expire overdue approval requests.")
    parser.add_argument("--db-url", type=str, default=DB_URL)
    parser.add_argument("--config", type=Path, default=None, help="Workflow YAML (default: bundled)")
    parser.add_argument("--directory", type=Path, default=None, help="YAML map of user id -> role")
    parser.add_argument("--loop", action="store_true", help="Keep scanning until interrupted")
    parser.add_argument("--create-schema", action="store_true", help="Create tables if missing")
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args(argv)

    configure_logging(level=logging.DEBUG if args.verbose else logging.INFO)

    system = build_approval_system(
        args.db_url,
        config_path=args.config,
        create_schema=args.create_schema,
    )
    if args.directory is not None:
        directory = StaticApproverDirectory.from_roles(
            system.permissions, load_assignments(args.directory),
        )
        for subject in directory.escalation_candidates():
            system.directory.add(subject)

    scheduler = EscalationScheduler(system.session_factory, system.engine, clock=system.clock)
    try:
        if args.loop:
            scheduler.start()
            try:
                while scheduler.is_running:
                    time.sleep(1)
            except KeyboardInterrupt:
                print("Stopping...")
            finally:
                scheduler.stop()
            return 0

        result = scheduler.tick()
        print(f"Scanned:   {result.scanned}")
        print(f"Escalated: {len(result.escalated)}")
        print(f"Expired:   {len(result.expired)}")
        print(f"Skipped:   {len(result.skipped)}")
        print(f"Failed:    {len(result.failed)}")
        return 1 if result.failed else 0
    finally:
        system.notifier.flush(timeout=10)
        system.close()


if __name__ == "__main__":
    sys.exit(main())
