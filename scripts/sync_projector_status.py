#!/usr/bin/env python3
"""
Recompute every projector's last service date and maintenance status from its
service records.

Usage:
    python scripts/sync_projector_status.py                  # Apply changes
    python scripts/sync_projector_status.py --dry-run        # Report drift only
    python scripts/sync_projector_status.py --resume-after <projector-id>
"""
import argparse
import sys
import os
import uuid

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from projectorhub.db import SessionLocal
from projectorhub.errors import EngineError
from projectorhub.logging import setup_logging
from projectorhub.services.reconciler import sweep


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Sync projector maintenance status")
    parser.add_argument("--dry-run", action="store_true", help="Report drift without writing")
    parser.add_argument("--resume-after", type=uuid.UUID, default=None, help="Skip projectors up to and including this id")
    args = parser.parse_args(argv)

    setup_logging()
    print("=" * 80)
    print("SYNC PROJECTOR STATUS" + (" (DRY RUN)" if args.dry_run else ""))
    print("=" * 80)

    try:
        result = sweep(SessionLocal, resume_after=args.resume_after, dry_run=args.dry_run)
    except EngineError as e:
        print(f"[ERROR] Sweep could not start: {e.detail}")
        return 2

    print(f"Processed: {result.processed}")
    print(f"Updated:   {result.updated}")
    print(f"Unchanged: {result.unchanged}")
    for status, count in sorted(result.status_counts.items()):
        print(f"  {status}: {count}")
    if result.failed:
        print(f"\n[WARN] {len(result.failed)} projector(s) failed and will be retried on the next run:")
        for projector_id in result.failed:
            print(f"  - {projector_id}")
        return 1
    print("\n[OK] Sync completed")
    return 0


if __name__ == "__main__":
    sys.exit(main())
