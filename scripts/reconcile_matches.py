#!/usr/bin/env python3
"""
DevMatch — Match reconciliation sweep

Finds pairs of users who have liked each other but have no match row (for
example because match derivation failed after the swipe was committed) and
creates the missing matches.

Usage examples
--------------
  # Report the pairs that would be repaired, without writing
  python scripts/reconcile_matches.py --dry-run

  # Repair them
  python scripts/reconcile_matches.py
"""

from __future__ import annotations

import argparse
import asyncio
import sys

# Ensure the project root is importable
sys.path.insert(0, ".")

from app.config import get_settings
from app.database import async_session_factory
from app.logging_config import configure_logging
from app.services.matching_service import MatchingService


async def reconcile(dry_run: bool) -> int:
    service = MatchingService()

    async with async_session_factory() as session:
        pairs = await service.reconcile_missing_matches(session, dry_run=dry_run)
        if dry_run:
            await session.rollback()
        else:
            await session.commit()

    label = "Would create" if dry_run else "Created"
    print(f"\n{'=' * 60}")
    print(f"  Match reconciliation{' (dry run)' if dry_run else ''}")
    print(f"{'=' * 60}")
    print(f"  {label}: {len(pairs)} match(es)")
    for user1_id, user2_id in pairs:
        print(f"    {user1_id} <-> {user2_id}")
    print()
    return len(pairs)


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Create missing matches for mutual-like pairs.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Only report the pairs that are missing a match.",
    )
    args = parser.parse_args()
    configure_logging(get_settings().LOG_LEVEL, json=False)

    try:
        asyncio.run(reconcile(args.dry_run))
    except KeyboardInterrupt:
        print("\nInterrupted.")
        sys.exit(130)


if __name__ == "__main__":
    main()
