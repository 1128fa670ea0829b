"""CLI script to flag audit entries stuck in pending/confirmed for review."""

from __future__ import annotations

import argparse
import asyncio
import sys
from datetime import timedelta
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(PROJECT_ROOT))


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Flag action audit entries left in flight for manual review.",
    )
    parser.add_argument(
        "--older-than-minutes",
        type=int,
        default=None,
        help="Age threshold (default: STUCK_ACTION_AFTER_MINUTES)",
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=100,
        help="Maximum number of entries to flag in one run",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Report stuck entries without flagging them",
    )
    return parser.parse_args()


async def _run() -> int:
    from action_governance.core.logging import configure_logging
    from action_governance.db.session import session_scope
    from action_governance.services.reconciliation import flag_stuck_actions

    configure_logging()
    args = _parse_args()
    older_than = (
        timedelta(minutes=args.older_than_minutes) if args.older_than_minutes else None
    )

    async with session_scope() as session:
        result = await flag_stuck_actions(
            session,
            older_than=older_than,
            dry_run=bool(args.dry_run),
            limit=args.limit,
        )

    sys.stdout.write(f"found={result.found} flagged={result.flagged}\n")
    for entry_id in result.entry_ids:
        sys.stdout.write(f"- audit_id={entry_id}\n")
    return 0


def main() -> None:
    """Run the async CLI workflow and exit with its return code."""
    raise SystemExit(asyncio.run(_run()))


if __name__ == "__main__":
    main()
