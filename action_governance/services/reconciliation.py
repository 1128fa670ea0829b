"""Reconciliation sweep for audit entries stuck in flight.

An entry stays ``pending`` when a preview is never confirmed, and stays
``pending``/``confirmed`` when the process dies between the business write and
audit finalization. Neither can be resolved automatically without knowing
whether the write landed, so the sweep only flags entries for manual review.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING

from action_governance.core.config import settings
from action_governance.core.logging import get_logger
from action_governance.services.audit import find_stuck_entries, flag_for_review

if TYPE_CHECKING:
    from uuid import UUID

    from sqlmodel.ext.asyncio.session import AsyncSession

logger = get_logger(__name__)


@dataclass(frozen=True)
class ReconciliationResult:
    found: int
    flagged: int
    entry_ids: list[UUID]


async def flag_stuck_actions(
    session: AsyncSession,
    *,
    older_than: timedelta | None = None,
    dry_run: bool = False,
    limit: int = 100,
) -> ReconciliationResult:
    """Flag entries in flight longer than ``older_than`` (default from settings)."""
    threshold = older_than or timedelta(minutes=settings.stuck_action_after_minutes)
    entries = await find_stuck_entries(session, older_than=threshold, limit=limit)
    entry_ids = [entry.id for entry in entries]
    for entry in entries:
        logger.warning(
            "action.reconcile.stuck_entry",
            extra={
                "audit_id": str(entry.id),
                "status": entry.status,
                "action_type": entry.action_type,
                "created_at": entry.created_at.isoformat(),
            },
        )
    flagged = 0 if dry_run else await flag_for_review(session, entries)
    logger.info(
        "action.reconcile.completed",
        extra={"found": len(entries), "flagged": flagged, "dry_run": dry_run},
    )
    return ReconciliationResult(found=len(entries), flagged=flagged, entry_ids=entry_ids)
