"""Sliding-window rate limiting computed from audit ledger rows.

Counts are taken fresh on every check so that several engine instances share
limits through the database without a distributed counter. ``reset_at`` is
advisory: it is the moment the oldest counted entry leaves the window, which is
when at least one slot frees up, not a token-bucket refill time.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from sqlmodel import col

from action_governance.core.config import settings as app_settings
from action_governance.core.time import utcnow
from action_governance.models.action_audit_entries import ActionAuditEntry

if TYPE_CHECKING:
    from uuid import UUID

    from sqlmodel.ext.asyncio.session import AsyncSession

    from action_governance.models.base import ModelQuery
    from action_governance.services.policy_store import GovernanceSettingsSnapshot


@dataclass(frozen=True)
class RateLimitStatus:
    allowed: bool
    remaining: int
    reset_at: datetime
    user_count: int
    global_count: int


def default_window() -> timedelta:
    return timedelta(minutes=app_settings.rate_limit_window_minutes)


def _window_query(window_start: datetime) -> ModelQuery[ActionAuditEntry]:
    # Revert bookkeeping rows are administrative, not agent actions.
    return ActionAuditEntry.objects.filter(
        col(ActionAuditEntry.created_at) > window_start,
        col(ActionAuditEntry.reverts_entry_id).is_(None),
    )


async def _oldest_created_at(
    session: AsyncSession,
    query: ModelQuery[ActionAuditEntry],
) -> datetime | None:
    oldest = await query.order_by(col(ActionAuditEntry.created_at).asc()).first(session)
    return oldest.created_at if oldest is not None else None


async def check_rate_limit(
    session: AsyncSession,
    *,
    user_id: UUID,
    settings: GovernanceSettingsSnapshot,
    now: datetime | None = None,
    window: timedelta | None = None,
) -> RateLimitStatus:
    """Check per-user and global action counts over the trailing window."""
    now = now or utcnow()
    window = window or default_window()
    window_start = now - window

    global_query = _window_query(window_start)
    user_query = global_query.filter(col(ActionAuditEntry.user_id) == user_id)
    user_count = await user_query.count(session)
    global_count = await global_query.count(session)

    user_exhausted = user_count >= settings.user_rate_limit_per_hour
    global_exhausted = global_count >= settings.global_rate_limit_per_hour
    limiting_query = global_query if global_exhausted and not user_exhausted else user_query
    oldest = await _oldest_created_at(session, limiting_query)
    reset_at = (oldest or now) + window

    if user_exhausted or global_exhausted:
        return RateLimitStatus(
            allowed=False,
            remaining=0,
            reset_at=reset_at,
            user_count=user_count,
            global_count=global_count,
        )
    remaining = min(
        settings.user_rate_limit_per_hour - user_count,
        settings.global_rate_limit_per_hour - global_count,
    )
    return RateLimitStatus(
        allowed=True,
        remaining=max(0, remaining),
        reset_at=reset_at,
        user_count=user_count,
        global_count=global_count,
    )
