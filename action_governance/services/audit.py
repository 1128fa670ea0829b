"""Audit ledger for agent actions.

Status state machine::

    (new) -> rejected                                  terminal
    (new) -> pending -> confirmed -> completed | failed
             pending -> completed | failed
                                     completed -> reverted

Only the action executor drives transitions; everything here either creates
entries, moves them along an allowed edge, or reads them.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from sqlalchemy import func
from sqlmodel import col, select

from action_governance.core.logging import get_logger
from action_governance.core.time import utcnow
from action_governance.models.action_audit_entries import ActionAuditEntry
from action_governance.schemas.actions import (
    ActorContext,
    ProposedAction,
    action_params,
    extract_collection,
    extract_record_id,
)
from action_governance.services.errors import InvalidStatusTransition

if TYPE_CHECKING:
    from uuid import UUID

    from sqlmodel.ext.asyncio.session import AsyncSession

    from action_governance.models.base import ModelQuery

logger = get_logger(__name__)

STATUS_PENDING = "pending"
STATUS_CONFIRMED = "confirmed"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"
STATUS_REJECTED = "rejected"
STATUS_REVERTED = "reverted"

AUDIT_STATUSES = frozenset(
    {
        STATUS_PENDING,
        STATUS_CONFIRMED,
        STATUS_COMPLETED,
        STATUS_FAILED,
        STATUS_REJECTED,
        STATUS_REVERTED,
    },
)
INITIAL_STATUSES = frozenset({STATUS_PENDING, STATUS_REJECTED})
ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    STATUS_PENDING: frozenset({STATUS_CONFIRMED, STATUS_COMPLETED, STATUS_FAILED}),
    STATUS_CONFIRMED: frozenset({STATUS_COMPLETED, STATUS_FAILED}),
    STATUS_COMPLETED: frozenset({STATUS_REVERTED}),
    STATUS_FAILED: frozenset(),
    STATUS_REJECTED: frozenset(),
    STATUS_REVERTED: frozenset(),
}
IN_FLIGHT_STATUSES = frozenset({STATUS_PENDING, STATUS_CONFIRMED})
REVERTIBLE_ACTION_TYPES = frozenset({"create", "update", "delete"})
REVERT_ACTION_TYPE = "revert"


def is_revertible(entry: ActionAuditEntry) -> bool:
    """Revertible only when completed, of a data action type, with a before snapshot."""
    return (
        entry.status == STATUS_COMPLETED
        and entry.action_type in REVERTIBLE_ACTION_TYPES
        and entry.before_data is not None
    )


async def record_action(
    session: AsyncSession,
    *,
    actor: ActorContext,
    action: ProposedAction,
    status: str = STATUS_PENDING,
    matched_rule_id: UUID | None = None,
    error_code: str | None = None,
    error_message: str | None = None,
    preview_payload: dict[str, object] | None = None,
    commit: bool = True,
) -> ActionAuditEntry:
    """Create the audit entry for a newly evaluated action."""
    if status not in INITIAL_STATUSES:
        raise ValueError(f"Audit entries must start as pending or rejected, not {status!r}")
    entry = ActionAuditEntry(
        user_id=actor.user_id,
        user_role=actor.user_role,
        session_id=actor.session_id,
        ip_address=actor.ip_address,
        user_agent=actor.user_agent,
        action_type=action.action_type,
        action_label=action.label,
        target=action.target,
        target_collection=extract_collection(action.target),
        target_record_id=extract_record_id(action.target),
        action_params=action_params(action),
        preview_payload=preview_payload,
        status=status,
        matched_rule_id=matched_rule_id,
        error_code=error_code,
        error_message=error_message,
        created_at=utcnow(),
    )
    if status == STATUS_REJECTED:
        entry.completed_at = entry.created_at
    session.add(entry)
    if commit:
        await session.commit()
        await session.refresh(entry)
    logger.info(
        "action.audit.recorded",
        extra={
            "audit_id": str(entry.id),
            "user_id": str(entry.user_id),
            "action_type": entry.action_type,
            "status": entry.status,
        },
    )
    return entry


def transition_status(entry: ActionAuditEntry, new_status: str) -> ActionAuditEntry:
    """Move an entry along an allowed edge and stamp the matching timestamp."""
    allowed = ALLOWED_TRANSITIONS.get(entry.status, frozenset())
    if new_status not in allowed:
        raise InvalidStatusTransition(
            entry_id=entry.id,
            current=entry.status,
            requested=new_status,
        )
    now = utcnow()
    entry.status = new_status
    if new_status == STATUS_CONFIRMED:
        entry.confirmed_at = now
    elif new_status in (STATUS_COMPLETED, STATUS_FAILED):
        entry.completed_at = now
    elif new_status == STATUS_REVERTED:
        entry.reverted_at = now
    entry.is_revertible = is_revertible(entry)
    return entry


def mark_completed(
    entry: ActionAuditEntry,
    *,
    before_data: dict[str, object] | None,
    after_data: dict[str, object] | None,
    record_id: str | None,
    duration_ms: int,
) -> ActionAuditEntry:
    entry.before_data = before_data
    entry.after_data = after_data
    if record_id is not None:
        entry.target_record_id = record_id
    entry.duration_ms = duration_ms
    return transition_status(entry, STATUS_COMPLETED)


def mark_failed(
    entry: ActionAuditEntry,
    *,
    error_code: str,
    error_message: str,
    duration_ms: int,
) -> ActionAuditEntry:
    entry.error_code = error_code
    entry.error_message = error_message
    entry.duration_ms = duration_ms
    return transition_status(entry, STATUS_FAILED)


@dataclass(frozen=True)
class AuditQueryFilters:
    user_id: UUID | None = None
    action_type: str | None = None
    status: str | None = None
    target_collection: str | None = None
    from_date: datetime | None = None
    to_date: datetime | None = None
    is_revertible: bool | None = None
    limit: int = 50
    offset: int = 0


def _filtered(filters: AuditQueryFilters) -> ModelQuery[ActionAuditEntry]:
    query = ActionAuditEntry.objects.all()
    if filters.user_id is not None:
        query = query.filter(col(ActionAuditEntry.user_id) == filters.user_id)
    if filters.action_type is not None:
        query = query.filter(col(ActionAuditEntry.action_type) == filters.action_type)
    if filters.status is not None:
        query = query.filter(col(ActionAuditEntry.status) == filters.status)
    if filters.target_collection is not None:
        query = query.filter(col(ActionAuditEntry.target_collection) == filters.target_collection)
    if filters.from_date is not None:
        query = query.filter(col(ActionAuditEntry.created_at) > filters.from_date)
    if filters.to_date is not None:
        query = query.filter(col(ActionAuditEntry.created_at) < filters.to_date)
    if filters.is_revertible is not None:
        query = query.filter(col(ActionAuditEntry.is_revertible) == filters.is_revertible)
    return query


async def query_audit_trail(
    session: AsyncSession,
    filters: AuditQueryFilters,
) -> tuple[list[ActionAuditEntry], int]:
    """Return one page of matching entries (newest first) and the total count."""
    query = _filtered(filters)
    total = await query.count(session)
    entries = await query.order_by(
        col(ActionAuditEntry.created_at).desc()
    ).offset(filters.offset).limit(filters.limit).all(session)
    return entries, total


async def list_user_actions(
    session: AsyncSession,
    *,
    user_id: UUID,
    limit: int = 20,
) -> list[ActionAuditEntry]:
    entries, _ = await query_audit_trail(
        session,
        AuditQueryFilters(user_id=user_id, limit=limit),
    )
    return entries


async def list_revertible_actions(
    session: AsyncSession,
    *,
    user_id: UUID | None = None,
    limit: int = 20,
) -> list[ActionAuditEntry]:
    entries, _ = await query_audit_trail(
        session,
        AuditQueryFilters(
            user_id=user_id,
            status=STATUS_COMPLETED,
            is_revertible=True,
            limit=limit,
        ),
    )
    return entries


@dataclass(frozen=True)
class AuditStats:
    total_actions: int
    by_type: dict[str, int]
    by_status: dict[str, int]
    reverted_count: int
    failed_count: int
    rejected_count: int
    since: datetime


async def get_audit_stats(
    session: AsyncSession,
    *,
    since: datetime | None = None,
) -> AuditStats:
    """Aggregate counts by action type and status (default: last 30 days)."""
    since = since or utcnow() - timedelta(days=30)
    window = col(ActionAuditEntry.created_at) > since

    by_type_rows = await session.exec(
        select(ActionAuditEntry.action_type, func.count())
        .where(window)
        .group_by(col(ActionAuditEntry.action_type)),
    )
    by_status_rows = await session.exec(
        select(ActionAuditEntry.status, func.count())
        .where(window)
        .group_by(col(ActionAuditEntry.status)),
    )
    by_type = {str(action_type): int(count) for action_type, count in by_type_rows}
    by_status = {str(status): int(count) for status, count in by_status_rows}
    return AuditStats(
        total_actions=sum(by_type.values()),
        by_type=by_type,
        by_status=by_status,
        reverted_count=by_status.get(STATUS_REVERTED, 0),
        failed_count=by_status.get(STATUS_FAILED, 0),
        rejected_count=by_status.get(STATUS_REJECTED, 0),
        since=since,
    )


async def find_stuck_entries(
    session: AsyncSession,
    *,
    older_than: timedelta,
    include_flagged: bool = False,
    limit: int = 100,
) -> list[ActionAuditEntry]:
    """Entries still pending/confirmed after ``older_than``.

    These are either previews nobody confirmed or executions interrupted
    between the side effect and audit finalization.
    """
    cutoff = utcnow() - older_than
    query = ActionAuditEntry.objects.filter(
        col(ActionAuditEntry.status).in_(sorted(IN_FLIGHT_STATUSES)),
        col(ActionAuditEntry.created_at) < cutoff,
    )
    if not include_flagged:
        query = query.filter(col(ActionAuditEntry.flagged_for_review_at).is_(None))
    return await query.order_by(col(ActionAuditEntry.created_at).asc()).limit(limit).all(session)


async def flag_for_review(
    session: AsyncSession,
    entries: list[ActionAuditEntry],
    *,
    commit: bool = True,
) -> int:
    """Stamp stuck entries for manual review without touching their status."""
    now = utcnow()
    for entry in entries:
        entry.flagged_for_review_at = now
        session.add(entry)
    if commit and entries:
        await session.commit()
    return len(entries)
