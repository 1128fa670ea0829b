"""Administrative endpoints: governance settings, permission rules, and audit trail."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import TYPE_CHECKING
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from action_governance.api.actions import status_for
from action_governance.api.deps import (
    SESSION_DEP,
    SETTINGS_PROVIDER_DEP,
    get_action_executor,
    require_admin,
)
from action_governance.core.config import settings as app_settings
from action_governance.schemas.actions import ActorContext, RevertRequest, RevertResult
from action_governance.schemas.audit import ActionAuditEntryRead, AuditStatsRead, AuditTrailPage
from action_governance.schemas.errors import ErrorResponse
from action_governance.schemas.governance import (
    GovernanceSettingsRead,
    GovernanceSettingsUpdate,
    PermissionRuleCreate,
    PermissionRuleRead,
    PermissionRuleUpdate,
)
from action_governance.schemas.health import OkResponse
from action_governance.services import audit, policy_store

if TYPE_CHECKING:
    from sqlmodel.ext.asyncio.session import AsyncSession

    from action_governance.services.action_executor import ActionExecutor
    from action_governance.services.policy_store import GovernanceSettingsProvider

RUNTIME_ANNOTATION_TYPES = (datetime, UUID)

router = APIRouter(
    prefix="/governance",
    tags=["governance"],
    responses={
        status.HTTP_401_UNAUTHORIZED: {"model": ErrorResponse},
        status.HTTP_403_FORBIDDEN: {"model": ErrorResponse},
    },
)
ADMIN_DEP = Depends(require_admin)
EXECUTOR_DEP = Depends(get_action_executor)


def _to_entry_read(entry: object) -> ActionAuditEntryRead:
    return ActionAuditEntryRead.model_validate(entry, from_attributes=True)


@router.get("/settings", response_model=GovernanceSettingsRead)
async def read_settings(
    session: AsyncSession = SESSION_DEP,
    _admin: ActorContext = ADMIN_DEP,
) -> GovernanceSettingsRead:
    row = await policy_store.get_settings(session)
    return GovernanceSettingsRead.model_validate(row, from_attributes=True)


@router.put("/settings", response_model=GovernanceSettingsRead)
async def update_settings(
    payload: GovernanceSettingsUpdate,
    session: AsyncSession = SESSION_DEP,
    admin: ActorContext = ADMIN_DEP,
    settings_provider: GovernanceSettingsProvider = SETTINGS_PROVIDER_DEP,
) -> GovernanceSettingsRead:
    changes = payload.model_dump(exclude_unset=True, exclude_none=True)
    row = await policy_store.update_settings(session, changes=changes, updated_by=admin.user_id)
    settings_provider.invalidate()
    return GovernanceSettingsRead.model_validate(row, from_attributes=True)


@router.get("/rules", response_model=list[PermissionRuleRead])
async def list_rules(
    session: AsyncSession = SESSION_DEP,
    _admin: ActorContext = ADMIN_DEP,
) -> list[PermissionRuleRead]:
    rules = await policy_store.list_rules(session)
    return [PermissionRuleRead.model_validate(rule, from_attributes=True) for rule in rules]


@router.post("/rules", response_model=PermissionRuleRead)
async def upsert_rule(
    payload: PermissionRuleCreate,
    session: AsyncSession = SESSION_DEP,
    admin: ActorContext = ADMIN_DEP,
) -> PermissionRuleRead:
    """Create the rule for (collection, action type), replacing any existing one."""
    rule = await policy_store.upsert_rule(
        session,
        collection_code=payload.collection_code,
        action_type=payload.action_type,
        values=payload.model_dump(exclude={"collection_code", "action_type"}),
        actor_id=admin.user_id,
    )
    return PermissionRuleRead.model_validate(rule, from_attributes=True)


@router.put("/rules/{rule_id}", response_model=PermissionRuleRead)
async def update_rule(
    rule_id: UUID,
    payload: PermissionRuleUpdate,
    session: AsyncSession = SESSION_DEP,
    admin: ActorContext = ADMIN_DEP,
) -> PermissionRuleRead:
    rule = await policy_store.update_rule(
        session,
        rule_id=rule_id,
        values=payload.model_dump(exclude_unset=True, exclude_none=True),
        actor_id=admin.user_id,
    )
    if rule is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND)
    return PermissionRuleRead.model_validate(rule, from_attributes=True)


@router.delete("/rules/{rule_id}", response_model=OkResponse)
async def delete_rule(
    rule_id: UUID,
    session: AsyncSession = SESSION_DEP,
    _admin: ActorContext = ADMIN_DEP,
) -> OkResponse:
    if not await policy_store.delete_rule(session, rule_id=rule_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND)
    return OkResponse()


@router.get("/audit", response_model=AuditTrailPage)
async def query_audit_trail(
    session: AsyncSession = SESSION_DEP,
    _admin: ActorContext = ADMIN_DEP,
    user_id: UUID | None = None,
    action_type: str | None = None,
    status_filter: str | None = Query(default=None, alias="status"),
    collection: str | None = None,
    from_date: datetime | None = None,
    to_date: datetime | None = None,
    is_revertible: bool | None = None,
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
) -> AuditTrailPage:
    """Query the action audit trail, newest first."""
    entries, total = await audit.query_audit_trail(
        session,
        audit.AuditQueryFilters(
            user_id=user_id,
            action_type=action_type,
            status=status_filter,
            target_collection=collection,
            from_date=from_date,
            to_date=to_date,
            is_revertible=is_revertible,
            limit=limit,
            offset=offset,
        ),
    )
    return AuditTrailPage(
        items=[_to_entry_read(entry) for entry in entries],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/audit/stats", response_model=AuditStatsRead)
async def audit_stats(
    session: AsyncSession = SESSION_DEP,
    _admin: ActorContext = ADMIN_DEP,
    since: datetime | None = None,
) -> AuditStatsRead:
    stats = await audit.get_audit_stats(session, since=since)
    return AuditStatsRead.model_validate(stats, from_attributes=True)


@router.get("/audit/revertible", response_model=list[ActionAuditEntryRead])
async def revertible_actions(
    session: AsyncSession = SESSION_DEP,
    _admin: ActorContext = ADMIN_DEP,
    user_id: UUID | None = None,
    limit: int = Query(default=20, ge=1, le=200),
) -> list[ActionAuditEntryRead]:
    entries = await audit.list_revertible_actions(session, user_id=user_id, limit=limit)
    return [_to_entry_read(entry) for entry in entries]


@router.get("/audit/stuck", response_model=list[ActionAuditEntryRead])
async def stuck_actions(
    session: AsyncSession = SESSION_DEP,
    _admin: ActorContext = ADMIN_DEP,
    older_than_minutes: int | None = Query(default=None, ge=1),
    include_flagged: bool = False,
) -> list[ActionAuditEntryRead]:
    """Entries left pending or confirmed longer than the stuck threshold."""
    minutes = older_than_minutes or app_settings.stuck_action_after_minutes
    entries = await audit.find_stuck_entries(
        session,
        older_than=timedelta(minutes=minutes),
        include_flagged=include_flagged,
    )
    return [_to_entry_read(entry) for entry in entries]


@router.post("/audit/{audit_id}/revert", response_model=RevertResult)
async def revert_action(
    audit_id: UUID,
    response: Response,
    payload: RevertRequest | None = None,
    admin: ActorContext = ADMIN_DEP,
    executor: ActionExecutor = EXECUTOR_DEP,
) -> RevertResult:
    """Revert any user's completed action."""
    result = await executor.revert(
        audit_id,
        actor=admin,
        reason=payload.reason if payload else None,
    )
    response.status_code = status_for(result.error_code)
    return result
