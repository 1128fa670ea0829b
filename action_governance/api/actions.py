"""Agent action endpoints: submit, dry-run evaluation, and own-action history."""

from __future__ import annotations

from typing import TYPE_CHECKING
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status

from action_governance.api.deps import ACTOR_DEP, SESSION_DEP, get_action_executor
from action_governance.schemas.actions import (
    ActorContext,
    ExecutionOutcome,
    PermissionDecisionRead,
    ProposedAction,
    RevertRequest,
    RevertResult,
    SubmitActionRequest,
)
from action_governance.schemas.audit import ActionAuditEntryRead
from action_governance.schemas.errors import ErrorResponse
from action_governance.services import errors
from action_governance.services.audit import list_revertible_actions, list_user_actions

if TYPE_CHECKING:
    from sqlmodel.ext.asyncio.session import AsyncSession

    from action_governance.services.action_executor import ActionExecutor

router = APIRouter(
    prefix="/actions",
    tags=["actions"],
    responses={
        status.HTTP_401_UNAUTHORIZED: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
    },
)
EXECUTOR_DEP = Depends(get_action_executor)

_ERROR_STATUS: dict[str, int] = {
    error_type.code: error_type.status_code
    for error_type in (
        errors.PermissionDenied,
        errors.ConfirmationRequired,
        errors.PreviewNotFound,
        errors.PreviewAccessDenied,
        errors.PreviewInvalidState,
        errors.RateLimitExceeded,
        errors.ExecutionFailed,
        errors.RevertFailed,
        errors.AuditEntryNotFound,
        errors.InternalError,
    )
}


def status_for(error_code: str | None) -> int:
    """HTTP status for an outcome's error code (200 when there is none)."""
    if error_code is None:
        return status.HTTP_200_OK
    return _ERROR_STATUS.get(error_code, status.HTTP_500_INTERNAL_SERVER_ERROR)


@router.post("", response_model=ExecutionOutcome)
async def submit_action(
    payload: SubmitActionRequest,
    response: Response,
    actor: ActorContext = ACTOR_DEP,
    executor: ActionExecutor = EXECUTOR_DEP,
) -> ExecutionOutcome:
    """Submit an agent action, or confirm a previewed one with `preview_token`."""
    outcome = await executor.submit(payload.action, actor, preview_token=payload.preview_token)
    response.status_code = status_for(outcome.error_code)
    return outcome


@router.post("/evaluate", response_model=PermissionDecisionRead)
async def evaluate_action(
    action: ProposedAction,
    actor: ActorContext = ACTOR_DEP,
    executor: ActionExecutor = EXECUTOR_DEP,
) -> PermissionDecisionRead:
    decision = await executor.evaluate(action, actor)
    return PermissionDecisionRead(
        allowed=decision.allowed,
        requires_confirmation=decision.requires_confirmation,
        rejection_reason=decision.rejection_reason,
        rejection_code=decision.rejection_code,
        matched_rule_id=decision.matched_rule_id,
    )


@router.get("/mine", response_model=list[ActionAuditEntryRead])
async def list_my_actions(
    session: AsyncSession = SESSION_DEP,
    actor: ActorContext = ACTOR_DEP,
    limit: int = Query(default=20, ge=1, le=200),
) -> list[ActionAuditEntryRead]:
    entries = await list_user_actions(session, user_id=actor.user_id, limit=limit)
    return [ActionAuditEntryRead.model_validate(e, from_attributes=True) for e in entries]


@router.get("/mine/revertible", response_model=list[ActionAuditEntryRead])
async def list_my_revertible_actions(
    session: AsyncSession = SESSION_DEP,
    actor: ActorContext = ACTOR_DEP,
    limit: int = Query(default=20, ge=1, le=200),
) -> list[ActionAuditEntryRead]:
    entries = await list_revertible_actions(session, user_id=actor.user_id, limit=limit)
    return [ActionAuditEntryRead.model_validate(e, from_attributes=True) for e in entries]


@router.post("/mine/{audit_id}/revert", response_model=RevertResult)
async def revert_my_action(
    audit_id: UUID,
    response: Response,
    payload: RevertRequest | None = None,
    actor: ActorContext = ACTOR_DEP,
    executor: ActionExecutor = EXECUTOR_DEP,
) -> RevertResult:
    """Revert one of the caller's own completed actions."""
    result = await executor.revert(
        audit_id,
        actor=actor,
        reason=payload.reason if payload else None,
        owner_id=actor.user_id,
    )
    response.status_code = status_for(result.error_code)
    return result
