"""Reusable FastAPI dependencies for caller identity and engine wiring.

Caller identity is not authenticated here: an upstream gateway injects the
trusted ``X-User-Id`` / ``X-User-Role`` / ``X-Session-Id`` headers. Routes
compose from these dependencies instead of reading headers themselves.
"""

from __future__ import annotations

from typing import TYPE_CHECKING
from uuid import UUID

from fastapi import Depends, Header, HTTPException, Request, status

from action_governance.core.config import settings
from action_governance.db.session import get_session
from action_governance.schemas.actions import ActorContext
from action_governance.services.action_executor import ActionExecutor
from action_governance.services.data_store import SqlBusinessDataStore

if TYPE_CHECKING:
    from sqlmodel.ext.asyncio.session import AsyncSession

    from action_governance.services.action_events.queue import ActionEventPublisher
    from action_governance.services.policy_store import GovernanceSettingsProvider

SESSION_DEP = Depends(get_session)


def get_actor(
    request: Request,
    x_user_id: str | None = Header(default=None),
    x_user_role: str | None = Header(default=None),
    x_session_id: str | None = Header(default=None),
    user_agent: str | None = Header(default=None),
) -> ActorContext:
    """Build the caller context from gateway-injected headers."""
    if not x_user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED)
    try:
        user_id = UUID(x_user_id.strip())
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-User-Id must be a UUID",
        ) from exc
    return ActorContext(
        user_id=user_id,
        user_role=(x_user_role or "user").strip() or "user",
        session_id=x_session_id,
        ip_address=request.client.host if request.client else None,
        user_agent=user_agent,
    )


ACTOR_DEP = Depends(get_actor)


def require_admin(actor: ActorContext = ACTOR_DEP) -> ActorContext:
    """Require one of the configured governance admin roles."""
    if actor.user_role not in settings.admin_role_set:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN)
    return actor


def get_settings_provider(request: Request) -> GovernanceSettingsProvider:
    return request.app.state.settings_provider


def get_event_publisher(request: Request) -> ActionEventPublisher:
    return request.app.state.event_publisher


SETTINGS_PROVIDER_DEP = Depends(get_settings_provider)
EVENT_PUBLISHER_DEP = Depends(get_event_publisher)


def get_action_executor(
    session: AsyncSession = SESSION_DEP,
    settings_provider: GovernanceSettingsProvider = SETTINGS_PROVIDER_DEP,
    publisher: ActionEventPublisher = EVENT_PUBLISHER_DEP,
) -> ActionExecutor:
    """Executor bound to the request session and the app's shared collaborators."""
    return ActionExecutor(
        session,
        data_store=SqlBusinessDataStore(session),
        publisher=publisher,
        settings_provider=settings_provider,
    )
