"""Governance evaluator: ordered permission checks for proposed actions.

Checks run in a fixed order and stop at the first denial:

1. engine disabled; past this point navigate is allowed without confirmation
2. read-only mode
3. per-action-type toggle
4. system read-only collection
5. rate limit (skipped when re-checking a preview that already counted)
6. matched permission rule (collection-specific, then global)
7. settings default confirmation flag

Any unexpected failure denies the action.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from action_governance.core.logging import get_logger
from action_governance.schemas.actions import extract_collection
from action_governance.services.policy_store import get_rule
from action_governance.services.rate_limiter import check_rate_limit

if TYPE_CHECKING:
    from uuid import UUID

    from sqlmodel.ext.asyncio.session import AsyncSession

    from action_governance.schemas.actions import ActorContext, ProposedAction
    from action_governance.services.policy_store import GovernanceSettingsProvider
    from action_governance.services.rate_limiter import RateLimitStatus

logger = get_logger(__name__)

CODE_ENGINE_DISABLED = "engine_disabled"
CODE_READ_ONLY_MODE = "read_only_mode"
CODE_ACTION_TYPE_DISABLED = "action_type_disabled"
CODE_COLLECTION_READ_ONLY = "collection_read_only"
CODE_RATE_LIMITED = "rate_limited"
CODE_RULE_DISABLED = "rule_disabled"
CODE_ROLE_EXCLUDED = "role_excluded"
CODE_ROLE_NOT_ALLOWED = "role_not_allowed"
CODE_INTERNAL_ERROR = "internal_error"


@dataclass(frozen=True)
class PermissionDecision:
    allowed: bool
    requires_confirmation: bool = False
    rejection_reason: str | None = None
    rejection_code: str | None = None
    matched_rule_id: UUID | None = None
    rate_limit: RateLimitStatus | None = None

    @classmethod
    def deny(
        cls,
        code: str,
        reason: str,
        *,
        matched_rule_id: UUID | None = None,
        rate_limit: RateLimitStatus | None = None,
    ) -> PermissionDecision:
        return cls(
            allowed=False,
            rejection_reason=reason,
            rejection_code=code,
            matched_rule_id=matched_rule_id,
            rate_limit=rate_limit,
        )


async def evaluate(
    session: AsyncSession,
    *,
    action: ProposedAction,
    actor: ActorContext,
    settings_provider: GovernanceSettingsProvider,
    enforce_rate_limit: bool = True,
) -> PermissionDecision:
    """Decide whether ``actor`` may perform ``action``; never raises."""
    try:
        return await _evaluate(
            session,
            action=action,
            actor=actor,
            settings_provider=settings_provider,
            enforce_rate_limit=enforce_rate_limit,
        )
    except Exception:
        logger.exception(
            "governance.evaluate.failed",
            extra={
                "user_id": str(actor.user_id),
                "action_type": action.action_type,
                "target": action.target,
            },
        )
        return PermissionDecision.deny(
            CODE_INTERNAL_ERROR,
            "Permission check failed due to an internal error",
        )


async def _evaluate(
    session: AsyncSession,
    *,
    action: ProposedAction,
    actor: ActorContext,
    settings_provider: GovernanceSettingsProvider,
    enforce_rate_limit: bool,
) -> PermissionDecision:
    settings = await settings_provider.get(session)
    action_type = action.action_type

    if not settings.enabled:
        return PermissionDecision.deny(
            CODE_ENGINE_DISABLED,
            "Action governance is disabled for this tenant",
        )
    if action_type == "navigate":
        return PermissionDecision(allowed=True, requires_confirmation=False)
    if settings.read_only_mode:
        return PermissionDecision.deny(
            CODE_READ_ONLY_MODE,
            "Action governance is in read-only mode",
        )
    if not settings.allows_action_type(action_type):
        return PermissionDecision.deny(
            CODE_ACTION_TYPE_DISABLED,
            f"{action_type} actions are disabled globally",
        )

    collection = extract_collection(action.target)
    if collection is not None and collection in settings.system_read_only_collections:
        return PermissionDecision.deny(
            CODE_COLLECTION_READ_ONLY,
            f"Collection '{collection}' is read-only",
        )

    rate_limit: RateLimitStatus | None = None
    if enforce_rate_limit:
        rate_limit = await check_rate_limit(session, user_id=actor.user_id, settings=settings)
    if rate_limit is not None and not rate_limit.allowed:
        return PermissionDecision.deny(
            CODE_RATE_LIMITED,
            f"Rate limit exceeded. Resets at {rate_limit.reset_at.isoformat()}",
            rate_limit=rate_limit,
        )

    rule = await get_rule(session, collection_code=collection, action_type=action_type)
    if rule is None:
        return PermissionDecision(
            allowed=True,
            requires_confirmation=settings.default_requires_confirmation,
            rate_limit=rate_limit,
        )

    if not rule.is_enabled:
        return PermissionDecision.deny(
            CODE_RULE_DISABLED,
            f"{action_type} actions are disabled for {rule.collection_code or 'global'}",
            matched_rule_id=rule.id,
            rate_limit=rate_limit,
        )
    if actor.user_role in (rule.excluded_roles or []):
        return PermissionDecision.deny(
            CODE_ROLE_EXCLUDED,
            f"Your role '{actor.user_role}' is excluded from this action",
            matched_rule_id=rule.id,
            rate_limit=rate_limit,
        )
    allowed_roles = rule.allowed_roles or []
    if allowed_roles and actor.user_role not in allowed_roles:
        return PermissionDecision.deny(
            CODE_ROLE_NOT_ALLOWED,
            f"Your role '{actor.user_role}' is not permitted for this action",
            matched_rule_id=rule.id,
            rate_limit=rate_limit,
        )
    return PermissionDecision(
        allowed=True,
        requires_confirmation=rule.requires_confirmation,
        matched_rule_id=rule.id,
        rate_limit=rate_limit,
    )
