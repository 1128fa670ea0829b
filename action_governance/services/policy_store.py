"""Policy store: governance settings singleton and permission rule lookup."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

from sqlmodel import col

from action_governance.core.logging import get_logger
from action_governance.core.targets import normalize_collection
from action_governance.core.time import utcnow
from action_governance.models.governance_settings import GovernanceSettings
from action_governance.models.permission_rules import (
    GLOBAL_SCOPE_KEY,
    PermissionRule,
    scope_key_for,
)
from action_governance.services.errors import PolicyStoreUnavailable

if TYPE_CHECKING:
    from collections.abc import Callable
    from uuid import UUID

    from sqlmodel.ext.asyncio.session import AsyncSession

logger = get_logger(__name__)

SETTINGS_MUTABLE_FIELDS = frozenset(
    {
        "enabled",
        "read_only_mode",
        "allow_create",
        "allow_update",
        "allow_delete",
        "allow_execute",
        "default_requires_confirmation",
        "system_read_only_collections",
        "user_rate_limit_per_hour",
        "global_rate_limit_per_hour",
    },
)
RULE_MUTABLE_FIELDS = frozenset(
    {
        "is_enabled",
        "requires_confirmation",
        "allowed_roles",
        "excluded_roles",
        "description",
    },
)


@dataclass(frozen=True)
class GovernanceSettingsSnapshot:
    """Immutable copy of the settings row used for one evaluation."""

    enabled: bool
    read_only_mode: bool
    allow_create: bool
    allow_update: bool
    allow_delete: bool
    allow_execute: bool
    default_requires_confirmation: bool
    system_read_only_collections: frozenset[str]
    user_rate_limit_per_hour: int
    global_rate_limit_per_hour: int

    @classmethod
    def from_model(cls, row: GovernanceSettings) -> GovernanceSettingsSnapshot:
        return cls(
            enabled=row.enabled,
            read_only_mode=row.read_only_mode,
            allow_create=row.allow_create,
            allow_update=row.allow_update,
            allow_delete=row.allow_delete,
            allow_execute=row.allow_execute,
            default_requires_confirmation=row.default_requires_confirmation,
            system_read_only_collections=frozenset(
                normalize_collection(code) for code in row.system_read_only_collections or []
            ),
            user_rate_limit_per_hour=row.user_rate_limit_per_hour,
            global_rate_limit_per_hour=row.global_rate_limit_per_hour,
        )

    def allows_action_type(self, action_type: str) -> bool:
        if action_type == "navigate":
            return True
        toggles = {
            "create": self.allow_create,
            "update": self.allow_update,
            "delete": self.allow_delete,
            "execute": self.allow_execute,
        }
        return toggles.get(action_type, False)


async def get_settings(session: AsyncSession) -> GovernanceSettings:
    """Return the settings row, failing fast when it was never initialized."""
    row = await GovernanceSettings.objects.all().order_by(
        col(GovernanceSettings.updated_at).asc()
    ).first(session)
    if row is None:
        raise PolicyStoreUnavailable(
            "Governance settings are not initialized; refusing to evaluate actions",
        )
    return row


async def ensure_settings(session: AsyncSession) -> GovernanceSettings:
    """Create the settings row with safe defaults if it does not exist yet."""
    row = await GovernanceSettings.objects.all().first(session)
    if row is not None:
        return row
    row = GovernanceSettings()
    session.add(row)
    await session.commit()
    await session.refresh(row)
    logger.info("governance.settings.initialized", extra={"settings_id": str(row.id)})
    return row


async def update_settings(
    session: AsyncSession,
    *,
    changes: dict[str, object],
    updated_by: UUID,
) -> GovernanceSettings:
    """Apply an administrative settings update (last writer wins)."""
    row = await get_settings(session)
    unknown = set(changes) - SETTINGS_MUTABLE_FIELDS
    if unknown:
        raise ValueError(f"Unknown governance settings: {', '.join(sorted(unknown))}")
    for key, value in changes.items():
        setattr(row, key, value)
    row.updated_by = updated_by
    row.updated_at = utcnow()
    session.add(row)
    await session.commit()
    await session.refresh(row)
    logger.info(
        "governance.settings.updated",
        extra={"updated_by": str(updated_by), "fields": sorted(changes)},
    )
    return row


async def get_rule(
    session: AsyncSession,
    *,
    collection_code: str | None,
    action_type: str,
) -> PermissionRule | None:
    """Resolve the rule for an action: collection-specific first, then global."""
    if collection_code:
        specific = await PermissionRule.objects.filter_by(
            scope_key=scope_key_for(collection_code),
            action_type=action_type,
        ).first(session)
        if specific is not None:
            return specific
    return await PermissionRule.objects.filter_by(
        scope_key=scope_key_for(None),
        action_type=action_type,
    ).first(session)


async def list_rules(session: AsyncSession) -> list[PermissionRule]:
    return await PermissionRule.objects.all().order_by(
        col(PermissionRule.scope_key).asc(),
        col(PermissionRule.action_type).asc(),
    ).all(session)


async def upsert_rule(
    session: AsyncSession,
    *,
    collection_code: str | None,
    action_type: str,
    values: dict[str, object],
    actor_id: UUID,
) -> PermissionRule:
    """Create the rule for (collection, action type) or update the existing one."""
    unknown = set(values) - RULE_MUTABLE_FIELDS
    if unknown:
        raise ValueError(f"Unknown permission rule fields: {', '.join(sorted(unknown))}")
    scope_key = scope_key_for(collection_code)
    rule = await PermissionRule.objects.filter_by(
        scope_key=scope_key,
        action_type=action_type,
    ).first(session)
    now = utcnow()
    if rule is None:
        rule = PermissionRule(
            collection_code=None if scope_key == GLOBAL_SCOPE_KEY else scope_key,
            scope_key=scope_key,
            action_type=action_type,
            created_by=actor_id,
            created_at=now,
        )
    for key, value in values.items():
        setattr(rule, key, value)
    rule.updated_by = actor_id
    rule.updated_at = now
    session.add(rule)
    await session.commit()
    await session.refresh(rule)
    logger.info(
        "governance.rule.upserted",
        extra={"rule_id": str(rule.id), "scope": scope_key, "action_type": action_type},
    )
    return rule


async def update_rule(
    session: AsyncSession,
    *,
    rule_id: UUID,
    values: dict[str, object],
    actor_id: UUID,
) -> PermissionRule | None:
    rule = await PermissionRule.objects.by_id(rule_id).first(session)
    if rule is None:
        return None
    return await upsert_rule(
        session,
        collection_code=rule.collection_code,
        action_type=rule.action_type,
        values=values,
        actor_id=actor_id,
    )


async def delete_rule(session: AsyncSession, *, rule_id: UUID) -> bool:
    rule = await PermissionRule.objects.by_id(rule_id).first(session)
    if rule is None:
        return False
    await session.delete(rule)
    await session.commit()
    logger.info("governance.rule.deleted", extra={"rule_id": str(rule_id)})
    return True


class GovernanceSettingsProvider:
    """Injected settings source with a bounded reload interval.

    A snapshot is reused until ``ttl_seconds`` elapse or ``invalidate`` is
    called after an administrative update. ``ttl_seconds=0`` reloads on every
    call. Each provider owns its cache, so separate apps or tests never share
    settings state.
    """

    def __init__(
        self,
        *,
        ttl_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._snapshot: GovernanceSettingsSnapshot | None = None
        self._loaded_at = 0.0

    async def get(self, session: AsyncSession) -> GovernanceSettingsSnapshot:
        now = self._clock()
        if self._snapshot is not None and now - self._loaded_at < self.ttl_seconds:
            return self._snapshot
        snapshot = GovernanceSettingsSnapshot.from_model(await get_settings(session))
        self._snapshot = snapshot
        self._loaded_at = now
        return snapshot

    def invalidate(self) -> None:
        self._snapshot = None
