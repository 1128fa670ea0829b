# ruff: noqa: INP001
"""Policy store tests: settings lifecycle, rule resolution, and the settings provider."""

from __future__ import annotations

from uuid import uuid4

import pytest
from sqlmodel.ext.asyncio.session import AsyncSession

from action_governance.models.governance_settings import GovernanceSettings
from action_governance.models.permission_rules import GLOBAL_SCOPE_KEY, PermissionRule
from action_governance.services.errors import PolicyStoreUnavailable
from action_governance.services.policy_store import (
    GovernanceSettingsProvider,
    GovernanceSettingsSnapshot,
    delete_rule,
    ensure_settings,
    get_rule,
    get_settings,
    list_rules,
    update_rule,
    update_settings,
    upsert_rule,
)


@pytest.mark.asyncio
async def test_get_settings_fails_fast_when_row_missing(engine) -> None:
    async with AsyncSession(engine, expire_on_commit=False) as session:
        with pytest.raises(PolicyStoreUnavailable):
            await get_settings(session)


@pytest.mark.asyncio
async def test_ensure_settings_creates_safe_defaults_once(engine) -> None:
    async with AsyncSession(engine, expire_on_commit=False) as session:
        first = await ensure_settings(session)
        second = await ensure_settings(session)
        rows = await GovernanceSettings.objects.all().all(session)

    assert first.id == second.id
    assert len(rows) == 1
    assert first.enabled is True
    assert first.read_only_mode is False
    assert first.allow_delete is False
    assert first.allow_create and first.allow_update and first.allow_execute
    assert first.default_requires_confirmation is True
    assert first.user_rate_limit_per_hour == 100
    assert first.global_rate_limit_per_hour == 10000


@pytest.mark.asyncio
async def test_update_settings_applies_changes_and_rejects_unknown_fields(
    session: AsyncSession,
) -> None:
    admin_id = uuid4()
    row = await update_settings(
        session,
        changes={"allow_delete": True, "system_read_only_collections": ["audit_log"]},
        updated_by=admin_id,
    )
    assert row.allow_delete is True
    assert row.system_read_only_collections == ["audit_log"]
    assert row.updated_by == admin_id

    with pytest.raises(ValueError, match="Unknown governance settings"):
        await update_settings(session, changes={"id": uuid4()}, updated_by=admin_id)


@pytest.mark.asyncio
async def test_get_rule_prefers_collection_rule_over_global(session: AsyncSession) -> None:
    actor_id = uuid4()
    global_rule = await upsert_rule(
        session,
        collection_code=None,
        action_type="update",
        values={"requires_confirmation": False},
        actor_id=actor_id,
    )
    incident_rule = await upsert_rule(
        session,
        collection_code="incidents",
        action_type="update",
        values={"is_enabled": False},
        actor_id=actor_id,
    )

    assert global_rule.scope_key == GLOBAL_SCOPE_KEY
    resolved = await get_rule(session, collection_code="incidents", action_type="update")
    assert resolved is not None and resolved.id == incident_rule.id

    fallback = await get_rule(session, collection_code="changes", action_type="update")
    assert fallback is not None and fallback.id == global_rule.id

    assert await get_rule(session, collection_code="incidents", action_type="delete") is None


@pytest.mark.asyncio
async def test_upsert_rule_keeps_one_rule_per_scope(session: AsyncSession) -> None:
    actor_id = uuid4()
    first = await upsert_rule(
        session,
        collection_code="incidents",
        action_type="create",
        values={"allowed_roles": ["agent"]},
        actor_id=actor_id,
    )
    second = await upsert_rule(
        session,
        collection_code="incidents",
        action_type="create",
        values={"allowed_roles": ["agent", "admin"], "description": "widened"},
        actor_id=actor_id,
    )

    rules = await PermissionRule.objects.filter_by(scope_key="incidents").all(session)
    assert len(rules) == 1
    assert first.id == second.id
    assert second.allowed_roles == ["agent", "admin"]
    assert second.description == "widened"


@pytest.mark.asyncio
async def test_rule_collection_codes_are_normalized(session: AsyncSession) -> None:
    actor_id = uuid4()
    rule = await upsert_rule(
        session,
        collection_code="Service-Requests",
        action_type="create",
        values={"is_enabled": False},
        actor_id=actor_id,
    )
    same = await upsert_rule(
        session,
        collection_code="service_requests",
        action_type="create",
        values={"description": "frozen"},
        actor_id=actor_id,
    )

    assert rule.scope_key == "service_requests"
    assert rule.collection_code == "service_requests"
    assert same.id == rule.id
    resolved = await get_rule(session, collection_code="SERVICE-REQUESTS", action_type="create")
    assert resolved is not None and resolved.id == rule.id


def test_snapshot_normalizes_read_only_collections() -> None:
    row = GovernanceSettings(system_read_only_collections=["Incidents", "service-requests"])

    snapshot = GovernanceSettingsSnapshot.from_model(row)

    assert snapshot.system_read_only_collections == frozenset({"incidents", "service_requests"})


@pytest.mark.asyncio
async def test_update_and_delete_rule(session: AsyncSession) -> None:
    actor_id = uuid4()
    rule = await upsert_rule(
        session,
        collection_code=None,
        action_type="execute",
        values={},
        actor_id=actor_id,
    )

    updated = await update_rule(
        session,
        rule_id=rule.id,
        values={"excluded_roles": ["viewer"]},
        actor_id=actor_id,
    )
    assert updated is not None
    assert updated.excluded_roles == ["viewer"]
    assert await update_rule(session, rule_id=uuid4(), values={}, actor_id=actor_id) is None

    assert await delete_rule(session, rule_id=rule.id) is True
    assert await delete_rule(session, rule_id=rule.id) is False
    assert await list_rules(session) == []


@pytest.mark.asyncio
async def test_upsert_rule_rejects_unknown_fields(session: AsyncSession) -> None:
    with pytest.raises(ValueError, match="Unknown permission rule fields"):
        await upsert_rule(
            session,
            collection_code=None,
            action_type="create",
            values={"scope_key": "x"},
            actor_id=uuid4(),
        )


def test_snapshot_action_type_toggles() -> None:
    snapshot = GovernanceSettingsSnapshot.from_model(GovernanceSettings(allow_execute=False))

    assert snapshot.allows_action_type("navigate") is True
    assert snapshot.allows_action_type("create") is True
    assert snapshot.allows_action_type("delete") is False
    assert snapshot.allows_action_type("execute") is False
    assert snapshot.allows_action_type("teleport") is False


@pytest.mark.asyncio
async def test_provider_caches_until_ttl_or_invalidate(session: AsyncSession) -> None:
    now = [1000.0]
    provider = GovernanceSettingsProvider(ttl_seconds=30, clock=lambda: now[0])

    first = await provider.get(session)
    await update_settings(session, changes={"read_only_mode": True}, updated_by=uuid4())

    assert (await provider.get(session)).read_only_mode is first.read_only_mode is False

    now[0] += 31
    assert (await provider.get(session)).read_only_mode is True

    await update_settings(session, changes={"read_only_mode": False}, updated_by=uuid4())
    provider.invalidate()
    assert (await provider.get(session)).read_only_mode is False


@pytest.mark.asyncio
async def test_zero_ttl_provider_reloads_every_call(session: AsyncSession) -> None:
    provider = GovernanceSettingsProvider(ttl_seconds=0)
    assert (await provider.get(session)).enabled is True

    await update_settings(session, changes={"enabled": False}, updated_by=uuid4())
    assert (await provider.get(session)).enabled is False
