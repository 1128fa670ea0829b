# ruff: noqa: INP001
"""HTTP tests for the action and governance admin routers."""

from __future__ import annotations

from uuid import uuid4

import pytest
from fastapi import APIRouter, FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker
from sqlmodel.ext.asyncio.session import AsyncSession

from action_governance.api.actions import router as actions_router
from action_governance.api.actions import status_for
from action_governance.api.governance_admin import router as governance_admin_router
from action_governance.core.error_handling import install_error_handling
from action_governance.db.session import get_session
from action_governance.services.policy_store import GovernanceSettingsProvider, ensure_settings
from conftest import RecordingPublisher

CREATE_INCIDENT = {
    "action_type": "create",
    "label": "Open incident",
    "target": "/incidents/new",
    "params": {"values": {"title": "Printer down"}},
}


def _headers(user_id: str | None = None, role: str = "agent") -> dict[str, str]:
    return {
        "X-User-Id": user_id or str(uuid4()),
        "X-User-Role": role,
        "X-Session-Id": "chat-42",
    }


async def _build_test_app(
    engine: AsyncEngine,
    *,
    seed_settings: bool = True,
) -> tuple[FastAPI, RecordingPublisher]:
    session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    if seed_settings:
        async with session_maker() as session:
            await ensure_settings(session)

    app = FastAPI()
    api_v1 = APIRouter(prefix="/api/v1")
    api_v1.include_router(actions_router)
    api_v1.include_router(governance_admin_router)
    app.include_router(api_v1)
    install_error_handling(app)

    publisher = RecordingPublisher()
    app.state.settings_provider = GovernanceSettingsProvider(ttl_seconds=0)
    app.state.event_publisher = publisher

    async def _override_get_session() -> AsyncSession:
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_session] = _override_get_session
    return app, publisher


def _client(app: FastAPI) -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver")


@pytest.mark.parametrize(
    ("code", "expected"),
    [
        (None, 200),
        ("CONFIRMATION_REQUIRED", 202),
        ("PERMISSION_DENIED", 403),
        ("PREVIEW_NOT_FOUND", 404),
        ("PREVIEW_INVALID_STATE", 409),
        ("RATE_LIMIT_EXCEEDED", 429),
        ("EXECUTION_FAILED", 500),
        ("SOMETHING_NEW", 500),
    ],
)
def test_status_for_error_codes(code: str | None, expected: int) -> None:
    assert status_for(code) == expected


@pytest.mark.asyncio
async def test_requests_without_identity_are_unauthorized(engine: AsyncEngine) -> None:
    app, _ = await _build_test_app(engine)

    async with _client(app) as client:
        missing = await client.post("/api/v1/actions", json={"action": CREATE_INCIDENT})
        malformed = await client.get("/api/v1/actions/mine", headers={"X-User-Id": "nope"})

    assert missing.status_code == 401
    assert malformed.status_code == 401
    assert malformed.json()["detail"] == "X-User-Id must be a UUID"


@pytest.mark.asyncio
async def test_submit_preview_then_confirm(engine: AsyncEngine) -> None:
    app, publisher = await _build_test_app(engine)
    headers = _headers()

    async with _client(app) as client:
        preview = await client.post(
            "/api/v1/actions",
            json={"action": CREATE_INCIDENT},
            headers=headers,
        )
        token = preview.json()["preview_token"]
        confirmed = await client.post(
            "/api/v1/actions",
            json={"action": CREATE_INCIDENT, "preview_token": token},
            headers=headers,
        )
        replayed = await client.post(
            "/api/v1/actions",
            json={"action": CREATE_INCIDENT, "preview_token": token},
            headers=headers,
        )
        mine = await client.get("/api/v1/actions/mine", headers=headers)
        revertible = await client.get("/api/v1/actions/mine/revertible", headers=headers)

    assert preview.status_code == 202
    assert preview.json()["requires_confirmation"] is True
    assert confirmed.status_code == 200
    assert confirmed.json()["success"] is True
    assert confirmed.json()["data"]["title"] == "Printer down"
    assert replayed.status_code == 409
    assert publisher.types() == ["action.create"]

    assert mine.status_code == 200
    assert [item["id"] for item in mine.json()] == [token]
    assert mine.json()[0]["session_id"] == "chat-42"
    assert [item["id"] for item in revertible.json()] == [token]


@pytest.mark.asyncio
async def test_invalid_action_payload_is_rejected(engine: AsyncEngine) -> None:
    app, _ = await _build_test_app(engine)

    async with _client(app) as client:
        resp = await client.post(
            "/api/v1/actions",
            json={"action": {"action_type": "update", "target": "/incidents/new", "params": {}}},
            headers=_headers(),
        )

    assert resp.status_code == 422
    assert isinstance(resp.json()["detail"], list)


@pytest.mark.asyncio
async def test_evaluate_is_a_dry_run(engine: AsyncEngine) -> None:
    app, _ = await _build_test_app(engine)
    headers = _headers()

    async with _client(app) as client:
        allowed = await client.post("/api/v1/actions/evaluate", json=CREATE_INCIDENT, headers=headers)
        denied = await client.post(
            "/api/v1/actions/evaluate",
            json={"action_type": "delete", "target": "/incidents/INC-1"},
            headers=headers,
        )
        mine = await client.get("/api/v1/actions/mine", headers=headers)

    assert allowed.json() == {
        "allowed": True,
        "requires_confirmation": True,
        "rejection_reason": None,
        "rejection_code": None,
        "matched_rule_id": None,
    }
    assert denied.json()["rejection_code"] == "action_type_disabled"
    assert mine.json() == []


@pytest.mark.asyncio
async def test_admin_endpoints_require_admin_role(engine: AsyncEngine) -> None:
    app, _ = await _build_test_app(engine)

    async with _client(app) as client:
        resp = await client.get("/api/v1/governance/settings", headers=_headers(role="agent"))

    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_admin_manages_settings_and_rules(engine: AsyncEngine) -> None:
    app, _ = await _build_test_app(engine)
    admin = _headers(role="admin")

    async with _client(app) as client:
        settings_resp = await client.put(
            "/api/v1/governance/settings",
            json={"default_requires_confirmation": False},
            headers=admin,
        )
        rule = await client.post(
            "/api/v1/governance/rules",
            json={
                "collection_code": "incidents",
                "action_type": "create",
                "excluded_roles": ["intern"],
            },
            headers=admin,
        )
        rule_id = rule.json()["id"]
        updated = await client.put(
            f"/api/v1/governance/rules/{rule_id}",
            json={"requires_confirmation": False, "description": "no interns"},
            headers=admin,
        )
        rules = await client.get("/api/v1/governance/rules", headers=admin)
        intern = await client.post(
            "/api/v1/actions",
            json={"action": CREATE_INCIDENT},
            headers=_headers(role="intern"),
        )
        agent = await client.post(
            "/api/v1/actions",
            json={"action": CREATE_INCIDENT},
            headers=_headers(role="agent"),
        )
        deleted = await client.delete(f"/api/v1/governance/rules/{rule_id}", headers=admin)
        missing = await client.delete(f"/api/v1/governance/rules/{rule_id}", headers=admin)

    assert settings_resp.status_code == 200
    assert settings_resp.json()["default_requires_confirmation"] is False
    assert rule.status_code == 200
    assert updated.json()["description"] == "no interns"
    assert updated.json()["excluded_roles"] == ["intern"]
    assert [item["id"] for item in rules.json()] == [rule_id]
    assert intern.status_code == 403
    assert intern.json()["message"] == "Your role 'intern' is excluded from this action"
    assert agent.status_code == 200
    assert deleted.json() == {"ok": True}
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_admin_audit_trail_stats_and_revert(engine: AsyncEngine) -> None:
    app, publisher = await _build_test_app(engine)
    admin = _headers(role="admin")
    owner_id = str(uuid4())

    async with _client(app) as client:
        await client.put(
            "/api/v1/governance/settings",
            json={"default_requires_confirmation": False},
            headers=admin,
        )
        created = await client.post(
            "/api/v1/actions",
            json={"action": CREATE_INCIDENT},
            headers=_headers(owner_id),
        )
        audit_id = created.json()["audit_id"]

        stranger = await client.post(
            f"/api/v1/actions/mine/{audit_id}/revert",
            json={"reason": "not mine"},
            headers=_headers(),
        )
        trail = await client.get(
            "/api/v1/governance/audit",
            params={"user_id": owner_id, "status": "completed"},
            headers=admin,
        )
        stats = await client.get("/api/v1/governance/audit/stats", headers=admin)
        revertible = await client.get("/api/v1/governance/audit/revertible", headers=admin)
        reverted = await client.post(
            f"/api/v1/governance/audit/{audit_id}/revert",
            json={"reason": "duplicate ticket"},
            headers=admin,
        )
        again = await client.post(
            f"/api/v1/actions/mine/{audit_id}/revert",
            headers=_headers(owner_id),
        )
        stuck = await client.get("/api/v1/governance/audit/stuck", headers=admin)

    assert created.status_code == 200
    assert stranger.status_code == 403
    assert stranger.json()["error_code"] == "PERMISSION_DENIED"

    page = trail.json()
    assert page["total"] == 1
    assert page["items"][0]["id"] == audit_id
    assert page["items"][0]["before_data"] == {}

    assert stats.json()["total_actions"] == 1
    assert stats.json()["by_type"] == {"create": 1}
    assert [item["id"] for item in revertible.json()] == [audit_id]

    assert reverted.status_code == 200
    assert reverted.json()["success"] is True
    assert reverted.json()["revert_entry_id"]
    assert again.status_code == 409
    assert publisher.types() == ["action.create", "action.revert"]
    assert stuck.json() == []


@pytest.mark.asyncio
async def test_openapi_documents_error_envelope(engine: AsyncEngine) -> None:
    app, _ = await _build_test_app(engine)

    schema = app.openapi()

    assert "ErrorResponse" in schema["components"]["schemas"]
    submit = schema["paths"]["/api/v1/actions"]["post"]
    assert "401" in submit["responses"]
    settings_get = schema["paths"]["/api/v1/governance/settings"]["get"]
    assert "403" in settings_get["responses"]
