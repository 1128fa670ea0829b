# ruff: noqa: INP001
"""Request ids, request logging, and error envelopes on the governance API."""

from __future__ import annotations

from uuid import UUID

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient, Response
from sqlalchemy.ext.asyncio import AsyncEngine
from starlette.requests import Request

from action_governance.core import error_handling
from action_governance.core.error_handling import (
    REQUEST_ID_HEADER,
    _governance_exception_handler,
    _http_exception_exception_handler,
    _request_validation_exception_handler,
    _response_validation_exception_handler,
)
from test_actions_api import CREATE_INCIDENT, _build_test_app, _headers


def _client(app: FastAPI) -> AsyncClient:
    # Unhandled errors must come back as responses, not be re-raised into the test.
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    return AsyncClient(transport=transport, base_url="http://testserver")


def _assert_request_id(resp: Response) -> str:
    request_id = resp.json().get("request_id")
    assert isinstance(request_id, str) and request_id
    assert resp.headers.get(REQUEST_ID_HEADER) == request_id
    return request_id


@pytest.mark.asyncio
async def test_missing_identity_returns_401_with_request_id(engine: AsyncEngine) -> None:
    app, _ = await _build_test_app(engine)

    async with _client(app) as client:
        resp = await client.post("/api/v1/actions", json={"action": CREATE_INCIDENT})

    assert resp.status_code == 401
    assert resp.json()["detail"] == "Unauthorized"
    _assert_request_id(resp)


@pytest.mark.asyncio
async def test_gateway_request_id_is_trimmed_and_echoed(engine: AsyncEngine) -> None:
    app, _ = await _build_test_app(engine)

    async with _client(app) as client:
        resp = await client.get(
            "/api/v1/governance/settings",
            headers={**_headers(role="agent"), REQUEST_ID_HEADER: "  gw-7f3a  "},
        )

    assert resp.status_code == 403
    assert resp.json()["request_id"] == "gw-7f3a"
    assert resp.headers[REQUEST_ID_HEADER] == "gw-7f3a"


@pytest.mark.asyncio
async def test_non_json_action_body_is_a_validation_error(engine: AsyncEngine) -> None:
    app, _ = await _build_test_app(engine)

    async with _client(app) as client:
        resp = await client.post(
            "/api/v1/actions",
            content=b"\xffopen an incident",
            headers={**_headers(), "content-type": "text/plain"},
        )

    assert resp.status_code == 422
    assert isinstance(resp.json()["detail"], list)
    _assert_request_id(resp)


@pytest.mark.asyncio
async def test_missing_policy_settings_return_governance_envelope(engine: AsyncEngine) -> None:
    app, _ = await _build_test_app(engine, seed_settings=False)

    async with _client(app) as client:
        resp = await client.get("/api/v1/governance/settings", headers=_headers(role="admin"))

    assert resp.status_code == 500
    body = resp.json()
    assert body["code"] == "POLICY_STORE_UNAVAILABLE"
    assert body["detail"].startswith("Governance settings are not initialized")
    assert "audit_id" not in body
    _assert_request_id(resp)


@pytest.mark.asyncio
async def test_failed_execution_returns_500_with_audit_reference(engine: AsyncEngine) -> None:
    app, publisher = await _build_test_app(engine)
    admin = _headers(role="admin")

    async with _client(app) as client:
        await client.put(
            "/api/v1/governance/settings",
            json={"default_requires_confirmation": False},
            headers=admin,
        )
        resp = await client.post(
            "/api/v1/actions",
            json={
                "action": {
                    "action_type": "create",
                    "target": "/incidents/new",
                    "params": {"values": {"no_such_column": "x"}},
                },
            },
            headers=_headers(),
        )
        trail = await client.get(
            "/api/v1/governance/audit",
            params={"status": "failed"},
            headers=admin,
        )

    assert resp.status_code == 500
    body = resp.json()
    assert body["error_code"] == "EXECUTION_FAILED"
    audit_id = UUID(body["audit_id"])
    assert body["message"] == f"The action could not be completed. Reference: {audit_id}"
    assert resp.headers.get(REQUEST_ID_HEADER)
    assert [item["id"] for item in trail.json()["items"]] == [str(audit_id)]
    assert publisher.events == []


@pytest.mark.asyncio
async def test_unhandled_error_in_admin_route_returns_500(
    engine: AsyncEngine,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    app, _ = await _build_test_app(engine)

    async def _broken_list_rules(session: object) -> list[object]:
        raise RuntimeError("rules table unreadable")

    monkeypatch.setattr(
        "action_governance.services.policy_store.list_rules",
        _broken_list_rules,
    )

    async with _client(app) as client:
        resp = await client.get("/api/v1/governance/rules", headers=_headers(role="admin"))

    assert resp.status_code == 500
    assert resp.json()["detail"] == "Internal Server Error"
    assert "rules table unreadable" not in resp.text
    _assert_request_id(resp)


@pytest.mark.asyncio
async def test_slow_request_is_logged_as_warning(
    engine: AsyncEngine,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    warnings: list[tuple[str, dict[str, object]]] = []
    ticks = iter((10.0, 10.5))
    monkeypatch.setattr(error_handling.settings, "request_log_slow_ms", 100)
    monkeypatch.setattr(error_handling, "perf_counter", lambda: next(ticks))
    monkeypatch.setattr(
        error_handling.logger,
        "warning",
        lambda message, *args, **kwargs: warnings.append((message, kwargs.get("extra", {}))),
    )
    app, _ = await _build_test_app(engine)

    async with _client(app) as client:
        resp = await client.get("/api/v1/actions/mine", headers=_headers())

    assert resp.status_code == 200
    assert len(warnings) == 1
    message, extra = warnings[0]
    assert message == "http.request.slow"
    assert extra["path"] == "/api/v1/actions/mine"
    assert extra["duration_ms"] == 500.0
    assert extra["slow_threshold_ms"] == 100


@pytest.mark.asyncio
@pytest.mark.parametrize(("include_health", "expected"), [(False, []), (True, ["/healthz"])])
async def test_health_checks_are_logged_only_when_enabled(
    engine: AsyncEngine,
    monkeypatch: pytest.MonkeyPatch,
    include_health: bool,
    expected: list[str],
) -> None:
    logged: list[str] = []
    monkeypatch.setattr(error_handling.settings, "request_log_include_health", include_health)
    monkeypatch.setattr(
        error_handling.logger,
        "info",
        lambda message, *args, **kwargs: logged.append(kwargs["extra"]["path"]),
    )
    app, _ = await _build_test_app(engine)
    app.add_api_route("/healthz", lambda: {"ok": True})

    async with _client(app) as client:
        resp = await client.get("/healthz")

    assert resp.status_code == 200
    assert resp.headers.get(REQUEST_ID_HEADER)
    assert logged == expected


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("handler", "expected"),
    [
        (_request_validation_exception_handler, "RequestValidationError"),
        (_response_validation_exception_handler, "ResponseValidationError"),
        (_http_exception_exception_handler, "StarletteHTTPException"),
        (_governance_exception_handler, "GovernanceError"),
    ],
)
async def test_handlers_reject_foreign_exceptions(handler, expected: str) -> None:  # type: ignore[no-untyped-def]
    request = Request({"type": "http", "headers": [], "state": {}})

    with pytest.raises(TypeError, match=f"Expected {expected}"):
        await handler(request, Exception("x"))
