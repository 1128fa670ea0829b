"""FastAPI application entrypoint and router wiring for the governance API."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import APIRouter, FastAPI, status
from fastapi.middleware.cors import CORSMiddleware

from action_governance.api.actions import router as actions_router
from action_governance.api.governance_admin import router as governance_admin_router
from action_governance.core.config import settings
from action_governance.core.error_handling import install_error_handling
from action_governance.core.logging import configure_logging, get_logger
from action_governance.db.session import init_db, session_scope
from action_governance.schemas.health import HealthStatusResponse
from action_governance.services.action_events import default_publisher
from action_governance.services.policy_store import GovernanceSettingsProvider, ensure_settings

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

configure_logging()
logger = get_logger(__name__)
OPENAPI_TAGS = [
    {
        "name": "health",
        "description": (
            "Service liveness and readiness checks used by infrastructure."
        ),
    },
    {
        "name": "actions",
        "description": "Submit, preview, confirm, and revert governed agent actions.",
    },
    {
        "name": "governance",
        "description": "Governance settings, permission rules, and audit trail administration.",
    },
]


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    """Initialize the schema and the governance settings row before serving."""
    logger.info(
        "app.lifecycle.starting",
        extra={"environment": settings.environment, "db_auto_migrate": settings.db_auto_migrate},
    )
    schema_mode = await init_db()
    async with session_scope() as session:
        await ensure_settings(session)
    logger.info("app.lifecycle.started", extra={"schema_mode": schema_mode})
    try:
        yield
    finally:
        logger.info("app.lifecycle.stopped")


app = FastAPI(
    title="Action Governance API",
    version="0.1.0",
    lifespan=lifespan,
    openapi_tags=OPENAPI_TAGS,
)
app.state.settings_provider = GovernanceSettingsProvider(
    ttl_seconds=settings.governance_settings_ttl_seconds,
)
app.state.event_publisher = default_publisher()

origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()]
if origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    logger.info("app.cors.enabled", extra={"origins_count": len(origins)})
else:
    logger.info("app.cors.disabled")

install_error_handling(app)


@app.get(
    "/healthz",
    tags=["health"],
    response_model=HealthStatusResponse,
    summary="Health Check",
    description="Lightweight liveness check endpoint.",
    responses={
        status.HTTP_200_OK: {
            "description": "Service is alive.",
            "content": {"application/json": {"example": {"ok": True}}},
        }
    },
)
def healthz() -> HealthStatusResponse:
    """Lightweight liveness check endpoint."""
    return HealthStatusResponse(ok=True)


@app.get(
    "/readyz",
    tags=["health"],
    response_model=HealthStatusResponse,
    summary="Readiness Check",
    description="Readiness check endpoint for service orchestration.",
)
def readyz() -> HealthStatusResponse:
    """Readiness check endpoint for service orchestration."""
    return HealthStatusResponse(ok=True)


api_v1 = APIRouter(prefix="/api/v1")
api_v1.include_router(actions_router)
api_v1.include_router(governance_admin_router)
app.include_router(api_v1)

logger.debug("app.routes.registered", extra={"count": len(app.routes)})
