# ruff: noqa: INP001
"""Pytest configuration shared across tests."""

import os
import sys
from collections.abc import AsyncIterator
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# Deterministic settings during import-time initialization, regardless of shell env.
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["DB_AUTO_MIGRATE"] = "false"
os.environ["ACTION_EVENTS_ENABLED"] = "false"
os.environ["RQ_DISPATCH_THROTTLE_SECONDS"] = "0"

import pytest_asyncio  # noqa: E402
import sqlalchemy as sa  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine  # noqa: E402
from sqlmodel import SQLModel  # noqa: E402
from sqlmodel.ext.asyncio.session import AsyncSession  # noqa: E402

from action_governance import models  # noqa: E402,F401
from action_governance.services.action_events.queue import ActionEvent  # noqa: E402
from action_governance.services.policy_store import (  # noqa: E402
    GovernanceSettingsProvider,
    ensure_settings,
)

# Stand-in for the tenant's business tables.
BUSINESS_METADATA = sa.MetaData()
INCIDENTS = sa.Table(
    "incidents",
    BUSINESS_METADATA,
    sa.Column("id", sa.String(), primary_key=True),
    sa.Column("title", sa.String(), nullable=True),
    sa.Column("priority", sa.String(), nullable=True),
    sa.Column("state", sa.String(), nullable=True),
)
SERVICE_REQUESTS = sa.Table(
    "service_requests",
    BUSINESS_METADATA,
    sa.Column("id", sa.String(), primary_key=True),
    sa.Column("summary", sa.String(), nullable=True),
)


async def make_engine() -> AsyncEngine:
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.connect() as conn, conn.begin():
        await conn.run_sync(SQLModel.metadata.create_all)
        await conn.run_sync(BUSINESS_METADATA.create_all)
    return engine


class RecordingPublisher:
    """Collects published action events in memory."""

    def __init__(self, *, accept: bool = True) -> None:
        self.events: list[ActionEvent] = []
        self.accept = accept

    def publish(self, event: ActionEvent) -> bool:
        self.events.append(event)
        return self.accept

    def types(self) -> list[str]:
        return [event.event_type for event in self.events]


@pytest_asyncio.fixture
async def engine() -> AsyncIterator[AsyncEngine]:
    engine = await make_engine()
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def session(engine: AsyncEngine) -> AsyncIterator[AsyncSession]:
    async with AsyncSession(engine, expire_on_commit=False) as session:
        await ensure_settings(session)
        yield session


@pytest_asyncio.fixture
async def provider() -> GovernanceSettingsProvider:
    return GovernanceSettingsProvider(ttl_seconds=0)


@pytest_asyncio.fixture
async def publisher() -> RecordingPublisher:
    return RecordingPublisher()
