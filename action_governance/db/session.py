"""Governance database: async engine, request sessions, and schema bootstrap.

The audit ledger, the policy tables and the tenant's business tables live in
one database. Request handlers share a single session so a business write and
the audit entry that records it commit together.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from alembic.config import Config
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from action_governance import models as _models
from action_governance.core.config import PROJECT_ROOT, settings
from action_governance.core.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, AsyncIterator

# Registers every table on SQLModel.metadata before create_all runs.
_MODEL_REGISTRY = _models

ALEMBIC_INI = PROJECT_ROOT / "alembic.ini"
MIGRATION_VERSIONS_DIR = PROJECT_ROOT / "migrations" / "versions"

# Bare URL schemes mapped to the async driver this service runs on.
_ASYNC_DRIVERS = {
    "postgres": "postgresql+psycopg",
    "postgresql": "postgresql+psycopg",
    "sqlite": "sqlite+aiosqlite",
}

logger = get_logger(__name__)


def _normalize_database_url(database_url: str) -> str:
    """Return ``database_url`` with a bare scheme swapped for its async driver."""
    scheme, sep, rest = database_url.partition("://")
    if not sep or scheme not in _ASYNC_DRIVERS:
        return database_url
    return f"{_ASYNC_DRIVERS[scheme]}://{rest}"


def create_governance_engine(database_url: str) -> AsyncEngine:
    url = _normalize_database_url(database_url)
    if url.startswith("sqlite"):
        return create_async_engine(url)
    return create_async_engine(url, pool_pre_ping=True)


async_engine: AsyncEngine = create_governance_engine(settings.database_url)
async_session_maker = async_sessionmaker(
    async_engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


def _alembic_config() -> Config:
    alembic_cfg = Config(str(ALEMBIC_INI))
    alembic_cfg.attributes["configure_logger"] = False
    return alembic_cfg


def run_migrations() -> None:
    """Upgrade the governance tables to the latest Alembic revision."""
    from alembic import command

    logger.info("db.migrations.started", extra={"revision": "head"})
    command.upgrade(_alembic_config(), "head")
    logger.info("db.migrations.completed", extra={"revision": "head"})


async def init_db() -> str:
    """Create or upgrade the governance tables; returns how it was done.

    With ``DB_AUTO_MIGRATE`` and at least one revision present, Alembic runs
    in a worker thread. Otherwise the tables are created from model metadata,
    which is a no-op for tables that already exist.
    """
    if settings.db_auto_migrate:
        if any(MIGRATION_VERSIONS_DIR.glob("*.py")):
            await asyncio.to_thread(run_migrations)
            return "migrations"
        logger.warning(
            "db.migrations.missing",
            extra={"versions_dir": str(MIGRATION_VERSIONS_DIR)},
        )

    async with async_engine.connect() as conn, conn.begin():
        await conn.run_sync(SQLModel.metadata.create_all)
    logger.info("db.schema.created", extra={"tables": len(SQLModel.metadata.tables)})
    return "create_all"


async def _discard_uncommitted(session: AsyncSession) -> None:
    try:
        if not session.in_transaction():
            return
        await session.rollback()
    except SQLAlchemyError:
        logger.exception("db.session.rollback_failed")


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield the request session; work left uncommitted is rolled back."""
    async with async_session_maker() as session:
        try:
            yield session
        finally:
            await _discard_uncommitted(session)


@asynccontextmanager
async def session_scope() -> AsyncIterator[AsyncSession]:
    """Session for scripts and workers outside the request cycle."""
    async with async_session_maker() as session:
        try:
            yield session
        finally:
            await _discard_uncommitted(session)
