"""Singleton governance settings row read on every governance check."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column
from sqlmodel import Field

from action_governance.core.time import utcnow
from action_governance.models.base import QueryModel

RUNTIME_ANNOTATION_TYPES = (datetime,)


class GovernanceSettings(QueryModel, table=True):
    """Feature toggles, rate thresholds, and read-only collections."""

    __tablename__ = "governance_settings"  # pyright: ignore[reportAssignmentType]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    enabled: bool = Field(default=True)
    read_only_mode: bool = Field(default=False)
    allow_create: bool = Field(default=True)
    allow_update: bool = Field(default=True)
    allow_delete: bool = Field(default=False)
    allow_execute: bool = Field(default=True)
    default_requires_confirmation: bool = Field(default=True)
    system_read_only_collections: list[str] = Field(
        default_factory=list, sa_column=Column(JSON, nullable=False)
    )
    user_rate_limit_per_hour: int = Field(default=100, ge=0)
    global_rate_limit_per_hour: int = Field(default=10000, ge=0)
    updated_by: UUID | None = None
    updated_at: datetime = Field(default_factory=utcnow)
