"""Schemas for governance settings and permission rule administration."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlmodel import Field, SQLModel

from action_governance.schemas.actions import ActionType

RUNTIME_ANNOTATION_TYPES = (datetime, UUID)


class GovernanceSettingsRead(SQLModel):
    enabled: bool
    read_only_mode: bool
    allow_create: bool
    allow_update: bool
    allow_delete: bool
    allow_execute: bool
    default_requires_confirmation: bool
    system_read_only_collections: list[str] = Field(default_factory=list)
    user_rate_limit_per_hour: int
    global_rate_limit_per_hour: int
    updated_by: UUID | None = None
    updated_at: datetime


class GovernanceSettingsUpdate(SQLModel):
    """Partial settings update; omitted fields keep their current value."""

    enabled: bool | None = None
    read_only_mode: bool | None = None
    allow_create: bool | None = None
    allow_update: bool | None = None
    allow_delete: bool | None = None
    allow_execute: bool | None = None
    default_requires_confirmation: bool | None = None
    system_read_only_collections: list[str] | None = None
    user_rate_limit_per_hour: int | None = Field(default=None, ge=0)
    global_rate_limit_per_hour: int | None = Field(default=None, ge=0)


class PermissionRuleCreate(SQLModel):
    """Create or replace the rule for one (collection, action type) pair.

    ``collection_code`` omitted means the global default for the action type.
    """

    collection_code: str | None = None
    action_type: ActionType
    is_enabled: bool = True
    requires_confirmation: bool = True
    allowed_roles: list[str] = Field(default_factory=list)
    excluded_roles: list[str] = Field(default_factory=list)
    description: str = ""


class PermissionRuleUpdate(SQLModel):
    is_enabled: bool | None = None
    requires_confirmation: bool | None = None
    allowed_roles: list[str] | None = None
    excluded_roles: list[str] | None = None
    description: str | None = None


class PermissionRuleRead(SQLModel):
    id: UUID
    collection_code: str | None = None
    action_type: str
    is_enabled: bool
    requires_confirmation: bool
    allowed_roles: list[str] = Field(default_factory=list)
    excluded_roles: list[str] = Field(default_factory=list)
    description: str = ""
    created_by: UUID | None = None
    updated_by: UUID | None = None
    created_at: datetime
    updated_at: datetime
