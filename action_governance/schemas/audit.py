"""Schemas for the action audit query API."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlmodel import Field, SQLModel

RUNTIME_ANNOTATION_TYPES = (datetime, UUID)


class ActionAuditEntryRead(SQLModel):
    """Audit entry payload returned by read endpoints."""

    id: UUID
    user_id: UUID
    user_role: str
    session_id: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    action_type: str
    action_label: str
    target: str
    target_collection: str | None = None
    target_record_id: str | None = None
    action_params: dict[str, object] | None = None
    preview_payload: dict[str, object] | None = None
    status: str
    matched_rule_id: UUID | None = None
    before_data: dict[str, object] | None = None
    after_data: dict[str, object] | None = None
    is_revertible: bool
    error_code: str | None = None
    error_message: str | None = None
    duration_ms: int | None = None
    created_at: datetime
    confirmed_at: datetime | None = None
    completed_at: datetime | None = None
    reverted_at: datetime | None = None
    reverted_by: UUID | None = None
    revert_reason: str | None = None
    reverts_entry_id: UUID | None = None
    flagged_for_review_at: datetime | None = None


class AuditTrailPage(SQLModel):
    items: list[ActionAuditEntryRead] = Field(default_factory=list)
    total: int
    limit: int
    offset: int


class AuditStatsRead(SQLModel):
    """Counts of recorded actions since ``since``."""

    total_actions: int
    by_type: dict[str, int] = Field(default_factory=dict)
    by_status: dict[str, int] = Field(default_factory=dict)
    reverted_count: int
    failed_count: int
    rejected_count: int
    since: datetime
