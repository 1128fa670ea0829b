"""Audit ledger model: one row per attempted agent action."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column, Index
from sqlmodel import Field

from action_governance.core.time import utcnow
from action_governance.models.base import QueryModel

RUNTIME_ANNOTATION_TYPES = (datetime,)


class ActionAuditEntry(QueryModel, table=True):
    """Lifecycle, data snapshots, and revert bookkeeping for one action attempt."""

    __tablename__ = "action_audit_entries"  # pyright: ignore[reportAssignmentType]
    __table_args__ = (
        # Rate-window counts filter on (user_id, created_at).
        Index("ix_action_audit_entries_user_created", "user_id", "created_at"),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: UUID = Field(index=True)
    user_role: str = Field(default="user")
    session_id: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None

    action_type: str = Field(index=True)
    action_label: str = Field(default="")
    target: str = Field(default="")
    target_collection: str | None = Field(default=None, index=True)
    target_record_id: str | None = Field(default=None, index=True)
    action_params: dict[str, object] | None = Field(default=None, sa_column=Column(JSON))
    preview_payload: dict[str, object] | None = Field(default=None, sa_column=Column(JSON))

    status: str = Field(default="pending", index=True)
    matched_rule_id: UUID | None = None
    before_data: dict[str, object] | None = Field(default=None, sa_column=Column(JSON))
    after_data: dict[str, object] | None = Field(default=None, sa_column=Column(JSON))
    is_revertible: bool = Field(default=False, index=True)
    error_code: str | None = None
    error_message: str | None = None
    duration_ms: int | None = None

    created_at: datetime = Field(default_factory=utcnow, index=True)
    confirmed_at: datetime | None = None
    completed_at: datetime | None = None
    reverted_at: datetime | None = None
    reverted_by: UUID | None = None
    revert_reason: str | None = None
    # Set on the bookkeeping entry appended when another entry is reverted.
    reverts_entry_id: UUID | None = Field(
        default=None, foreign_key="action_audit_entries.id", index=True
    )
    flagged_for_review_at: datetime | None = None
