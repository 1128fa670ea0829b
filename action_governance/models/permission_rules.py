"""Per-(collection, action type) permission rules."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column, UniqueConstraint
from sqlmodel import Field

from action_governance.core.targets import normalize_collection
from action_governance.core.time import utcnow
from action_governance.models.base import QueryModel

RUNTIME_ANNOTATION_TYPES = (datetime,)

GLOBAL_SCOPE_KEY = "*"


def scope_key_for(collection_code: str | None) -> str:
    """Return the non-null uniqueness key for a rule's collection scope."""
    code = normalize_collection(collection_code or "")
    return code or GLOBAL_SCOPE_KEY


class PermissionRule(QueryModel, table=True):
    """Role and confirmation policy for one action type, globally or per collection."""

    __tablename__ = "permission_rules"  # pyright: ignore[reportAssignmentType]
    __table_args__ = (
        UniqueConstraint("scope_key", "action_type", name="uq_permission_rules_scope_action"),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    # None means the rule is the global default for its action type.
    collection_code: str | None = Field(default=None, index=True)
    scope_key: str = Field(default=GLOBAL_SCOPE_KEY, index=True)
    action_type: str = Field(index=True)
    is_enabled: bool = Field(default=True)
    requires_confirmation: bool = Field(default=True)
    allowed_roles: list[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    excluded_roles: list[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    description: str = Field(default="")
    created_by: UUID | None = None
    updated_by: UUID | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
