"""Schemas for proposed agent actions, execution outcomes, and reverts."""

from __future__ import annotations

import re
from datetime import datetime
from typing import Annotated, Literal, Union
from uuid import UUID

from pydantic import Field, TypeAdapter, field_validator, model_validator
from sqlmodel import SQLModel

from action_governance.core.targets import normalize_collection

RUNTIME_ANNOTATION_TYPES = (datetime, UUID)

ActionType = Literal["navigate", "create", "update", "delete", "execute"]
ACTION_TYPES: tuple[str, ...] = ("navigate", "create", "update", "delete", "execute")
DATA_ACTION_TYPES = frozenset({"create", "update", "delete"})

_COLLECTION_PATTERN = re.compile(r"^/?([a-z_-]+)", re.IGNORECASE)
_RECORD_PATTERN = re.compile(r"^/?[a-z_-]+/([a-z0-9_-]+)", re.IGNORECASE)
NEW_RECORD_SEGMENT = "new"


def extract_collection(target: str) -> str | None:
    """Return the normalized collection code from the first path segment of a target."""
    match = _COLLECTION_PATTERN.match(target.strip())
    return normalize_collection(match.group(1)) if match else None


def extract_record_id(target: str) -> str | None:
    """Return the record id from the second path segment (``new`` is not an id)."""
    match = _RECORD_PATTERN.match(target.strip())
    if match is None or match.group(1).lower() == NEW_RECORD_SEGMENT:
        return None
    return match.group(1)


class CreateParams(SQLModel):
    """Column values for a new record."""

    values: dict[str, object] = Field(default_factory=dict)


class UpdateParams(SQLModel):
    """Column changes applied to an existing record."""

    changes: dict[str, object]

    @field_validator("changes")
    @classmethod
    def _require_changes(cls, value: dict[str, object]) -> dict[str, object]:
        if not value:
            raise ValueError("update actions must change at least one field")
        if "id" in value:
            raise ValueError("update actions cannot change the record identifier")
        return value


class DeleteParams(SQLModel):
    reason: str = ""


class ExecuteParams(SQLModel):
    """Opaque command handed to external subscribers."""

    command: str = Field(min_length=1)
    arguments: dict[str, object] = Field(default_factory=dict)


class _ActionBase(SQLModel):
    label: str = ""
    target: str = Field(min_length=1)


class _DataActionBase(_ActionBase):
    @field_validator("target")
    @classmethod
    def _require_collection(cls, value: str) -> str:
        if extract_collection(value) is None:
            raise ValueError("target must start with a collection segment, e.g. /incidents/new")
        return value


class NavigateAction(_ActionBase):
    action_type: Literal["navigate"] = "navigate"


class CreateAction(_DataActionBase):
    action_type: Literal["create"] = "create"
    params: CreateParams = Field(default_factory=CreateParams)


class UpdateAction(_DataActionBase):
    action_type: Literal["update"] = "update"
    params: UpdateParams

    @model_validator(mode="after")
    def _require_record(self) -> UpdateAction:
        if extract_record_id(self.target) is None:
            raise ValueError("update target must identify a record, e.g. /incidents/<id>")
        return self


class DeleteAction(_DataActionBase):
    action_type: Literal["delete"] = "delete"
    params: DeleteParams = Field(default_factory=DeleteParams)

    @model_validator(mode="after")
    def _require_record(self) -> DeleteAction:
        if extract_record_id(self.target) is None:
            raise ValueError("delete target must identify a record, e.g. /incidents/<id>")
        return self


class ExecuteAction(_ActionBase):
    action_type: Literal["execute"] = "execute"
    params: ExecuteParams


ProposedAction = Annotated[
    Union[NavigateAction, CreateAction, UpdateAction, DeleteAction, ExecuteAction],
    Field(discriminator="action_type"),
]
PROPOSED_ACTION_ADAPTER: TypeAdapter[ProposedAction] = TypeAdapter(ProposedAction)


def action_params(action: ProposedAction) -> dict[str, object]:
    """Return the JSON-ready params of an action (empty for navigate)."""
    params = getattr(action, "params", None)
    if params is None:
        return {}
    return params.model_dump(mode="json")


def rebuild_action(
    *,
    action_type: str,
    label: str,
    target: str,
    params: dict[str, object] | None,
) -> ProposedAction:
    """Re-hydrate a typed action from its stored audit representation."""
    raw: dict[str, object] = {"action_type": action_type, "label": label, "target": target}
    if action_type != "navigate":
        raw["params"] = params or {}
    return PROPOSED_ACTION_ADAPTER.validate_python(raw)


class ActorContext(SQLModel):
    """Authenticated caller identity supplied by the delivery layer."""

    user_id: UUID
    user_role: str = "user"
    session_id: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None


class SubmitActionRequest(SQLModel):
    """Payload for submitting an action, optionally confirming a preview."""

    action: ProposedAction
    preview_token: UUID | None = None


class PermissionDecisionRead(SQLModel):
    """Dry-run governance decision returned by the evaluate endpoint."""

    allowed: bool
    requires_confirmation: bool
    rejection_reason: str | None = None
    rejection_code: str | None = None
    matched_rule_id: UUID | None = None


class ExecutionOutcome(SQLModel):
    """Result of one `submit` call."""

    success: bool
    status: str | None = None
    message: str
    error_code: str | None = None
    audit_id: UUID | None = None
    requires_confirmation: bool = False
    preview_token: UUID | None = None
    preview: dict[str, object] | None = None
    data: dict[str, object] | None = None
    redirect_url: str | None = None
    reset_at: datetime | None = None


class RevertRequest(SQLModel):
    reason: str | None = None


class RevertResult(SQLModel):
    """Result of one `revert` call."""

    success: bool
    message: str
    error_code: str | None = None
    audit_id: UUID
    revert_entry_id: UUID | None = None
    reverted_data: dict[str, object] | None = None
