"""Structured error payload schemas used by API responses."""

from __future__ import annotations

from uuid import UUID

from pydantic import Field
from sqlmodel import SQLModel


class ErrorResponse(SQLModel):
    """Error envelope returned by every failing endpoint."""

    detail: str | dict[str, object] | list[object] = Field(
        description="Human-readable message, or validation details for 422 responses.",
        examples=["Audit entry not found", [{"loc": ["body", "action"], "msg": "Field required"}]],
    )
    request_id: str | None = Field(
        default=None,
        description="Request correlation identifier injected by middleware.",
    )
    code: str | None = Field(
        default=None,
        description="Machine-readable error code, when one applies.",
        examples=["PERMISSION_DENIED", "PREVIEW_INVALID_STATE"],
    )
    audit_id: UUID | None = Field(
        default=None,
        description="Audit entry recording the failed attempt, when one exists.",
    )
