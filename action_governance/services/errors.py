"""Governance error taxonomy.

Every error carries a stable machine-readable ``code`` (also used as the
``error_code`` of execution outcomes and audit entries), the HTTP status the
API layer maps it to, and a human-readable message that is safe to show the
end user.
"""

from __future__ import annotations

from datetime import datetime
from typing import ClassVar
from uuid import UUID


class GovernanceError(Exception):
    """Base class for governance engine failures."""

    code: ClassVar[str] = "GOVERNANCE_ERROR"
    status_code: ClassVar[int] = 400

    def __init__(self, message: str, *, audit_id: UUID | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.audit_id = audit_id


class PermissionDenied(GovernanceError):
    code = "PERMISSION_DENIED"
    status_code = 403


class ConfirmationRequired(GovernanceError):
    """Not a failure: the caller must re-submit with the preview token."""

    code = "CONFIRMATION_REQUIRED"
    status_code = 202


class PreviewNotFound(GovernanceError):
    code = "PREVIEW_NOT_FOUND"
    status_code = 404


class PreviewAccessDenied(GovernanceError):
    code = "PREVIEW_ACCESS_DENIED"
    status_code = 403


class PreviewInvalidState(GovernanceError):
    code = "PREVIEW_INVALID_STATE"
    status_code = 409


class RateLimitExceeded(GovernanceError):
    code = "RATE_LIMIT_EXCEEDED"
    status_code = 429

    def __init__(
        self,
        message: str,
        *,
        reset_at: datetime,
        audit_id: UUID | None = None,
    ) -> None:
        super().__init__(message, audit_id=audit_id)
        self.reset_at = reset_at


class ExecutionFailed(GovernanceError):
    """A handler could not carry out the action's side effect."""

    code = "EXECUTION_FAILED"
    status_code = 500


class RevertFailed(GovernanceError):
    code = "REVERT_FAILED"
    status_code = 409


class InternalError(GovernanceError):
    code = "INTERNAL_ERROR"
    status_code = 500


class PolicyStoreUnavailable(InternalError):
    """Governance settings are missing or the policy tables cannot be read."""

    code = "POLICY_STORE_UNAVAILABLE"


class InvalidStatusTransition(InternalError):
    """An audit entry was asked to move along an edge the ledger forbids."""

    code = "INVALID_STATUS_TRANSITION"

    def __init__(self, *, entry_id: UUID, current: str, requested: str) -> None:
        super().__init__(
            f"Audit entry {entry_id} cannot move from '{current}' to '{requested}'",
        )
        self.entry_id = entry_id
        self.current = current
        self.requested = requested


class AuditEntryNotFound(GovernanceError):
    code = "AUDIT_ENTRY_NOT_FOUND"
    status_code = 404
