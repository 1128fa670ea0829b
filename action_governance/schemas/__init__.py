"""Public schema exports shared across API route modules."""

from action_governance.schemas.actions import (
    ActorContext,
    ExecutionOutcome,
    PermissionDecisionRead,
    ProposedAction,
    RevertRequest,
    RevertResult,
    SubmitActionRequest,
)
from action_governance.schemas.audit import ActionAuditEntryRead, AuditStatsRead, AuditTrailPage
from action_governance.schemas.errors import ErrorResponse
from action_governance.schemas.governance import (
    GovernanceSettingsRead,
    GovernanceSettingsUpdate,
    PermissionRuleCreate,
    PermissionRuleRead,
    PermissionRuleUpdate,
)
from action_governance.schemas.health import HealthStatusResponse, OkResponse

__all__ = [
    "ActionAuditEntryRead",
    "ActorContext",
    "AuditStatsRead",
    "AuditTrailPage",
    "ErrorResponse",
    "ExecutionOutcome",
    "GovernanceSettingsRead",
    "GovernanceSettingsUpdate",
    "HealthStatusResponse",
    "OkResponse",
    "PermissionDecisionRead",
    "PermissionRuleCreate",
    "PermissionRuleRead",
    "PermissionRuleUpdate",
    "ProposedAction",
    "RevertRequest",
    "RevertResult",
    "SubmitActionRequest",
]
