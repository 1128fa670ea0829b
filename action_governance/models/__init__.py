"""Model exports for SQLAlchemy/SQLModel metadata discovery."""

from action_governance.models.action_audit_entries import ActionAuditEntry
from action_governance.models.governance_settings import GovernanceSettings
from action_governance.models.permission_rules import PermissionRule

__all__ = [
    "ActionAuditEntry",
    "GovernanceSettings",
    "PermissionRule",
]
