"""Action governance: settings, permission rules, and action audit entries.

Revision ID: 1a2b3c4d5e6f
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "1a2b3c4d5e6f"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    # --- governance_settings (singleton) ---
    if not inspector.has_table("governance_settings"):
        op.create_table(
            "governance_settings",
            sa.Column("id", sa.Uuid(), nullable=False),
            sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("read_only_mode", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("allow_create", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("allow_update", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("allow_delete", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("allow_execute", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column(
                "default_requires_confirmation",
                sa.Boolean(),
                nullable=False,
                server_default=sa.true(),
            ),
            sa.Column("system_read_only_collections", sa.JSON(), nullable=False),
            sa.Column(
                "user_rate_limit_per_hour", sa.Integer(), nullable=False, server_default="100"
            ),
            sa.Column(
                "global_rate_limit_per_hour", sa.Integer(), nullable=False, server_default="10000"
            ),
            sa.Column("updated_by", sa.Uuid(), nullable=True),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
            sa.PrimaryKeyConstraint("id"),
        )

    # --- permission_rules ---
    if not inspector.has_table("permission_rules"):
        op.create_table(
            "permission_rules",
            sa.Column("id", sa.Uuid(), nullable=False),
            sa.Column("collection_code", sa.String(), nullable=True),
            sa.Column("scope_key", sa.String(), nullable=False, server_default="*"),
            sa.Column("action_type", sa.String(), nullable=False),
            sa.Column("is_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column(
                "requires_confirmation", sa.Boolean(), nullable=False, server_default=sa.true()
            ),
            sa.Column("allowed_roles", sa.JSON(), nullable=False),
            sa.Column("excluded_roles", sa.JSON(), nullable=False),
            sa.Column("description", sa.String(), nullable=False, server_default=""),
            sa.Column("created_by", sa.Uuid(), nullable=True),
            sa.Column("updated_by", sa.Uuid(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint(
                "scope_key", "action_type", name="uq_permission_rules_scope_action"
            ),
        )
        op.create_index(
            op.f("ix_permission_rules_collection_code"),
            "permission_rules",
            ["collection_code"],
        )
        op.create_index(op.f("ix_permission_rules_scope_key"), "permission_rules", ["scope_key"])
        op.create_index(
            op.f("ix_permission_rules_action_type"), "permission_rules", ["action_type"]
        )

    # --- action_audit_entries ---
    if not inspector.has_table("action_audit_entries"):
        op.create_table(
            "action_audit_entries",
            sa.Column("id", sa.Uuid(), nullable=False),
            sa.Column("user_id", sa.Uuid(), nullable=False),
            sa.Column("user_role", sa.String(), nullable=False, server_default="user"),
            sa.Column("session_id", sa.String(), nullable=True),
            sa.Column("ip_address", sa.String(), nullable=True),
            sa.Column("user_agent", sa.String(), nullable=True),
            sa.Column("action_type", sa.String(), nullable=False),
            sa.Column("action_label", sa.String(), nullable=False, server_default=""),
            sa.Column("target", sa.String(), nullable=False, server_default=""),
            sa.Column("target_collection", sa.String(), nullable=True),
            sa.Column("target_record_id", sa.String(), nullable=True),
            sa.Column("action_params", sa.JSON(), nullable=True),
            sa.Column("preview_payload", sa.JSON(), nullable=True),
            sa.Column("status", sa.String(), nullable=False, server_default="pending"),
            sa.Column("matched_rule_id", sa.Uuid(), nullable=True),
            sa.Column("before_data", sa.JSON(), nullable=True),
            sa.Column("after_data", sa.JSON(), nullable=True),
            sa.Column("is_revertible", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("error_code", sa.String(), nullable=True),
            sa.Column("error_message", sa.String(), nullable=True),
            sa.Column("duration_ms", sa.Integer(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("confirmed_at", sa.DateTime(), nullable=True),
            sa.Column("completed_at", sa.DateTime(), nullable=True),
            sa.Column("reverted_at", sa.DateTime(), nullable=True),
            sa.Column("reverted_by", sa.Uuid(), nullable=True),
            sa.Column("revert_reason", sa.String(), nullable=True),
            sa.Column("reverts_entry_id", sa.Uuid(), nullable=True),
            sa.Column("flagged_for_review_at", sa.DateTime(), nullable=True),
            sa.ForeignKeyConstraint(["reverts_entry_id"], ["action_audit_entries.id"]),
            sa.PrimaryKeyConstraint("id"),
        )
        for column in (
            "user_id",
            "action_type",
            "target_collection",
            "target_record_id",
            "status",
            "is_revertible",
            "created_at",
            "reverts_entry_id",
        ):
            op.create_index(
                op.f(f"ix_action_audit_entries_{column}"),
                "action_audit_entries",
                [column],
            )
        op.create_index(
            "ix_action_audit_entries_user_created",
            "action_audit_entries",
            ["user_id", "created_at"],
        )


def downgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    # Audit entries are never deleted in normal operation; dropping them is a
    # schema rollback only.
    if inspector.has_table("action_audit_entries"):
        op.drop_table("action_audit_entries")
    if inspector.has_table("permission_rules"):
        op.drop_table("permission_rules")
    if inspector.has_table("governance_settings"):
        op.drop_table("governance_settings")
