"""create leadhive schema

Revision ID: 202610180001
Revises:
Create Date: 2026-10-18 00:01:00
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa


revision: str = "202610180001"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "identity_role",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("value", sa.String(length=40), nullable=False),
        sa.Column("label", sa.String(length=80), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("value", name="uq_identity_role_value"),
    )

    op.create_table(
        "identity_user",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("full_name", sa.String(length=120), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("role_id", sa.Integer(), sa.ForeignKey("identity_role.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("phone", sa.String(length=40), nullable=True),
        sa.Column("avatar_url", sa.String(length=500), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.UniqueConstraint("email", name="uq_identity_user_email"),
    )
    op.create_index("ix_identity_user_role_active", "identity_user", ["role_id", "is_active"], unique=False)

    op.create_table(
        "identity_team",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(length=120), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("name", name="uq_identity_team_name"),
    )

    op.create_table(
        "identity_team_manager",
        sa.Column("team_id", sa.Integer(), sa.ForeignKey("identity_team.id", ondelete="CASCADE"), nullable=False),
        sa.Column("manager_id", sa.Integer(), sa.ForeignKey("identity_user.id", ondelete="CASCADE"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("team_id", "manager_id"),
    )
    op.create_index("ix_identity_team_manager_manager", "identity_team_manager", ["manager_id"], unique=False)

    op.create_table(
        "identity_team_member",
        sa.Column("team_id", sa.Integer(), sa.ForeignKey("identity_team.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("identity_user.id", ondelete="CASCADE"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("team_id", "user_id"),
        sa.UniqueConstraint("team_id", "user_id", name="uq_identity_team_member"),
    )
    op.create_index("ix_identity_team_member_user", "identity_team_member", ["user_id"], unique=False)

    for table in ("crm_lead_status", "crm_lead_source"):
        op.create_table(
            table,
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("value", sa.String(length=40), nullable=False),
            sa.Column("label", sa.String(length=80), nullable=False),
            *_timestamps(),
            sa.UniqueConstraint("value", name=f"uq_{table}_value"),
        )

    op.create_table(
        "crm_lead",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("first_name", sa.String(length=80), nullable=True),
        sa.Column("last_name", sa.String(length=80), nullable=True),
        sa.Column("company", sa.String(length=120), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("phone", sa.String(length=40), nullable=True),
        sa.Column("country", sa.String(length=80), nullable=True),
        sa.Column("status_id", sa.Integer(), sa.ForeignKey("crm_lead_status.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("source_id", sa.Integer(), sa.ForeignKey("crm_lead_source.id", ondelete="RESTRICT"), nullable=True),
        sa.Column("value_decimal", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("created_by", sa.Integer(), sa.ForeignKey("identity_user.id", ondelete="SET NULL"), nullable=True),
        sa.Column("updated_by", sa.Integer(), sa.ForeignKey("identity_user.id", ondelete="SET NULL"), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("value_decimal >= 0", name="ck_crm_lead_value_non_negative"),
    )
    op.create_index("ix_crm_lead_status", "crm_lead", ["status_id"], unique=False)
    op.create_index("ix_crm_lead_source", "crm_lead", ["source_id"], unique=False)
    op.create_index("ix_crm_lead_created_at", "crm_lead", ["created_at"], unique=False)
    op.create_index("ix_crm_lead_email", "crm_lead", ["email"], unique=False)

    op.create_table(
        "crm_lead_assignment",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("lead_id", sa.Integer(), sa.ForeignKey("crm_lead.id", ondelete="CASCADE"), nullable=False),
        sa.Column("assignee_id", sa.Integer(), sa.ForeignKey("identity_user.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("assigned_by", sa.Integer(), sa.ForeignKey("identity_user.id", ondelete="SET NULL"), nullable=True),
        sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_crm_lead_assignment_lead_id", "crm_lead_assignment", ["lead_id", "id"], unique=False)
    op.create_index("ix_crm_lead_assignment_assignee", "crm_lead_assignment", ["assignee_id", "assigned_at"], unique=False)

    op.create_table(
        "crm_lead_note",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("lead_id", sa.Integer(), sa.ForeignKey("crm_lead.id", ondelete="CASCADE"), nullable=False),
        sa.Column("author_id", sa.Integer(), sa.ForeignKey("identity_user.id", ondelete="SET NULL"), nullable=True),
        sa.Column("body", sa.Text(), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_crm_lead_note_lead", "crm_lead_note", ["lead_id", "created_at"], unique=False)

    op.create_table(
        "crm_saved_filter",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("identity_user.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("definition_json", sa.JSON(), nullable=False),
        sa.Column("is_shared", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "name", name="uq_crm_saved_filter_user_name"),
    )


def downgrade() -> None:
    op.drop_table("crm_saved_filter")
    op.drop_index("ix_crm_lead_note_lead", table_name="crm_lead_note")
    op.drop_table("crm_lead_note")
    op.drop_index("ix_crm_lead_assignment_assignee", table_name="crm_lead_assignment")
    op.drop_index("ix_crm_lead_assignment_lead_id", table_name="crm_lead_assignment")
    op.drop_table("crm_lead_assignment")
    op.drop_index("ix_crm_lead_email", table_name="crm_lead")
    op.drop_index("ix_crm_lead_created_at", table_name="crm_lead")
    op.drop_index("ix_crm_lead_source", table_name="crm_lead")
    op.drop_index("ix_crm_lead_status", table_name="crm_lead")
    op.drop_table("crm_lead")
    op.drop_table("crm_lead_source")
    op.drop_table("crm_lead_status")
    op.drop_index("ix_identity_team_member_user", table_name="identity_team_member")
    op.drop_table("identity_team_member")
    op.drop_index("ix_identity_team_manager_manager", table_name="identity_team_manager")
    op.drop_table("identity_team_manager")
    op.drop_table("identity_team")
    op.drop_index("ix_identity_user_role_active", table_name="identity_user")
    op.drop_table("identity_user")
    op.drop_table("identity_role")
