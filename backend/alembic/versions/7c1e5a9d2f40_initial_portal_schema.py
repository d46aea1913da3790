"""initial portal schema

Revision ID: 7c1e5a9d2f40
Revises:
Create Date: 2026-10-19 09:12:03.114208

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "7c1e5a9d2f40"
down_revision = None
branch_labels = None
depends_on = None

NOW = sa.text("CURRENT_TIMESTAMP")


def upgrade():
    op.create_table(
        "agencies",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("slug", sa.String(length=255), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.UniqueConstraint("name"),
        sa.UniqueConstraint("slug"),
    )

    op.create_table(
        "profiles",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.Column("last_login_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_profiles_email", "profiles", ["email"], unique=True)

    op.create_table(
        "projects",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("agency_id", sa.String(length=36), sa.ForeignKey("agencies.id"), nullable=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("status", sa.String(length=32), server_default=sa.text("'active'"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
    )
    op.create_index("ix_projects_agency_id", "projects", ["agency_id"], unique=False)

    op.create_table(
        "client_codes",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("project_id", sa.String(length=36), sa.ForeignKey("projects.id"), nullable=False),
        # NULL only for imported single-code rows awaiting migration
        sa.Column("code_hash", sa.String(length=64), nullable=True),
        sa.Column("legacy_code", sa.String(length=16), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.Column("label", sa.String(length=255), nullable=True),
        sa.Column("client_name", sa.String(length=255), nullable=True),
        sa.Column("client_email", sa.String(length=255), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_by_user_id", sa.String(length=36), sa.ForeignKey("profiles.id"), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.Column("last_rotated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_client_codes_project_id", "client_codes", ["project_id"], unique=False)
    op.create_index("uq_client_codes_code_hash", "client_codes", ["code_hash"], unique=True)
    op.create_index("ix_client_codes_legacy_code", "client_codes", ["legacy_code"], unique=False)
    op.create_index("ix_client_codes_project_active", "client_codes", ["project_id", "is_active"], unique=False)

    op.create_table(
        "project_members",
        sa.Column("project_id", sa.String(length=36), sa.ForeignKey("projects.id"), primary_key=True, nullable=False),
        sa.Column("user_id", sa.String(length=36), sa.ForeignKey("profiles.id"), primary_key=True, nullable=False),
        sa.Column("role", sa.String(length=32), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.CheckConstraint(
            "role IN ('agency_admin', 'agency_member', 'client_admin', 'client_member')",
            name="ck_project_members_role",
        ),
    )
    op.create_index("ix_project_members_user_id", "project_members", ["user_id"], unique=False)
    # Partial unique index: at most one client_admin per project (SQLite + Postgres)
    op.create_index(
        "uq_project_members_one_client_admin",
        "project_members",
        ["project_id"],
        unique=True,
        sqlite_where=sa.text("role = 'client_admin'"),
        postgresql_where=sa.text("role = 'client_admin'"),
    )

    op.create_table(
        "milestones",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column("project_id", sa.String(length=36), sa.ForeignKey("projects.id"), nullable=False),
        sa.Column("key", sa.String(length=64), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("status", sa.String(length=32), server_default=sa.text("'not_started'"), nullable=False),
        sa.Column("sort", sa.Integer(), nullable=False),
        sa.UniqueConstraint("project_id", "key", name="uq_milestones_project_key"),
    )
    op.create_index("ix_milestones_project_id", "milestones", ["project_id"], unique=False)

    op.create_table(
        "login_tokens",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("token_hash", sa.String(length=64), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("request_ip", sa.String(length=64), nullable=True),
        sa.Column("user_agent", sa.String(length=255), nullable=True),
    )
    op.create_index("ix_login_tokens_token_hash", "login_tokens", ["token_hash"], unique=True)
    op.create_index("ix_login_tokens_email", "login_tokens", ["email"], unique=False)

    op.create_table(
        "audit_events",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column("project_id", sa.String(length=36), nullable=True),
        sa.Column("action", sa.String(length=64), nullable=False),
        sa.Column("actor_user_id", sa.String(length=36), nullable=True),
        sa.Column("client_code_id", sa.String(length=36), nullable=True),
        sa.Column("detail", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
    )
    op.create_index("ix_audit_events_project_id", "audit_events", ["project_id"], unique=False)
    op.create_index("ix_audit_events_action", "audit_events", ["action"], unique=False)
    op.create_index("ix_audit_events_client_code_id", "audit_events", ["client_code_id"], unique=False)


def downgrade():
    op.drop_index("ix_audit_events_client_code_id", table_name="audit_events")
    op.drop_index("ix_audit_events_action", table_name="audit_events")
    op.drop_index("ix_audit_events_project_id", table_name="audit_events")
    op.drop_table("audit_events")

    op.drop_index("ix_login_tokens_email", table_name="login_tokens")
    op.drop_index("ix_login_tokens_token_hash", table_name="login_tokens")
    op.drop_table("login_tokens")

    op.drop_index("ix_milestones_project_id", table_name="milestones")
    op.drop_table("milestones")

    op.drop_index("uq_project_members_one_client_admin", table_name="project_members")
    op.drop_index("ix_project_members_user_id", table_name="project_members")
    op.drop_table("project_members")

    op.drop_index("ix_client_codes_project_active", table_name="client_codes")
    op.drop_index("ix_client_codes_legacy_code", table_name="client_codes")
    op.drop_index("uq_client_codes_code_hash", table_name="client_codes")
    op.drop_index("ix_client_codes_project_id", table_name="client_codes")
    op.drop_table("client_codes")

    op.drop_index("ix_projects_agency_id", table_name="projects")
    op.drop_table("projects")

    op.drop_index("ix_profiles_email", table_name="profiles")
    op.drop_table("profiles")

    op.drop_table("agencies")
