"""membership portal schema

Revision ID: a0c1d2e3f4a5
Revises:
Create Date: 2026-10-19 09:12:40.118204

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'a0c1d2e3f4a5'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create organisations, users/roles, tiers, memberships, apps, redemptions and audit tables."""
    conn = op.get_bind()
    inspector = sa.inspect(conn)
    existing_tables = set(inspector.get_table_names())

    if "organisations" not in existing_tables:
        op.create_table(
            "organisations",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(255), nullable=False),
            sa.Column("slug", sa.String(64), nullable=False, unique=True),
            sa.Column("type", sa.String(32), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )

    if "membership_tiers" not in existing_tables:
        op.create_table(
            "membership_tiers",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("key", sa.String(32), nullable=False, unique=True),
            sa.Column("label", sa.String(64), nullable=False),
            sa.Column("rank", sa.Integer(), nullable=False, unique=True),
        )

    if "apps" not in existing_tables:
        op.create_table(
            "apps",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("key", sa.String(64), nullable=False, unique=True),
            sa.Column("name", sa.String(128), nullable=False),
        )

    if "roles" not in existing_tables:
        op.create_table(
            "roles",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("key", sa.String(64), nullable=False, unique=True),
            sa.Column("label", sa.String(128), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )

    if "users" not in existing_tables:
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("email", sa.String(320), nullable=False, unique=True),
            sa.Column("first_name", sa.String(128), nullable=False, server_default=""),
            sa.Column("last_name", sa.String(128), nullable=False, server_default=""),
            sa.Column("password_hash", sa.String(255), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("organisation_id", sa.Integer(), sa.ForeignKey("organisations.id", ondelete="SET NULL"), nullable=True),
            sa.Column("default_app_id", sa.Integer(), sa.ForeignKey("apps.id", ondelete="SET NULL"), nullable=True),
            sa.Column("session_version", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )

    if "user_roles" not in existing_tables:
        op.create_table(
            "user_roles",
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
            sa.Column("role_id", sa.Integer(), sa.ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
        )

    if "memberships" not in existing_tables:
        op.create_table(
            "memberships",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
            sa.Column("organisation_id", sa.Integer(), sa.ForeignKey("organisations.id"), nullable=False),
            sa.Column("tier_id", sa.Integer(), sa.ForeignKey("membership_tiers.id"), nullable=False),
            sa.Column("status", sa.String(64), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("expiry", sa.Date(), nullable=True),
            sa.Column("manager_name", sa.String(255), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )
        op.create_index("idx_memberships_user_active", "memberships", ["user_id", "is_active"])

    if "app_access_rules" not in existing_tables:
        op.create_table(
            "app_access_rules",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("app_id", sa.Integer(), sa.ForeignKey("apps.id", ondelete="CASCADE"), nullable=False),
            sa.Column("access_type", sa.String(16), nullable=False, server_default="ALLOW"),
            sa.Column("min_tier_id", sa.Integer(), sa.ForeignKey("membership_tiers.id"), nullable=True),
        )

    if "redemption_records" not in existing_tables:
        op.create_table(
            "redemption_records",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True),
            sa.Column("membership_id", sa.Integer(), sa.ForeignKey("memberships.id", ondelete="SET NULL"), nullable=True),
            sa.Column("member_key", sa.String(64), nullable=False),
            sa.Column("redeemed_benefit_codes", sa.JSON(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )

    if "audit_events" not in existing_tables:
        op.create_table(
            "audit_events",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("request_id", sa.String(64), nullable=True),
            sa.Column("actor_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            sa.Column("actor_user_email", sa.String(320), nullable=True),
            sa.Column("action", sa.String(128), nullable=False),
            sa.Column("entity_type", sa.String(128), nullable=True),
            sa.Column("entity_id", sa.String(128), nullable=True),
            sa.Column("reason", sa.String(512), nullable=True),
            sa.Column("metadata_json", sa.Text(), nullable=True),
            sa.Column("client_ip", sa.String(45), nullable=True),
        )
        op.create_index("idx_audit_events_action", "audit_events", ["action"])


def downgrade() -> None:
    """Drop the portal tables in reverse dependency order."""
    op.drop_index("idx_audit_events_action", table_name="audit_events")
    op.drop_table("audit_events")
    op.drop_table("redemption_records")
    op.drop_table("app_access_rules")
    op.drop_index("idx_memberships_user_active", table_name="memberships")
    op.drop_table("memberships")
    op.drop_table("user_roles")
    op.drop_table("users")
    op.drop_table("roles")
    op.drop_table("apps")
    op.drop_table("membership_tiers")
    op.drop_table("organisations")
