"""create seat billing tables

Revision ID: a7c1e9d2b4f0
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""

from typing import Sequence, Union

import sqlalchemy as sa
import sqlmodel.sql.sqltypes
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "a7c1e9d2b4f0"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

_LIVE = sa.text("status IN ('active', 'on_trial')")


def upgrade() -> None:
    """Create tenancy, membership, invitation and billing tables."""
    op.create_table(
        "organizations",
        sa.Column("id", sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column("name", sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column("billing_override_seats", sa.Integer(), nullable=True),
        sa.Column("billing_override_expires_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "users",
        sa.Column("id", sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column("email", sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column("name", sqlmodel.sql.sqltypes.AutoString(), nullable=False, server_default=""),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_users_email"), "users", ["email"])

    op.create_table(
        "organization_memberships",
        sa.Column("id", sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column("org_id", sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column("user_id", sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column(
            "role", sqlmodel.sql.sqltypes.AutoString(), nullable=False, server_default="employee"
        ),
        sa.Column(
            "status", sqlmodel.sql.sqltypes.AutoString(), nullable=False, server_default="active"
        ),
        sa.Column("removal_effective_date", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["org_id"], ["organizations.id"]),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("org_id", "user_id", name="uq_memberships_org_user"),
    )
    op.create_index(
        op.f("ix_organization_memberships_org_id"), "organization_memberships", ["org_id"]
    )
    op.create_index(
        op.f("ix_organization_memberships_user_id"), "organization_memberships", ["user_id"]
    )
    op.create_index(
        op.f("ix_organization_memberships_status"), "organization_memberships", ["status"]
    )

    op.create_table(
        "invitations",
        sa.Column("id", sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column("org_id", sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column("email", sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column(
            "role", sqlmodel.sql.sqltypes.AutoString(), nullable=False, server_default="employee"
        ),
        sa.Column(
            "status", sqlmodel.sql.sqltypes.AutoString(), nullable=False, server_default="pending"
        ),
        sa.Column("token", sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column("invited_by", sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("accepted_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["org_id"], ["organizations.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("token"),
    )
    op.create_index(op.f("ix_invitations_org_id"), "invitations", ["org_id"])
    op.create_index(op.f("ix_invitations_email"), "invitations", ["email"])
    op.create_index(op.f("ix_invitations_status"), "invitations", ["status"])

    op.create_table(
        "subscriptions",
        sa.Column("id", sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column("org_id", sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column("billing_type", sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column("billing_period", sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column(
            "status", sqlmodel.sql.sqltypes.AutoString(), nullable=False, server_default="active"
        ),
        sa.Column("current_seats", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("provider_subscription_id", sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column(
            "provider_subscription_item_id", sqlmodel.sql.sqltypes.AutoString(), nullable=True
        ),
        sa.Column("provider_customer_id", sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column("provider_product_id", sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column("provider_variant_id", sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column("renews_at", sa.DateTime(), nullable=True),
        sa.Column("ends_at", sa.DateTime(), nullable=True),
        sa.Column("trial_ends_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["org_id"], ["organizations.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("provider_subscription_id"),
    )
    op.create_index(op.f("ix_subscriptions_org_id"), "subscriptions", ["org_id"])
    # At most one live subscription per organization
    op.create_index(
        "uq_subscriptions_live_org",
        "subscriptions",
        ["org_id"],
        unique=True,
        postgresql_where=_LIVE,
        sqlite_where=_LIVE,
    )

    op.create_table(
        "billing_events",
        sa.Column("id", sa.Integer(), nullable=False, autoincrement=True),
        sa.Column("provider_event_id", sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column("event_name", sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column("org_id", sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column("provider_subscription_id", sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column(
            "status",
            sqlmodel.sql.sqltypes.AutoString(),
            nullable=False,
            server_default="processing",
        ),
        sa.Column("error_message", sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column("payload_json", sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("claimed_at", sa.DateTime(), nullable=False),
        sa.Column("processed_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        # Insert-if-absent idempotency claim
        sa.UniqueConstraint("provider_event_id"),
    )
    op.create_index(op.f("ix_billing_events_event_name"), "billing_events", ["event_name"])
    op.create_index(op.f("ix_billing_events_org_id"), "billing_events", ["org_id"])

    op.create_table(
        "rate_limit_windows",
        sa.Column("id", sa.Integer(), nullable=False, autoincrement=True),
        sa.Column("key", sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column("window_start", sa.Integer(), nullable=False),
        sa.Column("count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        # Unique constraint for ON CONFLICT upsert
        sa.UniqueConstraint("key", "window_start", name="uq_rate_limit_windows_key_window"),
    )
    op.create_index(op.f("ix_rate_limit_windows_key"), "rate_limit_windows", ["key"])


def downgrade() -> None:
    """Drop all seat billing tables."""
    op.drop_index(op.f("ix_rate_limit_windows_key"), table_name="rate_limit_windows")
    op.drop_table("rate_limit_windows")

    op.drop_index(op.f("ix_billing_events_org_id"), table_name="billing_events")
    op.drop_index(op.f("ix_billing_events_event_name"), table_name="billing_events")
    op.drop_table("billing_events")

    op.drop_index("uq_subscriptions_live_org", table_name="subscriptions")
    op.drop_index(op.f("ix_subscriptions_org_id"), table_name="subscriptions")
    op.drop_table("subscriptions")

    op.drop_index(op.f("ix_invitations_status"), table_name="invitations")
    op.drop_index(op.f("ix_invitations_email"), table_name="invitations")
    op.drop_index(op.f("ix_invitations_org_id"), table_name="invitations")
    op.drop_table("invitations")

    op.drop_index(
        op.f("ix_organization_memberships_status"), table_name="organization_memberships"
    )
    op.drop_index(
        op.f("ix_organization_memberships_user_id"), table_name="organization_memberships"
    )
    op.drop_index(
        op.f("ix_organization_memberships_org_id"), table_name="organization_memberships"
    )
    op.drop_table("organization_memberships")

    op.drop_index(op.f("ix_users_email"), table_name="users")
    op.drop_table("users")

    op.drop_table("organizations")
