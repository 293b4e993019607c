"""Add user subscriptions and the users.active_subscription_id pointer."""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "002_add_user_subscriptions"
down_revision = "001_add_subscription_tiers"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "user_subscriptions",
        sa.Column(
            "id",
            postgresql.UUID(as_uuid=True),
            primary_key=True,
            nullable=False,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column(
            "user_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "tier_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("subscription_tiers.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("status", sa.String(length=20), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "payment_provider",
            sa.String(length=20),
            nullable=False,
            server_default=sa.text("'manual'"),
        ),
        sa.Column("subscription_id", sa.String(), nullable=True),
        sa.Column("amount_paid", sa.Numeric(10, 2), nullable=True),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default=sa.text("'USD'")),
        sa.Column("metadata", postgresql.JSONB(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_user_subscriptions_tier_id", "user_subscriptions", ["tier_id"])
    op.create_index("ix_user_subscriptions_user_status", "user_subscriptions", ["user_id", "status"])
    op.create_index(
        "ix_user_subscriptions_status_expires", "user_subscriptions", ["status", "expires_at"]
    )
    # One active subscription per (user, tier); history rows are unrestricted.
    op.create_index(
        "uq_user_subscriptions_user_tier_active",
        "user_subscriptions",
        ["user_id", "tier_id"],
        unique=True,
        postgresql_where=sa.text("status = 'active'"),
    )

    op.add_column(
        "users",
        sa.Column("active_subscription_id", postgresql.UUID(as_uuid=True), nullable=True),
    )
    op.create_foreign_key(
        "fk_users_active_subscription",
        "users",
        "user_subscriptions",
        ["active_subscription_id"],
        ["id"],
        ondelete="SET NULL",
    )
    op.create_index("ix_users_active_subscription_id", "users", ["active_subscription_id"])


def downgrade() -> None:
    op.drop_index("ix_users_active_subscription_id", table_name="users")
    op.drop_constraint("fk_users_active_subscription", "users", type_="foreignkey")
    op.drop_column("users", "active_subscription_id")
    op.drop_index("uq_user_subscriptions_user_tier_active", table_name="user_subscriptions")
    op.drop_index("ix_user_subscriptions_status_expires", table_name="user_subscriptions")
    op.drop_index("ix_user_subscriptions_user_status", table_name="user_subscriptions")
    op.drop_index("ix_user_subscriptions_tier_id", table_name="user_subscriptions")
    op.drop_table("user_subscriptions")
