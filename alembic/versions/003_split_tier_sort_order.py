"""Split tier sort_order into display_order and entitlement_rank."""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "003_split_tier_sort_order"
down_revision = "002_add_user_subscriptions"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.drop_index("ix_subscription_tiers_active_sort", table_name="subscription_tiers")
    op.alter_column("subscription_tiers", "sort_order", new_column_name="display_order")
    op.add_column(
        "subscription_tiers",
        sa.Column("entitlement_rank", sa.Integer(), nullable=False, server_default=sa.text("0")),
    )
    # Existing tiers keep their current access level.
    op.execute("UPDATE subscription_tiers SET entitlement_rank = display_order")
    op.create_index(
        "ix_subscription_tiers_active_display",
        "subscription_tiers",
        ["is_active", "display_order"],
    )


def downgrade() -> None:
    op.drop_index("ix_subscription_tiers_active_display", table_name="subscription_tiers")
    op.drop_column("subscription_tiers", "entitlement_rank")
    op.alter_column("subscription_tiers", "display_order", new_column_name="sort_order")
    op.create_index(
        "ix_subscription_tiers_active_sort",
        "subscription_tiers",
        ["is_active", "sort_order"],
    )
