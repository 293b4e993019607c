"""Let courses and pathways require a subscription tier."""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "004_add_content_tier_requirements"
down_revision = "003_split_tier_sort_order"
branch_labels = None
depends_on = None

CONTENT_TABLES = ("courses", "pathways")


def upgrade() -> None:
    for table in CONTENT_TABLES:
        op.add_column(
            table,
            sa.Column("subscription_tier_id", postgresql.UUID(as_uuid=True), nullable=True),
        )
        op.create_foreign_key(
            f"fk_{table}_subscription_tier",
            table,
            "subscription_tiers",
            ["subscription_tier_id"],
            ["id"],
            ondelete="SET NULL",
        )
        op.create_index(f"ix_{table}_subscription_tier_id", table, ["subscription_tier_id"])


def downgrade() -> None:
    for table in reversed(CONTENT_TABLES):
        op.drop_index(f"ix_{table}_subscription_tier_id", table_name=table)
        op.drop_constraint(f"fk_{table}_subscription_tier", table, type_="foreignkey")
        op.drop_column(table, "subscription_tier_id")
