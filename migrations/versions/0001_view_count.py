"""view count table

Revision ID: 0001_view_count
Revises:
Create Date: 2025-11-03 09:12:41.518220

"""
from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "0001_view_count"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create the authoritative per-slug counter table."""
    op.create_table(
        "view_count",
        sa.Column("slug", sa.Text(), nullable=False),
        sa.Column("count", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("count >= 0", name="ck_view_count_non_negative"),
        sa.PrimaryKeyConstraint("slug"),
    )
    op.create_index("ix_view_count_count", "view_count", ["count"])


def downgrade() -> None:
    """Drop the counter table."""
    op.drop_index("ix_view_count_count", table_name="view_count")
    op.drop_table("view_count")
