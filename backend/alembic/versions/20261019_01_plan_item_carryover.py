"""Track when a missed plan item has been folded into a replan.

Revision ID: 20261019_01_plan_item_carryover
Revises: 20261018_01_study_plan_schema
Create Date: 2026-10-19 09:00:00.000000
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op


# revision identifiers, used by Alembic.
revision = "20261019_01_plan_item_carryover"
down_revision = "20261018_01_study_plan_schema"
branch_labels = None
depends_on = None


def upgrade() -> None:
    with op.batch_alter_table("study_plan_items") as batch_op:
        batch_op.add_column(sa.Column("carried_over_at", sa.DateTime(timezone=True), nullable=True))


def downgrade() -> None:
    with op.batch_alter_table("study_plan_items") as batch_op:
        batch_op.drop_column("carried_over_at")
