"""Track when an assignment is closed and when it was published.

Revision ID: 002
Revises: 001
Create Date: 2026-10-18
"""

from typing import Sequence, Union

import sqlalchemy as sa

from alembic import op

revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.add_column("assignments", sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True))
    op.add_column("assignments", sa.Column("published_at", sa.DateTime(timezone=True), nullable=True))
    # rows written before this revision were superseded or are still open;
    # close every row some later assignment points at
    op.execute(
        """
        UPDATE assignments AS a
        SET closed_at = b.decided_at
        FROM assignments AS b
        WHERE b.supersedes = a.id
        """
    )
    op.create_index("idx_assignments_open", "assignments", ["ticket_id", "closed_at"])


def downgrade() -> None:
    op.drop_index("idx_assignments_open", table_name="assignments")
    op.drop_column("assignments", "published_at")
    op.drop_column("assignments", "closed_at")
