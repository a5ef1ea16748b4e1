"""Initial schema: agents, rules, assignments, audit trail, escalations.

Revision ID: 001
Revises: None
Create Date: 2026-10-18
"""

from typing import Sequence, Union

import sqlalchemy as sa

from alembic import op

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Agent directory
    op.create_table(
        "agents",
        sa.Column("id", sa.String(100), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False, server_default=""),
        sa.Column("skills", sa.JSON, nullable=False),
        sa.Column("groups", sa.JSON, nullable=False),
        sa.Column("current_workload", sa.Integer, nullable=False, server_default="0"),
        sa.Column("max_capacity", sa.Integer, nullable=False, server_default="0"),
        sa.Column("available", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("timezone", sa.String(64), nullable=False, server_default="UTC"),
        sa.Column("schedule", sa.JSON, nullable=False),
        sa.Column("historical_success", sa.Float, nullable=True),
        sa.Column("response_time", sa.Float, nullable=True),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
    )

    # Routing rules
    op.create_table(
        "routing_rules",
        sa.Column("id", sa.String(100), primary_key=True),
        sa.Column("priority", sa.Integer, nullable=False, server_default="100"),
        sa.Column("condition", sa.JSON, nullable=False),
        sa.Column("action", sa.JSON, nullable=False),
        sa.Column("active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index("idx_rules_priority", "routing_rules", ["priority", "id"])

    # Assignments (propagated decisions)
    op.create_table(
        "assignments",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column("ticket_id", sa.String(100), nullable=False),
        sa.Column("target_kind", sa.String(10), nullable=False),
        sa.Column("target_id", sa.String(100), nullable=False),
        sa.Column("confidence", sa.Float, nullable=False),
        sa.Column("reason", sa.Text, nullable=False),
        sa.Column("rule_id", sa.String(100), nullable=True),
        sa.Column("breakdown", sa.JSON, nullable=True),
        sa.Column("rule_set_version", sa.String(64), nullable=True),
        sa.Column("supersedes", sa.String(32), nullable=True),
        sa.Column("decided_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("idx_assignments_ticket", "assignments", ["ticket_id"])
    op.create_index("idx_assignments_target", "assignments", ["target_kind", "target_id"])

    # Audit log (append-only)
    op.create_table(
        "audit_records",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("ticket_id", sa.String(100), nullable=False),
        sa.Column("state", sa.String(30), nullable=False),
        sa.Column("reason", sa.Text, nullable=False),
        sa.Column("target_kind", sa.String(10), nullable=True),
        sa.Column("target_id", sa.String(100), nullable=True),
        sa.Column("assignment_id", sa.String(32), nullable=True),
        sa.Column("rule_id", sa.String(100), nullable=True),
        sa.Column("confidence", sa.Float, nullable=True),
        sa.Column("breakdown", sa.JSON, nullable=True),
        sa.Column("rule_set_version", sa.String(64), nullable=True),
        sa.Column("attempts", sa.Integer, nullable=False, server_default="0"),
        sa.Column("transitions", sa.JSON, nullable=False),
        sa.Column("error_code", sa.String(50), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("idx_audit_ticket", "audit_records", ["ticket_id"])
    op.create_index("idx_audit_state", "audit_records", ["state"])

    # Escalation queue
    op.create_table(
        "escalations",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("ticket_id", sa.String(100), nullable=False),
        sa.Column("reason", sa.Text, nullable=False),
        sa.Column("rule_id", sa.String(100), nullable=True),
        sa.Column("rule_set_version", sa.String(64), nullable=True),
        sa.Column("raised_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("idx_escalations_ticket", "escalations", ["ticket_id"])


def downgrade() -> None:
    op.drop_table("escalations")
    op.drop_table("audit_records")
    op.drop_table("assignments")
    op.drop_table("routing_rules")
    op.drop_table("agents")
