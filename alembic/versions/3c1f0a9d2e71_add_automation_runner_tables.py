"""add automation runner tables

Revision ID: 3c1f0a9d2e71
Revises:
Create Date: 2026-10-18 09:12:40.512034
"""

from __future__ import annotations

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "3c1f0a9d2e71"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(astext_type=sa.Text()), "postgresql")


def upgrade() -> None:
    op.create_table(
        "automations",
        sa.Column("id", sa.String(), primary_key=True, nullable=False),
        sa.Column("org_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("version", sa.Integer(), server_default=sa.text("1"), nullable=False),
        sa.Column("trigger", JSON_TYPE, nullable=False),
        sa.Column("graph", JSON_TYPE, nullable=False),
        sa.Column("status", sa.String(), server_default="draft", nullable=False),
        sa.Column("requires_approval", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("approval_status", sa.String(), server_default="none", nullable=False),
        sa.Column("approved_by", sa.String(), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("approval_notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(op.f("ix_automations_org_id"), "automations", ["org_id"], unique=False)
    op.create_index("ix_automations_org_status", "automations", ["org_id", "status"], unique=False)

    op.create_table(
        "automation_approvals",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column(
            "automation_id",
            sa.String(),
            sa.ForeignKey("automations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("action", sa.String(), nullable=False),
        sa.Column("actor_id", sa.String(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index(
        op.f("ix_automation_approvals_automation_id"), "automation_approvals", ["automation_id"], unique=False
    )

    op.create_table(
        "automation_runs",
        sa.Column("id", sa.String(), primary_key=True, nullable=False),
        sa.Column("org_id", sa.String(), nullable=False),
        sa.Column(
            "automation_id",
            sa.String(),
            sa.ForeignKey("automations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("context", JSON_TYPE, nullable=False),
        sa.Column("status", sa.String(), server_default="running", nullable=False),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "status IN ('running', 'waiting', 'success', 'failed')",
            name="ck_automation_runs_status",
        ),
    )
    op.create_index(op.f("ix_automation_runs_org_id"), "automation_runs", ["org_id"], unique=False)
    op.create_index(op.f("ix_automation_runs_automation_id"), "automation_runs", ["automation_id"], unique=False)

    op.create_table(
        "automation_run_steps",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column(
            "run_id",
            sa.String(),
            sa.ForeignKey("automation_runs.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("node_id", sa.String(), nullable=False),
        sa.Column("node_type", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("input", JSON_TYPE, nullable=True),
        sa.Column("output", JSON_TYPE, nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_automation_run_steps_run_node", "automation_run_steps", ["run_id", "node_id"], unique=False)

    op.create_table(
        "delayed_jobs",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("org_id", sa.String(), nullable=False),
        sa.Column(
            "automation_id",
            sa.String(),
            sa.ForeignKey("automations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "run_id",
            sa.String(),
            sa.ForeignKey("automation_runs.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("node_id", sa.String(), nullable=False),
        sa.Column("execute_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("payload", JSON_TYPE, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index(op.f("ix_delayed_jobs_run_id"), "delayed_jobs", ["run_id"], unique=False)
    op.create_index(op.f("ix_delayed_jobs_execute_at"), "delayed_jobs", ["execute_at"], unique=False)

    op.create_table(
        "event_log",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("org_id", sa.String(), nullable=False),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("subject_type", sa.String(), nullable=True),
        sa.Column("subject_id", sa.String(), nullable=True),
        sa.Column("payload", JSON_TYPE, nullable=False),
        sa.Column("processed", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index(op.f("ix_event_log_org_id"), "event_log", ["org_id"], unique=False)
    op.create_index(op.f("ix_event_log_event_type"), "event_log", ["event_type"], unique=False)
    op.create_index("ix_event_log_processed", "event_log", ["processed", "occurred_at"], unique=False)

    # Business tables written by action handlers; the CRM owns their full shape.
    op.create_table(
        "emails",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("org_id", sa.String(), nullable=False, index=True),
        sa.Column("to", sa.String(), nullable=False),
        sa.Column("cc", sa.String(), nullable=True),
        sa.Column("bcc", sa.String(), nullable=True),
        sa.Column("subject", sa.String(), nullable=True),
        sa.Column("body", sa.Text(), nullable=True),
        sa.Column("deal_id", sa.String(), nullable=True),
        sa.Column("contact_id", sa.String(), nullable=True),
        sa.Column("direction", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("scheduled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_table(
        "deals",
        sa.Column("id", sa.String(), primary_key=True, nullable=False),
        sa.Column("org_id", sa.String(), nullable=False, index=True),
        sa.Column("name", sa.String(), nullable=True),
        sa.Column("stage", sa.String(), nullable=True),
    )
    op.create_table(
        "tasks",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("org_id", sa.String(), nullable=False, index=True),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("due_date", sa.Date(), nullable=True),
        sa.Column("priority", sa.String(), nullable=False),
        sa.Column("related_deal_id", sa.String(), nullable=True),
        sa.Column("related_contact_id", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_table(
        "proformas",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("org_id", sa.String(), nullable=False, index=True),
        sa.Column("number", sa.String(), nullable=False),
        sa.Column("sales_order_id", sa.String(), nullable=True),
        sa.Column("currency", sa.String(), nullable=False),
        sa.Column("subtotal_cents", sa.Integer(), nullable=False),
        sa.Column("tax_rate", sa.Float(), nullable=False),
        sa.Column("tax_cents", sa.Integer(), nullable=False),
        sa.Column("total_cents", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_table(
        "so_reservations",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("org_id", sa.String(), nullable=False, index=True),
        sa.Column("sales_order_id", sa.String(), nullable=True),
        sa.Column("product_id", sa.String(), nullable=False),
        sa.Column("qty", sa.Float(), nullable=False),
        sa.Column("location_id", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("so_reservations")
    op.drop_table("proformas")
    op.drop_table("tasks")
    op.drop_table("deals")
    op.drop_table("emails")
    op.drop_index("ix_event_log_processed", table_name="event_log")
    op.drop_index(op.f("ix_event_log_event_type"), table_name="event_log")
    op.drop_index(op.f("ix_event_log_org_id"), table_name="event_log")
    op.drop_table("event_log")
    op.drop_index(op.f("ix_delayed_jobs_execute_at"), table_name="delayed_jobs")
    op.drop_index(op.f("ix_delayed_jobs_run_id"), table_name="delayed_jobs")
    op.drop_table("delayed_jobs")
    op.drop_index("ix_automation_run_steps_run_node", table_name="automation_run_steps")
    op.drop_table("automation_run_steps")
    op.drop_index(op.f("ix_automation_runs_automation_id"), table_name="automation_runs")
    op.drop_index(op.f("ix_automation_runs_org_id"), table_name="automation_runs")
    op.drop_table("automation_runs")
    op.drop_index(op.f("ix_automation_approvals_automation_id"), table_name="automation_approvals")
    op.drop_table("automation_approvals")
    op.drop_index("ix_automations_org_status", table_name="automations")
    op.drop_index(op.f("ix_automations_org_id"), table_name="automations")
    op.drop_table("automations")
