"""Helpdesk schema with the seeded status lookup table."""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "20250105_000001"
down_revision = None
branch_labels = None
depends_on = None

STATUS_ROWS = [
    {"value": "open", "label": "Open", "badge_color": "default", "is_final": False, "display_order": 1},
    {"value": "reopened", "label": "Reopened", "badge_color": "default", "is_final": False, "display_order": 2},
    {"value": "in_progress", "label": "In Progress", "badge_color": "outline", "is_final": False, "display_order": 3},
    {
        "value": "awaiting_student_response",
        "label": "Awaiting Student Response",
        "badge_color": "outline",
        "is_final": False,
        "display_order": 4,
    },
    {"value": "forwarded", "label": "Forwarded", "badge_color": "secondary", "is_final": False, "display_order": 5},
    {"value": "escalated", "label": "Escalated", "badge_color": "destructive", "is_final": False, "display_order": 6},
    {"value": "resolved", "label": "Resolved", "badge_color": "success", "is_final": True, "display_order": 7},
    {"value": "closed", "label": "Closed", "badge_color": "secondary", "is_final": True, "display_order": 8},
]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("external_id", sa.String(length=255), nullable=False, unique=True),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("first_name", sa.String(length=120), nullable=True),
        sa.Column("last_name", sa.String(length=120), nullable=True),
        sa.Column("role", sa.String(length=32), nullable=False, server_default=sa.text("'student'")),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), nullable=False),
    )
    op.create_index("ix_users_external_id", "users", ["external_id"])

    statuses = op.create_table(
        "ticket_statuses",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("value", sa.String(length=50), nullable=False, unique=True),
        sa.Column("label", sa.String(length=100), nullable=False),
        sa.Column("badge_color", sa.String(length=50), nullable=False, server_default=sa.text("'default'")),
        sa.Column("is_final", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("display_order", sa.Integer(), nullable=False, server_default=sa.text("0")),
    )

    op.create_table(
        "ticket_groups",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("is_archived", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), nullable=False),
    )

    op.create_table(
        "tickets",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("category", sa.String(length=120), nullable=False),
        sa.Column("subcategory", sa.String(length=120), nullable=True),
        sa.Column("location", sa.String(length=255), nullable=True),
        sa.Column("status_id", sa.Integer(), sa.ForeignKey("ticket_statuses.id"), nullable=False),
        sa.Column("created_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("assigned_to", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("group_id", sa.Integer(), sa.ForeignKey("ticket_groups.id", ondelete="SET NULL"), nullable=True),
        sa.Column("escalation_level", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("last_escalation_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("resolution_due_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=False, server_default=sa.text("'{}'")),
        sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), nullable=False),
    )
    op.create_index("ix_tickets_category", "tickets", ["category"])
    op.create_index("ix_tickets_created_by", "tickets", ["created_by"])
    op.create_index("ix_tickets_assigned_to", "tickets", ["assigned_to"])

    op.create_table(
        "committees",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=140), nullable=False, unique=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("contact_email", sa.String(length=255), nullable=True),
        sa.Column("head_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False),
    )

    op.create_table(
        "committee_members",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("committee_id", sa.Integer(), sa.ForeignKey("committees.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("role", sa.String(length=64), nullable=True),
        sa.UniqueConstraint("committee_id", "user_id", name="unique_committee_member"),
    )

    op.create_table(
        "ticket_committee_tags",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("ticket_id", sa.Integer(), sa.ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False),
        sa.Column("committee_id", sa.Integer(), sa.ForeignKey("committees.id", ondelete="CASCADE"), nullable=False),
        sa.Column("tagged_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.UniqueConstraint("ticket_id", "committee_id", name="unique_ticket_committee_tag"),
    )

    op.create_table(
        "admin_assignments",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("domain", sa.String(length=120), nullable=False),
        sa.Column("scope", sa.String(length=120), nullable=True),
        sa.UniqueConstraint("user_id", "domain", "scope", name="unique_admin_assignment"),
    )

    op.create_table(
        "outbox",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("event_type", sa.String(length=100), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False, server_default=sa.text("'{}'")),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("next_retry_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("processed_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False),
    )
    op.create_index("ix_outbox_pending", "outbox", ["processed_at", "next_retry_at"])

    op.bulk_insert(statuses, [dict(row, is_active=True) for row in STATUS_ROWS])


def downgrade() -> None:
    op.drop_index("ix_outbox_pending", table_name="outbox")
    op.drop_table("outbox")
    op.drop_table("admin_assignments")
    op.drop_table("ticket_committee_tags")
    op.drop_table("committee_members")
    op.drop_table("committees")
    op.drop_index("ix_tickets_assigned_to", table_name="tickets")
    op.drop_index("ix_tickets_created_by", table_name="tickets")
    op.drop_index("ix_tickets_category", table_name="tickets")
    op.drop_table("tickets")
    op.drop_table("ticket_groups")
    op.drop_table("ticket_statuses")
    op.drop_index("ix_users_external_id", table_name="users")
    op.drop_table("users")
