"""Initial schema — letters, physical_requests, audit_log.

Revision ID: 001
Revises: None
Create Date: 2026-10-18
"""
from __future__ import annotations

from typing import Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, tuple[str, ...], None] = None
depends_on: Union[str, tuple[str, ...], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("id", postgresql.UUID(as_uuid=True), server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    ]


def upgrade() -> None:
    # ── Standalone tables (no FKs) ─────────────────────────────────────

    op.create_table(
        "audit_log",
        sa.Column("event_type", sa.String(100), nullable=False, index=True),
        sa.Column("letter_id", postgresql.UUID(as_uuid=True), index=True),
        sa.Column("request_id", postgresql.UUID(as_uuid=True), index=True),
        sa.Column("actor_id", sa.String(100), comment="Account id, admin name, or 'system'"),
        sa.Column("actor_role", sa.String(50), comment="requester, author, admin, system"),
        sa.Column("data", postgresql.JSONB(astext_type=sa.Text())),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "letters",
        sa.Column("author_id", sa.String(100), index=True, comment="Account id of the author"),
        sa.Column("title", sa.String(100), nullable=False),
        sa.Column("og_title", sa.String(200)),
        sa.Column("letter_type", sa.String(20), nullable=False, server_default="friend"),
        sa.Column("author_name", sa.String(100)),
        sa.Column("allow_physical_requests", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("auto_approve", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("max_requests_per_person", sa.Integer(), nullable=False, server_default="5"),
        sa.Column("approval_message", sa.Text()),
        sa.Column("total_requests", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("pending_requests", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("approved_requests", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("rejected_requests", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("completed_requests", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("cancelled_requests", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "recipient_entries",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_letters_recipient_entries",
        "letters",
        ["recipient_entries"],
        postgresql_using="gin",
    )

    # ── Requests (FK → letters) ────────────────────────────────────────

    op.create_table(
        "physical_requests",
        sa.Column("letter_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("letters.id"), nullable=False, index=True),
        sa.Column("batch_id", postgresql.UUID(as_uuid=True), index=True),
        sa.Column("requester_kind", sa.String(20), nullable=False),
        sa.Column("requester_key", sa.String(128), nullable=False, comment="Account id or session token"),
        sa.Column("hashed_ip", sa.String(64)),
        sa.Column("user_agent", sa.String(500)),
        sa.Column("recipient_name", sa.String(50), nullable=False),
        sa.Column("recipient_phone", sa.String(13), nullable=False, index=True),
        sa.Column("postal_code", sa.String(5), nullable=False),
        sa.Column("address1", sa.String(200), nullable=False),
        sa.Column("address2", sa.String(200), nullable=False, server_default=""),
        sa.Column("memo", sa.String(500), nullable=False, server_default=""),
        sa.Column("shipping_cost", sa.Integer(), nullable=False),
        sa.Column("letter_cost", sa.Integer(), nullable=False),
        sa.Column("total_cost", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending", index=True),
        sa.Column("approved_at", sa.DateTime(timezone=True)),
        sa.Column("approved_by", sa.String(100)),
        sa.Column("rejected_at", sa.DateTime(timezone=True)),
        sa.Column("rejection_reason", sa.Text()),
        sa.Column("writing_at", sa.DateTime(timezone=True)),
        sa.Column("cancelled_at", sa.DateTime(timezone=True)),
        sa.Column("failed_at", sa.DateTime(timezone=True)),
        sa.Column("failure_reason", sa.Text()),
        sa.Column("tracking_number", sa.String(100)),
        sa.Column("shipping_company", sa.String(100)),
        sa.Column("sent_at", sa.DateTime(timezone=True)),
        sa.Column("delivered_at", sa.DateTime(timezone=True)),
        sa.Column(
            "admin_notes",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("total_cost = shipping_cost + letter_cost", name="ck_physical_requests_total_cost"),
    )
    op.create_index("ix_physical_requests_letter_requester", "physical_requests", ["letter_id", "requester_key"])
    op.create_index("ix_physical_requests_letter_status", "physical_requests", ["letter_id", "status"])


def downgrade() -> None:
    # Drop in reverse dependency order
    op.drop_index("ix_physical_requests_letter_status", table_name="physical_requests")
    op.drop_index("ix_physical_requests_letter_requester", table_name="physical_requests")
    op.drop_table("physical_requests")
    op.drop_index("ix_letters_recipient_entries", table_name="letters")
    op.drop_table("letters")
    op.drop_table("audit_log")
