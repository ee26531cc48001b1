"""Initial reconciliation schema.

Revision ID: 0001
Revises:
Create Date: 2026-09-28

"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None

_ENUM_LENGTH = 32


def _state_columns() -> list[sa.Column[object]]:
    return [
        sa.Column("identity_key", sa.String(), nullable=False),
        sa.Column("signature", sa.Text(), nullable=False),
        sa.Column("raw_data", sa.JSON(), nullable=True),
        sa.Column("last_seen_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "violation_state",
        *_state_columns(),
        sa.Column("case_no", sa.String(), nullable=False),
        sa.Column("violation_type", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=True),
        sa.Column("observed_on", sa.Date(), nullable=True),
        sa.Column("site_address", sa.String(), nullable=True),
        sa.Column("matched_ticket_id", sa.Integer(), nullable=True),
        sa.Column("match_method", sa.String(_ENUM_LENGTH), nullable=True),
        sa.Column("match_confidence", sa.String(_ENUM_LENGTH), nullable=True),
        sa.Column("matched_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("identity_key", name="pk_violation_state"),
    )
    op.create_index("ix_violation_state_case_no", "violation_state", ["case_no"])

    op.create_table(
        "inspection_state",
        *_state_columns(),
        sa.Column("case_no", sa.String(), nullable=True),
        sa.Column("inspection_type", sa.String(), nullable=True),
        sa.Column("result", sa.String(), nullable=True),
        sa.Column("inspector", sa.String(), nullable=True),
        sa.Column("scheduled_on", sa.Date(), nullable=True),
        sa.Column("completed_on", sa.Date(), nullable=True),
        sa.PrimaryKeyConstraint("identity_key", name="pk_inspection_state"),
    )
    op.create_index("ix_inspection_state_case_no", "inspection_state", ["case_no"])

    op.create_table(
        "permit_state",
        *_state_columns(),
        sa.Column("permit_no", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=True),
        sa.Column("permit_type", sa.String(), nullable=True),
        sa.Column("permit_subtype", sa.String(), nullable=True),
        sa.Column("site_address", sa.String(), nullable=True),
        sa.Column("job_value", sa.Float(), nullable=True),
        sa.Column("external_permit_id", sa.Integer(), nullable=True),
        sa.Column("external_type_id", sa.Integer(), nullable=True),
        sa.Column("external_subtype_id", sa.Integer(), nullable=True),
        sa.Column("external_status_id", sa.Integer(), nullable=True),
        sa.PrimaryKeyConstraint("identity_key", name="pk_permit_state"),
    )

    op.create_table(
        "sync_run",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("record_type", sa.String(_ENUM_LENGTH), nullable=False),
        sa.Column("status", sa.String(_ENUM_LENGTH), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("total_records", sa.Integer(), nullable=False),
        sa.Column("changed_records", sa.Integer(), nullable=False),
        sa.Column("errors", sa.Integer(), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_sync_run"),
    )
    op.create_index("ix_sync_run_record_type", "sync_run", ["record_type"])

    op.create_table(
        "review_queue",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("identity_key", sa.String(), nullable=False),
        sa.Column("record_payload", sa.JSON(), nullable=False),
        sa.Column("candidates", sa.JSON(), nullable=True),
        sa.Column("reason", sa.String(_ENUM_LENGTH), nullable=False),
        sa.Column("status", sa.String(_ENUM_LENGTH), nullable=False),
        sa.Column("resolved_ticket_id", sa.Integer(), nullable=True),
        sa.Column("resolved_by", sa.String(), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "status IN ('pending', 'resolved', 'skipped')",
            name="ck_review_queue_review_status",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_review_queue"),
    )
    op.create_index("ix_review_queue_identity_key", "review_queue", ["identity_key"])

    op.create_table(
        "match_log",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("identity_key", sa.String(), nullable=False),
        sa.Column("method", sa.String(_ENUM_LENGTH), nullable=False),
        sa.Column("candidate_count", sa.Integer(), nullable=True),
        sa.Column("selected_ticket_id", sa.Integer(), nullable=True),
        sa.Column("confidence", sa.String(_ENUM_LENGTH), nullable=True),
        sa.Column("reasoning", sa.Text(), nullable=True),
        sa.Column("prompt_tokens", sa.Integer(), nullable=True),
        sa.Column("completion_tokens", sa.Integer(), nullable=True),
        sa.Column("duration_ms", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_match_log"),
    )
    op.create_index("ix_match_log_identity_key", "match_log", ["identity_key"])


def downgrade() -> None:
    op.drop_index("ix_match_log_identity_key", table_name="match_log")
    op.drop_table("match_log")
    op.drop_index("ix_review_queue_identity_key", table_name="review_queue")
    op.drop_table("review_queue")
    op.drop_index("ix_sync_run_record_type", table_name="sync_run")
    op.drop_table("sync_run")
    op.drop_table("permit_state")
    op.drop_index("ix_inspection_state_case_no", table_name="inspection_state")
    op.drop_table("inspection_state")
    op.drop_index("ix_violation_state_case_no", table_name="violation_state")
    op.drop_table("violation_state")
