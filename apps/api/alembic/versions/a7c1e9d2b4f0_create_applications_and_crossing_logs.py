"""create applications and crossing_logs

Revision ID: a7c1e9d2b4f0
Revises:
Create Date: 2026-10-17 09:00:00.000000

This migration:
1. Creates the application_status and crossing_kind enum types
2. Creates the applications table with the lifecycle, decision, credential
   and crossing columns
3. Creates the append-only crossing_logs table
4. Adds the indexes the sweeps and the duplicate check depend on:
   - (status, permit_expiry_date) for the expiry sweep
   - (status, visit_end_date) for the overstay sweep
   - (application_id, recorded_at) for "latest crossing per application"
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "a7c1e9d2b4f0"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

APPLICATION_STATUSES = (
    "SUBMITTED",
    "UNDER_REVIEW",
    "PENDING_DOCUMENTS",
    "APPROVED",
    "REJECTED",
    "ACTIVE",
    "EXITED",
    "EXPIRED",
    "OVERSTAYED",
)


def upgrade() -> None:
    """Create applications and crossing_logs."""
    application_status = postgresql.ENUM(
        *APPLICATION_STATUSES, name="application_status", create_type=False
    )
    crossing_kind = postgresql.ENUM("ENTRY", "EXIT", name="crossing_kind", create_type=False)
    application_status.create(op.get_bind(), checkfirst=True)
    crossing_kind.create(op.get_bind(), checkfirst=True)

    op.create_table(
        "applications",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("reference_number", sa.String(length=20), nullable=False),
        # Applicant
        sa.Column("full_name", sa.String(length=200), nullable=False),
        sa.Column("phone_number", sa.String(length=20), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("nationality", sa.String(length=100), nullable=False),
        sa.Column("visit_purpose", sa.String(length=50), nullable=False),
        sa.Column("visit_start_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("visit_end_date", sa.DateTime(timezone=True), nullable=False),
        # Lifecycle
        sa.Column("status", application_status, nullable=False),
        sa.Column("status_changed_at", sa.DateTime(timezone=True), nullable=True),
        # Decision
        sa.Column("approval_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejection_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("decided_by", postgresql.UUID(as_uuid=True), nullable=True),
        # Credential
        sa.Column("permit_expiry_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("credential", sa.Text(), nullable=True),
        sa.Column("credential_signature", sa.String(length=128), nullable=True),
        # Crossings
        sa.Column("entry_timestamp", sa.DateTime(timezone=True), nullable=True),
        sa.Column("exit_timestamp", sa.DateTime(timezone=True), nullable=True),
        sa.Column("overstay_days", sa.Integer(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("reference_number"),
        # approval and rejection are mutually exclusive
        sa.CheckConstraint(
            "approval_date IS NULL OR rejection_date IS NULL",
            name="ck_applications_single_decision",
        ),
    )
    op.create_index("ix_applications_status", "applications", ["status"])
    op.create_index(
        "ix_applications_status_permit_expiry",
        "applications",
        ["status", "permit_expiry_date"],
    )
    op.create_index(
        "ix_applications_status_visit_end",
        "applications",
        ["status", "visit_end_date"],
    )

    op.create_table(
        "crossing_logs",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("application_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("kind", crossing_kind, nullable=False),
        sa.Column("checkpoint_name", sa.String(length=200), nullable=False),
        sa.Column("checkpoint_location", sa.String(length=200), nullable=True),
        sa.Column("recorded_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("recording_officer_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.ForeignKeyConstraint(
            ["application_id"],
            ["applications.id"],
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_crossing_logs_application_recorded",
        "crossing_logs",
        ["application_id", "recorded_at"],
    )
    op.create_index(
        "ix_crossing_logs_checkpoint_recorded",
        "crossing_logs",
        ["checkpoint_name", "recorded_at"],
    )


def downgrade() -> None:
    """Drop crossing_logs and applications."""
    op.drop_index("ix_crossing_logs_checkpoint_recorded", table_name="crossing_logs")
    op.drop_index("ix_crossing_logs_application_recorded", table_name="crossing_logs")
    op.drop_table("crossing_logs")

    op.drop_index("ix_applications_status_visit_end", table_name="applications")
    op.drop_index("ix_applications_status_permit_expiry", table_name="applications")
    op.drop_index("ix_applications_status", table_name="applications")
    op.drop_table("applications")

    postgresql.ENUM(name="crossing_kind").drop(op.get_bind(), checkfirst=True)
    postgresql.ENUM(name="application_status").drop(op.get_bind(), checkfirst=True)
