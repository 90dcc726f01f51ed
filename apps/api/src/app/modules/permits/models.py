"""
Permit Models

Database models for entry/residency permit applications and the checkpoint
crossing log. Applications are created by the intake flow and afterwards only
change status through the lifecycle state machine. Crossing logs are
append-only.
"""

import enum
import uuid
from datetime import datetime

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base


class ApplicationStatus(str, enum.Enum):
    """Lifecycle status of a permit application."""

    SUBMITTED = "SUBMITTED"
    UNDER_REVIEW = "UNDER_REVIEW"
    PENDING_DOCUMENTS = "PENDING_DOCUMENTS"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    ACTIVE = "ACTIVE"
    EXITED = "EXITED"
    EXPIRED = "EXPIRED"
    OVERSTAYED = "OVERSTAYED"


class CrossingKind(str, enum.Enum):
    """Direction of a checkpoint crossing."""

    ENTRY = "ENTRY"
    EXIT = "EXIT"


class Application(Base):
    """
    Permit application.

    Holds the applicant data consumed from intake plus everything the permit
    core maintains: status, decision dates, the signed credential, the most
    recent crossing timestamps and the overstay snapshot.
    """

    __tablename__ = "applications"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    reference_number: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)

    # Applicant (written by intake, read-only here)
    full_name: Mapped[str] = mapped_column(String(200), nullable=False)
    phone_number: Mapped[str] = mapped_column(String(20), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    nationality: Mapped[str] = mapped_column(String(100), nullable=False, default="Iraq")
    visit_purpose: Mapped[str] = mapped_column(String(50), nullable=False)

    # Declared visit window
    visit_start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    visit_end_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    # Lifecycle
    status: Mapped[ApplicationStatus] = mapped_column(
        Enum(ApplicationStatus, name="application_status"),
        nullable=False,
        default=ApplicationStatus.SUBMITTED,
    )
    status_changed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Decision (approval_date and rejection_date are mutually exclusive)
    approval_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rejection_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    decided_by: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)

    # Credential (set once on approval)
    permit_expiry_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    credential: Mapped[str | None] = mapped_column(Text, nullable=True)
    credential_signature: Mapped[str | None] = mapped_column(String(128), nullable=True)

    # Most recent crossings
    entry_timestamp: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    exit_timestamp: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Snapshot recomputed by every overstay sweep
    overstay_days: Mapped[int | None] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    crossing_logs: Mapped[list["CrossingLog"]] = relationship(
        "CrossingLog",
        back_populates="application",
        order_by="CrossingLog.recorded_at",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        CheckConstraint(
            "approval_date IS NULL OR rejection_date IS NULL",
            name="ck_applications_single_decision",
        ),
        Index("ix_applications_status", "status"),
        Index("ix_applications_status_permit_expiry", "status", "permit_expiry_date"),
        Index("ix_applications_status_visit_end", "status", "visit_end_date"),
    )


class CrossingLog(Base):
    """
    A single ENTRY or EXIT recorded at a checkpoint.

    Rows are written only by the checkpoint recorder and never updated.
    """

    __tablename__ = "crossing_logs"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    application_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("applications.id", ondelete="CASCADE"),
        nullable=False,
    )

    kind: Mapped[CrossingKind] = mapped_column(
        Enum(CrossingKind, name="crossing_kind"), nullable=False
    )
    checkpoint_name: Mapped[str] = mapped_column(String(200), nullable=False)
    checkpoint_location: Mapped[str | None] = mapped_column(String(200), nullable=True)
    recorded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    # Set for entries keyed in manually by an officer
    recording_officer_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), nullable=True
    )

    application: Mapped["Application"] = relationship(
        "Application", back_populates="crossing_logs"
    )

    __table_args__ = (
        Index("ix_crossing_logs_application_recorded", "application_id", "recorded_at"),
        Index("ix_crossing_logs_checkpoint_recorded", "checkpoint_name", "recorded_at"),
    )
