"""
Permits Schemas

Pydantic schemas for request validation and response serialization.
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.modules.permits.lifecycle import PresenceState, ReviewPhase
from app.modules.permits.models import ApplicationStatus, CrossingKind

# ============================================
# Lifecycle
# ============================================


class TransitionRequest(BaseModel):
    """Request body for POST /permits/{id}/transition."""

    target_status: ApplicationStatus
    expected_status: ApplicationStatus | None = Field(
        None,
        description="Status the caller last observed. The transition fails with "
        "INVALID_TRANSITION if the stored status differs.",
    )
    notes: str | None = Field(
        None,
        max_length=2000,
        description="Rejection reason or the documents being requested",
    )


class TransitionResponse(BaseModel):
    """Result of a successful review transition."""

    id: UUID
    reference_number: str
    previous_status: ApplicationStatus
    status: ApplicationStatus
    review_phase: ReviewPhase
    presence_state: PresenceState
    permit_expiry_date: datetime | None = None
    message: str


class PermitTrackingResponse(BaseModel):
    """
    Read-only tracking projection for GET /permits/track/{reference}.

    Public, so it never carries the signed credential.
    """

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    reference_number: str
    full_name: str
    status: ApplicationStatus
    review_phase: ReviewPhase
    presence_state: PresenceState
    visit_purpose: str
    visit_start_date: datetime
    visit_end_date: datetime
    approval_date: datetime | None = None
    rejection_date: datetime | None = None
    rejection_reason: str | None = None
    permit_expiry_date: datetime | None = None
    entry_timestamp: datetime | None = None
    exit_timestamp: datetime | None = None
    overstay_days: int | None = None
    created_at: datetime


class TimelineEvent(BaseModel):
    """A single event in an application's lifecycle."""

    status: ApplicationStatus
    timestamp: datetime
    description: str


class LifecycleTimelineResponse(BaseModel):
    """Response for GET /permits/{id}/lifecycle."""

    application_id: UUID
    reference_number: str
    current_status: ApplicationStatus
    events: list[TimelineEvent]


class SweepError(BaseModel):
    application_id: UUID
    error: str


class SweepResponse(BaseModel):
    """Summary of a compliance sweep run."""

    job: str
    executed_at: datetime
    transitioned: int
    skipped: int = 0
    errors: list[SweepError] = []


# ============================================
# Checkpoint
# ============================================


class _CheckpointFields(BaseModel):
    checkpoint_name: str = Field(..., min_length=1, max_length=200)
    checkpoint_location: str | None = Field(None, max_length=200)
    kind: CrossingKind

    @field_validator("checkpoint_name")
    @classmethod
    def strip_checkpoint_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("checkpoint_name must not be blank")
        return v


class VerifyCrossingRequest(_CheckpointFields):
    """Request body for POST /checkpoint/verify (automated QR scan)."""

    credential: str = Field(..., min_length=1, max_length=2048)


class ManualCrossingRequest(_CheckpointFields):
    """Request body for POST /checkpoint/manual (officer keyed entry)."""

    reference_number: str = Field(..., min_length=1, max_length=20)


class CrossingResponse(BaseModel):
    """Result of a recorded crossing."""

    crossing_id: UUID
    application_id: UUID
    reference_number: str
    full_name: str
    nationality: str
    status: ApplicationStatus
    kind: CrossingKind
    checkpoint_name: str
    recorded_at: datetime
    permit_expiry_date: datetime | None = None
    notification_sent: bool
    message: str


class CrossingLogItem(BaseModel):
    """Crossing log entry for the checkpoint log listing."""

    id: UUID
    application_id: UUID
    reference_number: str
    full_name: str
    kind: CrossingKind
    checkpoint_name: str
    checkpoint_location: str | None = None
    recorded_at: datetime
    recording_officer_id: UUID | None = None


class CrossingLogListResponse(BaseModel):
    """Paginated crossing logs."""

    items: list[CrossingLogItem]
    total: int
    skip: int
    limit: int



class CheckpointLookupResponse(PermitTrackingResponse):
    """
    Officer view of an application for GET /checkpoint/applications/{reference}.

    Adds the identity fields an officer checks against the traveller and the
    full crossing history, newest first. Like the public projection it never
    carries the signed credential.
    """

    nationality: str
    phone_number: str
    can_cross: bool = Field(
        ...,
        description="APPROVED or ACTIVE and not past the permit expiry at lookup time",
    )
    crossing_logs: list[CrossingLogItem] = []
