"""
Permits Service Layer

Business logic for the permit lifecycle. Orchestrates the state machine,
credential issuance, the repository's compare-and-swap primitive and
applicant e-mail notifications.

This module implements:
1. Review Transitions:
   - SUBMITTED -> UNDER_REVIEW, UNDER_REVIEW -> PENDING_DOCUMENTS / APPROVED / REJECTED,
     PENDING_DOCUMENTS -> UNDER_REVIEW
   - Approval issues the signed credential and fixes the permit expiry
   - Checkpoint and compliance edges are refused here

2. Tracking:
   - Read-only projection of an application by reference number

3. Lifecycle Timeline:
   - Ordered events rebuilt from decision timestamps and crossing logs

Error handling:
- Every expected failure is a PermitServiceError carrying a stable error code
- A compare-and-swap that matches no row is reported as INVALID_TRANSITION
- E-mail failures are logged and never undo a committed transition
"""

import logging
from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.email import (
    send_documents_requested,
    send_permit_approved,
    send_permit_rejected,
)
from app.modules.permits import credentials, repository
from app.modules.permits.helpers import is_valid_reference_number, normalize_reference_number
from app.modules.permits.lifecycle import (
    InvalidStatusTransitionError,
    TransitionTrigger,
    presence_state,
    review_phase,
    validate_transition,
)
from app.modules.permits.models import Application, ApplicationStatus, CrossingKind
from app.modules.permits.repository import StaleStatusError
from app.modules.permits.schemas import (
    LifecycleTimelineResponse,
    PermitTrackingResponse,
    TimelineEvent,
    TransitionResponse,
)

logger = logging.getLogger(__name__)


class PermitServiceError(Exception):
    """Base exception for permit service errors."""

    def __init__(self, message: str, error_code: str, status_code: int = 400):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        super().__init__(message)


class PermitValidationError(PermitServiceError):
    """Raised when an operation receives malformed input."""

    def __init__(self, message: str):
        super().__init__(message=message, error_code="VALIDATION", status_code=400)


class ApplicationNotFoundError(PermitServiceError):
    """Raised when no application matches an id or reference number."""

    def __init__(self, identifier: UUID | str | None = None):
        message = f"Application {identifier} not found" if identifier else "Application not found"
        super().__init__(message=message, error_code="NOT_FOUND", status_code=404)


class InvalidTransitionError(PermitServiceError):
    """Raised when a lifecycle transition is not allowed or lost a race."""

    def __init__(self, message: str):
        super().__init__(message=message, error_code="INVALID_TRANSITION", status_code=409)


class InvalidStatusError(PermitServiceError):
    """Raised when an application is not in a state that can cross a checkpoint."""

    def __init__(self, status: ApplicationStatus, message: str | None = None):
        self.status = status
        super().__init__(
            message=message or f"Application in status {status.value} cannot cross a checkpoint",
            error_code="INVALID_STATUS",
            status_code=409,
        )


class PermitExpiredError(PermitServiceError):
    """Raised when a credential or permit is past its validity."""

    def __init__(self, message: str = "Permit has expired"):
        super().__init__(message=message, error_code="EXPIRED", status_code=403)


class InvalidSignatureError(PermitServiceError):
    """Raised when a presented credential is tampered with or forged."""

    def __init__(self):
        super().__init__(
            message="Credential signature is invalid",
            error_code="INVALID_SIGNATURE",
            status_code=403,
        )


class DuplicateCrossingError(PermitServiceError):
    """Raised when the same crossing is repeated inside the suppression window."""

    def __init__(self, kind: CrossingKind, last_recorded_at: datetime):
        super().__init__(
            message=(
                f"{kind.value} already recorded at {last_recorded_at.isoformat()}. "
                "Do not resubmit this crossing."
            ),
            error_code="DUPLICATE",
            status_code=409,
        )


# ============================================
# Review transitions
# ============================================


def _decision_fields(
    application: Application,
    target: ApplicationStatus,
    officer_id: UUID | None,
    notes: str | None,
    now: datetime,
) -> dict:
    """Extra columns written alongside a review transition."""
    if target == ApplicationStatus.APPROVED:
        expiry = credentials.permit_expiry_for(now)
        issued = credentials.issue(application.id, expiry, application.reference_number)
        return {
            "approval_date": now,
            "permit_expiry_date": expiry,
            "credential": issued.payload,
            "credential_signature": issued.signature,
            "decided_by": officer_id,
        }

    if target == ApplicationStatus.REJECTED:
        return {
            "rejection_date": now,
            "rejection_reason": notes,
            "decided_by": officer_id,
        }

    return {}


def presented_credential(application: Application) -> str | None:
    """The string a QR code carries for this application, if it has one."""
    if not application.credential or not application.credential_signature:
        return None
    return f"{application.credential}.{application.credential_signature}"


async def _notify_decision(
    application: Application,
    target: ApplicationStatus,
    notes: str | None,
) -> None:
    """E-mail the applicant about a review decision. Never raises."""
    if not application.email:
        logger.info(f"No e-mail on file for {application.reference_number}, skipping notification")
        return

    try:
        if target == ApplicationStatus.APPROVED:
            sent = await send_permit_approved(
                to_email=application.email,
                applicant_name=application.full_name,
                reference_number=application.reference_number,
                visit_start=application.visit_start_date,
                visit_end=application.visit_end_date,
                permit_expiry=application.permit_expiry_date,
                credential=presented_credential(application),
            )
        elif target == ApplicationStatus.REJECTED:
            sent = await send_permit_rejected(
                to_email=application.email,
                applicant_name=application.full_name,
                reference_number=application.reference_number,
                reason=notes,
            )
        elif target == ApplicationStatus.PENDING_DOCUMENTS:
            sent = await send_documents_requested(
                to_email=application.email,
                applicant_name=application.full_name,
                reference_number=application.reference_number,
                notes=notes,
            )
        else:
            return
    except Exception as e:
        logger.error(
            f"Decision e-mail for {application.reference_number} raised: {e}",
            exc_info=True,
        )
        return

    if not sent:
        logger.error(f"Failed to send {target.value} e-mail for {application.reference_number}")


async def transition(
    db: AsyncSession,
    application_id: UUID,
    target: ApplicationStatus,
    officer_id: UUID | None = None,
    expected: ApplicationStatus | None = None,
    notes: str | None = None,
    now: datetime | None = None,
) -> TransitionResponse:
    """
    Attempt a single guarded review transition.

    Only REVIEW edges can be driven from here; ACTIVE and EXITED come from
    the checkpoint recorder and EXPIRED / OVERSTAYED from the compliance
    sweeps.

    Args:
        db: Database session
        application_id: Application UUID
        target: Status to move to
        officer_id: Officer taking the decision
        expected: Status the caller last observed (defaults to the stored one)
        notes: Rejection reason or requested documents
        now: Transition instant (defaults to the wall clock)

    Returns:
        TransitionResponse describing the new state

    Raises:
        ApplicationNotFoundError: If the application does not exist
        InvalidTransitionError: If the edge is not allowed, or the stored
            status is not the expected one
    """
    now = now or datetime.now(UTC)

    application = await repository.get_by_id(db, application_id)
    if not application:
        raise ApplicationNotFoundError(application_id)

    current = expected or application.status

    try:
        validate_transition(current, target, TransitionTrigger.REVIEW)
    except InvalidStatusTransitionError as e:
        logger.warning(f"Rejected transition for {application.reference_number}: {e}")
        raise InvalidTransitionError(str(e)) from e

    fields = _decision_fields(application, target, officer_id, notes, now)

    try:
        updated = await repository.compare_and_swap_status(
            db, application.id, current, target, now=now, **fields
        )
    except StaleStatusError as e:
        await db.rollback()
        logger.warning(f"Stale transition for {application.reference_number}: {e}")
        raise InvalidTransitionError(str(e)) from e

    await db.commit()

    logger.info(
        f"Application {updated.reference_number} moved {current.value} -> {target.value}"
        + (f" by officer {officer_id}" if officer_id else "")
    )

    await _notify_decision(updated, target, notes)

    return TransitionResponse(
        id=updated.id,
        reference_number=updated.reference_number,
        previous_status=current,
        status=updated.status,
        review_phase=review_phase(updated.status),
        presence_state=presence_state(updated.status),
        permit_expiry_date=updated.permit_expiry_date,
        message=f"Application moved to {target.value}",
    )


# ============================================
# Tracking and timeline
# ============================================


def to_tracking_response(application: Application) -> PermitTrackingResponse:
    """
    Build the public tracking projection of an application.

    The signed credential is never part of it: reference numbers are
    sequential and the scan endpoint is unauthenticated.
    """
    return PermitTrackingResponse(
        id=application.id,
        reference_number=application.reference_number,
        full_name=application.full_name,
        status=application.status,
        review_phase=review_phase(application.status),
        presence_state=presence_state(application.status),
        visit_purpose=application.visit_purpose,
        visit_start_date=application.visit_start_date,
        visit_end_date=application.visit_end_date,
        approval_date=application.approval_date,
        rejection_date=application.rejection_date,
        rejection_reason=application.rejection_reason,
        permit_expiry_date=application.permit_expiry_date,
        entry_timestamp=application.entry_timestamp,
        exit_timestamp=application.exit_timestamp,
        overstay_days=application.overstay_days,
        created_at=application.created_at,
    )


async def lookup_by_reference(db: AsyncSession, reference_number: str) -> PermitTrackingResponse:
    """
    Read-only status projection by reference number.

    Raises:
        PermitValidationError: If the reference number is malformed
        ApplicationNotFoundError: If no application has that reference
    """
    reference_number = normalize_reference_number(reference_number)
    if not is_valid_reference_number(reference_number):
        raise PermitValidationError(f"Malformed reference number: {reference_number!r}")

    application = await repository.get_by_reference(db, reference_number)
    if not application:
        raise ApplicationNotFoundError(reference_number)

    return to_tracking_response(application)


# Statuses whose arrival time is only known from status_changed_at
_STATUS_CHANGE_DESCRIPTIONS = {
    ApplicationStatus.UNDER_REVIEW: "Application under review",
    ApplicationStatus.PENDING_DOCUMENTS: "Additional documents requested",
    ApplicationStatus.EXPIRED: "Permit expired",
    ApplicationStatus.OVERSTAYED: "Visit end date passed without exit",
}


async def get_lifecycle_timeline(
    db: AsyncSession, application_id: UUID
) -> LifecycleTimelineResponse:
    """
    Rebuild the ordered event timeline for an application.

    Events come from created_at, the approval / rejection dates, every
    crossing log (ENTRY as ACTIVE, EXIT as EXITED) and, for statuses with no
    dedicated timestamp, status_changed_at.

    Raises:
        ApplicationNotFoundError: If the application does not exist
    """
    application = await repository.get_by_id(db, application_id)
    if not application:
        raise ApplicationNotFoundError(application_id)

    events = [
        TimelineEvent(
            status=ApplicationStatus.SUBMITTED,
            timestamp=application.created_at,
            description="Application submitted",
        )
    ]

    if application.approval_date:
        events.append(
            TimelineEvent(
                status=ApplicationStatus.APPROVED,
                timestamp=application.approval_date,
                description="Application approved",
            )
        )

    if application.rejection_date:
        description = "Application rejected"
        if application.rejection_reason:
            description = f"{description}: {application.rejection_reason}"
        events.append(
            TimelineEvent(
                status=ApplicationStatus.REJECTED,
                timestamp=application.rejection_date,
                description=description,
            )
        )

    for log in await repository.get_crossing_logs(db, application.id):
        status = (
            ApplicationStatus.ACTIVE if log.kind == CrossingKind.ENTRY else ApplicationStatus.EXITED
        )
        events.append(
            TimelineEvent(
                status=status,
                timestamp=log.recorded_at,
                description=f"{log.kind.value} at {log.checkpoint_name}",
            )
        )

    description = _STATUS_CHANGE_DESCRIPTIONS.get(application.status)
    if description and application.status_changed_at:
        if application.status == ApplicationStatus.OVERSTAYED and application.overstay_days:
            description = f"{description} ({application.overstay_days} days)"
        events.append(
            TimelineEvent(
                status=application.status,
                timestamp=application.status_changed_at,
                description=description,
            )
        )

    events.sort(key=lambda event: event.timestamp)

    return LifecycleTimelineResponse(
        application_id=application.id,
        reference_number=application.reference_number,
        current_status=application.status,
        events=events,
    )
