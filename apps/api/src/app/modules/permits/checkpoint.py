"""
Checkpoint Recorder

Records ENTRY and EXIT crossings and advances the lifecycle accordingly.
Two entry points share one algorithm:

- verify_and_record_crossing: automated QR scan; the application is resolved
  from a verified credential
- manual_record_crossing: an authenticated officer keys in a reference number

lookup_for_checkpoint gives the officer the application and its crossing
history before a manual crossing is keyed in.

Algorithm (_record_crossing):
1. Resolve the application, NOT_FOUND if nothing resolves
2. INVALID_STATUS unless APPROVED or ACTIVE (EXIT also needs ACTIVE)
3. EXPIRED past permit_expiry_date, falling back to visit_end_date
4. DUPLICATE if the latest crossing has the same kind and is under five minutes old
5. Append the crossing log
6. Compare-and-swap the status (ENTRY -> ACTIVE, EXIT -> EXITED), guarded on
   the crossing timestamp read in step 1, and commit together with the log
7. Notify the applicant by SMS; a failure is logged and reported, never rolled back

Steps 1-4 write nothing. A store failure at step 5 propagates and nothing
downstream runs.
"""

import logging
from datetime import UTC, datetime, timedelta
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.sms import send_crossing_recorded
from app.modules.permits import credentials, repository
from app.modules.permits.credentials import VerificationFailure
from app.modules.permits.helpers import (
    effective_expiry,
    is_valid_reference_number,
    normalize_reference_number,
)
from app.modules.permits.lifecycle import (
    CROSSABLE_STATUSES,
    InvalidStatusTransitionError,
    TransitionTrigger,
    validate_transition,
)
from app.modules.permits.models import Application, ApplicationStatus, CrossingKind, CrossingLog
from app.modules.permits.repository import StaleStatusError
from app.modules.permits.schemas import (
    CheckpointLookupResponse,
    CrossingLogItem,
    CrossingLogListResponse,
    CrossingResponse,
)
from app.modules.permits.service import (
    ApplicationNotFoundError,
    DuplicateCrossingError,
    InvalidSignatureError,
    InvalidStatusError,
    InvalidTransitionError,
    PermitExpiredError,
    PermitValidationError,
    to_tracking_response,
)

logger = logging.getLogger(__name__)

# Same-kind crossings closer together than this are treated as re-scans
DUPLICATE_WINDOW = timedelta(minutes=5)


def _plan_status_change(
    application: Application, kind: CrossingKind
) -> tuple[ApplicationStatus, ApplicationStatus]:
    """
    Work out the compare-and-swap a crossing performs.

    Returns:
        (expected, target)

    Raises:
        InvalidStatusError: If the crossing makes no sense from the current status
    """
    current = application.status

    if kind == CrossingKind.ENTRY:
        if current == ApplicationStatus.ACTIVE:
            # Re-entry keeps the status and refreshes the entry timestamp
            return current, ApplicationStatus.ACTIVE
        target = ApplicationStatus.ACTIVE
    else:
        if current == ApplicationStatus.APPROVED:
            raise InvalidStatusError(current, "Cannot record EXIT: no entry has been recorded")
        target = ApplicationStatus.EXITED

    try:
        validate_transition(current, target, TransitionTrigger.CHECKPOINT)
    except InvalidStatusTransitionError as e:
        raise InvalidStatusError(current, str(e)) from e

    return current, target


async def _record_crossing(
    db: AsyncSession,
    application: Application | None,
    kind: CrossingKind,
    checkpoint_name: str,
    checkpoint_location: str | None,
    officer_id: UUID | None,
    now: datetime,
) -> CrossingResponse:
    if application is None:
        raise ApplicationNotFoundError()

    if application.status not in CROSSABLE_STATUSES:
        logger.warning(
            f"Crossing refused for {application.reference_number}: status {application.status.value}"
        )
        raise InvalidStatusError(application.status)

    expiry = effective_expiry(application)
    if now > expiry:
        logger.warning(f"Crossing refused for {application.reference_number}: permit expired")
        raise PermitExpiredError(f"Permit expired at {expiry.isoformat()}")

    expected, target = _plan_status_change(application, kind)
    timestamp_field = "entry_timestamp" if kind == CrossingKind.ENTRY else "exit_timestamp"
    # ACTIVE -> ACTIVE matches any concurrent re-entry, so the write is also
    # conditional on the timestamp read here
    observed = {timestamp_field: getattr(application, timestamp_field)}

    latest = await repository.get_latest_crossing_log(db, application.id)
    if latest and latest.kind == kind and now - latest.recorded_at < DUPLICATE_WINDOW:
        logger.info(
            f"Duplicate {kind.value} for {application.reference_number} "
            f"(last at {latest.recorded_at.isoformat()})"
        )
        raise DuplicateCrossingError(kind, latest.recorded_at)

    log = await repository.create_crossing_log(
        db,
        application_id=application.id,
        kind=kind,
        checkpoint_name=checkpoint_name,
        checkpoint_location=checkpoint_location,
        recorded_at=now,
        recording_officer_id=officer_id,
    )

    try:
        updated = await repository.compare_and_swap_status(
            db,
            application.id,
            expected,
            target,
            now=now,
            observed=observed,
            **{timestamp_field: now},
        )
    except StaleStatusError as e:
        await db.rollback()
        logger.warning(f"Concurrent update while recording crossing: {e}")
        raise InvalidTransitionError(str(e)) from e

    await db.commit()

    logger.info(
        f"Recorded {kind.value} for {updated.reference_number} at {checkpoint_name}"
        + (f" (officer {officer_id})" if officer_id else "")
    )

    try:
        notification_sent = await send_crossing_recorded(
            phone_number=updated.phone_number,
            applicant_name=updated.full_name,
            checkpoint_name=checkpoint_name,
        )
    except Exception as e:
        logger.error(f"Crossing notification for {updated.reference_number} raised: {e}")
        notification_sent = False

    if not notification_sent:
        logger.error(f"Crossing notification not delivered for {updated.reference_number}")

    return CrossingResponse(
        crossing_id=log.id,
        application_id=updated.id,
        reference_number=updated.reference_number,
        full_name=updated.full_name,
        nationality=updated.nationality,
        status=updated.status,
        kind=kind,
        checkpoint_name=checkpoint_name,
        recorded_at=now,
        permit_expiry_date=updated.permit_expiry_date,
        notification_sent=notification_sent,
        message=f"{kind.value} recorded at {checkpoint_name}",
    )


async def verify_and_record_crossing(
    db: AsyncSession,
    presented_credential: str,
    checkpoint_name: str,
    kind: CrossingKind,
    checkpoint_location: str | None = None,
    now: datetime | None = None,
) -> CrossingResponse:
    """
    Automated-scan path: verify the QR credential, then record the crossing.

    Raises:
        InvalidSignatureError: Tampered, forged or malformed credential
        PermitExpiredError: Credential or permit past its validity
        ApplicationNotFoundError: Credential names an unknown application
        InvalidStatusError: Application cannot cross in its current status
        DuplicateCrossingError: Same crossing inside the suppression window
        InvalidTransitionError: Lost a race with a concurrent update
    """
    now = now or datetime.now(UTC)

    result = credentials.verify(presented_credential, now=now)
    if not result.valid:
        if result.reason == VerificationFailure.EXPIRED:
            raise PermitExpiredError("Credential has expired")
        raise InvalidSignatureError()

    application = await repository.get_by_id(db, result.application_id)
    return await _record_crossing(
        db,
        application,
        kind,
        checkpoint_name,
        checkpoint_location,
        officer_id=None,
        now=now,
    )


async def manual_record_crossing(
    db: AsyncSession,
    reference_number: str,
    checkpoint_name: str,
    kind: CrossingKind,
    officer_id: UUID,
    checkpoint_location: str | None = None,
    now: datetime | None = None,
) -> CrossingResponse:
    """
    Manual path: an authenticated officer keys in the reference number.

    Same errors as verify_and_record_crossing, minus the credential checks.
    """
    now = now or datetime.now(UTC)

    reference_number = normalize_reference_number(reference_number)
    if not reference_number:
        raise PermitValidationError("Reference number is required")

    application = await repository.get_by_reference(db, reference_number)
    if application is None:
        raise ApplicationNotFoundError(reference_number)

    return await _record_crossing(
        db,
        application,
        kind,
        checkpoint_name,
        checkpoint_location,
        officer_id=officer_id,
        now=now,
    )


def _to_log_item(log: CrossingLog, application: Application) -> CrossingLogItem:
    return CrossingLogItem(
        id=log.id,
        application_id=application.id,
        reference_number=application.reference_number,
        full_name=application.full_name,
        kind=log.kind,
        checkpoint_name=log.checkpoint_name,
        checkpoint_location=log.checkpoint_location,
        recorded_at=log.recorded_at,
        recording_officer_id=log.recording_officer_id,
    )


async def list_crossing_logs(
    db: AsyncSession,
    checkpoint_name: str | None = None,
    skip: int = 0,
    limit: int = 50,
) -> CrossingLogListResponse:
    """Paginated crossing logs, newest first, optionally for one checkpoint."""
    rows, total = await repository.list_crossing_logs(
        db, checkpoint_name=checkpoint_name, skip=skip, limit=limit
    )
    items = [_to_log_item(log, application) for log, application in rows]
    return CrossingLogListResponse(items=items, total=total, skip=skip, limit=limit)


async def lookup_for_checkpoint(
    db: AsyncSession,
    reference_number: str,
    now: datetime | None = None,
) -> CheckpointLookupResponse:
    """
    Officer lookup by reference number with the crossing history, newest first.

    Read-only.

    Raises:
        PermitValidationError: If the reference number is blank or malformed
        ApplicationNotFoundError: If no application has that reference
    """
    now = now or datetime.now(UTC)

    reference_number = normalize_reference_number(reference_number)
    if not is_valid_reference_number(reference_number):
        raise PermitValidationError(f"Malformed reference number: {reference_number!r}")

    application = await repository.get_by_reference(db, reference_number)
    if application is None:
        raise ApplicationNotFoundError(reference_number)

    logs = await repository.get_crossing_logs(db, application.id)
    can_cross = application.status in CROSSABLE_STATUSES and now <= effective_expiry(application)

    return CheckpointLookupResponse(
        **to_tracking_response(application).model_dump(),
        nationality=application.nationality,
        phone_number=application.phone_number,
        can_cross=can_cross,
        crossing_logs=[_to_log_item(log, application) for log in reversed(logs)],
    )
