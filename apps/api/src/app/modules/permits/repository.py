"""
Permits Repository

Database operations for permit applications and checkpoint crossing logs.

Design Principles:
- Single responsibility - only database operations, no business rules
- Every status write goes through compare_and_swap_status
- Functions that write do not commit; the caller owns the unit of work so a
  crossing log and its lifecycle update land in the same transaction
- Timezone-aware datetime handling (UTC)
"""

from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .helpers import format_reference_number
from .models import Application, ApplicationStatus, CrossingKind, CrossingLog


class StaleStatusError(Exception):
    """
    Raised when a compare-and-swap finds a status other than the expected one.

    Either the application does not exist any more or another writer moved it
    since the caller last read it.
    """

    def __init__(
        self,
        application_id: UUID,
        expected: ApplicationStatus,
        target: ApplicationStatus,
    ):
        self.application_id = application_id
        self.expected = expected
        self.target = target
        super().__init__(
            f"Application {application_id} changed since it was read as {expected.value}; "
            f"cannot move it to {target.value}"
        )


# ============================================
# Application Repository
# ============================================


async def get_by_id(db: AsyncSession, id: UUID) -> Application | None:
    """Get application by ID."""
    return await db.get(Application, id)


async def get_by_reference(db: AsyncSession, reference_number: str) -> Application | None:
    """Get application by its human readable reference number."""
    result = await db.execute(
        select(Application).where(Application.reference_number == reference_number)
    )
    return result.scalar_one_or_none()


async def next_reference_number(db: AsyncSession, prefix: str, year: int) -> str:
    """
    Next free reference number for the given prefix and year.

    Sequences restart at 1 every year. The number is count + 1 of the rows
    already using the prefix and year, so two concurrent callers can get the
    same value; the unique index on reference_number then rejects the second
    insert with an IntegrityError. Only the single-process demo seed script
    calls this. Intake running several writers needs a database sequence.
    """
    pattern = f"{prefix.upper()}-{year}-%"
    result = await db.execute(
        select(func.count())
        .select_from(Application)
        .where(Application.reference_number.like(pattern))
    )
    count = result.scalar_one()
    return format_reference_number(prefix, year, count + 1)


async def create(db: AsyncSession, **fields: Any) -> Application:
    """
    Insert a new application in SUBMITTED.

    Only the intake flow and the demo seed script create applications.
    """
    application = Application(status=ApplicationStatus.SUBMITTED, **fields)
    db.add(application)
    await db.commit()
    await db.refresh(application)
    return application


async def compare_and_swap_status(
    db: AsyncSession,
    id: UUID,
    expected: ApplicationStatus,
    target: ApplicationStatus,
    now: datetime | None = None,
    observed: dict[str, Any] | None = None,
    **fields: Any,
) -> Application:
    """
    Move an application from expected to target in one conditional UPDATE.

    Issues UPDATE applications SET status = :target ... WHERE id = :id AND
    status = :expected. Additional columns (decision dates, credential,
    crossing timestamps, overstay days) are written in the same statement.
    expected may equal target to refresh columns while asserting the status.
    In that case the status alone proves nothing, so pass observed with the
    column values the caller read; each one must still match
    (IS NOT DISTINCT FROM, so None matches NULL).

    Does not commit.

    Args:
        db: Database session
        id: Application UUID
        expected: Status the caller last observed
        target: Status to write
        now: Timestamp stamped into status_changed_at when the status changes
        observed: Column values that must be unchanged since the caller read them
        **fields: Extra column values to write

    Returns:
        The updated Application

    Raises:
        StaleStatusError: If no row matched (missing, status drifted, or an
            observed column changed)
    """
    values: dict[str, Any] = {"status": target, **fields}
    if target != expected:
        values["status_changed_at"] = now or datetime.now(UTC)

    conditions = [Application.id == id, Application.status == expected]
    for column, value in (observed or {}).items():
        conditions.append(getattr(Application, column).is_not_distinct_from(value))

    stmt = (
        update(Application)
        .where(*conditions)
        .values(**values)
        .returning(Application)
        .execution_options(populate_existing=True)
    )
    result = await db.execute(stmt)
    application = result.scalar_one_or_none()

    if application is None:
        raise StaleStatusError(id, expected, target)

    return application


async def get_active_past_expiry(db: AsyncSession, now: datetime) -> list[Application]:
    """ACTIVE applications whose permit expired before now."""
    result = await db.execute(
        select(Application).where(
            Application.status == ApplicationStatus.ACTIVE,
            Application.permit_expiry_date.is_not(None),
            Application.permit_expiry_date < now,
        )
    )
    return list(result.scalars().all())


async def get_active_past_visit_end(db: AsyncSession, now: datetime) -> list[Application]:
    """ACTIVE applications whose declared visit ended before now."""
    result = await db.execute(
        select(Application).where(
            Application.status == ApplicationStatus.ACTIVE,
            Application.visit_end_date < now,
        )
    )
    return list(result.scalars().all())


# ============================================
# CrossingLog Repository
# ============================================


async def create_crossing_log(
    db: AsyncSession,
    application_id: UUID,
    kind: CrossingKind,
    checkpoint_name: str,
    recorded_at: datetime,
    checkpoint_location: str | None = None,
    recording_officer_id: UUID | None = None,
) -> CrossingLog:
    """
    Append a crossing log row.

    Flushes so store failures surface here, but does not commit.
    """
    log = CrossingLog(
        application_id=application_id,
        kind=kind,
        checkpoint_name=checkpoint_name,
        checkpoint_location=checkpoint_location,
        recorded_at=recorded_at,
        recording_officer_id=recording_officer_id,
    )
    db.add(log)
    await db.flush()
    return log


async def get_latest_crossing_log(db: AsyncSession, application_id: UUID) -> CrossingLog | None:
    """Most recent crossing for an application (served by the application/recorded_at index)."""
    result = await db.execute(
        select(CrossingLog)
        .where(CrossingLog.application_id == application_id)
        .order_by(CrossingLog.recorded_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def get_crossing_logs(db: AsyncSession, application_id: UUID) -> list[CrossingLog]:
    """All crossings for an application, oldest first."""
    result = await db.execute(
        select(CrossingLog)
        .where(CrossingLog.application_id == application_id)
        .order_by(CrossingLog.recorded_at.asc())
    )
    return list(result.scalars().all())


async def list_crossing_logs(
    db: AsyncSession,
    checkpoint_name: str | None = None,
    skip: int = 0,
    limit: int = 50,
) -> tuple[list[tuple[CrossingLog, Application]], int]:
    """
    Paginated crossing logs, newest first, with their applications.

    Args:
        db: Database session
        checkpoint_name: Only return crossings at this checkpoint
        skip: Number of rows to skip
        limit: Maximum rows to return

    Returns:
        Tuple of ((log, application) pairs, total matching rows)
    """
    filters = []
    if checkpoint_name:
        filters.append(CrossingLog.checkpoint_name == checkpoint_name)

    count_result = await db.execute(select(func.count()).select_from(CrossingLog).where(*filters))
    total = count_result.scalar_one()

    result = await db.execute(
        select(CrossingLog, Application)
        .join(Application, CrossingLog.application_id == Application.id)
        .where(*filters)
        .order_by(CrossingLog.recorded_at.desc())
        .offset(skip)
        .limit(limit)
    )
    rows = [(log, application) for log, application in result.all()]
    return rows, total
