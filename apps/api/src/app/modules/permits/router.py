"""
Permits Router

API endpoints for the permit lifecycle.

Endpoints:
- POST /permits/{id}/transition - Review transition (officer)
- GET /permits/track/{reference} - Public tracking by reference number
- GET /permits/{id}/lifecycle - Lifecycle timeline (officer)
- POST /permits/compliance/sweep-expired - Run the expiry sweep now (supervisor)
- POST /permits/compliance/sweep-overstays - Run the overstay sweep now (supervisor)

Errors are returned as {"detail": {"error": CODE, "message": ...}} with the
codes VALIDATION, NOT_FOUND, INVALID_TRANSITION and INTERNAL_ERROR.
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import OfficerUser, get_current_officer, get_current_supervisor
from app.core.database import get_db
from app.modules.permits import jobs, service
from app.modules.permits.schemas import (
    LifecycleTimelineResponse,
    PermitTrackingResponse,
    SweepResponse,
    TransitionRequest,
    TransitionResponse,
)
from app.modules.permits.service import PermitServiceError

logger = logging.getLogger(__name__)

router = APIRouter()


def _handle_service_error(e: PermitServiceError) -> None:
    """Convert service errors to HTTPExceptions."""
    raise HTTPException(
        status_code=e.status_code,
        detail={
            "error": e.error_code,
            "message": e.message,
        },
    ) from e


def _internal_error() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={
            "error": "INTERNAL_ERROR",
            "message": "An unexpected error occurred. Please try again later.",
        },
    )


@router.post(
    "/{application_id}/transition",
    response_model=TransitionResponse,
    summary="Transition Application Status",
    description="""
Move an application along a review edge of the lifecycle.

Allowed targets:
- `UNDER_REVIEW` from `SUBMITTED` or `PENDING_DOCUMENTS`
- `PENDING_DOCUMENTS`, `APPROVED`, `REJECTED` from `UNDER_REVIEW`

Approval issues the signed permit credential and sets the permit expiry
90 days after approval. Pass `expected_status` to make the update
conditional on the status you last saw.

`ACTIVE`, `EXITED`, `EXPIRED` and `OVERSTAYED` cannot be requested here.
""",
    responses={
        404: {"description": "Application not found"},
        409: {
            "description": "Transition not allowed or status changed concurrently",
            "content": {
                "application/json": {
                    "example": {
                        "detail": {
                            "error": "INVALID_TRANSITION",
                            "message": "Invalid status transition: SUBMITTED -> APPROVED. "
                            "Valid transitions: ['UNDER_REVIEW']",
                        }
                    }
                }
            },
        },
    },
)
async def transition_application(
    application_id: UUID,
    data: TransitionRequest,
    db: AsyncSession = Depends(get_db),
    officer: OfficerUser = Depends(get_current_officer),
) -> TransitionResponse:
    try:
        return await service.transition(
            db,
            application_id,
            data.target_status,
            officer_id=officer.id,
            expected=data.expected_status,
            notes=data.notes,
        )
    except PermitServiceError as e:
        logger.warning(f"Transition of {application_id} refused: {e.error_code} {e.message}")
        _handle_service_error(e)
    except Exception as e:
        logger.exception(f"Unexpected error transitioning application {application_id}: {e}")
        raise _internal_error() from e


@router.get(
    "/track/{reference_number}",
    response_model=PermitTrackingResponse,
    summary="Track Application by Reference",
    description="""
Look up an application by its reference number (for example `KRG-2026-000123`).

Read-only and public. The signed permit credential is never returned here;
applicants receive it in the approval e-mail.
""",
    responses={
        400: {"description": "Malformed reference number"},
        404: {"description": "No application with this reference"},
    },
)
async def track_application(
    reference_number: str,
    db: AsyncSession = Depends(get_db),
) -> PermitTrackingResponse:
    try:
        return await service.lookup_by_reference(db, reference_number)
    except PermitServiceError as e:
        _handle_service_error(e)
    except Exception as e:
        logger.exception(f"Unexpected error tracking {reference_number}: {e}")
        raise _internal_error() from e


@router.get(
    "/{application_id}/lifecycle",
    response_model=LifecycleTimelineResponse,
    summary="Application Lifecycle Timeline",
    description="Ordered lifecycle events rebuilt from decision dates and crossing logs.",
    responses={404: {"description": "Application not found"}},
)
async def get_lifecycle(
    application_id: UUID,
    db: AsyncSession = Depends(get_db),
    officer: OfficerUser = Depends(get_current_officer),
) -> LifecycleTimelineResponse:
    try:
        return await service.get_lifecycle_timeline(db, application_id)
    except PermitServiceError as e:
        _handle_service_error(e)
    except Exception as e:
        logger.exception(f"Unexpected error building timeline for {application_id}: {e}")
        raise _internal_error() from e


# ============================================
# Compliance sweeps
# ============================================


@router.post(
    "/compliance/sweep-expired",
    response_model=SweepResponse,
    summary="Run Expiry Sweep",
    description="""
Transition every `ACTIVE` application whose permit expiry has passed to `EXPIRED`.

Runs hourly on its own; this endpoint runs it immediately. Safe to call
repeatedly: rows already moved are never picked up again.

**Access:** Supervisor and above
""",
)
async def run_sweep_expired(
    supervisor: OfficerUser = Depends(get_current_supervisor),
) -> SweepResponse:
    logger.info(f"Supervisor {supervisor.id} triggered the expiry sweep")
    try:
        return SweepResponse(**await jobs.sweep_expired_permits())
    except Exception as e:
        logger.exception(f"Expiry sweep could not run: {e}")
        raise _internal_error() from e


@router.post(
    "/compliance/sweep-overstays",
    response_model=SweepResponse,
    summary="Run Overstay Sweep",
    description="""
Transition every `ACTIVE` application whose visit end date has passed to
`OVERSTAYED`, recording the whole days overstayed.

**Access:** Supervisor and above
""",
)
async def run_sweep_overstays(
    supervisor: OfficerUser = Depends(get_current_supervisor),
) -> SweepResponse:
    logger.info(f"Supervisor {supervisor.id} triggered the overstay sweep")
    try:
        return SweepResponse(**await jobs.sweep_overstays())
    except Exception as e:
        logger.exception(f"Overstay sweep could not run: {e}")
        raise _internal_error() from e
