"""
Checkpoint Router

API endpoints used at border checkpoints.

Endpoints:
- POST /checkpoint/verify - Record a crossing from a scanned QR credential
- POST /checkpoint/manual - Record a crossing keyed in by an officer
- GET /checkpoint/logs - Paginated crossing log, optionally per checkpoint
- GET /checkpoint/applications/{reference} - Application and crossing history for an officer

A DUPLICATE or INVALID_TRANSITION response means the crossing is already
recorded and must not be resubmitted. EXPIRED and INVALID_SIGNATURE are hard
denials that need escalation.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import OfficerUser, get_current_officer
from app.core.database import get_db
from app.modules.permits import checkpoint
from app.modules.permits.schemas import (
    CheckpointLookupResponse,
    CrossingLogListResponse,
    CrossingResponse,
    ManualCrossingRequest,
    VerifyCrossingRequest,
)
from app.modules.permits.service import PermitServiceError

logger = logging.getLogger(__name__)

router = APIRouter()

_CROSSING_ERROR_RESPONSES = {
    403: {"description": "EXPIRED or INVALID_SIGNATURE: deny and escalate"},
    404: {"description": "NOT_FOUND: no application resolves"},
    409: {"description": "INVALID_STATUS, DUPLICATE or INVALID_TRANSITION"},
}


def _to_http_exception(e: PermitServiceError) -> HTTPException:
    return HTTPException(
        status_code=e.status_code,
        detail={
            "error": e.error_code,
            "message": e.message,
        },
    )


@router.post(
    "/verify",
    response_model=CrossingResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Verify QR Credential and Record Crossing",
    description="""
Automated-scan path. Verifies the QR credential and records an `ENTRY` or `EXIT`.

- `ENTRY` moves an `APPROVED` permit to `ACTIVE` (an `ACTIVE` permit stays `ACTIVE`)
- `EXIT` moves an `ACTIVE` permit to `EXITED`

A repeat of the same crossing within five minutes is refused as `DUPLICATE`.
""",
    responses=_CROSSING_ERROR_RESPONSES,
)
async def verify_crossing(
    data: VerifyCrossingRequest,
    db: AsyncSession = Depends(get_db),
) -> CrossingResponse:
    try:
        return await checkpoint.verify_and_record_crossing(
            db,
            data.credential,
            data.checkpoint_name,
            data.kind,
            checkpoint_location=data.checkpoint_location,
        )
    except PermitServiceError as e:
        logger.warning(f"Checkpoint scan at {data.checkpoint_name} refused: {e.error_code}")
        raise _to_http_exception(e) from e
    except Exception as e:
        logger.exception(f"Unexpected error recording crossing at {data.checkpoint_name}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "error": "INTERNAL_ERROR",
                "message": "An unexpected error occurred. Please try again later.",
            },
        ) from e


@router.post(
    "/manual",
    response_model=CrossingResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Record Crossing Manually",
    description="""
Manual path for when a QR code cannot be scanned. The officer keys in the
application reference number; the crossing is attributed to the officer.

**Access:** Any authenticated officer
""",
    responses=_CROSSING_ERROR_RESPONSES,
)
async def manual_crossing(
    data: ManualCrossingRequest,
    db: AsyncSession = Depends(get_db),
    officer: OfficerUser = Depends(get_current_officer),
) -> CrossingResponse:
    try:
        return await checkpoint.manual_record_crossing(
            db,
            data.reference_number,
            data.checkpoint_name,
            data.kind,
            officer_id=officer.id,
            checkpoint_location=data.checkpoint_location,
        )
    except PermitServiceError as e:
        logger.warning(
            f"Manual crossing for {data.reference_number} by officer {officer.id} "
            f"refused: {e.error_code}"
        )
        raise _to_http_exception(e) from e
    except Exception as e:
        logger.exception(f"Unexpected error recording manual crossing: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "error": "INTERNAL_ERROR",
                "message": "An unexpected error occurred. Please try again later.",
            },
        ) from e


@router.get(
    "/logs",
    response_model=CrossingLogListResponse,
    summary="List Crossing Logs",
    description="Crossing logs, newest first. Filter by `checkpoint_name` to see one checkpoint.",
)
async def list_logs(
    checkpoint_name: str | None = Query(None, max_length=200),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
    officer: OfficerUser = Depends(get_current_officer),
) -> CrossingLogListResponse:
    try:
        return await checkpoint.list_crossing_logs(
            db, checkpoint_name=checkpoint_name, skip=skip, limit=limit
        )
    except Exception as e:
        logger.exception(f"Unexpected error listing crossing logs: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "error": "INTERNAL_ERROR",
                "message": "An unexpected error occurred.",
            },
        ) from e


@router.get(
    "/applications/{reference_number}",
    response_model=CheckpointLookupResponse,
    summary="Look Up Application at Checkpoint",
    description="""
Look up an application by reference number before keying in a manual crossing.
Returns the application, whether it can cross right now, and its crossing
history, newest first. The signed credential is not included.

**Access:** Any authenticated officer
""",
    responses={
        400: {"description": "Malformed reference number"},
        404: {"description": "No application with this reference"},
    },
)
async def lookup_application(
    reference_number: str,
    db: AsyncSession = Depends(get_db),
    officer: OfficerUser = Depends(get_current_officer),
) -> CheckpointLookupResponse:
    try:
        return await checkpoint.lookup_for_checkpoint(db, reference_number)
    except PermitServiceError as e:
        logger.info(
            f"Checkpoint lookup of {reference_number} by officer {officer.id}: {e.error_code}"
        )
        raise _to_http_exception(e) from e
    except Exception as e:
        logger.exception(f"Unexpected error looking up {reference_number}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "error": "INTERNAL_ERROR",
                "message": "An unexpected error occurred.",
            },
        ) from e
