"""
Permits Compliance Jobs

Scheduled sweeps that force time-based lifecycle transitions:
1. Expire ACTIVE permits whose permit_expiry_date has passed
2. Mark ACTIVE permits whose visit_end_date has passed as OVERSTAYED,
   recording the whole days overstayed

Design Principles:
- Jobs are idempotent: both only select ACTIVE rows, so a row that has
  already moved on is never picked up again
- The candidate scan runs in its own session; a scan failure is fatal to
  the run and propagates
- Every row is a separate unit of work with its own session and commit, so
  partial progress survives a failure mid-sweep
- A failing row is logged and collected, never fatal to the run

Schedule:
- Both jobs run hourly
- Supervisors can trigger them on demand through the compliance endpoints
"""

import logging
from datetime import UTC, datetime
from typing import Any

from apscheduler.triggers.interval import IntervalTrigger

from app.core.database import async_session_maker
from app.core.scheduler import register_job
from app.modules.permits import repository
from app.modules.permits.helpers import compute_overstay_days
from app.modules.permits.lifecycle import check_time_guard
from app.modules.permits.models import Application, ApplicationStatus
from app.modules.permits.repository import StaleStatusError

logger = logging.getLogger(__name__)

# Job IDs for registration and manual triggering
JOB_ID_SWEEP_EXPIRED = "permits_sweep_expired"
JOB_ID_SWEEP_OVERSTAYS = "permits_sweep_overstays"


async def _expire_permit(application: Application, now: datetime) -> None:
    """Move a single ACTIVE application to EXPIRED in its own transaction."""
    check_time_guard(application, ApplicationStatus.EXPIRED, now)

    async with async_session_maker() as db:
        await repository.compare_and_swap_status(
            db,
            application.id,
            ApplicationStatus.ACTIVE,
            ApplicationStatus.EXPIRED,
            now=now,
        )
        await db.commit()


async def _mark_overstayed(application: Application, now: datetime) -> int:
    """Move a single ACTIVE application to OVERSTAYED, returning the overstay days written."""
    check_time_guard(application, ApplicationStatus.OVERSTAYED, now)
    overstay_days = compute_overstay_days(application.visit_end_date, now)

    async with async_session_maker() as db:
        await repository.compare_and_swap_status(
            db,
            application.id,
            ApplicationStatus.ACTIVE,
            ApplicationStatus.OVERSTAYED,
            now=now,
            overstay_days=overstay_days,
        )
        await db.commit()

    return overstay_days


def _new_results(job: str, executed_at: datetime) -> dict[str, Any]:
    return {
        "job": job,
        "executed_at": executed_at.isoformat(),
        "transitioned": 0,
        "skipped": 0,
        "errors": [],
    }


def _record_row_error(results: dict[str, Any], application: Application, error: Exception) -> None:
    logger.error(
        f"{results['job']}: error processing application {application.id}: {error}",
        exc_info=True,
    )
    results["errors"].append({"application_id": str(application.id), "error": str(error)})


async def sweep_expired_permits(now: datetime | None = None) -> dict[str, Any]:
    """
    Transition every ACTIVE application past its permit expiry to EXPIRED.

    Args:
        now: Sweep instant (defaults to the wall clock)

    Returns:
        Dict with job name, executed_at, transitioned count, skipped count
        (rows another writer moved first) and per-row errors
    """
    executed_at = now or datetime.now(UTC)
    results = _new_results(JOB_ID_SWEEP_EXPIRED, executed_at)

    logger.info(f"Starting permit expiry sweep at {executed_at.isoformat()}")

    async with async_session_maker() as db:
        candidates = await repository.get_active_past_expiry(db, executed_at)

    logger.info(f"Found {len(candidates)} active permits past expiry")

    for application in candidates:
        try:
            await _expire_permit(application, executed_at)
            results["transitioned"] += 1
            logger.info(f"Expired permit {application.reference_number}")
        except StaleStatusError as e:
            logger.info(f"Skipping {application.reference_number}: {e}")
            results["skipped"] += 1
        except Exception as e:
            _record_row_error(results, application, e)

    logger.info(
        f"Permit expiry sweep completed. "
        f"Transitioned: {results['transitioned']}, Errors: {len(results['errors'])}"
    )
    return results


async def sweep_overstays(now: datetime | None = None) -> dict[str, Any]:
    """
    Transition every ACTIVE application past its visit end to OVERSTAYED.

    overstay_days is floor((now - visit_end_date) / 1 day), computed for
    this run.

    Args:
        now: Sweep instant (defaults to the wall clock)

    Returns:
        Dict with job name, executed_at, transitioned count, skipped count
        and per-row errors
    """
    executed_at = now or datetime.now(UTC)
    results = _new_results(JOB_ID_SWEEP_OVERSTAYS, executed_at)

    logger.info(f"Starting overstay sweep at {executed_at.isoformat()}")

    async with async_session_maker() as db:
        candidates = await repository.get_active_past_visit_end(db, executed_at)

    logger.info(f"Found {len(candidates)} active permits past their visit end date")

    for application in candidates:
        try:
            days = await _mark_overstayed(application, executed_at)
            results["transitioned"] += 1
            logger.warning(f"Application {application.reference_number} overstayed by {days} days")
        except StaleStatusError as e:
            logger.info(f"Skipping {application.reference_number}: {e}")
            results["skipped"] += 1
        except Exception as e:
            _record_row_error(results, application, e)

    logger.info(
        f"Overstay sweep completed. "
        f"Transitioned: {results['transitioned']}, Errors: {len(results['errors'])}"
    )
    return results


def register_permit_jobs() -> None:
    """
    Register the compliance sweeps with the scheduler.

    Called during application startup, before the scheduler is started.
    """
    logger.info("Registering permit compliance jobs...")

    register_job(
        job_id=JOB_ID_SWEEP_EXPIRED,
        func=sweep_expired_permits,
        trigger=IntervalTrigger(hours=1),
    )
    register_job(
        job_id=JOB_ID_SWEEP_OVERSTAYS,
        func=sweep_overstays,
        trigger=IntervalTrigger(hours=1),
    )

    logger.info("Permit compliance jobs registered (interval: 1 hour)")
