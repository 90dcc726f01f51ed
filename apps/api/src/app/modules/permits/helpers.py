"""
Permits Shared Helpers

Small pure functions shared by the service, the checkpoint recorder and the
compliance jobs.
"""

import math
import re
from datetime import datetime, timedelta

from app.modules.permits.models import Application

REFERENCE_SEQUENCE_DIGITS = 6

_REFERENCE_PATTERN = re.compile(r"^[A-Z]{2,10}-\d{4}-\d{6}$")


def format_reference_number(prefix: str, year: int, sequence: int) -> str:
    """
    Build a reference number in PREFIX-YEAR-NNNNNN form.

    Example:
        format_reference_number("KRG", 2026, 1) -> "KRG-2026-000001"
    """
    return f"{prefix.upper()}-{year}-{sequence:0{REFERENCE_SEQUENCE_DIGITS}d}"


def normalize_reference_number(reference_number: str) -> str:
    """Trim and upper-case a reference number typed in by a person."""
    return reference_number.strip().upper()


def is_valid_reference_number(reference_number: str) -> bool:
    """Check that a reference number has the PREFIX-YEAR-NNNNNN shape."""
    return bool(_REFERENCE_PATTERN.match(reference_number))


def effective_expiry(application: Application) -> datetime:
    """
    The instant after which a permit can no longer be used at a checkpoint.

    Uses permit_expiry_date when set, otherwise falls back to the end of the
    declared visit.
    """
    return application.permit_expiry_date or application.visit_end_date


def compute_overstay_days(visit_end_date: datetime, now: datetime) -> int:
    """
    Whole days elapsed since the end of the visit, rounded down.

    Returns 0 when the visit has not ended yet.
    """
    elapsed = now - visit_end_date
    if elapsed <= timedelta(0):
        return 0
    return math.floor(elapsed / timedelta(days=1))
