"""
Fixtures for permits tests.
"""

from contextlib import asynccontextmanager
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock
from uuid import UUID, uuid4

import pytest

from app.modules.permits.models import Application, ApplicationStatus, CrossingKind, CrossingLog
from app.modules.permits.repository import StaleStatusError

NOW = datetime(2026, 3, 15, 12, 0, tzinfo=UTC)
SIGNING_KEY = b"test-signing-key"


def make_application(
    status: ApplicationStatus = ApplicationStatus.SUBMITTED,
    **overrides,
) -> MagicMock:
    """Build an Application double with sensible defaults around NOW."""
    app = MagicMock(spec=Application)
    app.id = uuid4()
    app.reference_number = "KRG-2026-000001"
    app.full_name = "Ahmed Karim"
    app.phone_number = "+9647501234567"
    app.email = "ahmed.karim@example.com"
    app.nationality = "Iraq"
    app.visit_purpose = "TOURISM"
    app.visit_start_date = NOW - timedelta(days=2)
    app.visit_end_date = NOW + timedelta(days=12)
    app.status = status
    app.status_changed_at = None
    app.approval_date = None
    app.rejection_date = None
    app.rejection_reason = None
    app.decided_by = None
    app.permit_expiry_date = None
    app.credential = None
    app.credential_signature = None
    app.entry_timestamp = None
    app.exit_timestamp = None
    app.overstay_days = None
    app.created_at = NOW - timedelta(days=10)
    app.updated_at = NOW - timedelta(days=10)

    if status in {
        ApplicationStatus.APPROVED,
        ApplicationStatus.ACTIVE,
        ApplicationStatus.EXITED,
        ApplicationStatus.EXPIRED,
        ApplicationStatus.OVERSTAYED,
    }:
        app.approval_date = NOW - timedelta(days=5)
        app.permit_expiry_date = NOW + timedelta(days=85)
        app.credential = "payload"
        app.credential_signature = "signature"

    for key, value in overrides.items():
        setattr(app, key, value)
    return app


class InMemoryPermitStore:
    """
    Stands in for the permits repository module.

    compare_and_swap_status only writes when the stored status equals the
    expected one and every observed column still holds the value the caller
    read; it raises StaleStatusError otherwise.
    """

    def __init__(self):
        self.applications: dict[UUID, MagicMock] = {}
        self.logs: list[MagicMock] = []
        self.fail_log_insert = False

    def add(self, application: MagicMock) -> MagicMock:
        self.applications[application.id] = application
        return application

    def logs_for(self, application_id: UUID) -> list[MagicMock]:
        return sorted(
            (log for log in self.logs if log.application_id == application_id),
            key=lambda log: log.recorded_at,
        )

    async def get_by_id(self, db, id):
        return self.applications.get(id)

    async def get_by_reference(self, db, reference_number):
        for application in self.applications.values():
            if application.reference_number == reference_number:
                return application
        return None

    async def compare_and_swap_status(
        self, db, id, expected, target, now=None, observed=None, **fields
    ):
        application = self.applications.get(id)
        if application is None or application.status != expected:
            raise StaleStatusError(id, expected, target)
        for key, value in (observed or {}).items():
            if getattr(application, key) != value:
                raise StaleStatusError(id, expected, target)
        application.status = target
        for key, value in fields.items():
            setattr(application, key, value)
        if target != expected:
            application.status_changed_at = now or datetime.now(UTC)
        return application

    async def get_active_past_expiry(self, db, now):
        return [
            a
            for a in self.applications.values()
            if a.status == ApplicationStatus.ACTIVE
            and a.permit_expiry_date is not None
            and a.permit_expiry_date < now
        ]

    async def get_active_past_visit_end(self, db, now):
        return [
            a
            for a in self.applications.values()
            if a.status == ApplicationStatus.ACTIVE and a.visit_end_date < now
        ]

    async def create_crossing_log(
        self,
        db,
        application_id,
        kind,
        checkpoint_name,
        recorded_at,
        checkpoint_location=None,
        recording_officer_id=None,
    ):
        if self.fail_log_insert:
            raise ConnectionError("database unavailable")
        log = MagicMock(spec=CrossingLog)
        log.id = uuid4()
        log.application_id = application_id
        log.kind = kind
        log.checkpoint_name = checkpoint_name
        log.checkpoint_location = checkpoint_location
        log.recorded_at = recorded_at
        log.recording_officer_id = recording_officer_id
        self.logs.append(log)
        return log

    async def get_latest_crossing_log(self, db, application_id):
        logs = self.logs_for(application_id)
        return logs[-1] if logs else None

    async def get_crossing_logs(self, db, application_id):
        return self.logs_for(application_id)


def make_crossing_log(
    application_id: UUID,
    kind: CrossingKind,
    recorded_at: datetime,
    checkpoint_name: str = "Ibrahim Khalil",
) -> MagicMock:
    log = MagicMock(spec=CrossingLog)
    log.id = uuid4()
    log.application_id = application_id
    log.kind = kind
    log.checkpoint_name = checkpoint_name
    log.checkpoint_location = None
    log.recorded_at = recorded_at
    log.recording_officer_id = None
    return log


@pytest.fixture
def now():
    """Fixed reference instant."""
    return NOW


@pytest.fixture
def mock_db():
    """Create a mock database session."""
    db = AsyncMock()
    db.commit = AsyncMock()
    db.rollback = AsyncMock()
    db.refresh = AsyncMock()
    db.flush = AsyncMock()
    db.get = AsyncMock()
    db.execute = AsyncMock()
    db.add = MagicMock()
    return db


@pytest.fixture
def store():
    """Empty in-memory permit store."""
    return InMemoryPermitStore()


@pytest.fixture
def session_maker(mock_db):
    """Replacement for async_session_maker that always yields mock_db."""

    @asynccontextmanager
    async def _session_maker():
        yield mock_db

    return _session_maker


@pytest.fixture
def officer_id():
    return uuid4()


@pytest.fixture
def submitted_application():
    return make_application(ApplicationStatus.SUBMITTED)


@pytest.fixture
def under_review_application():
    return make_application(ApplicationStatus.UNDER_REVIEW)


@pytest.fixture
def approved_application():
    return make_application(ApplicationStatus.APPROVED)


@pytest.fixture
def active_application():
    return make_application(
        ApplicationStatus.ACTIVE,
        entry_timestamp=NOW - timedelta(days=1),
    )


@pytest.fixture
def application_factory():
    """Factory for Application doubles: application_factory(status, **overrides)."""
    return make_application


@pytest.fixture
def crossing_log_factory():
    """Factory for CrossingLog doubles."""
    return make_crossing_log


@pytest.fixture
def signing_key():
    return SIGNING_KEY
