"""
Seed Demo Applications

Creates a handful of SUBMITTED permit applications so the review,
checkpoint and compliance flows can be exercised locally.
Safe to re-run: reference numbers continue from the current year's sequence.

Usage:
    cd apps/api
    python scripts/seed_demo_applications.py [count]
"""

import asyncio
import sys
from datetime import UTC, datetime, timedelta
from pathlib import Path

# Add the src directory to the path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from app.core.config import settings
from app.core.database import async_session_maker, close_db
from app.modules.permits import repository

DEMO_APPLICANTS = [
    ("Ahmed Karim", "+9647501234567", "ahmed.karim@example.com", "TOURISM"),
    ("Sara Hassan", "+9647702345678", "sara.hassan@example.com", "FAMILY_VISIT"),
    ("Omar Jalal", "+9647503456789", None, "BUSINESS"),
    ("Lana Aziz", "+9647704567890", "lana.aziz@example.com", "MEDICAL"),
]


async def seed_demo_applications(count: int) -> None:
    """Create count SUBMITTED applications."""
    now = datetime.now(UTC)

    async with async_session_maker() as db:
        for i in range(count):
            full_name, phone, email, purpose = DEMO_APPLICANTS[i % len(DEMO_APPLICANTS)]
            reference = await repository.next_reference_number(
                db, settings.reference_prefix, now.year
            )
            application = await repository.create(
                db,
                reference_number=reference,
                full_name=full_name,
                phone_number=phone,
                email=email,
                visit_purpose=purpose,
                visit_start_date=now + timedelta(days=7),
                visit_end_date=now + timedelta(days=21),
            )
            print(f"Created {application.reference_number} ({application.full_name})")
            print(f"  ID: {application.id}")
            print(f"  Status: {application.status.value}")

    await close_db()


if __name__ == "__main__":
    total = int(sys.argv[1]) if len(sys.argv) > 1 else len(DEMO_APPLICANTS)
    asyncio.run(seed_demo_applications(total))
