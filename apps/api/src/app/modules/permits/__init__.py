"""
Permits Module

The permit core of the e-Visit system:
1. Lifecycle state machine with compare-and-swap status updates
2. Signed QR credentials issued on approval
3. Checkpoint recorder for ENTRY / EXIT crossings
4. Compliance sweeps for expired permits and overstays

API Endpoints:
- POST /permits/{id}/transition - Review transition
- GET /permits/track/{reference} - Track by reference number
- GET /permits/{id}/lifecycle - Lifecycle timeline
- POST /permits/compliance/sweep-expired - Run the expiry sweep
- POST /permits/compliance/sweep-overstays - Run the overstay sweep
- POST /checkpoint/verify - Scanned crossing
- POST /checkpoint/manual - Officer keyed crossing
- GET /checkpoint/logs - Crossing log listing
- GET /checkpoint/applications/{reference} - Officer lookup with crossing history

Background Jobs (via APScheduler):
- permits_sweep_expired: hourly
- permits_sweep_overstays: hourly
"""

from .checkpoint_router import router as checkpoint_router
from .jobs import register_permit_jobs
from .router import router

__all__ = ["router", "checkpoint_router", "register_permit_jobs"]
