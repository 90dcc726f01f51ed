from fastapi import APIRouter

from app.modules.permits import checkpoint_router, router as permits_router

api_router = APIRouter()

api_router.include_router(permits_router, prefix="/permits", tags=["Permits"])

api_router.include_router(checkpoint_router, prefix="/checkpoint", tags=["Checkpoint"])
