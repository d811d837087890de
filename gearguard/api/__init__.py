"""API routes for GearGuard."""

from fastapi import APIRouter

from .auth import router as auth_router
from .dashboard import router as dashboard_router
from .equipment import router as equipment_router
from .functions import router as functions_router
from .maintenance import router as maintenance_router
from .organizations import router as organizations_router
from .realtime import router as realtime_router

# Main API router
api_router = APIRouter()

# Accounts and onboarding
api_router.include_router(auth_router)
api_router.include_router(functions_router)
api_router.include_router(organizations_router)

# Asset registry
api_router.include_router(equipment_router)

# Maintenance workflow is the primary surface
api_router.include_router(maintenance_router)
api_router.include_router(dashboard_router)

# Live board (WebSocket)
api_router.include_router(realtime_router)

__all__ = ["api_router"]
