"""Dashboard API: headline figures for the caller's organization."""

from fastapi import APIRouter, Query

from ..core import OrgContextDep, SessionDep
from ..schemas import DashboardStats, MaintenanceRequestResponse
from ..services import MaintenanceService

router = APIRouter(prefix="/dashboard", tags=["dashboard"])


@router.get("/stats", response_model=DashboardStats)
async def get_stats(
    current_user: OrgContextDep,
    session: SessionDep,
    recent: int = Query(default=5, ge=0, le=50),
):
    """
    Work order counts scoped to the caller.

    Technicians see their assigned work, requesters see what they filed,
    admins and managers see the whole organization.
    """
    stats = await MaintenanceService(session).dashboard_stats(
        organization_id=current_user.organization_id,
        user_id=current_user.id,
        role=current_user.role,
        recent_limit=recent,
    )
    stats["recent_requests"] = [
        MaintenanceRequestResponse.model_validate(r) for r in stats["recent_requests"]
    ]
    return DashboardStats(**stats)
