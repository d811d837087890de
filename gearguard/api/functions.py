"""Privileged organization gateway functions.

These run with the service context so they can write rows the caller is not
yet allowed to touch under row-level security, which is why every rule is
re-checked here from the database instead of trusting the client.
"""

import logging

from fastapi import APIRouter, HTTPException, status

from ..core import CurrentUserDep, SessionDep, set_service_context
from ..schemas import (
    CreateOrganizationResponse,
    ManageTeamRequest,
    ManageTeamResponse,
    OrganizationCreate,
    OrganizationResponse,
)
from ..services import GearGuardError, OnboardingService
from .errors import http_error

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/functions", tags=["functions"])


@router.post("/create-organization", response_model=CreateOrganizationResponse)
async def create_organization(
    data: OrganizationCreate,
    current_user: CurrentUserDep,
    session: SessionDep,
):
    """Create an organization and make the caller its admin."""
    await set_service_context(session)
    service = OnboardingService(session)
    try:
        organization, role = await service.create_organization_with_admin(
            name=data.name, user_id=current_user.id
        )
    except GearGuardError as e:
        raise http_error(e)

    return CreateOrganizationResponse(
        organization=OrganizationResponse.model_validate(organization),
        role=role,
    )


@router.post("/manage-team", response_model=ManageTeamResponse)
async def manage_team(
    data: ManageTeamRequest,
    current_user: CurrentUserDep,
    session: SessionDep,
):
    """Admin actions on the caller's organization.

    The caller's role is resolved server-side; anyone who is not an admin of
    the organization that owns the request is refused.
    """
    if data.action != "approve_request":
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unsupported action: {data.action}",
        )

    await set_service_context(session)
    service = OnboardingService(session)
    try:
        user_id, role = await service.approve_join_request(
            request_id=data.request_id,
            admin_id=current_user.id,
            admin_organization_id=current_user.organization_id,
            admin_role=current_user.role,
            role=data.role,
        )
    except GearGuardError as e:
        raise http_error(e)

    return ManageTeamResponse(user_id=user_id, role=role)
