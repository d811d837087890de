"""API routes for organization discovery, membership and invites."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from ..core import AdminDep, CurrentUserDep, OrgContextDep, SessionDep, set_service_context
from ..schemas import (
    InviteCreate,
    InviteResponse,
    JoinRequestCreate,
    JoinRequestResponse,
    MemberResponse,
    MemberRoleUpdate,
    OrganizationResponse,
)
from ..services import GearGuardError, OnboardingService
from .errors import http_error

router = APIRouter(prefix="/organizations", tags=["organizations"])


def get_onboarding_service(session: SessionDep) -> OnboardingService:
    return OnboardingService(session)


OnboardingServiceDep = Annotated[OnboardingService, Depends(get_onboarding_service)]


# =============================================================================
# DISCOVERY
# =============================================================================


@router.get("/search", response_model=list[OrganizationResponse])
async def search_organizations(
    current_user: CurrentUserDep,
    service: OnboardingServiceDep,
    q: str = Query(default="", max_length=100),
    limit: int = Query(default=20, ge=1, le=50),
):
    """Find organizations to request access to."""
    organizations = await service.search_organizations(q, limit=limit)
    return [OrganizationResponse.model_validate(o) for o in organizations]


# =============================================================================
# JOIN REQUESTS
# =============================================================================


@router.post(
    "/join-requests",
    response_model=JoinRequestResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_join_request(
    data: JoinRequestCreate,
    current_user: CurrentUserDep,
    service: OnboardingServiceDep,
):
    # The target organization is not the caller's yet
    await set_service_context(service.session)
    try:
        join_request = await service.submit_join_request(
            user_id=current_user.id,
            organization_id=data.organization_id,
            requested_role=data.requested_role,
        )
    except GearGuardError as e:
        raise http_error(e)
    return JoinRequestResponse.model_validate(join_request)


@router.get("/join-requests/mine", response_model=list[JoinRequestResponse])
async def my_join_requests(current_user: CurrentUserDep, service: OnboardingServiceDep):
    requests = await service.list_my_join_requests(current_user.id)
    return [JoinRequestResponse.model_validate(r) for r in requests]


@router.get("/join-requests", response_model=list[JoinRequestResponse])
async def pending_join_requests(current_user: AdminDep, service: OnboardingServiceDep):
    """Pending requests for the admin's organization."""
    requests = await service.list_pending_join_requests(current_user.organization_id)
    return [JoinRequestResponse.model_validate(r) for r in requests]


@router.post("/join-requests/{request_id}/reject", response_model=JoinRequestResponse)
async def reject_join_request(
    request_id: UUID,
    current_user: AdminDep,
    service: OnboardingServiceDep,
):
    try:
        join_request = await service.reject_join_request(
            request_id, current_user.organization_id
        )
    except GearGuardError as e:
        raise http_error(e)
    return JoinRequestResponse.model_validate(join_request)


# =============================================================================
# INVITES
# =============================================================================


@router.post("/invites", response_model=InviteResponse, status_code=status.HTTP_201_CREATED)
async def create_invite(
    data: InviteCreate,
    current_user: AdminDep,
    service: OnboardingServiceDep,
):
    try:
        invite = await service.create_invite(
            organization_id=current_user.organization_id,
            email=data.email,
            role=data.role,
            invited_by=current_user.id,
        )
    except GearGuardError as e:
        raise http_error(e)
    return InviteResponse.model_validate(invite)


@router.get("/invites", response_model=list[InviteResponse])
async def list_invites(current_user: AdminDep, service: OnboardingServiceDep):
    invites = await service.list_invites(current_user.organization_id)
    return [InviteResponse.model_validate(i) for i in invites]


@router.get("/invites/mine", response_model=list[InviteResponse])
async def my_invites(current_user: CurrentUserDep, service: OnboardingServiceDep):
    """Pending invites addressed to the caller's email."""
    await set_service_context(service.session)
    invites = await service.list_invites_for_email(current_user.email)
    return [InviteResponse.model_validate(i) for i in invites]


@router.delete("/invites/{invite_id}", status_code=status.HTTP_204_NO_CONTENT)
async def revoke_invite(
    invite_id: UUID,
    current_user: AdminDep,
    service: OnboardingServiceDep,
):
    try:
        await service.revoke_invite(invite_id, current_user.organization_id)
    except GearGuardError as e:
        raise http_error(e)


@router.post("/invites/{invite_id}/accept", response_model=MemberResponse)
async def accept_invite(
    invite_id: UUID,
    current_user: CurrentUserDep,
    service: OnboardingServiceDep,
):
    await set_service_context(service.session)
    try:
        _, role = await service.accept_invite(invite_id, current_user.id)
    except GearGuardError as e:
        raise http_error(e)

    profile = current_user.profile
    return MemberResponse(
        id=profile.id,
        email=profile.email,
        full_name=profile.full_name,
        avatar_url=profile.avatar_url,
        role=role,
    )


# =============================================================================
# MEMBERS
# =============================================================================


@router.get("/members", response_model=list[MemberResponse])
async def list_members(current_user: OrgContextDep, service: OnboardingServiceDep):
    members = await service.list_members(current_user.organization_id)
    return [
        MemberResponse(
            id=profile.id,
            email=profile.email,
            full_name=profile.full_name,
            avatar_url=profile.avatar_url,
            role=role,
        )
        for profile, role in members
    ]


@router.put("/members/{user_id}/role", response_model=MemberResponse)
async def change_member_role(
    user_id: UUID,
    data: MemberRoleUpdate,
    current_user: AdminDep,
    service: OnboardingServiceDep,
):
    try:
        role = await service.change_member_role(
            current_user.organization_id, user_id, data.role
        )
        members = await service.list_members(current_user.organization_id)
    except GearGuardError as e:
        raise http_error(e)

    profile = next(p for p, _ in members if p.id == user_id)
    return MemberResponse(
        id=profile.id,
        email=profile.email,
        full_name=profile.full_name,
        avatar_url=profile.avatar_url,
        role=role,
    )
