"""Pydantic schemas for accounts, organizations and onboarding."""

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import EmailStr, Field

from ..models import InviteStatus, JoinRequestStatus, Role
from .base import GearGuardBaseModel, ProfileRef


# =============================================================================
# AUTH SCHEMAS
# =============================================================================


class SignupRequest(GearGuardBaseModel):
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=128)
    full_name: str | None = Field(default=None, max_length=255)


class LoginRequest(GearGuardBaseModel):
    email: EmailStr
    password: str


class TokenResponse(GearGuardBaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    user: ProfileRef


class MeResponse(GearGuardBaseModel):
    """The acting user with the tenant and role the server resolved."""

    id: UUID
    email: str
    full_name: str | None = None
    avatar_url: str | None = None
    organization_id: UUID | None = None
    organization_name: str | None = None
    role: Role | None = None


# =============================================================================
# ORGANIZATION SCHEMAS
# =============================================================================


class OrganizationCreate(GearGuardBaseModel):
    name: str = Field(..., min_length=2, max_length=100)


class OrganizationResponse(GearGuardBaseModel):
    id: UUID
    name: str
    created_at: datetime


class CreateOrganizationResponse(GearGuardBaseModel):
    success: bool = True
    organization: OrganizationResponse
    role: Role


class ManageTeamRequest(GearGuardBaseModel):
    """Admin gateway action. Only join request approval is supported."""

    action: Literal["approve_request"]
    request_id: UUID
    role: Role | None = Field(
        default=None, description="Role to grant; defaults to the requested role"
    )


class ManageTeamResponse(GearGuardBaseModel):
    success: bool = True
    user_id: UUID
    role: Role


# =============================================================================
# MEMBERS
# =============================================================================


class MemberResponse(GearGuardBaseModel):
    id: UUID
    email: str
    full_name: str | None = None
    avatar_url: str | None = None
    role: Role | None = None


class MemberRoleUpdate(GearGuardBaseModel):
    role: Role


# =============================================================================
# JOIN REQUESTS & INVITES
# =============================================================================


class JoinRequestCreate(GearGuardBaseModel):
    organization_id: UUID
    requested_role: Role = Role.REQUESTER


class JoinRequestResponse(GearGuardBaseModel):
    id: UUID
    user_id: UUID
    organization_id: UUID
    requested_role: Role
    status: JoinRequestStatus
    created_at: datetime
    user: ProfileRef | None = None
    organization: OrganizationResponse | None = None


class InviteCreate(GearGuardBaseModel):
    email: EmailStr
    role: Role = Role.TECHNICIAN


class InviteResponse(GearGuardBaseModel):
    id: UUID
    organization_id: UUID
    email: str
    role: Role
    status: InviteStatus
    invited_by: UUID
    created_at: datetime
    expires_at: datetime
