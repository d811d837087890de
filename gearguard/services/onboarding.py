"""
Onboarding service: organizations, membership and roles.

Two operations run as privileged gateway functions because the caller cannot
write the rows involved under row-level security:
- ``create_organization_with_admin``: an unaffiliated user founds a tenant
- ``approve_join_request``: an admin admits another user

Both fail closed: anything short of a verified admin (or an unaffiliated
founder) is refused before a row is touched.
"""

import logging
from datetime import timedelta
from typing import Sequence
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..core.config import get_settings
from ..models import (
    InviteStatus,
    JoinRequest,
    JoinRequestStatus,
    Organization,
    Profile,
    Role,
    RoleAssignment,
    TeamInvite,
    as_utc,
    utcnow,
)
from .errors import ConflictError, NotFoundError, UnauthorizedError, ValidationError
from .roles import parse_role

logger = logging.getLogger(__name__)
settings = get_settings()


class OnboardingService:
    """Service for organization creation and membership."""

    def __init__(self, session: AsyncSession):
        self.session = session

    # =========================================================================
    # ORGANIZATIONS
    # =========================================================================

    async def create_organization_with_admin(
        self, name: str, user_id: UUID
    ) -> tuple[Organization, Role]:
        """Create an organization and make the founder its admin."""
        name = (name or "").strip()
        if len(name) < 2 or len(name) > 100:
            raise ValidationError("Organization name must be between 2 and 100 characters")

        profile = await self._get_profile(user_id)
        if profile.organization_id is not None:
            raise ConflictError("You already belong to an organization")

        organization = Organization(name=name)
        self.session.add(organization)
        await self.session.flush()

        profile.organization_id = organization.id
        await self._upsert_role(user_id, organization.id, Role.ADMIN)
        await self.session.flush()

        logger.info(f"Organization {organization.id} created by {user_id}")
        return organization, Role.ADMIN

    async def search_organizations(self, query: str, limit: int = 20) -> Sequence[Organization]:
        term = (query or "").strip()
        if len(term) < 2:
            return []
        result = await self.session.execute(
            select(Organization)
            .where(Organization.name.ilike(f"%{term}%"))
            .order_by(Organization.name)
            .limit(limit)
        )
        return result.scalars().all()

    # =========================================================================
    # JOIN REQUESTS
    # =========================================================================

    async def submit_join_request(
        self,
        user_id: UUID,
        organization_id: UUID,
        requested_role: Role = Role.REQUESTER,
    ) -> JoinRequest:
        requested_role = Role(requested_role)
        if requested_role == Role.ADMIN:
            raise ValidationError("Admin access cannot be requested; ask an admin to promote you")

        profile = await self._get_profile(user_id)
        if profile.organization_id is not None:
            raise ConflictError("You already belong to an organization")

        organization = await self.session.get(Organization, organization_id)
        if organization is None:
            raise NotFoundError(f"Organization {organization_id} not found")

        result = await self.session.execute(
            select(JoinRequest).where(
                JoinRequest.user_id == user_id,
                JoinRequest.organization_id == organization_id,
            )
        )
        join_request = result.scalar_one_or_none()
        if join_request is not None:
            if join_request.status == JoinRequestStatus.PENDING:
                raise ConflictError("You already have a pending request for this organization")
            # A rejected or stale request is reopened rather than duplicated
            join_request.status = JoinRequestStatus.PENDING
            join_request.requested_role = requested_role
        else:
            join_request = JoinRequest(
                user_id=user_id,
                organization_id=organization_id,
                requested_role=requested_role,
                status=JoinRequestStatus.PENDING,
            )
            self.session.add(join_request)
        await self.session.flush()
        return await self._get_join_request(join_request.id)

    async def list_my_join_requests(self, user_id: UUID) -> Sequence[JoinRequest]:
        result = await self.session.execute(
            select(JoinRequest)
            .where(JoinRequest.user_id == user_id)
            .options(selectinload(JoinRequest.organization), selectinload(JoinRequest.user))
            .order_by(JoinRequest.created_at.desc())
        )
        return result.scalars().all()

    async def list_pending_join_requests(self, organization_id: UUID) -> Sequence[JoinRequest]:
        result = await self.session.execute(
            select(JoinRequest)
            .where(
                JoinRequest.organization_id == organization_id,
                JoinRequest.status == JoinRequestStatus.PENDING,
            )
            .options(selectinload(JoinRequest.organization), selectinload(JoinRequest.user))
            .order_by(JoinRequest.created_at.asc())
        )
        return result.scalars().all()

    async def approve_join_request(
        self,
        request_id: UUID,
        admin_id: UUID,
        admin_organization_id: UUID | None,
        admin_role: Role | None,
        role: Role | None = None,
    ) -> tuple[UUID, Role]:
        """
        Admit a user: approve the request, affiliate the profile and grant
        the role, all in the caller's transaction.
        """
        if admin_role != Role.ADMIN or admin_organization_id is None:
            raise UnauthorizedError("Only admins can perform this action")

        join_request = await self._get_join_request(request_id)
        if join_request.organization_id != admin_organization_id:
            # Do not reveal requests of other organizations
            raise NotFoundError(f"Join request {request_id} not found")
        if join_request.status != JoinRequestStatus.PENDING:
            raise ConflictError(f"Join request is already {join_request.status.value}")

        profile = await self._get_profile(join_request.user_id)
        if profile.organization_id not in (None, admin_organization_id):
            raise ConflictError("User already belongs to another organization")

        granted = Role(role) if role is not None else join_request.requested_role
        join_request.status = JoinRequestStatus.APPROVED
        profile.organization_id = admin_organization_id
        await self._upsert_role(profile.id, admin_organization_id, granted)
        await self.session.flush()

        logger.info(
            f"Join request {request_id} approved by {admin_id}: "
            f"{profile.id} joins {admin_organization_id} as {granted.value}"
        )
        return profile.id, granted

    async def reject_join_request(self, request_id: UUID, organization_id: UUID) -> JoinRequest:
        join_request = await self._get_join_request(request_id)
        if join_request.organization_id != organization_id:
            raise NotFoundError(f"Join request {request_id} not found")
        if join_request.status != JoinRequestStatus.PENDING:
            raise ConflictError(f"Join request is already {join_request.status.value}")
        join_request.status = JoinRequestStatus.REJECTED
        await self.session.flush()
        return join_request

    # =========================================================================
    # INVITES
    # =========================================================================

    async def create_invite(
        self,
        organization_id: UUID,
        email: str,
        role: Role,
        invited_by: UUID,
    ) -> TeamInvite:
        email = email.strip().lower()
        result = await self.session.execute(
            select(TeamInvite).where(
                TeamInvite.organization_id == organization_id,
                TeamInvite.email == email,
            )
        )
        invite = result.scalar_one_or_none()
        expires_at = utcnow() + timedelta(days=settings.invite_expiry_days)

        if invite is not None:
            if invite.status == InviteStatus.PENDING and not self._is_expired(invite):
                raise ConflictError(f"{email} already has a pending invite")
            invite.role = Role(role)
            invite.invited_by = invited_by
            invite.status = InviteStatus.PENDING
            invite.created_at = utcnow()
            invite.expires_at = expires_at
        else:
            invite = TeamInvite(
                organization_id=organization_id,
                email=email,
                role=Role(role),
                invited_by=invited_by,
                status=InviteStatus.PENDING,
                expires_at=expires_at,
            )
            self.session.add(invite)
        await self.session.flush()
        return invite

    async def list_invites(self, organization_id: UUID) -> Sequence[TeamInvite]:
        result = await self.session.execute(
            select(TeamInvite)
            .where(TeamInvite.organization_id == organization_id)
            .order_by(TeamInvite.created_at.desc())
        )
        invites = result.scalars().all()
        await self._expire_stale(invites)
        return invites

    async def list_invites_for_email(self, email: str) -> Sequence[TeamInvite]:
        result = await self.session.execute(
            select(TeamInvite)
            .where(
                func.lower(TeamInvite.email) == email.strip().lower(),
                TeamInvite.status == InviteStatus.PENDING,
            )
            .options(selectinload(TeamInvite.organization))
        )
        invites = result.scalars().all()
        await self._expire_stale(invites)
        return [i for i in invites if i.status == InviteStatus.PENDING]

    async def revoke_invite(self, invite_id: UUID, organization_id: UUID) -> None:
        invite = await self._get_invite(invite_id)
        if invite.organization_id != organization_id:
            raise NotFoundError(f"Invite {invite_id} not found")
        await self.session.delete(invite)
        await self.session.flush()

    async def accept_invite(self, invite_id: UUID, user_id: UUID) -> tuple[UUID, Role]:
        invite = await self._get_invite(invite_id)
        profile = await self._get_profile(user_id)

        if invite.email.lower() != profile.email.lower():
            raise NotFoundError(f"Invite {invite_id} not found")
        if invite.status != InviteStatus.PENDING:
            raise ConflictError(f"Invite is {invite.status.value}")
        if self._is_expired(invite):
            invite.status = InviteStatus.EXPIRED
            await self.session.flush()
            raise ConflictError("Invite has expired")
        if profile.organization_id not in (None, invite.organization_id):
            raise ConflictError("You already belong to another organization")

        profile.organization_id = invite.organization_id
        await self._upsert_role(profile.id, invite.organization_id, invite.role)
        invite.status = InviteStatus.ACCEPTED
        await self.session.flush()

        logger.info(f"Invite {invite_id} accepted by {user_id}")
        return invite.organization_id, invite.role

    # =========================================================================
    # MEMBERS
    # =========================================================================

    async def list_members(self, organization_id: UUID) -> list[tuple[Profile, Role | None]]:
        result = await self.session.execute(
            select(Profile, RoleAssignment.role)
            .outerjoin(
                RoleAssignment,
                (RoleAssignment.user_id == Profile.id)
                & (RoleAssignment.organization_id == organization_id),
            )
            .where(Profile.organization_id == organization_id)
            .order_by(Profile.full_name, Profile.email)
        )
        return [(profile, parse_role(role)) for profile, role in result.all()]

    async def change_member_role(
        self,
        organization_id: UUID,
        user_id: UUID,
        role: Role,
    ) -> Role:
        role = Role(role)
        profile = await self._get_profile(user_id)
        if profile.organization_id != organization_id:
            raise NotFoundError(f"Member {user_id} not found")

        current = await self._get_role_assignment(user_id, organization_id)
        if current is not None and current.role == Role.ADMIN and role != Role.ADMIN:
            result = await self.session.execute(
                select(func.count()).where(
                    RoleAssignment.organization_id == organization_id,
                    RoleAssignment.role == Role.ADMIN,
                )
            )
            if result.scalar_one() <= 1:
                raise ConflictError("Organization must keep at least one admin")

        await self._upsert_role(user_id, organization_id, role)
        await self.session.flush()
        logger.info(f"Role of {user_id} in {organization_id} set to {role.value}")
        return role

    # =========================================================================
    # HELPERS
    # =========================================================================

    async def _get_profile(self, user_id: UUID) -> Profile:
        profile = await self.session.get(Profile, user_id)
        if profile is None:
            raise NotFoundError(f"Profile {user_id} not found")
        return profile

    async def _get_join_request(self, request_id: UUID) -> JoinRequest:
        result = await self.session.execute(
            select(JoinRequest)
            .where(JoinRequest.id == request_id)
            .options(selectinload(JoinRequest.organization), selectinload(JoinRequest.user))
            .execution_options(populate_existing=True)
        )
        join_request = result.scalar_one_or_none()
        if join_request is None:
            raise NotFoundError(f"Join request {request_id} not found")
        return join_request

    async def _get_invite(self, invite_id: UUID) -> TeamInvite:
        invite = await self.session.get(TeamInvite, invite_id)
        if invite is None:
            raise NotFoundError(f"Invite {invite_id} not found")
        return invite

    async def _get_role_assignment(
        self, user_id: UUID, organization_id: UUID
    ) -> RoleAssignment | None:
        result = await self.session.execute(
            select(RoleAssignment).where(
                RoleAssignment.user_id == user_id,
                RoleAssignment.organization_id == organization_id,
            )
        )
        return result.scalar_one_or_none()

    async def _upsert_role(self, user_id: UUID, organization_id: UUID, role: Role) -> RoleAssignment:
        assignment = await self._get_role_assignment(user_id, organization_id)
        if assignment is None:
            assignment = RoleAssignment(user_id=user_id, organization_id=organization_id, role=role)
            self.session.add(assignment)
        else:
            assignment.role = role
        return assignment

    @staticmethod
    def _is_expired(invite: TeamInvite) -> bool:
        return as_utc(invite.expires_at) < utcnow()

    async def _expire_stale(self, invites: Sequence[TeamInvite]) -> None:
        stale = [i for i in invites if i.status == InviteStatus.PENDING and self._is_expired(i)]
        for invite in stale:
            invite.status = InviteStatus.EXPIRED
        if stale:
            await self.session.flush()
