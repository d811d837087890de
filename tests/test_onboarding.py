"""
Tests for onboarding: organization creation, join requests, invites and members.
"""

from datetime import timedelta

import pytest
from sqlalchemy import select

from gearguard.models import (
    InviteStatus,
    JoinRequestStatus,
    Profile,
    Role,
    RoleAssignment,
    utcnow,
)
from gearguard.services import (
    ConflictError,
    NotFoundError,
    OnboardingService,
    RoleResolver,
    UnauthorizedError,
    ValidationError,
)


@pytest.fixture
def newcomer_factory(session):
    async def factory(email="newcomer@example.test") -> Profile:
        profile = Profile(email=email, full_name="New Comer")
        session.add(profile)
        await session.flush()
        return profile

    return factory


# =============================================================================
# TEST: ORGANIZATIONS
# =============================================================================


class TestCreateOrganization:
    async def test_founder_becomes_admin(self, session, newcomer_factory):
        founder = await newcomer_factory()

        organization, role = await OnboardingService(session).create_organization_with_admin(
            "  Northwind Fleet  ", founder.id
        )

        assert organization.name == "Northwind Fleet"
        assert role == Role.ADMIN
        context = await RoleResolver(session).resolve(founder.id)
        assert context.organization_id == organization.id
        assert context.role == Role.ADMIN

    @pytest.mark.parametrize("name", ["", " A ", "x" * 101])
    async def test_name_length(self, session, newcomer_factory, name):
        founder = await newcomer_factory()
        with pytest.raises(ValidationError):
            await OnboardingService(session).create_organization_with_admin(name, founder.id)

    async def test_affiliated_user_cannot_create(self, session, world):
        with pytest.raises(ConflictError):
            await OnboardingService(session).create_organization_with_admin(
                "Second Org", world.manager.id
            )

    async def test_search(self, session, world):
        service = OnboardingService(session)
        assert [o.name for o in await service.search_organizations("acme")] == ["Acme Plant"]
        assert await service.search_organizations("a") == []


# =============================================================================
# TEST: JOIN REQUESTS
# =============================================================================


class TestJoinRequests:
    async def test_approve_admits_user_with_requested_role(self, session, world, newcomer_factory):
        newcomer = await newcomer_factory()
        service = OnboardingService(session)
        join_request = await service.submit_join_request(
            newcomer.id, world.organization.id, Role.TECHNICIAN
        )
        assert join_request.status == JoinRequestStatus.PENDING

        user_id, role = await service.approve_join_request(
            join_request.id, world.admin.id, world.organization.id, Role.ADMIN
        )

        assert user_id == newcomer.id
        assert role == Role.TECHNICIAN
        context = await RoleResolver(session).resolve(newcomer.id)
        assert context.organization_id == world.organization.id
        assert context.role == Role.TECHNICIAN

    async def test_admin_may_grant_a_different_role(self, session, world, newcomer_factory):
        newcomer = await newcomer_factory()
        service = OnboardingService(session)
        join_request = await service.submit_join_request(newcomer.id, world.organization.id)

        _, role = await service.approve_join_request(
            join_request.id, world.admin.id, world.organization.id, Role.ADMIN, role=Role.MANAGER
        )
        assert role == Role.MANAGER

    @pytest.mark.parametrize("role", [Role.MANAGER, Role.TECHNICIAN, Role.REQUESTER, None])
    async def test_only_admins_approve(self, session, world, newcomer_factory, role):
        newcomer = await newcomer_factory()
        service = OnboardingService(session)
        join_request = await service.submit_join_request(newcomer.id, world.organization.id)

        with pytest.raises(UnauthorizedError):
            await service.approve_join_request(
                join_request.id, world.manager.id, world.organization.id, role
            )
        result = await session.execute(
            select(RoleAssignment).where(RoleAssignment.user_id == newcomer.id)
        )
        assert result.scalar_one_or_none() is None

    async def test_admin_of_another_org_cannot_approve(self, session, world, newcomer_factory):
        founder = await newcomer_factory("founder@other.test")
        service = OnboardingService(session)
        other_org, _ = await service.create_organization_with_admin("Other Org", founder.id)

        newcomer = await newcomer_factory()
        join_request = await service.submit_join_request(newcomer.id, world.organization.id)

        with pytest.raises(NotFoundError):
            await service.approve_join_request(join_request.id, founder.id, other_org.id, Role.ADMIN)

    async def test_admin_role_cannot_be_requested(self, session, world, newcomer_factory):
        newcomer = await newcomer_factory()
        with pytest.raises(ValidationError):
            await OnboardingService(session).submit_join_request(
                newcomer.id, world.organization.id, Role.ADMIN
            )

    async def test_duplicate_pending_request(self, session, world, newcomer_factory):
        newcomer = await newcomer_factory()
        service = OnboardingService(session)
        await service.submit_join_request(newcomer.id, world.organization.id)
        with pytest.raises(ConflictError):
            await service.submit_join_request(newcomer.id, world.organization.id)

    async def test_rejected_request_can_be_resubmitted(self, session, world, newcomer_factory):
        newcomer = await newcomer_factory()
        service = OnboardingService(session)
        first = await service.submit_join_request(newcomer.id, world.organization.id)
        await service.reject_join_request(first.id, world.organization.id)

        again = await service.submit_join_request(newcomer.id, world.organization.id)

        assert again.id == first.id
        assert again.status == JoinRequestStatus.PENDING
        pending = await service.list_pending_join_requests(world.organization.id)
        assert [r.id for r in pending] == [first.id]

    async def test_approving_twice_conflicts(self, session, world, newcomer_factory):
        newcomer = await newcomer_factory()
        service = OnboardingService(session)
        join_request = await service.submit_join_request(newcomer.id, world.organization.id)
        await service.approve_join_request(
            join_request.id, world.admin.id, world.organization.id, Role.ADMIN
        )
        with pytest.raises(ConflictError):
            await service.approve_join_request(
                join_request.id, world.admin.id, world.organization.id, Role.ADMIN
            )


# =============================================================================
# TEST: INVITES
# =============================================================================


class TestInvites:
    async def test_accept_invite(self, session, world, newcomer_factory):
        newcomer = await newcomer_factory("Invitee@Example.test")
        service = OnboardingService(session)
        invite = await service.create_invite(
            world.organization.id, "invitee@example.test", Role.TECHNICIAN, world.admin.id
        )
        assert [i.id for i in await service.list_invites_for_email("INVITEE@example.test")] == [invite.id]

        organization_id, role = await service.accept_invite(invite.id, newcomer.id)

        assert organization_id == world.organization.id
        assert role == Role.TECHNICIAN
        assert invite.status == InviteStatus.ACCEPTED

    async def test_invite_for_someone_else(self, session, world, newcomer_factory):
        stranger = await newcomer_factory("stranger@example.test")
        service = OnboardingService(session)
        invite = await service.create_invite(
            world.organization.id, "invitee@example.test", Role.TECHNICIAN, world.admin.id
        )
        with pytest.raises(NotFoundError):
            await service.accept_invite(invite.id, stranger.id)

    async def test_expired_invite(self, session, world, newcomer_factory):
        newcomer = await newcomer_factory("late@example.test")
        service = OnboardingService(session)
        invite = await service.create_invite(
            world.organization.id, "late@example.test", Role.REQUESTER, world.admin.id
        )
        invite.expires_at = utcnow() - timedelta(minutes=1)
        await session.flush()

        with pytest.raises(ConflictError):
            await service.accept_invite(invite.id, newcomer.id)
        assert invite.status == InviteStatus.EXPIRED

    async def test_duplicate_pending_invite(self, session, world):
        service = OnboardingService(session)
        await service.create_invite(world.organization.id, "x@example.test", Role.REQUESTER, world.admin.id)
        with pytest.raises(ConflictError):
            await service.create_invite(world.organization.id, "X@example.test", Role.REQUESTER, world.admin.id)

    async def test_revoke(self, session, world):
        service = OnboardingService(session)
        invite = await service.create_invite(
            world.organization.id, "x@example.test", Role.REQUESTER, world.admin.id
        )
        await service.revoke_invite(invite.id, world.organization.id)
        assert await service.list_invites(world.organization.id) == []


# =============================================================================
# TEST: MEMBERS
# =============================================================================


class TestMembers:
    async def test_list_members(self, session, world):
        members = await OnboardingService(session).list_members(world.organization.id)
        roles = {profile.email: role for profile, role in members}
        assert roles["admin@acme.test"] == Role.ADMIN
        assert roles["requester@acme.test"] == Role.REQUESTER
        assert len(roles) == 5

    async def test_change_role(self, session, world):
        service = OnboardingService(session)
        role = await service.change_member_role(world.organization.id, world.requester.id, Role.TECHNICIAN)
        assert role == Role.TECHNICIAN
        context = await RoleResolver(session).resolve(world.requester.id)
        assert context.role == Role.TECHNICIAN

    async def test_last_admin_cannot_be_demoted(self, session, world):
        with pytest.raises(ConflictError):
            await OnboardingService(session).change_member_role(
                world.organization.id, world.admin.id, Role.MANAGER
            )
