"""Shared fixtures: an in-memory SQLite database and a small organization."""

import os

# Settings are read at import time
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("ENVIRONMENT", "development")

from dataclasses import dataclass
from datetime import timedelta

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from gearguard.core.database import get_session
from gearguard.core.security import create_access_token
from gearguard.models import (
    Base,
    Equipment,
    EquipmentStatus,
    MaintenanceRequest,
    MaintenanceType,
    Organization,
    Priority,
    Profile,
    RequestStatus,
    Role,
    RoleAssignment,
    Team,
    TeamMember,
    utcnow,
)


# =============================================================================
# DATABASE
# =============================================================================


def create_test_engine():
    """In-memory SQLite engine shared by every session of one test."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    # Let SQLAlchemy emit BEGIN itself so SAVEPOINT works on SQLite
    @event.listens_for(engine.sync_engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine


@pytest_asyncio.fixture
async def engine():
    engine = create_test_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


# =============================================================================
# ORGANIZATION
# =============================================================================


@dataclass
class World:
    organization: Organization
    admin: Profile
    manager: Profile
    technician: Profile
    other_technician: Profile
    requester: Profile
    team: Team
    equipment: Equipment


async def add_member(session: AsyncSession, organization: Organization, email: str, role: Role | None) -> Profile:
    profile = Profile(
        organization_id=organization.id,
        email=email,
        full_name=email.split("@")[0].title(),
    )
    session.add(profile)
    await session.flush()
    if role is not None:
        session.add(RoleAssignment(user_id=profile.id, organization_id=organization.id, role=role))
        await session.flush()
    return profile


async def build_world(session: AsyncSession) -> World:
    organization = Organization(name="Acme Plant")
    session.add(organization)
    await session.flush()

    admin = await add_member(session, organization, "admin@acme.test", Role.ADMIN)
    manager = await add_member(session, organization, "manager@acme.test", Role.MANAGER)
    technician = await add_member(session, organization, "tech@acme.test", Role.TECHNICIAN)
    other_technician = await add_member(session, organization, "tech2@acme.test", Role.TECHNICIAN)
    requester = await add_member(session, organization, "requester@acme.test", Role.REQUESTER)

    team = Team(organization_id=organization.id, name="Mechanics")
    session.add(team)
    await session.flush()
    for member in (technician, other_technician):
        session.add(TeamMember(team_id=team.id, user_id=member.id))

    equipment = Equipment(
        organization_id=organization.id,
        name="Hydraulic Press",
        serial_number="HP-001",
        assigned_team_id=team.id,
        status=EquipmentStatus.ACTIVE,
    )
    session.add(equipment)
    await session.flush()

    return World(
        organization=organization,
        admin=admin,
        manager=manager,
        technician=technician,
        other_technician=other_technician,
        requester=requester,
        team=team,
        equipment=equipment,
    )


@pytest_asyncio.fixture
async def world(session) -> World:
    return await build_world(session)


async def create_request(
    session: AsyncSession,
    world: World,
    status: RequestStatus = RequestStatus.NEW,
    assigned_technician_id=None,
    equipment: Equipment | None = None,
    **overrides,
) -> MaintenanceRequest:
    equipment = equipment or world.equipment
    values = dict(
        organization_id=world.organization.id,
        title="Oil leak",
        equipment_id=equipment.id,
        type=MaintenanceType.CORRECTIVE,
        priority=Priority.MEDIUM,
        status=status,
        assigned_team_id=world.team.id,
        assigned_technician_id=assigned_technician_id,
        created_by=world.requester.id,
        updated_by=world.requester.id,
    )
    values.update(overrides)
    request = MaintenanceRequest(**values)
    session.add(request)
    await session.flush()
    return request


@pytest.fixture
def make_request(session, world):
    async def factory(**kwargs) -> MaintenanceRequest:
        return await create_request(session, world, **kwargs)

    return factory


@pytest.fixture
def yesterday():
    return utcnow() - timedelta(days=1)


# =============================================================================
# API
# =============================================================================


@pytest_asyncio.fixture
async def api_world(session_factory) -> World:
    """A committed organization for API tests; API calls use their own sessions."""
    async with session_factory() as session:
        world = await build_world(session)
        await session.commit()
    return world


@pytest_asyncio.fixture
async def client(session_factory):
    from gearguard.main import app

    async def override_get_session():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_session] = override_get_session
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


def auth_headers(profile: Profile) -> dict[str, str]:
    token = create_access_token(user_id=profile.id, email=profile.email)
    return {"Authorization": f"Bearer {token}"}
