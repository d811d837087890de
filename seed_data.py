#!/usr/bin/env python3
"""
Seed Data Script for GearGuard

Creates a small "Acme Plant" maintenance scenario with:
- 5 Users (Alice admin, Bob manager, Carol and Dan technicians, Erin requester)
- 1 Organization (Acme Plant)
- 2 Teams (Mechanics, Electricians)
- Equipment in two categories, one of it later scrapped
- Requests in every board column, including an overdue preventive job

Every password is "gearguard-demo".

Run with: python seed_data.py
"""

import asyncio
from datetime import timedelta

from sqlalchemy import text

from gearguard.core.database import close_db, get_session_context, init_db, set_service_context
from gearguard.core.security import hash_password
from gearguard.models import (
    MaintenanceType,
    Priority,
    Profile,
    RequestStatus,
    Role,
    utcnow,
)
from gearguard.schemas import (
    CategoryCreate,
    EquipmentCreate,
    MaintenanceRequestCreate,
    TeamCreate,
)
from gearguard.services import (
    EquipmentService,
    MaintenanceService,
    OnboardingService,
    TransitionContext,
    WorkflowEngine,
)

DEMO_PASSWORD = "gearguard-demo"

# Children before parents
TABLES = [
    "request_logs",
    "maintenance_requests",
    "equipment",
    "equipment_categories",
    "team_members",
    "teams",
    "team_invites",
    "organization_join_requests",
    "user_roles",
    "profiles",
    "organizations",
]


async def seed_database():
    """Main seeding function."""
    await init_db()

    async with get_session_context() as session:
        print("🌱 Starting database seed...")
        await set_service_context(session)

        result = await session.execute(text("SELECT COUNT(*) FROM organizations"))
        count = result.scalar()
        if count and count > 0:
            print("⚠️  Database already has data. Clearing existing data...")
            await clear_database(session)

        # =================================================================
        # CREATE USERS
        # =================================================================
        print("\n👥 Creating users...")

        password_hash = hash_password(DEMO_PASSWORD)
        people = {
            "alice": ("alice@acme.example", "Alice Chen"),
            "bob": ("bob@acme.example", "Bob Martinez"),
            "carol": ("carol@acme.example", "Carol Singh"),
            "dan": ("dan@acme.example", "Dan Okafor"),
            "erin": ("erin@acme.example", "Erin Walsh"),
        }
        profiles = {
            key: Profile(email=email, full_name=name, password_hash=password_hash)
            for key, (email, name) in people.items()
        }
        session.add_all(profiles.values())
        await session.flush()
        for email, name in people.values():
            print(f"   ✓ {name} <{email}>")

        # =================================================================
        # CREATE ORGANIZATION & MEMBERSHIPS
        # =================================================================
        print("\n📦 Creating organization...")

        onboarding = OnboardingService(session)
        org, _ = await onboarding.create_organization_with_admin("Acme Plant", profiles["alice"].id)
        print(f"   ✓ Created: {org.name} (admin: Alice)")

        roles = {"bob": Role.MANAGER, "carol": Role.TECHNICIAN, "dan": Role.TECHNICIAN}
        for key, role in roles.items():
            invite = await onboarding.create_invite(
                org.id, profiles[key].email, role, profiles["alice"].id
            )
            await onboarding.accept_invite(invite.id, profiles[key].id)
            print(f"   ✓ {profiles[key].full_name} joined as {role.value}")

        join_request = await onboarding.submit_join_request(profiles["erin"].id, org.id)
        await onboarding.approve_join_request(
            join_request.id, profiles["alice"].id, org.id, Role.ADMIN
        )
        print(f"   ✓ {profiles['erin'].full_name} joined as requester")

        # =================================================================
        # CREATE TEAMS & EQUIPMENT
        # =================================================================
        print("\n🔧 Creating teams and equipment...")

        equipment_service = EquipmentService(session)
        mechanics = await equipment_service.create_team(
            TeamCreate(name="Mechanics", member_ids=[profiles["carol"].id, profiles["dan"].id]),
            org.id,
        )
        electricians = await equipment_service.create_team(
            TeamCreate(name="Electricians", member_ids=[profiles["dan"].id]), org.id
        )

        machines = await equipment_service.create_category(CategoryCreate(name="Machines"), org.id)
        vehicles = await equipment_service.create_category(CategoryCreate(name="Vehicles"), org.id)

        press = await equipment_service.create_equipment(
            EquipmentCreate(
                name="Hydraulic Press",
                serial_number="HP-001",
                category_id=machines.id,
                assigned_team_id=mechanics.id,
                location="Hall A",
            ),
            org.id,
        )
        cnc = await equipment_service.create_equipment(
            EquipmentCreate(
                name="CNC Mill",
                serial_number="CNC-7",
                category_id=machines.id,
                assigned_team_id=electricians.id,
                location="Hall B",
            ),
            org.id,
        )
        forklift = await equipment_service.create_equipment(
            EquipmentCreate(
                name="Forklift",
                serial_number="FL-12",
                category_id=vehicles.id,
                assigned_team_id=mechanics.id,
                location="Warehouse",
            ),
            org.id,
        )
        print(f"   ✓ 2 teams, 2 categories, 3 pieces of equipment")

        # =================================================================
        # CREATE REQUESTS
        # =================================================================
        print("\n📋 Creating maintenance requests...")

        maintenance = MaintenanceService(session)
        erin, bob = profiles["erin"].id, profiles["bob"].id

        await maintenance.create_request(
            MaintenanceRequestCreate(
                title="Oil leak under the ram", equipment_id=press.id, priority=Priority.HIGH
            ),
            org.id,
            erin,
            Role.REQUESTER,
        )
        await maintenance.create_request(
            MaintenanceRequestCreate(
                title="Quarterly spindle inspection",
                equipment_id=cnc.id,
                type=MaintenanceType.PREVENTIVE,
                scheduled_date=utcnow() - timedelta(days=2),
            ),
            org.id,
            bob,
            Role.MANAGER,
        )
        in_progress = await maintenance.create_request(
            MaintenanceRequestCreate(title="Coolant pump noisy", equipment_id=cnc.id),
            org.id,
            erin,
            Role.REQUESTER,
        )
        repaired = await maintenance.create_request(
            MaintenanceRequestCreate(
                title="Hydraulic hose replacement", equipment_id=press.id, priority=Priority.LOW
            ),
            org.id,
            erin,
            Role.REQUESTER,
        )
        scrapped = await maintenance.create_request(
            MaintenanceRequestCreate(title="Mast cracked", equipment_id=forklift.id),
            org.id,
            erin,
            Role.REQUESTER,
        )

        # Walk requests through the workflow so every column has a card
        engine = WorkflowEngine(session)
        dan = TransitionContext(acting_user_id=profiles["dan"].id, role=Role.TECHNICIAN)
        carol = TransitionContext(acting_user_id=profiles["carol"].id, role=Role.TECHNICIAN)

        await engine.change_status(in_progress.id, RequestStatus.IN_PROGRESS, dan, org.id)

        await engine.change_status(repaired.id, RequestStatus.IN_PROGRESS, carol, org.id)
        carol.duration = 90
        carol.work_summary = "Replaced the return hose and bled the circuit"
        await engine.change_status(repaired.id, RequestStatus.REPAIRED, carol, org.id)

        manager = TransitionContext(
            acting_user_id=bob, role=Role.MANAGER, scrap_reason="Mast beyond repair"
        )
        await engine.change_status(scrapped.id, RequestStatus.IN_PROGRESS, manager, org.id)
        await engine.change_status(scrapped.id, RequestStatus.SCRAP, manager, org.id)

        print("   ✓ 5 requests across New, In Progress, Repaired and Scrap")

    await close_db()

    print("\n" + "=" * 60)
    print("✅ DATABASE SEEDED SUCCESSFULLY!")
    print("=" * 60)
    print(f"""
📊 Summary:
   • 1 Organization: Acme Plant
   • 5 Users: Alice (admin), Bob (manager), Carol & Dan (technicians), Erin (requester)
   • 2 Teams: Mechanics, Electricians
   • 3 Equipment: Hydraulic Press, CNC Mill, Forklift [SCRAPPED]
   • 5 Requests:
     - Oil leak under the ram [NEW, High]
     - Quarterly spindle inspection [NEW, Preventive, OVERDUE]
     - Coolant pump noisy [IN PROGRESS, Dan]
     - Hydraulic hose replacement [REPAIRED, 90 min]
     - Mast cracked [SCRAP]

🔑 Log in as any user with password "{DEMO_PASSWORD}"
""")


async def clear_database(session):
    """Clear all data from the database (in correct order for FK constraints)."""
    for table in TABLES:
        await session.execute(text(f"DELETE FROM {table}"))
    await session.flush()
    print("   ✓ Cleared existing data")


if __name__ == "__main__":
    asyncio.run(seed_database())
