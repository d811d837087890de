"""Equipment service: categories, equipment and maintenance teams."""

import logging
from typing import Sequence
from uuid import UUID

from sqlalchemy import delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..models import (
    Equipment,
    EquipmentCategory,
    EquipmentStatus,
    MaintenanceRequest,
    Profile,
    Team,
    TeamMember,
)
from ..schemas import CategoryCreate, EquipmentCreate, EquipmentUpdate, TeamCreate, TeamUpdate
from .errors import ConflictError, EquipmentScrappedError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)


class EquipmentService:
    """Asset registry for one organization. Callers enforce the write roles."""

    def __init__(self, session: AsyncSession):
        self.session = session

    # =========================================================================
    # CATEGORIES
    # =========================================================================

    async def list_categories(self, organization_id: UUID) -> Sequence[EquipmentCategory]:
        result = await self.session.execute(
            select(EquipmentCategory)
            .where(EquipmentCategory.organization_id == organization_id)
            .order_by(EquipmentCategory.name)
        )
        return result.scalars().all()

    async def create_category(
        self, data: CategoryCreate, organization_id: UUID
    ) -> EquipmentCategory:
        category = EquipmentCategory(organization_id=organization_id, name=data.name.strip())
        self.session.add(category)
        await self.session.flush()
        return category

    async def delete_category(self, category_id: UUID, organization_id: UUID) -> None:
        category = await self._get_category(category_id, organization_id)
        await self.session.delete(category)
        await self.session.flush()

    # =========================================================================
    # EQUIPMENT
    # =========================================================================

    async def list_equipment(
        self,
        organization_id: UUID,
        search: str | None = None,
        status: EquipmentStatus | None = None,
        category_id: UUID | None = None,
    ) -> Sequence[Equipment]:
        query = select(Equipment).where(Equipment.organization_id == organization_id)
        if status:
            query = query.where(Equipment.status == status)
        if category_id:
            query = query.where(Equipment.category_id == category_id)
        if search:
            term = f"%{search.strip()}%"
            query = query.where(
                or_(Equipment.name.ilike(term), Equipment.serial_number.ilike(term))
            )
        result = await self.session.execute(query.order_by(Equipment.created_at.desc()))
        return result.scalars().all()

    async def get_equipment(self, equipment_id: UUID, organization_id: UUID) -> Equipment:
        result = await self.session.execute(
            select(Equipment).where(
                Equipment.id == equipment_id,
                Equipment.organization_id == organization_id,
            )
        )
        equipment = result.scalar_one_or_none()
        if not equipment:
            raise NotFoundError(f"Equipment {equipment_id} not found")
        return equipment

    async def create_equipment(self, data: EquipmentCreate, organization_id: UUID) -> Equipment:
        await self._check_references(data.category_id, data.assigned_team_id, organization_id)
        equipment = Equipment(
            organization_id=organization_id,
            status=EquipmentStatus.ACTIVE,
            **data.model_dump(),
        )
        self.session.add(equipment)
        await self.session.flush()
        logger.info(f"Registered equipment {equipment.id} ({equipment.name})")
        return equipment

    async def update_equipment(
        self, equipment_id: UUID, data: EquipmentUpdate, organization_id: UUID
    ) -> Equipment:
        """Edit an Active asset. Scrapped equipment is read-only."""
        equipment = await self.get_equipment(equipment_id, organization_id)
        if equipment.status == EquipmentStatus.SCRAPPED:
            raise EquipmentScrappedError("Scrapped equipment cannot be edited")

        changes = data.model_dump(exclude_unset=True)
        if "name" in changes and not changes["name"]:
            raise ValidationError("Equipment name cannot be empty")
        await self._check_references(
            changes.get("category_id"), changes.get("assigned_team_id"), organization_id
        )
        for key, value in changes.items():
            setattr(equipment, key, value)
        await self.session.flush()
        return equipment

    async def delete_equipment(self, equipment_id: UUID, organization_id: UUID) -> None:
        """Remove an asset that never had maintenance history."""
        equipment = await self.get_equipment(equipment_id, organization_id)
        result = await self.session.execute(
            select(func.count()).where(MaintenanceRequest.equipment_id == equipment_id)
        )
        if result.scalar_one():
            raise ConflictError("Equipment with maintenance requests cannot be deleted")
        await self.session.delete(equipment)
        await self.session.flush()

    # =========================================================================
    # TEAMS
    # =========================================================================

    async def list_teams(self, organization_id: UUID) -> Sequence[Team]:
        result = await self.session.execute(
            select(Team)
            .where(Team.organization_id == organization_id)
            .options(selectinload(Team.members).selectinload(TeamMember.user))
            .order_by(Team.name)
        )
        return result.scalars().all()

    async def get_team(self, team_id: UUID, organization_id: UUID) -> Team:
        result = await self.session.execute(
            select(Team)
            .where(Team.id == team_id, Team.organization_id == organization_id)
            .options(selectinload(Team.members).selectinload(TeamMember.user))
            .execution_options(populate_existing=True)
        )
        team = result.scalar_one_or_none()
        if not team:
            raise NotFoundError(f"Team {team_id} not found")
        return team

    async def create_team(self, data: TeamCreate, organization_id: UUID) -> Team:
        team = Team(organization_id=organization_id, name=data.name.strip())
        self.session.add(team)
        await self.session.flush()
        await self._set_members(team, data.member_ids, organization_id)
        return await self.get_team(team.id, organization_id)

    async def update_team(self, team_id: UUID, data: TeamUpdate, organization_id: UUID) -> Team:
        team = await self.get_team(team_id, organization_id)
        if data.name is not None:
            team.name = data.name.strip()
        if data.member_ids is not None:
            await self._set_members(team, data.member_ids, organization_id)
        await self.session.flush()
        return await self.get_team(team_id, organization_id)

    async def delete_team(self, team_id: UUID, organization_id: UUID) -> None:
        team = await self.get_team(team_id, organization_id)
        await self.session.delete(team)
        await self.session.flush()

    async def _set_members(
        self, team: Team, member_ids: list[UUID], organization_id: UUID
    ) -> None:
        unique_ids = list(dict.fromkeys(member_ids))
        if unique_ids:
            result = await self.session.execute(
                select(Profile.id).where(
                    Profile.id.in_(unique_ids),
                    Profile.organization_id == organization_id,
                )
            )
            found = set(result.scalars().all())
            missing = [str(m) for m in unique_ids if m not in found]
            if missing:
                raise ValidationError(f"Not members of this organization: {', '.join(missing)}")

        # Replace rows directly; re-adding an existing member must not hit the unique key
        await self.session.execute(
            delete(TeamMember)
            .where(TeamMember.team_id == team.id)
            .execution_options(synchronize_session=False)
        )
        for user_id in unique_ids:
            self.session.add(TeamMember(team_id=team.id, user_id=user_id))
        await self.session.flush()
        self.session.expire(team, ["members"])

    # =========================================================================
    # HELPERS
    # =========================================================================

    async def _get_category(self, category_id: UUID, organization_id: UUID) -> EquipmentCategory:
        result = await self.session.execute(
            select(EquipmentCategory).where(
                EquipmentCategory.id == category_id,
                EquipmentCategory.organization_id == organization_id,
            )
        )
        category = result.scalar_one_or_none()
        if not category:
            raise NotFoundError(f"Category {category_id} not found")
        return category

    async def _check_references(
        self, category_id: UUID | None, team_id: UUID | None, organization_id: UUID
    ) -> None:
        if category_id is not None:
            await self._get_category(category_id, organization_id)
        if team_id is not None:
            result = await self.session.execute(
                select(Team.id).where(Team.id == team_id, Team.organization_id == organization_id)
            )
            if result.scalar_one_or_none() is None:
                raise NotFoundError(f"Team {team_id} not found")
