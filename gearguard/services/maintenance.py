"""Maintenance service: request CRUD, assignment, logs and dashboard figures.

Status never changes here; see ``workflow_engine``.
"""

import logging
from typing import Any, Sequence
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from sqlalchemy.orm.exc import StaleDataError

from ..models import (
    Equipment,
    EquipmentStatus,
    MaintenanceRequest,
    MaintenanceType,
    Priority,
    Profile,
    RequestLog,
    RequestStatus,
    Role,
    RoleAssignment,
    Team,
    TeamMember,
)
from ..schemas import MaintenanceRequestCreate, MaintenanceRequestUpdate
from .board import RequestSnapshot
from .errors import (
    ConcurrencyError,
    EquipmentScrappedError,
    MissingRequiredFieldError,
    NotFoundError,
    RequestNotFoundError,
    UnauthorizedError,
    ValidationError,
)

logger = logging.getLogger(__name__)

PRIVILEGED = (Role.ADMIN, Role.MANAGER)


def _request_options():
    return (
        selectinload(MaintenanceRequest.equipment),
        selectinload(MaintenanceRequest.team),
        selectinload(MaintenanceRequest.assignee),
    )


class MaintenanceService:
    """Service for maintenance request management."""

    def __init__(self, session: AsyncSession):
        self.session = session

    # =========================================================================
    # CREATE
    # =========================================================================

    async def create_request(
        self,
        data: MaintenanceRequestCreate,
        organization_id: UUID,
        author_id: UUID,
        role: Role | None,
    ) -> MaintenanceRequest:
        """
        Create a request in New.

        The equipment must be Active. The team defaults to the equipment's
        team. Only admins and managers may assign someone else on creation.
        """
        if role is None:
            raise UnauthorizedError("You need a role in this organization to create requests")

        equipment = await self._get_equipment(data.equipment_id, organization_id)
        if equipment.status == EquipmentStatus.SCRAPPED:
            raise EquipmentScrappedError("Cannot create request for Scrapped equipment")

        request_type = MaintenanceType(data.type)
        if request_type == MaintenanceType.PREVENTIVE and data.scheduled_date is None:
            raise MissingRequiredFieldError(
                "scheduled_date", "Scheduled date is required for Preventive maintenance"
            )

        team_id = data.assigned_team_id or equipment.assigned_team_id
        if team_id is not None:
            await self._get_team(team_id, organization_id)

        technician_id = data.assigned_technician_id
        if technician_id is not None:
            if role not in PRIVILEGED and technician_id != author_id:
                raise UnauthorizedError("Only admins and managers can assign technicians")
            await self._check_assignee(technician_id, organization_id, team_id)

        request = MaintenanceRequest(
            organization_id=organization_id,
            title=data.title,
            description=data.description,
            equipment_id=equipment.id,
            type=request_type,
            priority=Priority(data.priority),
            status=RequestStatus.NEW,
            assigned_team_id=team_id,
            assigned_technician_id=technician_id,
            scheduled_date=data.scheduled_date,
            created_by=author_id,
            updated_by=author_id,
        )
        self.session.add(request)
        await self.session.flush()

        self.session.add(
            RequestLog(
                request_id=request.id,
                organization_id=organization_id,
                user_id=author_id,
                action="Request created",
            )
        )
        await self.session.flush()

        logger.info(f"Created maintenance request {request.id} for equipment {equipment.id}")
        return await self.get_request(request.id, organization_id)

    # =========================================================================
    # READ
    # =========================================================================

    async def get_request(self, request_id: UUID, organization_id: UUID) -> MaintenanceRequest:
        result = await self.session.execute(
            select(MaintenanceRequest)
            .where(
                MaintenanceRequest.id == request_id,
                MaintenanceRequest.organization_id == organization_id,
            )
            .options(*_request_options())
            .execution_options(populate_existing=True)
        )
        request = result.scalar_one_or_none()
        if not request:
            raise RequestNotFoundError(f"Maintenance request {request_id} not found")
        return request

    async def list_requests(
        self,
        organization_id: UUID,
        user_id: UUID,
        role: Role | None,
        search: str | None = None,
        priority: Priority | None = None,
        status: RequestStatus | None = None,
        mine: bool = False,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[Sequence[MaintenanceRequest], int]:
        """
        List requests, newest first.

        Admins and managers see the whole organization; everyone else sees
        requests assigned to or created by them.
        """
        query = (
            select(MaintenanceRequest)
            .join(Equipment, MaintenanceRequest.equipment_id == Equipment.id)
            .where(MaintenanceRequest.organization_id == organization_id)
        )

        if role not in PRIVILEGED:
            query = query.where(
                or_(
                    MaintenanceRequest.assigned_technician_id == user_id,
                    MaintenanceRequest.created_by == user_id,
                )
            )
        if mine:
            query = query.where(MaintenanceRequest.assigned_technician_id == user_id)
        if priority:
            query = query.where(MaintenanceRequest.priority == priority)
        if status:
            query = query.where(MaintenanceRequest.status == status)
        if search:
            term = f"%{search.strip()}%"
            query = query.where(
                or_(
                    MaintenanceRequest.title.ilike(term),
                    Equipment.name.ilike(term),
                    Equipment.serial_number.ilike(term),
                )
            )

        count_result = await self.session.execute(
            select(func.count()).select_from(query.subquery())
        )
        total = count_result.scalar_one()

        query = (
            query.options(*_request_options())
            .order_by(MaintenanceRequest.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        result = await self.session.execute(query)
        return result.scalars().all(), total

    async def board_snapshots(self, organization_id: UUID) -> list[RequestSnapshot]:
        """Every request in the organization, as the board sees them."""
        result = await self.session.execute(
            select(MaintenanceRequest)
            .where(MaintenanceRequest.organization_id == organization_id)
            .options(
                selectinload(MaintenanceRequest.equipment),
                selectinload(MaintenanceRequest.assignee),
            )
        )
        return [RequestSnapshot.from_model(r) for r in result.scalars().all()]

    async def get_logs(self, request_id: UUID, organization_id: UUID) -> Sequence[RequestLog]:
        await self.get_request(request_id, organization_id)
        result = await self.session.execute(
            select(RequestLog)
            .where(
                RequestLog.request_id == request_id,
                RequestLog.organization_id == organization_id,
            )
            .options(selectinload(RequestLog.user))
            .order_by(RequestLog.created_at.asc())
        )
        return result.scalars().all()

    # =========================================================================
    # UPDATE
    # =========================================================================

    async def update_request(
        self,
        request_id: UUID,
        data: MaintenanceRequestUpdate,
        organization_id: UUID,
        actor_id: UUID,
        role: Role | None,
    ) -> MaintenanceRequest:
        """Edit fields other than status."""
        request = await self.get_request(request_id, organization_id)
        self._check_can_edit(request, actor_id, role)

        changes = data.model_dump(exclude_unset=True)
        if not changes:
            return request

        if "duration" in changes:
            if request.status != RequestStatus.REPAIRED:
                if changes["duration"] is not None:
                    raise ValidationError("Duration can only be recorded on Repaired requests")
            elif changes["duration"] is None:
                raise MissingRequiredFieldError(
                    "duration", "Repaired requests must keep a positive duration"
                )

        new_type = MaintenanceType(changes.get("type", request.type))
        new_schedule = changes.get("scheduled_date", request.scheduled_date)
        if new_type == MaintenanceType.PREVENTIVE and new_schedule is None:
            raise MissingRequiredFieldError(
                "scheduled_date", "Scheduled date is required for Preventive maintenance"
            )

        if "assigned_technician_id" in changes or "assigned_team_id" in changes:
            if role not in PRIVILEGED:
                raise UnauthorizedError("Only admins and managers can change assignments")
            team_id = changes.get("assigned_team_id", request.assigned_team_id)
            if team_id is not None:
                await self._get_team(team_id, organization_id)
            technician_id = changes.get("assigned_technician_id", request.assigned_technician_id)
            if technician_id is not None:
                await self._check_assignee(technician_id, organization_id, team_id)

        for key, value in changes.items():
            if key == "type":
                value = MaintenanceType(value)
            elif key == "priority" and value is not None:
                value = Priority(value)
            setattr(request, key, value)
        request.updated_by = actor_id

        await self._flush()
        logger.info(f"Updated maintenance request {request_id}: {sorted(changes)}")
        return await self.get_request(request_id, organization_id)

    async def assign_technician(
        self,
        request_id: UUID,
        technician_id: UUID | None,
        organization_id: UUID,
        actor_id: UUID,
        role: Role | None,
        team_id: UUID | None = None,
    ) -> MaintenanceRequest:
        """Quick-assign from the board. Admins and managers only."""
        if role not in PRIVILEGED:
            raise UnauthorizedError("Only admins and managers can assign technicians")

        request = await self.get_request(request_id, organization_id)
        if request.status.is_terminal:
            raise ValidationError(f"Cannot reassign a {request.status.value} request")

        if team_id is not None:
            await self._get_team(team_id, organization_id)
            request.assigned_team_id = team_id
        if technician_id is not None:
            await self._check_assignee(technician_id, organization_id, request.assigned_team_id)

        request.assigned_technician_id = technician_id
        request.updated_by = actor_id
        await self._flush()

        self.session.add(
            RequestLog(
                request_id=request.id,
                organization_id=organization_id,
                user_id=actor_id,
                action="Technician assigned" if technician_id else "Technician unassigned",
            )
        )
        await self.session.flush()
        return await self.get_request(request_id, organization_id)

    # =========================================================================
    # DASHBOARD
    # =========================================================================

    async def dashboard_stats(
        self,
        organization_id: UUID,
        user_id: UUID,
        role: Role | None,
        recent_limit: int = 5,
    ) -> dict[str, Any]:
        """Headline figures, scoped the way the list is scoped for the role."""
        scope = [MaintenanceRequest.organization_id == organization_id]
        if role == Role.TECHNICIAN:
            scope.append(MaintenanceRequest.assigned_technician_id == user_id)
        elif role not in PRIVILEGED:
            scope.append(MaintenanceRequest.created_by == user_id)

        result = await self.session.execute(
            select(MaintenanceRequest.status, func.count())
            .where(*scope)
            .group_by(MaintenanceRequest.status)
        )
        by_status = {RequestStatus(s): n for s, n in result.all()}

        equipment_result = await self.session.execute(
            select(func.count()).where(
                Equipment.organization_id == organization_id,
                Equipment.status != EquipmentStatus.SCRAPPED,
            )
        )

        team_members = 0
        if role in PRIVILEGED:
            members_result = await self.session.execute(
                select(func.count()).where(Profile.organization_id == organization_id)
            )
            team_members = members_result.scalar_one()

        recent_result = await self.session.execute(
            select(MaintenanceRequest)
            .where(*scope)
            .options(*_request_options())
            .order_by(MaintenanceRequest.created_at.desc())
            .limit(recent_limit)
        )

        return {
            "open_work_orders": by_status.get(RequestStatus.NEW, 0)
            + by_status.get(RequestStatus.IN_PROGRESS, 0),
            "pending_maintenance": by_status.get(RequestStatus.NEW, 0),
            "completed": by_status.get(RequestStatus.REPAIRED, 0),
            "equipment_online": equipment_result.scalar_one(),
            "team_members": team_members,
            "recent_requests": list(recent_result.scalars().all()),
        }

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _check_can_edit(
        self, request: MaintenanceRequest, actor_id: UUID, role: Role | None
    ) -> None:
        if request.status == RequestStatus.SCRAP:
            raise ValidationError("Scrapped requests cannot be edited")
        if role in PRIVILEGED:
            return
        if role == Role.TECHNICIAN and request.assigned_technician_id == actor_id:
            return
        if request.created_by == actor_id and request.status == RequestStatus.NEW:
            return
        raise UnauthorizedError("You cannot edit this request")

    async def _flush(self) -> None:
        try:
            await self.session.flush()
        except StaleDataError as e:
            raise ConcurrencyError(
                "Request was modified by another user. Please retry."
            ) from e

    async def _get_equipment(self, equipment_id: UUID, organization_id: UUID) -> Equipment:
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

    async def _get_team(self, team_id: UUID, organization_id: UUID) -> Team:
        result = await self.session.execute(
            select(Team).where(Team.id == team_id, Team.organization_id == organization_id)
        )
        team = result.scalar_one_or_none()
        if not team:
            raise NotFoundError(f"Team {team_id} not found")
        return team

    async def _check_assignee(
        self, technician_id: UUID, organization_id: UUID, team_id: UUID | None
    ) -> None:
        """Assignees must hold a role in the organization and, with a team, be on it."""
        result = await self.session.execute(
            select(RoleAssignment.role).where(
                RoleAssignment.user_id == technician_id,
                RoleAssignment.organization_id == organization_id,
            )
        )
        role = result.scalar_one_or_none()
        if role is None or role == Role.REQUESTER:
            raise ValidationError("Assignee must be a technician, manager or admin of this organization")

        if team_id is not None:
            member = await self.session.execute(
                select(TeamMember.id).where(
                    TeamMember.team_id == team_id,
                    TeamMember.user_id == technician_id,
                )
            )
            if member.scalar_one_or_none() is None:
                raise ValidationError("Assignee is not a member of the assigned team")
