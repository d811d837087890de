"""API routes for the asset registry: categories, equipment and teams."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from ..core import ManagerDep, OrgContextDep, SessionDep
from ..models import EquipmentStatus
from ..schemas import (
    CategoryCreate,
    CategoryResponse,
    EquipmentCreate,
    EquipmentResponse,
    EquipmentUpdate,
    ProfileRef,
    TeamCreate,
    TeamResponse,
    TeamUpdate,
)
from ..services import EquipmentService, GearGuardError
from .errors import http_error

router = APIRouter(tags=["equipment"])


def get_equipment_service(session: SessionDep) -> EquipmentService:
    return EquipmentService(session)


EquipmentServiceDep = Annotated[EquipmentService, Depends(get_equipment_service)]


def team_to_response(team) -> TeamResponse:
    return TeamResponse(
        id=team.id,
        name=team.name,
        created_at=team.created_at,
        members=[ProfileRef.model_validate(m.user) for m in team.members if m.user],
    )


# =============================================================================
# CATEGORIES
# =============================================================================


@router.get("/categories", response_model=list[CategoryResponse])
async def list_categories(current_user: OrgContextDep, service: EquipmentServiceDep):
    categories = await service.list_categories(current_user.organization_id)
    return [CategoryResponse.model_validate(c) for c in categories]


@router.post("/categories", response_model=CategoryResponse, status_code=status.HTTP_201_CREATED)
async def create_category(
    data: CategoryCreate,
    current_user: ManagerDep,
    service: EquipmentServiceDep,
):
    category = await service.create_category(data, current_user.organization_id)
    return CategoryResponse.model_validate(category)


@router.delete("/categories/{category_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_category(
    category_id: UUID,
    current_user: ManagerDep,
    service: EquipmentServiceDep,
):
    try:
        await service.delete_category(category_id, current_user.organization_id)
    except GearGuardError as e:
        raise http_error(e)


# =============================================================================
# EQUIPMENT
# =============================================================================


@router.get("/equipment", response_model=list[EquipmentResponse])
async def list_equipment(
    current_user: OrgContextDep,
    service: EquipmentServiceDep,
    search: str | None = Query(default=None, max_length=200),
    status_filter: EquipmentStatus | None = Query(default=None, alias="status"),
    category_id: UUID | None = Query(default=None),
):
    equipment = await service.list_equipment(
        current_user.organization_id,
        search=search,
        status=status_filter,
        category_id=category_id,
    )
    return [EquipmentResponse.model_validate(e) for e in equipment]


@router.post("/equipment", response_model=EquipmentResponse, status_code=status.HTTP_201_CREATED)
async def create_equipment(
    data: EquipmentCreate,
    current_user: ManagerDep,
    service: EquipmentServiceDep,
):
    try:
        equipment = await service.create_equipment(data, current_user.organization_id)
    except GearGuardError as e:
        raise http_error(e)
    return EquipmentResponse.model_validate(equipment)


@router.get("/equipment/{equipment_id}", response_model=EquipmentResponse)
async def get_equipment(
    equipment_id: UUID,
    current_user: OrgContextDep,
    service: EquipmentServiceDep,
):
    try:
        equipment = await service.get_equipment(equipment_id, current_user.organization_id)
    except GearGuardError as e:
        raise http_error(e)
    return EquipmentResponse.model_validate(equipment)


@router.patch("/equipment/{equipment_id}", response_model=EquipmentResponse)
async def update_equipment(
    equipment_id: UUID,
    data: EquipmentUpdate,
    current_user: ManagerDep,
    service: EquipmentServiceDep,
):
    try:
        equipment = await service.update_equipment(
            equipment_id, data, current_user.organization_id
        )
    except GearGuardError as e:
        raise http_error(e)
    return EquipmentResponse.model_validate(equipment)


@router.delete("/equipment/{equipment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_equipment(
    equipment_id: UUID,
    current_user: ManagerDep,
    service: EquipmentServiceDep,
):
    try:
        await service.delete_equipment(equipment_id, current_user.organization_id)
    except GearGuardError as e:
        raise http_error(e)


# =============================================================================
# TEAMS
# =============================================================================


@router.get("/teams", response_model=list[TeamResponse])
async def list_teams(current_user: OrgContextDep, service: EquipmentServiceDep):
    teams = await service.list_teams(current_user.organization_id)
    return [team_to_response(t) for t in teams]


@router.post("/teams", response_model=TeamResponse, status_code=status.HTTP_201_CREATED)
async def create_team(
    data: TeamCreate,
    current_user: ManagerDep,
    service: EquipmentServiceDep,
):
    try:
        team = await service.create_team(data, current_user.organization_id)
    except GearGuardError as e:
        raise http_error(e)
    return team_to_response(team)


@router.get("/teams/{team_id}", response_model=TeamResponse)
async def get_team(team_id: UUID, current_user: OrgContextDep, service: EquipmentServiceDep):
    try:
        team = await service.get_team(team_id, current_user.organization_id)
    except GearGuardError as e:
        raise http_error(e)
    return team_to_response(team)


@router.patch("/teams/{team_id}", response_model=TeamResponse)
async def update_team(
    team_id: UUID,
    data: TeamUpdate,
    current_user: ManagerDep,
    service: EquipmentServiceDep,
):
    try:
        team = await service.update_team(team_id, data, current_user.organization_id)
    except GearGuardError as e:
        raise http_error(e)
    return team_to_response(team)


@router.delete("/teams/{team_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_team(team_id: UUID, current_user: ManagerDep, service: EquipmentServiceDep):
    try:
        await service.delete_team(team_id, current_user.organization_id)
    except GearGuardError as e:
        raise http_error(e)
