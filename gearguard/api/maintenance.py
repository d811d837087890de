"""API routes for maintenance requests, status transitions and the board."""

import logging
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ..core import OrgContextDep, SessionDep, get_settings
from ..models import Priority, RequestStatus
from ..schemas import (
    BoardResponse,
    MaintenanceRequestCreate,
    MaintenanceRequestResponse,
    MaintenanceRequestUpdate,
    PaginatedResponse,
    QuickAssignRequest,
    RequestLogResponse,
    TransitionRequest,
    TransitionResponse,
)
from ..services import (
    BoardProjection,
    ConcurrencyError,
    GearGuardError,
    InvalidTransitionError,
    MaintenanceService,
    MissingRequiredFieldError,
    RequestNotFoundError,
    SideEffectError,
    TransitionContext,
    UnauthorizedError,
    WorkflowEngine,
)
from .errors import http_error

logger = logging.getLogger(__name__)
settings = get_settings()

router = APIRouter(prefix="/maintenance", tags=["maintenance"])


def get_maintenance_service(session: SessionDep) -> MaintenanceService:
    return MaintenanceService(session)


def get_workflow_engine(session: SessionDep) -> WorkflowEngine:
    return WorkflowEngine(session)


MaintenanceServiceDep = Annotated[MaintenanceService, Depends(get_maintenance_service)]
WorkflowEngineDep = Annotated[WorkflowEngine, Depends(get_workflow_engine)]


# =============================================================================
# LIST & BOARD
# =============================================================================


@router.get("", response_model=PaginatedResponse)
async def list_requests(
    current_user: OrgContextDep,
    service: MaintenanceServiceDep,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=50, ge=1, le=200),
    search: str | None = Query(default=None, max_length=200),
    priority: Priority | None = Query(default=None),
    status_filter: RequestStatus | None = Query(default=None, alias="status"),
    mine: bool = Query(default=False, description="Only requests assigned to me"),
):
    """List requests visible to the caller, newest first."""
    items, total = await service.list_requests(
        organization_id=current_user.organization_id,
        user_id=current_user.id,
        role=current_user.role,
        search=search,
        priority=priority,
        status=status_filter,
        mine=mine,
        limit=page_size,
        offset=(page - 1) * page_size,
    )
    return PaginatedResponse.create(
        items=[MaintenanceRequestResponse.model_validate(r) for r in items],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get("/board", response_model=BoardResponse)
async def get_board(
    current_user: OrgContextDep,
    service: MaintenanceServiceDep,
    search: str = Query(default="", max_length=200),
    priority: Priority | None = Query(default=None),
):
    """The Kanban board: four status columns with draggability per card."""
    board = BoardProjection(
        role=current_user.role,
        acting_user_id=current_user.id,
        search=search,
        priority=priority,
        allow_override=settings.workflow_allow_override,
    )
    board.load(await service.board_snapshots(current_user.organization_id))
    return BoardResponse(**board.to_dict())


# =============================================================================
# CRUD
# =============================================================================


@router.post("", response_model=MaintenanceRequestResponse, status_code=status.HTTP_201_CREATED)
async def create_request(
    data: MaintenanceRequestCreate,
    current_user: OrgContextDep,
    service: MaintenanceServiceDep,
):
    try:
        request = await service.create_request(
            data=data,
            organization_id=current_user.organization_id,
            author_id=current_user.id,
            role=current_user.role,
        )
    except GearGuardError as e:
        raise http_error(e)
    return MaintenanceRequestResponse.model_validate(request)


@router.get("/{request_id}", response_model=MaintenanceRequestResponse)
async def get_request(
    request_id: UUID,
    current_user: OrgContextDep,
    service: MaintenanceServiceDep,
):
    try:
        request = await service.get_request(request_id, current_user.organization_id)
    except GearGuardError as e:
        raise http_error(e)
    return MaintenanceRequestResponse.model_validate(request)


@router.patch("/{request_id}", response_model=MaintenanceRequestResponse)
async def update_request(
    request_id: UUID,
    data: MaintenanceRequestUpdate,
    current_user: OrgContextDep,
    service: MaintenanceServiceDep,
):
    """Edit request fields. Status is changed through ``/transition``."""
    try:
        request = await service.update_request(
            request_id=request_id,
            data=data,
            organization_id=current_user.organization_id,
            actor_id=current_user.id,
            role=current_user.role,
        )
    except GearGuardError as e:
        raise http_error(e)
    return MaintenanceRequestResponse.model_validate(request)


@router.post("/{request_id}/assign", response_model=MaintenanceRequestResponse)
async def quick_assign(
    request_id: UUID,
    data: QuickAssignRequest,
    current_user: OrgContextDep,
    service: MaintenanceServiceDep,
):
    """Assign or unassign a technician from the board."""
    try:
        request = await service.assign_technician(
            request_id=request_id,
            technician_id=data.technician_id,
            organization_id=current_user.organization_id,
            actor_id=current_user.id,
            role=current_user.role,
            team_id=data.team_id,
        )
    except GearGuardError as e:
        raise http_error(e)
    return MaintenanceRequestResponse.model_validate(request)


@router.get("/{request_id}/logs", response_model=list[RequestLogResponse])
async def get_logs(
    request_id: UUID,
    current_user: OrgContextDep,
    service: MaintenanceServiceDep,
):
    """Activity log of a request, oldest first."""
    try:
        logs = await service.get_logs(request_id, current_user.organization_id)
    except GearGuardError as e:
        raise http_error(e)
    return [RequestLogResponse.model_validate(entry) for entry in logs]


# =============================================================================
# STATUS TRANSITIONS
# =============================================================================


@router.post("/{request_id}/transition", response_model=TransitionResponse)
async def transition_request(
    request_id: UUID,
    data: TransitionRequest,
    current_user: OrgContextDep,
    engine: WorkflowEngineDep,
):
    """
    Move a request to another status.

    Repaired requires ``duration``; Scrap requires ``scrap_reason`` and
    retires the equipment in the same transaction.
    """
    context = TransitionContext(
        acting_user_id=current_user.id,
        role=current_user.role,
        expected_status=RequestStatus(data.expected_status) if data.expected_status else None,
        duration=data.duration,
        work_summary=data.work_summary,
        scrap_reason=data.scrap_reason,
    )
    try:
        result = await engine.change_status(
            request_id=request_id,
            target_status=RequestStatus(data.target_status),
            context=context,
            organization_id=current_user.organization_id,
        )
    except RequestNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except UnauthorizedError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    except InvalidTransitionError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except MissingRequiredFieldError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    except ConcurrencyError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except SideEffectError as e:
        logger.error(f"Transition of request {request_id} failed: {e}")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))

    return TransitionResponse(
        request=MaintenanceRequestResponse.model_validate(result.request),
        previous_status=result.previous_status,
        kind=result.kind.value,
        warnings=result.warnings,
    )
