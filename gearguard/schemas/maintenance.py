"""Pydantic schemas for maintenance requests, transitions and the board."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import Field, model_validator

from ..models import MaintenanceType, Priority, RequestStatus
from .base import (
    EquipmentRef,
    GearGuardBaseModel,
    ProfileRef,
    TeamRef,
    TimestampMixin,
)


# =============================================================================
# MAINTENANCE REQUEST SCHEMAS
# =============================================================================


class MaintenanceRequestCreate(GearGuardBaseModel):
    """Create a maintenance request. New requests always start in New."""

    title: str = Field(..., min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=5000)
    equipment_id: UUID
    type: MaintenanceType = MaintenanceType.CORRECTIVE
    priority: Priority = Priority.MEDIUM
    assigned_team_id: UUID | None = Field(
        default=None, description="Defaults to the equipment's team"
    )
    assigned_technician_id: UUID | None = None
    scheduled_date: datetime | None = None

    @model_validator(mode="after")
    def preventive_needs_schedule(self) -> "MaintenanceRequestCreate":
        if self.type == MaintenanceType.PREVENTIVE.value and self.scheduled_date is None:
            raise ValueError("Scheduled date is required for Preventive maintenance")
        return self


class MaintenanceRequestUpdate(GearGuardBaseModel):
    """Edit request fields. Status moves go through the transition endpoint."""

    title: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=5000)
    type: MaintenanceType | None = None
    priority: Priority | None = None
    assigned_team_id: UUID | None = None
    assigned_technician_id: UUID | None = None
    scheduled_date: datetime | None = None
    duration: int | None = Field(default=None, gt=0, description="Minutes; only when Repaired")

    @model_validator(mode="after")
    def required_fields_not_cleared(self) -> "MaintenanceRequestUpdate":
        # Omit a field to leave it unchanged; these columns cannot be emptied
        for name in ("title", "type", "priority"):
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{name} cannot be null")
        return self


class MaintenanceRequestResponse(TimestampMixin, GearGuardBaseModel):
    id: UUID
    organization_id: UUID
    title: str
    description: str | None = None
    equipment_id: UUID
    type: MaintenanceType
    priority: Priority
    status: RequestStatus
    assigned_team_id: UUID | None = None
    assigned_technician_id: UUID | None = None
    scheduled_date: datetime | None = None
    duration: int | None = None
    created_by: UUID
    updated_by: UUID | None = None
    version: int
    equipment: EquipmentRef | None = None
    team: TeamRef | None = None
    assignee: ProfileRef | None = None


class QuickAssignRequest(GearGuardBaseModel):
    """Assign (or with null, unassign) a technician."""

    technician_id: UUID | None = None
    team_id: UUID | None = None


# =============================================================================
# TRANSITIONS
# =============================================================================


class TransitionRequest(GearGuardBaseModel):
    """Move a request to another status."""

    target_status: RequestStatus
    expected_status: RequestStatus | None = Field(
        default=None, description="Status the client last saw; mismatches are rejected"
    )
    duration: int | None = Field(default=None, description="Minutes; required for Repaired")
    work_summary: str | None = Field(default=None, max_length=5000)
    scrap_reason: str | None = Field(default=None, max_length=2000)


class TransitionResponse(GearGuardBaseModel):
    request: MaintenanceRequestResponse
    previous_status: RequestStatus
    kind: str
    warnings: list[str] = []


# =============================================================================
# REQUEST LOG
# =============================================================================


class RequestLogResponse(GearGuardBaseModel):
    id: UUID
    request_id: UUID
    user_id: UUID | None = None
    action: str
    notes: str | None = None
    created_at: datetime
    user: ProfileRef | None = None


# =============================================================================
# BOARD & DASHBOARD
# =============================================================================


class BoardResponse(GearGuardBaseModel):
    columns: list[dict[str, Any]]


class DashboardStats(GearGuardBaseModel):
    open_work_orders: int
    pending_maintenance: int
    completed: int
    equipment_online: int
    team_members: int
    recent_requests: list[MaintenanceRequestResponse] = []
