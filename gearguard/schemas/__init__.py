"""GearGuard API Schemas.

Schemas are organized by domain:
- base: Common types, pagination, errors, references
- maintenance: Requests, transitions, logs, board, dashboard
- organizations: Auth, organizations, members, join requests, invites
- equipment: Equipment, categories, teams
"""

from .base import (
    # Base classes
    GearGuardBaseModel,
    TimestampMixin,
    # Pagination
    PaginatedResponse,
    PaginationParams,
    # Errors
    ErrorDetail,
    ErrorResponse,
    # References
    EquipmentRef,
    ProfileRef,
    TeamRef,
)
from .equipment import (
    CategoryCreate,
    CategoryResponse,
    EquipmentCreate,
    EquipmentResponse,
    EquipmentUpdate,
    TeamCreate,
    TeamResponse,
    TeamUpdate,
)
from .maintenance import (
    BoardResponse,
    DashboardStats,
    MaintenanceRequestCreate,
    MaintenanceRequestResponse,
    MaintenanceRequestUpdate,
    QuickAssignRequest,
    RequestLogResponse,
    TransitionRequest,
    TransitionResponse,
)
from .organizations import (
    # Auth
    LoginRequest,
    MeResponse,
    SignupRequest,
    TokenResponse,
    # Organizations
    CreateOrganizationResponse,
    ManageTeamRequest,
    ManageTeamResponse,
    MemberResponse,
    MemberRoleUpdate,
    OrganizationCreate,
    OrganizationResponse,
    # Onboarding
    InviteCreate,
    InviteResponse,
    JoinRequestCreate,
    JoinRequestResponse,
)

__all__ = [
    # Base
    "GearGuardBaseModel",
    "TimestampMixin",
    "PaginatedResponse",
    "PaginationParams",
    "ErrorDetail",
    "ErrorResponse",
    "EquipmentRef",
    "ProfileRef",
    "TeamRef",
    # Equipment
    "CategoryCreate",
    "CategoryResponse",
    "EquipmentCreate",
    "EquipmentResponse",
    "EquipmentUpdate",
    "TeamCreate",
    "TeamResponse",
    "TeamUpdate",
    # Maintenance
    "BoardResponse",
    "DashboardStats",
    "MaintenanceRequestCreate",
    "MaintenanceRequestResponse",
    "MaintenanceRequestUpdate",
    "QuickAssignRequest",
    "RequestLogResponse",
    "TransitionRequest",
    "TransitionResponse",
    # Organizations
    "LoginRequest",
    "MeResponse",
    "SignupRequest",
    "TokenResponse",
    "CreateOrganizationResponse",
    "ManageTeamRequest",
    "ManageTeamResponse",
    "MemberResponse",
    "MemberRoleUpdate",
    "OrganizationCreate",
    "OrganizationResponse",
    "InviteCreate",
    "InviteResponse",
    "JoinRequestCreate",
    "JoinRequestResponse",
]
