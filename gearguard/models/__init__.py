"""SQLAlchemy ORM Models for GearGuard."""

from .base import Base, TimestampMixin, UUIDMixin, as_utc, utcnow
from .models import (
    # Enums
    EquipmentStatus,
    InviteStatus,
    JoinRequestStatus,
    MaintenanceType,
    Priority,
    RequestStatus,
    Role,
    # Organization & Profile
    Organization,
    Profile,
    RoleAssignment,
    Team,
    TeamMember,
    # Equipment
    Equipment,
    EquipmentCategory,
    # Maintenance
    MaintenanceRequest,
    RequestLog,
    # Onboarding
    JoinRequest,
    TeamInvite,
)

__all__ = [
    # Base
    "Base",
    "UUIDMixin",
    "TimestampMixin",
    "utcnow",
    "as_utc",
    # Enums
    "Role",
    "RequestStatus",
    "MaintenanceType",
    "Priority",
    "EquipmentStatus",
    "JoinRequestStatus",
    "InviteStatus",
    # Organization & Profile
    "Organization",
    "Profile",
    "RoleAssignment",
    "Team",
    "TeamMember",
    # Equipment
    "EquipmentCategory",
    "Equipment",
    # Maintenance
    "MaintenanceRequest",
    "RequestLog",
    # Onboarding
    "JoinRequest",
    "TeamInvite",
]
