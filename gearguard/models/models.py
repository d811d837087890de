"""SQLAlchemy ORM Models for GearGuard.

Every tenant-owned table carries ``organization_id``; the row-level security
policies in ``core.policies`` key on it.
"""

from datetime import date, datetime, timedelta
from enum import Enum as PyEnum
from uuid import UUID

from sqlalchemy import (
    Date,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, TimestampMixin, UUIDMixin, utcnow


# =============================================================================
# ENUMS
# =============================================================================


class Role(str, PyEnum):
    """Organization role. Closed set: there is no runtime extension."""

    ADMIN = "admin"
    MANAGER = "manager"
    TECHNICIAN = "technician"
    REQUESTER = "requester"


class RequestStatus(str, PyEnum):
    NEW = "New"
    IN_PROGRESS = "In Progress"
    REPAIRED = "Repaired"
    SCRAP = "Scrap"

    @property
    def is_terminal(self) -> bool:
        return self in (RequestStatus.REPAIRED, RequestStatus.SCRAP)


class MaintenanceType(str, PyEnum):
    CORRECTIVE = "Corrective"
    PREVENTIVE = "Preventive"


class Priority(str, PyEnum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


class EquipmentStatus(str, PyEnum):
    ACTIVE = "Active"
    SCRAPPED = "Scrapped"


class JoinRequestStatus(str, PyEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class InviteStatus(str, PyEnum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    EXPIRED = "expired"


# =============================================================================
# ORGANIZATION & PROFILE MODELS
# =============================================================================


class Organization(Base, UUIDMixin, TimestampMixin):
    """Tenant boundary."""

    __tablename__ = "organizations"

    name: Mapped[str] = mapped_column(String(100), nullable=False)

    members: Mapped[list["Profile"]] = relationship(back_populates="organization")

    __table_args__ = (Index("idx_organizations_name", "name"),)


class Profile(Base, UUIDMixin, TimestampMixin):
    """A user's identity, one-to-one with an authentication identity."""

    __tablename__ = "profiles"

    organization_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("organizations.id", ondelete="SET NULL"), nullable=True
    )
    full_name: Mapped[str | None] = mapped_column(String(255))
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    avatar_url: Mapped[str | None] = mapped_column(String(500))
    password_hash: Mapped[str | None] = mapped_column(String(255))

    organization: Mapped["Organization | None"] = relationship(back_populates="members")

    __table_args__ = (Index("idx_profiles_org", "organization_id"),)


class RoleAssignment(Base, UUIDMixin):
    """Exactly one role per (user, organization)."""

    __tablename__ = "user_roles"

    user_id: Mapped[UUID] = mapped_column(
        ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    organization_id: Mapped[UUID] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    role: Mapped[Role] = mapped_column(
        Enum(Role, name="user_role", values_callable=lambda x: [e.value for e in x]),
        default=Role.REQUESTER,
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    user: Mapped["Profile"] = relationship()

    __table_args__ = (
        UniqueConstraint("user_id", "organization_id"),
        Index("idx_user_roles_org", "organization_id"),
    )


class Team(Base, UUIDMixin, TimestampMixin):
    """A named group of technicians."""

    __tablename__ = "teams"

    organization_id: Mapped[UUID] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    members: Mapped[list["TeamMember"]] = relationship(
        back_populates="team", cascade="all, delete-orphan"
    )

    __table_args__ = (Index("idx_teams_org", "organization_id"),)


class TeamMember(Base, UUIDMixin):
    """Membership linking profiles to teams."""

    __tablename__ = "team_members"

    team_id: Mapped[UUID] = mapped_column(
        ForeignKey("teams.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[UUID] = mapped_column(
        ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    team: Mapped["Team"] = relationship(back_populates="members")
    user: Mapped["Profile"] = relationship()

    __table_args__ = (
        UniqueConstraint("team_id", "user_id"),
        Index("idx_team_members_team", "team_id"),
    )


# =============================================================================
# EQUIPMENT MODELS
# =============================================================================


class EquipmentCategory(Base, UUIDMixin):
    __tablename__ = "equipment_categories"

    organization_id: Mapped[UUID] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    __table_args__ = (Index("idx_equipment_categories_org", "organization_id"),)


class Equipment(Base, UUIDMixin, TimestampMixin):
    """A tracked asset. Scrapped is terminal."""

    __tablename__ = "equipment"

    organization_id: Mapped[UUID] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    serial_number: Mapped[str | None] = mapped_column(String(255))
    category_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("equipment_categories.id", ondelete="SET NULL")
    )
    assigned_team_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("teams.id", ondelete="SET NULL")
    )
    technician_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("profiles.id", ondelete="SET NULL"),
        comment="Preferred technician",
    )
    status: Mapped[EquipmentStatus] = mapped_column(
        Enum(EquipmentStatus, name="equipment_status", values_callable=lambda x: [e.value for e in x]),
        default=EquipmentStatus.ACTIVE,
        nullable=False,
    )
    location: Mapped[str | None] = mapped_column(String(255))
    purchase_date: Mapped[date | None] = mapped_column(Date)
    warranty_expiry: Mapped[date | None] = mapped_column(Date)
    description: Mapped[str | None] = mapped_column(Text)

    category: Mapped["EquipmentCategory | None"] = relationship()
    team: Mapped["Team | None"] = relationship()

    __table_args__ = (
        Index("idx_equipment_org", "organization_id"),
        Index("idx_equipment_status", "organization_id", "status"),
    )


# =============================================================================
# MAINTENANCE MODELS (Core)
# =============================================================================


class MaintenanceRequest(Base, UUIDMixin, TimestampMixin):
    """The central workflow entity.

    ``status`` only changes through the workflow engine. ``version`` is the
    ORM optimistic-lock counter: an UPDATE that finds a different version in
    the database raises StaleDataError instead of silently overwriting.
    """

    __tablename__ = "maintenance_requests"

    organization_id: Mapped[UUID] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    equipment_id: Mapped[UUID] = mapped_column(
        ForeignKey("equipment.id", ondelete="CASCADE"), nullable=False
    )
    type: Mapped[MaintenanceType] = mapped_column(
        Enum(MaintenanceType, name="maintenance_type", values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    priority: Mapped[Priority] = mapped_column(
        Enum(Priority, name="maintenance_priority", values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    status: Mapped[RequestStatus] = mapped_column(
        Enum(RequestStatus, name="maintenance_status", values_callable=lambda x: [e.value for e in x]),
        default=RequestStatus.NEW,
        nullable=False,
    )
    assigned_team_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("teams.id", ondelete="SET NULL")
    )
    assigned_technician_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("profiles.id", ondelete="SET NULL")
    )
    scheduled_date: Mapped[datetime | None] = mapped_column()
    duration: Mapped[int | None] = mapped_column(Integer, comment="Minutes, set when Repaired")
    created_by: Mapped[UUID] = mapped_column(ForeignKey("profiles.id"), nullable=False)
    updated_by: Mapped[UUID | None] = mapped_column(ForeignKey("profiles.id"))
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    equipment: Mapped["Equipment"] = relationship()
    team: Mapped["Team | None"] = relationship()
    assignee: Mapped["Profile | None"] = relationship(foreign_keys=[assigned_technician_id])
    creator: Mapped["Profile"] = relationship(foreign_keys=[created_by])

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("idx_requests_org_status", "organization_id", "status"),
        Index("idx_requests_equipment", "equipment_id"),
        Index("idx_requests_technician", "assigned_technician_id"),
    )


class RequestLog(Base, UUIDMixin):
    """Append-only audit trail entry for a maintenance request."""

    __tablename__ = "request_logs"

    request_id: Mapped[UUID] = mapped_column(
        ForeignKey("maintenance_requests.id", ondelete="CASCADE"), nullable=False
    )
    organization_id: Mapped[UUID] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[UUID | None] = mapped_column(ForeignKey("profiles.id"))
    action: Mapped[str] = mapped_column(String(255), nullable=False)
    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    user: Mapped["Profile | None"] = relationship()

    __table_args__ = (
        Index("idx_request_logs_request", "request_id", "created_at"),
    )


# =============================================================================
# ONBOARDING MODELS
# =============================================================================


class JoinRequest(Base, UUIDMixin, TimestampMixin):
    """A profile asking to join an organization."""

    __tablename__ = "organization_join_requests"

    user_id: Mapped[UUID] = mapped_column(
        ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    organization_id: Mapped[UUID] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    requested_role: Mapped[Role] = mapped_column(
        Enum(Role, name="user_role", values_callable=lambda x: [e.value for e in x]),
        default=Role.REQUESTER,
        nullable=False,
    )
    status: Mapped[JoinRequestStatus] = mapped_column(
        Enum(JoinRequestStatus, name="join_request_status", values_callable=lambda x: [e.value for e in x]),
        default=JoinRequestStatus.PENDING,
        nullable=False,
    )

    user: Mapped["Profile"] = relationship()
    organization: Mapped["Organization"] = relationship()

    __table_args__ = (UniqueConstraint("user_id", "organization_id"),)


def _invite_expiry() -> datetime:
    return utcnow() + timedelta(days=7)


class TeamInvite(Base, UUIDMixin):
    """An admin's invitation for an email address to join with a role."""

    __tablename__ = "team_invites"

    organization_id: Mapped[UUID] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[Role] = mapped_column(
        Enum(Role, name="user_role", values_callable=lambda x: [e.value for e in x]),
        default=Role.REQUESTER,
        nullable=False,
    )
    invited_by: Mapped[UUID] = mapped_column(
        ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    status: Mapped[InviteStatus] = mapped_column(
        Enum(InviteStatus, name="invite_status", values_callable=lambda x: [e.value for e in x]),
        default=InviteStatus.PENDING,
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(default=_invite_expiry, nullable=False)

    organization: Mapped["Organization"] = relationship()

    __table_args__ = (UniqueConstraint("organization_id", "email"),)
