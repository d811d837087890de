"""Role Resolver: who is acting, in which organization, with what role."""

import logging
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import Organization, Profile, Role, RoleAssignment
from .errors import RoleResolutionError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RoleContext:
    """Resolved tenant and role for one acting user.

    ``role`` is None both for unaffiliated users and for affiliated users
    whose role row is missing or unrecognized; neither gets any privilege.
    """

    role: Role | None
    organization_id: UUID | None
    organization_name: str | None = None

    @property
    def is_affiliated(self) -> bool:
        return self.organization_id is not None


UNAFFILIATED = RoleContext(role=None, organization_id=None, organization_name=None)


def parse_role(value: str | Role | None) -> Role | None:
    """Map a stored role value onto the closed Role set, None when unknown."""
    if value is None:
        return None
    if isinstance(value, Role):
        return value
    try:
        return Role(value)
    except ValueError:
        logger.warning(f"Ignoring unrecognized role value: {value!r}")
        return None


class RoleResolver:
    """Read-only lookup of an acting user's organization and role."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def resolve(self, user_id: UUID) -> RoleContext:
        try:
            result = await self._session.execute(
                select(Profile.organization_id, Organization.name)
                .outerjoin(Organization, Profile.organization_id == Organization.id)
                .where(Profile.id == user_id)
            )
            row = result.first()
            if row is None or row.organization_id is None:
                return UNAFFILIATED

            role_result = await self._session.execute(
                select(RoleAssignment.role).where(
                    RoleAssignment.user_id == user_id,
                    RoleAssignment.organization_id == row.organization_id,
                )
            )
            stored_role = role_result.scalar_one_or_none()
        except LookupError as e:
            # Enum type raises LookupError for a stored value it does not know
            logger.warning(f"Unrecognized role stored for user {user_id}: {e}")
            return RoleContext(role=None, organization_id=row.organization_id, organization_name=row.name)
        except SQLAlchemyError as e:
            logger.error(f"Role lookup failed for user {user_id}: {e}")
            raise RoleResolutionError("Could not resolve role") from e

        return RoleContext(
            role=parse_role(stored_role),
            organization_id=row.organization_id,
            organization_name=row.name,
        )
