"""FastAPI dependencies for authentication, authorization, and context."""

import logging
from typing import Annotated
from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import Profile, Role
from ..services.errors import RoleResolutionError
from ..services.roles import RoleResolver
from .database import get_session, set_tenant_context, set_user_context
from .security import decode_token

logger = logging.getLogger(__name__)

# Security scheme
bearer_scheme = HTTPBearer(auto_error=False)


class CurrentUser:
    """Represents the authenticated user context."""

    def __init__(
        self,
        profile: Profile,
        organization_id: UUID | None = None,
        role: Role | None = None,
        organization_name: str | None = None,
    ):
        self.profile = profile
        self.organization_id = organization_id
        self.role = role
        self.organization_name = organization_name

    @property
    def id(self) -> UUID:
        return self.profile.id

    @property
    def email(self) -> str:
        return self.profile.email

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    @property
    def is_manager(self) -> bool:
        """Admins and managers share the management privileges."""
        return self.role in (Role.ADMIN, Role.MANAGER)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def authenticate(session: AsyncSession, token: str) -> CurrentUser:
    """Turn a bearer token into a CurrentUser, resolving tenant and role.

    A failed role lookup is an authentication failure, never "unaffiliated".
    """
    payload = decode_token(token)
    if not payload:
        raise _unauthorized("Invalid or expired token")

    if payload.type != "access":
        raise _unauthorized("Invalid token type")

    try:
        user_id = UUID(payload.sub)
    except ValueError:
        raise _unauthorized("Invalid token subject")

    await set_user_context(session, user_id)
    result = await session.execute(select(Profile).where(Profile.id == user_id))
    profile = result.scalar_one_or_none()
    if not profile:
        raise _unauthorized("User not found")

    try:
        context = await RoleResolver(session).resolve(user_id)
    except RoleResolutionError:
        raise _unauthorized("Could not verify your organization role")

    if context.organization_id:
        await set_tenant_context(session, context.organization_id, user_id)

    return CurrentUser(
        profile=profile,
        organization_id=context.organization_id,
        role=context.role,
        organization_name=context.organization_name,
    )


async def get_current_user(
    credentials: Annotated[
        HTTPAuthorizationCredentials | None, Depends(bearer_scheme)
    ],
    session: Annotated[AsyncSession, Depends(get_session)],
) -> CurrentUser:
    """Dependency to get the current authenticated user."""
    if not credentials:
        raise _unauthorized("Not authenticated")
    return await authenticate(session, credentials.credentials)


def require_org_context(
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
) -> CurrentUser:
    """Require that the user belongs to an organization."""
    if not current_user.organization_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Join or create an organization first",
        )
    return current_user


def require_manager(
    current_user: Annotated[CurrentUser, Depends(require_org_context)],
) -> CurrentUser:
    """Require admin or manager role in the current organization."""
    if not current_user.is_manager:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin or manager privileges required",
        )
    return current_user


def require_admin(
    current_user: Annotated[CurrentUser, Depends(require_org_context)],
) -> CurrentUser:
    """Require admin role in the current organization."""
    if not current_user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin privileges required",
        )
    return current_user


# Type aliases for cleaner dependency injection
CurrentUserDep = Annotated[CurrentUser, Depends(get_current_user)]
OrgContextDep = Annotated[CurrentUser, Depends(require_org_context)]
ManagerDep = Annotated[CurrentUser, Depends(require_manager)]
AdminDep = Annotated[CurrentUser, Depends(require_admin)]
SessionDep = Annotated[AsyncSession, Depends(get_session)]
