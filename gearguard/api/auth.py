"""Authentication API routes for GearGuard.

Email + password accounts issuing JWT session tokens. Tenant and role are
never carried in the token; they are resolved from the database on every
request.
"""

import logging

from fastapi import APIRouter, HTTPException, status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from ..core import CurrentUserDep, SessionDep, set_service_context
from ..core.security import (
    create_access_token,
    create_refresh_token,
    hash_password,
    verify_password,
)
from ..models import Profile
from ..schemas import LoginRequest, MeResponse, ProfileRef, SignupRequest, TokenResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["authentication"])


def _tokens_for(profile: Profile) -> TokenResponse:
    return TokenResponse(
        access_token=create_access_token(user_id=profile.id, email=profile.email),
        refresh_token=create_refresh_token(user_id=profile.id),
        user=ProfileRef.model_validate(profile),
    )


@router.post("/signup", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
async def signup(request: SignupRequest, session: SessionDep):
    """Create an account. The new profile is unaffiliated until onboarding."""
    # No user exists yet to scope the lookup and insert to
    await set_service_context(session)
    email = request.email.lower()
    existing = await session.execute(select(Profile.id).where(Profile.email == email))
    if existing.scalar_one_or_none() is not None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="An account with this email already exists",
        )

    profile = Profile(
        email=email,
        full_name=request.full_name,
        password_hash=hash_password(request.password),
    )
    session.add(profile)
    try:
        await session.flush()
    except IntegrityError:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="An account with this email already exists",
        )

    logger.info(f"Created account {profile.id}")
    return _tokens_for(profile)


@router.post("/login", response_model=TokenResponse)
async def login(request: LoginRequest, session: SessionDep):
    """Login with email and password."""
    await set_service_context(session)
    result = await session.execute(
        select(Profile).where(Profile.email == request.email.lower())
    )
    profile = result.scalar_one_or_none()

    if not profile or not profile.password_hash or not verify_password(
        request.password, profile.password_hash
    ):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )

    return _tokens_for(profile)


@router.get("/me", response_model=MeResponse)
async def me(current_user: CurrentUserDep):
    """The acting user with the organization and role resolved for them."""
    profile = current_user.profile
    return MeResponse(
        id=profile.id,
        email=profile.email,
        full_name=profile.full_name,
        avatar_url=profile.avatar_url,
        organization_id=current_user.organization_id,
        organization_name=current_user.organization_name,
        role=current_user.role,
    )
