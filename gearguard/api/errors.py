"""Translation of service exceptions into HTTP errors."""

from fastapi import HTTPException, status

from ..services.errors import (
    ConcurrencyError,
    ConflictError,
    GearGuardError,
    InvalidTransitionError,
    NotFoundError,
    RoleResolutionError,
    SideEffectError,
    UnauthorizedError,
    ValidationError,
)

# Most specific first
_STATUS_CODES: list[tuple[type[GearGuardError], int]] = [
    (RoleResolutionError, status.HTTP_401_UNAUTHORIZED),
    (UnauthorizedError, status.HTTP_403_FORBIDDEN),
    (InvalidTransitionError, status.HTTP_400_BAD_REQUEST),
    (ValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (ConcurrencyError, status.HTTP_409_CONFLICT),
    (ConflictError, status.HTTP_409_CONFLICT),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (SideEffectError, status.HTTP_500_INTERNAL_SERVER_ERROR),
]


def status_code_for(error: GearGuardError) -> int:
    for error_type, code in _STATUS_CODES:
        if isinstance(error, error_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def http_error(error: GearGuardError) -> HTTPException:
    return HTTPException(status_code=status_code_for(error), detail=str(error))
