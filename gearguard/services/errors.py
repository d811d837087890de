"""Service-layer exceptions.

Routers translate these into HTTP responses; see ``api.errors``.
"""


class GearGuardError(Exception):
    """Base exception for GearGuard service operations."""
    pass


class NotFoundError(GearGuardError):
    """Entity does not exist in the caller's organization."""
    pass


class RequestNotFoundError(NotFoundError):
    """Maintenance request does not exist."""
    pass


class UnauthorizedError(GearGuardError):
    """Acting user lacks the role for this operation."""
    pass


class RoleResolutionError(UnauthorizedError):
    """The role lookup itself failed; never treated as "unaffiliated"."""
    pass


class InvalidTransitionError(GearGuardError):
    """Status change rejected by the workflow rules."""
    pass


class ValidationError(GearGuardError):
    """Input violates a domain rule."""
    pass


class MissingRequiredFieldError(ValidationError):
    """A field required by the target state was not supplied."""

    def __init__(self, field: str, message: str):
        super().__init__(message)
        self.field = field


class ConcurrencyError(GearGuardError):
    """Concurrent modification detected."""
    pass


class SideEffectError(GearGuardError):
    """A mandatory side effect failed and the transition was rolled back."""
    pass


class ConflictError(GearGuardError):
    """Operation conflicts with existing state (duplicates, already affiliated)."""
    pass


class EquipmentScrappedError(ValidationError):
    """Scrapped equipment accepts no edits and no new requests."""
    pass
