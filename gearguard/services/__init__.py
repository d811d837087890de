"""Business logic services for GearGuard."""

from .board import BoardCard, BoardColumn, BoardProjection, PendingMove, RequestSnapshot
from .change_feed import (
    ChangeEvent,
    ChangeFeedHub,
    ChangeFeedListener,
    Notification,
    Subscription,
    change_feed,
    install_change_capture,
    uninstall_change_capture,
)
from .equipment import EquipmentService
from .errors import (
    ConcurrencyError,
    ConflictError,
    EquipmentScrappedError,
    GearGuardError,
    InvalidTransitionError,
    MissingRequiredFieldError,
    NotFoundError,
    RequestNotFoundError,
    RoleResolutionError,
    SideEffectError,
    UnauthorizedError,
    ValidationError,
)
from .maintenance import MaintenanceService
from .onboarding import OnboardingService
from .roles import RoleContext, RoleResolver
from .transitions import TransitionDecision, TransitionKind, can_drag, validate
from .workflow_engine import TransitionContext, TransitionResult, WorkflowEngine

__all__ = [
    # Workflow (primary)
    "WorkflowEngine",
    "TransitionContext",
    "TransitionResult",
    "TransitionDecision",
    "TransitionKind",
    "validate",
    "can_drag",
    "RoleResolver",
    "RoleContext",
    # Board & change feed
    "BoardProjection",
    "BoardColumn",
    "BoardCard",
    "PendingMove",
    "RequestSnapshot",
    "ChangeEvent",
    "ChangeFeedHub",
    "ChangeFeedListener",
    "Notification",
    "Subscription",
    "change_feed",
    "install_change_capture",
    "uninstall_change_capture",
    # Services
    "MaintenanceService",
    "EquipmentService",
    "OnboardingService",
    # Errors
    "GearGuardError",
    "NotFoundError",
    "RequestNotFoundError",
    "UnauthorizedError",
    "RoleResolutionError",
    "InvalidTransitionError",
    "ValidationError",
    "MissingRequiredFieldError",
    "ConcurrencyError",
    "SideEffectError",
    "ConflictError",
    "EquipmentScrappedError",
]
