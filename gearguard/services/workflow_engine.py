"""
Workflow Engine: applies maintenance request status transitions.

The engine owns every status write:
- Validation (role + graph) happens first, in ``change_status``
- ``execute`` only checks data integrity: the row exists, the caller saw the
  current status, and the fields the target state needs are present
- Scrap retires the equipment in the same savepoint as the status write;
  the pair is retried and rolled back together
- Every transition appends a request log entry; a failed log write is
  reported as a warning and never undoes the transition

Nothing here talks to connected clients. Committed writes reach them through
the change feed capture in ``services.change_feed``.
"""

import logging
from dataclasses import dataclass, field
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from sqlalchemy.orm.exc import StaleDataError

from ..core.config import get_settings
from ..models import (
    Equipment,
    EquipmentStatus,
    MaintenanceRequest,
    RequestLog,
    RequestStatus,
    Role,
    utcnow,
)
from .errors import (
    ConcurrencyError,
    InvalidTransitionError,
    MissingRequiredFieldError,
    RequestNotFoundError,
    SideEffectError,
    UnauthorizedError,
)
from .transitions import TransitionKind, is_edge, validate

logger = logging.getLogger(__name__)
settings = get_settings()


# =============================================================================
# DATA TRANSFER OBJECTS
# =============================================================================


@dataclass
class TransitionContext:
    """Who is moving the request and what they supplied with the move."""
    acting_user_id: UUID
    role: Role | None
    expected_status: RequestStatus | None = None  # status the client saw
    duration: int | None = None  # minutes, required for Repaired
    work_summary: str | None = None
    scrap_reason: str | None = None  # required for Scrap


@dataclass
class TransitionResult:
    request: MaintenanceRequest
    previous_status: RequestStatus
    status: RequestStatus
    kind: TransitionKind
    log_written: bool = True
    warnings: list[str] = field(default_factory=list)


# =============================================================================
# WORKFLOW ENGINE
# =============================================================================


class WorkflowEngine:
    """
    Single writer for maintenance request status.

    Guarantees:
    1. A request whose status changed since the client read it is never
       overwritten (expected status + ORM version counter)
    2. Repaired always carries a positive duration
    3. Scrap and the equipment retirement commit together or not at all
    4. Log failures are advisory
    """

    def __init__(
        self,
        session: AsyncSession,
        scrap_retry_attempts: int | None = None,
        allow_override: bool | None = None,
    ):
        self._session = session
        if scrap_retry_attempts is None:
            scrap_retry_attempts = settings.scrap_retry_attempts
        if scrap_retry_attempts < 1:
            raise ValueError("scrap_retry_attempts must be at least 1")
        self._scrap_retry_attempts = scrap_retry_attempts
        self._allow_override = (
            settings.workflow_allow_override if allow_override is None else allow_override
        )

    # =========================================================================
    # VALIDATE + EXECUTE
    # =========================================================================

    async def change_status(
        self,
        request_id: UUID,
        target_status: RequestStatus,
        context: TransitionContext,
        organization_id: UUID,
    ) -> TransitionResult:
        """
        Validate a move against the workflow rules, then execute it.

        Raises UnauthorizedError when the acting role may not move this
        request at all, and InvalidTransitionError when the move leaves the
        workflow graph.
        """
        request = await self._get_request_or_raise(request_id, organization_id)
        self._check_expected_status(request, context)

        decision = validate(
            context.role,
            request.status,
            target_status,
            request.assigned_technician_id,
            context.acting_user_id,
            self._allow_override,
        )
        if not decision.allowed:
            logger.info(
                f"Rejected transition of request {request_id} "
                f"{request.status.value} -> {target_status.value}: {decision.reason}"
            )
            if decision.forbidden:
                raise UnauthorizedError(decision.reason)
            raise InvalidTransitionError(decision.reason)

        return await self._execute(request, target_status, context)

    async def execute(
        self,
        request_id: UUID,
        target_status: RequestStatus,
        context: TransitionContext,
        organization_id: UUID,
    ) -> TransitionResult:
        """Apply an already validated transition."""
        request = await self._get_request_or_raise(request_id, organization_id)
        return await self._execute(request, target_status, context)

    async def _execute(
        self,
        request: MaintenanceRequest,
        target_status: RequestStatus,
        context: TransitionContext,
    ) -> TransitionResult:
        self._check_expected_status(request, context)
        self._check_required_fields(target_status, context)

        previous_status = request.status
        kind = self._classify(request, previous_status, target_status, context)

        if target_status == RequestStatus.SCRAP:
            await self._scrap(request, context)
        else:
            try:
                async with self._session.begin_nested():
                    self._apply_status(request, target_status, context)
                    await self._session.flush()
            except StaleDataError as e:
                await self._reload(request)
                raise ConcurrencyError(
                    "Request was modified by another user. Please retry."
                ) from e
            if kind == TransitionKind.PICKUP:
                await self._session.refresh(request, attribute_names=["assignee"])

        result = TransitionResult(
            request=request,
            previous_status=previous_status,
            status=target_status,
            kind=kind,
        )

        action, notes = self._describe(previous_status, target_status, kind, context)
        warning = await self._append_log(request, action, notes, context.acting_user_id)
        if warning:
            result.log_written = False
            result.warnings.append(warning)

        logger.info(
            f"Request {request.id} moved {previous_status.value} -> {target_status.value} "
            f"by {context.acting_user_id} ({kind.value})"
        )
        return result

    # =========================================================================
    # INTEGRITY CHECKS
    # =========================================================================

    def _check_expected_status(
        self, request: MaintenanceRequest, context: TransitionContext
    ) -> None:
        if context.expected_status is not None and request.status != context.expected_status:
            raise ConcurrencyError(
                f"Request status changed to {request.status.value} since you loaded it. "
                "Please retry."
            )

    def _check_required_fields(
        self, target_status: RequestStatus, context: TransitionContext
    ) -> None:
        if target_status == RequestStatus.REPAIRED:
            duration = context.duration
            if duration is None or isinstance(duration, bool) or not isinstance(duration, int) or duration <= 0:
                raise MissingRequiredFieldError(
                    "duration", "Repaired requests need a duration in minutes greater than 0"
                )
        elif target_status == RequestStatus.SCRAP:
            if not context.scrap_reason or not context.scrap_reason.strip():
                raise MissingRequiredFieldError(
                    "scrap_reason", "A reason is required to scrap equipment"
                )

    def _classify(
        self,
        request: MaintenanceRequest,
        previous_status: RequestStatus,
        target_status: RequestStatus,
        context: TransitionContext,
    ) -> TransitionKind:
        if not is_edge(previous_status, target_status):
            return TransitionKind.OVERRIDE
        if self._claims(request, target_status, context):
            return TransitionKind.PICKUP
        return TransitionKind.EDGE

    @staticmethod
    def _claims(
        request: MaintenanceRequest,
        target_status: RequestStatus,
        context: TransitionContext,
    ) -> bool:
        return (
            target_status == RequestStatus.IN_PROGRESS
            and context.role == Role.TECHNICIAN
            and request.assigned_technician_id is None
        )

    # =========================================================================
    # WRITES
    # =========================================================================

    def _apply_status(
        self,
        request: MaintenanceRequest,
        target_status: RequestStatus,
        context: TransitionContext,
    ) -> None:
        if self._claims(request, target_status, context):
            request.assigned_technician_id = context.acting_user_id
        if target_status == RequestStatus.REPAIRED:
            request.duration = context.duration
        request.status = target_status
        request.updated_by = context.acting_user_id

    async def _scrap(self, request: MaintenanceRequest, context: TransitionContext) -> None:
        """Write Scrap and retire the equipment as one unit, with retries."""
        attempts = self._scrap_retry_attempts
        request_id = request.id
        last_error: Exception | None = None

        for attempt in range(1, attempts + 1):
            try:
                async with self._session.begin_nested():
                    self._apply_status(request, RequestStatus.SCRAP, context)
                    await self._session.flush()
                    await self._retire_equipment(request)
                return
            except StaleDataError as e:
                await self._reload(request)
                raise ConcurrencyError(
                    "Request was modified by another user. Please retry."
                ) from e
            except SQLAlchemyError as e:
                last_error = e
                logger.warning(
                    f"Scrap of request {request_id} failed on attempt {attempt}/{attempts}: {e}"
                )
                # The savepoint rollback expired the request; reload the stored row
                await self._reload(request)

        logger.error(
            f"Scrap of request {request_id} rolled back after {attempts} attempts"
        )
        raise SideEffectError(
            "Could not retire the equipment; the request was left unchanged"
        ) from last_error

    async def _retire_equipment(self, request: MaintenanceRequest) -> None:
        result = await self._session.execute(
            update(Equipment)
            .where(
                Equipment.id == request.equipment_id,
                Equipment.organization_id == request.organization_id,
            )
            .values(status=EquipmentStatus.SCRAPPED, updated_at=utcnow())
            .execution_options(synchronize_session="evaluate")
        )
        if result.rowcount != 1:
            raise SideEffectError(f"Equipment {request.equipment_id} not found")

    # =========================================================================
    # REQUEST LOG
    # =========================================================================

    def _describe(
        self,
        previous_status: RequestStatus,
        target_status: RequestStatus,
        kind: TransitionKind,
        context: TransitionContext,
    ) -> tuple[str, str | None]:
        if kind == TransitionKind.OVERRIDE:
            action = f"Status override from {previous_status.value} to {target_status.value}"
        else:
            action = f"Status changed to {target_status.value}"

        notes = None
        if target_status == RequestStatus.REPAIRED:
            notes = context.work_summary or "Request marked as repaired"
        elif target_status == RequestStatus.SCRAP:
            notes = f"Equipment scrapped. Reason: {context.scrap_reason.strip()}"
        elif kind == TransitionKind.PICKUP:
            notes = "Picked up by technician"
        return action, notes

    async def _append_log(
        self,
        request: MaintenanceRequest,
        action: str,
        notes: str | None,
        user_id: UUID,
    ) -> str | None:
        """Write a log entry in its own savepoint. Returns a warning on failure."""
        try:
            async with self._session.begin_nested():
                await self._insert_log(request, action, notes, user_id)
        except SQLAlchemyError as e:
            logger.warning(f"Failed to write log entry for request {request.id}: {e}")
            return "Status updated, but the activity log entry could not be saved"
        return None

    async def _insert_log(
        self,
        request: MaintenanceRequest,
        action: str,
        notes: str | None,
        user_id: UUID,
    ) -> None:
        self._session.add(
            RequestLog(
                request_id=request.id,
                organization_id=request.organization_id,
                user_id=user_id,
                action=action,
                notes=notes,
            )
        )
        await self._session.flush()

    # =========================================================================
    # HELPERS
    # =========================================================================

    async def _get_request_or_raise(
        self, request_id: UUID, organization_id: UUID
    ) -> MaintenanceRequest:
        result = await self._session.execute(
            select(MaintenanceRequest)
            .where(
                MaintenanceRequest.id == request_id,
                MaintenanceRequest.organization_id == organization_id,
            )
            .options(
                selectinload(MaintenanceRequest.equipment),
                selectinload(MaintenanceRequest.team),
                selectinload(MaintenanceRequest.assignee),
            )
        )
        request = result.scalar_one_or_none()
        if not request:
            raise RequestNotFoundError(f"Maintenance request {request_id} not found")
        return request

    async def _reload(self, request: MaintenanceRequest) -> None:
        """Reload a request expired by a savepoint rollback, relationships included."""
        await self._session.refresh(request)
        await self._session.refresh(request, attribute_names=["equipment", "team", "assignee"])
