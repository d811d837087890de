"""
Board Projection: maintenance requests grouped into Kanban columns.

The projection keeps two layers of state:
- ``confirmed``: the latest row seen from the server for each request
- ``pending``: optimistic moves the user made that the server has not
  confirmed yet

Cards render from confirmed rows with pending moves laid on top. Server rows
arrive either as the direct result of a move (``confirm``) or through the
change feed (``apply_event``); both paths are idempotent.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Callable
from uuid import UUID

from sqlalchemy import inspect

from ..models import (
    MaintenanceRequest,
    MaintenanceType,
    Priority,
    RequestStatus,
    Role,
    as_utc,
    utcnow,
)
from .transitions import TransitionDecision, can_drag, validate

BOARD_COLUMNS: list[RequestStatus] = [
    RequestStatus.NEW,
    RequestStatus.IN_PROGRESS,
    RequestStatus.REPAIRED,
    RequestStatus.SCRAP,
]

PRIORITY_RANK = {Priority.HIGH: 0, Priority.MEDIUM: 1, Priority.LOW: 2}


def _enum(enum_cls, value):
    if value is None or isinstance(value, enum_cls):
        return value
    return enum_cls(value)


def _uuid(value) -> UUID | None:
    if value is None or isinstance(value, UUID):
        return value
    return UUID(str(value))


def _datetime(value) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    return as_utc(value)


# =============================================================================
# SNAPSHOTS & CARDS
# =============================================================================


@dataclass
class RequestSnapshot:
    """The board's view of one maintenance request row."""
    id: UUID
    title: str
    status: RequestStatus
    priority: Priority
    type: MaintenanceType
    equipment_id: UUID
    created_at: datetime
    updated_at: datetime
    equipment_name: str | None = None
    assigned_technician_id: UUID | None = None
    assigned_technician_name: str | None = None
    scheduled_date: datetime | None = None
    updated_by: UUID | None = None
    description: str | None = None
    duration: int | None = None

    @classmethod
    def from_model(cls, request: MaintenanceRequest) -> "RequestSnapshot":
        """Build from an ORM row; names come from relationships already loaded."""
        loaded = inspect(request).dict
        equipment = loaded.get("equipment")
        assignee = loaded.get("assignee")
        return cls(
            id=request.id,
            title=request.title,
            status=request.status,
            priority=request.priority,
            type=request.type,
            equipment_id=request.equipment_id,
            created_at=as_utc(request.created_at),
            updated_at=as_utc(request.updated_at),
            equipment_name=equipment.name if equipment is not None else None,
            assigned_technician_id=request.assigned_technician_id,
            assigned_technician_name=(
                (assignee.full_name or assignee.email) if assignee is not None else None
            ),
            scheduled_date=as_utc(request.scheduled_date),
            updated_by=request.updated_by,
            description=request.description,
            duration=request.duration,
        )

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "RequestSnapshot":
        """Build from a change feed row (column name -> value)."""
        return cls(
            id=_uuid(row["id"]),
            title=row["title"],
            status=_enum(RequestStatus, row["status"]),
            priority=_enum(Priority, row["priority"]),
            type=_enum(MaintenanceType, row["type"]),
            equipment_id=_uuid(row["equipment_id"]),
            created_at=_datetime(row["created_at"]),
            updated_at=_datetime(row["updated_at"]),
            equipment_name=row.get("equipment_name"),
            assigned_technician_id=_uuid(row.get("assigned_technician_id")),
            assigned_technician_name=row.get("assigned_technician_name"),
            scheduled_date=_datetime(row.get("scheduled_date")),
            updated_by=_uuid(row.get("updated_by")),
            description=row.get("description"),
            duration=row.get("duration"),
        )

    def merge_names(self, previous: "RequestSnapshot | None") -> "RequestSnapshot":
        """Carry display names over from the previous snapshot when the row lacks them."""
        if previous is None:
            return self
        updates = {}
        if self.equipment_name is None and previous.equipment_id == self.equipment_id:
            updates["equipment_name"] = previous.equipment_name
        if (
            self.assigned_technician_name is None
            and self.assigned_technician_id is not None
            and previous.assigned_technician_id == self.assigned_technician_id
        ):
            updates["assigned_technician_name"] = previous.assigned_technician_name
        return replace(self, **updates) if updates else self


@dataclass
class BoardCard:
    snapshot: RequestSnapshot
    draggable: bool
    is_overdue: bool
    pending: bool = False

    def to_dict(self) -> dict[str, Any]:
        s = self.snapshot
        return {
            "id": str(s.id),
            "title": s.title,
            "status": s.status.value,
            "priority": s.priority.value,
            "type": s.type.value,
            "equipment_id": str(s.equipment_id),
            "equipment_name": s.equipment_name,
            "assigned_technician_id": str(s.assigned_technician_id) if s.assigned_technician_id else None,
            "assigned_technician_name": s.assigned_technician_name,
            "scheduled_date": s.scheduled_date.isoformat() if s.scheduled_date else None,
            "created_at": s.created_at.isoformat(),
            "updated_at": s.updated_at.isoformat(),
            "duration": s.duration,
            "draggable": self.draggable,
            "is_overdue": self.is_overdue,
            "pending": self.pending,
        }


@dataclass
class BoardColumn:
    status: RequestStatus
    cards: list[BoardCard] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.cards)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "count": self.count,
            "cards": [card.to_dict() for card in self.cards],
        }


@dataclass
class PendingMove:
    """An optimistic move awaiting the server's answer."""
    request_id: UUID
    from_status: RequestStatus
    to_status: RequestStatus
    started_at: datetime = field(default_factory=utcnow)


# =============================================================================
# BOARD PROJECTION
# =============================================================================


class BoardProjection:
    """
    One user's board over their organization's requests.

    The role and acting user are fixed for the lifetime of the projection;
    they decide which cards are draggable and which moves ``move`` accepts.
    """

    def __init__(
        self,
        role: Role | None,
        acting_user_id: UUID | None,
        search: str = "",
        priority: Priority | None = None,
        allow_override: bool = True,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.role = role
        self.acting_user_id = acting_user_id
        self.search = search
        self.priority = priority
        self.allow_override = allow_override
        self._clock = clock
        self.confirmed: dict[UUID, RequestSnapshot] = {}
        self.pending: dict[UUID, PendingMove] = {}

    def load(self, snapshots: list[RequestSnapshot]) -> None:
        """Replace all confirmed state, e.g. after a resync."""
        self.confirmed = {s.id: s for s in snapshots}
        self.pending = {
            rid: move for rid, move in self.pending.items() if rid in self.confirmed
        }

    # =========================================================================
    # OPTIMISTIC MOVES
    # =========================================================================

    def move(self, request_id: UUID, target_status: RequestStatus) -> TransitionDecision:
        """Validate a drag and, when allowed, show it immediately as pending."""
        snapshot = self.confirmed.get(request_id)
        if snapshot is None:
            return TransitionDecision.reject("Request is not on this board")
        if request_id in self.pending:
            return TransitionDecision.reject("A move for this request is already in progress")

        decision = validate(
            self.role,
            snapshot.status,
            target_status,
            snapshot.assigned_technician_id,
            self.acting_user_id,
            self.allow_override,
        )
        if decision.allowed:
            self.pending[request_id] = PendingMove(
                request_id=request_id,
                from_status=snapshot.status,
                to_status=target_status,
            )
        return decision

    def confirm(self, request_id: UUID, snapshot: RequestSnapshot | None = None) -> None:
        """The server accepted the move; promote its row (when given) and clear pending."""
        move = self.pending.pop(request_id, None)
        if snapshot is not None:
            self._store(snapshot)
        elif move is not None and request_id in self.confirmed:
            self.confirmed[request_id] = replace(
                self.confirmed[request_id], status=move.to_status
            )

    def rollback(self, request_id: UUID) -> PendingMove | None:
        """The server refused the move; the card goes back where it was."""
        return self.pending.pop(request_id, None)

    @property
    def pending_ids(self) -> set[UUID]:
        return set(self.pending)

    # =========================================================================
    # CHANGE FEED
    # =========================================================================

    def apply_event(self, event_type: str, snapshot: RequestSnapshot) -> bool:
        """
        Fold an authoritative row change into the board.

        Returns True when confirmed state changed. Duplicates and rows older
        than what the board already holds are ignored.
        """
        if event_type == "DELETE":
            self.pending.pop(snapshot.id, None)
            return self.confirmed.pop(snapshot.id, None) is not None

        changed = self._store(snapshot)

        move = self.pending.get(snapshot.id)
        current = self.confirmed.get(snapshot.id)
        if move is not None and current is not None:
            if current.status == move.to_status or current.status != move.from_status:
                del self.pending[snapshot.id]
        return changed

    def _store(self, snapshot: RequestSnapshot) -> bool:
        previous = self.confirmed.get(snapshot.id)
        if previous is not None and snapshot.updated_at < previous.updated_at:
            return False
        merged = snapshot.merge_names(previous)
        if merged == previous:
            return False
        self.confirmed[snapshot.id] = merged
        return True

    # =========================================================================
    # RENDERING
    # =========================================================================

    def effective(self, request_id: UUID) -> RequestSnapshot | None:
        """The row as the user sees it: confirmed, with any pending move applied."""
        snapshot = self.confirmed.get(request_id)
        move = self.pending.get(request_id)
        if snapshot is None or move is None:
            return snapshot
        return replace(snapshot, status=move.to_status)

    def matches(self, snapshot: RequestSnapshot) -> bool:
        if self.priority is not None and snapshot.priority != self.priority:
            return False
        term = self.search.strip().lower()
        if not term:
            return True
        return term in snapshot.title.lower() or term in (snapshot.equipment_name or "").lower()

    def card(self, snapshot: RequestSnapshot) -> BoardCard:
        is_pending = snapshot.id in self.pending
        draggable = not is_pending and can_drag(
            self.role,
            snapshot.status,
            snapshot.assigned_technician_id,
            self.acting_user_id,
            self.allow_override,
        )
        overdue = (
            snapshot.scheduled_date is not None
            and not snapshot.status.is_terminal
            and snapshot.scheduled_date < self._clock()
        )
        return BoardCard(
            snapshot=snapshot,
            draggable=draggable,
            is_overdue=overdue,
            pending=is_pending,
        )

    def columns(self) -> list[BoardColumn]:
        columns = {status: BoardColumn(status=status) for status in BOARD_COLUMNS}
        for request_id in self.confirmed:
            snapshot = self.effective(request_id)
            if self.matches(snapshot):
                columns[snapshot.status].cards.append(self.card(snapshot))
        for column in columns.values():
            column.cards.sort(
                key=lambda c: (
                    PRIORITY_RANK[c.snapshot.priority],
                    -c.snapshot.created_at.timestamp(),
                    str(c.snapshot.id),
                )
            )
        return [columns[status] for status in BOARD_COLUMNS]

    def groupings(self) -> dict[RequestStatus, list[UUID]]:
        """Ordered request ids per column."""
        return {col.status: [c.snapshot.id for c in col.cards] for col in self.columns()}

    def to_dict(self) -> dict[str, Any]:
        return {"columns": [column.to_dict() for column in self.columns()]}
