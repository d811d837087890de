"""
Transition Validator: the maintenance request workflow rules.

The workflow is a fixed graph:

    New -> In Progress -> Repaired
                       -> Scrap

Repaired and Scrap are terminal. Everything here is pure: no session, no
clock, no I/O. The board uses ``can_drag`` to decide which cards may be
picked up, and the workflow engine calls ``validate`` before writing.
"""

from collections import deque
from dataclasses import dataclass
from enum import Enum
from uuid import UUID

from ..models import RequestStatus, Role


ALLOWED_TRANSITIONS: dict[RequestStatus, frozenset[RequestStatus]] = {
    RequestStatus.NEW: frozenset({RequestStatus.IN_PROGRESS}),
    RequestStatus.IN_PROGRESS: frozenset({RequestStatus.REPAIRED, RequestStatus.SCRAP}),
    RequestStatus.REPAIRED: frozenset(),
    RequestStatus.SCRAP: frozenset(),
}

WORKFLOW_SUMMARY = "New → In Progress → Repaired/Scrap"


class TransitionKind(str, Enum):
    """How an allowed transition was justified."""

    EDGE = "edge"  # a graph edge
    PICKUP = "pickup"  # technician claiming an unassigned New request
    OVERRIDE = "override"  # admin/manager leaving the graph


@dataclass
class TransitionDecision:
    allowed: bool
    reason: str | None = None
    kind: TransitionKind | None = None
    # rejected because of who is acting, not because of the graph
    forbidden: bool = False

    @classmethod
    def allow(cls, kind: TransitionKind, reason: str | None = None) -> "TransitionDecision":
        return cls(allowed=True, reason=reason, kind=kind)

    @classmethod
    def reject(cls, reason: str, forbidden: bool = False) -> "TransitionDecision":
        return cls(allowed=False, reason=reason, forbidden=forbidden)


def is_edge(current: RequestStatus, target: RequestStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def workflow_path(
    current: RequestStatus, target: RequestStatus
) -> list[RequestStatus] | None:
    """Shortest path through the graph from ``current`` to ``target``."""
    queue = deque([[current]])
    seen = {current}
    while queue:
        path = queue.popleft()
        if path[-1] == target:
            return path
        for nxt in sorted(ALLOWED_TRANSITIONS[path[-1]], key=lambda s: s.value):
            if nxt not in seen:
                seen.add(nxt)
                queue.append(path + [nxt])
    return None


def describe_invalid_move(current: RequestStatus, target: RequestStatus) -> str:
    """Explain why ``current -> target`` is not an edge, naming a legal path."""
    if current.is_terminal:
        return (
            f"Cannot move from {current.value} to {target.value}. "
            f"{current.value} is a terminal status. Workflow: {WORKFLOW_SUMMARY}"
        )

    path = workflow_path(current, target)
    if path is None:
        path = workflow_path(RequestStatus.NEW, target)
    if path is None or len(path) < 2:
        route = WORKFLOW_SUMMARY
    else:
        route = " → ".join(s.value for s in path)
    return f"Cannot move from {current.value} to {target.value}. Follow the workflow: {route}"


def validate(
    role: Role | None,
    current_status: RequestStatus,
    target_status: RequestStatus,
    assignment: UUID | None,
    acting_user_id: UUID | None,
    allow_override: bool = True,
) -> TransitionDecision:
    """
    Decide whether ``acting_user_id`` with ``role`` may move a request.

    ``assignment`` is the request's assigned technician (None when
    unassigned). Rules:
    - same-status moves are never transitions
    - admin/manager: any edge; anything else is an override when allowed
    - technician: an edge, on a request assigned to them or an unassigned
      New request (pickup)
    - requester, or no role: never
    """
    if current_status == target_status:
        return TransitionDecision.reject(f"Request is already {current_status.value}")

    edge = is_edge(current_status, target_status)

    if role is None:
        return TransitionDecision.reject("You do not have a role in this organization", forbidden=True)

    if role in (Role.ADMIN, Role.MANAGER):
        if edge:
            return TransitionDecision.allow(TransitionKind.EDGE)
        if allow_override:
            return TransitionDecision.allow(
                TransitionKind.OVERRIDE,
                f"Status override from {current_status.value} to {target_status.value}",
            )
        return TransitionDecision.reject(describe_invalid_move(current_status, target_status))

    if role == Role.TECHNICIAN:
        if assignment is not None and assignment != acting_user_id:
            return TransitionDecision.reject("This request is assigned to another technician", forbidden=True)
        if assignment is None and current_status != RequestStatus.NEW:
            return TransitionDecision.reject(
                "Only unassigned requests in New can be picked up", forbidden=True
            )
        if not edge:
            return TransitionDecision.reject(describe_invalid_move(current_status, target_status))
        if assignment is None:
            return TransitionDecision.allow(TransitionKind.PICKUP)
        return TransitionDecision.allow(TransitionKind.EDGE)

    if role == Role.REQUESTER:
        return TransitionDecision.reject("Requesters cannot change request status", forbidden=True)

    return TransitionDecision.reject(f"Unsupported role: {role}", forbidden=True)


def can_drag(
    role: Role | None,
    status: RequestStatus,
    assignment: UUID | None,
    acting_user_id: UUID | None,
    allow_override: bool = True,
) -> bool:
    """True when at least one outbound move would be allowed."""
    return any(
        validate(role, status, target, assignment, acting_user_id, allow_override).allowed
        for target in RequestStatus
        if target != status
    )
