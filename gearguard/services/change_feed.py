"""
Change Feed: tenant-scoped stream of committed maintenance request changes.

Producers never publish directly. ``install_change_capture`` hooks the ORM
session so that every flushed insert/update/delete of a MaintenanceRequest is
remembered on the transaction that made it, and handed to the hub only after
the outermost transaction commits. Savepoints that roll back take their
captured changes with them.

Consumers subscribe per organization and fold events into their board with a
``ChangeFeedListener``.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import event, inspect
from sqlalchemy.orm import Session, SessionTransaction

from ..core.config import get_settings
from ..models import MaintenanceRequest, utcnow
from .board import BoardProjection, RequestSnapshot

logger = logging.getLogger(__name__)
settings = get_settings()

_SESSION_KEY = "gearguard.change_events"


@dataclass
class ChangeEvent:
    event_type: str  # INSERT, UPDATE or DELETE
    table: str
    organization_id: UUID
    row: dict[str, Any]
    commit_timestamp: datetime = field(default_factory=utcnow)

    @property
    def record_id(self) -> UUID:
        return self.row["id"]


@dataclass
class Notification:
    """A remote change worth telling the user about."""
    request_id: UUID
    title: str
    status: str
    updated_by: UUID | None
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "request_id": str(self.request_id),
            "title": self.title,
            "status": self.status,
            "updated_by": str(self.updated_by) if self.updated_by else None,
            "message": self.message,
        }


# =============================================================================
# HUB
# =============================================================================


class Subscription:
    """One consumer's bounded queue of events for one organization.

    When the queue is full the oldest event is dropped and ``needs_resync``
    is raised; the consumer should reload its board from the database.
    """

    _CLOSED = object()

    def __init__(self, hub: "ChangeFeedHub", organization_id: UUID, maxsize: int):
        self.id = uuid4()
        self.organization_id = organization_id
        self.needs_resync = False
        self.closed = False
        self._hub = hub
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)

    def push(self, change: ChangeEvent) -> None:
        if self.closed:
            return
        if self._queue.full():
            self._queue.get_nowait()
            self.needs_resync = True
            logger.warning(
                f"Change feed subscription {self.id} overflowed; oldest event dropped"
            )
        self._queue.put_nowait(change)

    async def get(self) -> ChangeEvent | None:
        """Next event, or None once the subscription is closed."""
        item = await self._queue.get()
        if item is self._CLOSED:
            return None
        return item

    def pending(self) -> int:
        return self._queue.qsize()

    def unsubscribe(self) -> None:
        self._hub.unsubscribe(self)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        while not self._queue.empty():
            self._queue.get_nowait()
        self._queue.put_nowait(self._CLOSED)

    def __aiter__(self):
        return self

    async def __anext__(self) -> ChangeEvent:
        item = await self.get()
        if item is None:
            raise StopAsyncIteration
        return item


class ChangeFeedHub:
    """In-process fan-out of committed changes to organization subscribers."""

    def __init__(self, queue_size: int | None = None) -> None:
        # organization_id -> subscription id -> Subscription
        self._subscriptions: dict[UUID, dict[UUID, Subscription]] = {}
        self._queue_size = queue_size or settings.change_feed_queue_size

    def subscribe(self, organization_id: UUID) -> Subscription:
        subscription = Subscription(self, organization_id, self._queue_size)
        self._subscriptions.setdefault(organization_id, {})[subscription.id] = subscription
        logger.debug(f"Subscribed {subscription.id} to organization {organization_id}")
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        subs = self._subscriptions.get(subscription.organization_id)
        if subs is not None:
            subs.pop(subscription.id, None)
            if not subs:
                self._subscriptions.pop(subscription.organization_id, None)
        subscription.close()

    def publish(self, change: ChangeEvent) -> int:
        """Deliver to every subscriber of the event's organization. Never blocks."""
        targets = list(self._subscriptions.get(change.organization_id, {}).values())
        for subscription in targets:
            subscription.push(change)
        return len(targets)

    def subscriber_count(self, organization_id: UUID | None = None) -> int:
        if organization_id is not None:
            return len(self._subscriptions.get(organization_id, {}))
        return sum(len(subs) for subs in self._subscriptions.values())


# Global singleton hub
change_feed = ChangeFeedHub()


# =============================================================================
# CHANGE CAPTURE
# =============================================================================


def _row_of(obj: MaintenanceRequest) -> dict[str, Any]:
    """Column values already in memory; never triggers a load."""
    state = inspect(obj)
    return {attr.key: state.dict.get(attr.key) for attr in state.mapper.column_attrs}


def _innermost(session: Session) -> SessionTransaction | None:
    return session.get_nested_transaction() or session.get_transaction()


def _captured(session: Session) -> dict[SessionTransaction, dict[UUID, ChangeEvent]]:
    return session.info.setdefault(_SESSION_KEY, {})


class _ChangeCapture:
    """Session event handlers bound to one hub."""

    def __init__(self, hub: ChangeFeedHub):
        self.hub = hub

    def after_flush(self, session: Session, flush_context) -> None:
        transaction = _innermost(session)
        if transaction is None:
            return
        bucket = _captured(session).setdefault(transaction, {})

        for event_type, objects in (
            ("INSERT", session.new),
            ("UPDATE", session.dirty),
            ("DELETE", session.deleted),
        ):
            for obj in objects:
                if not isinstance(obj, MaintenanceRequest):
                    continue
                if event_type == "UPDATE" and not session.is_modified(obj, include_collections=False):
                    continue
                row = _row_of(obj)
                previous = bucket.get(row["id"])
                # Inserted and then updated in one transaction is still an insert
                if previous is not None and previous.event_type == "INSERT" and event_type == "UPDATE":
                    kind = "INSERT"
                else:
                    kind = event_type
                bucket[row["id"]] = ChangeEvent(
                    event_type=kind,
                    table=MaintenanceRequest.__tablename__,
                    organization_id=row["organization_id"],
                    row=row,
                )

    def after_transaction_end(self, session: Session, transaction: SessionTransaction) -> None:
        # A released savepoint hands its changes to the enclosing transaction
        if not transaction.nested:
            return
        captured = _captured(session)
        events = captured.pop(transaction, None)
        if events and transaction.parent is not None:
            captured.setdefault(transaction.parent, {}).update(events)

    def after_rollback(self, session: Session) -> None:
        # Fires for ROLLBACK TO SAVEPOINT too; the savepoint is still current here
        savepoint = session.get_nested_transaction()
        if savepoint is not None:
            _captured(session).pop(savepoint, None)
        else:
            session.info.pop(_SESSION_KEY, None)

    def after_commit(self, session: Session) -> None:
        captured = session.info.pop(_SESSION_KEY, None)
        if not captured:
            return
        changes = [change for events in captured.values() for change in events.values()]
        delivered = sum(self.hub.publish(change) for change in changes)
        logger.debug(f"Published {len(changes)} change(s) to {delivered} subscriber queue(s)")


_HOOKS = ("after_flush", "after_transaction_end", "after_rollback", "after_commit")
_installed: dict[int, _ChangeCapture] = {}


def install_change_capture(hub: ChangeFeedHub = change_feed) -> None:
    """Publish committed MaintenanceRequest changes from every ORM session to ``hub``."""
    if id(hub) in _installed:
        return
    capture = _ChangeCapture(hub)
    for name in _HOOKS:
        event.listen(Session, name, getattr(capture, name))
    _installed[id(hub)] = capture
    logger.info("Change capture installed for maintenance requests")


def uninstall_change_capture(hub: ChangeFeedHub = change_feed) -> None:
    capture = _installed.pop(id(hub), None)
    if capture is None:
        return
    for name in _HOOKS:
        event.remove(Session, name, getattr(capture, name))


# =============================================================================
# LISTENER
# =============================================================================


class ChangeFeedListener:
    """
    Applies a subscription's events to one user's board.

    Notifications are raised only for updates made by someone else: rows the
    acting user wrote, or that settle one of their own pending moves, stay
    silent.

        async with ChangeFeedListener(change_feed.subscribe(org_id), board, user_id) as listener:
            async for notification in listener.notifications():
                ...
    """

    def __init__(
        self,
        subscription: Subscription,
        board: BoardProjection,
        acting_user_id: UUID | None,
    ):
        self.subscription = subscription
        self.board = board
        self.acting_user_id = acting_user_id

    def handle(self, change: ChangeEvent) -> Notification | None:
        """Fold one event into the board; return a notification when warranted."""
        if change.organization_id != self.subscription.organization_id:
            return None

        snapshot = RequestSnapshot.from_row(change.row)
        own_pending = snapshot.id in self.board.pending_ids
        changed = self.board.apply_event(change.event_type, snapshot)

        if change.event_type != "UPDATE" or not changed:
            return None
        if snapshot.updated_by is not None and snapshot.updated_by == self.acting_user_id:
            return None
        if own_pending:
            return None

        current = self.board.confirmed.get(snapshot.id, snapshot)
        return Notification(
            request_id=snapshot.id,
            title=current.title,
            status=current.status.value,
            updated_by=snapshot.updated_by,
            message=f'"{current.title}" was updated to {current.status.value}',
        )

    async def next(self) -> tuple[ChangeEvent, Notification | None] | None:
        change = await self.subscription.get()
        if change is None:
            return None
        return change, self.handle(change)

    async def notifications(self):
        """Yield notifications until the subscription closes."""
        while True:
            item = await self.next()
            if item is None:
                return
            _, notification = item
            if notification is not None:
                yield notification

    def close(self) -> None:
        self.subscription.unsubscribe()

    async def __aenter__(self) -> "ChangeFeedListener":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.close()
