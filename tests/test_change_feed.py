"""
Tests for the Change Feed - committed changes only, per organization.

These tests verify:
1. CAPTURE: commits publish INSERT/UPDATE/DELETE events
2. ROLLBACK: rolled back work (whole or savepoint) publishes nothing
3. FAN-OUT: subscribers only see their own organization, queues are bounded
4. LISTENER: the board follows events, notifications skip the actor's own writes
"""

from uuid import uuid4

import pytest

from gearguard.models import RequestStatus, Role, utcnow
from gearguard.services import (
    BoardProjection,
    ChangeEvent,
    ChangeFeedHub,
    ChangeFeedListener,
    RequestSnapshot,
    TransitionContext,
    WorkflowEngine,
    install_change_capture,
    uninstall_change_capture,
)


@pytest.fixture
def hub():
    hub = ChangeFeedHub(queue_size=8)
    install_change_capture(hub)
    yield hub
    uninstall_change_capture(hub)


def _drain(subscription) -> list[ChangeEvent]:
    events = []
    while subscription.pending():
        events.append(subscription._queue.get_nowait())
    return events


def _row(request_id, status=RequestStatus.NEW, updated_by=None, updated_at=None, title="Oil leak"):
    now = utcnow()
    return {
        "id": request_id,
        "title": title,
        "status": status.value,
        "priority": "Medium",
        "type": "Corrective",
        "equipment_id": uuid4(),
        "created_at": now,
        "updated_at": updated_at or now,
        "assigned_technician_id": None,
        "updated_by": updated_by,
    }


# =============================================================================
# TEST: CAPTURE
# =============================================================================


class TestCapture:
    async def test_commit_publishes_insert(self, session, world, make_request, hub):
        subscription = hub.subscribe(world.organization.id)
        request = await make_request()
        assert subscription.pending() == 0

        await session.commit()

        events = _drain(subscription)
        assert [(e.event_type, e.record_id) for e in events] == [("INSERT", request.id)]
        assert events[0].table == "maintenance_requests"
        assert events[0].row["status"] == RequestStatus.NEW

    async def test_insert_then_update_is_one_insert(self, session, world, make_request, hub):
        subscription = hub.subscribe(world.organization.id)
        request = await make_request()
        request.title = "Oil leak near pump"
        await session.flush()
        await session.commit()

        events = _drain(subscription)
        assert len(events) == 1
        assert events[0].event_type == "INSERT"
        assert events[0].row["title"] == "Oil leak near pump"

    async def test_transition_publishes_update(self, session, world, make_request, hub):
        request = await make_request()
        await session.commit()
        subscription = hub.subscribe(world.organization.id)

        await WorkflowEngine(session).change_status(
            request.id,
            RequestStatus.IN_PROGRESS,
            TransitionContext(acting_user_id=world.manager.id, role=Role.MANAGER),
            world.organization.id,
        )
        await session.commit()

        events = _drain(subscription)
        assert [e.event_type for e in events] == ["UPDATE"]
        assert events[0].row["status"] == RequestStatus.IN_PROGRESS
        assert events[0].row["updated_by"] == world.manager.id

    async def test_delete_is_published(self, session, world, make_request, hub):
        request = await make_request()
        await session.commit()
        subscription = hub.subscribe(world.organization.id)

        await session.delete(request)
        await session.commit()

        events = _drain(subscription)
        assert [(e.event_type, e.record_id) for e in events] == [("DELETE", request.id)]


# =============================================================================
# TEST: ROLLBACK
# =============================================================================


class TestRollback:
    async def test_rollback_publishes_nothing(self, session, world, make_request, hub):
        subscription = hub.subscribe(world.organization.id)
        await make_request()
        await session.rollback()
        assert subscription.pending() == 0

    async def test_savepoint_rollback_keeps_outer_changes(self, session, world, make_request, hub):
        subscription = hub.subscribe(world.organization.id)
        kept = await make_request(title="Kept")

        savepoint = await session.begin_nested()
        await make_request(title="Discarded")
        await savepoint.rollback()

        await session.commit()

        events = _drain(subscription)
        assert [e.record_id for e in events] == [kept.id]

    async def test_released_savepoint_is_published(self, session, world, make_request, hub):
        subscription = hub.subscribe(world.organization.id)
        async with session.begin_nested():
            request = await make_request()
        await session.commit()

        assert [e.record_id for e in _drain(subscription)] == [request.id]

    async def test_failed_scrap_publishes_nothing(self, session, world, make_request, hub, monkeypatch):
        from sqlalchemy.exc import OperationalError

        from gearguard.services import SideEffectError

        request = await make_request(
            status=RequestStatus.IN_PROGRESS, assigned_technician_id=world.technician.id
        )
        await session.commit()
        subscription = hub.subscribe(world.organization.id)

        engine = WorkflowEngine(session, scrap_retry_attempts=1)

        async def broken(req):
            raise OperationalError("UPDATE equipment", {}, Exception("connection lost"))

        monkeypatch.setattr(engine, "_retire_equipment", broken)
        with pytest.raises(SideEffectError):
            await engine.change_status(
                request.id,
                RequestStatus.SCRAP,
                TransitionContext(
                    acting_user_id=world.manager.id, role=Role.MANAGER, scrap_reason="Worn out"
                ),
                world.organization.id,
            )
        await session.commit()

        assert subscription.pending() == 0


# =============================================================================
# TEST: HUB
# =============================================================================


class TestHub:
    def test_publish_is_scoped_to_organization(self):
        hub = ChangeFeedHub(queue_size=8)
        org_a, org_b = uuid4(), uuid4()
        sub_a = hub.subscribe(org_a)
        sub_b = hub.subscribe(org_b)

        delivered = hub.publish(ChangeEvent("INSERT", "maintenance_requests", org_a, _row(uuid4())))

        assert delivered == 1
        assert sub_a.pending() == 1
        assert sub_b.pending() == 0

    def test_overflow_drops_oldest_and_flags_resync(self):
        hub = ChangeFeedHub(queue_size=8)
        org = uuid4()
        subscription = hub.subscribe(org)
        ids = [uuid4() for _ in range(9)]
        for request_id in ids:
            hub.publish(ChangeEvent("INSERT", "maintenance_requests", org, _row(request_id)))

        assert subscription.needs_resync
        assert [e.record_id for e in _drain(subscription)] == ids[1:]

    async def test_unsubscribe_closes_subscription(self):
        hub = ChangeFeedHub(queue_size=8)
        org = uuid4()
        subscription = hub.subscribe(org)
        subscription.unsubscribe()

        assert hub.subscriber_count(org) == 0
        assert await subscription.get() is None
        assert hub.publish(ChangeEvent("INSERT", "maintenance_requests", org, _row(uuid4()))) == 0


# =============================================================================
# TEST: LISTENER
# =============================================================================


class TestListener:
    def _setup(self, acting_user_id):
        hub = ChangeFeedHub(queue_size=8)
        org = uuid4()
        board = BoardProjection(role=Role.MANAGER, acting_user_id=acting_user_id)
        request_id = uuid4()
        row = _row(request_id)
        board.load([RequestSnapshot.from_row(row)])
        listener = ChangeFeedListener(hub.subscribe(org), board, acting_user_id)
        return org, board, listener, row

    def test_remote_update_notifies(self):
        me, someone = uuid4(), uuid4()
        org, board, listener, row = self._setup(me)
        later = dict(row, status="In Progress", updated_by=someone, updated_at=utcnow())

        notification = listener.handle(ChangeEvent("UPDATE", "maintenance_requests", org, later))

        assert notification is not None
        assert notification.status == "In Progress"
        assert notification.message == '"Oil leak" was updated to In Progress'
        assert board.confirmed[row["id"]].status == RequestStatus.IN_PROGRESS

    def test_own_update_is_silent(self):
        me = uuid4()
        org, board, listener, row = self._setup(me)
        later = dict(row, status="In Progress", updated_by=me, updated_at=utcnow())

        assert listener.handle(ChangeEvent("UPDATE", "maintenance_requests", org, later)) is None
        assert board.confirmed[row["id"]].status == RequestStatus.IN_PROGRESS

    def test_update_settling_pending_move_is_silent(self):
        me, someone = uuid4(), uuid4()
        org, board, listener, row = self._setup(me)
        board.move(row["id"], RequestStatus.IN_PROGRESS)
        later = dict(row, status="In Progress", updated_by=someone, updated_at=utcnow())

        assert listener.handle(ChangeEvent("UPDATE", "maintenance_requests", org, later)) is None
        assert board.pending_ids == set()

    def test_duplicate_event_is_ignored(self):
        me, someone = uuid4(), uuid4()
        org, board, listener, row = self._setup(me)
        later = dict(row, status="In Progress", updated_by=someone, updated_at=utcnow())
        change = ChangeEvent("UPDATE", "maintenance_requests", org, later)

        assert listener.handle(change) is not None
        assert listener.handle(change) is None

    def test_insert_and_delete_do_not_notify(self):
        me = uuid4()
        org, board, listener, row = self._setup(me)
        new_row = _row(uuid4(), updated_by=uuid4())

        assert listener.handle(ChangeEvent("INSERT", "maintenance_requests", org, new_row)) is None
        assert new_row["id"] in board.confirmed
        assert listener.handle(ChangeEvent("DELETE", "maintenance_requests", org, row)) is None
        assert row["id"] not in board.confirmed

    async def test_notifications_stream_until_closed(self):
        me, someone = uuid4(), uuid4()
        org, board, listener, row = self._setup(me)
        later = dict(row, status="In Progress", updated_by=someone, updated_at=utcnow())
        listener.subscription.push(ChangeEvent("UPDATE", "maintenance_requests", org, later))

        received = []
        async with listener:
            async for notification in listener.notifications():
                received.append(notification)
                listener.close()

        assert [n.request_id for n in received] == [row["id"]]
