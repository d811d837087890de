"""
Tests for the live board WebSocket.

These tests verify:
1. MOVES: optimistic move, server rejection and rollback, unexpected failures
2. FEED: remote commits reach connected boards as notifications
3. LIFECYCLE: subscriptions are dropped on disconnect, a dead feed closes the socket
"""

import contextlib
import time
from dataclasses import dataclass
from uuid import UUID

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import update
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from starlette.websockets import WebSocketDisconnect

import gearguard.api.realtime as realtime
import gearguard.main as main_module
from conftest import World, build_world, create_request, create_test_engine
from gearguard.core.security import create_access_token
from gearguard.models import Base, MaintenanceRequest, Profile, RequestStatus, Role, RoleAssignment
from gearguard.services import ChangeFeedListener, WorkflowEngine, change_feed


@dataclass
class LiveBoard:
    client: TestClient
    factory: async_sessionmaker
    world: World
    request_id: UUID

    def run(self, fn, *args):
        """Run a coroutine function on the app's event loop."""
        return self.client.portal.call(fn, *args)

    def connect(self, profile: Profile):
        token = create_access_token(user_id=profile.id, email=profile.email)
        return self.client.websocket_connect(f"/api/v1/ws/board?token={token}")


async def _prepare():
    engine = create_test_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
    async with factory() as session:
        world = await build_world(session)
        request = await create_request(session, world, title="Oil leak")
        await session.commit()
    return engine, factory, world, request.id


def _session_context(factory):
    @contextlib.asynccontextmanager
    async def session_context():
        async with factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    return session_context


@pytest.fixture
def live(monkeypatch):
    async def skip_init_db():
        return None

    monkeypatch.setattr(main_module, "init_db", skip_init_db)

    with TestClient(main_module.app) as client:
        engine, factory, world, request_id = client.portal.call(_prepare)
        monkeypatch.setattr(realtime, "get_session_context", _session_context(factory))
        yield LiveBoard(client=client, factory=factory, world=world, request_id=request_id)
        client.portal.call(engine.dispose)


def _card(message: dict, request_id: UUID) -> tuple[str, dict]:
    assert message["event"] == "board"
    for column in message["data"]["columns"]:
        for card in column["cards"]:
            if card["id"] == str(request_id):
                return column["status"], card
    raise AssertionError(f"card {request_id} not on the board")


def _wait_for(predicate, timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


async def _remote_pickup(factory, request_id: UUID, technician_id: UUID) -> None:
    async with factory() as session:
        request = await session.get(MaintenanceRequest, request_id)
        request.status = RequestStatus.IN_PROGRESS
        request.assigned_technician_id = technician_id
        request.updated_by = technician_id
        await session.commit()


async def _set_role(factory, user_id: UUID, role: Role) -> None:
    async with factory() as session:
        await session.execute(
            update(RoleAssignment).where(RoleAssignment.user_id == user_id).values(role=role)
        )
        await session.commit()


def _move(request_id: UUID, target: RequestStatus) -> dict:
    return {"type": "move", "request_id": str(request_id), "target_status": target.value}


# =============================================================================
# TEST: MOVES
# =============================================================================


class TestMoves:
    def test_confirmed_move(self, live):
        with live.connect(live.world.technician) as ws:
            assert _card(ws.receive_json(), live.request_id)[0] == "New"

            ws.send_json(_move(live.request_id, RequestStatus.IN_PROGRESS))

            column, card = _card(ws.receive_json(), live.request_id)
            assert (column, card["pending"]) == ("In Progress", True)

            # The own commit also reaches this board through the feed; skip those frames
            result = ws.receive_json()
            while result["event"] != "move_result":
                assert result["event"] == "board"
                result = ws.receive_json()
            assert result["data"]["status"] == "In Progress"

    def test_server_rejection_rolls_back_card(self, live):
        with live.connect(live.world.technician) as ws:
            assert _card(ws.receive_json(), live.request_id)[0] == "New"

            # Demoted after the board was loaded: the board still allows the drag
            live.run(_set_role, live.factory, live.world.technician.id, Role.REQUESTER)
            ws.send_json(_move(live.request_id, RequestStatus.IN_PROGRESS))

            column, card = _card(ws.receive_json(), live.request_id)
            assert (column, card["pending"]) == ("In Progress", True)

            error = ws.receive_json()
            assert error["event"] == "error"
            assert error["data"]["status_code"] == 403
            assert error["data"]["request_id"] == str(live.request_id)

            column, card = _card(ws.receive_json(), live.request_id)
            assert (column, card["pending"]) == ("New", False)

    def test_locally_forbidden_move_is_not_sent(self, live):
        with live.connect(live.world.requester) as ws:
            ws.receive_json()
            ws.send_json(_move(live.request_id, RequestStatus.IN_PROGRESS))

            error = ws.receive_json()
            assert error["event"] == "error"
            assert error["data"]["status_code"] == 403

    def test_unexpected_failure_keeps_the_session(self, live, monkeypatch):
        async def broken(self, *args, **kwargs):
            raise OperationalError("UPDATE maintenance_requests", {}, Exception("connection lost"))

        monkeypatch.setattr(WorkflowEngine, "change_status", broken)

        with live.connect(live.world.manager) as ws:
            ws.receive_json()
            ws.send_json(_move(live.request_id, RequestStatus.IN_PROGRESS))

            assert _card(ws.receive_json(), live.request_id)[1]["pending"] is True
            error = ws.receive_json()
            assert error["event"] == "error"
            assert error["data"]["status_code"] == 500
            column, card = _card(ws.receive_json(), live.request_id)
            assert (column, card["pending"]) == ("New", False)

            ws.send_text("ping")
            assert ws.receive_text() == "pong"

    def test_unknown_message_type(self, live):
        with live.connect(live.world.manager) as ws:
            ws.receive_json()
            ws.send_json({"type": "teleport"})
            error = ws.receive_json()
            assert error["event"] == "error"
            assert error["data"]["status_code"] == 400


# =============================================================================
# TEST: FEED
# =============================================================================


class TestFeed:
    def test_remote_commit_notifies_every_board(self, live):
        with live.connect(live.world.manager) as manager, live.connect(live.world.requester) as requester:
            manager.receive_json()
            requester.receive_json()

            live.run(_remote_pickup, live.factory, live.request_id, live.world.technician.id)

            for ws in (manager, requester):
                notification = ws.receive_json()
                assert notification["event"] == "notification"
                assert notification["data"]["request_id"] == str(live.request_id)
                assert notification["data"]["status"] == "In Progress"
                assert _card(ws.receive_json(), live.request_id)[0] == "In Progress"

    def test_own_commit_is_silent(self, live):
        with live.connect(live.world.technician) as ws:
            ws.receive_json()
            live.run(_remote_pickup, live.factory, live.request_id, live.world.technician.id)

            # Only the refreshed board, no notification
            column, _ = _card(ws.receive_json(), live.request_id)
            assert column == "In Progress"


# =============================================================================
# TEST: LIFECYCLE
# =============================================================================


class TestLifecycle:
    def test_disconnect_drops_subscription(self, live):
        org_id = live.world.organization.id

        with live.connect(live.world.manager) as ws:
            ws.receive_json()
            assert change_feed.subscriber_count(org_id) == 1

        assert _wait_for(lambda: change_feed.subscriber_count(org_id) == 0)

    def test_dead_feed_closes_socket(self, live, monkeypatch):
        def broken(self, change):
            raise RuntimeError("board state corrupted")

        monkeypatch.setattr(ChangeFeedListener, "handle", broken)

        with live.connect(live.world.manager) as ws:
            ws.receive_json()
            live.run(_remote_pickup, live.factory, live.request_id, live.world.technician.id)

            with pytest.raises(WebSocketDisconnect) as exc:
                ws.receive_json()
            assert exc.value.code == realtime.CLOSE_FEED_FAILED
