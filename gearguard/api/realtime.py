"""Live Kanban board over a WebSocket.

Protocol (JSON text frames, except the plain ``ping``/``pong`` keep-alive):

server -> client
    {"event": "board", "data": {"columns": [...]}}
    {"event": "notification", "data": {...}}
    {"event": "move_result", "data": {"request_id", "status", "warnings"}}
    {"event": "error", "data": {"request_id", "status_code", "message"}}

client -> server
    {"type": "move", "request_id", "target_status", "duration"?, "work_summary"?, "scrap_reason"?}
    {"type": "filter", "search"?, "priority"?}
    {"type": "resync"}
"""

import asyncio
import contextlib
import json
import logging
from typing import Any
from uuid import UUID

from fastapi import APIRouter, HTTPException, WebSocket, WebSocketDisconnect

from ..core import authenticate, get_session_context, get_settings, set_tenant_context
from ..core.security import decode_token
from ..models import Priority, RequestStatus
from ..services import (
    BoardProjection,
    ChangeFeedListener,
    GearGuardError,
    MaintenanceService,
    RequestSnapshot,
    TransitionContext,
    WorkflowEngine,
    change_feed,
)
from .errors import status_code_for

logger = logging.getLogger(__name__)
settings = get_settings()

router = APIRouter(tags=["realtime"])

CLOSE_UNAUTHORIZED = 4401
CLOSE_NO_ORGANIZATION = 4403
CLOSE_FEED_FAILED = 1011


def _parse_priority(value: Any) -> Priority | None:
    try:
        return Priority(value) if value else None
    except ValueError:
        return None


class BoardSession:
    """One connected board: its projection, its feed pump and its socket."""

    def __init__(self, websocket: WebSocket, token: str, board: BoardProjection, organization_id: UUID):
        self.websocket = websocket
        self.token = token
        self.board = board
        self.organization_id = organization_id
        self._send_lock = asyncio.Lock()

    async def send(self, event: str, payload: Any) -> None:
        async with self._send_lock:
            await self.websocket.send_json({"event": event, "data": payload})

    async def send_text(self, text: str) -> None:
        async with self._send_lock:
            await self.websocket.send_text(text)

    async def send_board(self) -> None:
        await self.send("board", self.board.to_dict())

    async def resync(self) -> None:
        async with get_session_context() as session:
            await set_tenant_context(session, self.organization_id, self.board.acting_user_id)
            snapshots = await MaintenanceService(session).board_snapshots(self.organization_id)
        self.board.load(snapshots)
        await self.send_board()

    async def pump(self, listener: ChangeFeedListener) -> None:
        """Forward committed changes until the subscription closes.

        A board that can no longer follow the feed is closed so the client
        reconnects and reloads.
        """
        try:
            while True:
                item = await listener.next()
                if item is None:
                    return
                _, notification = item
                if listener.subscription.needs_resync:
                    listener.subscription.needs_resync = False
                    await self.resync()
                    continue
                if notification is not None:
                    await self.send("notification", notification.to_dict())
                await self.send_board()
        except (asyncio.CancelledError, WebSocketDisconnect):
            raise
        except Exception as e:
            logger.error(f"Board feed of {self.board.acting_user_id} stopped: {e}")
            # Already closed if the client went away first
            with contextlib.suppress(RuntimeError):
                await self.websocket.close(code=CLOSE_FEED_FAILED)

    async def handle_message(self, message: dict[str, Any]) -> None:
        kind = message.get("type")
        if kind == "move":
            await self.move(message)
        elif kind == "filter":
            self.board.search = str(message.get("search") or "")
            self.board.priority = _parse_priority(message.get("priority"))
            await self.send_board()
        elif kind == "resync":
            await self.resync()
        else:
            await self.send("error", {"request_id": None, "status_code": 400, "message": f"Unknown message type: {kind}"})

    async def move(self, message: dict[str, Any]) -> None:
        try:
            request_id = UUID(str(message.get("request_id")))
            target_status = RequestStatus(message.get("target_status"))
        except ValueError:
            await self.send("error", {"request_id": None, "status_code": 400, "message": "Invalid move"})
            return

        decision = self.board.move(request_id, target_status)
        if not decision.allowed:
            await self.send(
                "error",
                {"request_id": str(request_id), "status_code": 403 if decision.forbidden else 400, "message": decision.reason},
            )
            return
        pending = self.board.pending[request_id]
        await self.send_board()

        try:
            async with get_session_context() as session:
                # Role is resolved again; the board's copy may be stale
                current_user = await authenticate(session, self.token)
                context = TransitionContext(
                    acting_user_id=current_user.id,
                    role=current_user.role,
                    expected_status=pending.from_status,
                    duration=message.get("duration"),
                    work_summary=message.get("work_summary"),
                    scrap_reason=message.get("scrap_reason"),
                )
                result = await WorkflowEngine(session).change_status(
                    request_id=request_id,
                    target_status=target_status,
                    context=context,
                    organization_id=self.organization_id,
                )
                snapshot = RequestSnapshot.from_model(result.request)
                warnings = list(result.warnings)
        except GearGuardError as e:
            self.board.rollback(request_id)
            await self.send("error", {"request_id": str(request_id), "status_code": status_code_for(e), "message": str(e)})
            await self.send_board()
            return
        except HTTPException as e:
            self.board.rollback(request_id)
            await self.send("error", {"request_id": str(request_id), "status_code": e.status_code, "message": e.detail})
            await self.send_board()
            return
        except Exception as e:
            logger.error(f"Move of request {request_id} failed: {e}")
            self.board.rollback(request_id)
            await self.send(
                "error",
                {"request_id": str(request_id), "status_code": 500, "message": "The move could not be saved"},
            )
            await self.send_board()
            return

        self.board.confirm(request_id, snapshot)
        await self.send(
            "move_result",
            {"request_id": str(request_id), "status": target_status.value, "warnings": warnings},
        )
        await self.send_board()


@router.websocket("/ws/board")
async def ws_board(
    websocket: WebSocket,
    token: str | None = None,
    search: str = "",
    priority: str | None = None,
):
    if not token:
        await websocket.close(code=CLOSE_UNAUTHORIZED)
        return
    payload = decode_token(token)
    if not payload or payload.type != "access":
        await websocket.close(code=CLOSE_UNAUTHORIZED)
        return

    try:
        async with get_session_context() as session:
            current_user = await authenticate(session, token)
            snapshots = []
            if current_user.organization_id:
                snapshots = await MaintenanceService(session).board_snapshots(
                    current_user.organization_id
                )
    except HTTPException:
        await websocket.close(code=CLOSE_UNAUTHORIZED)
        return
    if not current_user.organization_id:
        await websocket.close(code=CLOSE_NO_ORGANIZATION)
        return

    board = BoardProjection(
        role=current_user.role,
        acting_user_id=current_user.id,
        search=search,
        priority=_parse_priority(priority),
        allow_override=settings.workflow_allow_override,
    )
    board.load(snapshots)

    await websocket.accept()
    connection = BoardSession(websocket, token, board, current_user.organization_id)
    subscription = change_feed.subscribe(current_user.organization_id)
    listener = ChangeFeedListener(subscription, board, current_user.id)
    pump_task: asyncio.Task | None = None

    try:
        await connection.send_board()
        pump_task = asyncio.create_task(connection.pump(listener))
        while True:
            data = await websocket.receive_text()
            if data and data.strip().lower() in {"ping", "keepalive"}:
                await connection.send_text("pong")
                continue
            try:
                message = json.loads(data)
            except json.JSONDecodeError:
                await connection.send("error", {"request_id": None, "status_code": 400, "message": "Malformed message"})
                continue
            if not isinstance(message, dict):
                continue
            try:
                await connection.handle_message(message)
            except WebSocketDisconnect:
                raise
            except Exception as e:
                logger.error(f"Board message from {current_user.id} failed: {e}")
                await connection.send(
                    "error", {"request_id": None, "status_code": 500, "message": "Something went wrong"}
                )
    except WebSocketDisconnect:
        logger.debug(f"Board socket of {current_user.id} disconnected")
    finally:
        listener.close()
        if pump_task is not None:
            pump_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await pump_task
