"""Room socket: ``/ws/{room_id}?userId=<participant>``.

Close codes before accept: 4000 missing user id, 4004 unknown room,
4003 participant not in the room. Client frames are
``{"type": "message", "text": "..."}``; each is processed as its own task.
"""

from __future__ import annotations

import json
import logging
from typing import Optional

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from ...domain.errors import ParticipantNotFoundError, RoomNotFoundError
from ...domain.room_models import ClientFrame, PushEvent
from ...infrastructure.connections import WebSocketConnection
from ...services.orchestrator import get_orchestrator

router = APIRouter(tags=["ws"])

logger = logging.getLogger("tastematch.api.ws")

CLOSE_MISSING_USER = 4000
CLOSE_FORBIDDEN = 4003
CLOSE_NOT_FOUND = 4004


@router.websocket("/ws/{room_id}")
async def room_socket(
    websocket: WebSocket,
    room_id: str,
    user_id: Optional[str] = Query(default=None, alias="userId"),
):
    if not user_id:
        await websocket.close(code=CLOSE_MISSING_USER, reason="Missing roomId or userId")
        return
    orchestrator = get_orchestrator()
    room = orchestrator.store.get(room_id)
    if room is None:
        await websocket.close(code=CLOSE_NOT_FOUND, reason="Room not found")
        return
    if not orchestrator.store.is_member(room, user_id):
        await websocket.close(code=CLOSE_FORBIDDEN, reason="User not in this room")
        return

    await websocket.accept()
    connection = WebSocketConnection(websocket)
    try:
        await orchestrator.connection_opened(room_id, user_id, connection)
    except (RoomNotFoundError, ParticipantNotFoundError) as exc:
        await websocket.close(code=CLOSE_NOT_FOUND, reason=exc.message)
        return
    logger.info("ws_connected room=%s participant=%s", room_id, user_id)

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                frame = ClientFrame.model_validate(json.loads(raw))
            except (json.JSONDecodeError, ValidationError) as exc:
                logger.debug("ws_bad_frame room=%s participant=%s err=%s", room_id, user_id, exc)
                await connection.send_json(PushEvent(type="error", error="Bad message format").to_wire())
                continue
            orchestrator.submit_message(room_id, user_id, frame.text)
    except WebSocketDisconnect:
        pass
    finally:
        logger.info("ws_disconnected room=%s participant=%s", room_id, user_id)
        await orchestrator.connection_closed(room_id, user_id, connection)
