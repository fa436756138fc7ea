"""Fan-out of push events to the live connections of a room.

Delivery is best-effort: a connection that is closed (or fails mid-send) is
skipped without queuing or retry.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from threading import RLock
from typing import Any, Dict, List, Optional, Protocol

from fastapi.websockets import WebSocket, WebSocketState

from ..domain.room_models import PushEvent

logger = logging.getLogger("tastematch.connections")


class Connection(Protocol):
    @property
    def is_open(self) -> bool: ...

    async def send_json(self, payload: Dict[str, Any]) -> None: ...


class WebSocketConnection:
    def __init__(self, websocket: WebSocket) -> None:
        self._ws = websocket

    @property
    def is_open(self) -> bool:
        return (
            self._ws.client_state == WebSocketState.CONNECTED
            and self._ws.application_state == WebSocketState.CONNECTED
        )

    async def send_json(self, payload: Dict[str, Any]) -> None:
        await self._ws.send_json(payload)


@dataclass
class _Registered:
    participant_id: str
    connection: Connection


class ConnectionHub:
    def __init__(self) -> None:
        self._rooms: Dict[str, List[_Registered]] = {}
        self._lock = RLock()

    def register(self, room_id: str, participant_id: str, connection: Connection) -> None:
        with self._lock:
            self._rooms.setdefault(room_id, []).append(_Registered(participant_id, connection))
        logger.info("connection_registered room=%s participant=%s", room_id, participant_id)

    def unregister(self, room_id: str, participant_id: str, connection: Connection) -> bool:
        """Drop one connection. Returns True when the room has none left."""

        with self._lock:
            entries = self._rooms.get(room_id)
            if entries is None:
                return False
            for idx, entry in enumerate(entries):
                if entry.participant_id == participant_id and entry.connection is connection:
                    entries.pop(idx)
                    break
            if entries:
                return False
            del self._rooms[room_id]
        logger.info("room_connections_empty room=%s", room_id)
        return True

    def connection_count(self, room_id: str) -> int:
        with self._lock:
            return len(self._rooms.get(room_id, []))

    def _targets(self, room_id: str, *, only: Optional[str] = None, exclude: Optional[str] = None) -> List[Connection]:
        with self._lock:
            entries = list(self._rooms.get(room_id, []))
        out: List[Connection] = []
        for entry in entries:
            if only is not None and entry.participant_id != only:
                continue
            if exclude is not None and entry.participant_id == exclude:
                continue
            out.append(entry.connection)
        return out

    async def _deliver(self, targets: List[Connection], event: PushEvent) -> int:
        payload = event.to_wire()
        delivered = 0
        for connection in targets:
            if not connection.is_open:
                continue
            try:
                await connection.send_json(payload)
                delivered += 1
            except Exception as exc:
                logger.debug("push_dropped type=%s err=%s", event.type, exc)
        return delivered

    async def send_to_participant(self, room_id: str, participant_id: str, event: PushEvent) -> int:
        return await self._deliver(self._targets(room_id, only=participant_id), event)

    async def broadcast_to_room(self, room_id: str, event: PushEvent) -> int:
        return await self._deliver(self._targets(room_id), event)

    async def broadcast_except(self, room_id: str, participant_id: str, event: PushEvent) -> int:
        return await self._deliver(self._targets(room_id, exclude=participant_id), event)
