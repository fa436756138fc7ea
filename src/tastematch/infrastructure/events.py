"""Room lifecycle events mirrored to Redis pub/sub for external listeners.

Publishing is fire-and-forget: without ``REDIS_URL`` (or without the redis
client installed) events are dropped quietly and the room workflow is
unaffected.
"""

from __future__ import annotations

import json
import logging
import os
from datetime import UTC, datetime
from typing import Any, Dict, Optional

try:  # pragma: no cover - optional dependency
    import redis  # type: ignore
except Exception:  # pragma: no cover - optional dependency
    redis = None  # type: ignore

logger = logging.getLogger("tastematch.events")

CHANNEL_PREFIX = "tastematch.events"


class RoomEventPublisher:
    def __init__(self, url: str) -> None:
        self._url = url
        self._client = None
        self._connect()

    @property
    def connected(self) -> bool:
        return self._client is not None

    def _connect(self) -> None:
        if redis is None:
            return
        try:
            self._client = redis.Redis.from_url(self._url, socket_timeout=0.5)
            self._client.ping()
        except Exception as exc:
            logger.debug("event_publisher_unavailable url=%s err=%s", self._url, exc)
            self._client = None

    def publish(self, channel: str, payload: Dict[str, Any]) -> bool:
        if not self._client:
            self._connect()
        if not self._client:
            return False
        try:
            self._client.publish(channel, json.dumps(payload, default=str))
            return True
        except Exception as exc:
            logger.debug("event_publish_failed channel=%s err=%s", channel, exc)
            self._client = None
            return False


_publisher: Optional[RoomEventPublisher] = None


def get_publisher() -> Optional[RoomEventPublisher]:
    global _publisher
    if _publisher is not None:
        return _publisher
    url = os.getenv("REDIS_URL")
    if not url:
        return None
    _publisher = RoomEventPublisher(url)
    return _publisher


def reset_publisher() -> None:
    global _publisher
    _publisher = None


def publish_room_event(event_type: str, room_id: str, **fields: Any) -> bool:
    """Publish ``fields`` on ``tastematch.events.<event_type>``; False when nothing was sent."""

    publisher = get_publisher()
    if not publisher:
        return False
    payload: Dict[str, Any] = {
        "type": event_type,
        "room_id": room_id,
        "ts": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
    }
    payload.update(fields)
    return publisher.publish(f"{CHANNEL_PREFIX}.{event_type}", payload)
