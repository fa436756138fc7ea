"""Process-wide set of operations the responder may invoke.

Entries are keyed by name. Merging an entry whose name already exists
replaces the old one in place, so two rooms authorising the same remote
operation never produce duplicate declarations. The registry outlives
rooms; only same-name replacement ever removes an entry.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from threading import RLock
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Protocol

from ..domain.models import MessageContext

logger = logging.getLogger("tastematch.capabilities")

BUILTIN_SCOPE = "builtin"

Invoker = Callable[[MessageContext, Dict[str, Any]], Awaitable[Any]]


@dataclass(frozen=True)
class Capability:
    name: str
    description: str
    invoke: Invoker
    input_schema: Dict[str, Any] = field(default_factory=lambda: {"type": "object", "properties": {}})
    scope: str = BUILTIN_SCOPE

    def as_tool_spec(self) -> Dict[str, Any]:
        """OpenAI-style function declaration."""

        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.input_schema,
            },
        }


class RemoteConnector(Protocol):
    async def disconnect(self, room_id: str) -> None: ...


class CapabilityRegistry:
    def __init__(self, entries: Optional[Iterable[Capability]] = None, connector: Optional[RemoteConnector] = None) -> None:
        self._entries: List[Capability] = []
        self._lock = RLock()
        self._connector = connector
        if entries:
            self.merge(entries)

    def attach_connector(self, connector: RemoteConnector) -> None:
        self._connector = connector

    def merge(self, entries: Iterable[Capability]) -> None:
        with self._lock:
            for entry in entries:
                for idx, existing in enumerate(self._entries):
                    if existing.name == entry.name:
                        self._entries[idx] = entry
                        break
                else:
                    self._entries.append(entry)

    def snapshot(self) -> List[Capability]:
        with self._lock:
            return list(self._entries)

    def get(self, name: str) -> Optional[Capability]:
        with self._lock:
            for entry in self._entries:
                if entry.name == name:
                    return entry
        return None

    def names(self) -> List[str]:
        with self._lock:
            return [e.name for e in self._entries]

    async def disconnect(self, room_id: str) -> None:
        """Tear down the room's remote connection. Safe to call repeatedly."""

        if self._connector is None:
            return
        try:
            await self._connector.disconnect(room_id)
        except Exception as exc:
            logger.warning("capability_disconnect_failed room=%s err=%s", room_id, exc)
