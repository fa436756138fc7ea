from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from threading import RLock
from typing import Dict, List, Optional, Protocol
import uuid


class ConversationStore(Protocol):
    def add_message(self, room_id: str, participant_id: str, role: str, content: str) -> "ConversationMessage": ...

    def history(self, room_id: str, participant_id: str, limit: Optional[int] = None) -> List[Dict[str, str]]: ...

    def count(self, room_id: str, participant_id: str) -> int: ...


@dataclass
class ConversationMessage:
    message_id: str
    session_id: str
    role: str
    content: str
    created_at: str


def session_key(room_id: str, participant_id: str) -> str:
    # Each partner chats privately, so history is per participant.
    return f"session_{room_id}_{participant_id}"


class InMemoryConversationStore:
    def __init__(self) -> None:
        self._messages: Dict[str, List[ConversationMessage]] = {}
        self._lock = RLock()

    def _now_iso(self) -> str:
        return datetime.now(UTC).isoformat().replace("+00:00", "Z")

    def add_message(self, room_id: str, participant_id: str, role: str, content: str) -> ConversationMessage:
        if role not in ("system", "user", "assistant"):
            role = "user"
        sid = session_key(room_id, participant_id)
        with self._lock:
            msg = ConversationMessage(
                message_id=uuid.uuid4().hex,
                session_id=sid,
                role=role,
                content=content,
                created_at=self._now_iso(),
            )
            self._messages.setdefault(sid, []).append(msg)
            return msg

    def history(self, room_id: str, participant_id: str, limit: Optional[int] = None) -> List[Dict[str, str]]:
        sid = session_key(room_id, participant_id)
        with self._lock:
            msgs = list(self._messages.get(sid, []))
        if limit is not None:
            msgs = msgs[-max(0, limit):]
        return [{"role": m.role, "content": m.content} for m in msgs]

    def count(self, room_id: str, participant_id: str) -> int:
        with self._lock:
            return len(self._messages.get(session_key(room_id, participant_id), []))


_store: ConversationStore | None = None


def get_conversation_store() -> ConversationStore:
    global _store
    if _store is None:
        _store = InMemoryConversationStore()
    return _store
