from __future__ import annotations

import uuid
from threading import RLock
from typing import Dict, List, Optional, Protocol, Tuple

from ..domain.errors import (
    AlreadyInRoomError,
    ParticipantNotFoundError,
    RoomFullError,
    RoomNotFoundError,
)
from ..domain.models import Action, Participant, PreferenceAnswer, Room, ScoreResult
from ..services import progression


class RoomStore(Protocol):
    def create(self, participant_id: str, name: str, contact: str) -> Room: ...

    def join(self, room_id: str, participant_id: str, name: str, contact: str) -> Room: ...

    def get(self, room_id: str) -> Optional[Room]: ...

    def find_participant(self, room: Room, participant_id: str) -> Optional[Participant]: ...

    def is_member(self, room: Room, participant_id: str) -> bool: ...


class InMemoryRoomStore:
    """Process-local room registry.

    Every mutation runs under one RLock: sync routes execute in the
    threadpool while socket handlers run on the event loop.
    """

    def __init__(self) -> None:
        self._rooms: Dict[str, Room] = {}
        self._lock = RLock()

    def _new_room_id(self) -> str:
        while True:
            rid = uuid.uuid4().hex[:8]
            if rid not in self._rooms:
                return rid

    def create(self, participant_id: str, name: str, contact: str) -> Room:
        with self._lock:
            rid = self._new_room_id()
            room = Room(
                room_id=rid,
                session_id=f"session_{rid}",
                participant_a=Participant(participant_id=participant_id, name=name, contact=contact),
            )
            self._rooms[rid] = room
            return room

    def join(self, room_id: str, participant_id: str, name: str, contact: str) -> Room:
        with self._lock:
            room = self._rooms.get(room_id)
            if room is None:
                raise RoomNotFoundError(room_id)
            if room.participant_b is not None:
                raise RoomFullError(room_id)
            if room.participant_a.participant_id == participant_id:
                raise AlreadyInRoomError(participant_id)
            room.participant_b = Participant(participant_id=participant_id, name=name, contact=contact)
            return room

    def get(self, room_id: str) -> Optional[Room]:
        with self._lock:
            return self._rooms.get(room_id)

    def list_rooms(self) -> List[Room]:
        with self._lock:
            return list(self._rooms.values())

    def find_participant(self, room: Room, participant_id: str) -> Optional[Participant]:
        for participant in room.participants:
            if participant.participant_id == participant_id:
                return participant
        return None

    def is_member(self, room: Room, participant_id: str) -> bool:
        return self.find_participant(room, participant_id) is not None

    def _require(self, room_id: str, participant_id: str) -> Tuple[Room, Participant]:
        room = self._rooms.get(room_id)
        if room is None:
            raise RoomNotFoundError(room_id)
        participant = self.find_participant(room, participant_id)
        if participant is None:
            raise ParticipantNotFoundError(room_id, participant_id)
        return room, participant

    # ------------------------------------------------------------------
    # Atomic mutators
    # ------------------------------------------------------------------
    def record_answer(self, room_id: str, participant_id: str, question_id: int, answer: str) -> Participant:
        with self._lock:
            _, participant = self._require(room_id, participant_id)
            progression.submit(participant.answers, question_id, answer)
            if progression.is_complete(participant.answers):
                participant.complete = True
            return participant

    def answers_snapshot(self, room_id: str, participant_id: str) -> List[PreferenceAnswer]:
        with self._lock:
            _, participant = self._require(room_id, participant_id)
            return list(participant.answers)

    def set_photo(self, room_id: str, participant_id: str, data: str, mime_type: str) -> Room:
        with self._lock:
            room, participant = self._require(room_id, participant_id)
            participant.photo_data = data
            participant.photo_mime_type = mime_type
            return room

    def lock_action(self, room_id: str, participant_id: str, action: Action) -> Tuple[bool, Action, str]:
        """Compare-and-set of the joint action; returns ``(won, action, chosen_by)``."""

        with self._lock:
            room, _ = self._require(room_id, participant_id)
            if room.chosen_action is not None:
                return False, room.chosen_action, room.chosen_by or ""
            room.chosen_action = action
            room.chosen_by = participant_id
            return True, action, participant_id

    def set_score(self, room_id: str, result: ScoreResult) -> Room:
        with self._lock:
            room = self._rooms.get(room_id)
            if room is None:
                raise RoomNotFoundError(room_id)
            room.score_result = result
            return room


_store: InMemoryRoomStore | None = None


def get_room_store() -> InMemoryRoomStore:
    global _store
    if _store is None:
        _store = InMemoryRoomStore()
    return _store
