"""Error taxonomy shared by every TasteMatch component.

Each failure is scoped to a single room or request. Routers translate these
into HTTP status codes; the orchestrator turns them into ``error`` pushes.
"""

from __future__ import annotations

from typing import Any, Optional


class TasteMatchError(Exception):
    code: str = "error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFoundError(TasteMatchError):
    code = "not_found"


class ConflictError(TasteMatchError):
    """Request clashes with current state; ``current`` carries that state."""

    code = "conflict"

    def __init__(self, message: str, current: Optional[Any] = None) -> None:
        super().__init__(message)
        self.current = current


class InvalidInputError(TasteMatchError):
    code = "invalid_input"


class UpstreamFailure(TasteMatchError):
    code = "upstream_failure"


# --- rooms ---
class RoomNotFoundError(NotFoundError):
    def __init__(self, room_id: str) -> None:
        super().__init__(f"Room not found: {room_id}")
        self.room_id = room_id


class ParticipantNotFoundError(NotFoundError):
    def __init__(self, room_id: str, participant_id: str) -> None:
        super().__init__(f"Participant {participant_id} is not in room {room_id}")
        self.room_id = room_id
        self.participant_id = participant_id


class RoomFullError(ConflictError):
    def __init__(self, room_id: str) -> None:
        super().__init__("Room is full", current=room_id)


class AlreadyInRoomError(ConflictError):
    def __init__(self, participant_id: str) -> None:
        super().__init__("You are already in this room", current=participant_id)


# --- preference collection ---
class InvalidQuestionError(InvalidInputError):
    def __init__(self, question_id: int) -> None:
        super().__init__(f"Invalid question ID: {question_id}")
        self.question_id = question_id


class AlreadyAnsweredError(ConflictError):
    def __init__(self, question_id: int, current: Optional[str] = None) -> None:
        super().__init__(f"Question {question_id} already answered", current=current)
        self.question_id = question_id


class IncompleteAnswersError(InvalidInputError):
    pass
