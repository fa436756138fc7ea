from __future__ import annotations

from typing import Any, Dict, NoReturn, Optional

from fastapi import APIRouter, HTTPException, status

from ...domain.errors import (
    ConflictError,
    InvalidInputError,
    NotFoundError,
    ParticipantNotFoundError,
    TasteMatchError,
    UpstreamFailure,
)
from ...domain.models import Participant, Room
from ...domain.room_models import (
    AnswerSubmit,
    ParticipantSummary,
    PhotoUpload,
    RoomCreate,
    RoomJoin,
    RoomStatus,
    RoomSummary,
)
from ...services.orchestrator import get_orchestrator

router = APIRouter(prefix="/api/rooms", tags=["rooms"])


def raise_http(exc: TasteMatchError) -> NoReturn:
    """Translate a domain error into the matching HTTP status."""

    if isinstance(exc, ParticipantNotFoundError):
        raise HTTPException(status_code=403, detail="User not in this room")
    if isinstance(exc, NotFoundError):
        raise HTTPException(status_code=404, detail=exc.message)
    if isinstance(exc, ConflictError):
        detail: Dict[str, Any] = {"error": exc.message}
        if exc.current is not None:
            detail["current"] = exc.current
        raise HTTPException(status_code=409, detail=detail)
    if isinstance(exc, InvalidInputError):
        raise HTTPException(status_code=400, detail=exc.message)
    if isinstance(exc, UpstreamFailure):
        raise HTTPException(status_code=502, detail=exc.message)
    raise HTTPException(status_code=500, detail=exc.message)


def _participant_summary(participant: Optional[Participant]) -> Optional[ParticipantSummary]:
    if participant is None:
        return None
    return ParticipantSummary(
        user_id=participant.participant_id,
        name=participant.name,
        quiz_complete=participant.complete,
        answered_count=len(participant.answers),
        photo_uploaded=participant.has_photo,
    )


def _room_summary(room: Room) -> RoomSummary:
    return RoomSummary(
        room_id=room.room_id,
        session_id=room.session_id,
        partner1=_participant_summary(room.participant_a),
        partner2=_participant_summary(room.participant_b),
        created_at=room.created_at,
        ws_url=f"/ws/{room.room_id}",
    )


def _room_status(room: Room) -> RoomStatus:
    result = room.score_result
    match_result = None
    if result is not None:
        match_result = {
            "compatibility": result.compatibility,
            "highlights": list(result.highlights),
            "breakdown": [
                {
                    "questionId": item.question_id,
                    "category": item.category,
                    "partner1Answer": item.answer_a,
                    "partner2Answer": item.answer_b,
                    "score": item.score,
                }
                for item in result.breakdown
            ],
            "recommendations": [r.to_dict() for r in result.recommendations],
        }
    summary = _room_summary(room)
    return RoomStatus(
        **summary.model_dump(),
        compatibility=result.compatibility if result else None,
        match_result=match_result,
        chosen_action=room.chosen_action.value if room.chosen_action else None,
        asset_state=room.asset.state.value,
    )


@router.post("", response_model=RoomSummary, status_code=status.HTTP_201_CREATED)
def create_room(payload: RoomCreate):
    room = get_orchestrator().create_room(payload.user_id, payload.name, payload.phone)
    return _room_summary(room)


@router.get("/{room_id}", response_model=RoomStatus)
def get_room(room_id: str):
    room = get_orchestrator().store.get(room_id)
    if room is None:
        raise HTTPException(status_code=404, detail="Room not found")
    return _room_status(room)


@router.post("/{room_id}/join", response_model=RoomSummary)
def join_room(room_id: str, payload: RoomJoin):
    try:
        room = get_orchestrator().join_room(room_id, payload.user_id, payload.name, payload.phone)
    except TasteMatchError as exc:
        raise_http(exc)
    return _room_summary(room)


@router.post("/{room_id}/photo")
async def upload_photo(room_id: str, payload: PhotoUpload):
    orchestrator = get_orchestrator()
    try:
        room = await orchestrator.upload_asset(room_id, payload.user_id, payload.photo_data, payload.mime_type)
    except TasteMatchError as exc:
        raise_http(exc)
    return {
        "success": True,
        "bothUploaded": room.is_full and all(p.has_photo for p in room.participants),
        "assetState": room.asset.state.value,
    }


@router.post("/{room_id}/answers")
async def submit_answer(room_id: str, payload: AnswerSubmit):
    orchestrator = get_orchestrator()
    try:
        progress = await orchestrator.submit_preference_answer(
            room_id, payload.user_id, payload.question_id, payload.answer
        )
    except TasteMatchError as exc:
        raise_http(exc)
    return progress
