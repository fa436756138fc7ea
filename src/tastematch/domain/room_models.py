from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class RoomCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(alias="userId", min_length=1)
    name: str = Field(min_length=1)
    phone: str = Field(min_length=1)


class RoomJoin(RoomCreate):
    pass


class PhotoUpload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(alias="userId", min_length=1)
    photo_data: str = Field(alias="photoData", min_length=1, description="Base64 image payload")
    mime_type: str = Field(alias="mimeType", min_length=1)


class AnswerSubmit(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(alias="userId", min_length=1)
    question_id: int = Field(alias="questionId")
    answer: str = Field(min_length=1)


class ParticipantSummary(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(alias="userId")
    name: str
    quiz_complete: bool = Field(default=False, alias="quizComplete")
    answered_count: int = Field(default=0, alias="answeredCount")
    photo_uploaded: bool = Field(default=False, alias="photoUploaded")


class RoomSummary(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    room_id: str = Field(alias="roomId")
    session_id: str = Field(alias="sessionId")
    partner1: ParticipantSummary
    partner2: Optional[ParticipantSummary] = None
    created_at: datetime = Field(alias="createdAt")
    ws_url: str = Field(alias="wsUrl")


class RoomStatus(RoomSummary):
    compatibility: Optional[int] = None
    match_result: Optional[Dict[str, Any]] = Field(default=None, alias="matchResult")
    chosen_action: Optional[str] = Field(default=None, alias="chosenAction")
    asset_state: str = Field(alias="assetState")


EventType = Literal[
    "agent_message",
    "partner_joined",
    "progress_update",
    "asset_uploaded",
    "match_result",
    "action_chosen",
    "authorization_required",
    "authorization_complete",
    "error",
]


class PushEvent(BaseModel):
    """Server -> client frame. Only populated fields are serialised."""

    type: EventType
    text: Optional[str] = None
    partner: Optional[Dict[str, str]] = None
    status: Optional[Dict[str, bool]] = None
    who: Optional[str] = None
    compatibility: Optional[int] = None
    recommendations: Optional[List[Dict[str, Any]]] = None
    asset: Optional[str] = None
    action: Optional[str] = None
    chosen_by: Optional[str] = Field(default=None, serialization_alias="chosenBy")
    auth_url: Optional[str] = Field(default=None, serialization_alias="authUrl")
    error: Optional[str] = None

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True, by_alias=True)


class ClientFrame(BaseModel):
    type: Literal["message"]
    text: str = Field(min_length=1)
