from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Dict, List, Optional


class Action(str, Enum):
    DELIVERY = "delivery"
    DINEOUT = "dineout"
    COOK = "cook"

    @property
    def label(self) -> str:
        return ACTION_LABELS[self]


ACTION_LABELS: Dict[Action, str] = {
    Action.DELIVERY: "Order In",
    Action.DINEOUT: "Dine Out",
    Action.COOK: "Cook Together",
}

# Exact client button texts that count as a joint-action choice.
ACTION_TRIGGERS: Dict[str, Action] = {
    "Let's order in!": Action.DELIVERY,
    "Let's dine out!": Action.DINEOUT,
    "Let's cook together!": Action.COOK,
}


def parse_action(text: str) -> Optional[Action]:
    return ACTION_TRIGGERS.get((text or "").strip())


class AssetState(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    READY = "ready"
    FAILED = "failed"


@dataclass(frozen=True)
class MessageContext:
    """Identity of the participant whose message is being processed."""

    room_id: str
    participant_id: str
    display_name: str


@dataclass
class PreferenceAnswer:
    question_id: int
    answer: str


@dataclass
class Participant:
    participant_id: str
    name: str
    contact: str
    answers: List[PreferenceAnswer] = field(default_factory=list)
    complete: bool = False
    photo_data: Optional[str] = None
    photo_mime_type: Optional[str] = None

    @property
    def has_photo(self) -> bool:
        return self.photo_data is not None

    def answer_map(self) -> Dict[int, str]:
        return {a.question_id: a.answer for a in self.answers}


@dataclass
class QuestionScore:
    question_id: int
    category: str
    answer_a: str
    answer_b: str
    score: int


@dataclass
class Recommendation:
    type: Action
    title: str
    description: str
    matched_preferences: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, object]:
        return {
            "type": self.type.value,
            "title": self.title,
            "description": self.description,
            "matchedPreferences": list(self.matched_preferences),
        }


@dataclass
class ScoreResult:
    compatibility: int
    breakdown: List[QuestionScore]
    highlights: List[str]
    recommendations: List[Recommendation] = field(default_factory=list)


@dataclass
class AssetHandle:
    state: AssetState = AssetState.NOT_STARTED
    payload: Optional[str] = None
    error: Optional[str] = None
    task: Optional["asyncio.Task[Optional[str]]"] = None


@dataclass
class Room:
    room_id: str
    session_id: str
    participant_a: Participant
    participant_b: Optional[Participant] = None
    score_result: Optional[ScoreResult] = None
    chosen_action: Optional[Action] = None
    chosen_by: Optional[str] = None
    asset: AssetHandle = field(default_factory=AssetHandle)
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def participants(self) -> List[Participant]:
        return [p for p in (self.participant_a, self.participant_b) if p is not None]

    @property
    def is_full(self) -> bool:
        return self.participant_b is not None

    @property
    def both_complete(self) -> bool:
        return self.participant_a.complete and self.participant_b is not None and self.participant_b.complete

    def partner_of(self, participant_id: str) -> Optional[Participant]:
        if self.participant_a.participant_id == participant_id:
            return self.participant_b
        if self.participant_b is not None and self.participant_b.participant_id == participant_id:
            return self.participant_a
        return None
