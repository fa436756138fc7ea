from __future__ import annotations

from typing import Dict, List, Optional

from ..domain.models import Participant, Room

INTRODUCTION = "introduction"
COLLECTING = "collecting"
COMPLETE = "complete"
AWAITING_PARTNER = "awaiting_partner"
REVEALED = "revealed"
ACTION_CHOSEN = "action_chosen"
AWAITING_AUTH = "awaiting_auth"
TOOLS_READY = "tools_ready"

# Per-participant interaction phases
PHASE_TRANSITIONS: Dict[str, List[str]] = {
    INTRODUCTION: [COLLECTING],
    COLLECTING: [COMPLETE],
    COMPLETE: [AWAITING_PARTNER, REVEALED],
    AWAITING_PARTNER: [REVEALED],
    REVEALED: [ACTION_CHOSEN],
    ACTION_CHOSEN: [AWAITING_AUTH, TOOLS_READY],
    AWAITING_AUTH: [TOOLS_READY],
    TOOLS_READY: [],
}

# Replies in these phases are delivered to the sender only.
PRIVATE_PHASES = frozenset({INTRODUCTION, COLLECTING, COMPLETE, AWAITING_PARTNER, REVEALED})


def next_phase(current: str) -> Optional[str]:
    options = PHASE_TRANSITIONS.get(current, [])
    return options[0] if options else None


def is_valid_transition(current: str, target: str) -> bool:
    return target in PHASE_TRANSITIONS.get(current, [])


def derive_phase(
    room: Room,
    participant: Participant,
    *,
    history_length: int = 0,
    auth_pending: bool = False,
    tools_ready: bool = False,
) -> str:
    if room.chosen_action is not None:
        if tools_ready:
            return TOOLS_READY
        if auth_pending:
            return AWAITING_AUTH
        return ACTION_CHOSEN
    if room.score_result is not None:
        return REVEALED
    if participant.complete:
        partner = room.partner_of(participant.participant_id)
        if partner is None or not partner.complete:
            return AWAITING_PARTNER
        return COMPLETE
    if participant.answers or history_length > 0:
        return COLLECTING
    return INTRODUCTION


def is_private(phase: str) -> bool:
    return phase in PRIVATE_PHASES
