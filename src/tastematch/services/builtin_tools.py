"""Operations every room has from the start: quiz, photo status, match, recipes.

Each invoker reads the room from the explicit :class:`MessageContext` it is
called with. Failures are returned as ``{"error": ...}`` payloads so the
responder can relay them instead of aborting the turn.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from ..domain.errors import TasteMatchError
from ..domain.models import MessageContext, Room
from ..domain.questions import QUESTION_COUNT, get_question
from ..infrastructure.capability_registry import BUILTIN_SCOPE, Capability
from ..infrastructure.room_store import InMemoryRoomStore
from . import progression, scoring

logger = logging.getLogger("tastematch.tools")

_EMPTY_SCHEMA: Dict[str, Any] = {"type": "object", "properties": {}}

RECIPES: Dict[str, Dict[bool, Dict[str, Any]]] = {
    "North Indian": {
        True: {
            "name": "Paneer Tikka with Rose Kulfi",
            "ingredients": ["Paneer 400g", "Yogurt", "Tikka masala", "Bell peppers", "Onions", "Rose syrup", "Milk", "Cream", "Cardamom", "Pistachios"],
            "steps": ["Marinate paneer in yogurt and spices", "Grill with peppers and onions", "Prepare rose kulfi", "Serve with love!"],
        },
        False: {
            "name": "Butter Chicken with Garlic Naan & Rose Kulfi",
            "ingredients": ["Chicken 500g", "Butter", "Tomato puree", "Cream", "Garlic naan", "Rose syrup", "Milk", "Cardamom", "Pistachios"],
            "steps": ["Marinate chicken in yogurt and spices", "Cook with butter and cream sauce", "Prepare rose kulfi", "Serve with love!"],
        },
    },
    "Italian": {
        True: {
            "name": "Truffle Mushroom Risotto with Tiramisu",
            "ingredients": ["Arborio rice", "Mushrooms", "Truffle oil", "Parmesan", "White wine", "Mascarpone", "Coffee", "Ladyfinger biscuits", "Cocoa powder"],
            "steps": ["Prepare the risotto", "Make tiramisu layers", "Chill tiramisu 2+ hours", "Light candles and enjoy!"],
        },
        False: {
            "name": "Lobster Pasta with Tiramisu",
            "ingredients": ["Pasta", "Lobster/Prawns", "Garlic", "White wine", "Cherry tomatoes", "Basil", "Mascarpone", "Coffee", "Ladyfinger biscuits"],
            "steps": ["Prepare the pasta", "Make tiramisu layers", "Chill tiramisu 2+ hours", "Light candles and enjoy!"],
        },
    },
}


def _participant_status(room: Room) -> Dict[str, Any]:
    return {
        "partner1": progression.progress(room.participant_a),
        "partner2": progression.progress(room.participant_b) if room.participant_b else None,
        "bothComplete": room.both_complete,
    }


def _recipe_for(cuisine: str, vegetarian: bool) -> Dict[str, Any]:
    variants = RECIPES.get(cuisine)
    if variants:
        return variants[vegetarian]
    return {
        "name": f"Valentine's Special {cuisine} Feast",
        "ingredients": ["Fresh ingredients for your chosen cuisine", "Don't forget dessert ingredients"],
        "steps": ["Order the ingredients", "Cook together!", "Set up a romantic table", "Enjoy!"],
    }


def build_builtin_capabilities(store: InMemoryRoomStore) -> List[Capability]:
    def _room(ctx: MessageContext) -> Optional[Room]:
        return store.get(ctx.room_id)

    async def start_quiz(ctx: MessageContext, args: Dict[str, Any]) -> Dict[str, Any]:
        room = _room(ctx)
        if room is None:
            return {"error": "Room not found"}
        participant = store.find_participant(room, ctx.participant_id)
        if participant is None:
            return {"error": "User not found in room"}
        if participant.complete:
            return {"message": "Quiz already completed for this partner"}
        question = progression.next_question(participant.answers)
        if question is None:
            return {"message": "All questions already answered"}
        return {
            "message": f"Quiz started for {participant.name}!",
            "question": question.to_dict(),
            "totalQuestions": QUESTION_COUNT,
            "currentQuestion": len(participant.answers) + 1,
        }

    async def submit_answer(ctx: MessageContext, args: Dict[str, Any]) -> Dict[str, Any]:
        try:
            question_id = int(args.get("question_id"))
        except (TypeError, ValueError):
            return {"error": "question_id must be a number"}
        answer = str(args.get("answer") or "").strip()
        if not answer:
            return {"error": "answer must not be empty"}
        try:
            participant = store.record_answer(ctx.room_id, ctx.participant_id, question_id, answer)
        except TasteMatchError as exc:
            return {"error": exc.message}
        logger.info("answer_recorded room=%s participant=%s question=%s", ctx.room_id, ctx.participant_id, question_id)
        room = _room(ctx)
        if participant.complete:
            return {
                "message": f"{participant.name} has completed the quiz!",
                "quizComplete": True,
                "bothPartnersComplete": bool(room and room.both_complete),
                "answeredCount": len(participant.answers),
                "totalQuestions": QUESTION_COUNT,
            }
        question = progression.next_question(participant.answers)
        return {
            "message": "Answer recorded!",
            "quizComplete": False,
            "nextQuestion": question.to_dict() if question else None,
            "answeredCount": len(participant.answers),
            "totalQuestions": QUESTION_COUNT,
        }

    async def get_quiz_status(ctx: MessageContext, args: Dict[str, Any]) -> Dict[str, Any]:
        room = _room(ctx)
        if room is None:
            return {"error": "Room not found"}
        return _participant_status(room)

    async def get_photo_status(ctx: MessageContext, args: Dict[str, Any]) -> Dict[str, Any]:
        room = _room(ctx)
        if room is None:
            return {"error": "Room not found"}
        partner_b = room.participant_b
        return {
            "partner1": {"name": room.participant_a.name, "photoUploaded": room.participant_a.has_photo},
            "partner2": {"name": partner_b.name, "photoUploaded": partner_b.has_photo} if partner_b else None,
            "bothUploaded": all(p.has_photo for p in room.participants) and room.is_full,
            "assetState": room.asset.state.value,
        }

    async def calculate_match(ctx: MessageContext, args: Dict[str, Any]) -> Dict[str, Any]:
        room = _room(ctx)
        if room is None:
            return {"error": "Room not found"}
        if room.participant_b is None:
            return {"error": "Partner 2 has not joined yet"}
        try:
            result = scoring.score(
                store.answers_snapshot(ctx.room_id, room.participant_a.participant_id),
                store.answers_snapshot(ctx.room_id, room.participant_b.participant_id),
            )
        except TasteMatchError as exc:
            return {"error": exc.message}
        if room.score_result is None:
            store.set_score(ctx.room_id, result)
        breakdown = []
        for item in result.breakdown:
            question = get_question(item.question_id)
            breakdown.append(
                {
                    "question": question.text if question else None,
                    "category": item.category,
                    "partner1": item.answer_a,
                    "partner2": item.answer_b,
                    "matchScore": item.score,
                }
            )
        return {
            "compatibility": result.compatibility,
            "breakdown": breakdown,
            "sharedPreferences": result.highlights,
            "recommendations": [r.to_dict() for r in result.recommendations],
            "message": scoring.verdict(result.compatibility),
        }

    async def get_recipe(ctx: MessageContext, args: Dict[str, Any]) -> Dict[str, Any]:
        room = _room(ctx)
        if room is None:
            return {"error": "Room not found"}
        if room.score_result is None:
            return {"error": "Match not calculated yet"}
        cuisines = [progression.answer_for(p.answers, 1) for p in room.participants]
        diets = [progression.answer_for(p.answers, 3) for p in room.participants]
        override = str(args.get("cuisine_preference") or "").strip()
        cuisine = override or next((c for c in cuisines if c), None) or "Italian"
        vegetarian = any(d in ("Veg", "Vegan") for d in diets)
        return {
            "recipe": _recipe_for(cuisine, vegetarian),
            "cuisine": cuisine,
            "isVegetarian": vegetarian,
            "tip": "Order all the ingredients for quick delivery!",
        }

    return [
        Capability(
            name="start_quiz",
            description=(
                "Start the Valentine's taste quiz for the current user. Returns the first unanswered question. "
                "Call this when a partner is ready to begin the quiz."
            ),
            invoke=start_quiz,
            input_schema=dict(_EMPTY_SCHEMA),
            scope=BUILTIN_SCOPE,
        ),
        Capability(
            name="submit_answer",
            description="Submit a quiz answer for the current user. Returns the next question or indicates completion.",
            invoke=submit_answer,
            input_schema={
                "type": "object",
                "properties": {
                    "question_id": {"type": "integer", "description": "The question ID being answered"},
                    "answer": {"type": "string", "description": "The user's answer"},
                },
                "required": ["question_id", "answer"],
            },
            scope=BUILTIN_SCOPE,
        ),
        Capability(
            name="get_quiz_status",
            description="Get the current quiz status for the room, showing each partner's progress.",
            invoke=get_quiz_status,
            input_schema=dict(_EMPTY_SCHEMA),
            scope=BUILTIN_SCOPE,
        ),
        Capability(
            name="get_photo_status",
            description="Check whether both partners have uploaded their selfie photos.",
            invoke=get_photo_status,
            input_schema=dict(_EMPTY_SCHEMA),
            scope=BUILTIN_SCOPE,
        ),
        Capability(
            name="calculate_match",
            description=(
                "Calculate the taste compatibility between the two partners. Both partners must have "
                "completed the quiz. Returns the compatibility percentage and breakdown."
            ),
            invoke=calculate_match,
            input_schema=dict(_EMPTY_SCHEMA),
            scope=BUILTIN_SCOPE,
        ),
        Capability(
            name="get_recipe",
            description="Suggest a Valentine's recipe from the couple's preferences. Use when they choose to cook at home.",
            invoke=get_recipe,
            input_schema={
                "type": "object",
                "properties": {
                    "cuisine_preference": {"type": "string", "description": "Optional cuisine override"},
                },
            },
            scope=BUILTIN_SCOPE,
        ),
    ]
