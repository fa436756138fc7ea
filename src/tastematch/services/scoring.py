"""Deterministic taste-compatibility scoring.

Per question both partners answered: identical answers score 100, answers in
the category's compatible relation score 60, anything else scores 20. The
relation is undirected, so swapping the two answer lists never changes the
aggregate percentage.
"""

from __future__ import annotations

import math
from typing import Dict, FrozenSet, Iterable, List, Sequence, Tuple

from ..domain.errors import IncompleteAnswersError
from ..domain.models import PreferenceAnswer, QuestionScore, ScoreResult
from ..domain.questions import QUESTION_COUNT, QUESTIONS
from .progression import answer_for, is_complete
from .recommendations import build_recommendations

IDENTICAL_SCORE = 100
COMPATIBLE_SCORE = 60
MISMATCH_SCORE = 20


def _pairs(*pairs: Tuple[str, str]) -> FrozenSet[FrozenSet[str]]:
    return frozenset(frozenset(p) for p in pairs)


COMPATIBLE_PAIRS: Dict[str, FrozenSet[FrozenSet[str]]] = {
    "cuisine": _pairs(
        ("North Indian", "South Indian"),
        ("North Indian", "Street Food"),
        ("South Indian", "Street Food"),
        ("Chinese", "Italian"),
        ("Italian", "Continental"),
    ),
    "spice": _pairs(
        ("Mild", "Medium"),
        ("Medium", "Spicy"),
        ("Spicy", "Extra Spicy"),
    ),
    "diet": _pairs(
        ("Veg", "Vegan"),
        ("Veg", "Egg only"),
        ("Non-Veg", "Egg only"),
    ),
    "budget": _pairs(
        ("₹200-400", "₹400-700"),
        ("₹400-700", "₹700-1200"),
        ("₹700-1200", "₹1200+"),
    ),
    "mood": _pairs(
        ("Cozy & Romantic", "Fine Dining"),
        ("Cozy & Romantic", "Home-cooked"),
        ("Fun & Casual", "Home-cooked"),
    ),
    "dish_type": _pairs(
        ("Biriyani/Rice", "Curry & Bread"),
        ("Pizza/Pasta", "Sushi/Asian"),
        ("Pizza/Pasta", "Dessert-heavy"),
        ("Sushi/Asian", "Healthy/Salad"),
    ),
}


def are_compatible(category: str, first: str, second: str) -> bool:
    return frozenset((first, second)) in COMPATIBLE_PAIRS.get(category, frozenset())


def question_score(category: str, first: str, second: str) -> int:
    if first == second:
        return IDENTICAL_SCORE
    if are_compatible(category, first, second):
        return COMPATIBLE_SCORE
    return MISMATCH_SCORE


def _highlights(breakdown: Iterable[QuestionScore]) -> List[str]:
    notes: List[str] = []
    for item in breakdown:
        if item.score == IDENTICAL_SCORE:
            notes.append(f"Both love {item.answer_a}")
        elif item.score >= COMPATIBLE_SCORE:
            notes.append(f"{item.answer_a} & {item.answer_b} ({item.category})")
    return notes


def score(answers_a: Sequence[PreferenceAnswer], answers_b: Sequence[PreferenceAnswer]) -> ScoreResult:
    """Score two complete answer lists.

    Raises:
        IncompleteAnswersError: either list has not answered every question.
    """

    if not (is_complete(answers_a) and is_complete(answers_b)):
        raise IncompleteAnswersError("Both partners must complete the quiz first")

    breakdown: List[QuestionScore] = []
    total = 0
    for question in QUESTIONS:
        first = answer_for(answers_a, question.id)
        second = answer_for(answers_b, question.id)
        if first is None or second is None:
            continue
        points = question_score(question.category, first, second)
        total += points
        breakdown.append(
            QuestionScore(
                question_id=question.id,
                category=question.category,
                answer_a=first,
                answer_b=second,
                score=points,
            )
        )

    # Half-up rounding; never banker's rounding.
    compatibility = int(math.floor(total / (QUESTION_COUNT * 100) * 100 + 0.5))
    highlights = _highlights(breakdown)
    return ScoreResult(
        compatibility=compatibility,
        breakdown=breakdown,
        highlights=highlights,
        recommendations=build_recommendations(highlights),
    )


def verdict(compatibility: int) -> str:
    if compatibility >= 80:
        return f"A PERFECT food match at {compatibility}%!"
    if compatibility >= 50:
        return f"A solid {compatibility}% match!"
    return f"A {compatibility}% match, opposites attract!"
