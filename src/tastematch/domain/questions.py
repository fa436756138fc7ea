from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple


@dataclass(frozen=True)
class Question:
    id: int
    text: str
    category: str
    options: Tuple[str, ...]

    def to_dict(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "text": self.text,
            "category": self.category,
            "options": list(self.options),
        }


# Canonical order; progression always walks this list front to back.
QUESTIONS: List[Question] = [
    Question(
        id=1,
        text="What's your go-to cuisine?",
        category="cuisine",
        options=("North Indian", "South Indian", "Chinese", "Italian", "Continental", "Street Food", "Other"),
    ),
    Question(
        id=2,
        text="How spicy do you like it?",
        category="spice",
        options=("Mild", "Medium", "Spicy", "Extra Spicy"),
    ),
    Question(
        id=3,
        text="Any dietary preferences?",
        category="diet",
        options=("Veg", "Non-Veg", "Egg only", "Vegan"),
    ),
    Question(
        id=4,
        text="What's your ideal dinner budget per person?",
        category="budget",
        options=("₹200-400", "₹400-700", "₹700-1200", "₹1200+"),
    ),
    Question(
        id=5,
        text="What vibe are you feeling tonight?",
        category="mood",
        options=("Cozy & Romantic", "Fun & Casual", "Fine Dining", "Home-cooked"),
    ),
    Question(
        id=6,
        text="Pick your ideal Valentine's dish type",
        category="dish_type",
        options=("Biriyani/Rice", "Pizza/Pasta", "Curry & Bread", "Sushi/Asian", "Dessert-heavy", "Healthy/Salad"),
    ),
]

QUESTION_COUNT = len(QUESTIONS)

_BY_ID: Dict[int, Question] = {q.id: q for q in QUESTIONS}
_BY_CATEGORY: Dict[str, Question] = {q.category: q for q in QUESTIONS}


def get_question(question_id: int) -> Optional[Question]:
    return _BY_ID.get(question_id)


def question_for_category(category: str) -> Optional[Question]:
    return _BY_CATEGORY.get(category)
