import pytest

from src.tastematch.domain.errors import IncompleteAnswersError
from src.tastematch.domain.models import Action, PreferenceAnswer
from src.tastematch.domain.questions import QUESTIONS
from src.tastematch.services import scoring

from .utils import ANSWERS_A, ANSWERS_B


def _answers(values):
    return [PreferenceAnswer(question_id=q.id, answer=v) for q, v in zip(QUESTIONS, values)]


def test_identical_answers_score_100():
    result = scoring.score(_answers(ANSWERS_A), _answers(ANSWERS_A))
    assert result.compatibility == 100
    assert all(item.score == 100 for item in result.breakdown)
    assert "Both love North Indian" in result.highlights


def test_mixed_scenario():
    # cuisine identical, spice compatible, the rest unrelated: (100 + 60 + 4 * 20) / 600
    result = scoring.score(_answers(ANSWERS_A), _answers(ANSWERS_B))
    assert [item.score for item in result.breakdown] == [100, 60, 20, 20, 20, 20]
    assert result.compatibility == 40
    assert result.highlights == ["Both love North Indian", "Medium & Spicy (spice)"]


def test_all_mismatched_scores_20():
    a = ["Chinese", "Mild", "Veg", "₹200-400", "Fine Dining", "Healthy/Salad"]
    b = ["Other", "Extra Spicy", "Non-Veg", "₹1200+", "Fun & Casual", "Biriyani/Rice"]
    result = scoring.score(_answers(a), _answers(b))
    assert result.compatibility == 20
    assert result.highlights == []


def test_score_is_symmetric_for_every_option_pair():
    for question in QUESTIONS:
        for first in question.options:
            for second in question.options:
                assert scoring.question_score(question.category, first, second) == scoring.question_score(
                    question.category, second, first
                )


def test_swapping_partners_keeps_percentage():
    a = ["Italian", "Spicy", "Egg only", "₹700-1200", "Home-cooked", "Sushi/Asian"]
    b = ["Chinese", "Extra Spicy", "Non-Veg", "₹400-700", "Cozy & Romantic", "Pizza/Pasta"]
    assert scoring.score(_answers(a), _answers(b)).compatibility == scoring.score(_answers(b), _answers(a)).compatibility


def test_free_text_only_matches_itself():
    assert scoring.question_score("cuisine", "Ethiopian", "Ethiopian") == 100
    assert scoring.question_score("cuisine", "Ethiopian", "Italian") == 20


def test_incomplete_answers_rejected():
    with pytest.raises(IncompleteAnswersError):
        scoring.score(_answers(ANSWERS_A)[:5], _answers(ANSWERS_B))


def test_recommendations_cover_the_three_actions():
    result = scoring.score(_answers(ANSWERS_A), _answers(ANSWERS_B))
    assert [r.type for r in result.recommendations] == [Action.DELIVERY, Action.DINEOUT, Action.COOK]
    card = result.recommendations[0].to_dict()
    assert card["type"] == "delivery"
    assert card["matchedPreferences"] == result.highlights


@pytest.mark.parametrize(
    "compatibility,expected",
    [(90, "PERFECT"), (60, "solid"), (20, "opposites attract")],
)
def test_verdict(compatibility, expected):
    assert expected in scoring.verdict(compatibility)
