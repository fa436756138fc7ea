from src.tastematch.domain.models import Participant, PreferenceAnswer
from src.tastematch.domain.questions import QUESTIONS
from src.tastematch.services.recommendations import answers_by_category, headline, personal_reveal

from .utils import ANSWERS_A, ANSWERS_B


def _participant(pid, name, values):
    p = Participant(participant_id=pid, name=name, contact="1")
    p.answers = [PreferenceAnswer(question_id=q.id, answer=v) for q, v in zip(QUESTIONS, values)]
    p.complete = True
    return p


def test_answers_by_category():
    priya = _participant("p1", "Priya", ANSWERS_A)
    assert answers_by_category(priya)["diet"] == "Veg"
    assert answers_by_category(priya)["dish_type"] == "Biriyani/Rice"


def test_headline_tiers():
    a = _participant("p1", "Priya", ANSWERS_A)
    b = _participant("p2", "Arjun", ANSWERS_B)
    assert "PERFECT" in headline(a, b, 85)
    assert "wonderful blend" in headline(a, b, 55)
    assert "Opposites attract" in headline(a, b, 30)


def test_each_partner_gets_a_different_reveal():
    priya = _participant("p1", "Priya", ANSWERS_A)
    arjun = _participant("p2", "Arjun", ANSWERS_B)
    for_priya = personal_reveal(priya, arjun, 40)
    for_arjun = personal_reveal(arjun, priya, 40)
    assert for_priya != for_arjun
    assert "Priya & Arjun, your Taste Compatibility is 40%!" in for_priya
    assert "Here's what I'd suggest for you, Priya" in for_priya
    # Cozy mood + veg diet drive Priya's options
    assert "A cozy North Indian dinner" in for_priya
    assert "(veg-friendly of course!)" in for_priya
    # Arjun's big budget sends him to a premium place
    assert "premium North Indian restaurant" in for_arjun
    assert "veg-friendly" not in for_arjun


def test_reveal_mentions_all_three_actions():
    priya = _participant("p1", "Priya", ANSWERS_A)
    arjun = _participant("p2", "Arjun", ANSWERS_B)
    text = personal_reveal(priya, arjun, 40)
    for label in ("**Order In**", "**Dine Out**", "**Cook Together**"):
        assert label in text
