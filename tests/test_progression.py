import itertools

import pytest

from src.tastematch.domain.errors import AlreadyAnsweredError, InvalidQuestionError
from src.tastematch.domain.models import Participant
from src.tastematch.domain.questions import QUESTIONS
from src.tastematch.services import progression


def test_next_question_walks_in_order():
    answers = []
    seen = []
    while (question := progression.next_question(answers)) is not None:
        seen.append(question.id)
        progression.submit(answers, question.id, question.options[0])
    assert seen == [1, 2, 3, 4, 5, 6]
    assert progression.is_complete(answers)


def test_next_question_skips_out_of_order_answers():
    answers = []
    progression.submit(answers, 2, "Mild")
    assert progression.next_question(answers).id == 1
    progression.submit(answers, 1, "Chinese")
    assert progression.next_question(answers).id == 3


def test_submit_rejects_unknown_question():
    answers = []
    with pytest.raises(InvalidQuestionError):
        progression.submit(answers, 7, "anything")
    assert answers == []


def test_submit_rejects_duplicate_without_mutation():
    answers = []
    progression.submit(answers, 3, "Veg")
    with pytest.raises(AlreadyAnsweredError) as exc:
        progression.submit(answers, 3, "Vegan")
    assert exc.value.current == "Veg"
    assert len(answers) == 1
    assert progression.answer_for(answers, 3) == "Veg"


def test_free_text_answers_are_accepted():
    answers = []
    progression.submit(answers, 1, "Ethiopian")
    assert progression.answer_for(answers, 1) == "Ethiopian"


@pytest.mark.parametrize("order", list(itertools.islice(itertools.permutations([q.id for q in QUESTIONS]), 0, 720, 97)))
def test_completion_is_independent_of_order(order):
    answers = []
    for qid in order:
        assert not progression.is_complete(answers)
        progression.submit(answers, qid, "x")
    assert progression.is_complete(answers)
    assert progression.next_question(answers) is None


def test_progress_summary():
    participant = Participant(participant_id="p1", name="Priya", contact="1")
    progression.submit(participant.answers, 1, "Italian")
    assert progression.progress(participant) == {
        "name": "Priya",
        "answeredCount": 1,
        "totalQuestions": 6,
        "complete": False,
    }
