"""Per-participant walk through the fixed preference questions.

Answers are kept in submission order but always looked up by question id.
"""

from __future__ import annotations

from typing import Dict, List, Optional, Sequence

from ..domain.errors import AlreadyAnsweredError, InvalidQuestionError
from ..domain.models import Participant, PreferenceAnswer
from ..domain.questions import QUESTION_COUNT, QUESTIONS, Question, get_question


def next_question(answers: Sequence[PreferenceAnswer]) -> Optional[Question]:
    answered = {a.question_id for a in answers}
    for question in QUESTIONS:
        if question.id not in answered:
            return question
    return None


def answer_for(answers: Sequence[PreferenceAnswer], question_id: int) -> Optional[str]:
    for entry in answers:
        if entry.question_id == question_id:
            return entry.answer
    return None


def submit(answers: List[PreferenceAnswer], question_id: int, answer: str) -> PreferenceAnswer:
    """Append an answer in place.

    Values outside the suggested options are accepted (open-ended "Other").

    Raises:
        InvalidQuestionError: ``question_id`` is not one of the fixed questions.
        AlreadyAnsweredError: the question already has an answer; ``answers`` is untouched.
    """

    if get_question(question_id) is None:
        raise InvalidQuestionError(question_id)
    existing = answer_for(answers, question_id)
    if existing is not None:
        raise AlreadyAnsweredError(question_id, current=existing)
    entry = PreferenceAnswer(question_id=question_id, answer=answer)
    answers.append(entry)
    return entry


def is_complete(answers: Sequence[PreferenceAnswer]) -> bool:
    return len(answers) >= QUESTION_COUNT


def progress(participant: Participant) -> Dict[str, object]:
    return {
        "name": participant.name,
        "answeredCount": len(participant.answers),
        "totalQuestions": QUESTION_COUNT,
        "complete": participant.complete,
    }
