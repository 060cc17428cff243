"""Automatic scoring of objective (MCQ) answers."""

import logging
import math
from typing import Dict, Iterable, Mapping

from models import Question

logger = logging.getLogger(__name__)


def _normalize_choice(value: str) -> str:
    return (value or "").strip()


def score_objective(questions: Iterable[Question], answers: Mapping[str, str]) -> int:
    """Sum the marks of correctly answered objective questions.

    Theory questions never score here; they are graded by hand later.
    Answers keyed by ids outside the question set are ignored.
    """
    by_id: Dict[str, Question] = {q.id: q for q in questions}

    unknown = [qid for qid in answers if qid not in by_id]
    if unknown:
        logger.warning(f"Ignoring answers for unknown question ids: {unknown}")

    raw = 0
    for qid, question in by_id.items():
        if not question.is_objective:
            continue
        given = answers.get(qid)
        if given is None:
            continue
        if _normalize_choice(given) == _normalize_choice(question.correct_answer):
            raw += question.marks
    return raw


def total_marks(questions: Iterable[Question]) -> int:
    return sum(q.marks for q in questions)


def percentage(raw_marks: int, total_possible: int) -> int:
    """Whole-number percentage, rounding halves up; 0 when nothing is available."""
    if total_possible <= 0:
        return 0
    value = math.floor(raw_marks / total_possible * 100 + 0.5)
    return max(0, min(100, value))
