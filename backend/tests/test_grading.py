import pytest

from grading import percentage, score_objective, total_marks
from models import Question, QuestionType


def _mcq(qid, correct, marks=1):
    return Question(id=qid, assessment_id="a1", question_number=1, type=QuestionType.MCQ,
                    text="?", options=["A", "B", "C"], correct_answer=correct, marks=marks)


def _theory(qid, marks=5):
    return Question(id=qid, assessment_id="a1", question_number=1, type=QuestionType.THEORY,
                    text="Explain", marks=marks)


def test_scores_correct_mcq_answers():
    questions = [_mcq("q1", "A"), _mcq("q2", "B", marks=2)]
    assert score_objective(questions, {"q1": "A", "q2": "B"}) == 3
    assert score_objective(questions, {"q1": "A", "q2": "C"}) == 1
    assert score_objective(questions, {}) == 0


def test_option_text_compared_after_trimming():
    questions = [_mcq("q1", "Binary search ")]
    assert score_objective(questions, {"q1": "  Binary search"}) == 1
    assert score_objective(questions, {"q1": "binary search"}) == 0


def test_theory_answers_score_nothing():
    questions = [_mcq("q1", "A"), _theory("q2")]
    assert score_objective(questions, {"q1": "A", "q2": "A long essay"}) == 1


def test_unknown_question_ids_are_ignored(caplog):
    questions = [_mcq("q1", "A")]
    assert score_objective(questions, {"q1": "A", "forged": "A"}) == 1
    assert any("forged" in r.message for r in caplog.records)


def test_total_marks_include_theory():
    assert total_marks([_mcq("q1", "A"), _theory("q2", marks=3)]) == 4


@pytest.mark.parametrize("raw,total,expected", [
    (1, 2, 50),
    (2, 2, 100),
    (0, 2, 0),
    (1, 8, 13),   # 12.5 rounds up
    (1, 3, 33),
    (2, 3, 67),
    (5, 0, 0),
])
def test_percentage(raw, total, expected):
    assert percentage(raw, total) == expected
