"""Dashboard aggregates for faculty and admins. Pure functions over stored records."""

import math
from collections import Counter
from typing import Any, Dict, List

from models import (
    Assessment,
    CodingQuestion,
    CodingSubmission,
    CodingSubmissionStatus,
    Submission,
)


def _round1(value: float) -> float:
    """One decimal place, halves rounded up."""
    return math.floor(value * 10 + 0.5) / 10


def _rate(part: int, whole: int) -> float:
    return _round1(part / whole * 100) if whole > 0 else 0.0


def assessment_overview(assessments: List[Assessment], submissions: List[Submission]) -> Dict[str, Any]:
    """Faculty dashboard: totals, average score and per-assessment submission counts."""
    ids = {a.id for a in assessments}
    relevant = [s for s in submissions if s.assessment_id in ids]

    average = sum(s.total_score for s in relevant) / len(relevant) if relevant else 0.0

    per_assessment = []
    for assessment in assessments:
        mine = [s for s in relevant if s.assessment_id == assessment.id]
        per_assessment.append({
            "assessment_id": assessment.id,
            "title": assessment.title,
            "submissions": len(mine),
            "auto_submitted": sum(1 for s in mine if s.is_auto_submitted),
            "average_score": _round1(sum(s.total_score for s in mine) / len(mine)) if mine else 0.0,
        })

    return {
        "total_assessments": len(assessments),
        "total_submissions": len(relevant),
        "average_score": _round1(average),
        "assessments": per_assessment,
    }


def coding_overview(questions: List[CodingQuestion], submissions: List[CodingSubmission]) -> Dict[str, Any]:
    """Admin coding-lab analytics."""
    accepted = sum(1 for s in submissions if s.status == CodingSubmissionStatus.ACCEPTED)

    by_question: Dict[str, Dict[str, int]] = {}
    for s in submissions:
        stats = by_question.setdefault(s.question_id, {"submissions": 0, "accepted": 0})
        stats["submissions"] += 1
        if s.status == CodingSubmissionStatus.ACCEPTED:
            stats["accepted"] += 1

    problem_performance = [
        {
            "question_id": q.id,
            "title": q.title,
            "submissions": by_question[q.id]["submissions"],
            "acceptance_rate": _rate(by_question[q.id]["accepted"], by_question[q.id]["submissions"]),
        }
        for q in questions
        if q.id in by_question
    ]
    problem_performance.sort(key=lambda p: p["submissions"], reverse=True)

    difficulty = Counter(q.difficulty.value for q in questions)
    languages = Counter(s.language.lower() for s in submissions)

    return {
        "total_problems": len(questions),
        "total_submissions": len(submissions),
        "total_students": len({s.student_id for s in submissions}),
        "acceptance_rate": _rate(accepted, len(submissions)),
        "problem_performance": problem_performance,
        "difficulty_distribution": [
            {"difficulty": name, "count": count} for name, count in difficulty.most_common()
        ],
        "language_popularity": [
            {"language": name, "count": count} for name, count in languages.most_common()
        ],
    }
