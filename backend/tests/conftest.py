import asyncio
from types import SimpleNamespace

import pytest

from datetime_utils import ManualClock
from finalizer import SubmissionFinalizer
from models import Assessment, ExecutionOutput, Question, QuestionType
from scheduler import VirtualScheduler
from session_manager import SessionManager
from stores import (
    InMemoryAssessmentStore,
    InMemoryCodingStore,
    InMemoryDraftAnswerStore,
    InMemorySessionStore,
    InMemorySubmissionStore,
)


class FakeExecutor:
    """Code executor returning scripted outputs keyed by stdin."""

    def __init__(self, outputs=None, default=None):
        self.outputs = dict(outputs or {})
        self.default = default or ExecutionOutput(stdout="")
        self.calls = []

    async def execute(self, source_code, language, stdin=""):
        self.calls.append(stdin)
        out = self.outputs.get(stdin, self.default)
        if isinstance(out, Exception):
            raise out
        return out


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def scheduler(clock):
    return VirtualScheduler(clock)


@pytest.fixture
def session_store():
    return InMemorySessionStore()


@pytest.fixture
def drafts():
    return InMemoryDraftAnswerStore()


@pytest.fixture
def submissions():
    return InMemorySubmissionStore()


@pytest.fixture
def assessments():
    return InMemoryAssessmentStore()


@pytest.fixture
def coding_store():
    return InMemoryCodingStore()


@pytest.fixture
def session_manager(session_store, clock):
    return SessionManager(session_store, clock)


@pytest.fixture
def finalizer(session_manager, assessments, submissions, drafts, clock):
    return SubmissionFinalizer(session_manager, assessments, submissions, drafts, clock)


def seed_assessment(store, duration_minutes=1, questions=None, faculty_id="faculty-1"):
    """One-minute assessment with two 1-mark MCQs keyed "A" and "B" unless told otherwise."""
    assessment = Assessment(title="Unit 1 Quiz", faculty_id=faculty_id, duration_minutes=duration_minutes)
    if questions is None:
        questions = [
            Question(assessment_id=assessment.id, question_number=1, type=QuestionType.MCQ,
                     text="Pick A", options=["A", "B", "C"], correct_answer="A", marks=1),
            Question(assessment_id=assessment.id, question_number=2, type=QuestionType.MCQ,
                     text="Pick B", options=["A", "B", "C"], correct_answer="B", marks=1),
        ]
    else:
        questions = [q.model_copy(update={"assessment_id": assessment.id}) for q in questions]

    async def _save():
        await store.save_assessment(assessment)
        for q in questions:
            await store.save_question(q)

    asyncio.run(_save())
    return SimpleNamespace(assessment=assessment, questions=questions)


@pytest.fixture
def seed(assessments):
    def _seed(questions=None, **kwargs):
        return seed_assessment(assessments, questions=questions, **kwargs)
    return _seed


@pytest.fixture
def quiz(seed):
    return seed()
