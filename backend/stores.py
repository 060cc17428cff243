"""
Storage contracts used by the assessment services, plus in-memory implementations.

The services only ever talk to these protocols. Production wires the Cosmos DB
implementations from cosmos_stores; development mode and tests use the
in-memory classes below.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Protocol, Tuple

from error_utils import SessionConflictError, SessionNotFoundError, UserConflictError
from models import (
    Assessment,
    CodingQuestion,
    CodingSubmission,
    DraftAnswers,
    HiddenTestCase,
    Question,
    SessionStatus,
    Submission,
    TestSession,
    UserProfile,
    UserRole,
)

logger = logging.getLogger(__name__)


def session_id_for(assessment_id: str, student_id: str) -> str:
    """Deterministic session id; at most one session per (assessment, student)."""
    return f"{assessment_id}:{student_id}"


def submission_id_for(session_id: str) -> str:
    """Deterministic submission id; a second Submission for a session fails to insert."""
    return f"{session_id}:submission"


def check_transition(current: TestSession, fields: Dict[str, Any]) -> None:
    """Refuse any status change that is not a step forward."""
    target = fields.get("status")
    if target is None or SessionStatus(target) == current.status:
        return
    if not current.status.can_advance_to(SessionStatus(target)):
        raise SessionConflictError(
            f"Session {current.id} cannot move from {current.status.value} to {SessionStatus(target).value}"
        )


# ===========================
# CONTRACTS
# ===========================

class SessionStore(Protocol):
    async def find(self, assessment_id: str, student_id: str) -> Optional[TestSession]:
        ...

    async def get(self, session_id: str) -> Optional[TestSession]:
        ...

    async def create(self, assessment_id: str, student_id: str, duration_seconds: int,
                     started_at: datetime) -> TestSession:
        """Insert a new in-progress session. Raises SessionConflictError if the pair already has one."""
        ...

    async def update(self, session_id: str, fields: Dict[str, Any],
                     expected_status: Optional[Iterable[SessionStatus]] = None) -> Optional[TestSession]:
        """Apply fields; when expected_status is given, only if the stored status is one of them.

        Returns the updated session, or None if the precondition did not hold.
        Raises SessionNotFoundError for an unknown id.
        """
        ...

    async def list_by_status(self, status: SessionStatus) -> List[TestSession]:
        ...


class DraftAnswerStore(Protocol):
    async def load(self, session_id: str) -> Dict[str, str]:
        ...

    async def save(self, session_id: str, answers: Dict[str, str]) -> None:
        ...

    async def delete(self, session_id: str) -> None:
        ...


class SubmissionStore(Protocol):
    async def create(self, submission: Submission) -> Submission:
        ...

    async def get(self, submission_id: str) -> Optional[Submission]:
        ...

    async def find_by_session(self, session_id: str) -> Optional[Submission]:
        ...

    async def list_for_assessments(self, assessment_ids: List[str]) -> List[Submission]:
        ...

    async def list_for_student(self, student_id: str) -> List[Submission]:
        ...


class AssessmentStore(Protocol):
    async def get_assessment(self, assessment_id: str) -> Optional[Assessment]:
        ...

    async def list_assessments(self, faculty_id: Optional[str] = None) -> List[Assessment]:
        ...

    async def list_questions(self, assessment_id: str) -> List[Question]:
        ...

    async def save_assessment(self, assessment: Assessment) -> Assessment:
        ...

    async def save_question(self, question: Question) -> Question:
        ...

    async def delete_assessment(self, assessment_id: str) -> bool:
        """Remove an assessment and its questions. False if it did not exist."""
        ...


class UserStore(Protocol):
    async def get(self, user_id: str) -> Optional[UserProfile]:
        ...

    async def find_by_email(self, email: str) -> Optional[UserProfile]:
        ...

    async def list_users(self, role: Optional[UserRole] = None) -> List[UserProfile]:
        """Newest first."""
        ...

    async def create(self, user: UserProfile) -> UserProfile:
        """Insert a profile. Raises UserConflictError if the id is taken."""
        ...

    async def save(self, user: UserProfile) -> UserProfile:
        ...

    async def delete(self, user_id: str) -> bool:
        ...


class CodingStore(Protocol):
    async def get_question(self, question_id: str) -> Optional[CodingQuestion]:
        ...

    async def list_questions(self) -> List[CodingQuestion]:
        ...

    async def list_published_questions(self) -> List[CodingQuestion]:
        ...

    async def save_question(self, question: CodingQuestion) -> CodingQuestion:
        ...

    async def get_hidden_tests(self, question_id: str) -> List[HiddenTestCase]:
        """Active hidden tests for a question, ordered by test number."""
        ...

    async def list_all_hidden_tests(self, question_id: str) -> List[HiddenTestCase]:
        ...

    async def save_hidden_test(self, test_case: HiddenTestCase) -> HiddenTestCase:
        ...

    async def save_submission(self, submission: CodingSubmission) -> CodingSubmission:
        ...

    async def get_submission(self, submission_id: str) -> Optional[CodingSubmission]:
        ...

    async def list_submissions(self, question_id: Optional[str] = None,
                               student_id: Optional[str] = None) -> List[CodingSubmission]:
        ...


# ===========================
# IN-MEMORY IMPLEMENTATIONS
# ===========================

class InMemorySessionStore:
    def __init__(self):
        self._sessions: Dict[str, TestSession] = {}
        self._lock = asyncio.Lock()

    async def find(self, assessment_id: str, student_id: str) -> Optional[TestSession]:
        return await self.get(session_id_for(assessment_id, student_id))

    async def get(self, session_id: str) -> Optional[TestSession]:
        session = self._sessions.get(session_id)
        return session.model_copy(deep=True) if session else None

    async def create(self, assessment_id: str, student_id: str, duration_seconds: int,
                     started_at: datetime) -> TestSession:
        session_id = session_id_for(assessment_id, student_id)
        async with self._lock:
            if session_id in self._sessions:
                raise SessionConflictError(f"Session already exists for {session_id}")
            session = TestSession(
                id=session_id,
                assessment_id=assessment_id,
                student_id=student_id,
                started_at=started_at,
                duration_seconds=duration_seconds,
                status=SessionStatus.IN_PROGRESS,
            )
            self._sessions[session_id] = session
        return session.model_copy(deep=True)

    async def update(self, session_id: str, fields: Dict[str, Any],
                     expected_status: Optional[Iterable[SessionStatus]] = None) -> Optional[TestSession]:
        async with self._lock:
            current = self._sessions.get(session_id)
            if current is None:
                raise SessionNotFoundError(f"Session {session_id} not found")
            if expected_status is not None and current.status not in set(expected_status):
                return None
            check_transition(current, fields)
            updated = current.model_copy(update=fields, deep=True)
            # Re-validate so enum/datetime fields keep their types
            updated = TestSession.model_validate(updated.model_dump())
            self._sessions[session_id] = updated
        return updated.model_copy(deep=True)

    async def list_by_status(self, status: SessionStatus) -> List[TestSession]:
        return [s.model_copy(deep=True) for s in self._sessions.values() if s.status == status]


class InMemoryDraftAnswerStore:
    def __init__(self):
        self._drafts: Dict[str, DraftAnswers] = {}

    async def load(self, session_id: str) -> Dict[str, str]:
        draft = self._drafts.get(session_id)
        return dict(draft.answers) if draft else {}

    async def save(self, session_id: str, answers: Dict[str, str]) -> None:
        self._drafts[session_id] = DraftAnswers(id=session_id, session_id=session_id, answers=dict(answers))

    async def delete(self, session_id: str) -> None:
        self._drafts.pop(session_id, None)

    def exists(self, session_id: str) -> bool:
        return session_id in self._drafts


class InMemorySubmissionStore:
    def __init__(self):
        self._submissions: Dict[str, Submission] = {}

    async def create(self, submission: Submission) -> Submission:
        if submission.id in self._submissions:
            raise SessionConflictError(f"Submission {submission.id} already exists")
        self._submissions[submission.id] = submission.model_copy(deep=True)
        return submission.model_copy(deep=True)

    async def get(self, submission_id: str) -> Optional[Submission]:
        submission = self._submissions.get(submission_id)
        return submission.model_copy(deep=True) if submission else None

    async def find_by_session(self, session_id: str) -> Optional[Submission]:
        for submission in self._submissions.values():
            if submission.test_session_id == session_id:
                return submission.model_copy(deep=True)
        return None

    async def list_for_assessments(self, assessment_ids: List[str]) -> List[Submission]:
        wanted = set(assessment_ids)
        return [s.model_copy(deep=True) for s in self._submissions.values() if s.assessment_id in wanted]

    async def list_for_student(self, student_id: str) -> List[Submission]:
        return [s.model_copy(deep=True) for s in self._submissions.values() if s.student_id == student_id]


class InMemoryAssessmentStore:
    def __init__(self):
        self._assessments: Dict[str, Assessment] = {}
        self._questions: Dict[str, Question] = {}

    async def get_assessment(self, assessment_id: str) -> Optional[Assessment]:
        assessment = self._assessments.get(assessment_id)
        return assessment.model_copy(deep=True) if assessment else None

    async def list_assessments(self, faculty_id: Optional[str] = None) -> List[Assessment]:
        items = [a for a in self._assessments.values() if faculty_id is None or a.faculty_id == faculty_id]
        return sorted(items, key=lambda a: a.created_at, reverse=True)

    async def list_questions(self, assessment_id: str) -> List[Question]:
        items = [q for q in self._questions.values() if q.assessment_id == assessment_id]
        return sorted(items, key=lambda q: q.question_number)

    async def save_assessment(self, assessment: Assessment) -> Assessment:
        self._assessments[assessment.id] = assessment
        return assessment

    async def save_question(self, question: Question) -> Question:
        self._questions[question.id] = question
        return question

    async def delete_assessment(self, assessment_id: str) -> bool:
        if self._assessments.pop(assessment_id, None) is None:
            return False
        self._questions = {k: q for k, q in self._questions.items() if q.assessment_id != assessment_id}
        return True


class InMemoryUserStore:
    def __init__(self):
        self._users: Dict[str, UserProfile] = {}

    async def get(self, user_id: str) -> Optional[UserProfile]:
        user = self._users.get(user_id)
        return user.model_copy(deep=True) if user else None

    async def find_by_email(self, email: str) -> Optional[UserProfile]:
        for user in self._users.values():
            if user.email == email:
                return user.model_copy(deep=True)
        return None

    async def list_users(self, role: Optional[UserRole] = None) -> List[UserProfile]:
        users = [u.model_copy(deep=True) for u in self._users.values() if role is None or u.role == role]
        return sorted(users, key=lambda u: u.created_at, reverse=True)

    async def create(self, user: UserProfile) -> UserProfile:
        if user.id in self._users:
            raise UserConflictError(f"User {user.id} already exists")
        self._users[user.id] = user.model_copy(deep=True)
        return user.model_copy(deep=True)

    async def save(self, user: UserProfile) -> UserProfile:
        self._users[user.id] = user.model_copy(deep=True)
        return user.model_copy(deep=True)

    async def delete(self, user_id: str) -> bool:
        return self._users.pop(user_id, None) is not None


class InMemoryCodingStore:
    def __init__(self):
        self._questions: Dict[str, CodingQuestion] = {}
        self._hidden_tests: Dict[str, HiddenTestCase] = {}
        self._submissions: Dict[str, CodingSubmission] = {}

    async def get_question(self, question_id: str) -> Optional[CodingQuestion]:
        return self._questions.get(question_id)

    async def list_questions(self) -> List[CodingQuestion]:
        return sorted(self._questions.values(), key=lambda q: q.created_at, reverse=True)

    async def list_published_questions(self) -> List[CodingQuestion]:
        return [q for q in await self.list_questions() if q.is_published]

    async def save_question(self, question: CodingQuestion) -> CodingQuestion:
        self._questions[question.id] = question
        return question

    async def get_hidden_tests(self, question_id: str) -> List[HiddenTestCase]:
        return [t for t in await self.list_all_hidden_tests(question_id) if t.is_active]

    async def list_all_hidden_tests(self, question_id: str) -> List[HiddenTestCase]:
        tests = [t for t in self._hidden_tests.values() if t.question_id == question_id]
        return sorted(tests, key=_test_order)

    async def save_hidden_test(self, test_case: HiddenTestCase) -> HiddenTestCase:
        self._hidden_tests[test_case.id] = test_case
        return test_case

    async def save_submission(self, submission: CodingSubmission) -> CodingSubmission:
        self._submissions[submission.id] = submission
        return submission

    async def get_submission(self, submission_id: str) -> Optional[CodingSubmission]:
        return self._submissions.get(submission_id)

    async def list_submissions(self, question_id: Optional[str] = None,
                               student_id: Optional[str] = None) -> List[CodingSubmission]:
        items = [
            s for s in self._submissions.values()
            if (question_id is None or s.question_id == question_id)
            and (student_id is None or s.student_id == student_id)
        ]
        return sorted(items, key=lambda s: s.submitted_at, reverse=True)


def _test_order(test_case: HiddenTestCase) -> Tuple[int, str]:
    return test_case.test_number, test_case.id
