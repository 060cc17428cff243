"""Cosmos DB implementations of the store contracts in stores.py."""

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from azure.cosmos.exceptions import CosmosHttpResponseError, CosmosResourceExistsError

from constants import CONTAINER
from database import CosmosDBService
from datetime_utils import now_utc
from error_utils import SessionConflictError, SessionNotFoundError, StoreError, UserConflictError
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
from stores import check_transition, session_id_for

logger = logging.getLogger(__name__)

# Attempts at an ETag-guarded update before giving up on a hot document
MAX_CAS_ATTEMPTS = 5


def _wrap(exc: CosmosHttpResponseError, action: str) -> StoreError:
    return StoreError(f"{action} failed: {exc.status_code} {exc.message}")


class CosmosSessionStore:
    def __init__(self, db: CosmosDBService):
        self.db = db
        self.container = CONTAINER["TEST_SESSIONS"]

    async def find(self, assessment_id: str, student_id: str) -> Optional[TestSession]:
        return await self.get(session_id_for(assessment_id, student_id))

    async def get(self, session_id: str) -> Optional[TestSession]:
        try:
            doc = await self.db.read_item(self.container, session_id, partition_key=session_id)
        except CosmosHttpResponseError as e:
            raise _wrap(e, f"Reading session {session_id}")
        return TestSession.model_validate(doc) if doc else None

    async def create(self, assessment_id: str, student_id: str, duration_seconds: int,
                     started_at: datetime) -> TestSession:
        session = TestSession(
            id=session_id_for(assessment_id, student_id),
            assessment_id=assessment_id,
            student_id=student_id,
            started_at=started_at,
            duration_seconds=duration_seconds,
            status=SessionStatus.IN_PROGRESS,
        )
        try:
            doc = await self.db.create_item(self.container, session.to_document())
        except CosmosResourceExistsError:
            raise SessionConflictError(f"Session already exists for {session.id}")
        except CosmosHttpResponseError as e:
            raise _wrap(e, f"Creating session {session.id}")
        return TestSession.model_validate(doc)

    async def update(self, session_id: str, fields: Dict[str, Any],
                     expected_status: Optional[Iterable[SessionStatus]] = None) -> Optional[TestSession]:
        allowed = set(expected_status) if expected_status is not None else None
        try:
            for _ in range(MAX_CAS_ATTEMPTS):
                doc = await self.db.read_item(self.container, session_id, partition_key=session_id)
                if doc is None:
                    raise SessionNotFoundError(f"Session {session_id} not found")
                current = TestSession.model_validate(doc)
                if allowed is not None and current.status not in allowed:
                    return None
                check_transition(current, fields)
                updated = TestSession.model_validate({**current.model_dump(), **fields})
                saved = await self.db.replace_item_if_unchanged(self.container, updated.to_document(), etag=doc["_etag"])
                if saved is not None:
                    return TestSession.model_validate(saved)
                logger.info(f"Concurrent write on session {session_id}, re-reading")
        except CosmosHttpResponseError as e:
            raise _wrap(e, f"Updating session {session_id}")
        raise StoreError(f"Session {session_id} kept changing; gave up after {MAX_CAS_ATTEMPTS} attempts")

    async def list_by_status(self, status: SessionStatus) -> List[TestSession]:
        try:
            docs = await self.db.find_many(self.container, {"status": status.value})
        except CosmosHttpResponseError as e:
            raise _wrap(e, "Listing sessions")
        return [TestSession.model_validate(d) for d in docs]


class CosmosDraftAnswerStore:
    def __init__(self, db: CosmosDBService):
        self.db = db
        self.container = CONTAINER["DRAFT_ANSWERS"]

    async def load(self, session_id: str) -> Dict[str, str]:
        try:
            doc = await self.db.read_item(self.container, session_id, partition_key=session_id)
        except CosmosHttpResponseError as e:
            raise _wrap(e, f"Loading draft for {session_id}")
        return DraftAnswers.model_validate(doc).answers if doc else {}

    async def save(self, session_id: str, answers: Dict[str, str]) -> None:
        draft = DraftAnswers(id=session_id, session_id=session_id, answers=dict(answers), saved_at=now_utc())
        try:
            await self.db.upsert_item(self.container, draft.to_document())
        except CosmosHttpResponseError as e:
            raise _wrap(e, f"Saving draft for {session_id}")

    async def delete(self, session_id: str) -> None:
        try:
            await self.db.delete_item(self.container, session_id, partition_key=session_id)
        except CosmosHttpResponseError as e:
            raise _wrap(e, f"Deleting draft for {session_id}")


class CosmosSubmissionStore:
    def __init__(self, db: CosmosDBService):
        self.db = db
        self.container = CONTAINER["SUBMISSIONS"]

    async def create(self, submission: Submission) -> Submission:
        try:
            doc = await self.db.create_item(self.container, submission.to_document())
        except CosmosResourceExistsError:
            raise SessionConflictError(f"Submission {submission.id} already exists")
        except CosmosHttpResponseError as e:
            raise _wrap(e, f"Creating submission for session {submission.test_session_id}")
        return Submission.model_validate(doc)

    async def get(self, submission_id: str) -> Optional[Submission]:
        return await self._find_one({"id": submission_id})

    async def find_by_session(self, session_id: str) -> Optional[Submission]:
        return await self._find_one({"test_session_id": session_id})

    async def _find_one(self, filter_dict: Dict[str, Any]) -> Optional[Submission]:
        try:
            doc = await self.db.find_one(self.container, filter_dict)
        except CosmosHttpResponseError as e:
            raise _wrap(e, "Reading submission")
        return Submission.model_validate(doc) if doc else None

    async def list_for_assessments(self, assessment_ids: List[str]) -> List[Submission]:
        if not assessment_ids:
            return []
        query = "SELECT * FROM c WHERE ARRAY_CONTAINS(@ids, c.assessment_id)"
        try:
            docs = await self.db.query_items(self.container, query, [{"name": "@ids", "value": list(assessment_ids)}])
        except CosmosHttpResponseError as e:
            raise _wrap(e, "Listing submissions")
        return [Submission.model_validate(d) for d in docs]

    async def list_for_student(self, student_id: str) -> List[Submission]:
        try:
            docs = await self.db.find_many(self.container, {"student_id": student_id})
        except CosmosHttpResponseError as e:
            raise _wrap(e, "Listing submissions")
        return [Submission.model_validate(d) for d in docs]


class CosmosAssessmentStore:
    def __init__(self, db: CosmosDBService):
        self.db = db

    async def get_assessment(self, assessment_id: str) -> Optional[Assessment]:
        try:
            doc = await self.db.read_item(CONTAINER["ASSESSMENTS"], assessment_id, partition_key=assessment_id)
        except CosmosHttpResponseError as e:
            raise _wrap(e, f"Reading assessment {assessment_id}")
        return Assessment.model_validate(doc) if doc else None

    async def list_assessments(self, faculty_id: Optional[str] = None) -> List[Assessment]:
        filter_dict = {"faculty_id": faculty_id} if faculty_id else {}
        try:
            docs = await self.db.find_many(CONTAINER["ASSESSMENTS"], filter_dict, order_by="created_at", descending=True)
        except CosmosHttpResponseError as e:
            raise _wrap(e, "Listing assessments")
        return [Assessment.model_validate(d) for d in docs]

    async def list_questions(self, assessment_id: str) -> List[Question]:
        query = "SELECT * FROM c WHERE c.assessment_id = @assessment_id ORDER BY c.question_number ASC"
        try:
            docs = await self.db.query_items(
                CONTAINER["QUESTIONS"], query,
                [{"name": "@assessment_id", "value": assessment_id}],
                partition_key=assessment_id
            )
        except CosmosHttpResponseError as e:
            raise _wrap(e, f"Listing questions for {assessment_id}")
        return [Question.model_validate(d) for d in docs]

    async def save_assessment(self, assessment: Assessment) -> Assessment:
        try:
            doc = await self.db.upsert_item(CONTAINER["ASSESSMENTS"], assessment.to_document())
        except CosmosHttpResponseError as e:
            raise _wrap(e, f"Saving assessment {assessment.id}")
        return Assessment.model_validate(doc)

    async def save_question(self, question: Question) -> Question:
        try:
            doc = await self.db.upsert_item(CONTAINER["QUESTIONS"], question.to_document())
        except CosmosHttpResponseError as e:
            raise _wrap(e, f"Saving question {question.id}")
        return Question.model_validate(doc)

    async def delete_assessment(self, assessment_id: str) -> bool:
        try:
            questions = await self.list_questions(assessment_id)
            for question in questions:
                await self.db.delete_item(CONTAINER["QUESTIONS"], question.id, partition_key=assessment_id)
            return await self.db.delete_item(CONTAINER["ASSESSMENTS"], assessment_id, partition_key=assessment_id)
        except CosmosHttpResponseError as e:
            raise _wrap(e, f"Deleting assessment {assessment_id}")


class CosmosUserStore:
    def __init__(self, db: CosmosDBService):
        self.db = db
        self.container = CONTAINER["USERS"]

    async def get(self, user_id: str) -> Optional[UserProfile]:
        try:
            doc = await self.db.read_item(self.container, user_id, partition_key=user_id)
        except CosmosHttpResponseError as e:
            raise _wrap(e, f"Reading user {user_id}")
        return UserProfile.model_validate(doc) if doc else None

    async def find_by_email(self, email: str) -> Optional[UserProfile]:
        try:
            doc = await self.db.find_one(self.container, {"email": email})
        except CosmosHttpResponseError as e:
            raise _wrap(e, "Looking up user by email")
        return UserProfile.model_validate(doc) if doc else None

    async def list_users(self, role: Optional[UserRole] = None) -> List[UserProfile]:
        filter_dict = {"role": role.value} if role else {}
        try:
            docs = await self.db.find_many(self.container, filter_dict, order_by="created_at", descending=True)
        except CosmosHttpResponseError as e:
            raise _wrap(e, "Listing users")
        return [UserProfile.model_validate(d) for d in docs]

    async def create(self, user: UserProfile) -> UserProfile:
        try:
            doc = await self.db.create_item(self.container, user.to_document())
        except CosmosResourceExistsError:
            raise UserConflictError(f"User {user.id} already exists")
        except CosmosHttpResponseError as e:
            raise _wrap(e, f"Creating user {user.id}")
        return UserProfile.model_validate(doc)

    async def save(self, user: UserProfile) -> UserProfile:
        try:
            doc = await self.db.upsert_item(self.container, user.to_document())
        except CosmosHttpResponseError as e:
            raise _wrap(e, f"Saving user {user.id}")
        return UserProfile.model_validate(doc)

    async def delete(self, user_id: str) -> bool:
        try:
            return await self.db.delete_item(self.container, user_id, partition_key=user_id)
        except CosmosHttpResponseError as e:
            raise _wrap(e, f"Deleting user {user_id}")


class CosmosCodingStore:
    def __init__(self, db: CosmosDBService):
        self.db = db

    async def get_question(self, question_id: str) -> Optional[CodingQuestion]:
        try:
            doc = await self.db.read_item(CONTAINER["CODING_QUESTIONS"], question_id, partition_key=question_id)
        except CosmosHttpResponseError as e:
            raise _wrap(e, f"Reading coding question {question_id}")
        return CodingQuestion.model_validate(doc) if doc else None

    async def list_questions(self) -> List[CodingQuestion]:
        return await self._list_questions({})

    async def list_published_questions(self) -> List[CodingQuestion]:
        return await self._list_questions({"is_published": True})

    async def _list_questions(self, filter_dict: Dict[str, Any]) -> List[CodingQuestion]:
        try:
            docs = await self.db.find_many(CONTAINER["CODING_QUESTIONS"], filter_dict, order_by="created_at", descending=True)
        except CosmosHttpResponseError as e:
            raise _wrap(e, "Listing coding questions")
        return [CodingQuestion.model_validate(d) for d in docs]

    async def save_question(self, question: CodingQuestion) -> CodingQuestion:
        try:
            doc = await self.db.upsert_item(CONTAINER["CODING_QUESTIONS"], question.to_document())
        except CosmosHttpResponseError as e:
            raise _wrap(e, f"Saving coding question {question.id}")
        return CodingQuestion.model_validate(doc)

    async def get_hidden_tests(self, question_id: str) -> List[HiddenTestCase]:
        return [t for t in await self.list_all_hidden_tests(question_id) if t.is_active]

    async def list_all_hidden_tests(self, question_id: str) -> List[HiddenTestCase]:
        query = "SELECT * FROM c WHERE c.question_id = @question_id ORDER BY c.test_number ASC"
        try:
            docs = await self.db.query_items(
                CONTAINER["HIDDEN_TEST_CASES"], query,
                [{"name": "@question_id", "value": question_id}],
                partition_key=question_id
            )
        except CosmosHttpResponseError as e:
            raise _wrap(e, f"Listing hidden tests for {question_id}")
        return [HiddenTestCase.model_validate(d) for d in docs]

    async def save_hidden_test(self, test_case: HiddenTestCase) -> HiddenTestCase:
        try:
            doc = await self.db.upsert_item(CONTAINER["HIDDEN_TEST_CASES"], test_case.to_document())
        except CosmosHttpResponseError as e:
            raise _wrap(e, f"Saving hidden test {test_case.id}")
        return HiddenTestCase.model_validate(doc)

    async def save_submission(self, submission: CodingSubmission) -> CodingSubmission:
        try:
            doc = await self.db.create_item(CONTAINER["CODING_SUBMISSIONS"], submission.to_document())
        except CosmosHttpResponseError as e:
            raise _wrap(e, f"Saving coding submission for {submission.question_id}")
        return CodingSubmission.model_validate(doc)

    async def get_submission(self, submission_id: str) -> Optional[CodingSubmission]:
        try:
            doc = await self.db.find_one(CONTAINER["CODING_SUBMISSIONS"], {"id": submission_id})
        except CosmosHttpResponseError as e:
            raise _wrap(e, f"Reading coding submission {submission_id}")
        return CodingSubmission.model_validate(doc) if doc else None

    async def list_submissions(self, question_id: Optional[str] = None,
                               student_id: Optional[str] = None) -> List[CodingSubmission]:
        filter_dict = {}
        if question_id:
            filter_dict["question_id"] = question_id
        if student_id:
            filter_dict["student_id"] = student_id
        try:
            docs = await self.db.find_many(CONTAINER["CODING_SUBMISSIONS"], filter_dict, order_by="submitted_at", descending=True)
        except CosmosHttpResponseError as e:
            raise _wrap(e, "Listing coding submissions")
        return [CodingSubmission.model_validate(d) for d in docs]
