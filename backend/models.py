from datetime import datetime
from enum import Enum
from typing import List, Optional, Any, Dict
from pydantic import BaseModel, Field, ConfigDict, field_validator, model_validator
import uuid

from datetime_utils import now_utc, parse_iso


# ===========================
# COSMOS DB SPECIFIC MODELS
# ===========================

class CosmosDocument(BaseModel):
    """Base class for all Cosmos DB documents"""
    model_config = ConfigDict(
        populate_by_name=True,
        # Cosmos adds _rid, _self, _attachments, _ts to every stored document
        extra="ignore"
    )

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), description="Document ID")
    etag: Optional[str] = Field(None, alias="_etag", exclude=True, description="Cosmos DB ETag for optimistic concurrency")

    def to_document(self) -> Dict[str, Any]:
        """JSON-safe dict for persistence (datetimes as ISO strings, no ETag)."""
        return self.model_dump(mode="json")


# ===========================
# ENUMS AND BASE TYPES
# ===========================

class UserRole(str, Enum):
    STUDENT = "student"
    FACULTY = "faculty"
    ADMIN = "admin"


class SessionStatus(str, Enum):
    """Lifecycle of a timed attempt. Only ever moves forward."""
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    LOCKED = "locked"

    @property
    def rank(self) -> int:
        return _STATUS_ORDER.index(self)

    def can_advance_to(self, target: "SessionStatus") -> bool:
        return target.rank > self.rank


_STATUS_ORDER = [SessionStatus.IN_PROGRESS, SessionStatus.COMPLETED, SessionStatus.LOCKED]


class QuestionType(str, Enum):
    MCQ = "MCQ"
    THEORY = "THEORY"


class UserStatusFilter(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    BLOCKED = "blocked"


class Difficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


# ===========================
# USERS CONTAINER MODELS
# ===========================

class UserProfile(CosmosDocument):
    """Directory entry for one user. Credentials stay with the identity provider;
    the id is the subject the provider puts in the bearer token."""
    email: str
    full_name: str
    role: UserRole = UserRole.STUDENT
    is_blocked: bool = Field(False, description="Blocked users are refused on every request")
    is_active: bool = Field(True, description="Deactivated accounts are refused like blocked ones")
    created_at: datetime = Field(default_factory=now_utc)

    @property
    def can_sign_in(self) -> bool:
        return self.is_active and not self.is_blocked

    def matches(self, status: Optional[UserStatusFilter]) -> bool:
        if status == UserStatusFilter.ACTIVE:
            return self.can_sign_in
        if status == UserStatusFilter.INACTIVE:
            return not self.is_active
        if status == UserStatusFilter.BLOCKED:
            return self.is_blocked
        return True


# ===========================
# ASSESSMENTS CONTAINER MODELS
# ===========================

class Assessment(CosmosDocument):
    """Timed test authored by a faculty member"""
    title: str = Field(..., description="Assessment title")
    subject: Optional[str] = Field(None, description="Subject the assessment belongs to")
    unit: Optional[str] = Field(None, description="Syllabus unit")
    faculty_id: str = Field(..., description="Author of the assessment")
    duration_minutes: int = Field(..., gt=0, le=24 * 60, description="Time allowed per attempt")
    created_at: datetime = Field(default_factory=now_utc)


class Question(CosmosDocument):
    """Question belonging to one assessment"""
    assessment_id: str
    question_number: int = Field(..., ge=1)
    type: QuestionType = Field(..., description="MCQ questions are auto-graded, THEORY questions are not")
    text: str
    options: List[str] = Field(default_factory=list, description="Option texts for MCQ questions")
    correct_answer: Optional[str] = Field(None, description="Text of the correct option")
    marks: int = Field(default=1, ge=0)

    @property
    def is_objective(self) -> bool:
        return self.type == QuestionType.MCQ and self.correct_answer is not None

    def public_view(self) -> Dict[str, Any]:
        """Question as shown to a student (answer key removed)."""
        return self.model_dump(mode="json", exclude={"correct_answer"})


# ===========================
# TEST SESSION MODELS
# ===========================

class TestSession(CosmosDocument):
    """One student's timed attempt at one assessment"""
    __test__ = False  # not a pytest test class

    assessment_id: str
    student_id: str
    started_at: datetime = Field(..., description="Set once at creation, never mutated")
    duration_seconds: int = Field(..., ge=0, description="Copied from the assessment when the session was created")
    status: SessionStatus = SessionStatus.IN_PROGRESS
    locked_by_submission_id: Optional[str] = None
    completed_at: Optional[datetime] = None
    locked_at: Optional[datetime] = None

    @field_validator("started_at", "completed_at", "locked_at", mode="before")
    @classmethod
    def _as_utc(cls, value):
        # older rows were written without an offset
        if isinstance(value, str):
            return parse_iso(value)
        return value


class DraftAnswers(CosmosDocument):
    """Overwritable in-progress answers for a session; id is the session id"""
    session_id: str
    answers: Dict[str, str] = Field(default_factory=dict)
    saved_at: datetime = Field(default_factory=now_utc)


class Submission(CosmosDocument):
    """Immutable final record of a finished attempt"""
    assessment_id: str
    student_id: str
    test_session_id: str
    answers: Dict[str, str] = Field(default_factory=dict, description="Snapshot of the final answers")
    mcq_score: int = Field(0, description="Raw marks from auto-graded questions")
    theory_score: Optional[int] = Field(None, description="Filled in by manual grading")
    total_score: int = Field(0, ge=0, le=100, description="Percentage of all available marks")
    is_auto_submitted: bool = False
    submitted_at: datetime = Field(default_factory=now_utc)


# ===========================
# CODING LAB MODELS
# ===========================

class CodingQuestion(CosmosDocument):
    """Practice problem with one visible sample and hidden grading tests"""
    faculty_id: str
    title: str
    description: str
    difficulty: Difficulty = Difficulty.MEDIUM
    programming_language: str = "python"
    sample_input: str = ""
    sample_output: str = ""
    time_limit: int = Field(default=3, gt=0, le=30, description="Seconds")
    memory_limit: int = Field(default=256, gt=0, description="Megabytes")
    is_published: bool = False
    created_at: datetime = Field(default_factory=now_utc)


class HiddenTestCase(CosmosDocument):
    """Grading input/output pair withheld from students"""
    question_id: str
    input: str = ""
    expected_output: str
    test_number: int = Field(..., ge=1)
    is_active: bool = True
    created_at: datetime = Field(default_factory=now_utc)


class ExecutionStatus(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    TIMEOUT = "timeout"
    TEST_FAILED = "test_failed"


class ExecutionOutput(BaseModel):
    """Raw result from a code-execution provider"""
    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0
    signal: Optional[str] = None
    execution_time: float = Field(0.0, description="Seconds")


class HiddenTestOutcome(BaseModel):
    test_number: int
    passed: bool
    input: str
    expected_output: str
    actual_output: str


class HiddenTestsResult(BaseModel):
    tests_passed: int = 0
    total_tests: int = 0
    results: List[HiddenTestOutcome] = Field(default_factory=list)


class ExecutionResult(BaseModel):
    """Graded outcome of running code against the sample (and hidden) tests"""
    status: ExecutionStatus
    output: str = ""
    error: Optional[str] = None
    execution_time: float = 0.0
    memory_used: int = 0
    tests_passed: int = 0
    total_tests: int = 1
    expected_output: Optional[str] = None
    actual_output: Optional[str] = None
    hidden_tests_result: Optional[HiddenTestsResult] = None


class CodingSubmissionStatus(str, Enum):
    ACCEPTED = "accepted"
    ERROR = "error"
    PENDING = "pending"


class CodingSubmission(CosmosDocument):
    question_id: str
    student_id: str
    code: str
    language: str
    status: CodingSubmissionStatus
    output: str = ""
    error_message: Optional[str] = None
    execution_time: int = Field(0, description="Milliseconds")
    memory_used: int = 0
    tests_passed: int = 0
    total_tests: int = 1
    submitted_at: datetime = Field(default_factory=now_utc)


# ===========================
# API CONTRACTS
# ===========================

class QuestionInput(BaseModel):
    question_number: int = Field(..., ge=1)
    type: QuestionType
    text: str = Field(..., min_length=1)
    options: List[str] = Field(default_factory=list)
    correct_answer: Optional[str] = None
    marks: int = Field(default=1, ge=0)

    @model_validator(mode="after")
    def _check_mcq_key(self):
        if self.type == QuestionType.MCQ:
            if len(self.options) < 2:
                raise ValueError("MCQ questions need at least two options")
            if self.correct_answer is not None and self.correct_answer not in self.options:
                raise ValueError("correct_answer must be one of the options")
        return self


class CreateAssessmentRequest(BaseModel):
    title: str = Field(..., min_length=1)
    subject: Optional[str] = None
    unit: Optional[str] = None
    duration_minutes: int = Field(..., gt=0, le=24 * 60)
    questions: List[QuestionInput] = Field(default_factory=list)


class EnterTestResponse(BaseModel):
    decision: str
    session: TestSession
    remaining_seconds: int
    questions: List[Dict[str, Any]] = Field(default_factory=list)
    answers: Dict[str, str] = Field(default_factory=dict)
    submission_id: Optional[str] = Field(None, description="Results to redirect to when the attempt is finished")


class TimerStatus(BaseModel):
    session_id: str
    status: SessionStatus
    remaining_seconds: int
    is_expired: bool
    duration_seconds: int
    started_at: datetime


class DraftSaveRequest(BaseModel):
    answers: Dict[str, str]


class SubmitTestRequest(BaseModel):
    answers: Dict[str, str] = Field(default_factory=dict)
    is_auto_submitted: bool = False


class SubmitTestResponse(BaseModel):
    success: bool = True
    already_submitted: bool = False
    submission: Submission


class CodeRunRequest(BaseModel):
    code: str = Field(..., min_length=1, max_length=50_000)
    language: str
    stdin: str = ""
    expected_output: str = ""


class CodeSubmitRequest(BaseModel):
    code: str = Field(..., min_length=1, max_length=50_000)
    language: str


class CreateCodingQuestionRequest(BaseModel):
    title: str = Field(..., min_length=1)
    description: str
    difficulty: Difficulty = Difficulty.MEDIUM
    programming_language: str = "python"
    sample_input: str = ""
    sample_output: str = ""
    time_limit: int = Field(default=3, gt=0, le=30)
    memory_limit: int = Field(default=256, gt=0)
    is_published: bool = False


class HiddenTestCaseRequest(BaseModel):
    input: str = ""
    expected_output: str
    test_number: Optional[int] = Field(None, ge=1, description="Defaults to the next free number")
    is_active: bool = True


class AvailableAssessment(BaseModel):
    """Student dashboard row: an assessment and, once taken, its result"""
    id: str
    title: str
    subject: Optional[str] = None
    unit: Optional[str] = None
    duration_minutes: int
    created_at: datetime
    submission_id: Optional[str] = None
    total_score: Optional[int] = None


class CreateStudentRequest(BaseModel):
    email: str = Field(..., pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    full_name: str = Field(..., min_length=1)
    user_id: Optional[str] = Field(None, description="Identity-provider subject; generated when omitted")

    @field_validator("email", mode="before")
    @classmethod
    def _normalize_email(cls, value):
        return value.strip().lower() if isinstance(value, str) else value


class CreateUserRequest(CreateStudentRequest):
    role: UserRole = UserRole.STUDENT


class BlockUserRequest(BaseModel):
    blocked: bool


class ActivateUserRequest(BaseModel):
    active: bool


class ChangeRoleRequest(BaseModel):
    role: UserRole
