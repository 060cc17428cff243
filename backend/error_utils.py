import logging
from fastapi import HTTPException
from typing import Optional

logger = logging.getLogger(__name__)


class AssessmentError(Exception):
    """Base class for all domain errors raised by the assessment services."""


class StoreError(AssessmentError):
    """A backing store or external service failed (usually transient)."""


class AssessmentNotFoundError(AssessmentError):
    pass


class QuestionNotFoundError(AssessmentError):
    pass


class SessionNotFoundError(AssessmentError):
    pass


class SubmissionNotFoundError(AssessmentError):
    pass


class SessionConflictError(AssessmentError):
    """The session is not in a state that allows the requested transition."""


class SessionLockedError(SessionConflictError):
    """The session was already finalized; `submission_id` points at its results."""

    def __init__(self, session_id: str, submission_id: Optional[str]):
        super().__init__(f"Session {session_id} is locked by submission {submission_id}")
        self.session_id = session_id
        self.submission_id = submission_id


class SubmissionInFlightError(SessionConflictError):
    """A submission for this session has already started."""


class SessionReadOnlyError(AssessmentError):
    """Edits are not accepted for this session any more."""


class UserNotFoundError(AssessmentError):
    pass


class UserConflictError(AssessmentError):
    """Email already registered, or an admin acting on their own account."""


class UserAccessError(AssessmentError):
    """The account is blocked or deactivated."""


class CodeExecutionError(AssessmentError):
    """The code-execution provider could not run the submitted code."""


def safe_raise_http(user_message: str, exc: Optional[Exception] = None, status_code: int = 500) -> None:
    """
    Log the full exception server-side and raise a generic HTTPException for clients.

    - user_message: short, non-sensitive message returned to client
    - exc: optional exception instance; full details are logged with stack trace
    - status_code: HTTP status code to raise
    """
    if exc is not None:
        logger.exception("%s: %s", user_message, exc)
    else:
        logger.error(user_message)
    raise HTTPException(status_code=status_code, detail=user_message)


def raise_for_domain_error(exc: AssessmentError) -> None:
    """Translate a domain error into the matching HTTP error."""
    if isinstance(exc, (AssessmentNotFoundError, QuestionNotFoundError,
                        SessionNotFoundError, SubmissionNotFoundError, UserNotFoundError)):
        raise HTTPException(status_code=404, detail={"error": "not_found", "message": str(exc)})
    if isinstance(exc, SubmissionInFlightError):
        raise HTTPException(status_code=409, detail={"error": "submission_in_flight", "message": str(exc)})
    if isinstance(exc, (SessionConflictError, SessionReadOnlyError)):
        raise HTTPException(status_code=409, detail={"error": "session_conflict", "message": str(exc)})
    if isinstance(exc, UserConflictError):
        raise HTTPException(status_code=409, detail={"error": "user_conflict", "message": str(exc)})
    if isinstance(exc, UserAccessError):
        raise HTTPException(status_code=403, detail={"error": "account_disabled", "message": str(exc)})
    if isinstance(exc, StoreError):
        safe_raise_http("Storage service unavailable, please retry", exc, status_code=503)
    if isinstance(exc, CodeExecutionError):
        safe_raise_http("Code execution service unavailable", exc, status_code=502)
    safe_raise_http("Unexpected assessment error", exc)
